"""Request body validation."""

from __future__ import annotations

import os
import sys
from datetime import date, timedelta

import pytest
from pydantic import ValidationError

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "..", "api")))

import schemas  # noqa: E402


def test_emails_are_normalized():
    body = schemas.ExecutorBody(name=" Sam ", email=" Sam@Example.COM ")
    assert body.name == "Sam"
    assert body.email == "sam@example.com"
    assert schemas.normalize_email("   ") is None


def test_bad_email_rejected():
    with pytest.raises(ValidationError):
        schemas.ExecutorBody(name="Sam", email="not-an-email")
    with pytest.raises(ValidationError):
        schemas.ProfileBody(email="")


def test_asset_type_must_be_known():
    assert schemas.AssetBody(type="digital", name="Photos").type == "digital"
    with pytest.raises(ValidationError):
        schemas.AssetBody(type="crypto-ish", name="x")
    with pytest.raises(ValidationError):
        schemas.AssetBody(type="digital", name="   ")


def test_contact_fields_are_cleaned():
    doc = schemas.DocumentBody(
        name="Deed",
        category="property",
        contact_email="Clerk@County.gov",
        contact_name="  ",
    )
    assert doc.contact_email == "clerk@county.gov"
    assert doc.contact_name is None


def test_created_will_needs_content():
    assert schemas.WillBody(source="upload").content is None
    with pytest.raises(ValidationError):
        schemas.WillBody(source="create", content="  ")


def test_note_requires_recipient_and_content():
    with pytest.raises(ValidationError):
        schemas.NoteBody(recipient_name=" ", content="hi")
    patch = schemas.NotePatch(content=" updated ")
    assert patch.model_dump(exclude_unset=True) == {"content": "updated"}


def test_date_of_death_cannot_be_future():
    today = date.today()
    assert schemas.DeathNotificationBody(date_of_death=today).date_of_death == today
    with pytest.raises(ValidationError):
        schemas.DeathNotificationBody(date_of_death=today + timedelta(days=1))


def test_chat_message_trimmed_and_non_blank():
    assert schemas.ChatBody(message="  hi ").message == "hi"
    with pytest.raises(ValidationError):
        schemas.ChatBody(message="   ")
