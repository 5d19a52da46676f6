"""Unit tests for the executor-facing estate helpers."""

from __future__ import annotations

import os
import sys

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "..", "api")))

import estate  # noqa: E402


def test_planner_display_name_prefers_full_name_then_email():
    assert estate.planner_display_name("abc", {"full_name": " Ann Lee ", "email": "ann@x.io"}) == "Ann Lee"
    assert estate.planner_display_name("abc", {"email": "ann.lee@x.io"}) == "ann.lee"
    assert estate.planner_display_name("1234567890abc", None) == "Planner 12345678"


def test_will_text_falls_back_to_wishes_then_template():
    assert estate.will_text({"content": "My will"}, [], "Ann") == {"source": "will", "content": "My will"}
    assert estate.will_text(None, [{"content": "Bury me at sea"}], "Ann")["source"] == "wishes"
    tmpl = estate.will_text({"content": "  "}, [], "Ann")
    assert tmpl["source"] == "template"
    assert tmpl["content"].startswith("This is the last will and testament of Ann.")


def test_asset_categories_and_filter():
    assets = [{"type": "financial"}, {"type": "digital"}, {"type": "financial"}]
    assert estate.asset_categories(assets) == ["all", "financial", "digital"]
    assert estate.filter_assets(assets, "all") == assets
    assert estate.filter_assets(assets, "digital") == [{"type": "digital"}]


def test_derive_contacts_dedupes_and_marks_sent():
    documents = [
        {"category": "legal", "contact_email": "law@firm.com", "contact_name": "Jo", "contact_organization": "Firm"},
        {"category": "legal", "contact_email": "law@firm.com", "contact_name": "Other"},
        {"category": "medical", "contact_email": ""},
    ]
    assets = [{"type": "financial", "contact_email": "bank@b.com"}]
    contacts = estate.derive_contacts(documents, assets, sent_keys=["bank@b.com-financial"])

    assert [c["id"] for c in contacts] == ["law@firm.com-legal", "bank@b.com-financial"]
    assert contacts[0]["name"] == "Jo"
    assert contacts[0]["type"] == "Legal"
    assert contacts[0]["status"] == "not_contacted"
    assert contacts[1]["name"] == "Unknown"
    assert contacts[1]["status"] == "sent"

    groups = estate.group_contacts(contacts)
    assert set(groups) == {"legal", "financial"}
    assert estate.all_contacted(contacts) is False
    assert estate.all_contacted([{**c, "status": "sent"} for c in contacts]) is True
    assert estate.all_contacted([]) is False


def test_outreach_message_uses_organization_and_signature():
    contact = {"name": "Jo", "organization": "Big Bank", "category": "financial"}
    msg = estate.outreach_message(contact, "Ann Lee", "Sam")
    assert msg["subject"] == "Notification of Passing - Big Bank"
    assert msg["body"].startswith("Dear Jo,")
    assert "passing of Ann Lee" in msg["body"]
    assert "regarding financial matters" in msg["body"]
    assert "Sincerely,\nSam\nExecutor of the Estate" in msg["body"]

    unsigned = estate.outreach_message({"name": "Jo", "category": "legal"}, "Ann", None)
    assert unsigned["subject"] == "Notification of Passing - legal"
    assert "[Your Name]" in unsigned["body"]


def test_invitation_message_contains_link_and_expiry():
    msg = estate.invitation_message("Sam", "Ann", "http://app/x?token=t", "2026-01-09")
    assert "Ann" in msg["subject"]
    assert "http://app/x?token=t" in msg["body"]
    assert "2026-01-09" in msg["body"]


def test_executor_can_view_requires_certificate_or_verification():
    assert estate.executor_can_view(None) is False
    assert estate.executor_can_view({"death_certificate_uploaded": False, "death_verified": False}) is False
    assert estate.executor_can_view({"death_certificate_uploaded": True}) is True
    assert estate.executor_can_view({"death_verified": True}) is True


def test_plan_completeness():
    out = estate.plan_completeness({"executors": 1, "assets": 2}, has_will=True)
    assert out["items"] == {"will": True, "executors": True, "notes": False, "assets": True, "documents": False}
    assert out["percent"] == 60
