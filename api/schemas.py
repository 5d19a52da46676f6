from __future__ import annotations

import re
from datetime import date
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field, field_validator, model_validator


AssetType = Literal["financial", "physical", "digital", "business"]
DocumentCategory = Literal["legal", "financial", "medical", "property", "personal"]
WishCategory = Literal["funeral", "medical", "personal", "other"]
WillSource = Literal["upload", "create"]
Role = Literal["planner", "executor"]

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def normalize_email(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    v = value.strip().lower()
    if not v:
        return None
    if not _EMAIL_RE.match(v):
        raise ValueError("invalid email address")
    return v


def _strip_or_none(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    v = value.strip()
    return v or None


class ProfileBody(BaseModel):
    email: str
    full_name: Optional[str] = None
    role: Optional[Role] = None

    @field_validator("email")
    @classmethod
    def check_email(cls, value: str) -> str:
        v = normalize_email(value)
        if not v:
            raise ValueError("email is required")
        return v

    @field_validator("full_name")
    @classmethod
    def strip_name(cls, value: Optional[str]) -> Optional[str]:
        return _strip_or_none(value)


class ContactFields(BaseModel):
    contact_name: Optional[str] = None
    contact_email: Optional[str] = None
    contact_phone: Optional[str] = None
    contact_organization: Optional[str] = None

    @field_validator("contact_email")
    @classmethod
    def check_contact_email(cls, value: Optional[str]) -> Optional[str]:
        return normalize_email(value)

    @field_validator("contact_name", "contact_phone", "contact_organization")
    @classmethod
    def strip_contact(cls, value: Optional[str]) -> Optional[str]:
        return _strip_or_none(value)


class AssetBody(ContactFields):
    type: AssetType
    name: str = Field(min_length=1, max_length=200)
    description: Optional[str] = None
    location: Optional[str] = None
    account_number: Optional[str] = None
    access_info: Optional[str] = None

    @field_validator("name")
    @classmethod
    def name_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("name must not be blank")
        return value.strip()


class AssetPatch(ContactFields):
    type: Optional[AssetType] = None
    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = None
    location: Optional[str] = None
    account_number: Optional[str] = None
    access_info: Optional[str] = None


class DocumentBody(ContactFields):
    name: str = Field(min_length=1, max_length=200)
    category: DocumentCategory
    description: Optional[str] = None
    location: Optional[str] = None

    @field_validator("name")
    @classmethod
    def name_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("name must not be blank")
        return value.strip()


class DocumentPatch(ContactFields):
    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    category: Optional[DocumentCategory] = None
    description: Optional[str] = None
    location: Optional[str] = None


class WishBody(BaseModel):
    category: WishCategory = "personal"
    title: Optional[str] = None
    content: str = Field(min_length=1)


class WishPatch(BaseModel):
    category: Optional[WishCategory] = None
    title: Optional[str] = None
    content: Optional[str] = Field(default=None, min_length=1)


class WillBody(BaseModel):
    source: WillSource
    content: Optional[str] = None
    file_name: Optional[str] = None

    @model_validator(mode="after")
    def check_created_will_has_content(self) -> "WillBody":
        if self.source == "create" and not (self.content or "").strip():
            raise ValueError("a created will needs content")
        return self


class NoteBody(BaseModel):
    executor_id: Optional[str] = None
    recipient_name: str
    recipient_email: Optional[str] = None
    content: str

    @field_validator("recipient_name", "content")
    @classmethod
    def not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("must not be blank")
        return value.strip()

    @field_validator("recipient_email")
    @classmethod
    def check_email(cls, value: Optional[str]) -> Optional[str]:
        return normalize_email(value)


class NotePatch(BaseModel):
    executor_id: Optional[str] = None
    recipient_name: Optional[str] = None
    recipient_email: Optional[str] = None
    content: Optional[str] = None

    @field_validator("recipient_name", "content")
    @classmethod
    def not_blank(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and not value.strip():
            raise ValueError("must not be blank")
        return value.strip() if value is not None else None

    @field_validator("recipient_email")
    @classmethod
    def check_email(cls, value: Optional[str]) -> Optional[str]:
        return normalize_email(value)


class ExecutorBody(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    email: str
    phone: Optional[str] = None
    relationship: Optional[str] = None
    is_primary: bool = False

    @field_validator("name")
    @classmethod
    def name_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("name must not be blank")
        return value.strip()

    @field_validator("email")
    @classmethod
    def check_email(cls, value: str) -> str:
        v = normalize_email(value)
        if not v:
            raise ValueError("email is required")
        return v


class StepCompleteBody(BaseModel):
    data: Dict[str, Any] = Field(default_factory=dict)


class DeathNotificationBody(BaseModel):
    planner_id: Optional[str] = None
    date_of_death: date
    place_of_death: Optional[str] = None
    relationship: Optional[str] = None
    additional_info: Optional[str] = None

    @field_validator("date_of_death")
    @classmethod
    def not_in_future(cls, value: date) -> date:
        if value > date.today():
            raise ValueError("date_of_death cannot be in the future")
        return value


class ChatBody(BaseModel):
    message: str = Field(min_length=1, max_length=4000)
    step: Optional[str] = None
    context: Dict[str, Any] = Field(default_factory=dict)
    planner_id: Optional[str] = None

    @field_validator("message")
    @classmethod
    def message_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("message must not be blank")
        return value.strip()


class ChatHistoryItem(BaseModel):
    role: Literal["user", "assistant"]
    content: str


class InvitationChatBody(BaseModel):
    message: str = Field(min_length=1, max_length=4000)
    history: List[ChatHistoryItem] = Field(default_factory=list)


class NoteDraftBody(BaseModel):
    executor_name: Optional[str] = None


class OutreachBody(BaseModel):
    planner_id: Optional[str] = None
    subject: Optional[str] = None
    body: Optional[str] = None
