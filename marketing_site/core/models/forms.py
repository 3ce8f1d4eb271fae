"""Form submission models with sanitization and validation rules."""

import re
from datetime import datetime
from enum import Enum
from typing import Optional, Dict, Any, List
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator


EMAIL_PATTERN = re.compile(r"^[\w.+-]+@([\w-]+\.)+[\w-]{2,}$")
PHONE_PATTERN = re.compile(r"^\+?[\d\s\-()]+$")
_SCRIPT_BLOCK = re.compile(r"<(script|style)\b[^>]*>.*?</\1\s*>", re.IGNORECASE | re.DOTALL)
_TAG = re.compile(r"<[^>]*>")
_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")

NAME_MIN, NAME_MAX = 2, 50
MESSAGE_MIN, MESSAGE_MAX = 4, 1000
PHONE_MIN_DIGITS, PHONE_MAX_DIGITS = 10, 15


class FormType(str, Enum):
    """Kinds of form the site accepts."""
    CONTACT = "contact"
    BROCHURE = "brochure"


def sanitize_text(value: Any) -> Any:
    """Strip markup and control characters from user-supplied text.

    Non-string values are returned untouched so the field validators can
    report them. Output is plain text; templates escape it again on render.
    """
    if not isinstance(value, str):
        return value
    value = _SCRIPT_BLOCK.sub("", value)
    value = _TAG.sub("", value)
    value = _CONTROL_CHARS.sub("", value)
    return value.replace("\r\n", "\n").strip()


def _check_name(value: str) -> str:
    if not value:
        raise ValueError("Name is required")
    if len(value) < NAME_MIN:
        raise ValueError(f"Name must be at least {NAME_MIN} characters long")
    if len(value) > NAME_MAX:
        raise ValueError(f"Name cannot exceed {NAME_MAX} characters")
    return value


def _check_email(value: str) -> str:
    if not value:
        raise ValueError("Email is required")
    value = value.lower()
    if not EMAIL_PATTERN.match(value):
        raise ValueError("Please provide a valid email address")
    return value


def _check_phone(value: str) -> str:
    if not value:
        raise ValueError("Phone number is required")
    digits = sum(ch.isdigit() for ch in value)
    if not PHONE_PATTERN.match(value) or not PHONE_MIN_DIGITS <= digits <= PHONE_MAX_DIGITS:
        raise ValueError(
            f"Phone number must contain {PHONE_MIN_DIGITS} to {PHONE_MAX_DIGITS} digits"
        )
    return value


class _SanitizedForm(BaseModel):
    model_config = ConfigDict(extra="ignore")

    @field_validator("*", mode="before")
    @classmethod
    def _sanitize(cls, value):
        return sanitize_text(value)


class ContactSubmission(_SanitizedForm):
    """General contact form."""

    name: str
    email: str
    phone: str
    message: str
    type: FormType = FormType.CONTACT

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        return _check_name(v)

    @field_validator("email")
    @classmethod
    def validate_email(cls, v: str) -> str:
        return _check_email(v)

    @field_validator("phone")
    @classmethod
    def validate_phone(cls, v: str) -> str:
        return _check_phone(v)

    @field_validator("message")
    @classmethod
    def validate_message(cls, v: str) -> str:
        if not v:
            raise ValueError("Message is required")
        if len(v) < MESSAGE_MIN:
            raise ValueError(f"Message must be at least {MESSAGE_MIN} characters long")
        if len(v) > MESSAGE_MAX:
            raise ValueError(f"Message cannot exceed {MESSAGE_MAX} characters")
        return v


class BrochureRequestSubmission(_SanitizedForm):
    """Brochure request form. The message is optional."""

    name: str
    email: str
    phone: str
    message: Optional[str] = None

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        return _check_name(v)

    @field_validator("email")
    @classmethod
    def validate_email(cls, v: str) -> str:
        return _check_email(v)

    @field_validator("phone")
    @classmethod
    def validate_phone(cls, v: str) -> str:
        return _check_phone(v)

    @field_validator("message")
    @classmethod
    def validate_message(cls, v: Optional[str]) -> Optional[str]:
        if not v:
            return None
        if len(v) > MESSAGE_MAX:
            raise ValueError(f"Message cannot exceed {MESSAGE_MAX} characters")
        return v


class StoredSubmission(BaseModel):
    """Form submission as persisted by the submission store."""

    id: UUID = Field(default_factory=uuid4)
    form_type: FormType
    name: str
    email: str
    phone: Optional[str] = None
    message: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    email_sent: bool = False
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=datetime.now)


def validation_errors(exc: ValidationError) -> List[Dict[str, str]]:
    """Flatten a pydantic ValidationError into field/message pairs for API responses."""
    errors = []
    for error in exc.errors():
        field = str(error["loc"][0]) if error.get("loc") else "body"
        if error["type"] == "missing":
            message = f"{field.capitalize()} is required"
        else:
            message = error["msg"]
            if message.startswith("Value error, "):
                message = message[len("Value error, "):]
        errors.append({"field": field, "message": message})
    return errors
