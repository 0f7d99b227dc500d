from __future__ import annotations

import re
from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from campuslink.storage.models import normalize_email, normalize_text

_EMAIL_LOCAL_PART = re.compile(r"^[a-zA-Z0-9.!#$%&'*+/=?^_`{|}~-]+$")
_EMAIL_DOMAIN_LABEL = re.compile(r"^[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?$")
_PHONE_PATTERN = re.compile(r"^[0-9]{10}$")


def _validate_email(value: str) -> str:
    normalized = normalize_email(value)
    if len(normalized) > 254:
        raise ValueError("Email address is too long")
    local, sep, domain = normalized.partition("@")
    if not sep or not local or not domain or len(local) > 64:
        raise ValueError("Please provide a valid email")
    if not _EMAIL_LOCAL_PART.match(local):
        raise ValueError("Please provide a valid email")
    domain_parts = domain.split(".")
    if len(domain_parts) < 2:
        raise ValueError("Please provide a valid email")
    for label in domain_parts:
        if len(label) > 63 or not _EMAIL_DOMAIN_LABEL.match(label):
            raise ValueError("Please provide a valid email")
    return normalized


def _validate_password(value: str) -> str:
    if len(value) < 6:
        raise ValueError("Password must be at least 6 characters")
    if len(value) > 128:
        raise ValueError("Password must be at most 128 characters")
    return value


def _validate_name(value: Optional[str], label: str) -> Optional[str]:
    if value is None:
        return None
    cleaned = normalize_text(value).strip()
    if not cleaned:
        raise ValueError(f"Please provide a {label}")
    if len(cleaned) > 50:
        raise ValueError(f"{label.capitalize()} cannot be more than 50 characters")
    return cleaned


def _validate_phone(value: Optional[str]) -> Optional[str]:
    if value is None or value == "":
        return None
    if not _PHONE_PATTERN.match(value):
        raise ValueError("Please provide a valid 10-digit phone number")
    return value


class CamelModel(BaseModel):
    """Accepts camelCase keys on the wire and snake_case in Python."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class HostelInfoBody(CamelModel):
    block: str = Field(..., min_length=1)
    room_number: str = Field(..., min_length=1)


class HostelInfoPatch(CamelModel):
    block: Optional[str] = Field(default=None, min_length=1)
    room_number: Optional[str] = Field(default=None, min_length=1)


class NotificationPatch(CamelModel):
    email: Optional[bool] = None
    push: Optional[bool] = None
    announcements: Optional[bool] = None
    complaints: Optional[bool] = None


class PreferencesPatch(CamelModel):
    notifications: Optional[NotificationPatch] = None
    theme: Optional[Literal["light", "dark", "system"]] = None


class RegisterRequest(CamelModel):
    email: str
    password: str
    first_name: str
    last_name: str
    role: Literal["student", "admin"] = "student"
    student_id: Optional[str] = Field(default=None, min_length=1, max_length=64)
    department: Optional[str] = Field(default=None, min_length=1, max_length=100)
    year: Optional[int] = Field(default=None, ge=1, le=4)
    hostel_info: Optional[HostelInfoBody] = None
    phone_number: Optional[str] = None

    @field_validator("email")
    @classmethod
    def _check_email(cls, value: str) -> str:
        return _validate_email(value)

    @field_validator("password")
    @classmethod
    def _check_password(cls, value: str) -> str:
        return _validate_password(value)

    @field_validator("first_name")
    @classmethod
    def _check_first_name(cls, value: str) -> str:
        return _validate_name(value, "first name")

    @field_validator("last_name")
    @classmethod
    def _check_last_name(cls, value: str) -> str:
        return _validate_name(value, "last name")

    @field_validator("phone_number")
    @classmethod
    def _check_phone(cls, value: Optional[str]) -> Optional[str]:
        return _validate_phone(value)


class LoginRequest(CamelModel):
    # Missing credentials are reported by the login operation itself
    email: Optional[str] = None
    password: Optional[str] = None


class UpdateDetailsRequest(CamelModel):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone_number: Optional[str] = None
    department: Optional[str] = Field(default=None, min_length=1, max_length=100)
    year: Optional[int] = Field(default=None, ge=1, le=4)
    hostel_info: Optional[HostelInfoPatch] = None
    avatar: Optional[str] = Field(default=None, max_length=2048)
    bio: Optional[str] = Field(default=None, max_length=500)
    preferences: Optional[PreferencesPatch] = None

    @field_validator("first_name")
    @classmethod
    def _check_first_name(cls, value: Optional[str]) -> Optional[str]:
        return _validate_name(value, "first name")

    @field_validator("last_name")
    @classmethod
    def _check_last_name(cls, value: Optional[str]) -> Optional[str]:
        return _validate_name(value, "last name")

    @field_validator("phone_number")
    @classmethod
    def _check_phone(cls, value: Optional[str]) -> Optional[str]:
        return _validate_phone(value)

    def to_changes(self) -> Dict[str, Any]:
        """Only the fields the client actually sent, keyed for AuthService.update_details."""
        sent = self.model_dump(exclude_unset=True)
        changes: Dict[str, Any] = {}
        for name in ("first_name", "last_name", "phone_number", "department", "year", "avatar", "bio"):
            if name in sent and sent[name] is not None:
                changes[name] = sent[name]
        if "phone_number" in sent and sent["phone_number"] is None:
            changes["phone_number"] = None
        if sent.get("hostel_info"):
            changes["hostel"] = {k: v for k, v in sent["hostel_info"].items() if v is not None}
        if sent.get("preferences"):
            changes["preferences"] = sent["preferences"]
        return changes


class UpdatePasswordRequest(CamelModel):
    current_password: Optional[str] = None
    new_password: Optional[str] = None


class ForgotPasswordRequest(CamelModel):
    email: Optional[str] = None


class ResetPasswordRequest(CamelModel):
    new_password: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def _accept_password_key(cls, data: Any) -> Any:
        if isinstance(data, dict) and "newPassword" not in data and "new_password" not in data:
            if "password" in data:
                data = {**data, "newPassword": data["password"]}
        return data


class DeactivateRequest(CamelModel):
    password: Optional[str] = None


class MessageResponse(BaseModel):
    success: bool = True
    message: str


class UserEnvelope(BaseModel):
    success: bool = True
    user: Dict[str, Any]


class AuthResponse(BaseModel):
    success: bool = True
    token: str
    user: Dict[str, Any]
