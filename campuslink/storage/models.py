from __future__ import annotations

import re
import unicodedata
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, ClassVar, Dict, Optional, Union

from campuslink.storage.errors import InvariantViolation

ROLES = ("student", "admin")
THEMES = ("light", "dark", "system")

_PHONE_PATTERN = re.compile(r"^[0-9]{10}$")
_NAME_MAX = 50


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def normalize_text(value: str) -> str:
    """NFKC-normalize ``value`` after stripping zero-width and bidi override characters."""
    zero_width = "\u200b\u200c\u200d\ufeff"
    bidi_overrides = {chr(c) for c in range(0x202A, 0x202F)}
    bidi_overrides.update(chr(c) for c in range(0x2066, 0x206A))
    cleaned = "".join(c for c in value if c not in zero_width and c not in bidi_overrides)
    return unicodedata.normalize("NFKC", cleaned)


def normalize_email(value: str) -> str:
    """The canonical form an address is stored and looked up under."""
    return normalize_text(value.strip().lower()).strip().lower()


@dataclass
class HostelInfo:
    block: str
    room_number: str


@dataclass
class StudentProfile:
    """Attributes every student account must carry."""

    student_id: str
    department: str
    year: int
    hostel: HostelInfo
    role: ClassVar[str] = "student"


@dataclass
class AdminProfile:
    department: Optional[str] = None
    role: ClassVar[str] = "admin"


Profile = Union[StudentProfile, AdminProfile]


@dataclass
class NotificationPreferences:
    email: bool = True
    push: bool = True
    announcements: bool = True
    complaints: bool = True


@dataclass
class Preferences:
    notifications: NotificationPreferences = field(default_factory=NotificationPreferences)
    theme: str = "system"


@dataclass
class User:
    id: str
    email: str
    first_name: str
    last_name: str
    profile: Profile
    password_hash: Optional[str] = None
    phone_number: Optional[str] = None
    avatar: Optional[str] = None
    bio: Optional[str] = None
    is_active: bool = True
    email_verified: bool = False
    last_login: Optional[datetime] = None
    preferences: Preferences = field(default_factory=Preferences)
    reset_password_token: Optional[str] = None
    reset_password_expire: Optional[datetime] = None
    email_verification_token: Optional[str] = None
    email_verification_expire: Optional[datetime] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @property
    def role(self) -> str:
        return self.profile.role

    @property
    def is_admin(self) -> bool:
        return isinstance(self.profile, AdminProfile)

    @property
    def student_id(self) -> Optional[str]:
        if isinstance(self.profile, StudentProfile):
            return self.profile.student_id
        return None

    @property
    def department(self) -> Optional[str]:
        return self.profile.department

    @property
    def hostel_block(self) -> Optional[str]:
        if isinstance(self.profile, StudentProfile):
            return self.profile.hostel.block
        return None

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"

    def set_reset_token(self, token_hash: str, expires_at: datetime) -> None:
        self.reset_password_token = token_hash
        self.reset_password_expire = expires_at

    def clear_reset_token(self) -> None:
        self.reset_password_token = None
        self.reset_password_expire = None

    def set_verification_token(self, token_hash: str, expires_at: datetime) -> None:
        self.email_verification_token = token_hash
        self.email_verification_expire = expires_at

    def clear_verification_token(self) -> None:
        self.email_verification_token = None
        self.email_verification_expire = None

    def public_dict(self) -> Dict[str, Any]:
        """External representation; never includes the hash or one-time secrets."""
        profile = self.profile
        data: Dict[str, Any] = {
            "id": self.id,
            "email": self.email,
            "role": self.role,
            "firstName": self.first_name,
            "lastName": self.last_name,
            "fullName": self.full_name,
            "department": profile.department,
            "studentId": None,
            "year": None,
            "hostelInfo": None,
            "phoneNumber": self.phone_number,
            "avatar": self.avatar,
            "bio": self.bio,
            "isActive": self.is_active,
            "emailVerified": self.email_verified,
            "lastLogin": self.last_login,
            "preferences": {
                "notifications": {
                    "email": self.preferences.notifications.email,
                    "push": self.preferences.notifications.push,
                    "announcements": self.preferences.notifications.announcements,
                    "complaints": self.preferences.notifications.complaints,
                },
                "theme": self.preferences.theme,
            },
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }
        if isinstance(profile, StudentProfile):
            data["studentId"] = profile.student_id
            data["year"] = profile.year
            data["hostelInfo"] = {
                "block": profile.hostel.block,
                "roomNumber": profile.hostel.room_number,
            }
        return data


def _require_text(value: Optional[str], name: str, *, max_length: Optional[int] = None) -> None:
    if not value or not value.strip():
        raise InvariantViolation(f"{name} is required", {"field": name})
    if max_length is not None and len(value) > max_length:
        raise InvariantViolation(
            f"{name} cannot be more than {max_length} characters", {"field": name}
        )


def _check_pair(token: Optional[str], expires: Optional[datetime], name: str) -> None:
    if (token is None) != (expires is None):
        raise InvariantViolation(
            f"{name} token and expiry must be set and cleared together", {"field": name}
        )


def enforce_user_invariants(user: User, *, now: Optional[datetime] = None) -> User:
    """Validate and normalize a user record immediately before it is written.

    Stores call this on every create and save. It lowercases the email, rejects
    records whose password is missing or not an argon2 digest, keeps the
    reset/verification pairs consistent, checks the student profile, and
    stamps ``updated_at``.
    """
    user.email = (user.email or "").strip().lower()
    if "@" not in user.email:
        raise InvariantViolation("Please enter a valid email", {"field": "email"})
    if not user.password_hash or not user.password_hash.startswith("$argon2"):
        raise InvariantViolation(
            "password must be hashed before persistence", {"field": "password"}
        )
    _require_text(user.first_name, "firstName", max_length=_NAME_MAX)
    _require_text(user.last_name, "lastName", max_length=_NAME_MAX)
    user.first_name = user.first_name.strip()
    user.last_name = user.last_name.strip()

    profile = user.profile
    if isinstance(profile, StudentProfile):
        _require_text(profile.student_id, "studentId")
        _require_text(profile.department, "department")
        _require_text(profile.hostel.block, "hostelInfo.block")
        _require_text(profile.hostel.room_number, "hostelInfo.roomNumber")
        if not isinstance(profile.year, int) or not 1 <= profile.year <= 4:
            raise InvariantViolation("year must be between 1 and 4", {"field": "year"})
        profile.student_id = profile.student_id.strip()
    elif not isinstance(profile, AdminProfile):
        raise InvariantViolation("unknown profile type", {"field": "role"})

    if user.phone_number is not None and not _PHONE_PATTERN.match(user.phone_number):
        raise InvariantViolation(
            "Please enter a valid 10-digit phone number", {"field": "phoneNumber"}
        )
    if user.preferences.theme not in THEMES:
        raise InvariantViolation("invalid theme", {"field": "preferences.theme"})

    _check_pair(user.reset_password_token, user.reset_password_expire, "reset")
    _check_pair(
        user.email_verification_token, user.email_verification_expire, "verification"
    )
    user.updated_at = now or utcnow()
    return user
