from __future__ import annotations

import asyncio
import secrets
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, List, Mapping, Optional, Protocol

from argon2 import PasswordHasher, Type
from argon2.exceptions import InvalidHash, VerificationError, VerifyMismatchError

from campuslink.config import Settings
from campuslink.logging import email_digest, get_logger
from campuslink.service.email import EmailService
from campuslink.service.errors import (
    AccountDeactivatedError,
    AuthenticationError,
    DuplicateIdentityError,
    InvalidCredentialsError,
    InvalidOrExpiredTokenError,
    NoTokenError,
    NotFoundError,
    RoleDeniedError,
    ServerError,
    SubjectNotFoundError,
    ValidationError,
)
from campuslink.service.tokens import TokenService
from campuslink.storage.errors import ConstraintViolation, InvariantViolation
from campuslink.storage.models import (
    AdminProfile,
    HostelInfo,
    Preferences,
    StudentProfile,
    THEMES,
    User,
    normalize_email,
    utcnow,
)

logger = get_logger(__name__)

_DUPLICATE_MESSAGES = {
    "email": "User with this email already exists",
    "student_id": "User with this student ID already exists",
}
_MIN_PASSWORD_LENGTH = 6
_NOTIFICATION_KEYS = ("email", "push", "announcements", "complaints")


class AuthStore(Protocol):
    def create_user(self, user: User) -> User: ...

    def save_user(self, user: User) -> User: ...

    def get_user(self, user_id: str) -> Optional[User]: ...

    def get_user_by_email(self, email: str) -> Optional[User]: ...

    def get_user_by_student_id(self, student_id: str) -> Optional[User]: ...

    def claim_reset_token(
        self, token_hash: str, now: Optional[datetime] = None
    ) -> Optional[User]: ...

    def claim_verification_token(
        self, token_hash: str, now: Optional[datetime] = None
    ) -> Optional[User]: ...

    def list_users(self, role: Optional[str] = None, limit: int = 100) -> List[User]: ...


@dataclass
class Registration:
    email: str
    password: str
    first_name: str
    last_name: str
    role: str = "student"
    student_id: Optional[str] = None
    department: Optional[str] = None
    year: Optional[int] = None
    hostel: Optional[HostelInfo] = None
    phone_number: Optional[str] = None


@dataclass
class AuthResult:
    """An authenticated user together with a freshly issued session token."""

    user: User
    token: str


class AuthService:
    """Credential lifecycle and session issuance for CampusLink accounts."""

    def __init__(
        self,
        store: AuthStore,
        settings: Settings,
        *,
        email: Optional[EmailService] = None,
        tokens: Optional[TokenService] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store: AuthStore = store
        self.settings = settings
        self.email = email or EmailService(
            base_url=settings.app_base_url,
            reset_ttl_minutes=settings.reset_token_ttl_minutes,
            verification_ttl_hours=settings.verification_token_ttl_hours,
        )
        self.tokens = tokens or TokenService.from_settings(settings)
        self._now = clock
        self._pwd_hasher = PasswordHasher(type=Type.ID)
        self._dummy_hash: Optional[str] = None
        self.logger = logger

    # -- credential store operations -------------------------------------

    def _hash_password(self, password: str) -> str:
        return self._pwd_hasher.hash(password)

    def _verify_hash(self, stored_hash: str, candidate: str) -> bool:
        try:
            return self._pwd_hasher.verify(stored_hash, candidate)
        except (InvalidHash, VerifyMismatchError, VerificationError):
            return False

    async def verify_password(self, user: User, candidate: Optional[str]) -> bool:
        """Check ``candidate`` against the stored argon2id hash off the event loop."""
        if not candidate or not user.password_hash:
            return False
        ok = await asyncio.to_thread(self._verify_hash, user.password_hash, candidate)
        if not ok:
            self.logger.warning("password_verification_failed", user_id=user.id)
        return ok

    async def set_password(self, user: User, new_password: str) -> None:
        """Replace the stored hash. Persist the user afterwards with save_user."""
        self._check_password_policy(new_password)
        user.password_hash = await asyncio.to_thread(self._hash_password, new_password)

    async def _burn_verification_time(self, candidate: str) -> None:
        # Unknown emails still pay for one hash check
        if self._dummy_hash is None:
            self._dummy_hash = await asyncio.to_thread(
                self._hash_password, secrets.token_urlsafe(16)
            )
        await asyncio.to_thread(self._verify_hash, self._dummy_hash, candidate)

    @staticmethod
    def _check_password_policy(password: Optional[str]) -> None:
        if not password or len(password) < _MIN_PASSWORD_LENGTH:
            raise ValidationError(
                f"Password must be at least {_MIN_PASSWORD_LENGTH} characters",
                detail={"field": "password"},
            )
        if len(password) > 128:
            raise ValidationError(
                "Password must be at most 128 characters", detail={"field": "password"}
            )

    def _persist(self, user: User) -> User:
        try:
            return self.store.save_user(user)
        except InvariantViolation as exc:
            raise ValidationError(exc.message, detail=exc.detail) from exc
        except ConstraintViolation as exc:
            field = exc.field or "email"
            raise DuplicateIdentityError(
                _DUPLICATE_MESSAGES.get(field, exc.message), detail={"field": field}
            ) from exc

    async def _issue(self, user: User) -> AuthResult:
        token = await asyncio.to_thread(self.tokens.issue, user.id, role=user.role)
        return AuthResult(user=user, token=token)

    # -- request resolution -------------------------------------------------

    async def authenticate(self, token: Optional[str]) -> User:
        """Resolve a bearer token to an active user or raise the matching 401."""
        if not token:
            raise NoTokenError()
        claims = await asyncio.to_thread(self.tokens.verify, token)
        user = self.store.get_user(claims.subject_id)
        if not user:
            self.logger.warning("token_subject_missing", user_id=claims.subject_id)
            raise SubjectNotFoundError()
        if not user.is_active:
            raise AccountDeactivatedError()
        return user

    async def try_authenticate(self, token: Optional[str]) -> Optional[User]:
        if not token:
            return None
        try:
            return await self.authenticate(token)
        except AuthenticationError:
            return None

    # -- auth operations ---------------------------------------------------

    def _build_profile(self, data: Registration) -> StudentProfile | AdminProfile:
        if data.role == "admin":
            if not self.settings.allow_admin_registration:
                raise RoleDeniedError("Admin accounts cannot be self-registered")
            return AdminProfile(department=data.department)
        if data.role != "student":
            raise ValidationError("Role must be student or admin", detail={"field": "role"})
        missing = [
            name
            for name, value in (
                ("studentId", data.student_id),
                ("department", data.department),
                ("year", data.year),
                ("hostelInfo", data.hostel),
            )
            if value in (None, "")
        ]
        if missing:
            raise ValidationError(
                f"Missing required student fields: {', '.join(missing)}",
                detail={"fields": missing},
            )
        return StudentProfile(
            student_id=data.student_id,
            department=data.department,
            year=data.year,
            hostel=data.hostel,
        )

    async def register(self, data: Registration) -> AuthResult:
        email = normalize_email(data.email)
        student_id = data.student_id.strip() if data.student_id else data.student_id
        if self.store.get_user_by_email(email):
            raise DuplicateIdentityError(
                _DUPLICATE_MESSAGES["email"], detail={"field": "email"}
            )
        if student_id and self.store.get_user_by_student_id(student_id):
            raise DuplicateIdentityError(
                _DUPLICATE_MESSAGES["student_id"], detail={"field": "student_id"}
            )
        profile = self._build_profile(data)
        user = User(
            id=str(uuid.uuid4()),
            email=email,
            first_name=data.first_name,
            last_name=data.last_name,
            profile=profile,
            phone_number=data.phone_number,
            bio=f"{'Administrator' if profile.role == 'admin' else 'Student'} at "
            f"{data.department or 'the university'}",
        )
        await self.set_password(user, data.password)
        try:
            user = self.store.create_user(user)
        except ConstraintViolation as exc:
            # Lost a race against a concurrent registration
            field = exc.field or "email"
            raise DuplicateIdentityError(
                _DUPLICATE_MESSAGES.get(field, exc.message), detail={"field": field}
            ) from exc
        except InvariantViolation as exc:
            raise ValidationError(exc.message, detail=exc.detail) from exc
        self.logger.info("user_registered", user_id=user.id, role=user.role)
        return await self._issue(user)

    def send_welcome(self, user: User) -> None:
        """Best-effort welcome email; failures are logged and swallowed."""
        sent = self.email.send_welcome(user.email, user.first_name, user.role)
        if not sent:
            self.logger.warning("welcome_email_failed", user_id=user.id)

    async def login(self, email: Optional[str], password: Optional[str]) -> AuthResult:
        if not email or not password:
            raise ValidationError("Please provide an email and password")
        email = normalize_email(email)
        user = self.store.get_user_by_email(email)
        if not user:
            await self._burn_verification_time(password)
            self.logger.info("login_failed", reason="unknown_email", email_hash=email_digest(email))
            raise InvalidCredentialsError()
        if not await self.verify_password(user, password):
            self.logger.info("login_failed", reason="bad_password", user_id=user.id)
            raise InvalidCredentialsError()
        if not user.is_active:
            self.logger.info("login_failed", reason="inactive", user_id=user.id)
            raise InvalidCredentialsError()
        user.last_login = self._now()
        user = self._persist(user)
        self.logger.info("login_succeeded", user_id=user.id)
        return await self._issue(user)

    async def refresh(self, user: User) -> AuthResult:
        return await self._issue(user)

    async def update_details(self, user: User, changes: Mapping[str, Any]) -> User:
        """Patch profile fields. Password, role and email are never touched here."""
        for name in ("first_name", "last_name", "phone_number", "avatar", "bio"):
            if name in changes:
                setattr(user, name, changes[name])
        profile = user.profile
        if "department" in changes:
            profile.department = changes["department"]
        student_only = [k for k in ("year", "hostel") if k in changes]
        if student_only and not isinstance(profile, StudentProfile):
            raise ValidationError(
                "Year and hostel details apply to student accounts only",
                detail={"fields": student_only},
            )
        if isinstance(profile, StudentProfile):
            if "year" in changes:
                profile.year = changes["year"]
            if "hostel" in changes:
                hostel = changes["hostel"]
                profile.hostel = HostelInfo(
                    block=hostel.get("block", profile.hostel.block),
                    room_number=hostel.get("room_number", profile.hostel.room_number),
                )
        if "preferences" in changes:
            user.preferences = _merge_preferences(user.preferences, changes["preferences"])
        user = self._persist(user)
        self.logger.info("user_details_updated", user_id=user.id, fields=sorted(changes))
        return user

    async def update_password(
        self, user: User, current_password: Optional[str], new_password: Optional[str]
    ) -> AuthResult:
        if not current_password or not new_password:
            raise ValidationError("Please provide current and new password")
        if not await self.verify_password(user, current_password):
            raise InvalidCredentialsError("Current password is incorrect")
        await self.set_password(user, new_password)
        user = self._persist(user)
        self.logger.info("password_updated", user_id=user.id)
        return await self._issue(user)

    async def _dispatch_email(self, send: Callable[..., bool], *args: Any) -> bool:
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(send, *args),
                self.settings.email_send_timeout_seconds,
            )
        except asyncio.TimeoutError:
            self.logger.error(
                "email_dispatch_timeout", timeout=self.settings.email_send_timeout_seconds
            )
            return False

    async def forgot_password(self, email: Optional[str]) -> bool:
        """Mail a reset link. Returns False when the email is not registered."""
        if not email:
            raise ValidationError("Please provide an email")
        email = normalize_email(email)
        user = self.store.get_user_by_email(email)
        if not user:
            self.logger.info("password_reset_unknown_email", email_hash=email_digest(email))
            if self.settings.forgot_password_reveals_unknown_email:
                raise NotFoundError("No user found with that email address")
            return False
        secret = self.tokens.issue_one_time_secret()
        expires_at = self._now() + timedelta(minutes=self.settings.reset_token_ttl_minutes)
        user.set_reset_token(self.tokens.hash_for_storage(secret), expires_at)
        user = self._persist(user)
        sent = await self._dispatch_email(self.email.send_password_reset, user.email, secret)
        if not sent:
            user.clear_reset_token()
            self._persist(user)
            self.logger.error("password_reset_email_failed", user_id=user.id)
            raise ServerError("Email could not be sent")
        self.logger.info("password_reset_requested", user_id=user.id)
        return True

    async def reset_password(self, token: Optional[str], new_password: Optional[str]) -> AuthResult:
        if not new_password:
            raise ValidationError("Please provide a new password")
        self._check_password_policy(new_password)
        user = None
        if token:
            user = self.store.claim_reset_token(
                self.tokens.hash_for_storage(token), self._now()
            )
        if not user:
            self.logger.warning("password_reset_invalid_token")
            raise InvalidOrExpiredTokenError("Invalid or expired reset token")
        await self.set_password(user, new_password)
        user = self._persist(user)
        self.logger.info("password_reset_completed", user_id=user.id)
        return await self._issue(user)

    async def verify_email(self, token: Optional[str]) -> User:
        user = None
        if token:
            user = self.store.claim_verification_token(
                self.tokens.hash_for_storage(token), self._now()
            )
        if not user:
            self.logger.warning("email_verification_invalid_token")
            raise InvalidOrExpiredTokenError("Invalid or expired verification token")
        user.email_verified = True
        user = self._persist(user)
        self.logger.info("email_verified", user_id=user.id)
        return user

    async def resend_verification(self, user: User) -> None:
        if user.email_verified:
            raise ValidationError("Email is already verified")
        secret = self.tokens.issue_one_time_secret()
        expires_at = self._now() + timedelta(hours=self.settings.verification_token_ttl_hours)
        user.set_verification_token(self.tokens.hash_for_storage(secret), expires_at)
        user = self._persist(user)
        sent = await self._dispatch_email(self.email.send_email_verification, user.email, secret)
        if not sent:
            user.clear_verification_token()
            self._persist(user)
            self.logger.error("verification_email_failed", user_id=user.id)
            raise ServerError("Email could not be sent")
        self.logger.info("email_verification_requested", user_id=user.id)

    async def deactivate(self, user: User, password: Optional[str]) -> User:
        if not password:
            raise ValidationError("Please provide your password to confirm deactivation")
        if not await self.verify_password(user, password):
            raise InvalidCredentialsError("Incorrect password")
        user.is_active = False
        user = self._persist(user)
        self.logger.info("account_deactivated", user_id=user.id)
        return user


def _merge_preferences(current: Preferences, patch: Mapping[str, Any]) -> Preferences:
    notifications = current.notifications
    for key, value in (patch.get("notifications") or {}).items():
        if key in _NOTIFICATION_KEYS and value is not None:
            setattr(notifications, key, bool(value))
    theme = patch.get("theme") or current.theme
    if theme not in THEMES:
        raise ValidationError(
            f"Theme must be one of: {', '.join(THEMES)}", detail={"field": "preferences.theme"}
        )
    return Preferences(notifications=notifications, theme=theme)
