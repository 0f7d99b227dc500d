from __future__ import annotations

import json
from datetime import datetime
from typing import Any, Dict, List, Optional

from psycopg import errors
from psycopg.rows import dict_row
from psycopg_pool import ConnectionPool

from campuslink.logging import get_logger
from campuslink.storage.errors import ConstraintViolation
from campuslink.storage.models import (
    AdminProfile,
    HostelInfo,
    NotificationPreferences,
    Preferences,
    StudentProfile,
    User,
    enforce_user_invariants,
    utcnow,
)

_USER_TABLE_DDL = """
CREATE TABLE IF NOT EXISTS app_user (
    id TEXT PRIMARY KEY,
    email TEXT NOT NULL,
    role TEXT NOT NULL CHECK (role IN ('student', 'admin')),
    student_id TEXT,
    first_name VARCHAR(50) NOT NULL,
    last_name VARCHAR(50) NOT NULL,
    department TEXT,
    year SMALLINT CHECK (year BETWEEN 1 AND 4),
    hostel_block TEXT,
    room_number TEXT,
    phone_number VARCHAR(10),
    avatar TEXT,
    bio TEXT,
    password_hash TEXT NOT NULL,
    is_active BOOLEAN NOT NULL DEFAULT TRUE,
    email_verified BOOLEAN NOT NULL DEFAULT FALSE,
    last_login TIMESTAMPTZ,
    preferences JSONB NOT NULL DEFAULT '{}'::jsonb,
    reset_password_token TEXT,
    reset_password_expire TIMESTAMPTZ,
    email_verification_token TEXT,
    email_verification_expire TIMESTAMPTZ,
    created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),
    CONSTRAINT app_user_email_key UNIQUE (email),
    CONSTRAINT app_user_student_id_key UNIQUE (student_id)
);
CREATE INDEX IF NOT EXISTS app_user_role_idx ON app_user (role);
CREATE INDEX IF NOT EXISTS app_user_reset_token_idx ON app_user (reset_password_token);
CREATE INDEX IF NOT EXISTS app_user_verification_token_idx ON app_user (email_verification_token);
"""

_USER_COLUMNS = (
    "id",
    "email",
    "role",
    "student_id",
    "first_name",
    "last_name",
    "department",
    "year",
    "hostel_block",
    "room_number",
    "phone_number",
    "avatar",
    "bio",
    "password_hash",
    "is_active",
    "email_verified",
    "last_login",
    "preferences",
    "reset_password_token",
    "reset_password_expire",
    "email_verification_token",
    "email_verification_expire",
    "created_at",
    "updated_at",
)

_CONSTRAINT_FIELDS = {
    "app_user_email_key": "email",
    "app_user_student_id_key": "student_id",
}


def _preferences_to_json(prefs: Preferences) -> str:
    return json.dumps(
        {
            "notifications": {
                "email": prefs.notifications.email,
                "push": prefs.notifications.push,
                "announcements": prefs.notifications.announcements,
                "complaints": prefs.notifications.complaints,
            },
            "theme": prefs.theme,
        }
    )


def _preferences_from_row(raw: Any) -> Preferences:
    if isinstance(raw, str):
        raw = json.loads(raw)
    raw = raw or {}
    notifications = raw.get("notifications") or {}
    return Preferences(
        notifications=NotificationPreferences(
            email=notifications.get("email", True),
            push=notifications.get("push", True),
            announcements=notifications.get("announcements", True),
            complaints=notifications.get("complaints", True),
        ),
        theme=raw.get("theme", "system"),
    )


def _user_params(user: User) -> Dict[str, Any]:
    profile = user.profile
    student = isinstance(profile, StudentProfile)
    return {
        "id": user.id,
        "email": user.email,
        "role": user.role,
        "student_id": profile.student_id if student else None,
        "first_name": user.first_name,
        "last_name": user.last_name,
        "department": profile.department,
        "year": profile.year if student else None,
        "hostel_block": profile.hostel.block if student else None,
        "room_number": profile.hostel.room_number if student else None,
        "phone_number": user.phone_number,
        "avatar": user.avatar,
        "bio": user.bio,
        "password_hash": user.password_hash,
        "is_active": user.is_active,
        "email_verified": user.email_verified,
        "last_login": user.last_login,
        "preferences": _preferences_to_json(user.preferences),
        "reset_password_token": user.reset_password_token,
        "reset_password_expire": user.reset_password_expire,
        "email_verification_token": user.email_verification_token,
        "email_verification_expire": user.email_verification_expire,
        "created_at": user.created_at,
        "updated_at": user.updated_at,
    }


def _row_to_user(row: Dict[str, Any]) -> User:
    if row.get("role") == "student":
        profile: StudentProfile | AdminProfile = StudentProfile(
            student_id=row["student_id"],
            department=row["department"],
            year=row["year"],
            hostel=HostelInfo(block=row["hostel_block"], room_number=row["room_number"]),
        )
    else:
        profile = AdminProfile(department=row.get("department"))
    return User(
        id=str(row["id"]),
        email=row["email"],
        first_name=row["first_name"],
        last_name=row["last_name"],
        profile=profile,
        password_hash=row.get("password_hash"),
        phone_number=row.get("phone_number"),
        avatar=row.get("avatar"),
        bio=row.get("bio"),
        is_active=row.get("is_active", True),
        email_verified=row.get("email_verified", False),
        last_login=row.get("last_login"),
        preferences=_preferences_from_row(row.get("preferences")),
        reset_password_token=row.get("reset_password_token"),
        reset_password_expire=row.get("reset_password_expire"),
        email_verification_token=row.get("email_verification_token"),
        email_verification_expire=row.get("email_verification_expire"),
        created_at=row.get("created_at") or utcnow(),
        updated_at=row.get("updated_at") or utcnow(),
    )


def _constraint_violation(exc: errors.UniqueViolation) -> ConstraintViolation:
    constraint = getattr(getattr(exc, "diag", None), "constraint_name", None)
    field = _CONSTRAINT_FIELDS.get(constraint or "", "email")
    label = "student ID" if field == "student_id" else field
    return ConstraintViolation(f"{label} already exists", {"field": field})


class PostgresStore:
    """Postgres-backed credential store."""

    def __init__(self, dsn: str, *, ensure_schema: bool = True) -> None:
        self.dsn = dsn
        self.logger = get_logger(__name__)
        self.pool = ConnectionPool(
            self.dsn,
            min_size=2,
            max_size=10,
            kwargs={"row_factory": dict_row, "autocommit": False},
        )
        if ensure_schema:
            self._ensure_user_table()

    def _connect(self):
        return self.pool.connection()

    def _ensure_user_table(self) -> None:
        """Create the ``app_user`` table and its indexes if they are missing."""

        with self._connect() as conn:
            conn.execute(_USER_TABLE_DDL)
        self.logger.info("user_table_ready")

    def verify_connection(self) -> None:
        with self._connect() as conn:
            conn.execute("SELECT 1").fetchone()

    def close(self) -> None:
        self.pool.close()

    def create_user(self, user: User) -> User:
        enforce_user_invariants(user)
        params = _user_params(user)
        columns = ", ".join(_USER_COLUMNS)
        placeholders = ", ".join(f"%({c})s" for c in _USER_COLUMNS)
        try:
            with self._connect() as conn:
                conn.execute(
                    f"INSERT INTO app_user ({columns}) VALUES ({placeholders})",
                    params,
                )
        except errors.UniqueViolation as exc:
            raise _constraint_violation(exc) from exc
        return user

    def save_user(self, user: User) -> User:
        enforce_user_invariants(user)
        params = _user_params(user)
        assignments = ", ".join(
            f"{c} = %({c})s" for c in _USER_COLUMNS if c not in ("id", "created_at")
        )
        try:
            with self._connect() as conn:
                cur = conn.execute(
                    f"UPDATE app_user SET {assignments} WHERE id = %(id)s", params
                )
                if cur.rowcount == 0:
                    raise KeyError(user.id)
        except errors.UniqueViolation as exc:
            raise _constraint_violation(exc) from exc
        return user

    def _fetch_one(self, query: str, params: tuple) -> Optional[User]:
        with self._connect() as conn:
            row = conn.execute(query, params).fetchone()
        if not row:
            return None
        return _row_to_user(row)

    def get_user(self, user_id: str) -> Optional[User]:
        return self._fetch_one("SELECT * FROM app_user WHERE id = %s", (user_id,))

    def get_user_by_email(self, email: str) -> Optional[User]:
        return self._fetch_one(
            "SELECT * FROM app_user WHERE email = %s", (email.strip().lower(),)
        )

    def get_user_by_student_id(self, student_id: str) -> Optional[User]:
        return self._fetch_one(
            "SELECT * FROM app_user WHERE student_id = %s", (student_id,)
        )

    def claim_reset_token(
        self, token_hash: str, now: Optional[datetime] = None
    ) -> Optional[User]:
        """Clear a live reset secret in one statement so it cannot be replayed."""
        now = now or utcnow()
        return self._fetch_one(
            """
            UPDATE app_user
               SET reset_password_token = NULL,
                   reset_password_expire = NULL,
                   updated_at = %s
             WHERE reset_password_token = %s AND reset_password_expire > %s
            RETURNING *
            """,
            (now, token_hash, now),
        )

    def claim_verification_token(
        self, token_hash: str, now: Optional[datetime] = None
    ) -> Optional[User]:
        now = now or utcnow()
        return self._fetch_one(
            """
            UPDATE app_user
               SET email_verification_token = NULL,
                   email_verification_expire = NULL,
                   updated_at = %s
             WHERE email_verification_token = %s AND email_verification_expire > %s
            RETURNING *
            """,
            (now, token_hash, now),
        )

    def list_users(self, role: Optional[str] = None, limit: int = 100) -> List[User]:
        with self._connect() as conn:
            if role:
                rows = conn.execute(
                    "SELECT * FROM app_user WHERE role = %s ORDER BY created_at DESC LIMIT %s",
                    (role, limit),
                ).fetchall()
            else:
                rows = conn.execute(
                    "SELECT * FROM app_user ORDER BY created_at DESC LIMIT %s",
                    (limit,),
                ).fetchall()
        return [_row_to_user(row) for row in rows]
