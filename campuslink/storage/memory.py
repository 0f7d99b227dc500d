from __future__ import annotations

import copy
import threading
from datetime import datetime
from typing import Dict, List, Optional

from campuslink.logging import get_logger
from campuslink.storage.errors import ConstraintViolation
from campuslink.storage.models import User, enforce_user_invariants, utcnow


class MemoryStore:
    """In-process credential store for tests and single-node development.

    Records are copied on the way in and out so callers only observe changes
    they have explicitly saved.
    """

    def __init__(self) -> None:
        self.logger = get_logger(__name__)
        self.users: Dict[str, User] = {}
        # RLock for all data operations to ensure thread safety
        self._data_lock = threading.RLock()

    def _check_unique(self, user: User) -> None:
        for existing in self.users.values():
            if existing.id == user.id:
                continue
            if existing.email == user.email:
                raise ConstraintViolation("email already exists", {"field": "email"})
            if user.student_id and existing.student_id == user.student_id:
                raise ConstraintViolation(
                    "student ID already exists", {"field": "student_id"}
                )

    def create_user(self, user: User) -> User:
        with self._data_lock:
            enforce_user_invariants(user)
            if user.id in self.users:
                raise ConstraintViolation("user id already exists", {"field": "id"})
            self._check_unique(user)
            self.users[user.id] = copy.deepcopy(user)
            return copy.deepcopy(user)

    def save_user(self, user: User) -> User:
        with self._data_lock:
            if user.id not in self.users:
                raise KeyError(user.id)
            enforce_user_invariants(user)
            self._check_unique(user)
            self.users[user.id] = copy.deepcopy(user)
            return copy.deepcopy(user)

    def get_user(self, user_id: str) -> Optional[User]:
        with self._data_lock:
            user = self.users.get(user_id)
            return copy.deepcopy(user) if user else None

    def get_user_by_email(self, email: str) -> Optional[User]:
        normalized = email.strip().lower()
        with self._data_lock:
            for user in self.users.values():
                if user.email == normalized:
                    return copy.deepcopy(user)
        return None

    def get_user_by_student_id(self, student_id: str) -> Optional[User]:
        with self._data_lock:
            for user in self.users.values():
                if user.student_id == student_id:
                    return copy.deepcopy(user)
        return None

    def claim_reset_token(
        self, token_hash: str, now: Optional[datetime] = None
    ) -> Optional[User]:
        """Atomically find the live reset secret and clear it."""
        now = now or utcnow()
        with self._data_lock:
            for user in self.users.values():
                if (
                    user.reset_password_token == token_hash
                    and user.reset_password_expire is not None
                    and user.reset_password_expire > now
                ):
                    user.clear_reset_token()
                    user.updated_at = now
                    return copy.deepcopy(user)
        return None

    def claim_verification_token(
        self, token_hash: str, now: Optional[datetime] = None
    ) -> Optional[User]:
        now = now or utcnow()
        with self._data_lock:
            for user in self.users.values():
                if (
                    user.email_verification_token == token_hash
                    and user.email_verification_expire is not None
                    and user.email_verification_expire > now
                ):
                    user.clear_verification_token()
                    user.updated_at = now
                    return copy.deepcopy(user)
        return None

    def list_users(self, role: Optional[str] = None, limit: int = 100) -> List[User]:
        with self._data_lock:
            users = [
                u for u in self.users.values() if role is None or u.role == role
            ]
            users.sort(key=lambda u: u.created_at, reverse=True)
            return [copy.deepcopy(u) for u in users[:limit]]
