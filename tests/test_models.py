from datetime import timedelta

import pytest

from campuslink.storage.errors import InvariantViolation
from campuslink.storage.models import (
    HostelInfo,
    enforce_user_invariants,
    normalize_email,
    utcnow,
)
from tests.factories import ARGON_HASH, make_admin, make_student


class TestUserInvariants:
    def test_normalizes_email_and_stamps_updated_at(self):
        user = make_student()
        before = utcnow()
        enforce_user_invariants(user)
        assert user.email == "student@campus.edu"
        assert user.updated_at >= before

    def test_rejects_unhashed_password(self):
        with pytest.raises(InvariantViolation) as exc:
            enforce_user_invariants(make_student(password_hash="Secret123"))
        assert exc.value.detail == {"field": "password"}

    def test_rejects_missing_password(self):
        with pytest.raises(InvariantViolation):
            enforce_user_invariants(make_admin(password_hash=None))

    def test_student_requires_year_in_range(self):
        user = make_student()
        user.profile.year = 5
        with pytest.raises(InvariantViolation):
            enforce_user_invariants(user)

    def test_student_requires_hostel_block(self):
        user = make_student()
        user.profile.hostel = HostelInfo(block="", room_number="101")
        with pytest.raises(InvariantViolation):
            enforce_user_invariants(user)

    def test_admin_needs_no_student_fields(self):
        enforce_user_invariants(make_admin())

    def test_name_length_limit(self):
        with pytest.raises(InvariantViolation):
            enforce_user_invariants(make_admin(first_name="x" * 51))

    @pytest.mark.parametrize("phone", ["12345", "123456789a", "12345678901"])
    def test_phone_must_be_ten_digits(self, phone):
        with pytest.raises(InvariantViolation):
            enforce_user_invariants(make_admin(phone_number=phone))

    def test_reset_pair_must_be_set_together(self):
        user = make_admin(reset_password_token="abc")
        with pytest.raises(InvariantViolation):
            enforce_user_invariants(user)
        user.set_reset_token("abc", utcnow() + timedelta(hours=1))
        enforce_user_invariants(user)
        user.clear_reset_token()
        enforce_user_invariants(user)

    def test_verification_pair_must_be_set_together(self):
        user = make_admin(email_verification_expire=utcnow())
        with pytest.raises(InvariantViolation):
            enforce_user_invariants(user)


class TestPublicDict:
    def test_omits_credentials_and_secrets(self):
        user = make_student()
        user.set_reset_token("reset-hash", utcnow())
        user.set_verification_token("verify-hash", utcnow())
        data = user.public_dict()
        flat = repr(data)
        assert "password" not in " ".join(data)
        assert ARGON_HASH not in flat
        assert "reset-hash" not in flat
        assert "verify-hash" not in flat

    def test_student_fields_are_camel_cased(self):
        data = make_student().public_dict()
        assert data["role"] == "student"
        assert data["studentId"] == "CS2024001"
        assert data["hostelInfo"] == {"block": "A", "roomNumber": "101"}
        assert data["fullName"] == "Sam Lee"

    def test_admin_has_no_student_fields(self):
        data = make_admin().public_dict()
        assert data["role"] == "admin"
        assert data["studentId"] is None
        assert data["hostelInfo"] is None

    def test_profile_helpers(self):
        student, admin = make_student(), make_admin()
        assert not student.is_admin and admin.is_admin
        assert student.hostel_block == "A"
        assert admin.hostel_block is None
        assert admin.student_id is None


def test_normalize_email_folds_compatibility_characters():
    assert normalize_email("  ＡＤＭＩＮ@x.edu ") == "admin@x.edu"
    assert normalize_email("stu\u200bdent@Campus.edu") == "student@campus.edu"
