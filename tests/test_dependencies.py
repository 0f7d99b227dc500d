"""Tests for the authentication and authorization dependency chain."""

import asyncio
from typing import Optional

import pytest
from fastapi import Depends, FastAPI
from fastapi.testclient import TestClient
from starlette.requests import Request

from campuslink.api.dependencies import (
    department_access,
    get_current_user,
    hostel_access,
    optional_user,
    owner_or_admin,
    require_roles,
)
from campuslink.api.error_handling import register_exception_handlers
from campuslink.api.session import extract_token
from campuslink.service.auth import Registration
from campuslink.service.runtime import get_runtime
from campuslink.storage.models import HostelInfo, User


def _build_app() -> FastAPI:
    app = FastAPI()
    register_exception_handlers(app)

    @app.get("/me")
    async def me(user: User = Depends(get_current_user)):
        return {"id": user.id}

    @app.get("/feed")
    async def feed(user: Optional[User] = Depends(optional_user)):
        return {"id": user.id if user else None}

    @app.get("/admin-only")
    async def admin_only(user: User = Depends(require_roles("admin"))):
        return {"id": user.id}

    @app.get("/staff")
    async def staff(user: User = Depends(require_roles("admin", "student"))):
        return {"id": user.id}

    @app.get("/users/{userId}")
    async def user_detail(user: User = Depends(owner_or_admin())):
        return {"id": user.id}

    @app.post("/owned")
    async def owned(user: User = Depends(owner_or_admin())):
        return {"id": user.id}

    @app.get("/department")
    async def department(user: User = Depends(department_access())):
        return {"id": user.id}

    @app.get("/hostel")
    async def hostel(user: User = Depends(hostel_access())):
        return {"id": user.id}

    return app


@pytest.fixture
def client():
    return TestClient(_build_app())


async def _register(**fields):
    base = dict(password="Secret123", first_name="Test", last_name="User")
    base.update(fields)
    return await get_runtime().auth.register(Registration(**base))


@pytest.fixture
def student():
    return asyncio.run(
        _register(
            email="student@campus.edu",
            student_id="CS1",
            department="Physics",
            year=1,
            hostel=HostelInfo(block="C", room_number="12"),
        )
    )


@pytest.fixture
def admin():
    return asyncio.run(_register(email="admin@x.edu", role="admin"))


def _bearer(result):
    return {"Authorization": f"Bearer {result.token}"}


class TestTokenExtraction:
    def _request(self, headers=None, cookie=None):
        raw_headers = [(k.lower().encode(), v.encode()) for k, v in (headers or {}).items()]
        if cookie:
            raw_headers.append((b"cookie", f"token={cookie}".encode()))
        return Request({"type": "http", "headers": raw_headers})

    def test_bearer_wins_over_legacy_header_and_cookie(self):
        request = self._request(
            {"Authorization": "Bearer from-bearer", "x-auth-token": "from-header"}, "from-cookie"
        )
        assert extract_token(request) == "from-bearer"

    def test_legacy_header_wins_over_cookie(self):
        request = self._request({"x-auth-token": "from-header"}, "from-cookie")
        assert extract_token(request) == "from-header"

    def test_cookie_used_last(self):
        assert extract_token(self._request(cookie="from-cookie")) == "from-cookie"

    def test_logout_placeholder_is_not_a_token(self):
        assert extract_token(self._request(cookie="none")) is None

    def test_non_bearer_scheme_is_ignored(self):
        assert extract_token(self._request({"Authorization": "Basic abc"})) is None


class TestAuthenticationChain:
    def test_missing_token(self, client):
        response = client.get("/me")
        assert response.status_code == 401
        assert response.json() == {
            "success": False,
            "message": "No token provided, authorization denied",
            "code": "no_token",
        }

    def test_valid_token(self, client, student):
        response = client.get("/me", headers=_bearer(student))
        assert response.status_code == 200
        assert response.json()["id"] == student.user.id

    def test_garbage_token(self, client):
        response = client.get("/me", headers={"Authorization": "Bearer junk"})
        assert response.status_code == 401
        assert response.json()["message"] == "Invalid token"

    def test_deactivated_subject(self, client, student):
        store = get_runtime().store
        user = store.get_user(student.user.id)
        user.is_active = False
        store.save_user(user)
        response = client.get("/me", headers=_bearer(student))
        assert response.status_code == 401
        assert response.json()["message"] == "User account is deactivated"

    def test_optional_user_proceeds_anonymously(self, client, student):
        assert client.get("/feed").json() == {"id": None}
        assert client.get("/feed", headers={"x-auth-token": "junk"}).json() == {"id": None}
        assert client.get("/feed", headers=_bearer(student)).json() == {"id": student.user.id}


class TestAuthorization:
    def test_role_check(self, client, student, admin):
        denied = client.get("/admin-only", headers=_bearer(student))
        assert denied.status_code == 403
        assert denied.json()["message"] == "Access denied. Required role: admin"
        assert client.get("/admin-only", headers=_bearer(admin)).status_code == 200
        assert client.get("/staff", headers=_bearer(student)).status_code == 200

    def test_owner_or_admin_from_path(self, client, student, admin):
        own = client.get(f"/users/{student.user.id}", headers=_bearer(student))
        assert own.status_code == 200
        other = client.get(f"/users/{admin.user.id}", headers=_bearer(student))
        assert other.status_code == 403
        assert other.json()["message"] == "Access denied. You can only access your own resources."
        assert client.get(f"/users/{student.user.id}", headers=_bearer(admin)).status_code == 200

    def test_owner_or_admin_from_body_and_query(self, client, student):
        body = client.post("/owned", json={"userId": student.user.id}, headers=_bearer(student))
        assert body.status_code == 200
        query = client.post(f"/owned?userId={student.user.id}", headers=_bearer(student))
        assert query.status_code == 200
        missing = client.post("/owned", json={}, headers=_bearer(student))
        assert missing.status_code == 403

    def test_department_scope(self, client, student, admin):
        assert client.get("/department?department=Physics", headers=_bearer(student)).status_code == 200
        assert client.get("/department", headers=_bearer(student)).status_code == 200
        denied = client.get("/department?department=Chemistry", headers=_bearer(student))
        assert denied.status_code == 403
        assert denied.json()["code"] == "scope_denied"
        assert client.get("/department?department=Chemistry", headers=_bearer(admin)).status_code == 200

    def test_hostel_scope(self, client, student, admin):
        assert client.get("/hostel?hostelBlock=C", headers=_bearer(student)).status_code == 200
        assert client.get("/hostel?hostelBlock=D", headers=_bearer(student)).status_code == 403
        assert client.get("/hostel?hostelBlock=D", headers=_bearer(admin)).status_code == 200
