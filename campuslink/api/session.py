from __future__ import annotations

from datetime import timedelta
from typing import Optional

from fastapi import Request, Response

from campuslink.config import Settings
from campuslink.storage.models import utcnow

SESSION_COOKIE = "token"
_LOGOUT_COOKIE_SECONDS = 10


def extract_token(request: Request) -> Optional[str]:
    """Find the session token in the request.

    Precedence: ``Authorization: Bearer``, then ``x-auth-token``, then the
    session cookie. A cookie holding the logout placeholder counts as absent.
    """
    authorization = request.headers.get("authorization")
    if authorization:
        scheme, _, value = authorization.partition(" ")
        if scheme.lower() == "bearer" and value.strip():
            return value.strip()
    header_token = request.headers.get("x-auth-token")
    if header_token and header_token.strip():
        return header_token.strip()
    cookie_token = request.cookies.get(SESSION_COOKIE)
    if cookie_token and cookie_token != "none":
        return cookie_token
    return None


def apply_session_cookie(response: Response, token: str, settings: Settings) -> None:
    response.set_cookie(
        SESSION_COOKIE,
        token,
        httponly=True,
        secure=settings.is_production,
        samesite="strict",
        expires=utcnow() + timedelta(days=settings.jwt_cookie_expire_days),
        path="/",
    )


def clear_session_cookie(response: Response, settings: Settings) -> None:
    response.set_cookie(
        SESSION_COOKIE,
        "none",
        httponly=True,
        secure=settings.is_production,
        samesite="strict",
        expires=utcnow() + timedelta(seconds=_LOGOUT_COOKIE_SECONDS),
        path="/",
    )
