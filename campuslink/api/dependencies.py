"""FastAPI dependencies that authenticate and authorize a request.

``get_current_user`` runs the full chain: extract the token, verify it, load
the subject and reject deactivated accounts. The factories below compose on
top of it and are meant to be used with ``Depends``.
"""

from __future__ import annotations

import json
from typing import Any, Awaitable, Callable, Optional

from fastapi import Depends, Request

from campuslink.api.session import extract_token
from campuslink.logging import bind_subject, get_logger
from campuslink.service.errors import NotOwnerError, RoleDeniedError, ScopeDeniedError
from campuslink.service.runtime import get_runtime
from campuslink.storage.models import User

logger = get_logger(__name__)


async def get_current_user(request: Request) -> User:
    runtime = get_runtime()
    user = await runtime.auth.authenticate(extract_token(request))
    request.state.user = user
    bind_subject(user.id, user.role)
    return user


async def optional_user(request: Request) -> Optional[User]:
    """Attach the subject when the request carries a usable token, otherwise None."""
    runtime = get_runtime()
    user = await runtime.auth.try_authenticate(extract_token(request))
    request.state.user = user
    if user is not None:
        bind_subject(user.id, user.role)
    return user


async def _json_body(request: Request) -> dict[str, Any]:
    if request.method in ("GET", "HEAD", "DELETE"):
        return {}
    try:
        body = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        return {}
    return body if isinstance(body, dict) else {}


async def _request_value(request: Request, field: str) -> Optional[str]:
    """Look ``field`` up in path params, then the JSON body, then the query string."""
    if field in request.path_params:
        return str(request.path_params[field])
    body = await _json_body(request)
    if body.get(field) is not None:
        return str(body[field])
    value = request.query_params.get(field)
    return value if value else None


def require_roles(*roles: str) -> Callable[..., Awaitable[User]]:
    allowed = frozenset(roles)

    async def dependency(user: User = Depends(get_current_user)) -> User:
        if user.role not in allowed:
            logger.warning("role_denied", user_id=user.id, role=user.role, allowed=sorted(allowed))
            raise RoleDeniedError(f"Access denied. Required role: {' or '.join(roles)}")
        return user

    return dependency


def owner_or_admin(field: str = "userId") -> Callable[..., Awaitable[User]]:
    async def dependency(request: Request, user: User = Depends(get_current_user)) -> User:
        if user.is_admin:
            return user
        if await _request_value(request, field) != user.id:
            logger.warning("owner_check_denied", user_id=user.id, field=field)
            raise NotOwnerError()
        return user

    return dependency


def department_access(field: str = "department") -> Callable[..., Awaitable[User]]:
    async def dependency(request: Request, user: User = Depends(get_current_user)) -> User:
        requested = await _request_value(request, field)
        if user.is_admin or requested is None or requested == user.department:
            return user
        logger.warning("department_scope_denied", user_id=user.id)
        raise ScopeDeniedError("Access denied. You can only access your department's resources.")

    return dependency


def hostel_access(field: str = "hostelBlock") -> Callable[..., Awaitable[User]]:
    async def dependency(request: Request, user: User = Depends(get_current_user)) -> User:
        requested = await _request_value(request, field)
        if user.is_admin or requested is None or requested == user.hostel_block:
            return user
        logger.warning("hostel_scope_denied", user_id=user.id)
        raise ScopeDeniedError("Access denied. You can only access your hostel's resources.")

    return dependency


def sensitive_op_limit(op_class: str) -> Callable[..., Awaitable[None]]:
    """Count one attempt of ``op_class`` for this client and (if known) subject."""

    async def dependency(
        request: Request, user: Optional[User] = Depends(optional_user)
    ) -> None:
        runtime = get_runtime()
        client_ip = request.client.host if request.client else None
        await runtime.limiter.hit(client_ip, user.id if user else None, op_class)

    return dependency
