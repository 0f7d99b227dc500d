from __future__ import annotations

import hashlib
import logging
import os
import uuid
from typing import Any, Dict, Optional

import structlog
from structlog.contextvars import bind_contextvars, clear_contextvars, get_contextvars

# Substrings of event keys whose values never reach the log output in clear
_SECRET_KEYS = ("password", "secret", "token", "authorization", "cookie")
_CONTACT_KEYS = ("email", "phone")
_TRUTHY = {"1", "true", "yes", "on"}


def begin_request(request_id: Optional[str] = None) -> str:
    """Start a fresh log context for one HTTP request and return its request id."""
    clear_contextvars()
    request_id = request_id or str(uuid.uuid4())
    bind_contextvars(correlation_id=request_id)
    return request_id


def bind_subject(user_id: str, role: str) -> None:
    """Attach the authenticated user to every later event of the current request."""
    bind_contextvars(user_id=user_id, user_role=role)


def current_request_id() -> Optional[str]:
    return get_contextvars().get("correlation_id")


def _mask(value: str) -> str:
    if len(value) <= 4:
        return "***"
    return f"{value[:2]}***{value[-2:]}"


def _mask_contact(value: str) -> str:
    local, sep, domain = value.partition("@")
    if sep:
        return f"{local[:2]}***@{domain}"
    return _mask(value)


def _redact_pii(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    for key, value in list(event_dict.items()):
        if not isinstance(value, str):
            continue
        lower_key = key.lower()
        # Digests are already one-way
        if lower_key.endswith(("_hash", "_digest")):
            continue
        if any(part in lower_key for part in _SECRET_KEYS):
            event_dict[key] = _mask(value)
        elif any(part in lower_key for part in _CONTACT_KEYS):
            event_dict[key] = _mask_contact(value)
    return event_dict


def email_digest(email: str) -> str:
    """Stable sha256 of a normalized address, for correlating events without the address."""
    return hashlib.sha256(email.strip().lower().encode()).hexdigest()


def configure_logging(level: str = "INFO", *, json_output: bool = True) -> None:
    """Install the structlog pipeline. JSON lines by default, colored console otherwise."""
    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        _redact_pii,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]
    if json_output:
        processors += [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, level.upper(), logging.INFO)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


configure_logging(
    os.getenv("LOG_LEVEL", "INFO"),
    json_output=os.getenv("LOG_JSON", "true").lower() in _TRUTHY
    and os.getenv("LOG_DEV_MODE", "false").lower() not in _TRUTHY,
)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)
