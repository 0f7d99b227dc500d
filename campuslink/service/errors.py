from __future__ import annotations

from typing import Optional


class ServiceError(Exception):
    """Base class for service-layer exceptions mapped to HTTP responses.

    Each exception class defines both an HTTP status_code and a stable
    error_code that clients may branch on:
    - validation_error (400)
    - duplicate_identity (400)
    - invalid_or_expired_token (400)
    - invalid_credentials, no_token, invalid_token, expired_token,
      subject_not_found, account_deactivated (401)
    - role_denied, not_owner, scope_denied (403)
    - not_found (404)
    - rate_limited (429)
    - server_error (500)
    """

    status_code: int = 400
    error_code: str = "validation_error"

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        detail: Optional[dict] = None,
        error_code: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        if error_code is not None:
            self.error_code = error_code
        self.detail = detail or {}


class ValidationError(ServiceError):
    """Request validation failed (400)."""
    status_code = 400
    error_code = "validation_error"


class DuplicateIdentityError(ServiceError):
    """Email or student ID is already registered (400)."""
    status_code = 400
    error_code = "duplicate_identity"


class InvalidOrExpiredTokenError(ServiceError):
    """Presented reset/verification secret matched nothing live (400)."""
    status_code = 400
    error_code = "invalid_or_expired_token"


class AuthenticationError(ServiceError):
    """Authentication failed or missing (401)."""
    status_code = 401
    error_code = "unauthorized"


class InvalidCredentialsError(AuthenticationError):
    error_code = "invalid_credentials"

    def __init__(self, message: str = "Invalid credentials", **kwargs) -> None:
        super().__init__(message, **kwargs)


class NoTokenError(AuthenticationError):
    error_code = "no_token"

    def __init__(
        self, message: str = "No token provided, authorization denied", **kwargs
    ) -> None:
        super().__init__(message, **kwargs)


class InvalidTokenError(AuthenticationError):
    """Bad signature, wrong algorithm or malformed token."""
    error_code = "invalid_token"

    def __init__(self, message: str = "Invalid token", **kwargs) -> None:
        super().__init__(message, **kwargs)


class ExpiredTokenError(AuthenticationError):
    """Signature is good but the token is past its expiry."""
    error_code = "expired_token"

    def __init__(self, message: str = "Token expired", **kwargs) -> None:
        super().__init__(message, **kwargs)


class SubjectNotFoundError(AuthenticationError):
    error_code = "subject_not_found"

    def __init__(self, message: str = "Token is valid but user not found", **kwargs) -> None:
        super().__init__(message, **kwargs)


class AccountDeactivatedError(AuthenticationError):
    error_code = "account_deactivated"

    def __init__(self, message: str = "User account is deactivated", **kwargs) -> None:
        super().__init__(message, **kwargs)


class ForbiddenError(ServiceError):
    """Access denied - insufficient permissions (403)."""
    status_code = 403
    error_code = "forbidden"


class RoleDeniedError(ForbiddenError):
    error_code = "role_denied"


class NotOwnerError(ForbiddenError):
    error_code = "not_owner"

    def __init__(
        self, message: str = "Access denied. You can only access your own resources.", **kwargs
    ) -> None:
        super().__init__(message, **kwargs)


class ScopeDeniedError(ForbiddenError):
    error_code = "scope_denied"


class NotFoundError(ServiceError):
    """Requested resource not found (404)."""
    status_code = 404
    error_code = "not_found"


class RateLimitedError(ServiceError):
    """Rate limit exceeded (429)."""
    status_code = 429
    error_code = "rate_limited"

    def __init__(
        self,
        message: str = "Too many attempts. Please try again later.",
        *,
        retry_after: int = 0,
        **kwargs,
    ) -> None:
        super().__init__(message, **kwargs)
        self.retry_after = retry_after


class ServerError(ServiceError):
    """Internal server error (500)."""
    status_code = 500
    error_code = "server_error"


__all__ = [
    "ServiceError",
    "ValidationError",
    "DuplicateIdentityError",
    "InvalidOrExpiredTokenError",
    "AuthenticationError",
    "InvalidCredentialsError",
    "NoTokenError",
    "InvalidTokenError",
    "ExpiredTokenError",
    "SubjectNotFoundError",
    "AccountDeactivatedError",
    "ForbiddenError",
    "RoleDeniedError",
    "NotOwnerError",
    "ScopeDeniedError",
    "NotFoundError",
    "RateLimitedError",
    "ServerError",
]
