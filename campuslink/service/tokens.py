from __future__ import annotations

import base64
import hashlib
import hmac
import json
import secrets
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional

from campuslink.config import Settings
from campuslink.logging import get_logger
from campuslink.service.errors import ExpiredTokenError, InvalidTokenError

logger = get_logger(__name__)


@dataclass(frozen=True)
class TokenClaims:
    subject_id: str
    role: Optional[str]
    issued_at: int
    expires_at: int


class TokenService:
    """Signs and verifies stateless HS256 session tokens.

    Also hands out the one-time secrets used by password reset and email
    verification. Only ``hash_for_storage(secret)`` is ever persisted; the
    plaintext goes out by email.
    """

    def __init__(
        self,
        secret: str,
        *,
        issuer: str = "campuslink",
        audience: str = "campuslink-clients",
        ttl_seconds: int = 30 * 24 * 60 * 60,
        leeway_seconds: int = 0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if not secret:
            raise ValueError("token secret must not be empty")
        self._secret = secret.encode()
        self.issuer = issuer
        self.audience = audience
        self.ttl_seconds = ttl_seconds
        self.leeway_seconds = leeway_seconds
        self._clock = clock

    @classmethod
    def from_settings(
        cls, settings: Settings, *, clock: Callable[[], float] = time.time
    ) -> "TokenService":
        return cls(
            settings.jwt_secret,
            issuer=settings.jwt_issuer,
            audience=settings.jwt_audience,
            ttl_seconds=settings.jwt_expire_days * 24 * 60 * 60,
            leeway_seconds=settings.jwt_clock_skew_seconds,
            clock=clock,
        )

    def _encode_segment(self, data: bytes) -> str:
        return base64.urlsafe_b64encode(data).decode("utf-8").rstrip("=")

    def _decode_segment(self, segment: str) -> bytes:
        padding = "=" * ((4 - len(segment) % 4) % 4)
        return base64.urlsafe_b64decode(segment + padding)

    def _sign(self, signing_input: str) -> str:
        return self._encode_segment(
            hmac.new(self._secret, signing_input.encode(), hashlib.sha256).digest()
        )

    def issue(self, subject_id: str, *, role: Optional[str] = None) -> str:
        now = int(self._clock())
        payload: dict[str, Any] = {
            "sub": subject_id,
            "iat": now,
            "exp": now + self.ttl_seconds,
            "iss": self.issuer,
            "aud": self.audience,
        }
        if role:
            payload["role"] = role
        header = {"alg": "HS256", "typ": "JWT"}
        header_enc = self._encode_segment(
            json.dumps(header, separators=(",", ":")).encode()
        )
        payload_enc = self._encode_segment(
            json.dumps(payload, separators=(",", ":")).encode()
        )
        signing_input = f"{header_enc}.{payload_enc}"
        return f"{signing_input}.{self._sign(signing_input)}"

    def verify(self, token: str) -> TokenClaims:
        """Return the claims of a well-signed, unexpired token.

        Raises InvalidTokenError for malformed tokens, foreign algorithms, bad
        signatures or claims, and ExpiredTokenError when only the expiry fails.
        """
        try:
            header_b64, payload_b64, sig_b64 = token.split(".")
        except (AttributeError, ValueError):
            raise InvalidTokenError()

        # Reject alg=none and friends before looking at the signature
        try:
            header = json.loads(self._decode_segment(header_b64))
        except (ValueError, TypeError):
            logger.warning("jwt_header_decode_failed")
            raise InvalidTokenError()
        if not isinstance(header, dict) or header.get("alg") != "HS256":
            logger.warning(
                "jwt_invalid_algorithm",
                alg=header.get("alg") if isinstance(header, dict) else None,
            )
            raise InvalidTokenError()

        expected_sig = self._sign(f"{header_b64}.{payload_b64}")
        # Headers and cookies arrive latin-1 decoded, so compare bytes
        if not hmac.compare_digest(
            expected_sig.encode(), sig_b64.encode("utf-8", "surrogateescape")
        ):
            raise InvalidTokenError()

        try:
            payload = json.loads(self._decode_segment(payload_b64))
        except (ValueError, TypeError) as exc:
            logger.warning("jwt_payload_decode_failed", error=str(exc))
            raise InvalidTokenError()
        if not isinstance(payload, dict):
            raise InvalidTokenError()
        if payload.get("iss") != self.issuer:
            raise InvalidTokenError()
        aud = payload.get("aud")
        if isinstance(aud, list):
            valid_aud = self.audience in aud
        else:
            valid_aud = aud == self.audience
        if not valid_aud:
            raise InvalidTokenError()
        subject_id = payload.get("sub")
        if not isinstance(subject_id, str) or not subject_id:
            raise InvalidTokenError()
        try:
            exp_ts = int(payload["exp"])
            iat_ts = int(payload.get("iat", 0))
        except (KeyError, TypeError, ValueError, OverflowError):
            raise InvalidTokenError()
        if exp_ts <= self._clock() - self.leeway_seconds:
            raise ExpiredTokenError()
        return TokenClaims(
            subject_id=subject_id,
            role=payload.get("role"),
            issued_at=iat_ts,
            expires_at=exp_ts,
        )

    @staticmethod
    def issue_one_time_secret() -> str:
        return secrets.token_hex(20)

    @staticmethod
    def hash_for_storage(secret: str) -> str:
        return hashlib.sha256(secret.encode()).hexdigest()
