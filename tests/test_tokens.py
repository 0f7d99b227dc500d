"""Unit tests for session token signing and one-time secrets."""

import base64
import json

import pytest

from campuslink.config import Settings
from campuslink.service.errors import ExpiredTokenError, InvalidTokenError
from campuslink.service.tokens import TokenService

SECRET = "unit-test-signing-secret"


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def tokens(clock):
    return TokenService(SECRET, ttl_seconds=3600, clock=clock)


def _segments(token: str):
    header, payload, signature = token.split(".")
    pad = lambda s: s + "=" * (-len(s) % 4)  # noqa: E731
    return (
        json.loads(base64.urlsafe_b64decode(pad(header))),
        json.loads(base64.urlsafe_b64decode(pad(payload))),
        signature,
    )


def _encode(data: dict) -> str:
    raw = json.dumps(data, separators=(",", ":")).encode()
    return base64.urlsafe_b64encode(raw).decode().rstrip("=")


class TestIssueAndVerify:
    def test_round_trip_returns_subject(self, tokens):
        token = tokens.issue("user-1", role="student")
        claims = tokens.verify(token)
        assert claims.subject_id == "user-1"
        assert claims.role == "student"
        assert claims.expires_at - claims.issued_at == 3600

    def test_header_and_registered_claims(self, tokens):
        header, payload, _ = _segments(tokens.issue("user-1"))
        assert header == {"alg": "HS256", "typ": "JWT"}
        assert payload["iss"] == "campuslink"
        assert payload["aud"] == "campuslink-clients"
        assert "role" not in payload

    def test_token_from_other_secret_is_invalid(self, tokens, clock):
        foreign = TokenService("some-other-secret", clock=clock).issue("user-1")
        with pytest.raises(InvalidTokenError) as exc:
            tokens.verify(foreign)
        assert exc.value.message == "Invalid token"

    def test_altered_payload_is_invalid(self, tokens):
        header, payload, signature = tokens.issue("user-1").split(".")
        forged = _encode({**_segments(tokens.issue("user-1"))[1], "sub": "admin-7"})
        with pytest.raises(InvalidTokenError):
            tokens.verify(f"{header}.{forged}.{signature}")

    @pytest.mark.parametrize("garbage", ["", "abc", "a.b", "a.b.c.d", "!!.??.**"])
    def test_malformed_tokens_are_invalid(self, tokens, garbage):
        with pytest.raises(InvalidTokenError):
            tokens.verify(garbage)

    def test_alg_none_is_rejected(self, tokens):
        _, payload, _ = tokens.issue("user-1").split(".")
        unsigned = f"{_encode({'alg': 'none', 'typ': 'JWT'})}.{payload}."
        with pytest.raises(InvalidTokenError):
            tokens.verify(unsigned)

    def test_wrong_audience_is_invalid(self, clock):
        issuer = TokenService(SECRET, audience="someone-else", clock=clock)
        verifier = TokenService(SECRET, clock=clock)
        with pytest.raises(InvalidTokenError):
            verifier.verify(issuer.issue("user-1"))

    def test_expiry_is_monotonic(self, tokens, clock):
        token = tokens.issue("user-1")
        clock.now += 3599
        assert tokens.verify(token).subject_id == "user-1"
        clock.now += 1
        with pytest.raises(ExpiredTokenError) as exc:
            tokens.verify(token)
        assert exc.value.message == "Token expired"

    def test_expired_token_with_bad_signature_is_invalid(self, tokens, clock):
        header, payload, _ = tokens.issue("user-1").split(".")
        clock.now += 7200
        with pytest.raises(InvalidTokenError):
            tokens.verify(f"{header}.{payload}.AAAA")

    def test_non_ascii_signature_is_invalid(self, tokens):
        header, payload, _ = tokens.issue("user-1").split(".")
        with pytest.raises(InvalidTokenError):
            tokens.verify(f"{header}.{payload}.éé")

    def test_non_finite_expiry_is_invalid(self, tokens):
        header = _encode({"alg": "HS256", "typ": "JWT"})
        payload = _encode(
            {
                "sub": "user-1",
                "exp": float("inf"),
                "iss": tokens.issuer,
                "aud": tokens.audience,
            }
        )
        signing_input = f"{header}.{payload}"
        with pytest.raises(InvalidTokenError):
            tokens.verify(f"{signing_input}.{tokens._sign(signing_input)}")

    def test_leeway_extends_acceptance(self, clock):
        lenient = TokenService(SECRET, ttl_seconds=10, leeway_seconds=30, clock=clock)
        token = lenient.issue("user-1")
        clock.now += 20
        assert lenient.verify(token).subject_id == "user-1"

    def test_empty_secret_is_refused(self):
        with pytest.raises(ValueError):
            TokenService("")

    def test_from_settings_uses_day_based_expiry(self, clock):
        settings = Settings(jwt_secret=SECRET, jwt_expire_days=2)
        service = TokenService.from_settings(settings, clock=clock)
        claims = service.verify(service.issue("user-1"))
        assert claims.expires_at - claims.issued_at == 2 * 24 * 60 * 60


class TestOneTimeSecrets:
    def test_secrets_are_unique_and_high_entropy(self):
        values = {TokenService.issue_one_time_secret() for _ in range(50)}
        assert len(values) == 50
        assert all(len(v) == 40 for v in values)

    def test_hash_for_storage_is_deterministic_and_one_way(self):
        secret = TokenService.issue_one_time_secret()
        digest = TokenService.hash_for_storage(secret)
        assert digest == TokenService.hash_for_storage(secret)
        assert digest != secret
        assert len(digest) == 64
