"""Unit tests for the HS256 access-token codec."""

import json
from datetime import timedelta

import pytest

from sessionauth.config import Settings
from sessionauth.service.errors import ErrorCode, InvalidTokenError, TokenExpiredError
from sessionauth.service.tokens import TokenCodec


@pytest.fixture
def codec(settings, clock):
    return TokenCodec(settings, clock=clock)


def _segment(data: dict) -> str:
    return TokenCodec._encode_segment(json.dumps(data).encode())


class TestIssueAndDecode:
    def test_round_trip_preserves_subject_and_roles(self, codec):
        token = codec.issue("alice", ["USER"])

        claims = codec.decode(token)
        assert claims["sub"] == "alice"
        assert claims["roles"] == ["USER"]
        assert codec.extract_subject(token) == "alice"

    def test_expiry_is_issue_time_plus_ttl(self, codec, clock):
        token = codec.issue("alice")

        claims = codec.decode(token)
        assert claims["exp"] - claims["iat"] == 15 * 60
        assert codec.extract_expiry(token) == clock.now + timedelta(minutes=15)
        assert codec.time_until_expiry_seconds(token) == 15 * 60

    def test_custom_ttl_from_settings(self, clock):
        codec = TokenCodec(
            Settings(jwt_secret="x" * 40, access_token_ttl_ms=60_000), clock=clock
        )
        token = codec.issue("alice")
        assert codec.time_until_expiry_seconds(token) == 60

    def test_extra_claims_do_not_override_registered_claims(self, codec):
        token = codec.issue(
            "alice",
            ["USER"],
            extra_claims={"sub": "mallory", "roles": ["ADMIN"], "tenant": "acme"},
        )

        claims = codec.decode(token)
        assert claims["sub"] == "alice"
        assert claims["roles"] == ["ADMIN"]
        assert claims["tenant"] == "acme"

    def test_short_signing_key_rejected(self):
        settings = Settings.model_construct(jwt_secret="too-short", access_token_ttl_ms=1000)
        with pytest.raises(ValueError):
            TokenCodec(settings)


class TestExpiry:
    def test_expired_token_raises_token_expired(self, codec, clock):
        token = codec.issue("alice")
        expected_expiry = codec.extract_expiry(token)
        clock.advance(minutes=16)

        with pytest.raises(TokenExpiredError) as excinfo:
            codec.decode(token)
        assert excinfo.value.error_code == ErrorCode.TOKEN_EXPIRED.value
        assert excinfo.value.expired_at == expected_expiry

    def test_token_expires_exactly_at_exp(self, codec, clock):
        token = codec.issue("alice")
        clock.advance(minutes=15)

        with pytest.raises(TokenExpiredError):
            codec.extract_subject(token)

    def test_time_until_expiry_is_zero_when_expired(self, codec, clock):
        token = codec.issue("alice")
        clock.advance(hours=1)
        assert codec.time_until_expiry_seconds(token) == 0

    def test_time_until_expiry_is_zero_for_garbage(self, codec):
        assert codec.time_until_expiry_seconds("not-a-token") == 0


class TestRejection:
    def _code(self, codec, token):
        with pytest.raises(InvalidTokenError) as excinfo:
            codec.decode(token)
        return excinfo.value.error_code

    def test_blank_token(self, codec):
        assert self._code(codec, "   ") == ErrorCode.INVALID_TOKEN.value

    def test_wrong_segment_count(self, codec):
        assert self._code(codec, "abc.def") == ErrorCode.MALFORMED_TOKEN.value

    def test_undecodable_header(self, codec):
        assert self._code(codec, "abc.def.ghi") == ErrorCode.MALFORMED_TOKEN.value

    def test_alg_none_is_unsupported(self, codec):
        token = f"{_segment({'alg': 'none', 'typ': 'JWT'})}.{_segment({'sub': 'alice', 'exp': 9999999999})}."
        assert self._code(codec, token) == ErrorCode.UNSUPPORTED_TOKEN.value

    def test_missing_signature_is_unsupported(self, codec):
        header, payload, _ = codec.issue("alice").split(".")
        assert self._code(codec, f"{header}.{payload}.") == ErrorCode.UNSUPPORTED_TOKEN.value

    def test_tampered_payload_fails_signature(self, codec):
        header, _, signature = codec.issue("alice").split(".")
        forged = _segment({"sub": "admin", "exp": 9999999999})
        assert (
            self._code(codec, f"{header}.{forged}.{signature}")
            == ErrorCode.INVALID_SIGNATURE.value
        )

    def test_token_from_other_key_fails_signature(self, codec, clock):
        other = TokenCodec(Settings(jwt_secret="another-secret-" + "y" * 32), clock=clock)
        assert self._code(codec, other.issue("alice")) == ErrorCode.INVALID_SIGNATURE.value

    def test_signed_token_without_expiry_is_malformed(self, codec):
        token = codec._encode({"sub": "alice"})
        assert self._code(codec, token) == ErrorCode.MALFORMED_TOKEN.value

    def test_signed_token_without_subject_is_malformed(self, codec):
        token = codec._encode({"exp": 9999999999})
        assert self._code(codec, token) == ErrorCode.MALFORMED_TOKEN.value


class TestStrictValidation:
    def test_matching_subject_passes(self, codec):
        token = codec.issue("alice")
        assert codec.validate_strict(token, "alice") is True
        assert codec.validate_soft(token, "alice") is True

    def test_subject_mismatch(self, codec):
        token = codec.issue("alice")

        with pytest.raises(InvalidTokenError) as excinfo:
            codec.validate_strict(token, "bob")
        assert excinfo.value.error_code == ErrorCode.INVALID_SUBJECT.value
        assert codec.validate_soft(token, "bob") is False

    def test_subject_checked_before_expiry(self, codec, clock):
        token = codec.issue("alice")
        clock.advance(hours=1)

        with pytest.raises(InvalidTokenError) as excinfo:
            codec.validate_strict(token, "bob")
        assert excinfo.value.error_code == ErrorCode.INVALID_SUBJECT.value

    def test_expired_with_matching_subject(self, codec, clock):
        token = codec.issue("alice")
        clock.advance(hours=1)

        with pytest.raises(TokenExpiredError):
            codec.validate_strict(token, "alice")
        assert codec.validate_soft(token, "alice") is False

    def test_soft_validation_never_raises(self, codec):
        assert codec.validate_soft("", "alice") is False
        assert codec.validate_soft("a.b.c", "alice") is False
