"""Stateless HS256 access tokens.

Tokens are compact JWS strings (``header.payload.signature``) signed with a
key derived once from ``Settings.jwt_secret``. Nothing about an access token
is stored server side; it is trusted purely on signature and expiry.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import json
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Mapping, Optional, Sequence

from sessionauth.config import MIN_JWT_SECRET_LENGTH, Settings
from sessionauth.logging import get_logger
from sessionauth.service.errors import (
    AuthenticationError,
    ErrorCode,
    InvalidTokenError,
    TokenExpiredError,
)
from sessionauth.storage.models import utcnow

logger = get_logger(__name__)

_ALGORITHM = "HS256"


class TokenCodec:
    """Issue and verify signed access tokens."""

    def __init__(
        self,
        settings: Settings,
        *,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        key = settings.jwt_secret.encode("utf-8")
        if len(key) < MIN_JWT_SECRET_LENGTH:
            raise ValueError(
                f"jwt secret must be at least {MIN_JWT_SECRET_LENGTH} bytes for {_ALGORITHM}"
            )
        self._signing_key = key
        self.ttl = timedelta(milliseconds=settings.access_token_ttl_ms)
        self._clock = clock or utcnow

    def _now(self) -> datetime:
        return self._clock()

    # encoding
    @staticmethod
    def _encode_segment(data: bytes) -> str:
        return base64.urlsafe_b64encode(data).decode("utf-8").rstrip("=")

    @staticmethod
    def _decode_segment(segment: str) -> bytes:
        padding = "=" * ((4 - len(segment) % 4) % 4)
        return base64.urlsafe_b64decode(segment + padding)

    def _sign(self, signing_input: str) -> str:
        digest = hmac.new(
            self._signing_key, signing_input.encode("utf-8"), hashlib.sha256
        ).digest()
        return self._encode_segment(digest)

    def _encode(self, payload: Mapping[str, Any]) -> str:
        header = {"alg": _ALGORITHM, "typ": "JWT"}
        header_enc = self._encode_segment(
            json.dumps(header, separators=(",", ":")).encode()
        )
        payload_enc = self._encode_segment(
            json.dumps(payload, separators=(",", ":")).encode()
        )
        signing_input = f"{header_enc}.{payload_enc}"
        return f"{signing_input}.{self._sign(signing_input)}"

    def issue(
        self,
        subject: str,
        role_claims: Sequence[str] = (),
        extra_claims: Optional[Mapping[str, Any]] = None,
    ) -> str:
        """Sign a token for ``subject``.

        ``roles`` comes from ``extra_claims`` when present there, otherwise
        from ``role_claims``. ``sub``, ``iat`` and ``exp`` always win over
        anything in ``extra_claims``.
        """
        now = self._now()
        claims: dict[str, Any] = dict(extra_claims or {})
        claims.setdefault("roles", list(role_claims))
        claims["sub"] = subject
        claims["iat"] = int(now.timestamp())
        claims["exp"] = int((now + self.ttl).timestamp())
        return self._encode(claims)

    # decoding
    def _verify(self, token: str) -> dict[str, Any]:
        """Check structure, algorithm and signature; return the claims.

        Claims are only parsed once the signature matches, so nothing from
        a forged token is ever looked at.
        """
        if not isinstance(token, str) or not token.strip():
            raise InvalidTokenError(code=ErrorCode.INVALID_TOKEN)
        parts = token.strip().split(".")
        if len(parts) != 3 or not all(parts[:2]):
            raise InvalidTokenError(code=ErrorCode.MALFORMED_TOKEN)
        header_b64, payload_b64, sig_b64 = parts

        try:
            header = json.loads(self._decode_segment(header_b64))
        except (binascii.Error, ValueError, UnicodeDecodeError):
            raise InvalidTokenError(code=ErrorCode.MALFORMED_TOKEN) from None
        if not isinstance(header, dict):
            raise InvalidTokenError(code=ErrorCode.MALFORMED_TOKEN)
        # reject "none" and every other algorithm to avoid algorithm confusion
        if header.get("alg") != _ALGORITHM:
            logger.info("access_token_unsupported_algorithm", alg=header.get("alg"))
            raise InvalidTokenError(code=ErrorCode.UNSUPPORTED_TOKEN)
        if not sig_b64:
            raise InvalidTokenError(code=ErrorCode.UNSUPPORTED_TOKEN)

        expected_sig = self._sign(f"{header_b64}.{payload_b64}")
        if not hmac.compare_digest(expected_sig, sig_b64):
            raise InvalidTokenError(code=ErrorCode.INVALID_SIGNATURE)

        try:
            payload = json.loads(self._decode_segment(payload_b64))
        except (binascii.Error, ValueError, UnicodeDecodeError):
            raise InvalidTokenError(code=ErrorCode.MALFORMED_TOKEN) from None
        if not isinstance(payload, dict):
            raise InvalidTokenError(code=ErrorCode.MALFORMED_TOKEN)
        subject = payload.get("sub")
        exp = payload.get("exp")
        if not isinstance(subject, str) or not subject:
            raise InvalidTokenError(code=ErrorCode.MALFORMED_TOKEN)
        if isinstance(exp, bool) or not isinstance(exp, (int, float)):
            raise InvalidTokenError(code=ErrorCode.MALFORMED_TOKEN)
        return payload

    @staticmethod
    def _expiry_of(claims: Mapping[str, Any]) -> datetime:
        return datetime.fromtimestamp(claims["exp"], tz=timezone.utc)

    def _check_not_expired(self, claims: Mapping[str, Any]) -> None:
        expires_at = self._expiry_of(claims)
        if expires_at <= self._now():
            raise TokenExpiredError(expired_at=expires_at)

    def _parse(self, token: str) -> dict[str, Any]:
        """Verify signature then expiry; anything unclassified is invalid."""
        try:
            claims = self._verify(token)
            self._check_not_expired(claims)
            return claims
        except AuthenticationError:
            raise
        except Exception as exc:
            logger.warning("access_token_parse_failed", error_type=type(exc).__name__)
            raise InvalidTokenError(code=ErrorCode.INVALID_TOKEN) from exc

    def decode(self, token: str) -> dict[str, Any]:
        """Return the verified, unexpired claim set."""
        return self._parse(token)

    def extract_subject(self, token: str) -> str:
        return self._parse(token)["sub"]

    def extract_expiry(self, token: str) -> datetime:
        return self._expiry_of(self._parse(token))

    def time_until_expiry_seconds(self, token: str) -> int:
        """Seconds left before ``token`` expires; 0 if it cannot be verified.

        Advisory only (response ``expires_in`` fields), never used to
        authorize anything.
        """
        try:
            remaining = self.extract_expiry(token) - self._now()
        except AuthenticationError:
            return 0
        return max(0, int(remaining.total_seconds()))

    def validate_strict(self, token: str, expected_subject: str) -> bool:
        """Signature, then exact subject match, then expiry.

        Raises ``InvalidTokenError`` / ``TokenExpiredError``; returns True
        otherwise.
        """
        try:
            claims = self._verify(token)
            if claims["sub"] != expected_subject:
                raise InvalidTokenError(code=ErrorCode.INVALID_SUBJECT)
            self._check_not_expired(claims)
        except AuthenticationError:
            raise
        except Exception as exc:
            raise InvalidTokenError(code=ErrorCode.INVALID_TOKEN) from exc
        return True

    def validate_soft(self, token: str, expected_subject: str) -> bool:
        try:
            return self.validate_strict(token, expected_subject)
        except AuthenticationError:
            return False
