from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional


class ErrorCode(str, Enum):
    """Stable, machine-readable failure codes surfaced to API clients."""

    INVALID_CREDENTIALS = "invalid_credentials"
    ACCOUNT_LOCKED = "account_locked"
    ACCOUNT_DISABLED = "account_disabled"
    USER_NOT_FOUND = "user_not_found"
    TOKEN_EXPIRED = "token_expired"
    INVALID_SIGNATURE = "invalid_signature"
    MALFORMED_TOKEN = "malformed_token"
    UNSUPPORTED_TOKEN = "unsupported_token"
    INVALID_SUBJECT = "invalid_subject"
    INVALID_TOKEN = "invalid_token"
    REFRESH_TOKEN_INVALID = "refresh_token_invalid"
    REFRESH_TOKEN_REVOKED = "refresh_token_revoked"
    REFRESH_TOKEN_EXPIRED = "refresh_token_expired"
    VALIDATION_ERROR = "validation_error"
    CONFLICT = "conflict"
    SERVER_ERROR = "server_error"


class ServiceError(Exception):
    """Base class for service-layer exceptions mapped to HTTP responses.

    Each subclass carries both an HTTP ``status_code`` and a stable
    ``error_code`` so the web layer can render a response without
    inspecting the message text.
    """

    status_code: int = 400
    error_code: str = ErrorCode.VALIDATION_ERROR.value

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
            self.error_code = ErrorCode(error_code).value
        self.detail = detail or {}


class ValidationError(ServiceError):
    """Request validation failed (400)."""
    status_code = 400
    error_code = ErrorCode.VALIDATION_ERROR.value


class AuthenticationError(ServiceError):
    """Authentication failed or missing (401)."""
    status_code = 401
    error_code = ErrorCode.INVALID_TOKEN.value


class InvalidCredentialsError(AuthenticationError):
    error_code = ErrorCode.INVALID_CREDENTIALS.value

    def __init__(self, message: str = "Invalid username or password") -> None:
        super().__init__(message)


class AccountLockedError(AuthenticationError):
    error_code = ErrorCode.ACCOUNT_LOCKED.value

    def __init__(self, message: str = "Account is locked") -> None:
        super().__init__(message)


class AccountDisabledError(AuthenticationError):
    error_code = ErrorCode.ACCOUNT_DISABLED.value

    def __init__(self, message: str = "Account is disabled") -> None:
        super().__init__(message)


class UserNotFoundError(AuthenticationError):
    error_code = ErrorCode.USER_NOT_FOUND.value

    def __init__(self, message: str = "User not found", *, username: Optional[str] = None) -> None:
        super().__init__(message)
        self.username = username


class TokenExpiredError(AuthenticationError):
    """Access token signature is valid but its ``exp`` is not in the future."""

    error_code = ErrorCode.TOKEN_EXPIRED.value

    def __init__(
        self, message: str = "Expired token", *, expired_at: Optional[datetime] = None
    ) -> None:
        super().__init__(message)
        self.expired_at = expired_at


class InvalidTokenError(AuthenticationError):
    """Access token rejected; ``error_code`` says why."""

    def __init__(
        self,
        message: str = "Invalid token",
        code: ErrorCode = ErrorCode.INVALID_TOKEN,
    ) -> None:
        super().__init__(message, error_code=code)


class RefreshTokenError(AuthenticationError):
    """Refresh secret rejected; ``error_code`` says why."""

    def __init__(
        self,
        code: ErrorCode = ErrorCode.REFRESH_TOKEN_INVALID,
        message: str = "Invalid refresh token",
    ) -> None:
        super().__init__(message, error_code=code)


class ServerError(ServiceError):
    """Internal server error (500)."""
    status_code = 500
    error_code = ErrorCode.SERVER_ERROR.value


__all__ = [
    "ErrorCode",
    "ServiceError",
    "ValidationError",
    "AuthenticationError",
    "InvalidCredentialsError",
    "AccountLockedError",
    "AccountDisabledError",
    "UserNotFoundError",
    "TokenExpiredError",
    "InvalidTokenError",
    "RefreshTokenError",
    "ServerError",
]
