from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Protocol

from argon2 import PasswordHasher, Type
from argon2.exceptions import InvalidHash, VerificationError, VerifyMismatchError

from sessionauth.logging import get_logger
from sessionauth.service.context import RequestContext
from sessionauth.service.errors import (
    AccountDisabledError,
    AccountLockedError,
    ErrorCode,
    InvalidCredentialsError,
    InvalidTokenError,
    UserNotFoundError,
)
from sessionauth.service.sessions import SessionManager
from sessionauth.service.tokens import TokenCodec
from sessionauth.storage.models import User

logger = get_logger(__name__)


class CredentialStore(Protocol):
    def get_user(self, user_id: int) -> Optional[User]: ...

    def get_user_by_username(self, username: str) -> Optional[User]: ...

    def record_login(self, user_id: int, when: Optional[datetime] = None) -> None: ...


class PasswordVerifier:
    """argon2id hashing and verification of account passwords."""

    def __init__(self) -> None:
        self._pwd_hasher = PasswordHasher(type=Type.ID)

    def hash(self, password: str) -> str:
        return self._pwd_hasher.hash(password)

    def matches(self, password: str, password_hash: str) -> bool:
        try:
            return self._pwd_hasher.verify(password_hash, password)
        except (InvalidHash, VerifyMismatchError, VerificationError):
            return False


@dataclass(frozen=True)
class AuthResult:
    access_token: str
    expires_in: int
    username: str
    refresh_token: str
    refresh_expires_at: datetime


class AuthService:
    """Login, refresh and logout on top of the token codec and sessions.

    Failures from the codec and the session manager propagate unchanged.
    """

    def __init__(
        self,
        users: CredentialStore,
        passwords: PasswordVerifier,
        tokens: TokenCodec,
        sessions: SessionManager,
    ) -> None:
        self.users = users
        self.passwords = passwords
        self.tokens = tokens
        self.sessions = sessions
        self.logger = logger

    def login(
        self,
        username: str,
        password: str,
        remember_me: bool = False,
        *,
        context: Optional[RequestContext] = None,
    ) -> AuthResult:
        user = self.users.get_user_by_username(username)
        if not user or not self.passwords.matches(password, user.password_hash):
            self.logger.info("login_rejected", reason="invalid_credentials")
            raise InvalidCredentialsError()
        self._assert_account_ok(user)

        access_token = self._issue_access_token(user)
        issued = self.sessions.issue(user.id, remember_me, context)
        self.users.record_login(user.id)
        self.logger.info(
            "login_succeeded", user_id=user.id, remember_me=bool(remember_me)
        )
        return AuthResult(
            access_token=access_token,
            expires_in=self.tokens.time_until_expiry_seconds(access_token),
            username=user.username,
            refresh_token=issued.raw_secret,
            refresh_expires_at=issued.expires_at,
        )

    def refresh(
        self, refresh_token: Optional[str], *, context: Optional[RequestContext] = None
    ) -> AuthResult:
        # rotation first: a locked account still burns its presented secret
        rotated = self.sessions.rotate(refresh_token, context)
        user = self.users.get_user(rotated.user_id)
        if not user:
            raise UserNotFoundError()
        self._assert_account_ok(user)

        access_token = self._issue_access_token(user)
        return AuthResult(
            access_token=access_token,
            expires_in=self.tokens.time_until_expiry_seconds(access_token),
            username=user.username,
            refresh_token=rotated.raw_secret,
            refresh_expires_at=rotated.expires_at,
        )

    def logout(self, refresh_token: Optional[str]) -> None:
        self.sessions.revoke(refresh_token)

    def logout_all(self, refresh_token: Optional[str]) -> None:
        session = self.sessions.validate(refresh_token)
        self.sessions.revoke_all(session.user_id)

    def authenticate_bearer(self, authorization: Optional[str]) -> User:
        """Resolve an ``Authorization: Bearer`` header to its account."""
        token = self._extract_bearer(authorization)
        if not token:
            raise InvalidTokenError(code=ErrorCode.INVALID_TOKEN)
        username = self.tokens.extract_subject(token)
        user = self.users.get_user_by_username(username)
        if not user:
            raise UserNotFoundError(username=username)
        self._assert_account_ok(user)
        self.tokens.validate_strict(token, user.username)
        return user

    def _issue_access_token(self, user: User) -> str:
        return self.tokens.issue(user.username, user.role_claims)

    @staticmethod
    def _assert_account_ok(user: User) -> None:
        if user.locked:
            raise AccountLockedError()
        if not user.active:
            raise AccountDisabledError()

    @staticmethod
    def _extract_bearer(header: Optional[str]) -> Optional[str]:
        if not header or not header.strip():
            return None
        if not header.startswith("Bearer "):
            return None
        token = header[len("Bearer "):].strip()
        return token or None
