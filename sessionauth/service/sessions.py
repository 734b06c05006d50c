"""Refresh-session lifecycle: issue, validate, rotate, revoke, sweep.

A session moves Active -> (Used) -> Revoked | Expired -> Purged and never
leaves a terminal state. Raw refresh secrets exist only in the ``Issued``
value handed back to the caller; the store only ever sees their SHA-256.
"""

from __future__ import annotations

import hashlib
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, ContextManager, List, Optional, Protocol

from sessionauth.config import Settings
from sessionauth.logging import get_logger
from sessionauth.service.context import RequestContext
from sessionauth.service.errors import ErrorCode, RefreshTokenError
from sessionauth.storage.models import RefreshSession, SessionKind, utcnow

logger = get_logger(__name__)


class RefreshTokenStore(Protocol):
    def find_by_secret_hash(
        self, secret_hash: str, *, for_update: bool = False
    ) -> Optional[RefreshSession]: ...

    def save(self, record: RefreshSession) -> RefreshSession: ...

    def count_valid(self, user_id: int, now: datetime) -> int: ...

    def list_valid(self, user_id: int, now: datetime) -> List[RefreshSession]: ...

    def revoke_all_for_user(self, user_id: int) -> int: ...

    def delete_expired_before(self, threshold: datetime) -> int: ...

    def transaction(self) -> ContextManager[None]: ...


@dataclass(frozen=True)
class Issued:
    raw_secret: str
    expires_at: datetime
    kind: SessionKind
    user_id: int


def hash_secret(raw_secret: str) -> str:
    """SHA-256 hex digest used as the lookup key for a refresh secret."""
    return hashlib.sha256(raw_secret.encode("utf-8")).hexdigest()


def _generate_secret() -> str:
    # two uuid4 values: 244 random bits from the OS CSPRNG
    return f"{uuid.uuid4()}.{uuid.uuid4()}"


def _is_blank(raw_secret: Optional[str]) -> bool:
    return raw_secret is None or not raw_secret.strip()


class SessionManager:
    """Owns every state transition of a refresh session."""

    def __init__(
        self,
        store: RefreshTokenStore,
        settings: Settings,
        *,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.store = store
        self.refresh_days = settings.refresh_days
        self.remember_days = settings.remember_days
        self.rotate_enabled = settings.refresh_rotate
        self.max_active_sessions = settings.max_active_sessions
        self.retention_days = settings.session_retention_days
        self._clock = clock or utcnow

    def _now(self) -> datetime:
        return self._clock()

    def _transaction(self) -> ContextManager[None]:
        return self.store.transaction()

    def issue(
        self,
        user_id: int,
        extended: bool = False,
        context: Optional[RequestContext] = None,
    ) -> Issued:
        """Admit a new session for ``user_id`` and return its raw secret.

        This is the only place raw secrets are generated.
        """
        with self._transaction():
            return self._issue(user_id, extended, context or RequestContext.empty())

    def _issue(self, user_id: int, extended: bool, context: RequestContext) -> Issued:
        now = self._now()
        self._enforce_session_cap(user_id, now)

        kind = SessionKind.EXTENDED if extended else SessionKind.STANDARD
        days = self.remember_days if extended else self.refresh_days
        raw_secret = _generate_secret()
        record = RefreshSession(
            secret_hash=hash_secret(raw_secret),
            user_id=user_id,
            kind=kind,
            created_at=now,
            last_used_at=now,
            expires_at=now + timedelta(days=days),
            revoked=False,
            ip_address=context.ip_address,
            user_agent=context.user_agent,
            device_name=context.device_name,
        )
        saved = self.store.save(record)
        logger.info(
            "refresh_session_issued",
            user_id=user_id,
            session_id=saved.id,
            kind=kind.value,
            device=context.device_name,
        )
        return Issued(
            raw_secret=raw_secret,
            expires_at=saved.expires_at,
            kind=kind,
            user_id=user_id,
        )

    def _enforce_session_cap(self, user_id: int, now: datetime) -> None:
        """Revoke the oldest valid session when the user is at the cap.

        Concurrent issues near the bound can both pass this check; the cap
        is a soft bound.
        """
        active = self.store.count_valid(user_id, now)
        if active < self.max_active_sessions:
            return
        candidates = self.store.list_valid(user_id, now)
        if not candidates:
            return
        # ties on created_at fall back to the lowest identity
        oldest = min(candidates, key=lambda s: (s.created_at, s.id or 0))
        oldest.revoke()
        self.store.save(oldest)
        logger.info(
            "refresh_session_evicted",
            user_id=user_id,
            session_id=oldest.id,
            active_sessions=active,
            max_active_sessions=self.max_active_sessions,
        )

    def validate(self, raw_secret: Optional[str]) -> RefreshSession:
        """Resolve a raw secret to its live session and mark it used."""
        with self._transaction():
            return self._validate(raw_secret)

    def _validate(self, raw_secret: Optional[str]) -> RefreshSession:
        if _is_blank(raw_secret):
            raise RefreshTokenError(ErrorCode.REFRESH_TOKEN_INVALID)
        session = self.store.find_by_secret_hash(
            hash_secret(raw_secret), for_update=True
        )
        if session is None:
            raise RefreshTokenError(ErrorCode.REFRESH_TOKEN_INVALID)
        if session.revoked:
            logger.info(
                "refresh_session_reuse_rejected",
                user_id=session.user_id,
                session_id=session.id,
            )
            raise RefreshTokenError(ErrorCode.REFRESH_TOKEN_REVOKED)
        now = self._now()
        if session.is_expired(now):
            raise RefreshTokenError(ErrorCode.REFRESH_TOKEN_EXPIRED)
        session.mark_used(now)
        return self.store.save(session)

    def rotate(
        self, raw_secret: Optional[str], context: Optional[RequestContext] = None
    ) -> Issued:
        """Exchange a valid secret for a fresh one of the same kind.

        The old record is locked, revoked and replaced in one transaction, so
        both are never valid at once and a concurrent rotate of the same
        secret sees it revoked. With rotation disabled the
        presented secret is handed back unchanged.
        """
        with self._transaction():
            current = self._validate(raw_secret)
            if not self.rotate_enabled:
                return Issued(
                    raw_secret=raw_secret,
                    expires_at=current.expires_at,
                    kind=current.kind,
                    user_id=current.user_id,
                )
            current.revoke()
            self.store.save(current)
            logger.info(
                "refresh_session_rotated",
                user_id=current.user_id,
                session_id=current.id,
            )
            return self._issue(
                current.user_id,
                current.kind is SessionKind.EXTENDED,
                context or RequestContext.empty(),
            )

    def revoke(self, raw_secret: Optional[str]) -> None:
        """Revoke one session; unknown or blank secrets are ignored."""
        if _is_blank(raw_secret):
            return
        with self._transaction():
            session = self.store.find_by_secret_hash(
                hash_secret(raw_secret), for_update=True
            )
            if session is None or session.revoked:
                return
            session.revoke()
            self.store.save(session)
        logger.info(
            "refresh_session_revoked", user_id=session.user_id, session_id=session.id
        )

    def revoke_all(self, user_id: int) -> None:
        with self._transaction():
            count = self.store.revoke_all_for_user(user_id)
        logger.info("refresh_sessions_revoked_all", user_id=user_id, count=count)

    def sweep_expired(self) -> int:
        """Delete sessions that expired more than ``retention_days`` ago."""
        threshold = self._now() - timedelta(days=self.retention_days)
        deleted = self.store.delete_expired_before(threshold)
        logger.info(
            "refresh_sessions_swept",
            deleted=deleted,
            threshold=threshold.isoformat(),
        )
        return deleted
