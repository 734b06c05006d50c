from __future__ import annotations

import contextlib
import threading
from dataclasses import replace
from datetime import datetime
from typing import Dict, Iterator, List, Optional

from sessionauth.logging import get_logger
from sessionauth.storage.errors import ConstraintViolation
from sessionauth.storage.models import RefreshSession, User, utcnow


class MemoryStore:
    """In-memory backing store for users and refresh sessions.

    Records are copied on the way in and out so callers only ever change
    stored state through ``save``.
    """

    def __init__(self) -> None:
        self.logger = get_logger(__name__)
        self.users: Dict[int, User] = {}
        self.sessions: Dict[int, RefreshSession] = {}
        self._by_hash: Dict[str, int] = {}
        self._user_id_seq: int = 1
        self._session_id_seq: int = 1
        # RLock so transaction() can wrap the other (locking) methods
        self._data_lock = threading.RLock()
        self._tx_depth = 0

    # transactions
    @contextlib.contextmanager
    def transaction(self) -> Iterator[None]:
        """Serialize a read-modify-write block; roll back on error.

        Nested blocks join the outermost one.
        """
        with self._data_lock:
            if self._tx_depth:
                self._tx_depth += 1
                try:
                    yield
                finally:
                    self._tx_depth -= 1
                return
            snapshot = (
                {sid: replace(sess) for sid, sess in self.sessions.items()},
                dict(self._by_hash),
                dict(self.users),
                self._session_id_seq,
                self._user_id_seq,
            )
            self._tx_depth = 1
            try:
                yield
            except BaseException:
                (
                    self.sessions,
                    self._by_hash,
                    self.users,
                    self._session_id_seq,
                    self._user_id_seq,
                ) = snapshot
                self.logger.debug("memory_transaction_rolled_back")
                raise
            finally:
                self._tx_depth = 0

    # users
    def create_user(
        self,
        username: str,
        password_hash: str,
        *,
        role: str = "USER",
        active: bool = True,
        locked: bool = False,
    ) -> User:
        with self._data_lock:
            if any(u.username == username for u in self.users.values()):
                raise ConstraintViolation("username already exists", {"username": username})
            user = User(
                id=self._user_id_seq,
                username=username,
                password_hash=password_hash,
                role=role,
                active=active,
                locked=locked,
            )
            self._user_id_seq += 1
            self.users[user.id] = user
            return user

    def get_user(self, user_id: int) -> Optional[User]:
        with self._data_lock:
            return self.users.get(user_id)

    def get_user_by_username(self, username: str) -> Optional[User]:
        with self._data_lock:
            return next(
                (u for u in self.users.values() if u.username == username), None
            )

    def record_login(self, user_id: int, when: Optional[datetime] = None) -> None:
        with self._data_lock:
            user = self.users.get(user_id)
            if not user:
                return
            self.users[user_id] = replace(user, last_login_at=when or utcnow())

    def set_account_status(
        self,
        user_id: int,
        *,
        active: Optional[bool] = None,
        locked: Optional[bool] = None,
    ) -> Optional[User]:
        with self._data_lock:
            user = self.users.get(user_id)
            if not user:
                return None
            updated = replace(
                user,
                active=user.active if active is None else active,
                locked=user.locked if locked is None else locked,
            )
            self.users[user_id] = updated
            return updated

    def delete_user(self, user_id: int) -> bool:
        with self._data_lock:
            if self.users.pop(user_id, None) is None:
                return False
            for sid, sess in list(self.sessions.items()):
                if sess.user_id == user_id:
                    self.sessions.pop(sid, None)
                    self._by_hash.pop(sess.secret_hash, None)
            return True

    # refresh sessions
    def find_by_secret_hash(
        self, secret_hash: str, *, for_update: bool = False
    ) -> Optional[RefreshSession]:
        # for_update needs no row lock here: transaction() already holds _data_lock
        with self._data_lock:
            sid = self._by_hash.get(secret_hash)
            if sid is None:
                return None
            return replace(self.sessions[sid])

    def save(self, record: RefreshSession) -> RefreshSession:
        with self._data_lock:
            owner = self._by_hash.get(record.secret_hash)
            if owner is not None and owner != record.id:
                raise ConstraintViolation(
                    "refresh session hash already exists", {"user_id": record.user_id}
                )
            if record.id is None:
                record = replace(record, id=self._session_id_seq)
                self._session_id_seq += 1
            else:
                previous = self.sessions.get(record.id)
                if previous and previous.secret_hash != record.secret_hash:
                    self._by_hash.pop(previous.secret_hash, None)
                if previous and previous.revoked and not record.revoked:
                    # a stale copy never un-revokes a session
                    record = replace(record, revoked=True)
            self.sessions[record.id] = replace(record)
            self._by_hash[record.secret_hash] = record.id
            return replace(record)

    def count_valid(self, user_id: int, now: datetime) -> int:
        with self._data_lock:
            return sum(
                1
                for sess in self.sessions.values()
                if sess.user_id == user_id and sess.is_valid(now)
            )

    def list_valid(self, user_id: int, now: datetime) -> List[RefreshSession]:
        with self._data_lock:
            valid = [
                replace(sess)
                for sess in self.sessions.values()
                if sess.user_id == user_id and sess.is_valid(now)
            ]
        return sorted(valid, key=lambda s: (s.created_at, s.id))

    def list_sessions(self, user_id: int) -> List[RefreshSession]:
        with self._data_lock:
            owned = [replace(s) for s in self.sessions.values() if s.user_id == user_id]
        return sorted(owned, key=lambda s: (s.created_at, s.id))

    def revoke_all_for_user(self, user_id: int) -> int:
        with self._data_lock:
            count = 0
            for sess in self.sessions.values():
                if sess.user_id == user_id:
                    sess.revoke()
                    count += 1
            return count

    def delete_expired_before(self, threshold: datetime) -> int:
        with self._data_lock:
            stale = [
                sid for sid, sess in self.sessions.items() if sess.expires_at < threshold
            ]
            for sid in stale:
                sess = self.sessions.pop(sid)
                self._by_hash.pop(sess.secret_hash, None)
            return len(stale)
