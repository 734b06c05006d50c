from __future__ import annotations

import contextlib
from contextvars import ContextVar
from datetime import datetime
from typing import Any, Iterator, List, Optional

from psycopg import errors
from psycopg.rows import dict_row
from psycopg_pool import ConnectionPool

from sessionauth.logging import get_logger
from sessionauth.storage.errors import ConstraintViolation
from sessionauth.storage.models import RefreshSession, SessionKind, User, utcnow

_SCHEMA_STATEMENTS = (
    """
    CREATE TABLE IF NOT EXISTS app_user (
        id BIGSERIAL PRIMARY KEY,
        username VARCHAR(100) NOT NULL UNIQUE,
        password_hash VARCHAR(255) NOT NULL,
        role VARCHAR(30) NOT NULL DEFAULT 'USER',
        active BOOLEAN NOT NULL DEFAULT TRUE,
        locked BOOLEAN NOT NULL DEFAULT FALSE,
        created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
        last_login_at TIMESTAMPTZ
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS refresh_session (
        id BIGSERIAL PRIMARY KEY,
        secret_hash CHAR(64) NOT NULL UNIQUE,
        user_id BIGINT NOT NULL REFERENCES app_user(id) ON DELETE CASCADE,
        kind VARCHAR(20) NOT NULL,
        created_at TIMESTAMPTZ NOT NULL,
        last_used_at TIMESTAMPTZ NOT NULL,
        expires_at TIMESTAMPTZ NOT NULL,
        revoked BOOLEAN NOT NULL DEFAULT FALSE,
        ip_address VARCHAR(45),
        user_agent VARCHAR(500),
        device_name VARCHAR(100)
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_refresh_session_user_id ON refresh_session (user_id)",
    "CREATE INDEX IF NOT EXISTS idx_refresh_session_expires_at ON refresh_session (expires_at)",
)

_VALID_CLAUSE = "user_id = %s AND revoked = FALSE AND expires_at > %s"


class PostgresStore:
    """Postgres-backed store for users and refresh sessions.

    Statements issued inside ``transaction()`` share one connection (carried
    in a context variable); statements outside it each borrow a pooled
    connection and commit on return.
    """

    def __init__(self, dsn: str, *, ensure_schema: bool = True) -> None:
        self.dsn = dsn
        self.logger = get_logger(__name__)
        self.pool = ConnectionPool(
            self.dsn,
            min_size=2,
            max_size=10,
            kwargs={"row_factory": dict_row, "autocommit": False},
        )
        self._active_conn: ContextVar[Any] = ContextVar("sessionauth_pg_conn", default=None)
        if ensure_schema:
            self._ensure_schema()

    def close(self) -> None:
        self.pool.close()

    @contextlib.contextmanager
    def _connect(self) -> Iterator[Any]:
        active = self._active_conn.get()
        if active is not None:
            yield active
            return
        with self.pool.connection() as conn:
            yield conn

    @contextlib.contextmanager
    def transaction(self) -> Iterator[None]:
        active = self._active_conn.get()
        if active is not None:
            # nested block becomes a savepoint on the shared connection
            with active.transaction():
                yield
            return
        with self.pool.connection() as conn:
            token = self._active_conn.set(conn)
            try:
                with conn.transaction():
                    yield
            finally:
                self._active_conn.reset(token)

    def _ensure_schema(self) -> None:
        """Create the ``app_user`` and ``refresh_session`` tables if missing."""

        with self._connect() as conn:
            for statement in _SCHEMA_STATEMENTS:
                conn.execute(statement)

    @staticmethod
    def _row_to_user(row: dict) -> User:
        return User(
            id=int(row["id"]),
            username=row["username"],
            password_hash=row["password_hash"],
            role=row.get("role") or "USER",
            active=bool(row.get("active", True)),
            locked=bool(row.get("locked", False)),
            created_at=row.get("created_at") or utcnow(),
            last_login_at=row.get("last_login_at"),
        )

    @staticmethod
    def _row_to_session(row: dict) -> RefreshSession:
        return RefreshSession(
            id=int(row["id"]),
            secret_hash=row["secret_hash"].strip(),
            user_id=int(row["user_id"]),
            kind=SessionKind(row["kind"]),
            created_at=row["created_at"],
            last_used_at=row["last_used_at"],
            expires_at=row["expires_at"],
            revoked=bool(row["revoked"]),
            ip_address=row.get("ip_address"),
            user_agent=row.get("user_agent"),
            device_name=row.get("device_name"),
        )

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
        try:
            with self._connect() as conn:
                row = conn.execute(
                    """
                    INSERT INTO app_user (username, password_hash, role, active, locked)
                    VALUES (%s, %s, %s, %s, %s)
                    RETURNING *
                    """,
                    (username, password_hash, role, active, locked),
                ).fetchone()
        except errors.UniqueViolation as exc:
            raise ConstraintViolation(
                "username already exists", {"username": username}
            ) from exc
        return self._row_to_user(row)

    def get_user(self, user_id: int) -> Optional[User]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM app_user WHERE id = %s", (user_id,)
            ).fetchone()
        return self._row_to_user(row) if row else None

    def get_user_by_username(self, username: str) -> Optional[User]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM app_user WHERE username = %s", (username,)
            ).fetchone()
        return self._row_to_user(row) if row else None

    def record_login(self, user_id: int, when: Optional[datetime] = None) -> None:
        with self._connect() as conn:
            conn.execute(
                "UPDATE app_user SET last_login_at = %s WHERE id = %s",
                (when or utcnow(), user_id),
            )

    def set_account_status(
        self,
        user_id: int,
        *,
        active: Optional[bool] = None,
        locked: Optional[bool] = None,
    ) -> Optional[User]:
        with self._connect() as conn:
            row = conn.execute(
                """
                UPDATE app_user
                SET active = COALESCE(%s, active), locked = COALESCE(%s, locked)
                WHERE id = %s
                RETURNING *
                """,
                (active, locked, user_id),
            ).fetchone()
        return self._row_to_user(row) if row else None

    def delete_user(self, user_id: int) -> bool:
        with self._connect() as conn:
            cur = conn.execute("DELETE FROM app_user WHERE id = %s", (user_id,))
        return cur.rowcount > 0

    # refresh sessions
    def find_by_secret_hash(
        self, secret_hash: str, *, for_update: bool = False
    ) -> Optional[RefreshSession]:
        sql = "SELECT * FROM refresh_session WHERE secret_hash = %s"
        if for_update:
            # row lock held until the enclosing transaction ends
            sql += " FOR UPDATE"
        with self._connect() as conn:
            row = conn.execute(sql, (secret_hash,)).fetchone()
        return self._row_to_session(row) if row else None

    def save(self, record: RefreshSession) -> RefreshSession:
        params = (
            record.secret_hash,
            record.user_id,
            record.kind.value,
            record.created_at,
            record.last_used_at,
            record.expires_at,
            record.revoked,
            record.ip_address,
            record.user_agent,
            record.device_name,
        )
        try:
            with self._connect() as conn:
                if record.id is None:
                    row = conn.execute(
                        """
                        INSERT INTO refresh_session (secret_hash, user_id, kind, created_at, last_used_at, expires_at, revoked, ip_address, user_agent, device_name)
                        VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                        RETURNING *
                        """,
                        params,
                    ).fetchone()
                else:
                    # revoked is OR-ed so a stale copy can never un-revoke a row
                    row = conn.execute(
                        """
                        UPDATE refresh_session
                        SET secret_hash = %s, user_id = %s, kind = %s, created_at = %s,
                            last_used_at = %s, expires_at = %s,
                            revoked = (refresh_session.revoked OR %s),
                            ip_address = %s, user_agent = %s, device_name = %s
                        WHERE id = %s
                        RETURNING *
                        """,
                        params + (record.id,),
                    ).fetchone()
        except errors.UniqueViolation as exc:
            raise ConstraintViolation(
                "refresh session hash already exists", {"user_id": record.user_id}
            ) from exc
        except errors.ForeignKeyViolation as exc:
            raise ConstraintViolation(
                "refresh session user missing", {"user_id": record.user_id}
            ) from exc
        if not row:
            raise ConstraintViolation("refresh session missing", {"id": record.id})
        return self._row_to_session(row)

    def count_valid(self, user_id: int, now: datetime) -> int:
        with self._connect() as conn:
            row = conn.execute(
                f"SELECT COUNT(*) AS n FROM refresh_session WHERE {_VALID_CLAUSE}",
                (user_id, now),
            ).fetchone()
        return int(row["n"]) if row else 0

    def list_valid(self, user_id: int, now: datetime) -> List[RefreshSession]:
        with self._connect() as conn:
            rows = conn.execute(
                f"SELECT * FROM refresh_session WHERE {_VALID_CLAUSE} ORDER BY created_at, id",
                (user_id, now),
            ).fetchall()
        return [self._row_to_session(row) for row in rows]

    def list_sessions(self, user_id: int) -> List[RefreshSession]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM refresh_session WHERE user_id = %s ORDER BY created_at, id",
                (user_id,),
            ).fetchall()
        return [self._row_to_session(row) for row in rows]

    def revoke_all_for_user(self, user_id: int) -> int:
        with self._connect() as conn:
            cur = conn.execute(
                "UPDATE refresh_session SET revoked = TRUE WHERE user_id = %s",
                (user_id,),
            )
        return cur.rowcount

    def delete_expired_before(self, threshold: datetime) -> int:
        with self._connect() as conn:
            cur = conn.execute(
                "DELETE FROM refresh_session WHERE expires_at < %s", (threshold,)
            )
        return cur.rowcount
