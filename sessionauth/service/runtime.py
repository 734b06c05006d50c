from __future__ import annotations

import threading
from typing import Optional, Union
from urllib.parse import urlparse, urlunparse

from sessionauth.config import get_settings, reset_settings_cache
from sessionauth.logging import get_logger
from sessionauth.service.auth import AuthService, PasswordVerifier
from sessionauth.service.errors import ServerError
from sessionauth.service.sessions import SessionManager
from sessionauth.service.sweeper import SessionSweeper
from sessionauth.service.tokens import TokenCodec
from sessionauth.storage.memory import MemoryStore
from sessionauth.storage.postgres import PostgresStore

logger = get_logger(__name__)


def _mask_url_password(url: Optional[str]) -> Optional[str]:
    """Replace the password of a DSN with ``***`` for logging."""
    if not url:
        return url
    try:
        parsed = urlparse(url)
    except ValueError:
        return "***url_parse_error***"
    if not parsed.password:
        return url
    netloc = parsed.hostname or ""
    if parsed.port:
        netloc = f"{netloc}:{parsed.port}"
    netloc = f"{parsed.username or ''}:***@{netloc}"
    return urlunparse(
        (parsed.scheme, netloc, parsed.path, parsed.params, parsed.query, parsed.fragment)
    )


class Runtime:
    """Holds singleton service instances for the FastAPI app."""

    def __init__(self):
        self.settings = get_settings()
        store_type = "memory" if self.settings.use_memory_store else "postgres"
        logger.info(
            "runtime_init_started",
            use_memory_store=self.settings.use_memory_store,
            test_mode=self.settings.test_mode,
        )

        try:
            self.store: Union[MemoryStore, PostgresStore] = (
                MemoryStore()
                if self.settings.use_memory_store
                else PostgresStore(self.settings.database_url)
            )
        except Exception as exc:
            logger.error(
                "runtime_store_init_failed",
                store_type=store_type,
                database_url=_mask_url_password(self.settings.database_url),
                error_type=type(exc).__name__,
                error=str(exc),
            )
            raise ServerError(
                "session store unavailable", detail={"store_type": store_type}
            ) from exc
        logger.info("runtime_store_initialized", store_type=store_type)

        self.passwords = PasswordVerifier()
        self.tokens = TokenCodec(self.settings)
        self.sessions = SessionManager(self.store, self.settings)
        self.auth = AuthService(self.store, self.passwords, self.tokens, self.sessions)
        self.sweeper = SessionSweeper(
            self.sessions, interval_seconds=self.settings.sweep_interval_seconds
        )
        logger.info(
            "runtime_initialized",
            store_type=store_type,
            refresh_rotate=self.settings.refresh_rotate,
            max_active_sessions=self.settings.max_active_sessions,
            sweep_enabled=self.settings.sweep_enabled,
        )

    async def close(self) -> None:
        await self.sweeper.stop()
        if isinstance(self.store, PostgresStore):
            self.store.close()


runtime: Runtime | None = None
_runtime_lock = threading.Lock()


def get_runtime() -> Runtime:
    """Get or create the Runtime singleton.

    Double-checked locking: the unlocked read is the fast path once built.
    """
    global runtime
    if runtime is not None:
        return runtime
    with _runtime_lock:
        if runtime is None:
            runtime = Runtime()
        return runtime


def reset_runtime_for_tests() -> Runtime:
    """Reinitialize the runtime singleton for isolated test runs."""
    global runtime

    with _runtime_lock:
        reset_settings_cache()
        settings = get_settings()
        if not settings.test_mode:
            raise RuntimeError("runtime reset is only allowed in TEST_MODE")
        if runtime is not None and isinstance(runtime.store, PostgresStore):
            runtime.store.close()
        runtime = Runtime()
        return runtime
