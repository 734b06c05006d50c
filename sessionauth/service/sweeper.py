"""Background purge of long-expired refresh sessions.

The sweep only deletes rows that expired more than the retention window ago,
so it never races with a request over a live session.
"""

from __future__ import annotations

import asyncio
from typing import Optional

from sessionauth.logging import get_logger
from sessionauth.service.sessions import SessionManager

logger = get_logger(__name__)

DEFAULT_SWEEP_INTERVAL_SECONDS = 24 * 60 * 60


class SessionSweeper:
    """Runs ``SessionManager.sweep_expired`` on a fixed interval."""

    def __init__(
        self,
        sessions: SessionManager,
        interval_seconds: int = DEFAULT_SWEEP_INTERVAL_SECONDS,
    ) -> None:
        self.sessions = sessions
        self.interval_seconds = interval_seconds
        self._running = False
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        if self._running:
            logger.warning("session_sweeper_already_running")
            return

        self._running = True
        self._task = asyncio.create_task(self._run_loop())
        logger.info("session_sweeper_started", interval_seconds=self.interval_seconds)

    async def stop(self) -> None:
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("session_sweeper_stopped")

    async def run_once(self) -> int:
        """Sweep now, off the event loop thread."""
        return await asyncio.to_thread(self.sessions.sweep_expired)

    async def _run_loop(self) -> None:
        while self._running:
            try:
                await self.run_once()
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.error(
                    "session_sweep_failed",
                    error=str(exc),
                    error_type=type(exc).__name__,
                )
            await asyncio.sleep(self.interval_seconds)
