"""
Session janitor

Reclaims finished upload sessions and their chunk data in the background.
Completing sessions are never touched: their chunks are still being read.
"""
import asyncio
import logging
from datetime import datetime, timedelta
from typing import Optional

from ..core.config import settings
from .chunk_store import ChunkStore
from .sessions import SessionManager

logger = logging.getLogger(__name__)


class SessionJanitor:
    """Periodic sweeper for the session table and the chunk store"""

    def __init__(
        self,
        sessions: SessionManager,
        chunks: ChunkStore,
        grace_seconds: Optional[int] = None,
        interval_seconds: Optional[int] = None
    ):
        self.sessions = sessions
        self.chunks = chunks
        self.grace = timedelta(seconds=grace_seconds if grace_seconds is not None
                               else settings.SESSION_GRACE_PERIOD_SECONDS)
        self.interval = interval_seconds or settings.JANITOR_INTERVAL_SECONDS
        self._task: Optional[asyncio.Task] = None

    def sweep(self, now: Optional[datetime] = None) -> int:
        """
        One cleanup pass.

        1. Open sessions past their expiry become expired.
        2. Terminal sessions older than the grace period are dropped along
           with their chunks.
        3. Chunk directories that belong to no session are deleted.

        Returns:
            Number of sessions and orphan directories removed
        """
        now = now or self.sessions.clock()
        expired = self.sessions.expire_overdue(now)
        if expired:
            logger.info(f"Expired {len(expired)} idle upload sessions")

        removed = 0
        for upload_id in self.sessions.sweep_candidates(self.grace, now):
            self.chunks.delete_upload(upload_id)
            self.sessions.remove(upload_id)
            removed += 1

        known = self.sessions.known_ids()
        for upload_id in self.chunks.list_uploads():
            if upload_id not in known:
                logger.warning(f"Removing orphan chunk data for unknown upload {upload_id}")
                self.chunks.delete_upload(upload_id)
                removed += 1

        if removed:
            logger.info(f"🧹 Janitor removed {removed} sessions/chunk directories")
        return removed

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._run())
            logger.info(f"🧹 Session janitor started (every {self.interval}s, grace {self.grace})")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Session janitor stopped")

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            try:
                self.sweep()
            except Exception as e:
                logger.exception(f"❌ Janitor sweep failed: {e}")
