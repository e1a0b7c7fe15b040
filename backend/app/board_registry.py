"""Registry of live pipeline boards, one per signed-in user.

A board (session + engine) is created and loaded the first time a user
opens the pipeline, reused for later requests, and invalidated on
sign-out.  Requests that arrive while a board is still mounting wait for
its first load.  Boards idle for longer than ``BOARD_IDLE_TTL_SECONDS``
are evicted, and at most ``MAX_ACTIVE_BOARDS`` are held at once.
"""

import asyncio
import logging
import os
import time
from typing import Any, Callable, Dict, Optional

from app.notification_center import NotificationCenter
from app.pipeline_engine import PipelineStageEngine
from app.session import UserSession

logger = logging.getLogger(__name__)

BOARD_IDLE_TTL_SECONDS = int(os.getenv("BOARD_IDLE_TTL_SECONDS", "1800"))  # 30 minutes
MAX_ACTIVE_BOARDS = int(os.getenv("MAX_ACTIVE_BOARDS", "1000"))


class PipelineBoardRegistry:
    def __init__(
        self,
        store,
        idle_ttl: float = BOARD_IDLE_TTL_SECONDS,
        max_boards: int = MAX_ACTIVE_BOARDS,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.idle_ttl = idle_ttl
        self.max_boards = max_boards
        self._clock = clock
        self._boards: Dict[str, PipelineStageEngine] = {}
        self._last_used: Dict[str, float] = {}
        self._mounts: Dict[str, asyncio.Task] = {}
        self._lock = asyncio.Lock()

    def get(self, user_id: str) -> Optional[PipelineStageEngine]:
        return self._boards.get(user_id)

    async def acquire(self, profile: Dict[str, Any]) -> PipelineStageEngine:
        """Return the user's board, mounting and loading it if needed."""
        user_id = str(profile["id"])
        async with self._lock:
            now = self._clock()
            self._evict_idle(now, keep=user_id)

            engine = self._boards.get(user_id)
            if engine is None or not engine.session.is_active:
                self._make_room()
                session = UserSession.from_profile(profile)
                engine = PipelineStageEngine(session, self.store, NotificationCenter())
                self._boards[user_id] = engine
                self._mounts[user_id] = asyncio.create_task(self._mount(user_id, engine))
                logger.info("Mounting pipeline board for user %s", user_id)

            self._last_used[user_id] = now
            mount = self._mounts.get(user_id)

        if mount is not None:
            # Shielded so one cancelled request does not abort the shared load
            await asyncio.shield(mount)
        return engine

    async def _mount(self, user_id: str, engine: PipelineStageEngine) -> None:
        try:
            await engine.load()
        finally:
            if self._mounts.get(user_id) is asyncio.current_task():
                del self._mounts[user_id]

    def _evict_idle(self, now: float, keep: Optional[str] = None) -> None:
        for user_id, last_used in list(self._last_used.items()):
            if user_id == keep or user_id in self._mounts:
                continue
            if now - last_used > self.idle_ttl:
                logger.info(
                    "Evicting pipeline board of user %s after %.0fs idle", user_id, now - last_used
                )
                self.release(user_id)

    def _make_room(self) -> None:
        while len(self._boards) >= self.max_boards:
            idle = [u for u in self._boards if u not in self._mounts]
            if not idle:
                return
            oldest = min(idle, key=lambda u: self._last_used.get(u, 0.0))
            logger.info("Board limit reached; evicting least recently used board (user %s)", oldest)
            self.release(oldest)

    def release(self, user_id: str) -> bool:
        """Invalidate and drop the user's board (sign-out or eviction)."""
        self._last_used.pop(user_id, None)
        engine = self._boards.pop(user_id, None)
        if engine is None:
            return False
        engine.session.invalidate()
        logger.info("Released pipeline board for user %s", user_id)
        return True

    async def shutdown(self) -> None:
        """Let in-flight side effects finish, then drop every board."""
        boards = list(self._boards.values())
        for engine in boards:
            await engine.drain()
        for user_id in list(self._boards):
            self.release(user_id)

    def __len__(self) -> int:
        return len(self._boards)
