from typing import Dict, List, Tuple, AsyncIterator
from datetime import datetime, timedelta
from contextlib import asynccontextmanager
import asyncio
from collections import defaultdict

import structlog

from searchchat.domain.models.conversation import Message

logger = structlog.get_logger(__name__)


class ConversationStore:
    """Keyed, append-only message history per conversation thread"""

    def __init__(self):
        self.conversations: Dict[str, List[Message]] = defaultdict(list)
        self.last_activity: Dict[str, datetime] = {}
        self._thread_locks: Dict[str, asyncio.Lock] = {}
        self._lock = asyncio.Lock()

    async def append(self, thread_id: str, message: Message):
        """Append a message to a thread"""

        async with self._lock:
            self.conversations[thread_id].append(message)
            self.last_activity[thread_id] = datetime.utcnow()

    async def create(self, thread_id: str):
        """Register a thread minted by the engine"""

        async with self._lock:
            self.conversations.setdefault(thread_id, [])
            self.last_activity[thread_id] = datetime.utcnow()

    async def read(self, thread_id: str) -> Tuple[Message, ...]:
        """Get the full ordered history of a thread"""

        async with self._lock:
            return tuple(self.conversations.get(thread_id, ()))

    async def exists(self, thread_id: str) -> bool:
        async with self._lock:
            return thread_id in self.conversations

    def thread_count(self) -> int:
        return len(self.conversations)

    @asynccontextmanager
    async def serialized(self, thread_id: str) -> AsyncIterator[None]:
        """Hold the per-thread turn lock; a second turn on the same thread waits here"""

        async with self._lock:
            thread_lock = self._thread_locks.setdefault(thread_id, asyncio.Lock())

        if thread_lock.locked():
            logger.info("Turn queued behind in-flight turn", thread_id=thread_id)

        try:
            async with thread_lock:
                yield
        finally:
            async with self._lock:
                # Locks of rejected thread ids are not kept around
                if thread_id not in self.conversations and not thread_lock.locked():
                    self._thread_locks.pop(thread_id, None)

    async def evict_idle(self, max_idle: timedelta) -> int:
        """Drop threads idle longer than max_idle with no turn in flight"""

        async with self._lock:
            cutoff = datetime.utcnow() - max_idle
            stale = [
                thread_id for thread_id, seen in self.last_activity.items()
                if seen < cutoff and not self._is_busy(thread_id)
            ]

            for thread_id in stale:
                self.conversations.pop(thread_id, None)
                self.last_activity.pop(thread_id, None)
                self._thread_locks.pop(thread_id, None)

        if stale:
            logger.info("Evicted idle threads", count=len(stale))
        return len(stale)

    def _is_busy(self, thread_id: str) -> bool:
        thread_lock = self._thread_locks.get(thread_id)
        return thread_lock is not None and thread_lock.locked()


async def sweep_idle_threads(store: ConversationStore, ttl_seconds: float, interval_seconds: float):
    """Periodically evict idle threads until cancelled"""
    while True:
        try:
            await store.evict_idle(timedelta(seconds=ttl_seconds))
        except Exception as e:
            logger.error("Thread sweep error", error=str(e))

        await asyncio.sleep(interval_seconds)
