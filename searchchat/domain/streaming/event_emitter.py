from typing import AsyncIterator, List
import asyncio
import structlog

from searchchat.domain.streaming.events import (
    BaseEvent, CheckpointEvent, ContentEvent, EndEvent, ErrorEvent,
    EventType, SearchResultsEvent, SearchStartEvent,
)
from searchchat.domain.errors import EventStreamClosed

logger = structlog.get_logger(__name__)


class EventEmitter:
    """Serializes one turn's engine transitions into an ordered event stream"""

    def __init__(self, max_queued: int = 64):
        self._queue: "asyncio.Queue[BaseEvent]" = asyncio.Queue(maxsize=max_queued)
        self._checkpoint_sent = False
        self._ended = False
        self._detached = False

    async def checkpoint(self, thread_id: str):
        """Announce the id of a newly created thread"""

        if self._checkpoint_sent:
            raise EventStreamClosed("checkpoint already emitted for this turn")
        self._checkpoint_sent = True
        await self._emit(CheckpointEvent(thread_id=thread_id))

    async def content(self, text: str):
        """Stream a fragment of answer text"""

        await self._emit(ContentEvent(text=text))

    async def search_start(self, query: str):
        await self._emit(SearchStartEvent(query=query))

    async def search_results(self, urls: List[str]):
        await self._emit(SearchResultsEvent(urls=list(urls)))

    async def error(self, message: str):
        await self._emit(ErrorEvent(message=message))

    async def end(self):
        """Close the stream; nothing may follow"""

        await self._emit(EndEvent())
        self._ended = True

    def detach(self):
        """Stop delivering events; the consumer has gone away"""

        if not self._detached:
            logger.info("Event stream detached")
        self._detached = True

    async def _emit(self, event: BaseEvent):
        if self._ended:
            raise EventStreamClosed(f"cannot emit {event.type} after end")
        if self._detached:
            return

        await self._queue.put(event)

    async def events(self) -> AsyncIterator[BaseEvent]:
        """Yield events in emission order up to and including end"""

        while True:
            event = await self._queue.get()
            yield event
            if event.type == EventType.END:
                return

