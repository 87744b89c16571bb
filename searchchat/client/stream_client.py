"""HTTP client for the chat stream endpoint."""

from contextlib import aclosing
from typing import AsyncIterator, List, Optional

import httpx
import structlog

from searchchat.application.sse.codec import aiter_sse_lines, decode_event, parse_sse_line
from searchchat.domain.streaming.events import BaseEvent
from searchchat.client.reducer import (
    CONNECTIVITY_ERROR_MESSAGE,
    DisplayMessage,
    MessageStatus,
    TurnReducer,
)
from searchchat.domain.errors import MalformedEventError, SearchChatError

logger = structlog.get_logger(__name__)

STREAM_PATH = "/chat/stream"


class StreamSetupError(SearchChatError):
    """The stream could not be opened at all"""


class TransportError(SearchChatError):
    """The stream broke or was refused after connecting"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class ChatStreamClient:
    """Opens one event stream per turn"""

    def __init__(self, base_url: str, http_client: Optional[httpx.AsyncClient] = None):
        self.base_url = base_url.rstrip("/")
        self._http_client = http_client or httpx.AsyncClient(timeout=httpx.Timeout(10.0, read=None))
        self._owns_client = http_client is None

    async def aclose(self) -> None:
        if self._owns_client:
            await self._http_client.aclose()

    async def stream_events(self, message: str, thread_id: Optional[str] = None) -> AsyncIterator[BaseEvent]:
        """Yield the turn's events in order, skipping malformed or unknown ones.

        Raises:
            StreamSetupError: The server could not be reached.
            TransportError: Non-success response or the connection dropped.
        """
        # httpx percent-encodes query values, so any message text is safe
        params = {"message": message}
        if thread_id:
            params["threadId"] = thread_id

        try:
            async with self._http_client.stream(
                "GET",
                f"{self.base_url}{STREAM_PATH}",
                params=params,
                headers={"Accept": "text/event-stream"},
            ) as response:
                if response.status_code != 200:
                    await response.aread()
                    raise TransportError(
                        f"stream request failed with status {response.status_code}",
                        status_code=response.status_code,
                    )

                async for line in aiter_sse_lines(response.aiter_text()):
                    payload = parse_sse_line(line)
                    if payload is None:
                        continue
                    try:
                        event = decode_event(payload)
                    except MalformedEventError as e:
                        logger.warning("Skipping malformed event", error=str(e))
                        continue
                    if event is None:
                        continue
                    yield event
        except (httpx.ConnectError, httpx.ConnectTimeout) as e:
            raise StreamSetupError(f"could not connect to {self.base_url}: {e!s}") from e
        except httpx.HTTPError as e:
            raise TransportError(f"stream interrupted: {e!s}") from e


class ChatSession:
    """A conversation as seen by one client: thread id plus displayed messages"""

    def __init__(self, client: ChatStreamClient):
        self.client = client
        self.thread_id: Optional[str] = None
        self.messages: List[DisplayMessage] = []
        self._next_id = 1

    async def stream(self, text: str) -> AsyncIterator[DisplayMessage]:
        """Send a message and yield the assistant message as it builds up.

        The last snapshot yielded is the final message.
        """
        self._append(DisplayMessage(id=self._take_id(), content=text, is_user=True))
        reducer = TurnReducer(message_id=self._take_id())
        self._append(reducer.message)
        yield reducer.message

        try:
            async with aclosing(self.client.stream_events(text, self.thread_id)) as events:
                async for event in events:
                    reducer.apply(event)
                    if reducer.thread_id and reducer.thread_id != self.thread_id:
                        self.thread_id = reducer.thread_id
                    self._replace(reducer.message)
                    yield reducer.message
                    if reducer.finished:
                        break
        except StreamSetupError as e:
            logger.error("Stream setup failed", error=str(e))
            final = DisplayMessage(
                id=reducer.message_id,
                content=CONNECTIVITY_ERROR_MESSAGE,
                is_user=False,
                status=MessageStatus.CONNECTIVITY_ERROR,
            )
            self._replace(final)
            yield final
            return
        except TransportError as e:
            logger.error("Stream transport failed", error=str(e))
            if e.status_code == 404:
                # The server no longer knows this thread; the next message starts a new one
                self.thread_id = None

        if not reducer.finished:
            self._replace(reducer.fail_transport())
            yield reducer.message

    async def send(self, text: str) -> DisplayMessage:
        """Send a message and return the final assistant message"""
        final = None
        async for snapshot in self.stream(text):
            final = snapshot
        return final

    def _take_id(self) -> int:
        message_id = self._next_id
        self._next_id += 1
        return message_id

    def _append(self, message: DisplayMessage):
        self.messages.append(message)

    def _replace(self, message: DisplayMessage):
        for index, existing in enumerate(self.messages):
            if existing.id == message.id:
                self.messages[index] = message
                return
        self.messages.append(message)
