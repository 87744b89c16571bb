"""Fold one turn's event stream into displayable message state."""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import List, Optional

import structlog

from searchchat.domain.streaming.events import (
    BaseEvent,
    CheckpointEvent,
    ContentEvent,
    EndEvent,
    ErrorEvent,
    SearchResultsEvent,
    SearchStartEvent,
)

logger = structlog.get_logger(__name__)

NO_CONTENT_FALLBACK = "No response content was received."
TURN_ERROR_FALLBACK = "Sorry, something went wrong while generating a response."
TRANSPORT_FAILURE_MESSAGE = "Sorry, there was an error generating a response."
CONNECTIVITY_ERROR_MESSAGE = "Sorry, there was an error connecting to the server."


class Stage(str, Enum):
    """Visible phases of tool-assisted progress"""
    SEARCHING = "searching"
    READING = "reading"
    WRITING = "writing"
    ERROR = "error"


class MessageStatus(str, Enum):
    STREAMING = "streaming"
    COMPLETE = "complete"
    FALLBACK = "fallback"
    TRANSPORT_FAILED = "transport_failed"
    CONNECTIVITY_ERROR = "connectivity_error"


@dataclass
class SearchStageRecord:
    stages: List[Stage] = field(default_factory=list)
    query: str = ""
    urls: List[str] = field(default_factory=list)
    error: Optional[str] = None

    def add_stage(self, stage: Stage):
        # Arrival order is kept; a stage seen before is not repeated
        if stage not in self.stages:
            self.stages.append(stage)


@dataclass
class DisplayMessage:
    """What the UI renders for one chat bubble"""
    id: int
    content: str
    is_user: bool
    status: MessageStatus = MessageStatus.COMPLETE
    search_info: Optional[SearchStageRecord] = None

    @property
    def is_loading(self) -> bool:
        return self.status == MessageStatus.STREAMING and not self.content


class TurnReducer:
    """Accumulates the events of a single turn.

    ``apply`` must be called in arrival order. After ``end`` (or a
    transport failure) the reducer is finished and ignores further events.
    """

    def __init__(self, message_id: int = 0):
        self.message_id = message_id
        self.accumulated_text = ""
        self.stage_record = SearchStageRecord()
        self.received_any_content = False
        self.thread_id: Optional[str] = None
        self.finished = False
        self._final: Optional[DisplayMessage] = None

    def apply(self, event: BaseEvent) -> None:
        if self.finished:
            logger.warning("Event after end ignored", event_type=getattr(event, "type", None))
            return

        if isinstance(event, CheckpointEvent):
            self.thread_id = event.thread_id
        elif isinstance(event, ContentEvent):
            self.accumulated_text += event.text
            self.received_any_content = True
        elif isinstance(event, SearchStartEvent):
            self.stage_record.add_stage(Stage.SEARCHING)
            self.stage_record.query = event.query
        elif isinstance(event, SearchResultsEvent):
            self.stage_record.add_stage(Stage.READING)
            self.stage_record.urls = list(event.urls)
        elif isinstance(event, ErrorEvent):
            self.stage_record.add_stage(Stage.ERROR)
            self.stage_record.error = event.message
        elif isinstance(event, EndEvent):
            self._finish_end()
        else:
            raise TypeError(f"Unhandled event type: {type(event).__name__}")

    def fail_transport(self) -> DisplayMessage:
        """Finalize after the stream broke before end"""

        if self.finished:
            return self.message
        if self.received_any_content:
            return self._finalize(self.accumulated_text, MessageStatus.COMPLETE)
        return self._finalize(TRANSPORT_FAILURE_MESSAGE, MessageStatus.TRANSPORT_FAILED)

    @property
    def message(self) -> DisplayMessage:
        """Current display state; the final message once finished"""

        if self._final is not None:
            return self._final
        return DisplayMessage(
            id=self.message_id,
            content=self.accumulated_text,
            is_user=False,
            status=MessageStatus.STREAMING,
            search_info=self._search_info(),
        )

    def _finish_end(self):
        if self.stage_record.stages:
            self.stage_record.add_stage(Stage.WRITING)

        if self.received_any_content:
            self._finalize(self.accumulated_text, MessageStatus.COMPLETE)
        elif self.stage_record.error is not None:
            self._finalize(TURN_ERROR_FALLBACK, MessageStatus.FALLBACK)
        else:
            self._finalize(NO_CONTENT_FALLBACK, MessageStatus.FALLBACK)

    def _finalize(self, content: str, status: MessageStatus) -> DisplayMessage:
        self.finished = True
        self._final = DisplayMessage(
            id=self.message_id,
            content=content,
            is_user=False,
            status=status,
            search_info=self._search_info(),
        )
        return self._final

    def _search_info(self) -> Optional[SearchStageRecord]:
        if not self.stage_record.stages:
            return None
        return replace(
            self.stage_record,
            stages=list(self.stage_record.stages),
            urls=list(self.stage_record.urls),
        )
