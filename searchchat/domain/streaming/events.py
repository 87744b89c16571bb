from typing import Annotated, List, Literal, Union
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from enum import Enum


class EventType(str, Enum):
    """Stream event types"""
    CHECKPOINT = "checkpoint"
    CONTENT = "content"
    SEARCH_START = "searchStart"
    SEARCH_RESULTS = "searchResults"
    ERROR = "error"
    END = "end"


class BaseEvent(BaseModel):
    """Base model for all stream events. Field names go camelCase on the wire."""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )


class CheckpointEvent(BaseEvent):
    """Thread id minted for a new conversation"""
    type: Literal["checkpoint"] = "checkpoint"
    thread_id: str


class ContentEvent(BaseEvent):
    """A streamed fragment of answer text"""
    type: Literal["content"] = "content"
    text: str


class SearchStartEvent(BaseEvent):
    """A web search was requested by the model"""
    type: Literal["searchStart"] = "searchStart"
    query: str


class SearchResultsEvent(BaseEvent):
    """Result urls of a finished web search, in capability order"""
    type: Literal["searchResults"] = "searchResults"
    urls: List[str] = Field(default_factory=list)


class ErrorEvent(BaseEvent):
    """The turn aborted"""
    type: Literal["error"] = "error"
    message: str


class EndEvent(BaseEvent):
    """Last event of every turn"""
    type: Literal["end"] = "end"


StreamEvent = Annotated[
    Union[
        CheckpointEvent,
        ContentEvent,
        SearchStartEvent,
        SearchResultsEvent,
        ErrorEvent,
        EndEvent,
    ],
    Field(discriminator="type"),
]
