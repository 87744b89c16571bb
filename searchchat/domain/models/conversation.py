from typing import Dict, Any, Optional, List
from pydantic import BaseModel, ConfigDict, Field
from enum import Enum


class Role(str, Enum):
    """Message author roles"""
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


class TurnStatus(str, Enum):
    """Terminal status of a turn"""
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class ToolCall(BaseModel):
    """A tool invocation requested by the assistant"""
    model_config = ConfigDict(frozen=True)

    id: str = Field(description="Call identifier, unique within a turn")
    name: str = Field(description="Registered tool name")
    args: Dict[str, Any] = Field(default_factory=dict)


class Message(BaseModel):
    """One entry of a thread's history. Never mutated once appended."""
    model_config = ConfigDict(frozen=True)

    role: Role
    content: str = ""
    tool_calls: List[ToolCall] = Field(default_factory=list)
    tool_call_id: Optional[str] = None

    @classmethod
    def user(cls, content: str) -> "Message":
        return cls(role=Role.USER, content=content)

    @classmethod
    def assistant(cls, content: str, tool_calls: Optional[List[ToolCall]] = None) -> "Message":
        return cls(role=Role.ASSISTANT, content=content, tool_calls=list(tool_calls or []))

    @classmethod
    def tool(cls, content: str, tool_call_id: str) -> "Message":
        return cls(role=Role.TOOL, content=content, tool_call_id=tool_call_id)

    @property
    def has_tool_calls(self) -> bool:
        return len(self.tool_calls) > 0


class SearchResultItem(BaseModel):
    """A single web search hit"""
    url: str
    title: str = ""
    snippet: str = ""
    score: float = 0.0


class TurnOutcome(BaseModel):
    """Summary of how a turn ended"""
    thread_id: str
    status: TurnStatus
    text: str = ""
    error: Optional[str] = None
    tool_rounds: int = 0
