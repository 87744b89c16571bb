"""Exception hierarchy shared by the engine, the transport and the client."""

from typing import Optional


class SearchChatError(Exception):
    """Base class for all service errors"""


class TurnError(SearchChatError):
    """A failure that aborts the current turn"""


class CapabilityError(TurnError):
    """The model or search capability failed"""

    def __init__(self, capability: str, message: str):
        super().__init__(f"{capability} failed: {message}")
        self.capability = capability
        self.detail = message


class UnknownToolError(CapabilityError):
    """The model asked for a tool that is not registered"""

    def __init__(self, tool_name: str):
        super().__init__("model", f"unknown tool '{tool_name}'")
        self.tool_name = tool_name


class ToolArgumentError(CapabilityError):
    """Tool arguments produced by the model are unusable"""

    def __init__(self, tool_name: str, message: str):
        super().__init__(tool_name, f"invalid arguments: {message}")
        self.tool_name = tool_name


class UnknownThreadError(TurnError):
    """A turn named a thread this server never created or already evicted"""

    def __init__(self, thread_id: str):
        super().__init__(f"unknown thread '{thread_id}'")
        self.thread_id = thread_id


class ToolRoundLimitExceeded(TurnError):
    """The model kept requesting tools past the configured round cap"""

    def __init__(self, max_rounds: int):
        super().__init__(f"tool round limit of {max_rounds} exceeded")
        self.max_rounds = max_rounds


class TurnTimeoutError(TurnError):
    """The turn ran past its wall-clock budget"""

    def __init__(self, timeout_seconds: float):
        super().__init__(f"turn timed out after {timeout_seconds:g}s")
        self.timeout_seconds = timeout_seconds


class EventStreamClosed(SearchChatError):
    """An event was emitted after the stream ended or broke a protocol rule"""


class MalformedEventError(SearchChatError):
    """A wire event could not be parsed"""

    def __init__(self, message: str, payload: Optional[str] = None):
        super().__init__(message)
        self.payload = payload
