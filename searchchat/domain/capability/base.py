"""Abstract interfaces for the model and search capabilities."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, List, Sequence, Union

from searchchat.domain.models.conversation import Message, SearchResultItem, ToolCall


@dataclass(frozen=True)
class TextFragment:
    """A piece of answer text streamed before the final result."""
    text: str


@dataclass(frozen=True)
class ModelDecision:
    """Final structured result of one model invocation."""
    text: str = ""
    tool_calls: List[ToolCall] = field(default_factory=list)

    @property
    def has_tool_calls(self) -> bool:
        return len(self.tool_calls) > 0


ModelOutput = Union[TextFragment, ModelDecision]


@dataclass(frozen=True)
class ToolDefinition:
    """Definition of a tool for the model."""
    name: str
    description: str
    parameters: Dict[str, Any]  # JSON Schema format

    def to_openai_format(self) -> dict:
        """Convert to the OpenAI-style function tool format."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }


class ModelCapability(ABC):
    """Language model that can answer or ask for a tool."""

    @abstractmethod
    def respond(
        self,
        history: Sequence[Message],
        tools: Sequence[ToolDefinition],
    ) -> AsyncIterator[ModelOutput]:
        """Stream a response for the given history.

        Args:
            history: Ordered thread messages.
            tools: Tools the model may call.

        Yields:
            Zero or more TextFragment items, then exactly one ModelDecision.

        Raises:
            CapabilityError: If the underlying model fails.
        """
        ...


class SearchCapability(ABC):
    """Web search backend."""

    @abstractmethod
    async def search(self, query: str) -> List[SearchResultItem]:
        """Run a web search.

        Raises:
            CapabilityError: If the search backend fails.
        """
        ...
