"""LangChain-backed model capability."""

import uuid
from typing import Any, AsyncIterator, List, Optional, Sequence

import structlog
from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.messages import (
    AIMessage,
    AIMessageChunk,
    BaseMessage,
    HumanMessage,
    SystemMessage,
    ToolMessage,
)

from searchchat.domain.capability.base import (
    ModelCapability,
    ModelDecision,
    ModelOutput,
    TextFragment,
    ToolDefinition,
)
from searchchat.domain.errors import CapabilityError
from searchchat.domain.models.conversation import Message, Role, ToolCall
from searchchat.infrastructure.config.settings import Settings

logger = structlog.get_logger(__name__)


def to_langchain_messages(
    history: Sequence[Message],
    system_prompt: Optional[str] = None,
) -> List[BaseMessage]:
    """Convert thread history into LangChain messages."""
    messages: List[BaseMessage] = []
    if system_prompt:
        messages.append(SystemMessage(content=system_prompt))

    for message in history:
        if message.role == Role.USER:
            messages.append(HumanMessage(content=message.content))
        elif message.role == Role.ASSISTANT:
            messages.append(AIMessage(
                content=message.content,
                tool_calls=[
                    {"id": call.id, "name": call.name, "args": dict(call.args)}
                    for call in message.tool_calls
                ],
            ))
        else:
            messages.append(ToolMessage(content=message.content, tool_call_id=message.tool_call_id))

    return messages


def chunk_text(content: Any) -> str:
    """Extract plain text from a chunk's content (string or content blocks)."""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for block in content:
            if isinstance(block, str):
                parts.append(block)
            elif isinstance(block, dict) and block.get("type") == "text":
                parts.append(block.get("text", ""))
        return "".join(parts)
    return ""


class ChatModelCapability(ModelCapability):
    """Streams answers from any LangChain chat model with tool calling."""

    def __init__(self, chat_model: BaseChatModel, system_prompt: Optional[str] = None):
        """Initialize the capability.

        Args:
            chat_model: A LangChain chat model that supports bind_tools.
            system_prompt: Optional instructions prepended to every call.
        """
        self.chat_model = chat_model
        self.system_prompt = system_prompt

    async def respond(
        self,
        history: Sequence[Message],
        tools: Sequence[ToolDefinition],
    ) -> AsyncIterator[ModelOutput]:
        runnable = self.chat_model
        if tools:
            runnable = self.chat_model.bind_tools([tool.to_openai_format() for tool in tools])

        gathered: Optional[AIMessageChunk] = None
        try:
            async for chunk in runnable.astream(to_langchain_messages(history, self.system_prompt)):
                text = chunk_text(chunk.content)
                gathered = chunk if gathered is None else gathered + chunk
                if text:
                    yield TextFragment(text=text)
        except CapabilityError:
            raise
        except Exception as e:
            logger.error("Chat model call failed", error=str(e))
            raise CapabilityError("model", str(e)) from e

        if gathered is None:
            raise CapabilityError("model", "empty response")

        tool_calls = [
            ToolCall(
                id=call.get("id") or f"call_{uuid.uuid4().hex}",
                name=call["name"],
                args=call.get("args") or {},
            )
            for call in gathered.tool_calls
        ]
        yield ModelDecision(text=chunk_text(gathered.content), tool_calls=tool_calls)


def build_chat_model(settings: Settings) -> ChatModelCapability:
    """Create the model capability from settings."""
    from langchain.chat_models import init_chat_model

    chat_model = init_chat_model(
        settings.model_name,
        model_provider=settings.model_provider,
        temperature=settings.model_temperature,
    )
    return ChatModelCapability(chat_model, system_prompt=settings.system_prompt)
