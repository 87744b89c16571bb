"""Shared fakes for the model and search capabilities."""

import asyncio
from typing import Dict, List, Optional, Sequence, Union

import pytest

from searchchat.domain.streaming.events import BaseEvent
from searchchat.domain.capability.base import (
    ModelCapability,
    ModelDecision,
    ModelOutput,
    SearchCapability,
    TextFragment,
    ToolDefinition,
)
from searchchat.domain.conversation.conversation_store import ConversationStore
from searchchat.domain.errors import CapabilityError
from searchchat.domain.models.conversation import Message, SearchResultItem, ToolCall
from searchchat.domain.orchestration.turn_engine import Turn, TurnEngine
from searchchat.domain.tool.tool_registry import build_default_registry

ScriptStep = List[Union[ModelOutput, Exception]]


def answer(*fragments: str) -> ScriptStep:
    """A model step that streams fragments and then finishes with plain text."""
    return [TextFragment(text=f) for f in fragments] + [ModelDecision(text="".join(fragments))]


def search_call(query: str, call_id: str = "call_1", *fragments: str) -> ScriptStep:
    """A model step that asks for a web search."""
    decision = ModelDecision(
        text="".join(fragments),
        tool_calls=[ToolCall(id=call_id, name="search", args={"query": query})],
    )
    return [TextFragment(text=f) for f in fragments] + [decision]


class ScriptedModel(ModelCapability):
    """Plays back one scripted step per model invocation and records the history it saw."""

    def __init__(self, steps: Sequence[ScriptStep]):
        self.steps = list(steps)
        self.calls: List[List[Message]] = []
        self.tools_seen: List[List[ToolDefinition]] = []

    async def respond(self, history, tools):
        self.calls.append(list(history))
        self.tools_seen.append(list(tools))
        if not self.steps:
            raise AssertionError("model called more often than scripted")
        for item in self.steps.pop(0):
            if isinstance(item, Exception):
                raise item
            yield item


class EchoModel(ModelCapability):
    """Answers with the latest user message, split in two fragments."""

    async def respond(self, history, tools):
        text = [m for m in history if m.role == "user"][-1].content
        middle = len(text) // 2
        for part in (text[:middle], text[middle:]):
            yield TextFragment(text=part)
        yield ModelDecision(text=text)


class HangingModel(ModelCapability):
    """Streams some text and then never finishes."""

    def __init__(self, fragment: str = "Partial"):
        self.fragment = fragment
        self.started = asyncio.Event()
        self.cancelled = False

    async def respond(self, history, tools):
        yield TextFragment(text=self.fragment)
        self.started.set()
        try:
            await asyncio.Event().wait()
        except asyncio.CancelledError:
            self.cancelled = True
            raise
        yield ModelDecision(text=self.fragment)


class FakeSearch(SearchCapability):
    """Returns canned results per query, or raises."""

    def __init__(self, results: Optional[Dict[str, List[str]]] = None, error: Optional[str] = None):
        self.results = results or {}
        self.error = error
        self.queries: List[str] = []

    async def search(self, query: str) -> List[SearchResultItem]:
        self.queries.append(query)
        if self.error:
            raise CapabilityError("search", self.error)
        return [
            SearchResultItem(url=url, title=f"Result {i}", snippet="...", score=1.0 - i / 10)
            for i, url in enumerate(self.results.get(query, []))
        ]


def make_engine(model: ModelCapability, search: Optional[SearchCapability] = None,
                store: Optional[ConversationStore] = None, **kwargs) -> TurnEngine:
    return TurnEngine(
        store=store or ConversationStore(),
        model=model,
        tool_registry=build_default_registry(search or FakeSearch()),
        **kwargs,
    )


async def open_thread(store: ConversationStore, thread_id: str = "t1") -> str:
    """Register an existing thread so turns can continue it"""
    await store.create(thread_id)
    return thread_id


async def collect_events(turn: Turn) -> List[BaseEvent]:
    return [event async for event in turn.emitter.events()]


async def run_and_collect(engine: TurnEngine, turn: Turn):
    """Run a turn while draining its emitter; returns (outcome, events)."""
    return await asyncio.gather(engine.run_turn(turn), collect_events(turn))


@pytest.fixture
def store():
    return ConversationStore()
