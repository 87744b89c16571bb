from typing import TypedDict, List, Dict, Any, Optional, Literal, Set, Tuple
from dataclasses import dataclass, field
from contextlib import aclosing
import asyncio
import json
import time
import uuid

from langgraph.graph import StateGraph, END
from langchain_core.runnables import RunnableConfig
import structlog

from searchchat.domain.capability.base import ModelCapability, ModelDecision, TextFragment
from searchchat.domain.conversation.conversation_store import ConversationStore
from searchchat.domain.errors import (
    CapabilityError, ToolRoundLimitExceeded, TurnError, TurnTimeoutError, UnknownThreadError,
)
from searchchat.domain.models.conversation import Message, ToolCall, TurnOutcome, TurnStatus
from searchchat.domain.streaming.event_emitter import EventEmitter
from searchchat.domain.tool.tool_executor import ToolExecutor
from searchchat.domain.tool.tool_registry import ToolRegistry
from searchchat.infrastructure.observability.logging import MetricsCollector, turn_logger

logger = structlog.get_logger(__name__)

INTERNAL_ERROR_MESSAGE = "An internal error occurred while generating the response."
UNFINISHED_TOOL_RESULT = json.dumps({"error": "The search did not complete."})


class TurnGraphState(TypedDict):
    """State passed through the turn graph"""
    thread_id: str
    pending_tool_calls: List[ToolCall]
    tool_rounds: int


@dataclass
class Turn:
    """One in-flight request/response cycle on a thread"""
    id: str
    thread_id: str
    message: str
    is_new_thread: bool
    emitter: EventEmitter
    # Text streamed by the model call in progress, not yet appended
    partial_text: str = ""
    # Tool calls appended by the assistant but not answered yet
    unresolved_calls: List[ToolCall] = field(default_factory=list)
    seen_call_ids: Set[str] = field(default_factory=set)
    tool_rounds: int = 0
    final_text: str = ""


class TurnEngine:
    """Drives a turn: ModelPending -> Routing -> {ToolPending -> ModelPending} -> Done"""

    def __init__(
        self,
        store: ConversationStore,
        model: ModelCapability,
        tool_registry: ToolRegistry,
        tool_executor: Optional[ToolExecutor] = None,
        max_tool_rounds: int = 5,
        turn_timeout_seconds: float = 120.0,
        event_queue_size: int = 64,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.store = store
        self.model = model
        self.tool_registry = tool_registry
        self.metrics = metrics or MetricsCollector()
        self.tool_executor = tool_executor or ToolExecutor(tool_registry, self.metrics)
        self.max_tool_rounds = max_tool_rounds
        self.turn_timeout_seconds = turn_timeout_seconds
        self.event_queue_size = event_queue_size
        self.in_flight = 0
        self.workflow = self._create_workflow()

    def _create_workflow(self):
        """Create the turn state machine"""

        workflow = StateGraph(TurnGraphState)

        workflow.add_node("model_invoker", self.model_node)
        workflow.add_node("router", self.routing_node)
        workflow.add_node("tool_executor", self.tool_node)

        workflow.set_entry_point("model_invoker")
        workflow.add_edge("model_invoker", "router")

        workflow.add_conditional_edges(
            "router",
            self.route_after_decision,
            {
                "tools": "tool_executor",
                "done": END,
            }
        )

        workflow.add_edge("tool_executor", "model_invoker")

        return workflow.compile()

    def new_turn(self, message: str, thread_id: Optional[str] = None) -> Turn:
        """Prepare a turn; a missing thread id mints a new thread"""

        is_new_thread = not thread_id
        return Turn(
            id=uuid.uuid4().hex,
            thread_id=str(uuid.uuid4()) if is_new_thread else thread_id,
            message=message,
            is_new_thread=is_new_thread,
            emitter=EventEmitter(max_queued=self.event_queue_size),
        )

    async def run_turn(self, turn: Turn) -> TurnOutcome:
        """Run a turn to completion. The emitter always ends with an end event unless cancelled."""

        started = time.perf_counter()
        status = TurnStatus.CANCELLED
        error: Optional[str] = None

        self.in_flight += 1
        self.metrics.set_gauge("turns.in_flight", self.in_flight)

        with structlog.contextvars.bound_contextvars(thread_id=turn.thread_id, turn_id=turn.id):
            try:
                async with self.store.serialized(turn.thread_id):
                    status, error = await self._execute(turn)
            finally:
                self.in_flight -= 1
                self._record_outcome(turn, status, error, started)

        return TurnOutcome(
            thread_id=turn.thread_id,
            status=status,
            text=turn.final_text,
            error=error,
            tool_rounds=turn.tool_rounds,
        )

    async def _execute(self, turn: Turn) -> Tuple[TurnStatus, Optional[str]]:
        try:
            await self._drive(turn)
            status, error = TurnStatus.COMPLETED, None
        except asyncio.CancelledError:
            turn.emitter.detach()
            await self._salvage(turn)
            raise
        except TurnError as e:
            await self._salvage(turn)
            status, error = TurnStatus.FAILED, str(e)
            await turn.emitter.error(str(e))
        except Exception:
            logger.exception("Unexpected turn failure")
            await self._salvage(turn)
            status, error = TurnStatus.FAILED, "internal error"
            await turn.emitter.error(INTERNAL_ERROR_MESSAGE)

        await turn.emitter.end()
        return status, error

    async def _drive(self, turn: Turn):
        if turn.is_new_thread:
            await self.store.create(turn.thread_id)
            await turn.emitter.checkpoint(turn.thread_id)
        elif not await self.store.exists(turn.thread_id):
            raise UnknownThreadError(turn.thread_id)

        await self.store.append(turn.thread_id, Message.user(turn.message))

        initial_state: TurnGraphState = {
            "thread_id": turn.thread_id,
            "pending_tool_calls": [],
            "tool_rounds": 0,
        }
        config: RunnableConfig = {
            "configurable": {"turn": turn},
            # model + router + tools per round, plus the closing model + router
            "recursion_limit": 3 * (self.max_tool_rounds + 1) + 2,
        }

        try:
            await asyncio.wait_for(
                self.workflow.ainvoke(initial_state, config=config),
                timeout=self.turn_timeout_seconds,
            )
        except asyncio.TimeoutError as e:
            raise TurnTimeoutError(self.turn_timeout_seconds) from e

    async def model_node(self, state: TurnGraphState, config: RunnableConfig) -> Dict[str, Any]:
        """ModelPending: stream the model's response and append it"""

        turn = self._turn(config)
        history = await self.store.read(state["thread_id"])
        decision: Optional[ModelDecision] = None
        turn.partial_text = ""

        async with aclosing(self.model.respond(history, self.tool_registry.definitions())) as outputs:
            async for output in outputs:
                if decision is not None:
                    raise CapabilityError("model", "output received after the final result")

                if isinstance(output, TextFragment):
                    if output.text:
                        turn.partial_text += output.text
                        await turn.emitter.content(output.text)
                else:
                    decision = output

        if decision is None:
            raise CapabilityError("model", "stream ended without a final result")

        # Non-incremental models deliver everything in the final result
        if not turn.partial_text and decision.text:
            turn.partial_text = decision.text
            await turn.emitter.content(decision.text)

        for call in decision.tool_calls:
            if call.id in turn.seen_call_ids:
                raise CapabilityError("model", f"duplicate tool call id '{call.id}'")
            turn.seen_call_ids.add(call.id)

        message = Message.assistant(turn.partial_text, tool_calls=decision.tool_calls)
        await self.store.append(state["thread_id"], message)
        turn.partial_text = ""
        if not message.has_tool_calls:
            turn.final_text = message.content

        turn_logger.log_transition(state["thread_id"], "model_pending", "routing")
        return {"pending_tool_calls": list(decision.tool_calls)}

    async def routing_node(self, state: TurnGraphState, config: RunnableConfig) -> Dict[str, Any]:
        """Routing: announce requested tool calls or finish"""

        turn = self._turn(config)
        calls = state["pending_tool_calls"]

        if not calls:
            turn_logger.log_transition(state["thread_id"], "routing", "done")
            return {"tool_rounds": state["tool_rounds"]}

        turn.unresolved_calls = list(calls)
        rounds = state["tool_rounds"] + 1
        if rounds > self.max_tool_rounds:
            raise ToolRoundLimitExceeded(self.max_tool_rounds)
        turn.tool_rounds = rounds

        for call in calls:
            await turn.emitter.search_start(self._query_of(call))

        turn_logger.log_transition(
            state["thread_id"], "routing", "tool_pending", condition=f"{len(calls)} tool call(s)"
        )
        return {"tool_rounds": rounds}

    def route_after_decision(self, state: TurnGraphState) -> Literal["tools", "done"]:
        return "tools" if state["pending_tool_calls"] else "done"

    async def tool_node(self, state: TurnGraphState, config: RunnableConfig) -> Dict[str, Any]:
        """ToolPending: run each enqueued call and append its result"""

        turn = self._turn(config)
        thread_id = state["thread_id"]

        for call in state["pending_tool_calls"]:
            output = await self.tool_executor.execute(call, thread_id)
            await self.store.append(thread_id, Message.tool(output.content, call.id))
            turn.unresolved_calls = [c for c in turn.unresolved_calls if c.id != call.id]
            await turn.emitter.search_results(output.urls)

        turn_logger.log_transition(thread_id, "tool_pending", "model_pending")
        return {"pending_tool_calls": []}

    async def _salvage(self, turn: Turn):
        """Keep history consistent after an aborted turn without discarding streamed text"""

        for call in turn.unresolved_calls:
            await self.store.append(turn.thread_id, Message.tool(UNFINISHED_TOOL_RESULT, call.id))
        turn.unresolved_calls = []

        if turn.partial_text:
            await self.store.append(turn.thread_id, Message.assistant(turn.partial_text))
            turn.final_text = turn.partial_text
            turn.partial_text = ""

    def _record_outcome(self, turn: Turn, status: TurnStatus, error: Optional[str], started: float):
        duration_ms = (time.perf_counter() - started) * 1000

        self.metrics.record_latency("turn", duration_ms)
        self.metrics.increment_counter(f"turns.{status.value}")
        self.metrics.set_gauge("turns.in_flight", self.in_flight)

        turn_logger.log_turn_finished(
            thread_id=turn.thread_id,
            status=status.value,
            duration_ms=round(duration_ms, 2),
            tool_rounds=turn.tool_rounds,
            error=error,
        )

    @staticmethod
    def _turn(config: RunnableConfig) -> Turn:
        return config["configurable"]["turn"]

    @staticmethod
    def _query_of(call: ToolCall) -> str:
        query = call.args.get("query")
        return query if isinstance(query, str) else ""
