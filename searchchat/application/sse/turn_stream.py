from typing import AsyncIterator, Set
import asyncio
import structlog

from searchchat.application.sse.codec import encode_event
from searchchat.domain.orchestration.turn_engine import Turn, TurnEngine

logger = structlog.get_logger(__name__)

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",  # Disable nginx buffering
}

# Strong references so abandoned turns can finish their cleanup
_turn_tasks: Set[asyncio.Task] = set()


async def stream_turn(engine: TurnEngine, turn: Turn) -> AsyncIterator[str]:
    """Run a turn in its own task and relay its frames until end.

    Closing the generator before end (client went away) detaches the
    emitter and cancels the turn task.
    """
    task = asyncio.create_task(engine.run_turn(turn), name=f"turn-{turn.id}")
    _turn_tasks.add(task)
    task.add_done_callback(_turn_tasks.discard)

    try:
        async for event in turn.emitter.events():
            yield encode_event(event)
        await task
    finally:
        if not task.done():
            logger.info("Client disconnected mid-turn", thread_id=turn.thread_id, turn_id=turn.id)
            turn.emitter.detach()
            task.cancel()
