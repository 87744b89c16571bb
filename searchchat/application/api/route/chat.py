from typing import Annotated, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import StreamingResponse
import structlog

from searchchat.application.sse.turn_stream import SSE_HEADERS, stream_turn
from searchchat.domain.orchestration.turn_engine import TurnEngine

logger = structlog.get_logger(__name__)

router = APIRouter()


def get_turn_engine(request: Request) -> TurnEngine:
    return request.app.state.turn_engine


@router.get("/chat/stream")
async def chat_stream(
    engine: Annotated[TurnEngine, Depends(get_turn_engine)],
    message: str = Query(..., min_length=1, description="User message text"),
    thread_id: Optional[str] = Query(
        None,
        alias="threadId",
        max_length=128,
        description="Thread id from an earlier checkpoint event; omit to start a new thread",
    ),
):
    """
    Stream one conversation turn as Server-Sent Events.

    Every event is a single ``data: <json>`` line followed by a blank line;
    the server closes the stream after the ``end`` event. A ``threadId`` this
    server did not issue (or has since evicted) is answered with 404.
    """
    if thread_id and not await engine.store.exists(thread_id):
        logger.info("Unknown thread requested", thread_id=thread_id)
        raise HTTPException(status_code=404, detail="Unknown threadId")

    turn = engine.new_turn(message, thread_id)
    logger.info(
        "Turn requested",
        thread_id=turn.thread_id,
        turn_id=turn.id,
        new_thread=turn.is_new_thread,
        message_length=len(message),
    )

    return StreamingResponse(
        stream_turn(engine, turn),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )
