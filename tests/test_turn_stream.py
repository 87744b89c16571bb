"""Tests for relaying a turn over the SSE response body."""

import asyncio

import pytest

from searchchat.application.sse import turn_stream
from searchchat.application.sse.codec import decode_event, parse_sse_line
from searchchat.domain.streaming.events import CheckpointEvent, ContentEvent

from conftest import HangingModel, ScriptedModel, answer, make_engine


def decode_frame(frame: str):
    return decode_event(parse_sse_line(frame.rstrip("\n")))


class TestStreamTurn:

    @pytest.mark.asyncio
    async def test_relays_frames_until_end(self, store):
        engine = make_engine(ScriptedModel([answer("Hi", "!")]), store=store)
        turn = engine.new_turn("Hello")

        frames = [frame async for frame in turn_stream.stream_turn(engine, turn)]

        assert all(frame.endswith("\n\n") for frame in frames)
        assert [decode_frame(f).type for f in frames] == ["checkpoint", "content", "content", "end"]
        assert engine.in_flight == 0
        assert not turn_stream._turn_tasks

    @pytest.mark.asyncio
    async def test_client_disconnect_cancels_turn_and_keeps_partial_text(self, store):
        model = HangingModel("Par")
        engine = make_engine(model, store=store)
        turn = engine.new_turn("Hello")
        body = turn_stream.stream_turn(engine, turn)

        first = decode_frame(await body.__anext__())
        second = decode_frame(await body.__anext__())
        assert first == CheckpointEvent(thread_id=turn.thread_id)
        assert second == ContentEvent(text="Par")

        pending = list(turn_stream._turn_tasks)
        await body.aclose()
        results = await asyncio.gather(*pending, return_exceptions=True)

        assert all(isinstance(result, asyncio.CancelledError) for result in results)
        assert model.cancelled
        assert [m.content for m in await store.read(turn.thread_id)] == ["Hello", "Par"]
        assert engine.in_flight == 0
        assert engine.metrics.counters["turns.cancelled"] == 1
        assert not turn_stream._turn_tasks
