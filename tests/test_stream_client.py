"""Tests for the chat stream client and session."""

import json

import httpx
import pytest

from searchchat.application.api.api_server import create_app
from searchchat.client.reducer import (
    CONNECTIVITY_ERROR_MESSAGE,
    TRANSPORT_FAILURE_MESSAGE,
    MessageStatus,
    Stage,
)
from searchchat.client.stream_client import ChatSession, ChatStreamClient, TransportError
from searchchat.domain.conversation.conversation_store import ConversationStore
from searchchat.infrastructure.config.settings import Settings

from conftest import EchoModel, FakeSearch, ScriptedModel, answer, search_call

BASE_URL = "http://chat.test"


def sse(*events) -> bytes:
    return "".join(f"data: {json.dumps(e)}\n\n" for e in events).encode()


def session_for(handler) -> ChatSession:
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return ChatSession(ChatStreamClient(BASE_URL, http_client=http_client))


class BrokenStream(httpx.AsyncByteStream):
    """Delivers some frames and then loses the connection."""

    def __init__(self, body: bytes):
        self.body = body

    async def __aiter__(self):
        yield self.body
        raise httpx.ReadError("connection lost")


class TestChatStreamClient:

    @pytest.mark.asyncio
    async def test_skips_malformed_and_unknown_events(self):
        body = (
            b'data: {"type":"content","text":"a"}\n\n'
            b"data: {not json\n\n"
            b": comment line\n\n"
            b'data: {"type":"heartbeat"}\n\n'
            b'data: {"type":"content","text":"b"}\n\n'
            b'data: {"type":"end"}\n\n'
        )
        client = ChatStreamClient(BASE_URL, httpx.AsyncClient(
            transport=httpx.MockTransport(lambda request: httpx.Response(200, content=body))
        ))

        events = [event async for event in client.stream_events("hi")]

        assert [e.type for e in events] == ["content", "content", "end"]

    @pytest.mark.asyncio
    async def test_non_success_status_is_transport_error(self):
        client = ChatStreamClient(BASE_URL, httpx.AsyncClient(
            transport=httpx.MockTransport(lambda request: httpx.Response(500, text="boom"))
        ))

        with pytest.raises(TransportError):
            async for _ in client.stream_events("hi"):
                pass


class TestChatSession:

    @pytest.mark.asyncio
    async def test_thread_id_from_checkpoint_is_sent_next_time(self):
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            if len(requests) == 1:
                return httpx.Response(200, content=sse(
                    {"type": "checkpoint", "threadId": "thread-42"},
                    {"type": "content", "text": "Hi"},
                    {"type": "end"},
                ))
            return httpx.Response(200, content=sse({"type": "content", "text": "Again"}, {"type": "end"}))

        session = session_for(handler)
        first = await session.send("Hello there")
        second = await session.send("More")

        assert first.content == "Hi"
        assert second.content == "Again"
        assert session.thread_id == "thread-42"
        assert "threadId" not in requests[0].url.params
        assert requests[0].url.params["message"] == "Hello there"
        assert requests[1].url.params["threadId"] == "thread-42"
        assert [m.content for m in session.messages] == ["Hello there", "Hi", "More", "Again"]
        assert [m.is_user for m in session.messages] == [True, False, True, False]

    @pytest.mark.asyncio
    async def test_snapshots_grow_while_streaming(self):
        session = session_for(lambda request: httpx.Response(200, content=sse(
            {"type": "searchStart", "query": "q"},
            {"type": "searchResults", "urls": ["https://x"]},
            {"type": "content", "text": "A"},
            {"type": "content", "text": "B"},
            {"type": "end"},
        )))

        snapshots = [snapshot async for snapshot in session.stream("q?")]

        assert snapshots[0].is_loading
        assert [s.content for s in snapshots[-3:]] == ["A", "AB", "AB"]
        assert snapshots[-1].status == MessageStatus.COMPLETE
        assert snapshots[-1].search_info.stages == [Stage.SEARCHING, Stage.READING, Stage.WRITING]

    @pytest.mark.asyncio
    async def test_connect_failure_shows_connectivity_message(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        final = await session_for(handler).send("Hello")

        assert final.content == CONNECTIVITY_ERROR_MESSAGE
        assert final.status == MessageStatus.CONNECTIVITY_ERROR

    @pytest.mark.asyncio
    async def test_dropped_stream_keeps_partial_text(self):
        body = sse({"type": "content", "text": "Partial answer"})
        session = session_for(lambda request: httpx.Response(200, stream=BrokenStream(body)))

        final = await session.send("Hello")

        assert final.content == "Partial answer"
        assert session.messages[-1].content == "Partial answer"

    @pytest.mark.asyncio
    async def test_dropped_stream_without_content(self):
        session = session_for(lambda request: httpx.Response(200, stream=BrokenStream(b"")))

        final = await session.send("Hello")

        assert final.content == TRANSPORT_FAILURE_MESSAGE
        assert final.status == MessageStatus.TRANSPORT_FAILED

    @pytest.mark.asyncio
    async def test_stream_closed_before_end(self):
        session = session_for(lambda request: httpx.Response(200, content=sse({"type": "content", "text": "cut"})))

        final = await session.send("Hello")

        assert final.content == "cut"


class TestAgainstServer:

    @staticmethod
    def session_against(app):
        http_client = httpx.AsyncClient(transport=httpx.ASGITransport(app=app))
        return ChatSession(ChatStreamClient(BASE_URL, http_client=http_client)), http_client

    @pytest.mark.asyncio
    async def test_two_turns_through_the_app(self):
        store = ConversationStore()
        model = ScriptedModel([
            search_call("capital of france"),
            answer("Paris is ", "the capital."),
            answer("About 2 million people."),
        ])
        app = create_app(
            Settings(log_level="WARNING", log_format="console"),
            model=model,
            search=FakeSearch({"capital of france": ["https://wiki.example/paris"]}),
            store=store,
        )
        session, http_client = self.session_against(app)

        first = await session.send("What is the capital of France?")
        second = await session.send("How many people live there?")
        await http_client.aclose()

        assert first.content == "Paris is the capital."
        assert first.search_info.urls == ["https://wiki.example/paris"]
        assert second.content == "About 2 million people."
        assert second.search_info is None
        assert len(store.conversations[session.thread_id]) == 6

    @pytest.mark.asyncio
    @pytest.mark.parametrize("text", [
        'q"\\\n',
        "tab\tand\r\ncrlf",
        "line\u2028separator",
        "paragraph\u2029separator",
        "next\x85line",
    ])
    async def test_awkward_text_reaches_the_reducer_intact(self, text):
        app = create_app(
            Settings(log_level="WARNING", log_format="console"),
            model=EchoModel(),
            search=FakeSearch(),
        )
        session, http_client = self.session_against(app)

        final = await session.send(text)
        await http_client.aclose()

        assert final.content == text
        assert final.status == MessageStatus.COMPLETE

    @pytest.mark.asyncio
    async def test_forgotten_thread_starts_over(self):
        store = ConversationStore()
        model = ScriptedModel([answer("first"), answer("fresh start")])
        app = create_app(
            Settings(log_level="WARNING", log_format="console"),
            model=model,
            search=FakeSearch(),
            store=store,
        )
        session, http_client = self.session_against(app)

        await session.send("Hello")
        old_thread = session.thread_id
        store.conversations.pop(old_thread)

        rejected = await session.send("Still there?")
        restarted = await session.send("Hello again")
        await http_client.aclose()

        assert rejected.content == TRANSPORT_FAILURE_MESSAGE
        assert restarted.content == "fresh start"
        assert session.thread_id not in (None, old_thread)
