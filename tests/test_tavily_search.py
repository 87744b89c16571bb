"""Tests for the Tavily search capability."""

import json

import httpx
import pytest

from searchchat.domain.errors import CapabilityError
from searchchat.infrastructure.config.settings import Settings
from searchchat.infrastructure.search.tavily_search import TavilySearchCapability, parse_tavily_response


def make_capability(handler, **overrides):
    settings = Settings(tavily_api_key="test-key", **overrides)
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return TavilySearchCapability(settings, http_client=client)


class TestTavilySearch:

    @pytest.mark.asyncio
    async def test_results_keep_api_order(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"results": [
                {"url": "https://second.example", "title": "B", "content": "b", "score": 0.4},
                {"url": "https://first.example", "title": "A", "content": "a", "score": 0.9},
            ]})

        capability = make_capability(handler, tavily_max_results=25)
        results = await capability.search("python asyncio")

        assert [r.url for r in results] == ["https://second.example", "https://first.example"]
        assert seen["body"]["query"] == "python asyncio"
        assert seen["body"]["api_key"] == "test-key"
        assert seen["body"]["max_results"] == 10
        await capability.aclose()

    @pytest.mark.asyncio
    async def test_http_error_status(self):
        capability = make_capability(lambda request: httpx.Response(429, json={"detail": "slow down"}))

        with pytest.raises(CapabilityError, match="429"):
            await capability.search("x")

    @pytest.mark.asyncio
    async def test_network_error(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(CapabilityError, match="network error"):
            await make_capability(handler).search("x")

    @pytest.mark.asyncio
    async def test_invalid_json(self):
        capability = make_capability(lambda request: httpx.Response(200, content=b"<html>"))

        with pytest.raises(CapabilityError, match="invalid JSON"):
            await capability.search("x")

    @pytest.mark.asyncio
    async def test_missing_api_key(self):
        capability = TavilySearchCapability(Settings(tavily_api_key=None))

        with pytest.raises(CapabilityError, match="TAVILY_API_KEY"):
            await capability.search("x")


def test_parse_skips_items_without_url_and_truncates_snippets():
    results = parse_tavily_response({"results": [
        {"title": "no url"},
        {"url": "https://x", "content": "y" * 5000},
    ]})

    assert len(results) == 1
    assert results[0].title == "Untitled"
    assert len(results[0].snippet) == 1000


def test_parse_empty_response():
    assert parse_tavily_response({}) == []
