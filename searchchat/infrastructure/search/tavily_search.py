"""Web search capability using the Tavily API."""

from typing import Any, Dict, List, Optional

import httpx
import structlog

from searchchat.domain.capability.base import SearchCapability
from searchchat.domain.errors import CapabilityError
from searchchat.domain.models.conversation import SearchResultItem
from searchchat.infrastructure.config.settings import Settings

logger = structlog.get_logger(__name__)

TAVILY_SEARCH_URL = "https://api.tavily.com/search"

# Maximum snippet length kept from each result
MAX_SNIPPET_CHARS = 1000


class TavilySearchCapability(SearchCapability):
    """
    Search the web through Tavily.

    Every failure (missing key, HTTP status, network) is raised as a
    CapabilityError so the turn aborts instead of answering without sources.
    """

    def __init__(self, settings: Settings, http_client: Optional[httpx.AsyncClient] = None) -> None:
        self._settings = settings
        self._http_client = http_client

    def _get_http_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None or self._http_client.is_closed:
            self._http_client = httpx.AsyncClient(
                timeout=httpx.Timeout(self._settings.search_timeout_seconds),
                limits=httpx.Limits(max_keepalive_connections=5, max_connections=10),
            )
        return self._http_client

    async def aclose(self) -> None:
        """Close HTTP client if open."""
        if self._http_client and not self._http_client.is_closed:
            await self._http_client.aclose()
            self._http_client = None

    async def search(self, query: str) -> List[SearchResultItem]:
        api_key = self._settings.tavily_api_key
        if not api_key:
            raise CapabilityError("search", "TAVILY_API_KEY is not configured")

        payload = {
            "api_key": api_key,
            "query": query,
            "max_results": min(self._settings.tavily_max_results, 10),  # Tavily max is 10
            "search_depth": self._settings.tavily_search_depth,
            "include_answer": False,
            "include_raw_content": False,
            "include_images": False,
        }

        logger.info("Searching Tavily", query=query[:100])
        try:
            response = await self._get_http_client().post(TAVILY_SEARCH_URL, json=payload)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as e:
            raise CapabilityError(
                "search", f"Tavily API error ({e.response.status_code})"
            ) from e
        except httpx.HTTPError as e:
            raise CapabilityError("search", f"network error: {e!s}") from e
        except ValueError as e:
            raise CapabilityError("search", "invalid JSON response") from e

        if not isinstance(data, dict):
            raise CapabilityError("search", "unexpected response shape")
        return parse_tavily_response(data)


def parse_tavily_response(data: Dict[str, Any]) -> List[SearchResultItem]:
    """Map Tavily results to search items, keeping the API's order."""
    results = []

    for item in data.get("results", []):
        url = item.get("url")
        if not url:
            continue
        results.append(
            SearchResultItem(
                url=url,
                title=item.get("title") or "Untitled",
                snippet=(item.get("content") or "")[:MAX_SNIPPET_CHARS],
                score=item.get("score") or 0.0,
            )
        )

    return results
