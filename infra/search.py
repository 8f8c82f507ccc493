"""Web search collaborator.

Providers are tried in order until one returns something useful:

1. DuckDuckGo Instant Answer API (no key needed)
2. Brave Search API (``BRAVE_SEARCH_API_KEY``)
3. SerpAPI (``SERPAPI_KEY``)

``WebSearch.search`` never raises: when every provider fails the fixed
``SEARCH_UNAVAILABLE`` notice is returned so the surrounding chat or
follow-up flow can carry on.
"""

from __future__ import annotations

from typing import Any, Awaitable, Callable

import httpx

from app.core.logging import get_logger

logger = get_logger("infra.search")

SEARCH_UNAVAILABLE = "Web search temporarily unavailable."

_DUCKDUCKGO_URL = "https://api.duckduckgo.com/"
_BRAVE_URL = "https://api.search.brave.com/res/v1/web/search"
_SERPAPI_URL = "https://serpapi.com/search.json"

_MAX_RESULTS = 3


class WebSearch:
    """Multi-provider web search with graceful degradation."""

    def __init__(
        self,
        brave_api_key: str = "",
        serpapi_key: str = "",
        timeout: float = 10.0,
    ) -> None:
        self._brave_api_key = brave_api_key
        self._serpapi_key = serpapi_key
        self._timeout = timeout

    async def search(self, query: str) -> str:
        query = (query or "").strip()
        if not query:
            return SEARCH_UNAVAILABLE

        providers: list[tuple[str, Callable[[httpx.AsyncClient, str], Awaitable[str | None]]]] = [
            ("duckduckgo", self._duckduckgo),
        ]
        if self._brave_api_key:
            providers.append(("brave", self._brave))
        if self._serpapi_key:
            providers.append(("serpapi", self._serpapi))

        async with httpx.AsyncClient(timeout=self._timeout) as client:
            for name, provider in providers:
                try:
                    result = await provider(client, query)
                except (httpx.HTTPError, ValueError) as exc:
                    logger.warning("search provider %s failed: %s", name, exc)
                    continue
                if result:
                    logger.info("search | provider=%s | query=%r", name, query[:80])
                    return result

        logger.warning("search | all providers failed | query=%r", query[:80])
        return SEARCH_UNAVAILABLE

    # ------------------------------------------------------------------
    # Providers
    # ------------------------------------------------------------------

    async def _duckduckgo(self, client: httpx.AsyncClient, query: str) -> str | None:
        response = await client.get(
            _DUCKDUCKGO_URL,
            params={"q": query, "format": "json", "no_html": "1", "skip_disambig": "1"},
        )
        response.raise_for_status()
        data: dict[str, Any] = response.json()

        parts: list[str] = []
        if data.get("AbstractText"):
            parts.append(f"Abstract: {data['AbstractText']}")
        topics = [t for t in data.get("RelatedTopics", []) if isinstance(t, dict) and t.get("Text")]
        if topics:
            parts.append("Related Information:")
            parts.extend(f"{i}. {t['Text']}" for i, t in enumerate(topics[:_MAX_RESULTS], start=1))
        if data.get("Answer"):
            parts.append(f"Direct Answer: {data['Answer']}")
        return "\n".join(parts) or None

    async def _brave(self, client: httpx.AsyncClient, query: str) -> str | None:
        response = await client.get(
            _BRAVE_URL,
            params={"q": query, "count": _MAX_RESULTS},
            headers={"X-Subscription-Token": self._brave_api_key, "Accept": "application/json"},
        )
        response.raise_for_status()
        results = (response.json().get("web") or {}).get("results") or []
        return _format_results(results, title="title", snippet="description", url="url")

    async def _serpapi(self, client: httpx.AsyncClient, query: str) -> str | None:
        response = await client.get(
            _SERPAPI_URL,
            params={"q": query, "api_key": self._serpapi_key, "num": _MAX_RESULTS},
        )
        response.raise_for_status()
        results = response.json().get("organic_results") or []
        return _format_results(results, title="title", snippet="snippet", url="link")


def _format_results(results: list[dict[str, Any]], title: str, snippet: str, url: str) -> str | None:
    if not results:
        return None
    lines = ["Search Results:"]
    for i, item in enumerate(results[:_MAX_RESULTS], start=1):
        lines.append(f"{i}. {item.get(title, '')}\n{item.get(snippet, '')}\nURL: {item.get(url, '')}\n")
    return "\n".join(lines)
