"""Google Custom Search client used for search augmentation.

``search`` never raises: no credentials, HTTP errors and empty result sets all
come back as an empty list.
"""

from __future__ import annotations

import logging
from typing import List, Sequence

import httpx

from app.services.ai.base import SEARCH_RESULTS_MARKER
from app.types.chat_contract import SearchResult
from config import settings

_LOGGER = logging.getLogger(__name__)

GOOGLE_SEARCH_URL = "https://www.googleapis.com/customsearch/v1"

_CHINESE_SEARCH_HINTS = ("中文", "中国", "用中文")
_CHINESE_SEARCH_HINTS_EN = ("in chinese", "chinese search", "search in chinese")


def is_chinese_search_requested(message: str) -> bool:
    lowered = message.lower()
    return any(h in message for h in _CHINESE_SEARCH_HINTS) or any(
        h in lowered for h in _CHINESE_SEARCH_HINTS_EN
    )


class SearchService:
    def __init__(
        self,
        api_key: str | None = settings.GOOGLE_API_KEY,
        engine_id: str | None = settings.GOOGLE_SEARCH_ENGINE_ID,
        max_results: int = settings.SEARCH_MAX_RESULTS,
        client: httpx.AsyncClient | None = None,
        timeout: float = settings.SEARCH_TIMEOUT,
    ):
        self.api_key = api_key
        self.engine_id = engine_id
        self.max_results = max_results
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def search(self, query: str, language: str = "en") -> List[SearchResult]:
        query = (query or "").strip()
        if not query:
            return []
        if not self.api_key or not self.engine_id:
            _LOGGER.warning("Google Search API credentials not configured")
            return []

        params = {
            "key": self.api_key,
            "cx": self.engine_id,
            "q": query,
            "num": self.max_results,
        }
        if language.lower().startswith("zh"):
            params["lr"] = "lang_zh-CN"

        _LOGGER.debug("Searching for %r (language=%s)", query, language)
        try:
            resp = await self._client.get(GOOGLE_SEARCH_URL, params=params)
            resp.raise_for_status()
            items = resp.json().get("items") or []
        except (httpx.HTTPError, ValueError) as exc:
            _LOGGER.error("Error searching the web for %r: %s", query, exc)
            return []

        results = [
            SearchResult(title=item.get("title", ""), link=item.get("link", ""),
                         snippet=item.get("snippet") or "")
            for item in items
            if item.get("link")
        ]
        if not results:
            _LOGGER.warning("No search results found for %r", query)
        return results

    async def aclose(self) -> None:
        await self._client.aclose()


def format_search_results(results: Sequence[SearchResult], limit: int = 3) -> str:
    lines = []
    for i, result in enumerate(results[:limit], start=1):
        lines.append(f"[{i}] {result.title}\n{result.snippet}\nSource: {result.link}\n")
    return "\n".join(lines)


def augment_message(message: str, results: Sequence[SearchResult], limit: int = 3) -> str:
    """Append the top search results to *message* in the block adapters recognise."""
    if not results:
        return message
    return (
        f"{message}\n\n{SEARCH_RESULTS_MARKER}\n\n"
        f"{format_search_results(results, limit)}\n"
        f"Please use these search results to help answer the question: \"{message}\"\n"
    )
