from __future__ import annotations

import logging
from typing import Any

import httpx

from hvsum.connectors.base import SearchProvider, SearchProviderError
from hvsum.schemas import SearchResult

logger = logging.getLogger(__name__)

_API_URL = "https://serpapi.com/search"


class SerpApiProvider(SearchProvider):
    name = "serpapi"

    def timeout_seconds(self, settings: Any) -> float:
        return float(getattr(settings, "serpapi_timeout_seconds", 15))

    async def search(self, query: str, limit: int) -> list[SearchResult]:
        api_key = getattr(self.settings, "serpapi_key", None)
        if not api_key:
            raise SearchProviderError("SerpAPI key not configured")

        try:
            response = await self._client.get(
                _API_URL,
                params={"q": query, "api_key": api_key, "engine": "google", "num": str(limit)},
            )
        except httpx.HTTPError as exc:
            raise SearchProviderError(f"serpapi request failed: {exc}") from exc

        if response.status_code != httpx.codes.OK:
            raise SearchProviderError(f"SerpAPI returned status {response.status_code}")

        try:
            payload = response.json()
        except ValueError as exc:
            raise SearchProviderError("serpapi returned invalid JSON") from exc

        results = [
            SearchResult(
                title=item.get("title") or "",
                url=item.get("link") or "",
                snippet=item.get("snippet") or "",
                source_engine=self.name,
            )
            for item in payload.get("organic_results") or []
            if item.get("link")
        ]
        logger.debug("serpapi query=%r results=%s", query, len(results))
        return results[:limit]
