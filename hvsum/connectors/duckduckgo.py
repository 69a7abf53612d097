from __future__ import annotations

import logging
from urllib.parse import quote_plus

import httpx

from hvsum.connectors.base import SearchProvider, SearchProviderError
from hvsum.schemas import SearchResult

logger = logging.getLogger(__name__)

_API_URL = "https://api.duckduckgo.com/"


class DuckDuckGoProvider(SearchProvider):
    name = "duckduckgo"

    async def search(self, query: str, limit: int) -> list[SearchResult]:
        try:
            response = await self._client.get(
                _API_URL,
                params={
                    "q": query,
                    "format": "json",
                    "no_html": "1",
                    "skip_disambig": "1",
                },
            )
        except httpx.HTTPError as exc:
            raise SearchProviderError(f"duckduckgo request failed: {exc}") from exc

        if response.status_code != httpx.codes.OK:
            raise SearchProviderError(f"search API returned status {response.status_code}")

        try:
            payload = response.json()
        except ValueError as exc:
            raise SearchProviderError("duckduckgo returned invalid JSON") from exc

        results = self._parse(query, payload, limit)
        logger.debug("duckduckgo query=%r results=%s", query, len(results))
        return results

    def _parse(self, query: str, payload: dict, limit: int) -> list[SearchResult]:
        fallback_url = f"https://duckduckgo.com/?q={quote_plus(query)}"
        results: list[SearchResult] = []

        answer = payload.get("Answer") or ""
        if answer:
            results.append(
                SearchResult(
                    title=f"Answer: {query}",
                    url=fallback_url,
                    snippet=str(answer),
                    source_engine=self.name,
                )
            )

        abstract = payload.get("Abstract") or ""
        if abstract:
            results.append(
                SearchResult(
                    title=payload.get("Heading") or f"Information about: {query}",
                    url=payload.get("AbstractURL") or fallback_url,
                    snippet=abstract,
                    source_engine=self.name,
                )
            )

        definition = payload.get("Definition") or ""
        if definition:
            results.append(
                SearchResult(
                    title=f"Definition: {query}",
                    url=fallback_url,
                    snippet=definition,
                    source_engine=self.name,
                )
            )

        for topic in payload.get("RelatedTopics") or []:
            if len(results) >= limit:
                break
            text = topic.get("Text") or ""
            first_url = topic.get("FirstURL") or ""
            # Category groups carry nested "Topics" and no text of their own.
            if not text or not first_url:
                continue
            results.append(
                SearchResult(
                    title=f"Related: {text.split(' - ')[0]}",
                    url=first_url,
                    snippet=text,
                    source_engine=self.name,
                )
            )

        return results[:limit]
