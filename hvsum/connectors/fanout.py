from __future__ import annotations

import asyncio
import logging

from hvsum.connectors.base import SearchProvider, SearchProviderError
from hvsum.schemas import SearchResult
from hvsum.services.dedup import deduplicate_results

logger = logging.getLogger(__name__)


class FanOutProvider(SearchProvider):
    """Queries every configured engine at once and merges their answers."""

    name = "fanout"

    def __init__(self, providers: list[SearchProvider]) -> None:
        self._providers = providers

    @property
    def providers(self) -> list[SearchProvider]:
        return list(self._providers)

    async def search(self, query: str, limit: int) -> list[SearchResult]:
        if not self._providers:
            raise SearchProviderError("No search providers configured")

        outcomes = await asyncio.gather(
            *[provider.search(query, limit) for provider in self._providers],
            return_exceptions=True,
        )

        merged: list[SearchResult] = []
        failures: list[str] = []
        for provider, outcome in zip(self._providers, outcomes, strict=True):
            if isinstance(outcome, Exception):
                logger.debug("%s search failed query=%r: %s", provider.name, query, outcome)
                failures.append(f"{provider.name}: {outcome}")
                continue
            if isinstance(outcome, BaseException):
                raise outcome
            logger.debug("%s returned %s results query=%r", provider.name, len(outcome), query)
            merged.extend(outcome)

        if len(failures) == len(self._providers):
            raise SearchProviderError("; ".join(failures))

        return deduplicate_results(merged)[:limit]

    async def aclose(self) -> None:
        for provider in self._providers:
            await provider.aclose()
