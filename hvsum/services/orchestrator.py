from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field

from hvsum.connectors.base import SearchProvider, SearchProviderError
from hvsum.schemas import SearchResult, SearchResultsPayload
from hvsum.services.cache import ContentStore
from hvsum.services.dedup import deduplicate_results
from hvsum.services.query_hash import fingerprint, search_descriptor

logger = logging.getLogger(__name__)


class SearchBatchError(RuntimeError):
    """Raised when every query in a search batch failed."""


@dataclass(slots=True)
class QueryRunResult:
    query: str
    status: str
    latency_ms: int
    results: list[SearchResult] = field(default_factory=list)
    error_message: str | None = None


class SearchOrchestrator:
    """Runs batches of search queries with bounded concurrency.

    Each query's results are cached individually through the content store;
    failed queries are dropped from the batch rather than failing it.
    """

    def __init__(
        self,
        store: ContentStore,
        provider: SearchProvider,
        *,
        ttl_hours: int | None = None,
        concurrency_limit: int = 3,
    ) -> None:
        if concurrency_limit < 1:
            raise ValueError("concurrency_limit must be at least 1")
        self._store = store
        self._provider = provider
        self._ttl_hours = ttl_hours
        self._concurrency_limit = concurrency_limit

    async def search_one(self, query: str, limit: int, session_id: str = "") -> list[SearchResult]:
        key = fingerprint(search_descriptor(query, limit))
        cached = await self._store.get(key, SearchResultsPayload)
        if cached is not None:
            logger.debug("Search cache hit query=%r", query)
            return list(cached.results)

        results = await self._provider.search(query, limit)
        if results:
            stored = await self._store.set(
                key,
                SearchResultsPayload(results=results),
                ttl_hours=self._ttl_hours,
                session_id=session_id,
            )
            if not stored:
                logger.debug("Search results not cached query=%r", query)
        return results

    async def run_queries(
        self,
        queries: list[str],
        limit_per_query: int,
        concurrency_limit: int | None = None,
        session_id: str = "",
    ) -> list[QueryRunResult]:
        if concurrency_limit is None:
            concurrency_limit = self._concurrency_limit
        elif concurrency_limit < 1:
            raise ValueError("concurrency_limit must be at least 1")
        semaphore = asyncio.Semaphore(concurrency_limit)

        async def _guarded(query: str) -> QueryRunResult:
            async with semaphore:
                return await self._run_single(query, limit_per_query, session_id)

        return await asyncio.gather(*[_guarded(query) for query in queries])

    async def search_many(
        self,
        queries: list[str],
        limit_per_query: int,
        concurrency_limit: int | None = None,
        session_id: str = "",
        max_results: int | None = None,
    ) -> list[SearchResult]:
        if not queries:
            return []

        logger.debug("Starting parallel searches for %s queries", len(queries))
        runs = await self.run_queries(queries, limit_per_query, concurrency_limit, session_id)

        collected: list[SearchResult] = []
        failures = 0
        for run in runs:
            if run.status != "success":
                failures += 1
                logger.warning("Search failed query=%r: %s", run.query, run.error_message)
                continue
            collected.extend(run.results)

        if failures == len(runs):
            raise SearchBatchError(f"All {failures} search queries failed")

        unique = deduplicate_results(collected)
        if max_results is not None:
            unique = unique[:max_results]
        logger.debug(
            "Parallel searches completed queries=%s failed=%s unique_results=%s",
            len(runs),
            failures,
            len(unique),
        )
        return unique

    async def _run_single(self, query: str, limit: int, session_id: str) -> QueryRunResult:
        started = time.perf_counter()
        try:
            results = await self.search_one(query, limit, session_id)
        except Exception as exc:
            if not isinstance(exc, SearchProviderError):
                logger.debug("Unexpected search failure query=%r", query, exc_info=True)
            return QueryRunResult(
                query=query,
                status="error",
                latency_ms=_elapsed_ms(started),
                error_message=_format_exception_message(exc),
            )

        return QueryRunResult(
            query=query,
            status="success",
            latency_ms=_elapsed_ms(started),
            results=results,
        )


def format_search_results(results: list[SearchResult]) -> str:
    if not results:
        return ""

    lines = ["", "--- WEB SEARCH RESULTS ---"]
    for index, result in enumerate(results, start=1):
        lines.extend(
            [
                "",
                f"Result {index}:",
                f"Title: {result.title}",
                f"URL: {result.url}",
                f"Snippet: {result.snippet}",
            ]
        )
    return "\n".join(lines) + "\n"


def _elapsed_ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)


def _format_exception_message(exc: Exception) -> str:
    message = str(exc).strip()
    if message:
        return f"{type(exc).__name__}: {message}"
    return f"{type(exc).__name__}: no details provided"
