from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any

from hvsum.schemas import ChatMessage, QueriesPayload, SearchResult, SessionData, TextPayload
from hvsum.services import prompts
from hvsum.services.cache import ContentStore
from hvsum.services.llm import LLMClient, LLMError
from hvsum.services.orchestrator import (
    SearchBatchError,
    SearchOrchestrator,
    format_search_results,
)
from hvsum.services.query_hash import (
    fingerprint,
    outline_descriptor,
    qa_descriptor,
    queries_descriptor,
    query_summary_descriptor,
    url_summary_descriptor,
)
from hvsum.services.web import WebFetcher

logger = logging.getLogger(__name__)

_MAX_GENERATED_QUERIES = 3
_MIN_QUERY_LENGTH = 6
_QUERY_BULLET = re.compile(r"^(?:[-*•]|\d+[.)])\s+")
_SEARCH_TRIGGERS = re.compile(
    r"\b(?:current|latest|recent|today|now|update[sd]?|what happened|news|compare|vs|versus"
    r"|price|cost|how much|where|when|who|statistics|data|numbers|research|study)\b",
    re.IGNORECASE,
)


@dataclass(slots=True)
class SummaryResult:
    summary: str
    title: str
    context: str
    source_url: str = ""
    query: str = ""
    cached: bool = False


def should_enhance_with_search(question: str) -> bool:
    return bool(_SEARCH_TRIGGERS.search(question))


def title_from_summary(summary: str) -> str:
    for line in summary.splitlines():
        line = line.strip()
        if not line or len(line) >= 100:
            continue
        title = line.lstrip("#").strip()
        if not title:
            continue
        if len(title) > 60:
            title = title[:57] + "..."
        return title
    return "Interactive Session"


class ResponsePipeline:
    """Composes prompts, calls the model and memoizes every expensive step."""

    def __init__(
        self,
        *,
        store: ContentStore,
        orchestrator: SearchOrchestrator,
        llm: LLMClient,
        fetcher: WebFetcher,
        settings: Any,
    ) -> None:
        self._store = store
        self._orchestrator = orchestrator
        self._llm = llm
        self._fetcher = fetcher
        self._settings = settings

    async def summarize_url(
        self,
        url: str,
        length: str,
        markdown: bool = False,
        enable_search: bool = False,
        session_id: str = "",
    ) -> SummaryResult:
        key = fingerprint(url_summary_descriptor(url, length, markdown, enable_search))
        cached = await self._store.get(key, TextPayload)
        if cached is not None:
            logger.debug("Cache hit for URL summary url=%s", url)
            return SummaryResult(
                summary=cached.text,
                title=title_from_summary(cached.text),
                context=cached.text,
                source_url=url,
                cached=True,
            )

        content = await self._fetcher.extract(url)

        search_block = ""
        if enable_search:
            queries = await self._safe_generate_queries(
                content.text[:1000], "enhance this content summary", session_id
            )
            results = await self._safe_search(queries, limit_per_query=2, session_id=session_id)
            search_block = format_search_results(results)

        prompt = prompts.build_summary_prompt(length, content.text, content.title)
        if search_block:
            prompt += search_block
            prompt += (
                "\n\nUse both the webpage content and the search results to create a "
                "comprehensive summary."
            )
        prompt += f"\n\nSource URL: {content.url}"

        summary = await self._llm.generate(
            prompts.with_markdown(prompts.SUMMARY_SYSTEM, markdown), prompt
        )
        await self._cache_text(key, summary, session_id)
        return SummaryResult(
            summary=summary,
            title=content.title,
            context=content.text,
            source_url=content.url,
        )

    async def summarize_query(
        self,
        query: str,
        length: str,
        markdown: bool = False,
        session_id: str = "",
    ) -> SummaryResult:
        key = fingerprint(query_summary_descriptor(query, length, markdown))
        cached = await self._store.get(key, TextPayload)
        if cached is not None:
            logger.debug("Cache hit for search summary query=%r", query)
            return SummaryResult(
                summary=cached.text,
                title=title_from_summary(cached.text),
                context=cached.text,
                query=query,
                cached=True,
            )

        related = await self._safe_generate_queries(
            query, "provide comprehensive information about this topic", session_id
        )
        queries = [query, *[item for item in related if item != query]]

        results = await self._orchestrator.search_many(
            queries,
            limit_per_query=3,
            session_id=session_id,
            max_results=self._settings.max_search_results,
        )
        if not results:
            raise SearchBatchError(f"no search results found for query: {query}")
        logger.debug("Found %s search results for query=%r", len(results), query)

        formatted = format_search_results(results)
        summary = await self._llm.generate(
            prompts.with_markdown(prompts.SEARCH_ONLY_SYSTEM, markdown),
            prompts.build_search_only_prompt(query, length, formatted),
        )
        await self._cache_text(key, summary, session_id)
        return SummaryResult(
            summary=summary,
            title=query,
            context=formatted,
            query=query,
        )

    async def generate_search_queries(
        self, context: str, purpose: str, session_id: str = ""
    ) -> list[str]:
        key = fingerprint(queries_descriptor(context, purpose))
        cached = await self._store.get(key, QueriesPayload)
        if cached is not None:
            logger.debug("Cache hit for search queries")
            return list(cached.queries)

        response = await self._llm.generate(
            prompts.SEARCH_QUERY_SYSTEM, prompts.build_queries_prompt(context, purpose)
        )
        queries: list[str] = []
        for line in response.strip().splitlines():
            candidate = _QUERY_BULLET.sub("", line.strip()).strip().strip('"')
            if len(candidate) >= _MIN_QUERY_LENGTH and candidate not in queries:
                queries.append(candidate)
        queries = queries[:_MAX_GENERATED_QUERIES]

        if queries:
            await self._store.set(
                key,
                QueriesPayload(queries=queries),
                ttl_hours=self._settings.cache_ttl_hours,
                session_id=session_id,
            )
        logger.debug("Generated %s search queries: %s", len(queries), queries)
        return queries

    async def answer_question(
        self, question: str, session: SessionData, enable_search: bool = False
    ) -> str:
        key = fingerprint(qa_descriptor(question, session.initial_summary))
        cached = await self._store.get(key, TextPayload)
        if cached is not None:
            logger.debug("Cache hit for Q&A question=%r", question)
            return cached.text

        final_question = question
        if enable_search and should_enhance_with_search(question):
            queries = await self._safe_generate_queries(
                session.context_content or session.initial_summary, question, session.id
            )
            results = await self._safe_search(queries, limit_per_query=3, session_id=session.id)
            if results:
                final_question += format_search_results(results)
                final_question += (
                    "\n\nPlease provide a concise answer based on the document summary "
                    "and additional search context."
                )
        final_question += f"\n\n{prompts.CONCISE_ANSWER_SUFFIX}"

        messages = [*session.messages, ChatMessage(role="user", content=final_question)]
        answer = await self._llm.chat(messages)
        await self._cache_text(key, answer, session.id)
        return answer

    async def generate_outline(self, summary: str, markdown: bool = False) -> str:
        if not summary:
            raise ValueError("cannot generate outline from empty summary")

        key = fingerprint(outline_descriptor(summary, markdown))
        cached = await self._store.get(key, TextPayload)
        if cached is not None:
            logger.debug("Cache hit for outline")
            return cached.text

        system = prompts.OUTLINE_SYSTEM
        if markdown:
            system = f"{system}\n\n{prompts.OUTLINE_MARKDOWN}"
        outline = await self._llm.generate(
            system, f"Create a structured outline from this content:\n\n{summary}"
        )
        await self._cache_text(key, outline, "")
        return outline

    async def _safe_generate_queries(
        self, context: str, purpose: str, session_id: str
    ) -> list[str]:
        try:
            return await self.generate_search_queries(context, purpose, session_id)
        except LLMError as exc:
            logger.debug("Search query generation failed: %s", exc)
            return []

    async def _safe_search(
        self, queries: list[str], limit_per_query: int, session_id: str
    ) -> list[SearchResult]:
        if not queries:
            return []
        try:
            return await self._orchestrator.search_many(
                queries,
                limit_per_query=limit_per_query,
                session_id=session_id,
                max_results=self._settings.max_search_results,
            )
        except SearchBatchError as exc:
            logger.warning("Search enrichment skipped: %s", exc)
            return []

    async def _cache_text(self, key: str, text: str, session_id: str) -> None:
        stored = await self._store.set(
            key,
            TextPayload(text=text),
            ttl_hours=self._settings.cache_ttl_hours,
            session_id=session_id,
        )
        if not stored:
            logger.debug("Result not cached key=%s", key)
