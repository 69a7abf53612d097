from __future__ import annotations

import json
from types import SimpleNamespace

import pytest

from hvsum.connectors.base import SearchProvider, SearchProviderError
from hvsum.schemas import ChatMessage, SearchResult, SessionData
from hvsum.services import prompts
from hvsum.services.cache import MemoryContentStore
from hvsum.services.llm import LLMClient, LLMError
from hvsum.services.orchestrator import SearchBatchError, SearchOrchestrator
from hvsum.services.pipeline import (
    ResponsePipeline,
    should_enhance_with_search,
    title_from_summary,
)
from hvsum.services.query_hash import fingerprint, qa_descriptor
from hvsum.services.web import WebContent

_QUERY_LINES = "1. python asyncio semaphore\n- hi\nasyncio gather ordering\n"


class _FakeLLM(LLMClient):
    name = "fake"

    def __init__(self, answer: str = "Generated summary", queries: str = _QUERY_LINES) -> None:
        self.answer = answer
        self.queries = queries
        self.generate_calls: list[tuple[str, str]] = []
        self.chat_calls: list[list[ChatMessage]] = []

    async def generate(self, system: str, prompt: str) -> str:
        self.generate_calls.append((system, prompt))
        if system == prompts.SEARCH_QUERY_SYSTEM:
            return self.queries
        return self.answer

    async def chat(self, messages: list[ChatMessage]) -> str:
        self.chat_calls.append(messages)
        return self.answer


class _FailingQueryLLM(_FakeLLM):
    async def generate(self, system: str, prompt: str) -> str:
        if system == prompts.SEARCH_QUERY_SYSTEM:
            raise LLMError("model unavailable")
        return await super().generate(system, prompt)


class _FakeFetcher:
    def __init__(self) -> None:
        self.calls: list[str] = []

    async def extract(self, url: str) -> WebContent:
        self.calls.append(url)
        return WebContent(url=url, title="Asyncio guide", text="Asyncio runs coroutines.")


class _FakeProvider(SearchProvider):
    name = "fake"

    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.calls: list[str] = []

    async def search(self, query: str, limit: int) -> list[SearchResult]:
        self.calls.append(query)
        if self.fail:
            raise SearchProviderError("search API returned status 503")
        slug = query.replace(" ", "-")
        return [SearchResult(title=query, url=f"https://example.com/{slug}", snippet="snippet")]

    async def aclose(self) -> None:
        return None


def _pipeline(llm: LLMClient | None = None, provider: SearchProvider | None = None):
    store = MemoryContentStore()
    llm = llm or _FakeLLM()
    provider = provider or _FakeProvider()
    fetcher = _FakeFetcher()
    pipeline = ResponsePipeline(
        store=store,
        orchestrator=SearchOrchestrator(store, provider),
        llm=llm,
        fetcher=fetcher,
        settings=SimpleNamespace(cache_ttl_hours=24, max_search_results=8),
    )
    return pipeline, store, llm, provider, fetcher


def _session(session_id: str = "session_1") -> SessionData:
    return SessionData(
        id=session_id,
        title="Asyncio guide",
        initial_summary="Asyncio runs coroutines on an event loop.",
        context_content="Asyncio runs coroutines.",
        messages=[
            ChatMessage(role="system", content="context"),
            ChatMessage(role="assistant", content="ready"),
        ],
    )


@pytest.mark.asyncio
async def test_summarize_url_is_cached_per_options() -> None:
    pipeline, _, llm, _, fetcher = _pipeline()

    first = await pipeline.summarize_url("https://example.com", "short")
    second = await pipeline.summarize_url("https://example.com", "short")
    await pipeline.summarize_url("https://example.com", "long")

    assert first.summary == "Generated summary"
    assert first.title == "Asyncio guide"
    assert first.context == "Asyncio runs coroutines."
    assert first.cached is False
    assert second.cached is True
    assert second.summary == first.summary
    assert fetcher.calls == ["https://example.com", "https://example.com"]
    assert len(llm.generate_calls) == 2


@pytest.mark.asyncio
async def test_summarize_url_with_search_adds_results_to_prompt() -> None:
    pipeline, _, llm, provider, _ = _pipeline()

    await pipeline.summarize_url("https://example.com", "medium", enable_search=True)

    assert provider.calls == ["python asyncio semaphore", "asyncio gather ordering"]
    system, prompt = llm.generate_calls[-1]
    assert system == prompts.SUMMARY_SYSTEM
    assert "--- WEB SEARCH RESULTS ---" in prompt
    assert "https://example.com/python-asyncio-semaphore" in prompt
    assert prompt.endswith("Source URL: https://example.com")


@pytest.mark.asyncio
async def test_summarize_url_survives_failed_enrichment() -> None:
    pipeline, _, llm, _, _ = _pipeline(provider=_FakeProvider(fail=True))

    result = await pipeline.summarize_url("https://example.com", "medium", enable_search=True)

    assert result.summary == "Generated summary"
    assert "--- WEB SEARCH RESULTS ---" not in llm.generate_calls[-1][1]


@pytest.mark.asyncio
async def test_summarize_query_searches_user_query_first() -> None:
    pipeline, _, llm, provider, _ = _pipeline()

    result = await pipeline.summarize_query("asyncio tutorial", "short", markdown=True)

    assert provider.calls[0] == "asyncio tutorial"
    assert set(provider.calls) == {
        "asyncio tutorial",
        "python asyncio semaphore",
        "asyncio gather ordering",
    }
    system, prompt = llm.generate_calls[-1]
    assert system == prompts.with_markdown(prompts.SEARCH_ONLY_SYSTEM, True)
    assert 'query: "asyncio tutorial"' in prompt
    assert result.title == "asyncio tutorial"
    assert "--- WEB SEARCH RESULTS ---" in result.context


@pytest.mark.asyncio
async def test_summarize_query_fails_when_search_fails() -> None:
    pipeline, _, llm, _, _ = _pipeline(provider=_FakeProvider(fail=True))

    with pytest.raises(SearchBatchError):
        await pipeline.summarize_query("asyncio tutorial", "short")

    assert all(system == prompts.SEARCH_QUERY_SYSTEM for system, _ in llm.generate_calls)


@pytest.mark.asyncio
async def test_generate_search_queries_cleans_and_caches_lines() -> None:
    lines = "- first query\n2) second query\nshort\n- first query\nthird one\nfourth one\n"
    pipeline, _, llm, _, _ = _pipeline(llm=_FakeLLM(queries=lines))

    queries = await pipeline.generate_search_queries("context", "purpose")
    again = await pipeline.generate_search_queries("context", "purpose")

    assert queries == ["first query", "second query", "third one"]
    assert again == queries
    assert len(llm.generate_calls) == 1


@pytest.mark.asyncio
async def test_query_generation_failure_does_not_block_query_summary() -> None:
    pipeline, _, _, provider, _ = _pipeline(llm=_FailingQueryLLM())

    result = await pipeline.summarize_query("asyncio tutorial", "short")

    assert provider.calls == ["asyncio tutorial"]
    assert result.summary == "Generated summary"


@pytest.mark.asyncio
async def test_answer_question_caches_answer_under_session() -> None:
    pipeline, store, llm, _, _ = _pipeline()
    session = _session()

    answer = await pipeline.answer_question("Explain the event loop", session)
    again = await pipeline.answer_question("Explain the event loop", session)

    assert answer == again == "Generated summary"
    assert len(llm.chat_calls) == 1
    messages = llm.chat_calls[0]
    assert [m.role for m in messages] == ["system", "assistant", "user"]
    assert messages[-1].content.endswith(prompts.CONCISE_ANSWER_SUFFIX)

    key = fingerprint(qa_descriptor("Explain the event loop", session.initial_summary))
    entry = json.loads(store.raw(key))
    assert entry["pending"] is True
    assert entry["session_id"] == "session_1"


@pytest.mark.asyncio
async def test_answer_question_searches_only_for_trigger_words() -> None:
    pipeline, _, llm, provider, _ = _pipeline()
    session = _session()

    await pipeline.answer_question("Explain the event loop", session, enable_search=True)
    assert provider.calls == []

    await pipeline.answer_question("What is the latest release?", session, enable_search=True)
    assert provider.calls
    assert "--- WEB SEARCH RESULTS ---" in llm.chat_calls[-1][-1].content


@pytest.mark.asyncio
async def test_generate_outline_requires_summary_and_is_cached() -> None:
    pipeline, _, llm, _, _ = _pipeline(llm=_FakeLLM(answer="## Outline"))

    with pytest.raises(ValueError):
        await pipeline.generate_outline("")

    assert await pipeline.generate_outline("Summary text", markdown=True) == "## Outline"
    assert await pipeline.generate_outline("Summary text", markdown=True) == "## Outline"
    assert len(llm.generate_calls) == 1
    assert prompts.OUTLINE_MARKDOWN in llm.generate_calls[0][0]


def test_should_enhance_with_search_matches_whole_words() -> None:
    assert should_enhance_with_search("What is the latest version?")
    assert should_enhance_with_search("How much does it cost?")
    assert should_enhance_with_search("Compare asyncio vs trio")
    assert not should_enhance_with_search("Explain the architecture")
    assert not should_enhance_with_search("Do you know the author's style?")


def test_title_from_summary() -> None:
    assert title_from_summary("\n## Asyncio basics\n\nBody text") == "Asyncio basics"
    assert title_from_summary("x" * 80) == "x" * 57 + "..."
    assert title_from_summary("y" * 120) == "Interactive Session"
    assert title_from_summary("") == "Interactive Session"
