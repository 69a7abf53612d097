from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass

from hvsum.config import Settings, get_settings
from hvsum.connectors.base import SearchProvider
from hvsum.connectors.registry import ProviderRegistry
from hvsum.services.cache import ContentStore, build_content_store
from hvsum.services.llm import LLMClient, build_llm_client
from hvsum.services.orchestrator import SearchOrchestrator
from hvsum.services.pipeline import ResponsePipeline
from hvsum.services.prompts import QNA_SYSTEM
from hvsum.services.sessions import SessionRegistry
from hvsum.services.web import WebFetcher

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class Runtime:
    settings: Settings
    store: ContentStore
    provider: SearchProvider
    orchestrator: SearchOrchestrator
    llm: LLMClient
    fetcher: WebFetcher
    pipeline: ResponsePipeline
    sessions: SessionRegistry

    async def housekeeping(self) -> None:
        swept = await self.store.sweep_expired()
        cleaned = self.sessions.clean_old(self.settings.session_max_age_days)
        logger.debug("Startup housekeeping swept=%s sessions_cleaned=%s", swept, cleaned)


@asynccontextmanager
async def open_runtime(settings: Settings | None = None) -> AsyncIterator[Runtime]:
    settings = settings or get_settings()
    store = build_content_store(settings)
    provider = ProviderRegistry(settings).build_fanout(settings.search_providers)
    orchestrator = SearchOrchestrator(
        store,
        provider,
        ttl_hours=settings.cache_ttl_hours,
        concurrency_limit=settings.search_concurrency,
    )
    llm = build_llm_client(settings)
    fetcher = WebFetcher(timeout_seconds=settings.fetch_timeout_seconds)
    pipeline = ResponsePipeline(
        store=store,
        orchestrator=orchestrator,
        llm=llm,
        fetcher=fetcher,
        settings=settings,
    )
    sessions = SessionRegistry(
        settings.sessions_dir,
        store,
        enabled=settings.session_persist,
        qna_prompt=QNA_SYSTEM,
    )

    try:
        yield Runtime(
            settings=settings,
            store=store,
            provider=provider,
            orchestrator=orchestrator,
            llm=llm,
            fetcher=fetcher,
            pipeline=pipeline,
            sessions=sessions,
        )
    finally:
        await fetcher.close()
        await llm.close()
        await provider.aclose()
        await store.close()
