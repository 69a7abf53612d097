from __future__ import annotations

import logging

from hvsum.connectors.base import SearchProvider
from hvsum.connectors.duckduckgo import DuckDuckGoProvider
from hvsum.connectors.fanout import FanOutProvider
from hvsum.connectors.serpapi import SerpApiProvider

logger = logging.getLogger(__name__)


class ProviderRegistry:
    def __init__(self, settings: object) -> None:
        self.settings = settings
        self._provider_map: dict[str, type[SearchProvider]] = {
            "duckduckgo": DuckDuckGoProvider,
            "serpapi": SerpApiProvider,
        }

    def build(self, requested: list[str]) -> list[SearchProvider]:
        providers: list[SearchProvider] = []
        for name in requested:
            cls = self._provider_map.get(name.lower())
            if not cls:
                logger.debug("Skipping unknown search provider %s", name)
                continue
            if cls is SerpApiProvider and not getattr(self.settings, "serpapi_key", None):
                continue
            providers.append(cls(self.settings))
        logger.debug("Search providers enabled: %s", ",".join(p.name for p in providers))
        return providers

    def build_fanout(self, requested: list[str]) -> FanOutProvider:
        return FanOutProvider(self.build(requested))

    @property
    def available_providers(self) -> list[str]:
        return sorted(self._provider_map.keys())
