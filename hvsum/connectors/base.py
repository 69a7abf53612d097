from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

import httpx

from hvsum.schemas import SearchResult


class SearchProviderError(RuntimeError):
    """Raised when a search provider fails to fetch or parse results."""


class SearchProvider(ABC):
    name: str

    def __init__(self, settings: Any, client: httpx.AsyncClient | None = None) -> None:
        self.settings = settings
        self._client = client or httpx.AsyncClient(
            timeout=self.timeout_seconds(settings),
            follow_redirects=True,
            headers={"User-Agent": "hvsum/1.0"},
        )

    def timeout_seconds(self, settings: Any) -> float:
        return float(getattr(settings, "search_timeout_seconds", 10))

    @abstractmethod
    async def search(self, query: str, limit: int) -> list[SearchResult]:
        raise NotImplementedError

    async def aclose(self) -> None:
        await self._client.aclose()
