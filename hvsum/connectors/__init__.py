from hvsum.connectors.base import SearchProvider, SearchProviderError
from hvsum.connectors.duckduckgo import DuckDuckGoProvider
from hvsum.connectors.fanout import FanOutProvider
from hvsum.connectors.registry import ProviderRegistry
from hvsum.connectors.serpapi import SerpApiProvider

__all__ = [
    "DuckDuckGoProvider",
    "FanOutProvider",
    "ProviderRegistry",
    "SearchProvider",
    "SearchProviderError",
    "SerpApiProvider",
]
