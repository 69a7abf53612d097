from __future__ import annotations

from hvsum.schemas import SearchResult


def deduplicate_results(results: list[SearchResult]) -> list[SearchResult]:
    # URLs are compared verbatim: no scheme, slash or query normalization.
    selected: dict[str, SearchResult] = {}
    for result in results:
        if result.url not in selected:
            selected[result.url] = result
    return list(selected.values())
