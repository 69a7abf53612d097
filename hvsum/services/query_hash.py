from __future__ import annotations

import hashlib


def fingerprint(descriptor: str) -> str:
    return hashlib.md5(descriptor.encode("utf-8"), usedforsecurity=False).hexdigest()


def search_descriptor(query: str, limit: int) -> str:
    return f"search:{query}:{limit}"


def url_summary_descriptor(url: str, length: str, markdown: bool, enable_search: bool) -> str:
    return f"url:{url}:{length}:{_flag(markdown)}:{_flag(enable_search)}"


def query_summary_descriptor(query: str, length: str, markdown: bool) -> str:
    return f"search-summary:{query}:{length}:{_flag(markdown)}"


def queries_descriptor(context: str, purpose: str) -> str:
    return f"queries:{context[:200]}:{purpose}"


def qa_descriptor(question: str, initial_summary: str) -> str:
    return f"qa:{question}:{initial_summary[:100]}"


def outline_descriptor(summary: str, markdown: bool) -> str:
    return f"outline:{summary[:200]}:{_flag(markdown)}"


def _flag(value: bool) -> str:
    return "true" if value else "false"
