from __future__ import annotations

from datetime import UTC, datetime, timedelta
from enum import StrEnum
from typing import Annotated, Literal

from pydantic import BaseModel, Field, model_validator


def _utcnow() -> datetime:
    return datetime.now(UTC)


# Largest TTL a timedelta can represent.
MAX_TTL_HOURS = timedelta.max // timedelta(hours=1)


class SummaryLength(StrEnum):
    short = "short"
    medium = "medium"
    long = "long"
    detailed = "detailed"


class SearchResult(BaseModel):
    title: str
    url: str
    snippet: str = ""
    source_engine: str = ""


class TextPayload(BaseModel):
    kind: Literal["text"] = "text"
    text: str


class QueriesPayload(BaseModel):
    kind: Literal["queries"] = "queries"
    queries: list[str]


class SearchResultsPayload(BaseModel):
    kind: Literal["search_results"] = "search_results"
    results: list[SearchResult]


CachePayload = Annotated[
    TextPayload | QueriesPayload | SearchResultsPayload,
    Field(discriminator="kind"),
]


class CacheEntry(BaseModel):
    key: str
    payload: CachePayload
    created_at: datetime = Field(default_factory=_utcnow)
    ttl_hours: int = Field(default=24, ge=0, le=MAX_TTL_HOURS)
    session_id: str = ""
    pending: bool = False

    @model_validator(mode="after")
    def _validate_pending(self) -> CacheEntry:
        if self.pending and not self.session_id:
            raise ValueError("pending entries must belong to a session")
        return self

    def age(self, now: datetime) -> timedelta:
        created_at = self.created_at
        if created_at.tzinfo is None:
            created_at = created_at.replace(tzinfo=UTC)
        return now - created_at

    def is_expired(self, now: datetime) -> bool:
        return self.age(now) > timedelta(hours=self.ttl_hours)

    def is_stale_pending(self, now: datetime, grace_hours: float) -> bool:
        return self.pending and self.age(now) > timedelta(hours=grace_hours)


class ChatMessage(BaseModel):
    role: str
    content: str


class SessionData(BaseModel):
    id: str
    title: str = ""
    url: str = ""
    query: str = ""
    initial_summary: str = ""
    context_content: str = ""
    messages: list[ChatMessage] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=_utcnow)
    last_accessed_at: datetime = Field(default_factory=_utcnow)
    last_modified: datetime | None = None
    search_enabled: bool = False
    message_count: int = 0

    def display_title(self) -> str:
        if self.title:
            return self.title
        if self.url:
            return f"Web: {self.url}"
        if self.query:
            return f"Search: {self.query}"
        return f"Session {self.id}"

    def age_label(self, now: datetime | None = None) -> str:
        age = (now or _utcnow()) - self.created_at
        if age < timedelta(hours=1):
            return f"{int(age.total_seconds() // 60)}m ago"
        if age < timedelta(days=1):
            return f"{int(age.total_seconds() // 3600)}h ago"
        return f"{age.days}d ago"
