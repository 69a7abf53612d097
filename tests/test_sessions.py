from __future__ import annotations

import json
from datetime import UTC, datetime, timedelta

import pytest

from hvsum.schemas import TextPayload
from hvsum.services.cache import MemoryContentStore
from hvsum.services.sessions import SessionNotFoundError, SessionRegistry


class _Clock:
    def __init__(self) -> None:
        self.now = datetime(2026, 3, 20, 9, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now


def _registry(tmp_path, store=None, **kwargs) -> SessionRegistry:
    return SessionRegistry(tmp_path / "sessions", store or MemoryContentStore(), **kwargs)


def test_create_writes_transcript_with_system_prompt_and_greeting(tmp_path) -> None:
    registry = _registry(tmp_path, qna_prompt="Answer from the document only.")

    session = registry.create(
        "Python is a language.",
        "Full page text about Python.",
        "Python",
        search_enabled=True,
        url="https://python.org",
    )

    assert session.id.startswith("session_")
    assert registry.exists(session.id)
    assert [m.role for m in session.messages] == ["system", "assistant"]
    system = session.messages[0].content
    assert system.startswith("Answer from the document only.")
    assert "Python is a language." in system
    assert "Full page text about Python." in system
    assert session.messages[1].content == "I'm ready to answer questions about: Python"

    stored = json.loads(registry.path_for(session.id).read_text(encoding="utf-8"))
    assert stored["url"] == "https://python.org"
    assert stored["search_enabled"] is True
    assert stored["message_count"] == 2


def test_disabled_registry_returns_unsaved_session(tmp_path) -> None:
    registry = _registry(tmp_path, enabled=False)

    session = registry.create("summary", "context", "Title", search_enabled=False)
    registry.save(session)

    assert session.id == ""
    assert not (tmp_path / "sessions").exists()


def test_load_refreshes_last_accessed(tmp_path) -> None:
    clock = _Clock()
    registry = _registry(tmp_path, clock=clock)
    session = registry.create("summary", "context", "Title", search_enabled=False)

    clock.now += timedelta(hours=3)
    loaded = registry.load(session.id)

    assert loaded.initial_summary == "summary"
    assert loaded.last_accessed_at == clock.now
    assert registry.load(session.id).last_accessed_at == clock.now


def test_load_missing_or_corrupt_session_raises(tmp_path) -> None:
    registry = _registry(tmp_path)
    registry.path_for("session_broken").write_text("{oops", encoding="utf-8")

    with pytest.raises(SessionNotFoundError):
        registry.load("session_missing")
    with pytest.raises(SessionNotFoundError):
        registry.load("session_broken")


def test_list_sessions_skips_corrupt_files_and_recent_orders_by_access(tmp_path) -> None:
    clock = _Clock()
    registry = _registry(tmp_path, clock=clock)
    older = registry.create("one", "", "First", search_enabled=False)
    clock.now += timedelta(minutes=5)
    newer = registry.create("two", "", "Second", search_enabled=False)
    registry.path_for("session_broken").write_text("not json", encoding="utf-8")

    assert len(registry.list_sessions()) == 2
    assert [s.id for s in registry.recent()] == [newer.id, older.id]
    assert [s.id for s in registry.recent(limit=1)] == [newer.id]


def test_undecodable_session_file_is_treated_as_absent(tmp_path) -> None:
    registry = _registry(tmp_path)
    kept = registry.create("one", "", "First", search_enabled=False)
    registry.path_for("session_bad").write_bytes(b"\xff\xfe")

    assert [s.id for s in registry.list_sessions()] == [kept.id]
    assert registry.clean_old(30) == 0
    with pytest.raises(SessionNotFoundError):
        registry.load("session_bad")


def test_add_message_keeps_pinned_messages_and_recent_conversation(tmp_path) -> None:
    registry = _registry(tmp_path)
    session = registry.create("summary", "", "Title", search_enabled=False)

    for index in range(21):
        registry.add_message(session, "user", f"m{index}")

    assert len(session.messages) == 20
    assert session.messages[0].role == "system"
    assert session.messages[1].role == "assistant"
    assert session.messages[2].content == "m3"
    assert session.messages[-1].content == "m20"


def test_clean_old_removes_sessions_not_accessed_recently(tmp_path) -> None:
    clock = _Clock()
    registry = _registry(tmp_path, clock=clock)
    stale = registry.create("old", "", "Old", search_enabled=False)
    clock.now += timedelta(days=31)
    fresh = registry.create("new", "", "New", search_enabled=False)

    assert registry.clean_old(30) == 1
    assert not registry.exists(stale.id)
    assert registry.exists(fresh.id)


def test_delete_and_clear_all(tmp_path) -> None:
    registry = _registry(tmp_path)
    first = registry.create("a", "", "A", search_enabled=False)
    registry.create("b", "", "B", search_enabled=False)

    assert registry.delete(first.id) is True
    assert registry.delete(first.id) is False
    assert registry.clear_all() == 1
    assert registry.list_sessions() == []


@pytest.mark.asyncio
async def test_finish_keep_saves_transcript_and_commits_cache(tmp_path) -> None:
    store = MemoryContentStore()
    registry = _registry(tmp_path, store)
    session = registry.create("summary", "", "Title", search_enabled=False)
    await store.set("answer", TextPayload(text="cached answer"), session_id=session.id)
    registry.add_message(session, "user", "question")

    assert await registry.finish(session, keep=True) == 1

    assert registry.load(session.id).message_count == 3
    entry = json.loads(store.raw("answer"))
    assert entry["pending"] is False
    assert entry["session_id"] == ""


@pytest.mark.asyncio
async def test_finish_discard_deletes_transcript_and_pending_cache(tmp_path) -> None:
    store = MemoryContentStore()
    registry = _registry(tmp_path, store)
    session = registry.create("summary", "", "Title", search_enabled=False)
    await store.set("answer", TextPayload(text="cached answer"), session_id=session.id)
    await store.set("shared", TextPayload(text="shared"))

    assert await registry.finish(session, keep=False) == 1

    assert not registry.exists(session.id)
    assert store.raw("answer") is None
    assert store.raw("shared") is not None


@pytest.mark.asyncio
async def test_finish_without_session_id_is_noop(tmp_path) -> None:
    store = MemoryContentStore()
    registry = _registry(tmp_path, store, enabled=False)
    session = registry.create("summary", "", "Title", search_enabled=False)
    await store.set("shared", TextPayload(text="shared"))

    assert await registry.finish(session, keep=False) == 0
    assert await registry.finish(None, keep=True) == 0
    assert store.raw("shared") is not None
