from __future__ import annotations

import io

import pytest
from rich.console import Console

from hvsum.cli.interactive import Decision, InteractiveSession
from hvsum.schemas import SessionData, TextPayload
from hvsum.services.cache import MemoryContentStore
from hvsum.services.llm import LLMError
from hvsum.services.sessions import SessionRegistry


class _FakePipeline:
    def __init__(self, store: MemoryContentStore, fail: bool = False) -> None:
        self.store = store
        self.fail = fail
        self.questions: list[str] = []

    async def answer_question(
        self, question: str, session: SessionData, enable_search: bool = False
    ) -> str:
        if self.fail:
            raise LLMError("model unavailable")
        self.questions.append(question)
        key = f"qa-{len(self.questions)}"
        await self.store.set(key, TextPayload(text="answer"), session_id=session.id)
        return f"Answer to {question}"


def _inputs(*lines: str):
    pending = list(lines)

    def _read(prompt: str) -> str:
        if not pending:
            raise EOFError
        return pending.pop(0)

    return _read


def _setup(tmp_path, enabled: bool = True, fail: bool = False):
    store = MemoryContentStore()
    registry = SessionRegistry(tmp_path / "sessions", store, enabled=enabled)
    session = registry.create("Summary", "Context", "Asyncio guide", search_enabled=False)
    pipeline = _FakePipeline(store, fail=fail)
    output = io.StringIO()
    console = Console(file=output, width=120)
    return store, registry, session, pipeline, console, output


@pytest.mark.asyncio
async def test_save_command_keeps_session_and_commits_cache(tmp_path) -> None:
    store, registry, session, pipeline, console, output = _setup(tmp_path)
    confirms: list[str] = []

    interactive = InteractiveSession(
        pipeline,
        registry,
        session,
        console=console,
        input_func=_inputs("What is a coroutine?", "/save"),
        confirm_func=lambda prompt: confirms.append(prompt) or True,
    )
    decision = await interactive.run()

    assert decision is Decision.keep
    assert confirms == []
    assert pipeline.questions == ["What is a coroutine?"]
    saved = registry.load(session.id)
    assert [m.role for m in saved.messages][-2:] == ["user", "assistant"]
    assert '"pending":false' in store.raw("qa-1")
    assert "Answer to What is a coroutine?" in output.getvalue()


@pytest.mark.asyncio
async def test_end_of_input_asks_and_discards_when_declined(tmp_path) -> None:
    store, registry, session, pipeline, console, _ = _setup(tmp_path)

    decision = await InteractiveSession(
        pipeline,
        registry,
        session,
        console=console,
        input_func=_inputs("", "Why use semaphores?"),
        confirm_func=lambda prompt: False,
    ).run()

    assert decision is Decision.discard
    assert not registry.exists(session.id)
    assert store.raw("qa-1") is None


@pytest.mark.asyncio
async def test_informational_commands_do_not_end_the_loop(tmp_path) -> None:
    _, registry, session, pipeline, console, output = _setup(tmp_path)

    decision = await InteractiveSession(
        pipeline,
        registry,
        session,
        console=console,
        input_func=_inputs("/help", "/history", "/info", "/unknown", "/exit"),
        confirm_func=lambda prompt: True,
    ).run()

    text = output.getvalue()
    assert decision is Decision.keep
    assert "Available commands" in text
    assert "No conversation yet." in text
    assert session.id in text
    assert "Unknown command: /unknown" in text
    assert registry.exists(session.id)


@pytest.mark.asyncio
async def test_discard_command_skips_confirmation(tmp_path) -> None:
    _, registry, session, pipeline, console, _ = _setup(tmp_path)

    def _confirm(prompt: str) -> bool:
        raise AssertionError("confirmation should not be requested")

    decision = await InteractiveSession(
        pipeline,
        registry,
        session,
        console=console,
        input_func=_inputs("/discard"),
        confirm_func=_confirm,
    ).run()

    assert decision is Decision.discard
    assert not registry.exists(session.id)


@pytest.mark.asyncio
async def test_model_errors_are_reported_and_loop_continues(tmp_path) -> None:
    _, registry, session, pipeline, console, output = _setup(tmp_path, fail=True)

    await InteractiveSession(
        pipeline,
        registry,
        session,
        console=console,
        input_func=_inputs("Question?", "/save"),
    ).run()

    assert "model unavailable" in output.getvalue()
    assert len(registry.load(session.id).messages) == 2


@pytest.mark.asyncio
async def test_unsaved_session_never_asks_for_confirmation(tmp_path) -> None:
    _, registry, session, pipeline, console, output = _setup(tmp_path, enabled=False)

    def _confirm(prompt: str) -> bool:
        raise AssertionError("confirmation should not be requested")

    decision = await InteractiveSession(
        pipeline,
        registry,
        session,
        console=console,
        input_func=_inputs("Question?"),
        confirm_func=_confirm,
    ).run()

    assert decision is Decision.undecided
    assert "Goodbye!" in output.getvalue()


@pytest.mark.asyncio
async def test_history_lists_only_the_conversation(tmp_path) -> None:
    _, registry, session, pipeline, console, output = _setup(tmp_path)

    await InteractiveSession(
        pipeline,
        registry,
        session,
        console=console,
        input_func=_inputs("What is a coroutine?", "/history", "/save"),
    ).run()

    text = output.getvalue()
    assert "No conversation yet." not in text
    assert "[User] What is a coroutine?" in text
    assert "[Assistant] Answer to What is a coroutine?" in text
    assert "I'm ready to answer questions about" not in text
