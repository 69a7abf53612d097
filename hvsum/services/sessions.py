from __future__ import annotations

import logging
import os
import shutil
import tempfile
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from pathlib import Path
from uuid import uuid4

from hvsum.schemas import ChatMessage, SessionData
from hvsum.services.cache import ContentStore

logger = logging.getLogger(__name__)

# Two leading messages (system prompt and greeting) plus the recent conversation.
PINNED_MESSAGES = 2
_MAX_MESSAGES = 22
_KEPT_CONVERSATION = 18


class SessionNotFoundError(RuntimeError):
    """Raised when a session transcript does not exist or cannot be read."""


def _utcnow() -> datetime:
    return datetime.now(UTC)


class SessionRegistry:
    """Persists interactive Q&A transcripts, one JSON file per session.

    Ending a session goes through ``finish``, which either keeps the transcript
    and commits the session's pending cache entries, or deletes both.
    """

    def __init__(
        self,
        sessions_dir: str | Path,
        store: ContentStore,
        *,
        enabled: bool = True,
        qna_prompt: str = "",
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._dir = Path(sessions_dir)
        self._store = store
        self._enabled = enabled
        self._qna_prompt = qna_prompt
        self._clock = clock or _utcnow
        if enabled:
            self._dir.mkdir(parents=True, exist_ok=True)

    @property
    def enabled(self) -> bool:
        return self._enabled

    def path_for(self, session_id: str) -> Path:
        return self._dir / f"{session_id}.json"

    def create(
        self,
        summary: str,
        context: str,
        title: str,
        search_enabled: bool,
        url: str = "",
        query: str = "",
    ) -> SessionData:
        now = self._clock()
        session_id = f"session_{int(now.timestamp())}_{uuid4().hex[:6]}" if self._enabled else ""
        session = SessionData(
            id=session_id,
            title=title,
            url=url,
            query=query,
            initial_summary=summary,
            context_content=context,
            messages=[
                ChatMessage(role="system", content=self._system_message(summary, context)),
                ChatMessage(
                    role="assistant", content=f"I'm ready to answer questions about: {title}"
                ),
            ],
            created_at=now,
            last_accessed_at=now,
            search_enabled=search_enabled,
        )
        if session.id:
            self.save(session)
            logger.debug("Created new session: %s", session.id)
        return session

    def save(self, session: SessionData) -> None:
        if not self._enabled or not session.id:
            return
        now = self._clock()
        session.last_accessed_at = now
        session.last_modified = now
        session.message_count = len(session.messages)
        self._write_atomic(self.path_for(session.id), session.model_dump_json(indent=2))
        logger.debug("Saved session %s with %s messages", session.id, session.message_count)

    def load(self, session_id: str) -> SessionData:
        path = self.path_for(session_id)
        try:
            session = SessionData.model_validate_json(path.read_text(encoding="utf-8"))
        except FileNotFoundError as exc:
            raise SessionNotFoundError(f"session not found: {session_id}") from exc
        except (OSError, ValueError) as exc:
            raise SessionNotFoundError(f"session unreadable: {session_id}") from exc

        session.last_accessed_at = self._clock()
        self._write_atomic(path, session.model_dump_json(indent=2))
        return session

    def exists(self, session_id: str) -> bool:
        return self.path_for(session_id).is_file()

    def list_sessions(self) -> list[SessionData]:
        if not self._dir.is_dir():
            return []
        sessions: list[SessionData] = []
        for path in sorted(self._dir.glob("*.json")):
            try:
                sessions.append(SessionData.model_validate_json(path.read_text(encoding="utf-8")))
            except (OSError, ValueError):
                logger.debug("Skipping unreadable session file %s", path.name)
        return sessions

    def recent(self, limit: int = 10) -> list[SessionData]:
        sessions = sorted(self.list_sessions(), key=lambda s: s.last_accessed_at, reverse=True)
        return sessions[:limit]

    def delete(self, session_id: str) -> bool:
        try:
            self.path_for(session_id).unlink()
        except FileNotFoundError:
            return False
        return True

    def clear_all(self) -> int:
        if not self._dir.is_dir():
            return 0
        removed = 0
        for path in self._dir.iterdir():
            if path.is_dir():
                shutil.rmtree(path, ignore_errors=True)
            else:
                path.unlink(missing_ok=True)
            removed += 1
        logger.debug("Cleared all sessions removed=%s", removed)
        return removed

    def clean_old(self, max_age_days: int = 30) -> int:
        cutoff = self._clock() - timedelta(days=max_age_days)
        cleaned = 0
        for session in self.list_sessions():
            if session.last_accessed_at < cutoff and self.delete(session.id):
                cleaned += 1
        logger.debug("Cleaned %s old sessions", cleaned)
        return cleaned

    def add_message(self, session: SessionData | None, role: str, content: str) -> None:
        if session is None:
            return
        session.messages.append(ChatMessage(role=role, content=content))
        if len(session.messages) > _MAX_MESSAGES:
            session.messages = [
                *session.messages[:PINNED_MESSAGES],
                *session.messages[-_KEPT_CONVERSATION:],
            ]

    async def finish(self, session: SessionData | None, keep: bool) -> int:
        """End a session: keep it and commit its cache entries, or discard both."""
        if session is None or not session.id:
            return 0
        if keep:
            self.save(session)
            committed = await self._store.commit(session.id)
            logger.debug("Session %s kept, committed=%s", session.id, committed)
            return committed

        self.delete(session.id)
        removed = await self._store.discard(session.id)
        logger.debug("Session %s discarded, removed=%s", session.id, removed)
        return removed

    def _system_message(self, summary: str, context: str) -> str:
        parts = [self._qna_prompt] if self._qna_prompt else []
        parts.append(f"--- DOCUMENT SUMMARY ---\n{summary}")
        if context and context != summary:
            parts.append(f"--- SOURCE CONTENT ---\n{context}")
        return "\n\n".join(parts)

    def _write_atomic(self, path: Path, raw: str) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.stem}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(raw)
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
