from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from enum import StrEnum

from rich.console import Console
from rich.markdown import Markdown
from rich.markup import escape
from rich.prompt import Confirm
from rich.table import Table

from hvsum.schemas import SessionData
from hvsum.services.llm import LLMError
from hvsum.services.pipeline import ResponsePipeline
from hvsum.services.sessions import PINNED_MESSAGES, SessionRegistry

logger = logging.getLogger(__name__)

_PREVIEW_CHARS = 100

HELP_ROWS: tuple[tuple[str, str], ...] = (
    ("/help, /h", "Show this help"),
    ("/history, /s", "Show conversation history for this session"),
    ("/info, /i", "Show current session info"),
    ("/clear, /c", "Clear the screen"),
    ("/save", "Keep this session and its cached results, then exit"),
    ("/discard", "Delete this session and its cached results, then exit"),
    ("/exit, /bye, /quit", "Exit interactive mode"),
)


class Decision(StrEnum):
    undecided = "undecided"
    keep = "keep"
    discard = "discard"


def _truncate(text: str, limit: int = _PREVIEW_CHARS) -> str:
    text = " ".join(text.split())
    return text if len(text) <= limit else text[: limit - 3] + "..."


class InteractiveSession:
    """Q&A loop over a summarized document.

    The loop ends with exactly one ``SessionRegistry.finish`` call, so the
    session's pending cache entries are either committed or discarded.
    """

    def __init__(
        self,
        pipeline: ResponsePipeline,
        sessions: SessionRegistry,
        session: SessionData,
        *,
        markdown: bool = False,
        enable_search: bool = False,
        console: Console | None = None,
        input_func: Callable[[str], str] = input,
        confirm_func: Callable[[str], bool] | None = None,
    ) -> None:
        self._pipeline = pipeline
        self._sessions = sessions
        self._session = session
        self._markdown = markdown
        self._enable_search = enable_search
        self._console = console or Console(stderr=True)
        self._input = input_func
        self._confirm = confirm_func or (lambda prompt: Confirm.ask(prompt, default=True))
        self._decision = Decision.undecided

    @property
    def decision(self) -> Decision:
        return self._decision

    async def run(self) -> Decision:
        self._welcome()
        try:
            await self._loop()
        finally:
            await self._finish()
        return self._decision

    async def _loop(self) -> None:
        while True:
            try:
                line = await asyncio.to_thread(self._input, "? ")
            except (EOFError, KeyboardInterrupt):
                self._console.print()
                return

            question = line.strip()
            if not question:
                continue
            if question.startswith("/"):
                if self.handle_command(question.lower()):
                    return
                continue

            await self.ask(question)

    async def ask(self, question: str) -> str | None:
        try:
            with self._console.status("Thinking..."):
                answer = await self._pipeline.answer_question(
                    question, self._session, enable_search=self._enable_search
                )
        except LLMError as exc:
            self._console.print(f"[red]Error:[/red] {escape(str(exc))}")
            return None

        self._sessions.add_message(self._session, "user", question)
        self._sessions.add_message(self._session, "assistant", answer)
        self._sessions.save(self._session)
        self._render(answer)
        return answer

    def handle_command(self, command: str) -> bool:
        """Run a slash command. Returns True when the loop should stop."""
        if command in ("/help", "/h"):
            self._help()
        elif command in ("/history", "/s"):
            self._history()
        elif command in ("/info", "/i"):
            self._info()
        elif command in ("/clear", "/c"):
            self._console.clear()
            self._welcome()
        elif command == "/save":
            self._decision = Decision.keep
            return True
        elif command == "/discard":
            self._decision = Decision.discard
            return True
        elif command in ("/exit", "/bye", "/quit"):
            return True
        else:
            self._console.print(f"Unknown command: {command}. Type /help for commands.")
        return False

    async def _finish(self) -> None:
        if not self._session.id:
            self._console.print("Goodbye!")
            return

        if self._decision is Decision.undecided:
            try:
                keep = self._confirm("Keep this session and its cached results?")
            except (EOFError, KeyboardInterrupt):
                keep = False
            self._decision = Decision.keep if keep else Decision.discard

        affected = await self._sessions.finish(self._session, keep=self._decision is Decision.keep)
        if self._decision is Decision.keep:
            self._console.print(
                f"Session saved: [bold]{self._session.id}[/bold] ({affected} cached results kept)"
            )
        else:
            self._console.print(f"Session discarded ({affected} cached results removed)")
        logger.debug(
            "Interactive session %s finished decision=%s", self._session.id, self._decision
        )

    def _welcome(self) -> None:
        line = f"Ready to answer questions about: [bold]{self._session.display_title()}[/bold]"
        if self._enable_search:
            line += " [cyan](web search enabled)[/cyan]"
        self._console.print(line)
        self._console.print("[dim]Type /help for commands or /exit to quit[/dim]\n")

    def _help(self) -> None:
        table = Table(title="Available commands", show_header=False)
        table.add_column("Command", style="cyan")
        table.add_column("Description")
        for command, description in HELP_ROWS:
            table.add_row(command, description)
        self._console.print(table)
        self._console.print("[dim]Resume a saved session later with: hvsum -i <session_id>[/dim]")

    def _history(self) -> None:
        conversation = [
            m
            for m in self._session.messages[PINNED_MESSAGES:]
            if m.role in ("user", "assistant")
        ]
        if not conversation:
            self._console.print("No conversation yet.")
            return
        self._console.print("[bold]Conversation history:[/bold]")
        for message in conversation:
            label = escape(f"[{message.role.title()}]")
            self._console.print(f"  {label} {escape(_truncate(message.content))}")

    def _info(self) -> None:
        session = self._session
        if not session.id:
            self._console.print("No active session (persistence disabled)")
            return
        table = Table(show_header=False)
        table.add_column("Field", style="cyan")
        table.add_column("Value")
        table.add_row("ID", session.id)
        table.add_row("Title", session.display_title())
        if session.url:
            table.add_row("URL", session.url)
        if session.query:
            table.add_row("Query", session.query)
        table.add_row("Created", session.age_label())
        table.add_row("Messages", str(len(session.messages)))
        table.add_row("Search", "enabled" if session.search_enabled else "disabled")
        self._console.print(table)

    def _render(self, text: str) -> None:
        self._console.print()
        self._console.print(Markdown(text) if self._markdown else escape(text))
        self._console.print()
