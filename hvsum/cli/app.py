"""hvsum command line: summarize a URL or a search query, then ask questions about it."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path

import typer
from rich.console import Console
from rich.markdown import Markdown
from rich.markup import escape
from rich.table import Table

from hvsum.cli.interactive import InteractiveSession
from hvsum.config import Settings, get_settings
from hvsum.logging import configure_logging
from hvsum.main import Runtime, open_runtime
from hvsum.schemas import SummaryLength
from hvsum.services.llm import LLMError
from hvsum.services.orchestrator import SearchBatchError
from hvsum.services.pipeline import SummaryResult
from hvsum.services.sessions import SessionNotFoundError
from hvsum.services.web import ContentExtractionError, is_valid_url, normalize_url

logger = logging.getLogger(__name__)

app = typer.Typer(
    name="hvsum",
    help="hvsum - summarize web pages and search results with a local or hosted model",
    add_completion=False,
)
console = Console()
err_console = Console(stderr=True)

_SECRET_FIELDS = ("serpapi_key", "deepseek_api_key")


@dataclass(slots=True)
class SummaryOptions:
    target: str
    length: SummaryLength
    markdown: bool
    search: bool
    outline: bool
    output: Path | None
    interactive: bool


def mask_secret(value: str | None) -> str:
    if not value:
        return "(not set)"
    if len(value) <= 8:
        return "****"
    return f"{value[:4]}****{value[-4:]}"


def render_text(text: str, markdown: bool) -> None:
    console.print(Markdown(text) if markdown else escape(text))


def show_config(settings: Settings) -> None:
    table = Table(title="hvsum configuration")
    table.add_column("Setting", style="cyan")
    table.add_column("Value")
    for name, value in settings.model_dump().items():
        shown = mask_secret(value) if name in _SECRET_FIELDS else str(value)
        table.add_row(name, escape(shown))
    table.add_row("config_file", str(settings.config_file))
    table.add_row("cache_dir", str(settings.cache_dir))
    table.add_row("sessions_dir", str(settings.sessions_dir))
    console.print(table)


def list_sessions(runtime: Runtime) -> None:
    sessions = runtime.sessions.recent(limit=20)
    if not sessions:
        console.print("No saved sessions.")
        return
    table = Table(title="Recent sessions")
    table.add_column("ID", style="cyan")
    table.add_column("Title")
    table.add_column("Messages", justify="right")
    table.add_column("Created")
    for session in sessions:
        table.add_row(
            session.id,
            escape(session.display_title()),
            str(len(session.messages)),
            session.age_label(),
        )
    console.print(table)
    console.print("[dim]Resume with: hvsum -i <session_id>[/dim]")


async def summarize(runtime: Runtime, options: SummaryOptions) -> SummaryResult:
    if is_valid_url(options.target):
        url = normalize_url(options.target)
        with err_console.status(f"Summarizing {url}..."):
            return await runtime.pipeline.summarize_url(
                url, options.length, markdown=options.markdown, enable_search=options.search
            )
    with err_console.status(f"Searching for {options.target!r}..."):
        return await runtime.pipeline.summarize_query(
            options.target, options.length, markdown=options.markdown
        )


def write_output(path: Path, result: SummaryResult, outline: str) -> None:
    body = result.summary
    if outline:
        body = f"{body}\n\n{outline}"
    path.write_text(body + "\n", encoding="utf-8")


async def run_summary(runtime: Runtime, options: SummaryOptions) -> None:
    try:
        result = await summarize(runtime, options)
    except (ContentExtractionError, SearchBatchError, LLMError) as exc:
        err_console.print(f"[red]Error:[/red] {escape(str(exc))}")
        raise typer.Exit(1) from exc

    if result.cached:
        err_console.print("[dim](cached result)[/dim]")
    render_text(result.summary, options.markdown)

    outline = ""
    if options.outline:
        try:
            with err_console.status("Building outline..."):
                outline = await runtime.pipeline.generate_outline(result.summary, options.markdown)
        except LLMError as exc:
            err_console.print(f"[yellow]Outline skipped:[/yellow] {escape(str(exc))}")
        else:
            console.print()
            render_text(outline, options.markdown)

    if options.output is not None:
        write_output(options.output, result, outline)
        err_console.print(f"Saved to {options.output}")

    if not options.interactive:
        return

    session = runtime.sessions.create(
        result.summary,
        result.context,
        result.title,
        search_enabled=options.search,
        url=result.source_url,
        query=result.query,
    )
    await InteractiveSession(
        runtime.pipeline,
        runtime.sessions,
        session,
        markdown=options.markdown,
        enable_search=options.search,
        console=err_console,
    ).run()


async def resume_session(runtime: Runtime, session_id: str, markdown: bool) -> None:
    try:
        session = runtime.sessions.load(session_id)
    except SessionNotFoundError as exc:
        err_console.print(f"[red]Error:[/red] {escape(str(exc))}")
        raise typer.Exit(1) from exc

    await InteractiveSession(
        runtime.pipeline,
        runtime.sessions,
        session,
        markdown=markdown,
        enable_search=session.search_enabled,
        console=err_console,
    ).run()


async def run(
    settings: Settings,
    options: SummaryOptions | None,
    *,
    clean_cache: bool = False,
    clear_sessions: bool = False,
    show_sessions: bool = False,
    resume: str | None = None,
    markdown: bool = False,
) -> None:
    async with open_runtime(settings) as runtime:
        if clean_cache:
            removed = await runtime.store.clear()
            console.print(f"Cache cleared ({removed} entries removed)")
            return
        if clear_sessions:
            removed = runtime.sessions.clear_all()
            console.print(f"All sessions cleared ({removed} removed)")
            return

        await runtime.housekeeping()

        if show_sessions:
            list_sessions(runtime)
        elif resume:
            await resume_session(runtime, resume, markdown=markdown)
        elif options is not None:
            await run_summary(runtime, options)


@app.command()
def main(
    target: str | None = typer.Argument(None, help="URL to summarize, or a search query"),
    length: SummaryLength | None = typer.Option(
        None, "--length", "-l", help="Summary length (defaults to the configured length)"
    ),
    markdown: bool = typer.Option(False, "--markdown", "-M", help="Render output as markdown"),
    search: bool = typer.Option(False, "--search", "-s", help="Enrich with web search results"),
    outline: bool = typer.Option(False, "--outline", "-o", help="Also print a structured outline"),
    output: Path | None = typer.Option(None, "--output", help="Write the summary to a file"),
    no_interactive: bool = typer.Option(
        False, "--no-interactive", help="Print the summary and exit without Q&A"
    ),
    debug: bool = typer.Option(False, "--debug", help="Enable debug logging"),
    clean_cache: bool = typer.Option(False, "--clean-cache", help="Delete every cached result"),
    show_sessions: bool = typer.Option(False, "--list-sessions", help="List recent sessions"),
    resume: str | None = typer.Option(None, "--resume", "-i", help="Resume a saved session"),
    clear_sessions: bool = typer.Option(
        False, "--clear-sessions", help="Delete every saved session"
    ),
    config: bool = typer.Option(False, "--show-config", "-c", help="Show configuration and exit"),
) -> None:
    """Summarize TARGET, then start an interactive Q&A session about it."""
    settings = get_settings()
    if debug:
        settings = settings.model_copy(update={"debug_mode": True})
    configure_logging(settings.debug_mode)

    if config:
        show_config(settings)
        return

    options = None
    if target:
        options = SummaryOptions(
            target=target,
            length=length or settings.default_length,
            markdown=markdown,
            search=search,
            outline=outline,
            output=output,
            interactive=not no_interactive,
        )
    elif not (clean_cache or clear_sessions or show_sessions or resume):
        err_console.print("[red]Error:[/red] provide a URL or search query, or see --help")
        raise typer.Exit(2)

    logger.debug("Starting hvsum target=%r length=%s", target, options.length if options else None)
    asyncio.run(
        run(
            settings,
            options,
            clean_cache=clean_cache,
            clear_sessions=clear_sessions,
            show_sessions=show_sessions,
            resume=resume,
            markdown=markdown,
        )
    )


def cli() -> None:
    """Entry point for the CLI application."""
    app()


if __name__ == "__main__":
    cli()
