"""tabitha ask: run one or more utterances through the full pipeline.

The browser is simulated from a YAML tabs file, so every action (open,
close, mute, save...) is applied to that in-memory session and reported.
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.table import Table

from tabitha.boundary.app import TabithaApp
from tabitha.boundary.assistant import Reply
from tabitha.cli.workspace import load_settings, load_tabs, warn_if_offline

console = Console()

_DEFAULT_TABS = Path("tabs.yaml")

_KIND_STYLE = {
    "action": "green",
    "answer": "green",
    "list": "cyan",
    "preview": "yellow",
    "disambiguation": "cyan",
    "clarify": "cyan",
    "cancelled": "dim",
    "error": "red",
}


def ask_cmd(
    utterance: Annotated[str, typer.Argument(help='What to do, e.g. "open my cover letter doc".')],
    tabs: Annotated[
        Path,
        typer.Option("--tabs", "-t", help="YAML file describing the open tabs."),
    ] = _DEFAULT_TABS,
    then: Annotated[
        list[str] | None,
        typer.Option("--then", help="Follow-up message sent after the reply (repeatable)."),
    ] = None,
    voice: Annotated[bool, typer.Option("--voice", help="Format lists for speech.")] = False,
    db: Annotated[
        Path | None,
        typer.Option("--db", help="Index database (default: config index.db_path)."),
    ] = None,
    session: Annotated[str, typer.Option("--session", hidden=True)] = "cli",
) -> None:
    """Send an utterance (plus optional follow-ups) to Tabitha."""
    cfg = load_settings(console, db)
    browser = load_tabs(console, tabs)
    warn_if_offline(console, cfg)
    messages = [utterance, *(then or [])]
    replies = asyncio.run(_converse(cfg, browser, messages, session, voice))
    failed = False
    for message, reply in zip(messages, replies):
        _print_reply(message, reply)
        failed = not reply.ok and reply.kind == "error"
    if failed:
        raise typer.Exit(1)


async def _converse(cfg, browser, messages: list[str], session: str, voice: bool) -> list[Reply]:
    app = TabithaApp(cfg, browser)
    await app.start(start_timer=False)
    try:
        replies = []
        for message in messages:
            replies.append(
                await app.assistant.handle_utterance(
                    message,
                    session,
                    voice=voice,
                    on_thinking=lambda hint: console.print(f"  [dim]{hint}[/]"),
                )
            )
        return replies
    finally:
        await app.close()


def _print_reply(message: str, reply: Reply) -> None:
    style = _KIND_STYLE.get(reply.kind, "white")
    console.print(f"\n[bold]You:[/] {message}")
    console.print(f"[bold {style}]Tabitha:[/] {reply.text or reply.error or ''}")
    if reply.fallback:
        console.print("  [dim](offline router)[/]")

    if reply.kind in ("disambiguation", "clarify") and reply.candidates:
        table = Table(show_header=True, header_style="bold", box=None, padding=(0, 1))
        table.add_column("#", style="dim", width=3)
        table.add_column("Title")
        table.add_column("Domain", style="cyan")
        table.add_column("Score", justify="right")
        for i, cand in enumerate(reply.candidates, start=1):
            table.add_row(str(i), cand.card.title or cand.card.url, cand.card.domain, f"{cand.score:.2f}")
        console.print(table)
    elif reply.kind == "preview" and reply.result:
        for tab in reply.result.get("tabs") or []:
            pin = " [yellow](pinned)[/]" if tab.get("pinned") else ""
            console.print(f"  [dim]-[/] {tab.get('title')} [dim]{tab.get('domain')}[/]{pin}")
