"""tabitha search: show lexical Tab Index results for a query."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.table import Table

from tabitha.cli.errors import err_empty_query
from tabitha.cli.workspace import load_settings, load_tabs
from tabitha.db.connection import Database
from tabitha.db.repository import Repository
from tabitha.db.schema import initialize
from tabitha.index.scoring import confidence
from tabitha.index.tab_index import LexicalSearchResult, TabIndex

console = Console()


def search_cmd(
    query: Annotated[str, typer.Argument(help="Search text.")],
    tabs: Annotated[
        Path,
        typer.Option("--tabs", "-t", help="YAML file describing the open tabs."),
    ] = Path("tabs.yaml"),
    limit: Annotated[int, typer.Option("--limit", "-n", help="Maximum results (capped at 20).")] = 10,
) -> None:
    """Rank open tabs for QUERY with the lexical scorer."""
    if not query.strip():
        console.print(err_empty_query())
        raise typer.Exit(1)
    load_settings(console)
    browser = load_tabs(console, tabs)
    result = asyncio.run(_search(browser, query, limit))

    if not result.results:
        console.print(f"[yellow]No tabs match[/] '{query}'.")
        raise typer.Exit(0)

    table = Table(title=f"Results for '{query}'", show_header=True, header_style="bold")
    table.add_column("#", style="dim", width=3)
    table.add_column("Score", justify="right")
    table.add_column("Conf.", justify="right")
    table.add_column("Title")
    table.add_column("Domain", style="cyan")
    table.add_column("Card", style="dim")
    for i, hit in enumerate(result.results, start=1):
        table.add_row(
            str(i),
            str(hit.score),
            f"{confidence(hit.score):.2f}",
            hit.card.title or hit.card.url,
            hit.card.domain,
            hit.card.card_id,
        )
    console.print(table)
    console.print(f"[dim]Tokens: {', '.join(result.tokens) or '(none)'}[/]")


async def _search(browser, query: str, limit: int) -> LexicalSearchResult:
    with Database(":memory:") as conn:
        initialize(conn)
        index = TabIndex(browser, Repository(conn))
        await index.init(start_timer=False)
        try:
            return index.lexical_search(query, limit)
        finally:
            await index.close()
