"""tabitha status: configuration, persisted index and telemetry counters."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from tabitha.cli.errors import err_no_db
from tabitha.cli.workspace import load_settings
from tabitha.config import TabithaConfig
from tabitha.db.connection import Database
from tabitha.db.repository import Repository
from tabitha.db.schema import initialize

console = Console()


def status_cmd(
    db: Annotated[
        Path | None,
        typer.Option("--db", help="Index database (default: config index.db_path)."),
    ] = None,
) -> None:
    """Show configuration, indexed cards and telemetry counters."""
    cfg = load_settings(console, db)
    db_path = Path(cfg.index.db_path)

    # ---- Panel 1: Configuration ----
    _show_config_panel(cfg, db_path)

    # ---- Panel 2 + 3: Index and telemetry ----
    if not db_path.exists():
        console.print(Panel(err_no_db(str(db_path)), title="[bold]Index[/]", expand=False))
        return
    with Database(db_path) as conn:
        initialize(conn)
        repo = Repository(conn)
        _show_index_panel(repo)
        _show_telemetry_panel(repo)


# ---------------------------------------------------------------------------
# Panel renderers
# ---------------------------------------------------------------------------


def _show_config_panel(cfg: TabithaConfig, db_path: Path) -> None:
    db_info = f"{db_path}"
    if db_path.exists():
        size_kb = db_path.stat().st_size / 1024
        db_info = f"{db_path} ({size_kb:.0f} KB)"
    rerank = "[green]on[/]" if cfg.pipeline.semantic_rerank else "[yellow]off[/]"
    lines = [
        f"Model:      [bold]{cfg.model.name}[/] (timeout {cfg.model.timeout_s:.0f}s)",
        f"Database:   {db_info}",
        f"Rerank:     {rerank} (top {cfg.pipeline.rerank_top_n})",
        f"Telemetry:  {'on' if cfg.telemetry.enabled else 'off'} (sample {cfg.telemetry.sample_rate:.0%})",
    ]
    console.print(Panel("\n".join(lines), title="[bold]Configuration[/]", expand=False))


def _show_index_panel(repo: Repository) -> None:
    counts = repo.count_by_source()
    if not counts:
        console.print(Panel("[dim]No cards indexed yet.[/]", title="[bold]Index[/]", expand=False))
        return
    table = Table(show_header=False, box=None, padding=(0, 1))
    table.add_column("Source", style="bold")
    table.add_column("Cards", justify="right")
    for source, count in sorted(counts.items()):
        table.add_row(source, f"{count:,}")
    total = sum(counts.values())
    console.print(Panel(table, title=f"[bold]Index[/] [dim]({total} cards)[/]", expand=False))


def _show_telemetry_panel(repo: Repository) -> None:
    counts = repo.telemetry_counts()
    if not counts:
        console.print(Panel("[dim]No telemetry samples yet.[/]", title="[bold]Telemetry[/]", expand=False))
        return
    table = Table(show_header=True, header_style="bold", box=None, padding=(0, 1))
    table.add_column("Category")
    table.add_column("Event")
    table.add_column("OK", justify="right", style="green")
    table.add_column("Failed", justify="right", style="red")
    table.add_column("Total", justify="right")
    for category in sorted(counts):
        for name, c in sorted(counts[category].items()):
            table.add_row(
                category, name, str(c.get("success", 0)), str(c.get("failed", 0)), str(c.get("total", 0))
            )
    console.print(Panel(table, title="[bold]Telemetry[/] [dim](sampled)[/]", expand=False))
