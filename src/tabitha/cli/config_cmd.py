"""tabitha config commands.

Commands:
  tabitha config init   create ~/.tabitha/config.yaml with defaults
  tabitha config show   print the resolved configuration
"""

from __future__ import annotations

from dataclasses import asdict
from pathlib import Path
from typing import Annotated

import typer
import yaml
from rich.console import Console

from tabitha.cli.workspace import load_settings
from tabitha.config import ensure_global_config

console = Console()

config_app = typer.Typer(
    name="config",
    help="Manage Tabitha configuration (init, show).",
    add_completion=False,
)


@config_app.command("init")
def config_init_cmd(
    path: Annotated[
        Path | None,
        typer.Option("--path", hidden=True, help="Override the global config path (for testing)."),
    ] = None,
) -> None:
    """Create the global config file if it does not exist."""
    existed = path.exists() if path is not None else False
    target = ensure_global_config(path)
    if existed:
        console.print(f"[yellow]⚠[/]  {target} already exists; left unchanged.")
    else:
        console.print(f"  [green]✓[/] {target}")
    console.print("[dim]API keys belong in environment variables, e.g. export OPENAI_API_KEY=sk-...[/]")


@config_app.command("show")
def config_show_cmd() -> None:
    """Print the configuration after all layers are merged."""
    cfg = load_settings(console)
    console.print(yaml.safe_dump(asdict(cfg), sort_keys=False).rstrip())
