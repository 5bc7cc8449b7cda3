"""Shared setup for commands that run the pipeline against a tabs file."""

from __future__ import annotations

from pathlib import Path

import typer
import yaml
from rich.console import Console

from tabitha.browser.memory import InMemoryBrowser
from tabitha.cli.errors import err_bad_tabs_file, err_config, err_no_api_key, err_no_tabs_file
from tabitha.config import ConfigError, TabithaConfig, load_config
from tabitha.lm.client import validate_api_key


def load_settings(console: Console, db: Path | None = None) -> TabithaConfig:
    """Resolve config; ``--db`` wins over every config layer."""
    try:
        cfg = load_config()
    except ConfigError as exc:
        console.print(err_config(str(exc)))
        raise typer.Exit(1)
    if db is not None:
        cfg.index.db_path = str(db)
    return cfg


def load_tabs(console: Console, path: Path) -> InMemoryBrowser:
    """Seed an in-memory browser from a YAML tabs file."""
    if not path.exists():
        console.print(err_no_tabs_file(str(path)))
        raise typer.Exit(1)
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:
        console.print(err_bad_tabs_file(str(path), str(exc)))
        raise typer.Exit(1)
    if not isinstance(data, dict):
        console.print(err_bad_tabs_file(str(path), "top level must be a mapping"))
        raise typer.Exit(1)
    try:
        return InMemoryBrowser.from_dict(data)
    except (KeyError, TypeError, ValueError) as exc:
        console.print(err_bad_tabs_file(str(path), f"{type(exc).__name__}: {exc}"))
        raise typer.Exit(1)


def warn_if_offline(console: Console, cfg: TabithaConfig) -> None:
    try:
        validate_api_key(cfg.model.name)
    except EnvironmentError:
        provider = cfg.model.name.split("/")[0] if "/" in cfg.model.name else "openai"
        console.print(err_no_api_key(provider))
