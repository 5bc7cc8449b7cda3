"""Tabitha database layer."""

from tabitha.db.connection import Database
from tabitha.db.migrations import MIGRATIONS, run_migrations
from tabitha.db.models import Card
from tabitha.db.repository import Repository
from tabitha.db.schema import initialize

__all__ = [
    "Card",
    "Database",
    "Repository",
    "initialize",
    "run_migrations",
    "MIGRATIONS",
]
