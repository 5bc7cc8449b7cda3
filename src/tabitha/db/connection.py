"""SQLite connection layer for the card store."""

from __future__ import annotations

import sqlite3
from pathlib import Path

_MEMORY = ":memory:"

# The Tab Index batches its writes, so a file store trades per-commit fsync
# for WAL checkpoints.
_FILE_PRAGMAS: tuple[str, ...] = (
    "PRAGMA journal_mode = WAL",
    "PRAGMA synchronous = NORMAL",
)


class Database:
    """Per-profile SQLite database holding cards, key-value slots and telemetry.

    Args:
        db_path: File path (created if missing), or ``":memory:"`` for a
            throwaway store used by one-shot CLI commands and tests.
    """

    def __init__(self, db_path: Path | str) -> None:
        self.db_path = db_path if str(db_path) == _MEMORY else Path(db_path)
        self._conn: sqlite3.Connection | None = None

    @property
    def in_memory(self) -> bool:
        return self.db_path == _MEMORY

    def connect(self) -> sqlite3.Connection:
        """Open a connection with ``sqlite3.Row`` rows; file stores run in WAL mode."""
        conn = sqlite3.connect(str(self.db_path))
        conn.row_factory = sqlite3.Row
        if not self.in_memory:
            for pragma in _FILE_PRAGMAS:
                conn.execute(pragma)
        return conn

    def __enter__(self) -> sqlite3.Connection:
        self._conn = self.connect()
        return self._conn

    def __exit__(self, *args: object) -> None:
        if self._conn:
            self._conn.close()
            self._conn = None
