"""Repository pattern for all Tabitha database operations.

Single interface for: cards, key-value slots (intent cache, domain rules,
user hints), and sampled telemetry counters.
"""

from __future__ import annotations

import json
import sqlite3
from typing import Any, Iterable

from tabitha.db.models import Card

_CARD_COLUMNS = (
    "card_id, source, source_id, tab_id, window_id, title, url, domain, type, "
    "is_pinned, group_name, last_visited_at, updated_at"
)


class Repository:
    """Data access layer for all Tabitha database entities.

    Wraps an open sqlite3.Connection. The connection is owned by the caller
    and must be closed after use.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        """Initialise with an open database connection.

        Args:
            conn: An open sqlite3.Connection with the schema initialised
                (see tabitha.db.schema.initialize).
        """
        self._conn = conn

    # ------------------------------------------------------------------
    # Cards
    # ------------------------------------------------------------------

    def upsert_cards(self, cards: Iterable[Card]) -> int:
        """Insert or update *cards* in one transaction. Returns rows written."""
        rows = [
            (
                c.card_id,
                c.source,
                c.source_id,
                c.tab_id,
                c.window_id,
                c.title,
                c.url,
                c.domain,
                c.type,
                int(c.is_pinned),
                c.group_name,
                c.last_visited_at,
                c.updated_at,
            )
            for c in cards
        ]
        if not rows:
            return 0
        self._conn.executemany(
            f"""
            INSERT INTO cards ({_CARD_COLUMNS})
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(card_id) DO UPDATE SET
                source = excluded.source,
                source_id = excluded.source_id,
                tab_id = excluded.tab_id,
                window_id = excluded.window_id,
                title = excluded.title,
                url = excluded.url,
                domain = excluded.domain,
                type = excluded.type,
                is_pinned = excluded.is_pinned,
                group_name = excluded.group_name,
                last_visited_at = excluded.last_visited_at,
                updated_at = excluded.updated_at
            """,
            rows,
        )
        self._conn.commit()
        return len(rows)

    def get_card(self, card_id: str) -> Card | None:
        """Return a card by ID, or None if not found."""
        row = self._conn.execute(
            f"SELECT {_CARD_COLUMNS} FROM cards WHERE card_id = ?", (card_id,)
        ).fetchone()
        return _row_to_card(row) if row else None

    def list_cards(self, source: str | None = None) -> list[Card]:
        """Return all cards (optionally of one *source*), most recently visited first."""
        if source is None:
            rows = self._conn.execute(
                f"SELECT {_CARD_COLUMNS} FROM cards ORDER BY last_visited_at DESC"
            ).fetchall()
        else:
            rows = self._conn.execute(
                f"SELECT {_CARD_COLUMNS} FROM cards WHERE source = ? "
                "ORDER BY last_visited_at DESC",
                (source,),
            ).fetchall()
        return [_row_to_card(r) for r in rows]

    def delete_card(self, card_id: str) -> None:
        """Delete a card by ID. Missing IDs are ignored."""
        self._conn.execute("DELETE FROM cards WHERE card_id = ?", (card_id,))
        self._conn.commit()

    def delete_cards_not_in(self, keep_ids: Iterable[str]) -> list[str]:
        """Delete every card whose ID is not in *keep_ids*. Returns deleted IDs."""
        keep = set(keep_ids)
        existing = [
            r[0] for r in self._conn.execute("SELECT card_id FROM cards").fetchall()
        ]
        stale = [cid for cid in existing if cid not in keep]
        if stale:
            self._conn.executemany(
                "DELETE FROM cards WHERE card_id = ?", [(cid,) for cid in stale]
            )
            self._conn.commit()
        return stale

    def count_by_source(self) -> dict[str, int]:
        """Return ``{source: count}`` for all stored cards."""
        rows = self._conn.execute(
            "SELECT source, COUNT(*) AS n FROM cards GROUP BY source"
        ).fetchall()
        return {r["source"]: r["n"] for r in rows}

    # ------------------------------------------------------------------
    # Key-value slots
    # ------------------------------------------------------------------

    def get_kv(self, key: str, default: Any = None) -> Any:
        """Return the JSON-decoded value stored under *key*, or *default*."""
        row = self._conn.execute("SELECT value FROM kv WHERE key = ?", (key,)).fetchone()
        if row is None:
            return default
        return json.loads(row["value"])

    def set_kv(self, key: str, value: Any) -> None:
        """Store *value* (JSON-encodable) under *key*, replacing any previous value."""
        self._conn.execute(
            """
            INSERT INTO kv (key, value) VALUES (?, ?)
            ON CONFLICT(key) DO UPDATE SET
                value = excluded.value,
                updated_at = datetime('now')
            """,
            (key, json.dumps(value)),
        )
        self._conn.commit()

    def delete_kv(self, key: str) -> None:
        self._conn.execute("DELETE FROM kv WHERE key = ?", (key,))
        self._conn.commit()

    # ------------------------------------------------------------------
    # Telemetry
    # ------------------------------------------------------------------

    def record_telemetry(self, category: str, name: str, success: bool | None) -> None:
        """Increment the persisted counter for (*category*, *name*)."""
        ok = 1 if success is True else 0
        failed = 1 if success is False else 0
        self._conn.execute(
            """
            INSERT INTO telemetry (category, name, success, failed, total)
            VALUES (?, ?, ?, ?, 1)
            ON CONFLICT(category, name) DO UPDATE SET
                success = success + excluded.success,
                failed = failed + excluded.failed,
                total = total + 1
            """,
            (category, name, ok, failed),
        )
        self._conn.commit()

    def telemetry_counts(self) -> dict[str, dict[str, dict[str, int]]]:
        """Return ``{category: {name: {success, failed, total}}}``."""
        out: dict[str, dict[str, dict[str, int]]] = {}
        for row in self._conn.execute(
            "SELECT category, name, success, failed, total FROM telemetry "
            "ORDER BY category, name"
        ).fetchall():
            out.setdefault(row["category"], {})[row["name"]] = {
                "success": row["success"],
                "failed": row["failed"],
                "total": row["total"],
            }
        return out


# ------------------------------------------------------------------
# Row converters
# ------------------------------------------------------------------


def _row_to_card(row: sqlite3.Row) -> Card:
    return Card(
        card_id=row["card_id"],
        source=row["source"],
        source_id=row["source_id"],
        tab_id=row["tab_id"],
        window_id=row["window_id"],
        title=row["title"],
        url=row["url"],
        domain=row["domain"],
        type=row["type"],
        is_pinned=bool(row["is_pinned"]),
        group_name=row["group_name"],
        last_visited_at=row["last_visited_at"],
        updated_at=row["updated_at"],
    )
