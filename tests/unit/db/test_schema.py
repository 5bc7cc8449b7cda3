"""Tests for schema initialization."""

from __future__ import annotations

from tabitha.db.schema import CURRENT_VERSION, initialize


def _indexes(conn) -> set[str]:
    rows = conn.execute("SELECT name FROM sqlite_master WHERE type='index'").fetchall()
    return {r[0] for r in rows}


def test_initialize_reaches_current_version(tmp_db):
    version = tmp_db.execute("SELECT MAX(version) FROM schema_version").fetchone()[0]
    assert version == CURRENT_VERSION


def test_initialize_twice_is_noop(tmp_db):
    initialize(tmp_db)
    count = tmp_db.execute("SELECT COUNT(*) FROM schema_version").fetchone()[0]
    assert count == CURRENT_VERSION


def test_card_lookup_indexes_present(tmp_db):
    names = _indexes(tmp_db)
    for idx in ("idx_cards_domain", "idx_cards_type", "idx_cards_source", "idx_cards_url"):
        assert idx in names


def test_cards_columns(tmp_db):
    cols = {r["name"] for r in tmp_db.execute("PRAGMA table_info(cards)").fetchall()}
    assert {"card_id", "tab_id", "window_id", "domain", "is_pinned", "group_name"} <= cols
