"""Tests for the Database connection layer."""

from __future__ import annotations

from pathlib import Path

import pytest

from tabitha.db.connection import Database


def test_connect_creates_file(tmp_path):
    db_path = tmp_path / ".tabitha.db"
    db = Database(db_path)
    conn = db.connect()
    conn.close()
    assert db_path.exists()


def test_synchronous_normal(tmp_path):
    db = Database(tmp_path / ".tabitha.db")
    conn = db.connect()
    result = conn.execute("PRAGMA synchronous").fetchone()[0]
    conn.close()
    assert result == 1


def test_wal_journal_mode(tmp_path):
    db = Database(tmp_path / ".tabitha.db")
    conn = db.connect()
    mode = conn.execute("PRAGMA journal_mode").fetchone()[0]
    conn.close()
    assert mode == "wal"


def test_row_factory_set(tmp_path):
    db = Database(tmp_path / ".tabitha.db")
    conn = db.connect()
    conn.execute("CREATE TABLE t (x INTEGER)")
    conn.execute("INSERT INTO t VALUES (42)")
    row = conn.execute("SELECT x FROM t").fetchone()
    conn.close()
    assert row["x"] == 42


def test_memory_database_keeps_sentinel_path():
    db = Database(":memory:")
    assert db.db_path == ":memory:"
    assert db.in_memory is True
    with db as conn:
        assert conn.execute("SELECT 1").fetchone()[0] == 1


def test_context_manager_closes_connection(tmp_path):
    db = Database(tmp_path / ".tabitha.db")
    with db as conn:
        conn.execute("CREATE TABLE t (x INTEGER)")
    with pytest.raises(Exception):
        conn.execute("SELECT 1")


def test_context_manager_accepts_path_str(tmp_path):
    db = Database(str(tmp_path / ".tabitha.db"))
    assert isinstance(db.db_path, Path)
    with db as conn:
        result = conn.execute("SELECT 1").fetchone()[0]
    assert result == 1
