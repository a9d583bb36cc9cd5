from __future__ import annotations

import sqlite3

import pytest

from jobsheet.infra import SQLiteManager


def _tables(conn) -> set[str]:
    rows = conn.execute("SELECT name FROM sqlite_master WHERE type = 'table'").fetchall()
    return {row["name"] for row in rows}


def test_sqlite_manager_initialises_schema(tmp_path) -> None:
    manager = SQLiteManager()
    conn = manager.connect(tmp_path / "nested" / "listings.db")
    assert {"listings", "store_meta", "exports", "export_lease"}.issubset(_tables(conn))
    columns = {row["name"] for row in conn.execute("PRAGMA table_info(listings)").fetchall()}
    assert columns == {"id", "source", "created_at", "pushed", "fields"}
    manager.close_all()


def test_sqlite_manager_caches_connections_and_locks(tmp_path) -> None:
    manager = SQLiteManager()
    path = tmp_path / "exports.db"
    assert manager.connect(path) is manager.connect(path)
    assert manager.lock_for(path) is manager.lock_for(path)
    assert manager.lock_for(path) is not manager.lock_for(tmp_path / "other.db")
    manager.close_all()
    assert manager.connect(path) is not None
    manager.close_all()


def test_lease_row_is_singleton(tmp_path) -> None:
    manager = SQLiteManager()
    conn = manager.connect(tmp_path / "exports.db")
    with conn:
        conn.execute("INSERT INTO export_lease(id, owner, acquired_at) VALUES (1, 'a', 'now')")
    with pytest.raises(sqlite3.IntegrityError, match="CHECK"):
        with conn:
            conn.execute("INSERT INTO export_lease(id, owner, acquired_at) VALUES (2, 'b', 'now')")
    manager.close_all()
