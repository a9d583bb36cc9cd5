"""SQLite connection management for the listing store and export ledger."""

from __future__ import annotations

import sqlite3
from pathlib import Path
from threading import RLock
from typing import Dict

SCHEMA = """
CREATE TABLE IF NOT EXISTS listings (
    id TEXT PRIMARY KEY,
    source TEXT NOT NULL,
    created_at TEXT NOT NULL,
    pushed INTEGER NOT NULL DEFAULT 0,
    fields TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_listings_pushed ON listings(pushed);
CREATE INDEX IF NOT EXISTS idx_listings_source ON listings(source);

CREATE TABLE IF NOT EXISTS store_meta (
    key TEXT PRIMARY KEY,
    value TEXT
);

CREATE TABLE IF NOT EXISTS exports (
    id TEXT PRIMARY KEY,
    spreadsheet_id TEXT NOT NULL,
    spreadsheet_url TEXT NOT NULL,
    export_date TEXT NOT NULL,
    job_count INTEGER NOT NULL,
    fingerprints TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_exports_date ON exports(export_date);
CREATE INDEX IF NOT EXISTS idx_exports_spreadsheet ON exports(spreadsheet_id);

CREATE TABLE IF NOT EXISTS export_lease (
    id INTEGER PRIMARY KEY CHECK (id = 1),
    owner TEXT NOT NULL,
    acquired_at TEXT NOT NULL
);
"""


class SQLiteManager:
    """Manage SQLite connections with basic schema guarantees.

    One connection is shared per database path; callers serialise use of it
    through :meth:`lock_for`. Separate managers (or processes) opening the same
    file rely on SQLite's own locking and the ``busy_timeout``.
    """

    def __init__(self, busy_timeout: float = 30.0) -> None:
        self.busy_timeout = busy_timeout
        self._connections: Dict[Path, sqlite3.Connection] = {}
        self._locks: Dict[Path, RLock] = {}
        self._lock = RLock()

    def connect(self, path: Path) -> sqlite3.Connection:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with self._lock:
            if path not in self._connections:
                conn = sqlite3.connect(path, timeout=self.busy_timeout, check_same_thread=False)
                conn.row_factory = sqlite3.Row
                self._connections[path] = conn
                self._ensure_schema(conn)
            return self._connections[path]

    def lock_for(self, path: Path) -> RLock:
        path = Path(path)
        with self._lock:
            return self._locks.setdefault(path, RLock())

    def _ensure_schema(self, conn: sqlite3.Connection) -> None:
        conn.executescript(SCHEMA)
        conn.commit()

    def close_all(self) -> None:
        with self._lock:
            for conn in self._connections.values():
                conn.close()
            self._connections.clear()


__all__ = ["SCHEMA", "SQLiteManager"]
