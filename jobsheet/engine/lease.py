"""Single-flight lease for export cycles, stored next to the ledger."""

from __future__ import annotations

import os
import socket
import sqlite3
import time
import uuid
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Iterator

import structlog

from ..errors import ExportBusyError, StoreError
from ..infra.storage import SQLiteManager


def default_owner() -> str:
    return f"{socket.gethostname()}:{os.getpid()}:{uuid.uuid4().hex[:8]}"


class ExportLease:
    """Row-level lease granting one export cycle at a time.

    Acquisition is a conditional ``INSERT`` on a single-row table, so the
    database decides the winner across threads and processes alike. Leases
    older than ``ttl_seconds`` belong to crashed holders and are reclaimed.
    """

    def __init__(
        self,
        manager: SQLiteManager,
        db_path: Path,
        ttl_seconds: float = 3600.0,
        poll_interval: float = 0.5,
    ) -> None:
        self.manager = manager
        self.db_path = Path(db_path)
        self.ttl_seconds = ttl_seconds
        self.poll_interval = poll_interval
        self._lock = manager.lock_for(self.db_path)
        self.logger = structlog.get_logger("jobsheet").bind(component="lease")

    def try_acquire(self, owner: str) -> bool:
        conn = self.manager.connect(self.db_path)
        now = datetime.now(timezone.utc)
        stale_before = now - timedelta(seconds=self.ttl_seconds)
        with self._lock:
            try:
                with conn:
                    reclaimed = conn.execute(
                        "DELETE FROM export_lease WHERE id = 1 AND acquired_at < ?",
                        (stale_before.isoformat(timespec="microseconds"),),
                    ).rowcount
                    conn.execute(
                        "INSERT INTO export_lease(id, owner, acquired_at) VALUES (1, ?, ?)",
                        (owner, now.isoformat(timespec="microseconds")),
                    )
            except sqlite3.IntegrityError:
                return False
            except sqlite3.Error as exc:
                raise StoreError(f"Unable to acquire export lease: {exc}") from exc
        if reclaimed:
            self.logger.warning("stale_lease_reclaimed", owner=owner)
        return True

    def release(self, owner: str) -> None:
        conn = self.manager.connect(self.db_path)
        with self._lock:
            try:
                with conn:
                    conn.execute("DELETE FROM export_lease WHERE id = 1 AND owner = ?", (owner,))
            except sqlite3.Error as exc:
                raise StoreError(f"Unable to release export lease: {exc}") from exc

    def holder(self) -> str | None:
        conn = self.manager.connect(self.db_path)
        with self._lock:
            row = conn.execute("SELECT owner FROM export_lease WHERE id = 1").fetchone()
        return row["owner"] if row else None

    @contextmanager
    def hold(self, owner: str | None = None, wait: float | None = None) -> Iterator[str]:
        """Hold the lease for the block; raise ``ExportBusyError`` when taken.

        With ``wait`` set, poll for up to that many seconds before giving up.
        """

        owner = owner or default_owner()
        deadline = time.monotonic() + wait if wait else None
        while not self.try_acquire(owner):
            if deadline is None or time.monotonic() >= deadline:
                raise ExportBusyError(self.holder())
            time.sleep(self.poll_interval)
        try:
            yield owner
        finally:
            self.release(owner)


__all__ = ["ExportLease", "default_owner"]
