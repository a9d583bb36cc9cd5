"""Append-only ledger of completed export cycles."""

from __future__ import annotations

import json
import secrets
import sqlite3
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Sequence

import structlog

from ..errors import StoreError, StoreUnavailableError
from ..infra.storage import SQLiteManager

DEFAULT_URL_TEMPLATE = "https://docs.google.com/spreadsheets/d/{spreadsheet_id}"


@dataclass(frozen=True, slots=True)
class ExportRecord:
    """Immutable proof that a batch of listings reached the sink."""

    id: str
    spreadsheet_id: str
    spreadsheet_url: str
    export_date: datetime
    job_count: int
    fingerprints: tuple[str, ...]

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "ExportRecord":
        return cls(
            id=row["id"],
            spreadsheet_id=row["spreadsheet_id"],
            spreadsheet_url=row["spreadsheet_url"],
            export_date=datetime.fromisoformat(row["export_date"]),
            job_count=row["job_count"],
            fingerprints=tuple(json.loads(row["fingerprints"])),
        )


class ExportLedger:
    """Durable audit trail used for crash recovery. Records are never updated."""

    def __init__(
        self,
        manager: SQLiteManager,
        db_path: Path,
        url_template: str = DEFAULT_URL_TEMPLATE,
    ) -> None:
        self.manager = manager
        self.db_path = Path(db_path)
        self.url_template = url_template
        self._lock = manager.lock_for(self.db_path)
        self._conn: sqlite3.Connection | None = None
        self.logger = structlog.get_logger("jobsheet").bind(component="ledger")

    def init(self) -> "ExportLedger":
        try:
            self._conn = self.manager.connect(self.db_path)
        except sqlite3.Error as exc:
            raise StoreError(f"Unable to open export ledger {self.db_path}: {exc}") from exc
        return self

    def _require_conn(self) -> sqlite3.Connection:
        if self._conn is None:
            raise StoreUnavailableError("Export ledger not initialized; call init() first")
        return self._conn

    def append(
        self,
        spreadsheet_id: str,
        fingerprints: Sequence[str],
        spreadsheet_url: str | None = None,
    ) -> ExportRecord:
        conn = self._require_conn()
        now = datetime.now(timezone.utc)
        record = ExportRecord(
            id=f"export_{int(now.timestamp() * 1000)}_{secrets.token_hex(3)}",
            spreadsheet_id=spreadsheet_id,
            spreadsheet_url=spreadsheet_url
            or self.url_template.format(spreadsheet_id=spreadsheet_id),
            export_date=now,
            job_count=len(fingerprints),
            fingerprints=tuple(fingerprints),
        )
        with self._lock:
            try:
                with conn:
                    conn.execute(
                        """
                        INSERT INTO exports(id, spreadsheet_id, spreadsheet_url, export_date, job_count, fingerprints)
                        VALUES (?, ?, ?, ?, ?, ?)
                        """,
                        (
                            record.id,
                            record.spreadsheet_id,
                            record.spreadsheet_url,
                            record.export_date.isoformat(timespec="microseconds"),
                            record.job_count,
                            json.dumps(list(record.fingerprints)),
                        ),
                    )
            except sqlite3.Error as exc:
                raise StoreError(f"Unable to append export record: {exc}") from exc
        self.logger.info(
            "export_recorded",
            export_id=record.id,
            spreadsheet_id=spreadsheet_id,
            job_count=record.job_count,
        )
        return record

    def all(self) -> list[ExportRecord]:
        return self._select("SELECT * FROM exports ORDER BY export_date, id")

    def recent(self, within_days: int = 7) -> list[ExportRecord]:
        cutoff = datetime.now(timezone.utc) - timedelta(days=within_days)
        return self._select(
            "SELECT * FROM exports WHERE export_date >= ? ORDER BY export_date DESC, id DESC",
            (cutoff.isoformat(timespec="microseconds"),),
        )

    def by_id(self, spreadsheet_id: str) -> ExportRecord | None:
        records = self._select(
            "SELECT * FROM exports WHERE spreadsheet_id = ? ORDER BY export_date DESC LIMIT 1",
            (spreadsheet_id,),
        )
        return records[0] if records else None

    def get(self, export_id: str) -> ExportRecord | None:
        records = self._select("SELECT * FROM exports WHERE id = ?", (export_id,))
        return records[0] if records else None

    def latest(self) -> ExportRecord | None:
        records = self._select("SELECT * FROM exports ORDER BY export_date DESC, rowid DESC LIMIT 1")
        return records[0] if records else None

    def _select(self, sql: str, params: tuple = ()) -> list[ExportRecord]:
        conn = self._require_conn()
        with self._lock:
            try:
                rows = conn.execute(sql, params).fetchall()
            except sqlite3.Error as exc:
                raise StoreError(f"Ledger query failed: {exc}") from exc
        return [ExportRecord.from_row(row) for row in rows]


__all__ = ["DEFAULT_URL_TEMPLATE", "ExportLedger", "ExportRecord"]
