"""Fingerprint-keyed listing store with push-state tracking."""

from __future__ import annotations

import json
import sqlite3
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Iterable, Iterator, Sequence

import structlog

from ..errors import StoreError, StoreUnavailableError
from ..infra.storage import SQLiteManager
from .fingerprint import FingerprintGenerator
from .listings import ProspleListing, SeekListing, SourceTag, parse_listing

# Stay well below SQLITE_MAX_VARIABLE_NUMBER on older builds.
_CHUNK_SIZE = 500
_LAST_RESET_KEY = "last_reset_at"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def format_timestamp(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _chunks(items: Sequence[str], size: int) -> Iterator[Sequence[str]]:
    for start in range(0, len(items), size):
        yield items[start : start + size]


def _is_unique_violation(exc: sqlite3.IntegrityError) -> bool:
    message = str(exc)
    return "UNIQUE constraint failed" in message or "PRIMARY KEY" in message


@dataclass(slots=True)
class ListingRecord:
    """Persisted listing keyed by its fingerprint."""

    id: str
    source: str
    created_at: datetime
    pushed: bool
    fields: dict[str, Any]

    @property
    def fingerprint(self) -> str:
        return self.id

    def listing(self) -> SeekListing | ProspleListing:
        return parse_listing(self.fields, self.source)

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "ListingRecord":
        return cls(
            id=row["id"],
            source=row["source"],
            created_at=datetime.fromisoformat(row["created_at"]),
            pushed=bool(row["pushed"]),
            fields=json.loads(row["fields"]),
        )


@dataclass(slots=True)
class BulkInsertResult:
    """Per-batch ingestion counters."""

    added: int = 0
    skipped: int = 0
    failed: int = 0
    errors: list[tuple[int, str]] = field(default_factory=list)

    @property
    def total(self) -> int:
        return self.added + self.skipped + self.failed


class ListingStore:
    """Durable store enforcing at most one record per fingerprint."""

    def __init__(
        self,
        manager: SQLiteManager,
        db_path: Path,
        generator: FingerprintGenerator | None = None,
    ) -> None:
        self.manager = manager
        self.db_path = Path(db_path)
        self.generator = generator or FingerprintGenerator()
        self._lock = manager.lock_for(self.db_path)
        self._conn: sqlite3.Connection | None = None
        self.logger = structlog.get_logger("jobsheet").bind(component="store")

    def init(self) -> "ListingStore":
        try:
            self._conn = self.manager.connect(self.db_path)
        except sqlite3.Error as exc:
            raise StoreError(f"Unable to open listing store {self.db_path}: {exc}") from exc
        return self

    @property
    def initialized(self) -> bool:
        return self._conn is not None

    def _require_conn(self) -> sqlite3.Connection:
        if self._conn is None:
            raise StoreUnavailableError("Listing store not initialized; call init() first")
        return self._conn

    # ------------------------------------------------------------------
    # Ingestion
    # ------------------------------------------------------------------
    def insert(
        self,
        listing: SeekListing | ProspleListing,
        source: SourceTag | str | None = None,
    ) -> bool:
        """Insert ``listing`` unless its fingerprint exists; ``True`` when added."""

        conn = self._require_conn()
        if source is not None and SourceTag(source).value != listing.source:
            raise ValueError(
                f"Source tag {SourceTag(source).value!r} does not match listing variant {listing.source!r}"
            )
        fp = self.generator.fingerprint(listing)
        payload = json.dumps(listing.to_payload(), ensure_ascii=False)
        with self._lock:
            try:
                with conn:
                    conn.execute(
                        "INSERT INTO listings(id, source, created_at, pushed, fields) VALUES (?, ?, ?, 0, ?)",
                        (fp, listing.source, format_timestamp(utcnow()), payload),
                    )
            except sqlite3.IntegrityError as exc:
                if not _is_unique_violation(exc):
                    raise StoreError(f"Insert rejected for {fp}: {exc}") from exc
                self.logger.debug("listing_duplicate", fingerprint=fp[:8], source=listing.source)
                return False
            except sqlite3.Error as exc:
                raise StoreError(f"Insert failed for {fp}: {exc}") from exc
        self.logger.info("listing_added", fingerprint=fp[:8], source=listing.source, title=listing.title)
        return True

    def bulk_insert(
        self,
        entries: Iterable[tuple[SeekListing | ProspleListing, SourceTag | str | None]],
        on_result: Callable[[int, str], None] | None = None,
    ) -> BulkInsertResult:
        """Insert each entry independently; one bad entry never aborts the batch.

        ``on_result`` receives the entry index and its outcome
        (``"added"``, ``"skipped"`` or ``"failed"``).
        """

        self._require_conn()
        result = BulkInsertResult()
        for index, (listing, source) in enumerate(entries):
            try:
                added = self.insert(listing, source)
            except (StoreError, ValueError) as exc:
                result.failed += 1
                result.errors.append((index, str(exc)))
                self.logger.warning("listing_insert_failed", index=index, error=str(exc))
                outcome = "failed"
            else:
                if added:
                    result.added += 1
                    outcome = "added"
                else:
                    result.skipped += 1
                    outcome = "skipped"
            if on_result is not None:
                on_result(index, outcome)
        return result

    # ------------------------------------------------------------------
    # Push state
    # ------------------------------------------------------------------
    def get_unpushed(self) -> list[ListingRecord]:
        return self._select("SELECT * FROM listings WHERE pushed = 0 ORDER BY created_at, id")

    def mark_pushed(self, fingerprint: str) -> bool:
        conn = self._require_conn()
        with self._lock:
            try:
                with conn:
                    row = conn.execute(
                        "SELECT pushed FROM listings WHERE id = ?", (fingerprint,)
                    ).fetchone()
                    if row is None:
                        return False
                    if not row["pushed"]:
                        conn.execute(
                            "UPDATE listings SET pushed = 1 WHERE id = ? AND pushed = 0",
                            (fingerprint,),
                        )
            except sqlite3.Error as exc:
                raise StoreError(f"Unable to mark {fingerprint} as pushed: {exc}") from exc
        return True

    def bulk_mark_pushed(self, fingerprints: Iterable[str]) -> int:
        """Mark every known fingerprint pushed; return the number of real transitions."""

        conn = self._require_conn()
        ids = list(dict.fromkeys(fingerprints))
        marked = 0
        with self._lock:
            try:
                with conn:
                    for chunk in _chunks(ids, _CHUNK_SIZE):
                        placeholders = ",".join("?" * len(chunk))
                        cursor = conn.execute(
                            f"UPDATE listings SET pushed = 1 WHERE pushed = 0 AND id IN ({placeholders})",
                            tuple(chunk),
                        )
                        marked += cursor.rowcount
            except sqlite3.Error as exc:
                raise StoreError(f"Bulk mark failed: {exc}") from exc
        return marked

    def reset_all(self, pushed: bool = False) -> int:
        """Administrative override setting every record's push flag to ``pushed``."""

        conn = self._require_conn()
        target = int(bool(pushed))
        with self._lock:
            try:
                with conn:
                    cursor = conn.execute(
                        "UPDATE listings SET pushed = ? WHERE pushed != ?", (target, target)
                    )
                    conn.execute(
                        "INSERT INTO store_meta(key, value) VALUES (?, ?) "
                        "ON CONFLICT(key) DO UPDATE SET value = excluded.value",
                        (_LAST_RESET_KEY, format_timestamp(utcnow())),
                    )
            except sqlite3.Error as exc:
                raise StoreError(f"Reset failed: {exc}") from exc
        changed = cursor.rowcount
        self.logger.warning("listings_reset", pushed=bool(pushed), changed=changed)
        return changed

    def last_reset_at(self) -> datetime | None:
        row = self._fetchone("SELECT value FROM store_meta WHERE key = ?", (_LAST_RESET_KEY,))
        if row is None or not row["value"]:
            return None
        return datetime.fromisoformat(row["value"])

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    def get_by_fingerprint(self, fingerprint: str) -> ListingRecord | None:
        row = self._fetchone("SELECT * FROM listings WHERE id = ?", (fingerprint,))
        return ListingRecord.from_row(row) if row is not None else None

    def get_all(self) -> list[ListingRecord]:
        return self._select("SELECT * FROM listings ORDER BY created_at, id")

    def count(self) -> int:
        return self._fetchone("SELECT count(*) AS n FROM listings")["n"]

    def count_unpushed(self) -> int:
        return self._fetchone("SELECT count(*) AS n FROM listings WHERE pushed = 0")["n"]

    def count_by_source(self) -> dict[str, int]:
        conn = self._require_conn()
        with self._lock:
            try:
                rows = conn.execute(
                    "SELECT source, count(*) AS n FROM listings GROUP BY source ORDER BY source"
                ).fetchall()
            except sqlite3.Error as exc:
                raise StoreError(f"Query failed: {exc}") from exc
        return {row["source"]: row["n"] for row in rows}

    def _select(self, sql: str, params: tuple = ()) -> list[ListingRecord]:
        conn = self._require_conn()
        with self._lock:
            try:
                rows = conn.execute(sql, params).fetchall()
            except sqlite3.Error as exc:
                raise StoreError(f"Query failed: {exc}") from exc
        return [ListingRecord.from_row(row) for row in rows]

    def _fetchone(self, sql: str, params: tuple = ()) -> sqlite3.Row | None:
        conn = self._require_conn()
        with self._lock:
            try:
                return conn.execute(sql, params).fetchone()
            except sqlite3.Error as exc:
                raise StoreError(f"Query failed: {exc}") from exc


__all__ = ["BulkInsertResult", "ListingRecord", "ListingStore", "format_timestamp", "utcnow"]
