"""Export lifecycle: snapshot unpushed listings, sink, ledger, mark, recover."""

from __future__ import annotations

from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Sequence

import structlog

from ..errors import SinkError, StoreError
from .ledger import ExportLedger, ExportRecord
from .lease import ExportLease
from .sink import HEADER, BaseSink, listing_row
from .store import ListingStore
from .thread_pool import ThreadPoolManager

DEFAULT_TITLE_TEMPLATE = "Job Listings - {date}"


class ExportState(str, Enum):
    IDLE = "idle"
    SNAPSHOTTING = "snapshotting"
    SINKING = "sinking"
    LEDGERING = "ledgering"
    MARKING = "marking"
    FAILED = "failed"


class ExportStatus(str, Enum):
    NOOP = "noop"
    EXPORTED = "exported"
    FAILED = "failed"


@dataclass(slots=True)
class ExportResult:
    """Outcome of one export cycle."""

    status: ExportStatus
    exported: int = 0
    marked: int = 0
    spreadsheet_id: str | None = None
    spreadsheet_url: str | None = None
    export_id: str | None = None
    reset: int = 0
    recovered: int = 0
    needs_recovery: bool = False
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.status is not ExportStatus.FAILED


@dataclass(slots=True)
class RecoveryResult:
    """Outcome of reconciling the latest ledger entry with the store."""

    export_id: str | None
    checked: int = 0
    repaired: int = 0
    missing: int = 0
    skipped_reason: str | None = None


class ExportCoordinator:
    """Run export cycles one at a time.

    The ledger entry is written after the sink succeeds and before any push
    flag changes; marking then reads fingerprints back from that entry so
    :meth:`recover` can finish an interrupted cycle without calling the sink.
    """

    def __init__(
        self,
        store: ListingStore,
        ledger: ExportLedger,
        sink: BaseSink | None,
        lease: ExportLease,
        thread_pool: ThreadPoolManager | None = None,
        sink_timeout: float | None = 120.0,
        title_template: str = DEFAULT_TITLE_TEMPLATE,
    ) -> None:
        self.store = store
        self.ledger = ledger
        self.sink = sink
        self.lease = lease
        self.thread_pool = thread_pool or ThreadPoolManager(default_workers=1)
        self.sink_timeout = sink_timeout
        self.title_template = title_template
        self.state = ExportState.IDLE
        self.history: list[ExportState] = []
        self.logger = structlog.get_logger("jobsheet").bind(component="coordinator")

    def _transition(self, state: ExportState) -> None:
        self.logger.debug("export_state", previous=self.state.value, state=state.value)
        self.state = state
        self.history.append(state)

    def default_title(self) -> str:
        return self.title_template.format(date=datetime.now(timezone.utc).date().isoformat())

    # ------------------------------------------------------------------
    # Export cycle
    # ------------------------------------------------------------------
    def run(
        self,
        target_sheet_id: str | None = None,
        title: str | None = None,
        reset: bool = False,
        wait: float | None = None,
    ) -> ExportResult:
        """Export every unpushed listing.

        ``target_sheet_id`` appends to an existing sheet instead of creating
        one. ``reset`` exports the whole store again, already pushed listings
        included; push flags only change once the sink has succeeded. Any
        unmarked fingerprints of the latest ledger entry are repaired before
        the snapshot is taken. Raises ``ExportBusyError`` when another cycle
        holds the lease past ``wait`` seconds.
        """

        with self.lease.hold(wait=wait):
            self.history = []
            recovered = self._recover()
            result = self._run_cycle(target_sheet_id, title or self.default_title(), everything=reset)
            result.recovered = recovered.repaired
            return result

    def _run_cycle(self, target_sheet_id: str | None, title: str, everything: bool = False) -> ExportResult:
        self._transition(ExportState.SNAPSHOTTING)
        snapshot = self.store.get_all() if everything else self.store.get_unpushed()
        if not snapshot:
            self._transition(ExportState.IDLE)
            self.logger.info("export_noop")
            return ExportResult(status=ExportStatus.NOOP)

        fingerprints = [record.id for record in snapshot]
        unpushed = sum(1 for record in snapshot if not record.pushed)
        self._transition(ExportState.SINKING)
        try:
            rows = [listing_row(record) for record in snapshot]
            sheet_id = self.thread_pool.call(
                lambda: self._publish(rows, target_sheet_id, title),
                timeout=self.sink_timeout,
                name="sink",
            )
        except FutureTimeoutError:
            return self._fail(f"Sink call timed out after {self.sink_timeout}s", len(snapshot))
        except Exception as exc:  # noqa: BLE001 - any sink error aborts the cycle untouched
            return self._fail(str(exc) or exc.__class__.__name__, len(snapshot))

        self._transition(ExportState.LEDGERING)
        try:
            record = self.ledger.append(
                sheet_id,
                fingerprints,
                spreadsheet_url=self.sink.sheet_url(sheet_id),
            )
        except Exception:
            self._transition(ExportState.FAILED)
            self.logger.error("export_ledger_failed", spreadsheet_id=sheet_id, jobs=len(fingerprints))
            raise

        result = ExportResult(
            status=ExportStatus.EXPORTED,
            exported=record.job_count,
            spreadsheet_id=record.spreadsheet_id,
            spreadsheet_url=record.spreadsheet_url,
            export_id=record.id,
            reset=len(snapshot) - unpushed,
        )
        self._transition(ExportState.MARKING)
        try:
            result.marked = self._mark(record, expected=unpushed)
        except StoreError as exc:
            # The ledger entry is committed; the next run or recover() marks these.
            self._transition(ExportState.IDLE)
            self.logger.warning(
                "reconciliation_gap",
                export_id=record.id,
                unmarked=unpushed,
                error=str(exc),
            )
            result.needs_recovery = True
            result.error = str(exc)
            return result

        self._transition(ExportState.IDLE)
        self.logger.info(
            "export_completed",
            export_id=record.id,
            spreadsheet_id=sheet_id,
            exported=record.job_count,
            marked=result.marked,
        )
        return result

    def _publish(self, rows: Sequence[Sequence[str]], target_sheet_id: str | None, title: str) -> str:
        if self.sink is None:
            raise SinkError("No sink configured for export")
        if target_sheet_id:
            self.sink.append_rows(target_sheet_id, rows)
            return target_sheet_id
        sheet_id = self.sink.create_sheet(title)
        self.sink.write_rows(sheet_id, [HEADER, *rows])
        return sheet_id

    def _mark(self, record: ExportRecord, expected: int) -> int:
        marked = self.store.bulk_mark_pushed(record.fingerprints)
        if marked != expected:
            self.logger.warning(
                "export_mark_mismatch",
                export_id=record.id,
                expected=expected,
                marked=marked,
            )
        return marked

    def _fail(self, message: str, pending: int) -> ExportResult:
        self._transition(ExportState.FAILED)
        self.logger.error("export_sink_failed", error=message, pending=pending)
        return ExportResult(status=ExportStatus.FAILED, error=message)

    # ------------------------------------------------------------------
    # Recovery
    # ------------------------------------------------------------------
    def recover(self, wait: float | None = None) -> RecoveryResult:
        """Re-apply push flags for the latest ledger entry."""

        with self.lease.hold(wait=wait):
            return self._recover()

    def _recover(self) -> RecoveryResult:
        latest = self.ledger.latest()
        if latest is None:
            return RecoveryResult(export_id=None)

        last_reset = self.store.last_reset_at()
        if last_reset is not None and last_reset > latest.export_date:
            # An administrative reset after this export must not be undone.
            self.logger.info("recovery_skipped_after_reset", export_id=latest.id)
            return RecoveryResult(export_id=latest.id, skipped_reason="reset")

        pending: list[str] = []
        missing = 0
        for fp in latest.fingerprints:
            record = self.store.get_by_fingerprint(fp)
            if record is None:
                missing += 1
            elif not record.pushed:
                pending.append(fp)

        repaired = 0
        if pending:
            self.logger.warning(
                "reconciliation_gap",
                export_id=latest.id,
                unmarked=len(pending),
            )
            repaired = self.store.bulk_mark_pushed(pending)
        if missing:
            self.logger.warning("ledger_references_unknown_listings", export_id=latest.id, missing=missing)
        return RecoveryResult(
            export_id=latest.id,
            checked=len(latest.fingerprints),
            repaired=repaired,
            missing=missing,
        )


__all__ = [
    "DEFAULT_TITLE_TEMPLATE",
    "ExportCoordinator",
    "ExportResult",
    "ExportState",
    "ExportStatus",
    "RecoveryResult",
]
