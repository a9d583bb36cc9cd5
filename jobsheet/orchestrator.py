"""Pipeline wiring together config, listing store, sinks, export coordinator and scheduling."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Sequence

from pydantic import ValidationError

from .config import AppConfig, ConfigRepository
from .engine import (
    BulkInsertResult,
    ExportCoordinator,
    ExportLease,
    ExportLedger,
    ExportResult,
    FingerprintGenerator,
    ListingStore,
    RecoveryResult,
    SourceTag,
    ThreadPoolManager,
    parse_listing,
)
from .engine.listings import ProspleListing, SeekListing
from .engine.sink import BaseSink, CsvSink, GoogleSheetsSink
from .errors import SinkError
from .infra import SQLiteManager
from .logging_conf import configure_logging, source_logger
from .ui import ProgressReporter

Listing = SeekListing | ProspleListing


def load_listings(path: Path) -> list[dict[str, Any]]:
    """Read crawler output: a JSON array, a JSON object with ``jobs``, or JSON Lines."""

    path = Path(path)
    text = path.read_text(encoding="utf-8")
    if path.suffix == ".jsonl":
        payloads = [json.loads(line) for line in text.splitlines() if line.strip()]
    else:
        data = json.loads(text)
        if isinstance(data, dict):
            data = data.get("jobs", [])
        if not isinstance(data, list):
            raise ValueError(f"Expected a list of listings in {path}")
        payloads = data
    for index, payload in enumerate(payloads):
        if not isinstance(payload, dict):
            raise ValueError(f"Listing #{index} in {path} is not an object")
    return payloads


class Pipeline:
    """Central coordinator owning the store, ledger and export lifecycle."""

    def __init__(
        self,
        config_repository: ConfigRepository,
        storage: SQLiteManager | None = None,
        thread_pool: ThreadPoolManager | None = None,
        sink: BaseSink | None = None,
        scheduler=None,
    ) -> None:
        self.config_repository = config_repository
        self.config: AppConfig = config_repository.load()
        self.storage = storage or SQLiteManager(busy_timeout=self.config.storage.busy_timeout)
        self.thread_pool = thread_pool or ThreadPoolManager(default_workers=self.config.thread_pool_workers)
        self.scheduler = scheduler
        self.logger = configure_logging().bind(component="pipeline")

        self.generator = FingerprintGenerator(
            algorithm=self.config.fingerprint.algorithm,
            length=self.config.fingerprint.length,
        )
        self.store = ListingStore(
            self.storage,
            config_repository.listings_db_path(self.config),
            generator=self.generator,
        ).init()
        exports_db = config_repository.exports_db_path(self.config)
        self.ledger = ExportLedger(self.storage, exports_db).init()
        self.lease = ExportLease(
            self.storage,
            exports_db,
            ttl_seconds=self.config.export.lease_ttl_seconds,
            poll_interval=self.config.export.lease_poll_interval,
        )
        self._sink = sink
        self._coordinator: ExportCoordinator | None = None
        self._started = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def startup(self) -> RecoveryResult | None:
        """Reconcile the latest export once per process when configured to."""

        if self._started:
            return None
        self._started = True
        if not self.config.export.recover_on_start:
            return None
        return self.recover()

    def close(self) -> None:
        if self._sink is not None:
            self._sink.close()
        if self.scheduler is not None:
            self.scheduler.shutdown()
        self.thread_pool.shutdown()
        self.storage.close_all()

    # ------------------------------------------------------------------
    # Ingestion
    # ------------------------------------------------------------------
    def submit(self, listing: Listing, source: SourceTag | str | None = None) -> bool:
        return self.store.insert(listing, source)

    def submit_many(
        self,
        entries: Sequence[tuple[Listing, SourceTag | str | None]],
        progress: ProgressReporter | None = None,
    ) -> BulkInsertResult:
        """Insert a crawler batch; in-batch duplicates are dropped first and counted as skipped."""

        seen: set[str] = set()
        kept: list[tuple[Listing, SourceTag | str | None]] = []
        for listing, source in entries:
            fp = self.generator.fingerprint(listing)
            if fp in seen:
                continue
            seen.add(fp)
            kept.append((listing, source))
        dropped = len(entries) - len(kept)
        if dropped:
            self.logger.info("batch_duplicates_dropped", dropped=dropped, kept=len(kept))

        def report(index: int, outcome: str) -> None:
            progress.advance(current=kept[index][0].title, **{outcome: True})

        if progress is not None:
            progress.start(len(entries))
            for _ in range(dropped):
                progress.advance(skipped=True)

        try:
            result = self.store.bulk_insert(kept, on_result=report if progress is not None else None)
        finally:
            if progress is not None:
                progress.close()
        result.skipped += dropped
        return result

    def ingest_file(
        self,
        path: Path,
        source: SourceTag | str,
        progress: ProgressReporter | None = None,
    ) -> BulkInsertResult:
        """Parse a crawler output file and submit every listing under ``source``."""

        tag = SourceTag(source)
        log = source_logger(tag.value)
        entries: list[tuple[Listing, SourceTag]] = []
        invalid: list[tuple[int, str]] = []
        for index, payload in enumerate(load_listings(path)):
            try:
                entries.append((parse_listing(payload, tag), tag))
            except ValidationError as exc:
                invalid.append((index, f"{exc.error_count()} validation error(s)"))
                log.warning("listing_invalid", index=index, errors=exc.errors(include_url=False))

        result = self.submit_many(entries, progress=progress)
        result.failed += len(invalid)
        result.errors.extend(invalid)
        log.info(
            "ingest_completed",
            path=str(path),
            added=result.added,
            skipped=result.skipped,
            failed=result.failed,
        )
        return result

    # ------------------------------------------------------------------
    # Export
    # ------------------------------------------------------------------
    def build_sink(self) -> BaseSink:
        sheets = self.config.sheets
        if sheets.backend == "csv":
            return CsvSink(self.config_repository.locator.outputs_dir)
        if sheets.backend == "google":
            if sheets.credentials_file is not None:
                key_file = self.config.storage.resolve(
                    sheets.credentials_file, self.config_repository.locator.data_dir
                )
                return GoogleSheetsSink.from_service_account(key_file, tab=sheets.tab, timeout=sheets.timeout)
            token = os.environ.get(sheets.access_token_env, "")
            if not token:
                raise SinkError(
                    f"Environment variable {sheets.access_token_env} is not set and no credentials_file is configured"
                )
            return GoogleSheetsSink.from_token(token, tab=sheets.tab, timeout=sheets.timeout)
        raise ValueError(f"Unsupported sheets backend: {sheets.backend}")

    @property
    def sink(self) -> BaseSink:
        if self._sink is None:
            self._sink = self.build_sink()
        return self._sink

    def coordinator(self, with_sink: bool = True) -> ExportCoordinator:
        if self._coordinator is None:
            self._coordinator = ExportCoordinator(
                self.store,
                self.ledger,
                None,
                self.lease,
                thread_pool=self.thread_pool,
                sink_timeout=self.config.export.sink_timeout,
                title_template=self.config.sheets.title_template,
            )
        if with_sink and self._coordinator.sink is None:
            self._coordinator.sink = self.sink
        return self._coordinator

    def run_export(
        self,
        target_sheet_id: str | None = None,
        title: str | None = None,
        reset: bool = False,
        wait: float | None = None,
    ) -> ExportResult:
        self.startup()
        target = target_sheet_id or self.config.sheets.spreadsheet_id
        result = self.coordinator().run(target_sheet_id=target, title=title, reset=reset, wait=wait)
        self.logger.info(
            "export_cycle_finished",
            status=result.status.value,
            exported=result.exported,
            spreadsheet_id=result.spreadsheet_id,
        )
        return result

    def recover(self, wait: float | None = None) -> RecoveryResult:
        return self.coordinator(with_sink=False).recover(wait=wait)

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------
    def register_schedule(self) -> None:
        if self.scheduler is None:
            raise RuntimeError("Pipeline was created without a scheduler")
        self.scheduler.schedule_export(self.config.schedule, self.scheduled_export)
        self.scheduler.start()

    def scheduled_export(self) -> ExportResult | None:
        """Scheduler callback; failures are logged so the job keeps firing."""

        try:
            return self.run_export()
        except Exception as exc:  # noqa: BLE001
            self.logger.error("scheduled_export_failed", error=str(exc), error_type=exc.__class__.__name__)
            return None

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------
    def stats(self) -> dict[str, Any]:
        latest = self.ledger.latest()
        return {
            "total": self.store.count(),
            "unpushed": self.store.count_unpushed(),
            "by_source": self.store.count_by_source(),
            "exports": len(self.ledger.all()),
            "latest_export": latest,
            "last_reset_at": self.store.last_reset_at(),
        }

    def reset(self, pushed: bool = False) -> int:
        with self.lease.hold():
            return self.store.reset_all(pushed=pushed)


__all__ = ["Pipeline", "load_listings"]
