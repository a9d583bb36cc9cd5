"""Shared fixtures for store, ledger, lease and pipeline tests."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Callable, Iterable, Sequence

import pytest

from jobsheet.config import ConfigLocator, ConfigRepository
from jobsheet.engine import (
    ExportCoordinator,
    ExportLease,
    ExportLedger,
    ListingStore,
    ProspleListing,
    SeekListing,
    ThreadPoolManager,
)
from jobsheet.engine.sink import BaseSink
from jobsheet.infra import SQLiteManager
from jobsheet.logging_conf import configure_logging


class RecordingSink(BaseSink):
    """In-memory sink capturing every call; optionally failing on demand."""

    def __init__(self, fail_with: Exception | None = None) -> None:
        self.fail_with = fail_with
        self.sheets: dict[str, list[list[str]]] = {}
        self.calls: list[tuple[str, str]] = []
        self.closed = False

    def create_sheet(self, title: str) -> str:
        self.calls.append(("create", title))
        if self.fail_with is not None:
            raise self.fail_with
        sheet_id = f"sheet-{len(self.sheets) + 1}"
        self.sheets[sheet_id] = []
        return sheet_id

    def write_rows(self, sheet_id: str, rows: Sequence[Sequence[str]]) -> None:
        self.calls.append(("write", sheet_id))
        self.sheets[sheet_id] = [list(row) for row in rows]

    def append_rows(self, sheet_id: str, rows: Sequence[Sequence[str]]) -> None:
        self.calls.append(("append", sheet_id))
        if self.fail_with is not None:
            raise self.fail_with
        self.sheets.setdefault(sheet_id, []).extend(list(row) for row in rows)

    def sheet_url(self, sheet_id: str) -> str:
        return f"https://sheets.test/{sheet_id}"

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def manager() -> Iterable[SQLiteManager]:
    mgr = SQLiteManager(busy_timeout=5.0)
    yield mgr
    mgr.close_all()


@pytest.fixture
def store(manager: SQLiteManager, tmp_path: Path) -> ListingStore:
    return ListingStore(manager, tmp_path / "listings.db").init()


@pytest.fixture
def ledger(manager: SQLiteManager, tmp_path: Path) -> ExportLedger:
    return ExportLedger(manager, tmp_path / "exports.db").init()


@pytest.fixture
def lease(manager: SQLiteManager, tmp_path: Path) -> ExportLease:
    return ExportLease(manager, tmp_path / "exports.db", ttl_seconds=60, poll_interval=0.01)


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def thread_pool() -> Iterable[ThreadPoolManager]:
    pool = ThreadPoolManager(default_workers=1)
    yield pool
    pool.shutdown()


@pytest.fixture
def coordinator(store, ledger, lease, sink, thread_pool) -> ExportCoordinator:
    return ExportCoordinator(store, ledger, sink, lease, thread_pool=thread_pool, sink_timeout=5.0)


@pytest.fixture
def seek_listing() -> Callable[..., SeekListing]:
    def _builder(**overrides: Any) -> SeekListing:
        base: dict[str, Any] = {
            "title": "Software Engineer",
            "company": "Acme",
            "locations": ["Sydney NSW", "Remote"],
            "salary": "$120k",
            "url": "https://www.seek.com.au/job/1",
            "description": "Build stuff.",
            "listing_date": "2d ago",
            "job_id": "1",
        }
        base.update(overrides)
        return SeekListing(**base)

    return _builder


@pytest.fixture
def prosple_listing() -> Callable[..., ProspleListing]:
    def _builder(**overrides: Any) -> ProspleListing:
        base: dict[str, Any] = {
            "title": "Graduate Analyst",
            "company": "Globex",
            "location": "Melbourne",
            "url": "https://au.prosple.com/graduate-employers/globex/jobs/analyst",
            "start_date": "February 2026",
            "full_description": "Join our graduate programme.\nSecond paragraph.",
            "badges": ["Graduate"],
        }
        base.update(overrides)
        return ProspleListing(**base)

    return _builder


@pytest.fixture
def temp_config_repository(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> ConfigRepository:
    monkeypatch.setenv("JOBSHEET_HOME", str(tmp_path))
    monkeypatch.delenv("JOBSHEET_SHEETS_TOKEN", raising=False)
    return ConfigRepository(ConfigLocator())


@pytest.fixture
def sink_factory() -> type[RecordingSink]:
    return RecordingSink


@pytest.fixture(scope="session", autouse=True)
def _isolated_logging(tmp_path_factory: pytest.TempPathFactory) -> None:
    configure_logging(log_dir=tmp_path_factory.mktemp("logs"))
