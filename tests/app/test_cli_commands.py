from __future__ import annotations

import json
from pathlib import Path

import pytest
from typer.testing import CliRunner

from jobsheet.app import app
from jobsheet.config import ConfigLocator, ConfigRepository
from jobsheet.engine import ExportLease, ExportLedger
from jobsheet.infra import SQLiteManager


runner = CliRunner()

SEEK_PAYLOADS = [
    {
        "title": "Software Engineer",
        "company": "Acme",
        "locations": ["Sydney NSW"],
        "url": "https://www.seek.com.au/job/1",
        "description": "Build stuff.",
        "listingDate": "2d ago",
    },
    {
        "title": "Data Engineer",
        "company": "Initech",
        "locations": "Brisbane QLD",
        "url": "https://www.seek.com.au/job/2",
        "description": "Move data.",
        "listingDate": "1d ago",
    },
]


@pytest.fixture
def home(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    monkeypatch.setenv("JOBSHEET_HOME", str(tmp_path))
    monkeypatch.setenv("COLUMNS", "200")
    monkeypatch.delenv("JOBSHEET_SHEETS_TOKEN", raising=False)
    return tmp_path


@pytest.fixture
def crawl_file(tmp_path: Path) -> Path:
    path = tmp_path / "seek.jsonl"
    path.write_text("\n".join(json.dumps(p) for p in SEEK_PAYLOADS), encoding="utf-8")
    return path


def _ingest(crawl_file: Path):
    return runner.invoke(app, ["ingest", str(crawl_file), "--source", "seek", "--no-progress"])


def test_ingest_and_stats(home, crawl_file) -> None:
    result = _ingest(crawl_file)
    assert result.exit_code == 0, result.output
    assert "Added" in result.output

    again = _ingest(crawl_file)
    assert again.exit_code == 0

    stats = runner.invoke(app, ["listings", "stats"])
    assert stats.exit_code == 0
    assert "Total listings" in stats.output
    assert "Source seek" in stats.output


def test_ingest_invalid_entries_exit_nonzero(home, tmp_path) -> None:
    path = tmp_path / "broken.json"
    path.write_text(json.dumps([{"title": "Ok", "company": "A"}, {"title": "Bad", "isPremium": "maybe"}]), encoding="utf-8")
    result = runner.invoke(app, ["ingest", str(path), "--source", "seek", "--no-progress"])
    assert result.exit_code == 1
    assert "#1" in result.output


def test_unpushed_lists_pending(home, crawl_file) -> None:
    _ingest(crawl_file)
    result = runner.invoke(app, ["listings", "unpushed"])
    assert result.exit_code == 0
    assert "Unpushed listings" in result.output


def test_export_run_with_csv_backend(home, crawl_file) -> None:
    _ingest(crawl_file)
    result = runner.invoke(app, ["export", "run", "--title", "Weekly"])
    assert result.exit_code == 0, result.output
    assert "Exported 2 listing(s)" in result.output
    assert list((home / "data" / "outputs").glob("Weekly-*.csv"))

    second = runner.invoke(app, ["export", "run"])
    assert second.exit_code == 0
    assert "Nothing to export" in second.output

    unpushed = runner.invoke(app, ["listings", "unpushed"])
    assert "No unpushed listings." in unpushed.output


def test_export_history_commands(home, crawl_file) -> None:
    _ingest(crawl_file)
    runner.invoke(app, ["export", "run"])

    repository = ConfigRepository(ConfigLocator())
    manager = SQLiteManager()
    try:
        record = ExportLedger(manager, repository.exports_db_path()).init().latest()
    finally:
        manager.close_all()
    assert record is not None

    listed = runner.invoke(app, ["export", "list"])
    assert listed.exit_code == 0
    assert "Exports" in listed.output

    latest = runner.invoke(app, ["export", "latest"])
    assert latest.exit_code == 0
    assert "Latest export" in latest.output

    shown = runner.invoke(app, ["export", "show", record.id, "--fingerprints"])
    assert shown.exit_code == 0
    assert record.fingerprints[0] in shown.output

    recent = runner.invoke(app, ["export", "recent", "--days", "1"])
    assert recent.exit_code == 0


def test_export_show_unknown_id(home) -> None:
    result = runner.invoke(app, ["export", "show", "export_missing"])
    assert result.exit_code == 1
    assert "No export matches" in result.output


def test_listings_show_unknown_fingerprint(home) -> None:
    result = runner.invoke(app, ["listings", "show", "deadbeef"])
    assert result.exit_code == 1


def test_export_run_busy_lease(home, crawl_file) -> None:
    _ingest(crawl_file)
    repository = ConfigRepository(ConfigLocator())
    manager = SQLiteManager()
    lease = ExportLease(manager, repository.exports_db_path(), ttl_seconds=600)
    assert lease.try_acquire("other-host:1")
    try:
        result = runner.invoke(app, ["export", "run"])
    finally:
        lease.release("other-host:1")
        manager.close_all()
    assert result.exit_code == 1
    assert "other-host:1" in result.output


def test_export_run_google_without_token_fails(home, crawl_file) -> None:
    _ingest(crawl_file)
    repository = ConfigRepository(ConfigLocator())
    config = repository.load()
    config.sheets.backend = "google"
    repository.save(config)

    result = runner.invoke(app, ["export", "run"])
    assert result.exit_code == 1
    assert "JOBSHEET_SHEETS_TOKEN" in result.output


def test_reset_then_recover(home, crawl_file) -> None:
    _ingest(crawl_file)
    runner.invoke(app, ["export", "run"])

    reset = runner.invoke(app, ["listings", "reset", "--yes"])
    assert reset.exit_code == 0
    assert "Marked 2 listing(s) as unpushed." in reset.output

    recover = runner.invoke(app, ["export", "recover"])
    assert recover.exit_code == 0
    assert "predates" in recover.output


def test_reset_cancelled_without_confirmation(home) -> None:
    result = runner.invoke(app, ["listings", "reset"], input="n\n")
    assert result.exit_code == 0
    assert "Cancelled." in result.output


def test_log_list_after_ingest(home, crawl_file) -> None:
    _ingest(crawl_file)
    result = runner.invoke(app, ["log", "list"])
    assert result.exit_code == 0
    assert "seek.log" in result.output
