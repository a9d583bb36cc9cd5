from __future__ import annotations

import threading
from datetime import datetime, timedelta, timezone

import pytest

from jobsheet.engine import ExportCoordinator, ExportState, ExportStatus, fingerprint
from jobsheet.engine.sink import HEADER
from jobsheet.errors import ExportBusyError, SinkError, StoreError


def _seed(store, seek_listing, count: int = 3) -> list[str]:
    fps = []
    for i in range(count):
        listing = seek_listing(title=f"Role {i}")
        assert store.insert(listing)
        fps.append(fingerprint(listing))
    return fps


def test_empty_store_is_noop(coordinator, ledger, sink) -> None:
    result = coordinator.run()
    assert result.status is ExportStatus.NOOP
    assert result.exported == 0
    assert ledger.all() == []
    assert sink.calls == []
    assert coordinator.state is ExportState.IDLE


def test_successful_cycle_creates_sheet_and_marks(coordinator, store, ledger, sink, seek_listing) -> None:
    fps = _seed(store, seek_listing)
    result = coordinator.run(title="Weekly jobs")

    assert result.status is ExportStatus.EXPORTED
    assert result.ok
    assert (result.exported, result.marked) == (3, 3)
    assert sink.calls[0] == ("create", "Weekly jobs")
    rows = sink.sheets[result.spreadsheet_id]
    assert tuple(rows[0]) == HEADER
    assert sorted(row[0] for row in rows[1:]) == ["Role 0", "Role 1", "Role 2"]
    assert store.count_unpushed() == 0

    record = ledger.latest()
    assert record.id == result.export_id
    assert set(record.fingerprints) == set(fps)
    assert record.spreadsheet_url == "https://sheets.test/" + result.spreadsheet_id
    assert coordinator.history == [
        ExportState.SNAPSHOTTING,
        ExportState.SINKING,
        ExportState.LEDGERING,
        ExportState.MARKING,
        ExportState.IDLE,
    ]

    again = coordinator.run()
    assert again.status is ExportStatus.NOOP
    assert len(ledger.all()) == 1


def test_default_title_uses_template(store, ledger, lease, sink, thread_pool, seek_listing) -> None:
    coordinator = ExportCoordinator(store, ledger, sink, lease, thread_pool=thread_pool, title_template="Jobs {date}")
    _seed(store, seek_listing, 1)
    coordinator.run()
    title = sink.calls[0][1]
    assert title.startswith("Jobs ")
    datetime.strptime(title.removeprefix("Jobs "), "%Y-%m-%d")


def test_append_to_existing_sheet(coordinator, store, sink, seek_listing) -> None:
    _seed(store, seek_listing, 2)
    result = coordinator.run(target_sheet_id="existing")
    assert result.spreadsheet_id == "existing"
    assert sink.calls == [("append", "existing")]
    assert len(sink.sheets["existing"]) == 2


@pytest.mark.parametrize("error", [SinkError("quota exceeded"), RuntimeError("socket closed")])
def test_sink_failure_leaves_state_untouched(
    store, ledger, lease, thread_pool, seek_listing, sink_factory, error
) -> None:
    _seed(store, seek_listing)
    coordinator = ExportCoordinator(store, ledger, sink_factory(fail_with=error), lease, thread_pool=thread_pool)

    result = coordinator.run()

    assert result.status is ExportStatus.FAILED
    assert not result.ok
    assert result.exported == 0
    assert str(error) in result.error
    assert store.count_unpushed() == 3
    assert ledger.all() == []
    assert coordinator.state is ExportState.FAILED
    assert lease.holder() is None


def test_sink_timeout_fails_cycle(store, ledger, lease, thread_pool, seek_listing, sink_factory) -> None:
    release = threading.Event()

    class SlowSink(sink_factory):
        def create_sheet(self, title: str) -> str:
            release.wait(5)
            return super().create_sheet(title)

    _seed(store, seek_listing, 2)
    coordinator = ExportCoordinator(store, ledger, SlowSink(), lease, thread_pool=thread_pool, sink_timeout=0.05)
    try:
        result = coordinator.run()
    finally:
        release.set()
    assert result.status is ExportStatus.FAILED
    assert "timed out" in result.error
    assert store.count_unpushed() == 2
    assert ledger.all() == []


def test_missing_sink_fails_cycle(store, ledger, lease, thread_pool, seek_listing) -> None:
    _seed(store, seek_listing, 1)
    coordinator = ExportCoordinator(store, ledger, None, lease, thread_pool=thread_pool)
    result = coordinator.run()
    assert result.status is ExportStatus.FAILED
    assert store.count_unpushed() == 1


def test_concurrent_cycle_is_rejected(coordinator, lease, store, seek_listing) -> None:
    _seed(store, seek_listing, 1)
    with lease.hold("other-process"):
        with pytest.raises(ExportBusyError):
            coordinator.run()
    assert store.count_unpushed() == 1
    assert coordinator.run().status is ExportStatus.EXPORTED


def test_reset_reexports_everything(coordinator, store, ledger, seek_listing) -> None:
    _seed(store, seek_listing, 2)
    coordinator.run()
    result = coordinator.run(reset=True)
    assert result.status is ExportStatus.EXPORTED
    assert result.reset == 2
    assert result.exported == 2
    assert len(ledger.all()) == 2
    assert store.last_reset_at() is None
    assert store.count_unpushed() == 0


def test_recover_repairs_unmarked_fingerprints(coordinator, store, ledger, sink, seek_listing) -> None:
    fps = _seed(store, seek_listing)
    store.mark_pushed(fps[0])
    # Sink and ledger completed, process died before marking
    ledger.append("sheet-crash", fps + ["f" * 64])

    result = coordinator.recover()

    assert result.checked == 4
    assert result.repaired == 2
    assert result.missing == 1
    assert store.count_unpushed() == 0
    assert len(ledger.all()) == 1
    assert sink.calls == []

    assert coordinator.recover().repaired == 0


def test_recover_without_exports(coordinator) -> None:
    result = coordinator.recover()
    assert result.export_id is None
    assert result.checked == 0


def test_recover_skips_exports_before_reset(coordinator, store, ledger, seek_listing, monkeypatch) -> None:
    _seed(store, seek_listing, 2)
    coordinator.run()
    later = datetime.now(timezone.utc) + timedelta(seconds=5)
    monkeypatch.setattr("jobsheet.engine.store.utcnow", lambda: later)
    store.reset_all()

    result = coordinator.recover()

    assert result.skipped_reason == "reset"
    assert store.count_unpushed() == 2


def test_reset_export_sink_failure_keeps_push_flags(
    store, ledger, lease, thread_pool, seek_listing, sink_factory
) -> None:
    _seed(store, seek_listing, 2)
    ExportCoordinator(store, ledger, sink_factory(), lease, thread_pool=thread_pool).run()

    failing = ExportCoordinator(
        store, ledger, sink_factory(fail_with=SinkError("quota exceeded")), lease, thread_pool=thread_pool
    )
    result = failing.run(reset=True)

    assert result.status is ExportStatus.FAILED
    assert store.count_unpushed() == 0
    assert store.last_reset_at() is None
    assert len(ledger.all()) == 1


def test_ledger_failure_after_sink_propagates(coordinator, store, ledger, lease, sink, seek_listing, monkeypatch) -> None:
    _seed(store, seek_listing, 2)

    def broken_append(*args, **kwargs):
        raise StoreError("disk I/O error")

    monkeypatch.setattr(ledger, "append", broken_append)

    with pytest.raises(StoreError):
        coordinator.run()

    assert sink.calls[0][0] == "create"
    assert coordinator.state is ExportState.FAILED
    assert store.count_unpushed() == 2
    assert lease.holder() is None


def test_mark_failure_is_repaired_before_next_snapshot(
    coordinator, store, ledger, lease, sink, seek_listing, monkeypatch
) -> None:
    fps = _seed(store, seek_listing, 2)
    real_mark = store.bulk_mark_pushed
    calls = {"n": 0}

    def flaky_mark(fingerprints):
        calls["n"] += 1
        if calls["n"] == 1:
            raise StoreError("database is locked")
        return real_mark(fingerprints)

    monkeypatch.setattr(store, "bulk_mark_pushed", flaky_mark)

    first = coordinator.run()
    assert first.status is ExportStatus.EXPORTED
    assert first.needs_recovery
    assert first.marked == 0
    assert "database is locked" in first.error
    assert store.count_unpushed() == 2
    assert lease.holder() is None

    second = coordinator.run()
    assert second.status is ExportStatus.NOOP
    assert second.recovered == 2
    assert store.count_unpushed() == 0

    records = ledger.all()
    assert len(records) == 1
    assert set(records[0].fingerprints) == set(fps)
    assert sum(1 for call in sink.calls if call[0] == "create") == 1
