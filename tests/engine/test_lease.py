from __future__ import annotations

import threading
import time
from datetime import datetime, timedelta, timezone

import pytest

from jobsheet.engine import ExportLease
from jobsheet.errors import ExportBusyError


def test_lease_is_single_flight(lease) -> None:
    assert lease.try_acquire("worker-a") is True
    assert lease.try_acquire("worker-b") is False
    assert lease.holder() == "worker-a"
    lease.release("worker-b")
    assert lease.holder() == "worker-a"
    lease.release("worker-a")
    assert lease.holder() is None


def test_hold_raises_busy_with_owner(lease) -> None:
    with lease.hold("first"):
        with pytest.raises(ExportBusyError) as excinfo:
            with lease.hold("second"):
                pass
    assert excinfo.value.owner == "first"
    assert "first" in str(excinfo.value)
    assert lease.holder() is None


def test_hold_releases_on_error(lease) -> None:
    with pytest.raises(RuntimeError):
        with lease.hold("crashy"):
            raise RuntimeError("boom")
    assert lease.holder() is None


def test_hold_waits_for_release(lease) -> None:
    assert lease.try_acquire("blocker")
    timer = threading.Timer(0.1, lease.release, args=("blocker",))
    timer.start()
    try:
        started = time.monotonic()
        with lease.hold("waiter", wait=5.0) as owner:
            assert owner == "waiter"
            assert lease.holder() == "waiter"
        assert time.monotonic() - started < 5.0
    finally:
        timer.cancel()


def test_stale_lease_is_reclaimed(manager, tmp_path) -> None:
    lease = ExportLease(manager, tmp_path / "exports.db", ttl_seconds=60)
    conn = manager.connect(tmp_path / "exports.db")
    stale = (datetime.now(timezone.utc) - timedelta(minutes=5)).isoformat(timespec="microseconds")
    with conn:
        conn.execute("INSERT INTO export_lease(id, owner, acquired_at) VALUES (1, 'ghost', ?)", (stale,))
    assert lease.try_acquire("fresh") is True
    assert lease.holder() == "fresh"
