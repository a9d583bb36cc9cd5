"""Thread pool abstraction for blocking sink calls that need a deadline."""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from threading import Lock
from typing import Callable, Dict, TypeVar

T = TypeVar("T")


class ThreadPoolManager:
    """Manage the shared and per-purpose thread pools."""

    def __init__(self, default_workers: int = 4) -> None:
        self.default_workers = default_workers
        self._default_executor = ThreadPoolExecutor(max_workers=default_workers, thread_name_prefix="jobsheet")
        self._executors: Dict[str, ThreadPoolExecutor] = {}
        self._lock = Lock()

    def get(self, name: str | None = None, max_workers: int | None = None) -> ThreadPoolExecutor:
        if name is None:
            return self._default_executor
        with self._lock:
            if name not in self._executors:
                workers = max_workers or self.default_workers
                self._executors[name] = ThreadPoolExecutor(
                    max_workers=workers, thread_name_prefix=f"jobsheet-{name}"
                )
            return self._executors[name]

    def call(self, func: Callable[[], T], timeout: float | None = None, name: str | None = None) -> T:
        """Run ``func`` on a worker and wait at most ``timeout`` seconds.

        Raises ``concurrent.futures.TimeoutError`` on expiry; the worker is
        abandoned, not interrupted.
        """

        future = self.get(name).submit(func)
        return future.result(timeout=timeout)

    def shutdown(self) -> None:
        self._default_executor.shutdown(wait=False)
        with self._lock:
            for executor in self._executors.values():
                executor.shutdown(wait=False)
            self._executors.clear()


__all__ = ["ThreadPoolManager"]
