"""Thread pools backing blocking page extractors."""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from threading import Lock
from typing import Dict


class ThreadPoolManager:
    """Manage the shared pool and named per-purpose pools.

    Blocking detail fetches run on a named pool sized to the fetch wave width so
    a wave never queues behind itself.
    """

    def __init__(self, default_workers: int = 4) -> None:
        self.default_workers = default_workers
        self._default_executor = ThreadPoolExecutor(
            max_workers=default_workers, thread_name_prefix="tracker"
        )
        self._executors: Dict[str, ThreadPoolExecutor] = {}
        self._lock = Lock()

    def get(self, name: str | None = None, max_workers: int | None = None) -> ThreadPoolExecutor:
        if name is None:
            return self._default_executor
        with self._lock:
            if name not in self._executors:
                workers = max_workers or self.default_workers
                self._executors[name] = ThreadPoolExecutor(
                    max_workers=workers, thread_name_prefix=f"tracker-{name}"
                )
            return self._executors[name]

    def recycle(self, name: str, max_workers: int | None = None) -> ThreadPoolExecutor:
        """Replace a named pool; queued work is cancelled and running workers finish detached."""

        with self._lock:
            stale = self._executors.pop(name, None)
        if stale is not None:
            stale.shutdown(wait=False, cancel_futures=True)
        return self.get(name, max_workers)

    def shutdown(self) -> None:
        self._default_executor.shutdown(wait=False, cancel_futures=True)
        with self._lock:
            for executor in self._executors.values():
                executor.shutdown(wait=False, cancel_futures=True)
            self._executors.clear()


__all__ = ["ThreadPoolManager"]
