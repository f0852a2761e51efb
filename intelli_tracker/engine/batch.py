"""Bounded-concurrency wave runner for per-item detail fetches."""

from __future__ import annotations

import asyncio
import inspect
from collections import deque
from concurrent.futures import Executor
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Iterable

import structlog

from ..errors import PerItemFetchFailure
from ..models import DetailResult, normalize_id

FetchCallable = Callable[[str], "DetailResult | Awaitable[DetailResult]"]
ResultCallback = Callable[[str, bool], None]


@dataclass(slots=True)
class BatchOutcome:
    """Everything one scheduler run collected."""

    results: dict[str, DetailResult] = field(default_factory=dict)
    failures: dict[str, PerItemFetchFailure] = field(default_factory=dict)
    waves: list[int] = field(default_factory=list)

    @property
    def failed_ids(self) -> list[str]:
        return sorted(self.failures)


class BatchFetchScheduler:
    """Dispatch fetches in waves of at most ``width`` and wait for each wave.

    A wave is resolved once every fetch in it has succeeded, failed, or been
    outstanding for ``timeout`` seconds; unresolved fetches are cancelled and
    recorded as per-item failures so the next wave can start.

    A blocking fetch cannot be interrupted, so a timed-out one keeps its
    executor worker. When ``executor_factory`` is given the scheduler swaps in
    a fresh executor after such a wave and the stuck workers drain in the
    background instead of starving the next wave.
    """

    def __init__(
        self,
        fetch: FetchCallable,
        width: int,
        timeout: float,
        executor: Executor | None = None,
        logger: structlog.BoundLogger | None = None,
        executor_factory: Callable[[], Executor] | None = None,
    ) -> None:
        if width < 1:
            raise ValueError("width must be >= 1")
        if timeout <= 0:
            raise ValueError("timeout must be > 0")
        self.fetch = fetch
        self.width = width
        self.timeout = timeout
        self.executor = executor
        self.executor_factory = executor_factory
        self.logger = logger or structlog.get_logger("intelli_tracker.batch")
        self._is_async = inspect.iscoroutinefunction(fetch) or inspect.iscoroutinefunction(
            getattr(fetch, "__call__", None)
        )

    async def run(
        self,
        item_ids: Iterable[str],
        on_result: ResultCallback | None = None,
        deadline: float | None = None,
    ) -> BatchOutcome:
        """Fetch every ID once; ``deadline`` is an event-loop time after which no wave starts."""

        loop = asyncio.get_running_loop()
        queue = deque(dict.fromkeys(i for i in (normalize_id(x) for x in item_ids) if i))
        outcome = BatchOutcome()

        while queue:
            if deadline is not None and loop.time() >= deadline:
                while queue:
                    self._record_failure(outcome, queue.popleft(), "run_deadline", on_result)
                break
            wave = [queue.popleft() for _ in range(min(self.width, len(queue)))]
            outcome.waves.append(len(wave))
            self.logger.debug("fetch_wave_dispatched", size=len(wave), remaining=len(queue))
            await self._run_wave(wave, outcome, on_result)

        self.logger.info(
            "fetch_batches_complete",
            fetched=len(outcome.results),
            failed=len(outcome.failures),
            waves=len(outcome.waves),
        )
        return outcome

    async def _run_wave(
        self, wave: list[str], outcome: BatchOutcome, on_result: ResultCallback | None
    ) -> None:
        tasks = {asyncio.ensure_future(self._call(item_id)): item_id for item_id in wave}
        _, pending = await asyncio.wait(tasks, timeout=self.timeout)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
            if not self._is_async and self.executor_factory is not None:
                self.executor = self.executor_factory()
                self.logger.warning("fetch_executor_replaced", stuck=len(pending))

        for task, item_id in tasks.items():
            if task in pending or task.cancelled():
                self._record_failure(outcome, item_id, "timeout", on_result)
                continue
            error = task.exception()
            if error is not None:
                self._record_failure(outcome, item_id, str(error) or type(error).__name__, on_result)
                continue
            result = task.result()
            if not isinstance(result, DetailResult):
                self._record_failure(outcome, item_id, "missing_detail", on_result)
                continue
            outcome.results[item_id] = result
            if on_result:
                on_result(item_id, True)

    async def _call(self, item_id: str) -> Any:
        if self._is_async:
            return await self.fetch(item_id)
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self.executor, self.fetch, item_id)

    def _record_failure(
        self,
        outcome: BatchOutcome,
        item_id: str,
        reason: str,
        on_result: ResultCallback | None,
    ) -> None:
        outcome.failures[item_id] = PerItemFetchFailure(item_id, reason)
        self.logger.warning("detail_fetch_failed", item_id=item_id, reason=reason)
        if on_result:
            on_result(item_id, False)


__all__ = ["BatchFetchScheduler", "BatchOutcome"]
