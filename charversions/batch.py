"""
charversions/batch.py -- Windowed batch runner for per-document work.

Runs a worker callable over a list of items (e.g. "check this character
for updates") with at most ``window`` items in flight at once.  Pause and
cancel take effect before the next submission; items already running
always finish.  A paused run can be resumed and continues with the first
item that was never submitted, so no item is ever processed twice.

Usage::

    from charversions.batch import BatchRunner

    runner = BatchRunner(check_for_update, window=5)
    report = runner.run(documents)
    print(report.completed, report.errors)
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Iterable

from charversions.errors import ValidationError

logger = logging.getLogger(__name__)


class BatchState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    PAUSED = "paused"
    CANCELLED = "cancelled"
    DONE = "done"


@dataclass
class ItemResult:
    """Outcome of one item.  ``error`` holds the exception if the worker raised."""
    index: int
    item: Any
    value: Any = None
    error: BaseException | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class BatchReport:
    state: BatchState
    total: int
    results: list[ItemResult] = field(default_factory=list)

    @property
    def completed(self) -> int:
        return len(self.results)

    @property
    def errors(self) -> int:
        return sum(1 for r in self.results if not r.ok)

    @property
    def pending(self) -> int:
        return self.total - self.completed


class BatchRunner:
    """Run *worker* over items with a bounded number in flight.

    Parameters
    ----------
    worker : callable
        Called once per item from a pool thread.
    window : int
        Maximum number of items in flight (default 5).
    on_result : callable, optional
        Called with each ``ItemResult`` as it completes, on the thread
        that called ``run``/``resume``.
    """

    def __init__(
        self,
        worker: Callable[[Any], Any],
        window: int = 5,
        on_result: Callable[[ItemResult], None] | None = None,
    ):
        if window < 1:
            raise ValidationError("The batch window must be at least 1.")
        self.worker = worker
        self.window = window
        self.on_result = on_result
        self.state = BatchState.IDLE
        self._items: list[Any] = []
        self._next_index = 0
        self._results: dict[int, ItemResult] = {}
        self._pause = threading.Event()
        self._cancel = threading.Event()

    def run(self, items: Iterable[Any]) -> BatchReport:
        """Process *items* from the start."""
        if self.state is BatchState.RUNNING:
            raise ValidationError("This batch is already running.")
        self._items = list(items)
        self._next_index = 0
        self._results = {}
        self._cancel.clear()
        return self._drive()

    def resume(self) -> BatchReport:
        """Continue a paused run with the first unsubmitted item."""
        if self.state is not BatchState.PAUSED:
            raise ValidationError("There is no paused batch to resume.")
        return self._drive()

    def pause(self) -> None:
        self._pause.set()

    def cancel(self) -> None:
        self._cancel.set()

    def _stopping(self) -> bool:
        return self._cancel.is_set() or self._pause.is_set()

    def _drive(self) -> BatchReport:
        self._pause.clear()
        self.state = BatchState.RUNNING
        logger.debug(
            "Batch starting at item %d of %d (window %d)",
            self._next_index, len(self._items), self.window,
        )

        with ThreadPoolExecutor(max_workers=self.window) as executor:
            in_flight: dict[Future, int] = {}
            while True:
                while (
                    len(in_flight) < self.window
                    and self._next_index < len(self._items)
                    and not self._stopping()
                ):
                    idx = self._next_index
                    self._next_index += 1
                    in_flight[executor.submit(self.worker, self._items[idx])] = idx

                if not in_flight:
                    break

                done, _ = wait(in_flight, return_when=FIRST_COMPLETED)
                for future in done:
                    self._record(in_flight.pop(future), future)

        if self._cancel.is_set():
            self.state = BatchState.CANCELLED
        elif self._next_index < len(self._items):
            self.state = BatchState.PAUSED
        else:
            self.state = BatchState.DONE
        report = self.report()
        logger.info(
            "Batch %s: %d of %d done, %d error(s)",
            self.state.value, report.completed, report.total, report.errors,
        )
        return report

    def _record(self, idx: int, future: Future) -> None:
        result = ItemResult(index=idx, item=self._items[idx])
        try:
            result.value = future.result()
        except Exception as exc:
            logger.warning("Batch item %d failed: %s", idx, exc)
            result.error = exc
        self._results[idx] = result
        if self.on_result is not None:
            self.on_result(result)

    def report(self) -> BatchReport:
        return BatchReport(
            state=self.state,
            total=len(self._items),
            results=[self._results[i] for i in sorted(self._results)],
        )
