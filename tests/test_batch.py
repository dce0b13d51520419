"""
Tests for charversions/batch.py

Covers:
    - Running all items and collecting results in order
    - Window size bound on in-flight items
    - Error capture per item
    - Cancel and pause/resume without re-running items
"""

import threading
import time

import pytest

from charversions.batch import BatchRunner, BatchState
from charversions.errors import ValidationError


class TestRun:
    def test_all_items_processed(self):
        report = BatchRunner(lambda x: x * 2, window=3).run(range(10))
        assert report.state is BatchState.DONE
        assert report.completed == 10
        assert [r.value for r in report.results] == [x * 2 for x in range(10)]
        assert report.pending == 0

    def test_empty_input(self):
        report = BatchRunner(lambda x: x).run([])
        assert report.state is BatchState.DONE
        assert report.total == 0

    def test_window_bounds_concurrency(self):
        lock = threading.Lock()
        active = {"now": 0, "peak": 0}

        def worker(item):
            with lock:
                active["now"] += 1
                active["peak"] = max(active["peak"], active["now"])
            time.sleep(0.01)
            with lock:
                active["now"] -= 1
            return item

        BatchRunner(worker, window=2).run(range(8))
        assert active["peak"] <= 2

    def test_errors_are_captured(self):
        def worker(item):
            if item == 2:
                raise ValueError("bad item")
            return item

        report = BatchRunner(worker, window=2).run(range(5))
        assert report.completed == 5
        assert report.errors == 1
        failed = [r for r in report.results if not r.ok]
        assert failed[0].index == 2
        assert isinstance(failed[0].error, ValueError)

    def test_on_result_callback(self):
        seen = []
        BatchRunner(lambda x: x, window=1, on_result=lambda r: seen.append(r.index)).run("abc")
        assert seen == [0, 1, 2]

    def test_bad_window(self):
        with pytest.raises(ValidationError):
            BatchRunner(lambda x: x, window=0)


class TestControl:
    def test_cancel_stops_new_submissions(self):
        calls = []
        runner = None

        def worker(item):
            calls.append(item)
            if item == 2:
                runner.cancel()
            return item

        runner = BatchRunner(worker, window=1)
        report = runner.run(range(10))
        assert report.state is BatchState.CANCELLED
        assert calls == [0, 1, 2]
        assert report.completed == 3
        assert report.pending == 7

    def test_cancelled_batch_cannot_resume(self):
        runner = BatchRunner(lambda x: runner.cancel(), window=1)
        runner.run(range(3))
        with pytest.raises(ValidationError):
            runner.resume()

    def test_pause_then_resume_continues(self):
        calls = []
        runner = None

        def worker(item):
            calls.append(item)
            if item == 3 and runner.state is BatchState.RUNNING and len(calls) == 4:
                runner.pause()
            return item * 10

        runner = BatchRunner(worker, window=1)
        paused = runner.run(range(8))
        assert paused.state is BatchState.PAUSED
        assert paused.completed == 4

        finished = runner.resume()
        assert finished.state is BatchState.DONE
        assert calls == list(range(8))
        assert finished.completed == 8
        assert [r.value for r in finished.results] == [x * 10 for x in range(8)]

    def test_resume_requires_pause(self):
        runner = BatchRunner(lambda x: x)
        with pytest.raises(ValidationError):
            runner.resume()
