"""Tests for the tolerant batch combinator."""

import threading

import pytest

from billing_kernel.utils.batching import BatchOutcome, run_batched, settle_all


def _ok(value):
    return lambda: value


def _boom(message):
    def task():
        raise RuntimeError(message)
    return task


class TestRunBatched:

    def test_all_succeed_in_order(self):
        tasks = [(f"t{i}", _ok(i)) for i in range(7)]

        outcome = run_batched(tasks, batch_size=3)

        assert [s.value for s in outcome.succeeded] == list(range(7))
        assert [s.index for s in outcome.succeeded] == list(range(7))
        assert outcome.all_ok
        assert outcome.total == 7

    def test_failure_does_not_stop_the_rest(self):
        tasks = [("a", _ok(1)), ("b", _boom("nope")), ("c", _ok(3))]

        outcome = run_batched(tasks, batch_size=2)

        assert [s.label for s in outcome.succeeded] == ["a", "c"]
        assert len(outcome.failed) == 1
        failed = outcome.failed[0]
        assert failed.label == "b"
        assert failed.index == 1
        assert isinstance(failed.error, RuntimeError)
        assert not outcome.all_ok

    def test_every_batch_runs_after_a_failing_one(self):
        tasks = [("x", _boom("first"))] + [(f"t{i}", _ok(i)) for i in range(5)]

        outcome = run_batched(tasks, batch_size=1)

        assert len(outcome.succeeded) == 5
        assert len(outcome.failed) == 1

    def test_empty(self):
        outcome = run_batched([], batch_size=5)
        assert outcome == BatchOutcome()
        assert outcome.total == 0

    def test_invalid_batch_size(self):
        with pytest.raises(ValueError):
            run_batched([("a", _ok(1))], batch_size=0)

    def test_base_exceptions_propagate(self):
        def interrupt():
            raise KeyboardInterrupt

        with pytest.raises(KeyboardInterrupt):
            run_batched([("a", interrupt)], batch_size=1)

    def test_failures_are_logged(self, captured_logs):
        run_batched([("bad-task", _boom("broken"))], batch_size=1)

        logs = captured_logs()
        item = next(r for r in logs if r["message"] == "batch_item_failed")
        assert item["item"] == "bad-task"
        assert item["error"] == "broken"
        assert item["exc_type"] == "RuntimeError"
        summary = next(r for r in logs if r["message"] == "batch_completed_with_failures")
        assert summary["failed"] == 1
        assert summary["level"] == "WARNING"


class TestSettleAll:

    def test_threaded_keeps_submission_order(self):
        barrier = threading.Barrier(3)

        def task(i):
            def run():
                barrier.wait(timeout=5)
                return i
            return run

        outcome = settle_all([(f"t{i}", task(i)) for i in range(3)], max_workers=3)

        assert [s.value for s in outcome.succeeded] == [0, 1, 2]

    def test_threaded_collects_failures(self):
        tasks = [("a", _ok(1)), ("b", _boom("x")), ("c", _ok(3)), ("d", _boom("y"))]

        outcome = settle_all(tasks, max_workers=2)

        assert [s.label for s in outcome.succeeded] == ["a", "c"]
        assert [s.label for s in outcome.failed] == ["b", "d"]

    def test_start_index(self):
        outcome = settle_all([("a", _ok(1))], start_index=10)
        assert outcome.succeeded[0].index == 10

    def test_invalid_workers(self):
        with pytest.raises(ValueError):
            settle_all([("a", _ok(1))], max_workers=0)

    def test_batched_with_workers(self):
        tasks = [(f"t{i}", _ok(i)) for i in range(10)]

        outcome = run_batched(tasks, batch_size=4, max_workers=2)

        assert [s.value for s in outcome.succeeded] == list(range(10))
