"""
Tolerant batch combinator.

Responsibility:
    Run a list of independent write tasks so that one failure never stops
    the others.  Every outcome is collected, partitioned into succeeded and
    failed, failures are logged, and nothing is raised for partial failure.

Architecture position:
    Kernel > Utils.  Used by the journal synchronizer and by bulk attendance
    fill.  Tasks are zero-argument callables; isolating a task's database
    work (a savepoint on a shared session, or a session of its own when run
    on a worker thread) is the caller's job.

Invariants enforced:
    - Outcomes are returned in submission order regardless of completion
      order.
    - Batches run strictly one after another; only tasks within one batch
      may run concurrently.
    - A task raising Exception is recorded as failed; BaseException
      (KeyboardInterrupt, SystemExit) still propagates.
"""

from collections.abc import Callable, Iterable, Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any

from billing_kernel.logging_config import get_logger

logger = get_logger("utils.batching")

LabeledTask = tuple[str, Callable[[], Any]]


@dataclass(frozen=True)
class Settled:
    """Outcome of one task: a value or an error."""

    index: int
    label: str
    value: Any = None
    error: Exception | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class BatchOutcome:
    succeeded: tuple[Settled, ...] = ()
    failed: tuple[Settled, ...] = ()

    @property
    def total(self) -> int:
        return len(self.succeeded) + len(self.failed)

    @property
    def all_ok(self) -> bool:
        return not self.failed

    def merge(self, other: "BatchOutcome") -> "BatchOutcome":
        return BatchOutcome(
            succeeded=self.succeeded + other.succeeded,
            failed=self.failed + other.failed,
        )


def _run_one(index: int, label: str, task: Callable[[], Any]) -> Settled:
    try:
        return Settled(index=index, label=label, value=task())
    except Exception as exc:
        logger.warning(
            "batch_item_failed",
            extra={"item": label, "index": index, "error": str(exc)},
            exc_info=True,
        )
        return Settled(index=index, label=label, error=exc)


def _partition(results: Iterable[Settled]) -> BatchOutcome:
    ordered = sorted(results, key=lambda s: s.index)
    return BatchOutcome(
        succeeded=tuple(s for s in ordered if s.ok),
        failed=tuple(s for s in ordered if not s.ok),
    )


def settle_all(
    tasks: Sequence[LabeledTask],
    *,
    max_workers: int = 1,
    start_index: int = 0,
) -> BatchOutcome:
    """
    Run every task and collect all outcomes.

    Args:
        tasks: ``(label, callable)`` pairs.
        max_workers: With more than one worker the tasks run on a thread
            pool; with one they run in order on the calling thread.
        start_index: Index assigned to the first task.

    Returns:
        BatchOutcome in submission order.
    """
    if max_workers < 1:
        raise ValueError(f"max_workers must be >= 1, got {max_workers}")

    indexed = [(start_index + i, label, task) for i, (label, task) in enumerate(tasks)]
    if max_workers == 1 or len(indexed) <= 1:
        return _partition(_run_one(*item) for item in indexed)

    with ThreadPoolExecutor(max_workers=min(max_workers, len(indexed))) as executor:
        futures = [executor.submit(_run_one, *item) for item in indexed]
        return _partition(f.result() for f in futures)


def run_batched(
    tasks: Sequence[LabeledTask],
    *,
    batch_size: int = 10,
    max_workers: int = 1,
) -> BatchOutcome:
    """
    Chunk tasks into batches of ``batch_size`` and settle each batch in turn.

    Returns:
        The merged BatchOutcome of every batch, in submission order.
    """
    if batch_size < 1:
        raise ValueError(f"batch_size must be >= 1, got {batch_size}")

    outcome = BatchOutcome()
    for start in range(0, len(tasks), batch_size):
        chunk = tasks[start:start + batch_size]
        outcome = outcome.merge(
            settle_all(chunk, max_workers=max_workers, start_index=start)
        )

    if outcome.failed:
        logger.warning(
            "batch_completed_with_failures",
            extra={
                "total": outcome.total,
                "failed": len(outcome.failed),
                "batch_size": batch_size,
            },
        )
    else:
        logger.debug(
            "batch_completed",
            extra={"total": outcome.total, "batch_size": batch_size},
        )
    return outcome
