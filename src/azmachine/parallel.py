"""Run a fixed list of independent tasks concurrently and collect every failure.

Each task owns one result slot, indexed by its position in the input list, so
no lock is needed and failures are reported in submission order regardless of
which task finishes first. All tasks always run to completion; a failing task
never cancels its siblings.

Public API:
    TaskOutcome: Result slot of one task
    ParallelTaskError: Aggregate of every failed task
    run_all: Run tasks, return one outcome per task (the deprovisioner uses
        this and wraps the failures in TeardownError, a ParallelTaskError)
    run_in_parallel: Run tasks, raise ParallelTaskError if any failed
"""

import logging
from collections.abc import Callable, Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any

from azmachine.errors import DriverError, ErrorKind

logger = logging.getLogger(__name__)

EMPTY_TASK_MESSAGE = "received empty task"

Task = Callable[[], Any]


class EmptyTaskError(DriverError):
    """A None entry was submitted in place of a task."""

    def __init__(self):
        super().__init__(EMPTY_TASK_MESSAGE)


@dataclass
class TaskOutcome:
    """Result slot of one task."""

    index: int
    value: Any = None
    error: BaseException | None = None

    @property
    def succeeded(self) -> bool:
        return self.error is None


class ParallelTaskError(DriverError):
    """One or more parallel tasks failed.

    By default the message joins every task error, one per line, in submission
    order; callers that know more about the tasks pass their own message.
    The kind is CONFLICT if any task failed with a conflict.
    """

    def __init__(self, errors: Sequence[BaseException], message: str | None = None):
        self.errors = list(errors)
        if any(getattr(e, "kind", None) == ErrorKind.CONFLICT for e in self.errors):
            self.kind = ErrorKind.CONFLICT
        if message is None:
            message = "\n".join(str(e) for e in self.errors)
        super().__init__(message)


def _run_slot(index: int, task: Task | None) -> TaskOutcome:
    if task is None:
        return TaskOutcome(index=index, error=EmptyTaskError())
    try:
        return TaskOutcome(index=index, value=task())
    except Exception as e:
        logger.debug(f"Parallel task {index} failed: {e}")
        return TaskOutcome(index=index, error=e)


def run_all(tasks: Sequence[Task | None], max_workers: int | None = None) -> list[TaskOutcome]:
    """Run every task concurrently and wait for all of them.

    Args:
        tasks: Zero-argument callables; None entries count as failures
        max_workers: Upper bound on threads (default: one per task)

    Returns:
        One TaskOutcome per task, in submission order
    """
    if not tasks:
        return []
    workers = len(tasks) if max_workers is None else max(1, min(max_workers, len(tasks)))
    with ThreadPoolExecutor(max_workers=workers) as executor:
        futures = [executor.submit(_run_slot, index, task) for index, task in enumerate(tasks)]
        # Joining in submission order keeps the outcome list ordered by slot
        return [future.result() for future in futures]


def run_in_parallel(tasks: Sequence[Task | None], max_workers: int | None = None) -> None:
    """Run every task concurrently, raising one error listing every failure.

    Raises:
        ParallelTaskError: If at least one task failed
    """
    outcomes = run_all(tasks, max_workers=max_workers)
    errors = [outcome.error for outcome in outcomes if outcome.error is not None]
    if errors:
        raise ParallelTaskError(errors)


__all__ = [
    "EMPTY_TASK_MESSAGE",
    "EmptyTaskError",
    "ParallelTaskError",
    "TaskOutcome",
    "run_all",
    "run_in_parallel",
]
