"""Worker pool for compress and decompress tasks.

All tasks are submitted up front. Each task writes its result into the slot
fixed by the plan, so the order in which workers finish never changes the
output. Progress is aggregated under one lock; the observer's return value
is the only cancellation signal.
"""

import os
import threading
from collections.abc import Callable, Sequence
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Any

from tqdm import tqdm

from infparquet._exceptions import InfParquetError, InvalidParameterError, ParallelProcessingError
from infparquet._logging import get_logger
from infparquet._types import CompressTask, DecompressTask, ProgressObserver

logger = get_logger(__name__)

Task = CompressTask | DecompressTask


def resolve_workers(workers: int) -> int:
    """Number of worker threads. 0 = available parallelism, queried now."""
    if workers < 0:
        raise InvalidParameterError(f"workers must be >= 0, got {workers}")
    if workers == 0:
        return os.cpu_count() or 1
    return workers


class ProgressTracker:
    """Completion counter shared by all workers of one run.

    Calls the observer and advances the progress bar under a lock, so the
    observer never runs concurrently with itself.
    """

    def __init__(
        self,
        operation: str,
        total_units: int,
        total_row_groups: int,
        observer: ProgressObserver | None = None,
        progress: bool = False,
    ) -> None:
        self.operation = operation
        self.total_units = total_units
        self.total_row_groups = total_row_groups
        self._observer = observer
        self._lock = threading.Lock()
        self._done = 0
        self._cancelled = threading.Event()
        self._bar = tqdm(total=total_units, desc=operation.capitalize(), unit="chunk", disable=not progress)

    @property
    def completed(self) -> int:
        return self._done

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def cancel(self) -> None:
        self._cancelled.set()

    def advance(self, row_group_index: int | None) -> bool:
        """Record one finished unit. Returns False once cancellation was requested."""
        with self._lock:
            self._done += 1
            percent = self._done * 100 // self.total_units if self.total_units else 100
            self._bar.update(1)
            if self._observer is not None and not self._cancelled.is_set():
                if not self._observer(self.operation, row_group_index, self.total_row_groups, percent):
                    logger.info(f"{self.operation} cancelled by observer at {percent}%")
                    self._cancelled.set()
        return not self._cancelled.is_set()

    def close(self) -> None:
        self._bar.close()


@dataclass
class TaskRun:
    """Outcome of running a batch of tasks.

    Attributes:
        slots: One entry per task, indexed by task.slot. None if the task did not run or failed.
        errors: Unit failures in completion order
        cancelled: Observer requested cancellation
    """

    slots: list[Any]
    errors: list[InfParquetError] = field(default_factory=list)
    cancelled: bool = False

    @property
    def ok(self) -> bool:
        return not self.errors and not self.cancelled


def run_tasks(
    tasks: Sequence[Task],
    worker: Callable[[Task], Any],
    tracker: ProgressTracker,
    workers: int = 0,
    stop_on_error: bool = True,
) -> TaskRun:
    """Run ``worker`` over ``tasks`` on a fixed-size thread pool.

    Args:
        tasks: Tasks with distinct slots 0..len(tasks)-1
        worker: Function executing one task
        tracker: Progress aggregation and cancellation flag
        workers: Pool size, 0 = available parallelism
        stop_on_error: Cancel undispatched tasks after the first failure

    Returns:
        TaskRun with filled slots. In-flight tasks always finish before returning.
    """
    pool_size = resolve_workers(workers)
    run = TaskRun(slots=[None] * len(tasks))
    if sorted(task.slot for task in tasks) != list(range(len(tasks))):
        raise ParallelProcessingError("Task slots must be unique and cover 0..n-1")

    halted = threading.Event()

    def run_one(task: Task) -> None:
        if halted.is_set() or tracker.cancelled:
            return
        run.slots[task.slot] = worker(task)
        if not tracker.advance(task.row_group_index):
            halted.set()

    try:
        if pool_size == 1 or len(tasks) <= 1:
            _run_sequential(tasks, run_one, run, halted, stop_on_error)
        else:
            _run_pooled(tasks, run_one, run, halted, stop_on_error, pool_size)
    finally:
        tracker.close()

    run.cancelled = tracker.cancelled
    return run


def _run_sequential(
    tasks: Sequence[Task],
    run_one: Callable[[Task], None],
    run: TaskRun,
    halted: threading.Event,
    stop_on_error: bool,
) -> None:
    for task in tasks:
        if halted.is_set():
            break
        try:
            run_one(task)
        except InfParquetError as e:
            run.errors.append(e)
            if stop_on_error:
                halted.set()
        except Exception as e:
            run.errors.append(ParallelProcessingError(f"Worker failed on slot {task.slot}: {e}"))
            halted.set()


def _run_pooled(
    tasks: Sequence[Task],
    run_one: Callable[[Task], None],
    run: TaskRun,
    halted: threading.Event,
    stop_on_error: bool,
    pool_size: int,
) -> None:
    with ThreadPoolExecutor(max_workers=pool_size, thread_name_prefix="infparquet") as pool:
        futures: dict[Future[None], Task] = {pool.submit(run_one, task): task for task in tasks}

        for future in as_completed(futures):
            if future.cancelled():
                continue
            error = future.exception()
            if isinstance(error, InfParquetError):
                run.errors.append(error)
                if stop_on_error:
                    halted.set()
            elif error is not None:
                run.errors.append(ParallelProcessingError(f"Worker failed on slot {futures[future].slot}: {error}"))
                halted.set()

            if halted.is_set():
                # Undispatched futures are dropped; running ones drain.
                for pending in futures:
                    pending.cancel()
