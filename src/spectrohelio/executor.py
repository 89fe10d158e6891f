"""Bounded worker pool with fail-fast error propagation."""

import logging
import os
import threading
from collections.abc import Callable, Iterable
from concurrent.futures import Future, ThreadPoolExecutor, as_completed, wait
from typing import Any, TypeVar

from .errors import ProcessingCancelled

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


class ParallelExecutor:
    """Thread pool running per-frame tasks with backpressure.

    ``submit`` blocks while ``max_pending`` tasks are queued or running. The
    first exception raised by a task is kept; tasks which haven't started
    yet are then skipped, further submissions fail, and ``join``/``close``
    rethrow it once every submitted task has finished. Use as a context
    manager so no task outlives the block.

    Example:
        with ParallelExecutor(max_workers=4) as executor:
            for frame in frames:
                executor.submit(process, frame)

    Args:
        max_workers: Number of worker threads (default: CPU count).
        max_pending: Maximum number of submitted but unfinished tasks
            (default: twice the worker count).
    """

    def __init__(self, max_workers: int | None = None, max_pending: int | None = None):
        self.max_workers = max_workers or os.cpu_count() or 1
        self.max_pending = max_pending or 2 * self.max_workers
        if self.max_workers < 1 or self.max_pending < 1:
            raise ValueError("max_workers and max_pending must be positive")
        self._pool = ThreadPoolExecutor(
            max_workers=self.max_workers, thread_name_prefix="spectrohelio-worker"
        )
        self._slots = threading.BoundedSemaphore(self.max_pending)
        self._lock = threading.Lock()
        self._error: BaseException | None = None
        self._cancelled = threading.Event()
        self._futures: set[Future] = set()
        self._closed = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    @property
    def error(self) -> BaseException | None:
        """First exception raised by a task, if any."""
        return self._error

    def _raise_if_stopped(self) -> None:
        if self._error is not None:
            raise self._error
        if self._cancelled.is_set():
            raise ProcessingCancelled("Processing was cancelled")

    def submit(self, fn: Callable[..., R], *args: Any) -> "Future[R | None]":
        """Schedule ``fn(*args)`` on a worker thread.

        Blocks until a slot is free.

        Raises:
            Exception: The first task failure, if a task already failed.
            ProcessingCancelled: If the executor was cancelled.
            RuntimeError: If the executor is closed.
        """
        if self._closed:
            raise RuntimeError("Executor is closed")
        self._raise_if_stopped()
        self._slots.acquire()
        try:
            self._raise_if_stopped()
            future = self._pool.submit(self._run, fn, args)
        except BaseException:
            self._slots.release()
            raise
        with self._lock:
            self._futures.add(future)
        future.add_done_callback(self._forget)
        return future

    def _forget(self, future: Future) -> None:
        with self._lock:
            self._futures.discard(future)

    def _run(self, fn: Callable[..., R], args: tuple) -> R | None:
        try:
            if self._error is not None or self._cancelled.is_set():
                return None
            return fn(*args)
        except Exception as e:
            with self._lock:
                if self._error is None:
                    self._error = e
                    logger.debug("Task failed, skipping remaining tasks: %s", e)
            return None
        finally:
            self._slots.release()

    def wait(self) -> None:
        """Block until every submitted task has finished."""
        with self._lock:
            pending = list(self._futures)
        wait(pending)

    def join(self) -> None:
        """Wait for submitted tasks, then rethrow the first failure.

        The executor stays usable afterwards unless a task failed.

        Raises:
            Exception: The first task failure.
            ProcessingCancelled: If the executor was cancelled.
        """
        self.wait()
        self._raise_if_stopped()

    def map_unordered(self, fn: Callable[[T], R], items: Iterable[T]) -> list[R]:
        """Apply ``fn`` to every item, returning results in completion order.

        Raises:
            Exception: The first task failure.
        """
        futures = [self.submit(fn, item) for item in items]
        results = [future.result() for future in as_completed(futures)]
        self._raise_if_stopped()
        return results

    def cancel(self) -> None:
        """Request cooperative cancellation.

        Tasks which haven't started are skipped; running tasks complete.
        """
        logger.info("Cancelling processing")
        self._cancelled.set()

    def close(self) -> None:
        """Wait for all submitted tasks and release the worker threads.

        Raises:
            Exception: The first task failure.
            ProcessingCancelled: If the executor was cancelled.
        """
        if not self._closed:
            self._closed = True
            self._pool.shutdown(wait=True)
        self._raise_if_stopped()

    def __enter__(self) -> "ParallelExecutor":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if exc_type is None:
            self.close()
        else:
            # The in-flight exception wins over task failures
            self._closed = True
            self._pool.shutdown(wait=True)
        return False
