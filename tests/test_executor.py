"""Tests for ParallelExecutor."""

import threading
import time

import pytest

from spectrohelio.errors import ProcessingCancelled
from spectrohelio.executor import ParallelExecutor


def fail(message: str = "boom") -> None:
    raise ValueError(message)


class TestParallelExecutor:
    """Tests for the bounded worker pool."""

    def test_map_unordered(self):
        """Test that every item is processed."""
        with ParallelExecutor(max_workers=4) as executor:
            results = executor.map_unordered(lambda x: x * x, range(20))

        assert sorted(results) == [x * x for x in range(20)]

    def test_join_keeps_executor_usable(self):
        """Test submitting work after a successful join."""
        seen = []
        with ParallelExecutor(max_workers=2) as executor:
            executor.submit(seen.append, 1)
            executor.join()
            executor.submit(seen.append, 2)
            executor.join()

        assert sorted(seen) == [1, 2]

    def test_backpressure(self):
        """Test that submit blocks while max_pending tasks are unfinished."""
        gate = threading.Event()
        executor = ParallelExecutor(max_workers=2, max_pending=3)
        for _ in range(3):
            executor.submit(gate.wait)

        submitter = threading.Thread(target=executor.submit, args=(lambda: None,))
        submitter.start()
        time.sleep(0.2)
        assert submitter.is_alive()

        gate.set()
        submitter.join(timeout=5)
        assert not submitter.is_alive()
        executor.close()

    def test_first_error_rethrown(self):
        """Test that join rethrows the first task failure."""
        executor = ParallelExecutor(max_workers=1)
        executor.submit(fail, "first")
        executor.wait()

        assert str(executor.error) == "first"
        with pytest.raises(ValueError, match="first"):
            executor.join()
        with pytest.raises(ValueError, match="first"):
            executor.close()

    def test_submit_after_failure(self):
        """Test that a failure stops further submissions."""
        executor = ParallelExecutor(max_workers=1)
        executor.submit(fail)
        executor.wait()

        with pytest.raises(ValueError, match="boom"):
            executor.submit(lambda: None)
        with pytest.raises(ValueError):
            executor.close()

    def test_pending_tasks_skipped_after_failure(self):
        """Test that queued tasks don't run once a task failed."""
        gate = threading.Event()
        ran = []
        executor = ParallelExecutor(max_workers=1, max_pending=10)

        def failing() -> None:
            gate.wait()
            fail()

        executor.submit(failing)
        for i in range(5):
            executor.submit(ran.append, i)
        gate.set()

        with pytest.raises(ValueError):
            executor.close()
        assert ran == []

    def test_context_manager_rethrows(self):
        """Test that leaving the block rethrows a task failure."""
        with pytest.raises(ValueError, match="boom"):
            with ParallelExecutor(max_workers=2) as executor:
                executor.submit(fail)

    def test_inflight_exception_wins(self):
        """Test that an exception raised in the block isn't replaced."""
        with pytest.raises(KeyError):
            with ParallelExecutor(max_workers=2) as executor:
                executor.submit(fail)
                executor.wait()
                raise KeyError("outer")

    def test_cancel(self):
        """Test cooperative cancellation."""
        executor = ParallelExecutor(max_workers=2)
        executor.cancel()

        assert executor.cancelled
        with pytest.raises(ProcessingCancelled):
            executor.submit(lambda: None)
        with pytest.raises(ProcessingCancelled):
            executor.join()
        with pytest.raises(ProcessingCancelled):
            executor.close()

    def test_closed(self):
        """Test that a closed executor rejects work."""
        executor = ParallelExecutor(max_workers=1)
        executor.close()

        with pytest.raises(RuntimeError, match="closed"):
            executor.submit(lambda: None)

    def test_invalid_sizes(self):
        """Test that negative sizes are rejected."""
        with pytest.raises(ValueError):
            ParallelExecutor(max_workers=-1)
