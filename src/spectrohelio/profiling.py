"""Stage timing helpers."""

import logging
import time
from collections.abc import Iterator
from contextlib import contextmanager


@contextmanager
def timed_stage(
    name: str, logger: logging.Logger, timings: dict[str, float] | None = None
) -> Iterator[None]:
    """Log how long the enclosed block took.

    Args:
        name: Stage name (e.g., "edge_detection", "reconstruction").
        logger: Logger receiving the duration at INFO level.
        timings: Optional mapping updated with the duration in seconds.

    Yields:
        None.
    """
    start = time.perf_counter()
    try:
        yield
    finally:
        elapsed = time.perf_counter() - start
        if timings is not None:
            timings[name] = elapsed
        logger.info("Stage %s took %.2fs", name, elapsed)
