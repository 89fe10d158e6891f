"""Protocol interfaces for pipeline abstraction."""

import logging
from collections.abc import Iterator
from typing import Protocol, runtime_checkable

from ..ser import Frame, Header

logger = logging.getLogger(__name__)


@runtime_checkable
class FrameSource(Protocol):
    """Protocol for sequential access to the frames of a video.

    Satisfied by SerFileReader and ImageDirectorySource. A source keeps a
    cursor and is only read from one thread.
    """

    @property
    def header(self) -> Header:
        """Frame count and geometry of the video."""
        ...

    def seek_frame(self, index: int) -> None:
        """Move the cursor to ``index`` (modulo the frame count)."""
        ...

    def next_frame(self) -> None:
        """Move the cursor to the next frame."""
        ...

    def current_frame(self) -> Frame:
        """Return the raw frame under the cursor."""
        ...

    def __enter__(self):
        """Enter context manager."""
        ...

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Exit context manager."""
        ...


def iter_frames(
    source: FrameSource, start: int = 0, stop: int | None = None
) -> Iterator[Frame]:
    """Read frames ``[start, stop)`` sequentially from a source.

    Args:
        source: Frame source.
        start: First frame index.
        stop: End index (exclusive). None = end of video.

    Yields:
        Frames in index order.
    """
    frame_count = source.header.frame_count
    if stop is None or stop > frame_count:
        stop = frame_count
    if start >= stop:
        return
    source.seek_frame(start)
    for _ in range(start, stop):
        yield source.current_frame()
        source.next_frame()
