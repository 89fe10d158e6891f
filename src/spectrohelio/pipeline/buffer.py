"""Preallocated output image shared by the frame tasks."""

import numpy as np


class ScanlineBuffer:
    """Flat float32 arena holding one reconstructed row per frame.

    Row ``r`` occupies ``[r * width, (r + 1) * width)``. Each frame task
    writes exactly one row and never reads another, so rows are written
    concurrently without locking. Per-row write counters record how many
    times each row was written.

    Args:
        width: Row length (frame width).
        height: Number of rows (frames in the transit window).
    """

    def __init__(self, width: int, height: int):
        if width <= 0 or height <= 0:
            raise ValueError(f"Invalid scanline buffer size: {width}x{height}")
        self.width = width
        self.height = height
        self._data = np.zeros(width * height, dtype=np.float32)
        self._writes = np.zeros(height, dtype=np.int64)

    def row_view(self, row: int) -> np.ndarray:
        """Writable view on one row."""
        if not 0 <= row < self.height:
            raise IndexError(f"Row {row} out of range [0, {self.height})")
        offset = row * self.width
        return self._data[offset : offset + self.width]

    def write_row(self, row: int, values: np.ndarray) -> None:
        """Copy ``values`` into a row."""
        self.row_view(row)[...] = values
        self._writes[row] += 1

    @property
    def write_counts(self) -> np.ndarray:
        return self._writes.copy()

    def as_image(self) -> np.ndarray:
        """(height, width) view on the buffer."""
        return self._data.reshape(self.height, self.width)
