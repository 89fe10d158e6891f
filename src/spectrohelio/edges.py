"""Detection of the frames where the solar disk crosses the slit."""

import logging
from collections.abc import Iterable
from dataclasses import dataclass

import numpy as np

from .converter import ImageConverter
from .errors import ProcessingError
from .executor import ParallelExecutor
from .ser import Frame, ImageGeometry

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TransitWindow:
    """Range of frames ``[start, end)`` used for reconstruction."""

    start: int
    end: int

    @classmethod
    def from_edges(
        cls, start_edge: int, end_edge: int, margin: int, frame_count: int
    ) -> "TransitWindow":
        """Widen the detected edges by ``margin`` frames on each side."""
        return cls(
            start=max(0, start_edge - margin),
            end=min(end_edge + margin + 1, frame_count),
        )

    @property
    def frame_count(self) -> int:
        return self.end - self.start

    def __contains__(self, index: int) -> bool:
        return self.start <= index < self.end


class SunEdgeDetector:
    """Base class for detectors scoring each frame independently.

    Subclasses implement ``measure`` (per-frame score) and ``find_edges``.
    """

    def measure(self, buffer: np.ndarray) -> float:
        raise NotImplementedError

    def find_edges(self, values: np.ndarray) -> tuple[int, int] | None:
        raise NotImplementedError

    def detect(
        self,
        frames: Iterable[Frame],
        geometry: ImageGeometry,
        frame_count: int,
        converter: ImageConverter,
        executor: ParallelExecutor,
    ) -> tuple[int, int] | None:
        """Score every frame on the executor and locate the transit edges.

        Args:
            frames: Frames to score, read sequentially.
            geometry: Frame geometry.
            frame_count: Number of frames in the video.
            converter: Converter producing channel buffers.
            executor: Worker pool.

        Returns:
            ``(first, last)`` frame indices on the disk, or None.

        Raises:
            ProcessingError: If a frame cannot be converted.
        """

        def score(frame: Frame) -> tuple[int, float]:
            try:
                buffer = converter.create_buffer(geometry)
                converter.convert(frame.index, frame.data, geometry, buffer)
                return frame.index, self.measure(buffer)
            except ProcessingError:
                raise
            except Exception as e:
                raise ProcessingError(str(e), frame_index=frame.index) from e

        values = np.zeros(frame_count, dtype=np.float64)
        for index, value in executor.map_unordered(score, frames):
            values[index] = value
        edges = self.find_edges(values)
        if edges is None:
            logger.info("No sun edges detected")
        else:
            logger.info("Sun edges detected at frames %d and %d", *edges)
        return edges


class MagnitudeSunEdgeDetector(SunEdgeDetector):
    """Edge detector based on the FFT magnitude of each frame.

    A frame's score is the peak magnitude of the Fourier transform of its
    column-averaged intensity profile. Frames scoring at least
    ``(max - min) / divisor`` are on the disk.
    """

    def __init__(self, divisor: float = 50.0):
        self.divisor = divisor

    def measure(self, buffer: np.ndarray) -> float:
        profile = buffer.mean(axis=0, dtype=np.float64)
        size = 1 << max(0, (profile.size - 1).bit_length())
        padded = np.zeros(size, dtype=np.float64)
        padded[size - profile.size :] = profile
        return float(np.abs(np.fft.fft(padded)).max())

    def find_edges(self, values: np.ndarray) -> tuple[int, int] | None:
        if values.size == 0 or not np.any(values > 0):
            return None
        threshold = (values.max() - values.min()) / self.divisor
        above = np.flatnonzero(values >= threshold)
        return int(above[0]), int(above[-1])


class StatsSunEdgeDetector(SunEdgeDetector):
    """Edge detector based on frame statistics.

    A frame is on the disk when its standard deviation exceeds ``ratio``
    times its mean.
    """

    def __init__(self, ratio: float = 0.42):
        self.ratio = ratio

    def measure(self, buffer: np.ndarray) -> float:
        mean = float(buffer.mean(dtype=np.float64))
        std = float(buffer.std(dtype=np.float64))
        return 1.0 if std > self.ratio * mean else 0.0

    def find_edges(self, values: np.ndarray) -> tuple[int, int] | None:
        on_disk = np.flatnonzero(values > 0)
        if on_disk.size == 0:
            return None
        return int(on_disk[0]), int(on_disk[-1])


def create_edge_detector(kind: str) -> SunEdgeDetector:
    """Build an edge detector by name ("magnitude" or "stats")."""
    if kind == "magnitude":
        return MagnitudeSunEdgeDetector()
    if kind == "stats":
        return StatsSunEdgeDetector()
    raise ValueError(f"Unknown edge detector: {kind}")
