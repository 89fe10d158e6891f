"""Spectral line detection and distortion polynomial fitting."""

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Literal

import numpy as np

logger = logging.getLogger(__name__)

LineType = Literal["absorption", "emission"]


@dataclass(frozen=True)
class SpectrumLine:
    """Vertical extent of the spectral line in one column."""

    x: int
    top: float
    bottom: float

    @property
    def middle(self) -> float:
        return (self.top + self.bottom) / 2


@dataclass(frozen=True)
class DistortionPolynomial:
    """Second-order model of the line center: ``a*x**2 + b*x + c``."""

    a: float
    b: float
    c: float

    def __call__(self, x):
        """Evaluate at a scalar or array of column positions."""
        return (self.a * x + self.b) * x + self.c

    def shifted(self, dc: float) -> "DistortionPolynomial":
        """Return the polynomial translated vertically by ``dc``."""
        return DistortionPolynomial(self.a, self.b, self.c + dc)

    def as_tuple(self) -> tuple[float, float, float]:
        return self.a, self.b, self.c


@dataclass(frozen=True)
class SpectrumAnalysis:
    """Result of analyzing one spectrum frame.

    Attributes:
        lines: One entry per column, None where no line was detected.
        left_border: First column on the solar disk, or None.
        right_border: Last column on the solar disk, or None.
        min: Minimum pixel value of the frame.
        max: Maximum pixel value of the frame.
        avg: Mean pixel value of the frame.
        polynomial: Fitted line model, or None if too few columns were
            detected.
    """

    lines: tuple[SpectrumLine | None, ...]
    left_border: int | None
    right_border: int | None
    min: float
    max: float
    avg: float
    polynomial: DistortionPolynomial | None

    @property
    def left_sun_border(self) -> int | None:
        return self.left_border

    @property
    def right_sun_border(self) -> int | None:
        return self.right_border

    @property
    def detected_lines(self) -> list[SpectrumLine]:
        return [line for line in self.lines if line is not None]


def second_order_regression(
    xs: Sequence[float] | np.ndarray, ys: Sequence[float] | np.ndarray
) -> DistortionPolynomial:
    """Least-squares fit of ``y = a*x**2 + b*x + c``."""
    a, b, c = np.polyfit(
        np.asarray(xs, dtype=np.float64), np.asarray(ys, dtype=np.float64), 2
    )
    return DistortionPolynomial(float(a), float(b), float(c))


def find_distortion_polynomial(
    lines: Sequence[SpectrumLine | None], min_detected_columns: int = 3
) -> DistortionPolynomial | None:
    """Fit the distortion polynomial through the line centers.

    Args:
        lines: Per-column detections (None entries are skipped).
        min_detected_columns: Minimum number of detections needed for a fit.

    Returns:
        Fitted polynomial, or None when there are too few detections.
    """
    detected = [line for line in lines if line is not None]
    if len(detected) < max(3, min_detected_columns):
        return None
    xs = [line.x for line in detected]
    ys = [line.middle for line in detected]
    return second_order_regression(xs, ys)


class SpectrumFrameAnalyzer:
    """Detects the spectral line in frames of a given size.

    An absorption pixel belongs to the line when its squared intensity is
    below ``spectrum_detection_threshold`` times the mean squared intensity
    of its column. An emission pixel belongs to it when its squared intensity
    is above the column mean divided by the same ratio, so one threshold
    suits both line types. The analyzer holds no state between calls and
    can be shared by worker threads.

    Args:
        width: Frame width.
        height: Frame height.
        spectrum_detection_threshold: Line detection ratio.
        sun_detection_threshold: Column mean above which a column is
            considered part of the solar disk.
        line_type: "absorption" for dark lines, "emission" for bright lines.
        min_detected_columns: Minimum detections required for a fit.
        column_step: Stride between analyzed columns.
    """

    def __init__(
        self,
        width: int,
        height: int,
        spectrum_detection_threshold: float,
        sun_detection_threshold: float = 5000.0,
        line_type: LineType = "absorption",
        min_detected_columns: int = 3,
        column_step: int = 1,
    ):
        if line_type not in ("absorption", "emission"):
            raise ValueError(f"Unknown line type: {line_type}")
        if column_step < 1:
            raise ValueError(f"column_step must be >= 1, got {column_step}")
        self.width = width
        self.height = height
        self.spectrum_detection_threshold = spectrum_detection_threshold
        self.sun_detection_threshold = sun_detection_threshold
        self.line_type = line_type
        self.min_detected_columns = min_detected_columns
        self.column_step = column_step

    def find_sun_borders(self, buffer: np.ndarray) -> tuple[int | None, int | None]:
        """Return the first and last columns whose mean exceeds the sun threshold."""
        column_means = buffer.mean(axis=0, dtype=np.float64)
        on_disk = np.flatnonzero(column_means > self.sun_detection_threshold)
        if on_disk.size == 0:
            return None, None
        return int(on_disk[0]), int(on_disk[-1])

    def find_lines(
        self, buffer: np.ndarray, left: int | None = None, right: int | None = None
    ) -> list[SpectrumLine | None]:
        """Detect the line bounds in each column of ``[left, right]``."""
        lines: list[SpectrumLine | None] = [None] * self.width
        first = 0 if left is None else left
        last = self.width - 1 if right is None else right
        columns = np.arange(first, last + 1, self.column_step)
        if columns.size == 0:
            return lines

        squared = np.square(buffer[:, columns], dtype=np.float64)
        means = squared.mean(axis=0)
        threshold = self.spectrum_detection_threshold
        if self.line_type == "absorption":
            on_line = squared < threshold * means
        else:
            # Bright lines use the reciprocal ratio
            on_line = squared * threshold > means
        found = on_line.any(axis=0)
        tops = np.argmax(on_line, axis=0)
        bottoms = self.height - 1 - np.argmax(on_line[::-1], axis=0)
        for i in np.flatnonzero(found):
            x = int(columns[i])
            lines[x] = SpectrumLine(x, float(tops[i]), float(bottoms[i]))
        return lines

    def analyze(self, buffer: np.ndarray) -> SpectrumAnalysis:
        """Analyze one converted frame.

        Args:
            buffer: Channel buffer of shape (height, width).

        Returns:
            Immutable analysis result.

        Raises:
            ValueError: If the buffer shape doesn't match the analyzer.
        """
        if buffer.shape != (self.height, self.width):
            raise ValueError(
                f"Expected a {self.width}x{self.height} buffer, got shape {buffer.shape}"
            )
        left, right = self.find_sun_borders(buffer)
        lines = self.find_lines(buffer, left, right)
        polynomial = find_distortion_polynomial(lines, self.min_detected_columns)
        return SpectrumAnalysis(
            lines=tuple(lines),
            left_border=left,
            right_border=right,
            min=float(buffer.min()),
            max=float(buffer.max()),
            avg=float(buffer.mean(dtype=np.float64)),
            polynomial=polynomial,
        )
