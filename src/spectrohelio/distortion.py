"""Straightening of spectrum frames along the fitted line model."""

from typing import Literal

import numpy as np

from .spectrum import DistortionPolynomial, SpectrumAnalysis

InvalidPixelPolicy = Literal["clamp", "nan"]


def source_rows(
    polynomial: DistortionPolynomial, width: int, height: int
) -> np.ndarray:
    """Fractional input row sampled by each output pixel.

    The line modelled by ``polynomial`` is moved to row ``height / 2``.

    Returns:
        float64 array of shape (height, width).
    """
    offsets = polynomial(np.arange(width, dtype=np.float64)) - height / 2
    return np.arange(height, dtype=np.float64)[:, None] + offsets[None, :]


def correct_distortion(
    buffer: np.ndarray,
    polynomial: DistortionPolynomial,
    *,
    invalid: InvalidPixelPolicy = "clamp",
) -> np.ndarray:
    """Resample a frame so that the spectral line becomes horizontal.

    Output pixel ``(x, y)`` reads the input at row ``y + p(x) - height / 2``,
    interpolating linearly between the two nearest rows.

    Args:
        buffer: Channel buffer of shape (height, width). Not modified.
        polynomial: Line model of the frame.
        invalid: What to write where the source row falls outside the
            frame: "clamp" replicates the border row, "nan" writes NaN.

    Returns:
        New float32 buffer of the same shape.
    """
    if invalid not in ("clamp", "nan"):
        raise ValueError(f"Unknown invalid pixel policy: {invalid}")
    height, width = buffer.shape
    rows = source_rows(polynomial, width, height)
    lower = np.floor(rows)
    weight = rows - lower
    lower = lower.astype(np.intp)
    top = np.clip(lower, 0, height - 1)
    bottom = np.clip(lower + 1, 0, height - 1)

    data = buffer.astype(np.float64, copy=False)
    corrected = (1.0 - weight) * np.take_along_axis(data, top, axis=0)
    corrected += weight * np.take_along_axis(data, bottom, axis=0)
    if invalid == "nan":
        corrected[(rows < 0) | (rows > height - 1)] = np.nan
    return corrected.astype(np.float32)


def corrected_line_center(
    analysis: SpectrumAnalysis, polynomial: DistortionPolynomial, height: int
) -> float | None:
    """Average row of the detected line once the frame is corrected.

    Each column's top and bottom bounds are moved by ``height / 2 - p(x)``;
    absent columns are skipped.

    Returns:
        The mean corrected center, or None if no column was detected.
    """
    lines = analysis.detected_lines
    if not lines:
        return None
    xs = np.array([line.x for line in lines], dtype=np.float64)
    middles = np.array([line.middle for line in lines], dtype=np.float64)
    return float(np.mean(middles - polynomial(xs) + height / 2))
