"""Display stretching of reconstructed images.

Strategies work in place on float arrays in the 16-bit range. ``stretch``
applies one to a copy so the reconstructed data is never modified.
"""

from typing import Protocol

import numpy as np

MAX_PIXEL_VALUE = 65535.0


class StretchingStrategy(Protocol):
    def apply(self, data: np.ndarray) -> None:
        """Stretch ``data`` in place."""
        ...


class LinearStretchingStrategy:
    """Rescale the ``min..max`` range of an image to ``lo..hi``.

    Constant images map to ``lo``. NaN values are ignored when finding the
    range and are written as ``lo``.
    """

    def __init__(self, lo: float = 0.0, hi: float = MAX_PIXEL_VALUE):
        self.lo = lo
        self.hi = hi

    def apply(self, data: np.ndarray) -> None:
        if data.size == 0:
            return
        finite = np.isfinite(data)
        if not finite.any():
            data[...] = self.lo
            return
        vmin = float(data[finite].min())
        vmax = float(data[finite].max())
        if vmax > vmin:
            scale = (self.hi - self.lo) / (vmax - vmin)
            np.subtract(data, vmin, out=data)
            np.multiply(data, scale, out=data)
            np.add(data, self.lo, out=data)
        else:
            data[...] = self.lo
        data[~finite] = self.lo


class CutoffStretchingStrategy:
    """Clip values to ``[lo, hi]``."""

    def __init__(self, lo: float = 0.0, hi: float = MAX_PIXEL_VALUE):
        self.lo = lo
        self.hi = hi

    def apply(self, data: np.ndarray) -> None:
        np.clip(data, self.lo, self.hi, out=data)


class ArcsinhStretchingStrategy:
    """Arcsinh stretch which brings out faint features.

    Each pixel ``v`` (normalized to ``[0, 1]``) becomes
    ``max(0, v - bp) * asinh(v * s) / (v * asinh(s))`` where ``bp`` is the
    normalized black point and ``s`` the stretch factor. Zero pixels (NaN
    after the division) become 0. The result is clipped then linearly
    stretched to the full range.

    Args:
        black_point: Black point in pixel units.
        stretch: Stretch factor, capped at ``max_stretch``.
        max_stretch: Upper bound for the stretch factor.
    """

    def __init__(self, black_point: float, stretch: float, max_stretch: float):
        if stretch <= 0:
            raise ValueError(f"stretch must be positive, got {stretch}")
        self.black_point = black_point
        self.stretch = min(stretch, max_stretch)
        self.max_stretch = max_stretch

    def apply(self, data: np.ndarray) -> None:
        original = data.astype(np.float64) / MAX_PIXEL_VALUE
        pixel = np.maximum(0.0, original - self.black_point / MAX_PIXEL_VALUE)
        with np.errstate(divide="ignore", invalid="ignore"):
            stretched = (pixel * np.arcsinh(original * self.stretch)) / (
                original * np.arcsinh(self.stretch)
            )
        stretched = np.nan_to_num(
            stretched * MAX_PIXEL_VALUE, nan=0.0, posinf=MAX_PIXEL_VALUE, neginf=0.0
        )
        data[...] = np.clip(stretched, 0.0, MAX_PIXEL_VALUE)
        LinearStretchingStrategy().apply(data)


class ChainedStretchingStrategy:
    """Apply several strategies in order."""

    def __init__(self, *strategies: StretchingStrategy):
        self.strategies = strategies

    def apply(self, data: np.ndarray) -> None:
        for strategy in self.strategies:
            strategy.apply(data)


def stretch(image: np.ndarray, strategy: StretchingStrategy) -> np.ndarray:
    """Return a stretched float32 copy of ``image``."""
    result = np.array(image, dtype=np.float32, copy=True)
    strategy.apply(result)
    return result


def linear_pipeline() -> StretchingStrategy:
    """Strategy used for ``linear.png``."""
    return ChainedStretchingStrategy(
        CutoffStretchingStrategy(), LinearStretchingStrategy()
    )


def arcsinh_pipeline(
    black_point: float = 0.0, stretch_factor: float = 10.0, max_stretch: float = 10.0
) -> StretchingStrategy:
    """Strategy used for ``streched.png``."""
    return ChainedStretchingStrategy(
        CutoffStretchingStrategy(),
        ArcsinhStretchingStrategy(black_point, stretch_factor, max_stretch),
        LinearStretchingStrategy(),
    )
