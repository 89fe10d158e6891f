"""Shared pytest fixtures for spectrohelio tests."""

from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from pathlib import Path

import numpy as np
import pytest

from spectrohelio.ser import ColorMode, ImageGeometry, ImageMetadata, SerFileWriter

WIDTH = 100
HEIGHT = 50
LINE_ROW = 25


def write_ser(
    path: Path,
    frames: list[np.ndarray],
    color_mode: ColorMode = ColorMode.MONO,
    depth: int = 16,
    byte_order: str = "<",
    metadata: ImageMetadata | None = None,
    timestamps: list[datetime] | None = None,
) -> Path:
    """Write frames to a SER file.

    Args:
        path: Output path.
        frames: Raw sample arrays, (H, W) or (H, W, 3) for RGB/BGR.
        color_mode: Color mode stored in the header.
        depth: Pixel depth stored in the header.
        byte_order: Byte order of 16-bit samples.
        metadata: Optional header metadata.
        timestamps: Optional per-frame timestamps.

    Returns:
        The written path.
    """
    height, width = frames[0].shape[:2]
    geometry = ImageGeometry(color_mode, width, height, depth, byte_order)
    with SerFileWriter(path, geometry, metadata) as writer:
        for i, frame in enumerate(frames):
            writer.write_frame(frame, timestamps[i] if timestamps else None)
    return path


def line_frame(values: np.ndarray | None = None) -> np.ndarray:
    """A 100x50 frame, black except for a bright horizontal line at row 25.

    Line values are above 32767 so that the whole 16-bit depth is used.
    """
    frame = np.zeros((HEIGHT, WIDTH), dtype=np.uint16)
    if values is None:
        values = 40000 + 100 * np.arange(WIDTH)
    frame[LINE_ROW] = values
    return frame


def curved_absorption_frame(shift: float = 0.0) -> np.ndarray:
    """A bright frame crossed by a curved dark line."""
    xs = np.arange(WIDTH, dtype=np.float64)
    ys = np.arange(HEIGHT, dtype=np.float64)[:, None]
    centers = 22 + 0.002 * (xs - 50) ** 2 + shift
    frame = 40000 - 35000 * np.exp(-(((ys - centers) / 1.5) ** 2))
    return np.rint(frame).astype(np.uint16)


@pytest.fixture
def ser_writer(tmp_path: Path) -> Callable[..., Path]:
    """Factory writing SER files under a temporary directory.

    Returns:
        Function ``(name, frames, **kwargs) -> Path``.
    """

    def factory(name: str, frames: list[np.ndarray], **kwargs) -> Path:
        return write_ser(tmp_path / name, frames, **kwargs)

    return factory


@pytest.fixture
def line_video(ser_writer) -> Path:
    """Ten identical 100x50 frames with a flat bright line at row 25."""
    return ser_writer("line.ser", [line_frame() for _ in range(10)])


@pytest.fixture
def blank_video(ser_writer) -> Path:
    """Ten black frames, where no sun edge can be detected."""
    return ser_writer(
        "blank.ser", [np.zeros((HEIGHT, WIDTH), dtype=np.uint16) for _ in range(10)]
    )


@pytest.fixture
def curved_video(ser_writer) -> Path:
    """Twelve frames with a curved absorption line moving slightly."""
    frames = [curved_absorption_frame(0.3 * i) for i in range(12)]
    return ser_writer("curved.ser", frames)


@pytest.fixture
def timestamps() -> list[datetime]:
    """Ten timestamps 40 ms apart (25 fps)."""
    start = datetime(2024, 4, 8, 18, 17, 0, tzinfo=timezone.utc)
    return [start + timedelta(milliseconds=40 * i) for i in range(10)]
