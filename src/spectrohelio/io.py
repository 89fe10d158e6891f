"""I/O adapters for SER videos, image directories and PNG output."""

import logging
from pathlib import Path

import cv2
import numpy as np

from .ser import ColorMode, Frame, Header, ImageGeometry, ImageMetadata, SerFileReader

logger = logging.getLogger(__name__)

IMAGE_EXTENSIONS = ("*.png", "*.tiff", "*.tif")


def detect_input_type(path: str | Path) -> str:
    """Detect whether a path is a SER video or a directory of frames.

    Args:
        path: Input path.

    Returns:
        "images" for a directory, "video" for a file.

    Raises:
        FileNotFoundError: If the path doesn't exist.
    """
    path = Path(path)
    if path.is_dir():
        return "images"
    if path.is_file():
        return "video"
    raise FileNotFoundError(f"Input not found: {path}")


class ImageDirectorySource:
    """Frame source over a directory of single-channel images.

    Frames are sorted by filename. 16-bit images are used as is, 8-bit
    images are reported with an 8-bit depth and color images are converted
    to grayscale.

    Args:
        directory: Directory containing PNG or TIFF frames.

    Raises:
        ValueError: If the directory is missing or holds no image.
        OSError: If the first image cannot be decoded.
    """

    def __init__(self, directory: str | Path):
        self.directory = Path(directory)
        if not self.directory.is_dir():
            raise ValueError(f"Frame directory does not exist: {self.directory}")

        files: list[Path] = []
        for ext in IMAGE_EXTENSIONS:
            files.extend(self.directory.glob(ext))
        if not files:
            raise ValueError(f"No images found in directory: {self.directory}")
        self.frame_files = sorted(files, key=lambda p: p.name)

        first = self._read(0)
        depth = 16 if first.dtype == np.uint16 else 8
        height, width = first.shape
        self._header = Header(
            camera_id=0,
            geometry=ImageGeometry(ColorMode.MONO, width, height, depth, "<"),
            frame_count=len(self.frame_files),
            metadata=ImageMetadata(instrument=self.directory.name),
        )
        self._current = 0
        logger.info(
            "Detected %d frames of %dx%d pixels (image directory input)",
            len(self.frame_files),
            width,
            height,
        )

    def _read(self, index: int) -> np.ndarray:
        path = self.frame_files[index]
        image = cv2.imread(str(path), cv2.IMREAD_UNCHANGED)
        if image is None:
            raise OSError(f"Failed to read image: {path}")
        if image.ndim == 3:
            code = cv2.COLOR_BGRA2GRAY if image.shape[2] == 4 else cv2.COLOR_BGR2GRAY
            image = cv2.cvtColor(image, code)
        if image.dtype not in (np.uint8, np.uint16):
            image = np.clip(image, 0, 65535).astype(np.uint16)
        return image

    @property
    def header(self) -> Header:
        return self._header

    @property
    def current_index(self) -> int:
        return self._current

    def seek_frame(self, index: int) -> None:
        self._current = index % self._header.frame_count

    def next_frame(self) -> None:
        self._current = (self._current + 1) % self._header.frame_count

    def current_frame(self) -> Frame:
        geometry = self._header.geometry
        image = self._read(self._current)
        if image.shape != (geometry.height, geometry.width):
            raise OSError(
                f"Frame {self.frame_files[self._current].name} has shape "
                f"{image.shape}, expected {(geometry.height, geometry.width)}"
            )
        data = np.frombuffer(image.astype(geometry.sample_dtype).tobytes(), np.uint8)
        return Frame(self._current, data)

    def close(self) -> None:
        pass

    def __enter__(self) -> "ImageDirectorySource":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


def open_frame_source(path: str | Path) -> SerFileReader | ImageDirectorySource:
    """Open a SER file or a directory of frames.

    Raises:
        FileNotFoundError: If the path doesn't exist.
        SerFormatError: If the SER file is malformed.
    """
    if detect_input_type(path) == "images":
        return ImageDirectorySource(path)
    return SerFileReader(path)


def save_png(path: str | Path, image: np.ndarray) -> Path:
    """Write a float image in the 16-bit range as a PNG.

    Args:
        path: Output path. Parent directories are created.
        image: (H, W) grayscale or (H, W, 3) RGB image; values are clipped
            to [0, 65535].

    Returns:
        The written path.

    Raises:
        OSError: If OpenCV fails to write the file.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    pixels = np.nan_to_num(np.asarray(image, dtype=np.float64), nan=0.0)
    pixels = np.clip(np.rint(pixels), 0, 65535).astype(np.uint16)
    if pixels.ndim == 3:
        # OpenCV expects BGR channel order
        pixels = np.ascontiguousarray(pixels[..., ::-1])
    try:
        written = cv2.imwrite(str(path), pixels)
    except cv2.error as e:
        raise OSError(f"Failed to write image: {path}: {e}") from e
    if not written:
        raise OSError(f"Failed to write image: {path}")
    logger.debug("Saved %s", path)
    return path
