"""Reader and writer for the SER video container.

A SER file is a fixed 178 byte header followed by uncompressed frames and an
optional trailer holding one 64-bit timestamp per frame. Timestamps (and the
dates stored in the header) count 100 ns ticks since 0001-01-01.
"""

import logging
import mmap
import re
import struct
from collections.abc import Iterator
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from enum import IntEnum
from pathlib import Path

import numpy as np

from .errors import SerFormatError

logger = logging.getLogger(__name__)

FILE_ID = "LUCAM-RECORDER"
HEADER_SIZE = 178
FRAME_COUNT_OFFSET = 38

# file id, camera, color id, endianness, width, height, depth, frame count,
# observer, instrument, telescope, local date, utc date
_HEADER_STRUCT = struct.Struct("<14s7i40s40s40sqq")

_BASE_DATE = datetime(1, 1, 1)
_FPS_PATTERN = re.compile(r"fps=([0-9]+(?:\.[0-9]*)?)")


class ColorMode(IntEnum):
    """Color encodings defined by the SER format."""

    MONO = 0
    BAYER_RGGB = 8
    BAYER_GRBG = 9
    BAYER_GBRG = 10
    BAYER_BGGR = 11
    BAYER_CYYM = 16
    BAYER_YCMY = 17
    BAYER_YMCY = 18
    BAYER_MYYC = 19
    RGB = 100
    BGR = 101

    @classmethod
    def of(cls, value: int) -> "ColorMode | None":
        """Return the color mode for a SER color id, or None if unknown."""
        try:
            return cls(value)
        except ValueError:
            return None

    @property
    def is_bayer(self) -> bool:
        return 8 <= self.value <= 19

    @property
    def number_of_planes(self) -> int:
        return 3 if self in (ColorMode.RGB, ColorMode.BGR) else 1


def ticks_to_datetime(ticks: int) -> datetime | None:
    """Convert a SER timestamp to a naive datetime (None when unset)."""
    if ticks <= 0:
        return None
    try:
        return _BASE_DATE + timedelta(microseconds=ticks // 10)
    except OverflowError:
        return None


def datetime_to_ticks(value: datetime | None) -> int:
    """Convert a datetime to a SER timestamp (-1 when value is None).

    Timezone-aware values are converted to UTC first.
    """
    if value is None:
        return -1
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    delta = value - _BASE_DATE
    return (delta.days * 86_400 + delta.seconds) * 10_000_000 + delta.microseconds * 10


@dataclass(frozen=True)
class ImageGeometry:
    """Frame geometry read from the SER header.

    Attributes:
        color_mode: Camera color encoding.
        width: Frame width in pixels.
        height: Frame height in pixels.
        pixel_depth_per_plane: Significant bits per sample (1-16).
        byte_order: Numpy byte order of 16-bit samples ("<" or ">").
    """

    color_mode: ColorMode
    width: int
    height: int
    pixel_depth_per_plane: int
    byte_order: str = "<"

    @property
    def bytes_per_pixel(self) -> int:
        return 1 if self.pixel_depth_per_plane <= 8 else 2

    @property
    def bytes_per_frame(self) -> int:
        return (
            self.width
            * self.height
            * self.color_mode.number_of_planes
            * self.bytes_per_pixel
        )

    @property
    def sample_dtype(self) -> np.dtype:
        """Numpy dtype of one raw sample."""
        if self.bytes_per_pixel == 1:
            return np.dtype(np.uint8)
        return np.dtype(f"{self.byte_order}u2")


@dataclass(frozen=True)
class ImageMetadata:
    """Free-form metadata stored in the SER header."""

    observer: str = ""
    instrument: str = ""
    telescope: str = ""
    has_timestamps: bool = False
    local_date: datetime | None = None
    utc_date: datetime | None = None


@dataclass(frozen=True)
class Header:
    """Parsed SER header."""

    camera_id: int
    geometry: ImageGeometry
    frame_count: int
    metadata: ImageMetadata = field(default_factory=ImageMetadata)


@dataclass(frozen=True)
class Frame:
    """One raw frame.

    Attributes:
        index: Frame index in the video.
        data: Raw frame bytes as a read-only uint8 array of
            ``geometry.bytes_per_frame`` entries.
        timestamp: Capture time (UTC), if the file carries timestamps.
    """

    index: int
    data: np.ndarray
    timestamp: datetime | None = None


def _decode_ascii(raw: bytes) -> str:
    return raw.split(b"\x00", 1)[0].decode("ascii", errors="replace").strip()


def _encode_ascii(value: str | None, length: int) -> bytes:
    data = (value or "").encode("ascii", errors="replace")[:length]
    return data.ljust(length, b"\x00")


def parse_header(raw: bytes) -> Header:
    """Parse the fixed-size SER header.

    Args:
        raw: At least ``HEADER_SIZE`` bytes from the start of the file.

    Returns:
        Parsed header.

    Raises:
        SerFormatError: If the header is truncated or has an invalid color
            id or endianness flag.
    """
    if len(raw) < HEADER_SIZE:
        raise SerFormatError(
            f"SER header is truncated ({len(raw)} bytes, expected {HEADER_SIZE})"
        )
    (
        _file_id,
        camera_id,
        color_id,
        endianness,
        width,
        height,
        depth,
        frame_count,
        observer,
        instrument,
        telescope,
        local_ticks,
        utc_ticks,
    ) = _HEADER_STRUCT.unpack_from(raw)

    color_mode = ColorMode.of(color_id)
    if color_mode is None:
        raise SerFormatError(f"Invalid color mode: {color_id}")
    # Capture software writes 1 for little endian data, despite what the
    # format description says.
    if endianness == 0:
        byte_order = ">"
    elif endianness == 1:
        byte_order = "<"
    else:
        raise SerFormatError(f"Invalid endian mode: {endianness}")
    if width <= 0 or height <= 0:
        raise SerFormatError(f"Invalid frame size: {width}x{height}")
    if not 1 <= depth <= 16:
        raise SerFormatError(f"Invalid pixel depth: {depth}")
    if frame_count < 0:
        raise SerFormatError(f"Invalid frame count: {frame_count}")

    local_date = ticks_to_datetime(local_ticks)
    return Header(
        camera_id=camera_id,
        geometry=ImageGeometry(color_mode, width, height, depth, byte_order),
        frame_count=frame_count,
        metadata=ImageMetadata(
            observer=_decode_ascii(observer),
            instrument=_decode_ascii(instrument),
            telescope=_decode_ascii(telescope),
            has_timestamps=local_date is not None,
            local_date=local_date,
            utc_date=ticks_to_datetime(utc_ticks),
        ),
    )


def build_header(header: Header) -> bytes:
    """Serialize a header to its 178 byte representation."""
    geometry = header.geometry
    return _HEADER_STRUCT.pack(
        FILE_ID.encode("ascii"),
        header.camera_id,
        int(geometry.color_mode),
        1 if geometry.byte_order == "<" else 0,
        geometry.width,
        geometry.height,
        geometry.pixel_depth_per_plane,
        header.frame_count,
        _encode_ascii(header.metadata.observer, 40),
        _encode_ascii(header.metadata.instrument, 40),
        _encode_ascii(header.metadata.telescope, 40),
        datetime_to_ticks(header.metadata.local_date),
        datetime_to_ticks(header.metadata.utc_date),
    )


class SerFileReader:
    """Sequential reader over a memory-mapped SER file.

    The reader keeps a cursor on the current frame. ``next_frame`` and
    ``seek_frame`` wrap around modulo the frame count, so the same reader can
    be iterated several times. It must not be shared between threads.

    Example:
        with SerFileReader.open("capture.ser") as reader:
            for frame in reader.frames():
                ...
    """

    def __init__(self, path: str | Path, fix_pixel_depth: bool = True):
        self.path = Path(path)
        self._mmap: mmap.mmap | None = None
        self._data: np.ndarray | None = None
        self._timestamps: np.ndarray | None = None
        self._current = 0
        self._fix_pixel_depth = fix_pixel_depth
        self._open()

    @classmethod
    def open(cls, path: str | Path) -> "SerFileReader":
        return cls(path)

    def _open(self) -> None:
        try:
            with open(self.path, "rb") as f:
                mapping = mmap.mmap(f.fileno(), 0, access=mmap.ACCESS_READ)
        except ValueError as e:
            # mmap refuses empty files
            raise SerFormatError(f"Cannot map SER file {self.path}: {e}") from e
        try:
            header = parse_header(mapping[:HEADER_SIZE])
            frames_end = (
                HEADER_SIZE + header.frame_count * header.geometry.bytes_per_frame
            )
            if len(mapping) < frames_end:
                raise SerFormatError(
                    f"SER file {self.path} is truncated: expected at least "
                    f"{frames_end} bytes, found {len(mapping)}"
                )
        except BaseException:
            mapping.close()
            raise
        data = np.frombuffer(mapping, dtype=np.uint8)

        timestamps = None
        trailer_end = frames_end + 8 * header.frame_count
        if header.frame_count > 0 and data.size >= trailer_end:
            timestamps = data[frames_end:trailer_end].view("<i8")
            if not np.any(timestamps > 0):
                timestamps = None
        elif header.metadata.has_timestamps:
            logger.debug("Timestamp trailer of %s is truncated, ignoring it", self.path)
        metadata = replace(header.metadata, has_timestamps=timestamps is not None)
        header = replace(header, metadata=metadata)

        self._mmap = mapping
        self._data = data
        self._timestamps = timestamps
        self._header = header
        self._current = 0
        if self._fix_pixel_depth:
            self._header = self._fixed_pixel_depth_header()

    def _fixed_pixel_depth_header(self) -> Header:
        """Derive the true pixel depth from sample values.

        Some capture software declares a pixel depth which doesn't match the
        data. A few frames around the middle of the video are sampled and the
        depth is taken from the largest value found.
        """
        header = self._header
        geometry = header.geometry
        if geometry.bytes_per_pixel != 2 or header.frame_count == 0:
            return header
        middle = header.frame_count // 2
        first = max(0, middle - 5)
        last = min(header.frame_count, middle + 5)
        max_value = 0
        for index in range(first, last):
            samples = self._frame_bytes(index).view(geometry.sample_dtype)
            max_value = max(max_value, int(samples.max(initial=0)))
        depth = min(16, max(9, max_value.bit_length()))
        if depth != geometry.pixel_depth_per_plane:
            logger.debug(
                "Adjusting pixel depth from %d to %d bits",
                geometry.pixel_depth_per_plane,
                depth,
            )
            geometry = replace(geometry, pixel_depth_per_plane=depth)
        return replace(header, geometry=geometry)

    def _assert_open(self) -> None:
        if self._data is None:
            raise ValueError(f"SER file {self.path} was closed")

    def _frame_bytes(self, index: int) -> np.ndarray:
        size = self._header.geometry.bytes_per_frame
        start = HEADER_SIZE + index * size
        return self._data[start : start + size]

    @property
    def header(self) -> Header:
        return self._header

    @property
    def closed(self) -> bool:
        return self._data is None

    @property
    def current_index(self) -> int:
        return self._current

    def current_frame(self) -> Frame:
        """Return the frame under the cursor."""
        self._assert_open()
        if self._header.frame_count == 0:
            raise IndexError(f"SER file {self.path} contains no frames")
        timestamp = None
        if self._timestamps is not None:
            timestamp = ticks_to_datetime(int(self._timestamps[self._current]))
            if timestamp is not None:
                timestamp = timestamp.replace(tzinfo=timezone.utc)
        return Frame(self._current, self._frame_bytes(self._current), timestamp)

    def next_frame(self) -> None:
        """Move the cursor to the next frame, wrapping at the end."""
        self._assert_open()
        if self._header.frame_count:
            self._current = (self._current + 1) % self._header.frame_count

    def seek_frame(self, index: int) -> None:
        self._assert_open()
        if self._header.frame_count:
            self._current = index % self._header.frame_count

    def seek_first(self) -> None:
        self.seek_frame(0)

    def seek_last(self) -> None:
        self.seek_frame(self._header.frame_count - 1)

    def frames(self, start: int = 0, stop: int | None = None) -> Iterator[Frame]:
        """Iterate sequentially over frames in ``[start, stop)``.

        Args:
            start: First frame index.
            stop: End index (exclusive). None = end of video.

        Yields:
            Frames in index order.
        """
        if stop is None or stop > self._header.frame_count:
            stop = self._header.frame_count
        if start >= stop:
            return
        self.seek_frame(start)
        for _ in range(start, stop):
            yield self.current_frame()
            self.next_frame()

    def estimate_fps(self) -> float | None:
        """Estimate the capture frame rate.

        Uses an ``fps=`` marker in the telescope field when present, otherwise
        the duration between the first and last frame timestamps.
        """
        match = _FPS_PATTERN.search(self._header.metadata.telescope)
        if match:
            return float(match.group(1))
        if self._timestamps is None or self._header.frame_count < 2:
            return None
        first = ticks_to_datetime(int(self._timestamps[0]))
        last = ticks_to_datetime(int(self._timestamps[-1]))
        if first is None or last is None:
            return None
        seconds = (last - first).total_seconds()
        if seconds <= 0:
            return None
        return self._header.frame_count / seconds

    def reopen(self) -> None:
        """Reopen the file after ``close`` for another pass."""
        if self._data is None:
            self._open()
        else:
            self.seek_first()

    def close(self) -> None:
        """Release the frame data and unmap the file."""
        mapping = self._mmap
        self._mmap = None
        self._data = None
        self._timestamps = None
        if mapping is None:
            return
        try:
            mapping.close()
        except BufferError:
            # Frames handed out still reference the mapping; it is released
            # when the last of them is garbage collected
            logger.debug("Frames of %s still in use, unmapping deferred", self.path)

    def __enter__(self) -> "SerFileReader":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


class SerFileWriter:
    """Writer producing a SER file frame by frame.

    The frame count in the header is patched and the timestamp trailer is
    appended when the writer is closed. Timestamps are only written when
    every frame was given one.

    Args:
        path: Output file path.
        geometry: Frame geometry.
        metadata: Header metadata (dates are written to the header).
        camera_id: Camera identifier stored in the header.
    """

    def __init__(
        self,
        path: str | Path,
        geometry: ImageGeometry,
        metadata: ImageMetadata | None = None,
        camera_id: int = 0,
    ):
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.geometry = geometry
        self.metadata = metadata or ImageMetadata()
        self.camera_id = camera_id
        self.frame_count = 0
        self._timestamps: list[int] = []
        self._file = open(self.path, "wb")
        header = Header(camera_id, geometry, 0, self.metadata)
        self._file.write(build_header(header))

    def write_frame(self, samples: np.ndarray, timestamp: datetime | None = None) -> None:
        """Append one frame.

        Args:
            samples: Raw sample values, shape (H, W) or (H, W, 3) for RGB/BGR
                geometries, in the file's sample representation.
            timestamp: Optional capture time.

        Raises:
            ValueError: If the sample count doesn't match the geometry.
        """
        geometry = self.geometry
        expected = geometry.width * geometry.height * geometry.color_mode.number_of_planes
        samples = np.asarray(samples)
        if samples.size != expected:
            raise ValueError(
                f"Frame has {samples.size} samples, expected {expected} "
                f"for {geometry.width}x{geometry.height} {geometry.color_mode.name}"
            )
        self._file.write(samples.astype(geometry.sample_dtype).tobytes())
        self.frame_count += 1
        if timestamp is not None:
            self._timestamps.append(datetime_to_ticks(timestamp))

    def close(self) -> None:
        if self._file.closed:
            return
        if self._timestamps and len(self._timestamps) == self.frame_count:
            self._file.write(np.asarray(self._timestamps, dtype="<i8").tobytes())
        self._file.seek(FRAME_COUNT_OFFSET)
        self._file.write(struct.pack("<i", self.frame_count))
        self._file.close()
        logger.debug("Wrote %d frames to %s", self.frame_count, self.path)

    def __enter__(self) -> "SerFileWriter":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


def trim_video(
    source: str | Path, destination: str | Path, start: int, stop: int | None = None
) -> int:
    """Copy frames ``[start, stop)`` of a SER file to a new file.

    Samples are copied unchanged, along with the header metadata and the
    frame timestamps when present.

    Args:
        source: Input SER file.
        destination: Output SER file.
        start: First frame to keep.
        stop: End of the kept range (exclusive). None = end of video.

    Returns:
        Number of frames written.

    Raises:
        ValueError: If the range is empty.
    """
    with SerFileReader(source, fix_pixel_depth=False) as reader:
        header = reader.header
        if stop is None or stop > header.frame_count:
            stop = header.frame_count
        start = max(0, start)
        if start >= stop:
            raise ValueError(
                f"Empty frame range [{start}, {stop}) for a video of "
                f"{header.frame_count} frames"
            )
        geometry = header.geometry
        with SerFileWriter(
            destination, geometry, header.metadata, header.camera_id
        ) as writer:
            for frame in reader.frames(start, stop):
                writer.write_frame(
                    frame.data.view(geometry.sample_dtype), frame.timestamp
                )
            count = writer.frame_count
    logger.info("Wrote frames %d to %d of %s to %s", start, stop - 1, source, destination)
    return count
