"""Tests for the SER reader and writer."""

import struct
from datetime import datetime, timezone
from pathlib import Path

import numpy as np
import pytest

from spectrohelio.errors import SerFormatError
from spectrohelio.ser import (
    HEADER_SIZE,
    ColorMode,
    ImageGeometry,
    ImageMetadata,
    SerFileReader,
    SerFileWriter,
    datetime_to_ticks,
    ticks_to_datetime,
    trim_video,
)

from conftest import line_frame


def numbered_frames(count: int = 5, width: int = 8, height: int = 4) -> list[np.ndarray]:
    """Frames whose pixels all hold 40000 + frame index."""
    return [np.full((height, width), 40000 + i, dtype=np.uint16) for i in range(count)]


class TestHeader:
    """Tests for header parsing."""

    def test_header_fields(self, ser_writer):
        """Test that written header fields are read back."""
        metadata = ImageMetadata(
            observer="Observer", instrument="Sol'Ex", telescope="Refractor 80mm"
        )
        path = ser_writer("video.ser", numbered_frames(), metadata=metadata)

        with SerFileReader(path) as reader:
            header = reader.header
            assert header.frame_count == 5
            assert header.geometry == ImageGeometry(ColorMode.MONO, 8, 4, 16, "<")
            assert header.metadata.observer == "Observer"
            assert header.metadata.instrument == "Sol'Ex"
            assert header.metadata.telescope == "Refractor 80mm"
            assert header.metadata.has_timestamps is False

    def test_header_size(self, ser_writer):
        """Test that frame data starts right after the 178 byte header."""
        path = ser_writer("video.ser", numbered_frames(count=1))
        assert path.stat().st_size == HEADER_SIZE + 8 * 4 * 2

    def test_geometry_sizes(self):
        """Test byte sizes derived from the geometry."""
        mono8 = ImageGeometry(ColorMode.MONO, 10, 5, 8)
        rgb16 = ImageGeometry(ColorMode.RGB, 10, 5, 12)
        assert mono8.bytes_per_pixel == 1
        assert mono8.bytes_per_frame == 50
        assert rgb16.bytes_per_pixel == 2
        assert rgb16.bytes_per_frame == 300

    def test_color_mode_properties(self):
        """Test Bayer and plane count helpers."""
        assert ColorMode.BAYER_RGGB.is_bayer
        assert not ColorMode.MONO.is_bayer
        assert ColorMode.BGR.number_of_planes == 3
        assert ColorMode.of(42) is None

    def test_invalid_color_mode(self, ser_writer):
        """Test that an unknown color id is rejected."""
        path = ser_writer("video.ser", numbered_frames())
        with open(path, "r+b") as f:
            f.seek(18)
            f.write(struct.pack("<i", 5))

        with pytest.raises(SerFormatError, match="color mode"):
            SerFileReader(path)

    def test_invalid_endianness(self, ser_writer):
        """Test that an unknown endianness flag is rejected."""
        path = ser_writer("video.ser", numbered_frames())
        with open(path, "r+b") as f:
            f.seek(22)
            f.write(struct.pack("<i", 7))

        with pytest.raises(SerFormatError, match="endian"):
            SerFileReader(path)

    def test_truncated_frames(self, ser_writer):
        """Test that missing frame data is reported."""
        path = ser_writer("video.ser", numbered_frames())
        with open(path, "r+b") as f:
            f.truncate(path.stat().st_size - 10)

        with pytest.raises(SerFormatError, match="truncated"):
            SerFileReader(path)

    def test_truncated_header(self, tmp_path: Path):
        """Test that a file shorter than the header is rejected."""
        path = tmp_path / "short.ser"
        path.write_bytes(b"LUCAM-RECORDER")

        with pytest.raises(SerFormatError):
            SerFileReader(path)

    def test_empty_file(self, tmp_path: Path):
        """Test that an empty file is rejected."""
        path = tmp_path / "empty.ser"
        path.touch()

        with pytest.raises(SerFormatError):
            SerFileReader(path)

    def test_missing_file(self, tmp_path: Path):
        """Test that a missing file raises FileNotFoundError."""
        with pytest.raises(FileNotFoundError):
            SerFileReader(tmp_path / "missing.ser")


class TestFrameAccess:
    """Tests for frame navigation."""

    def test_current_frame_data(self, ser_writer):
        """Test that frame bytes decode to the written samples."""
        path = ser_writer("video.ser", numbered_frames())

        with SerFileReader(path) as reader:
            reader.seek_frame(3)
            frame = reader.current_frame()
            samples = frame.data.view(reader.header.geometry.sample_dtype)
            assert frame.index == 3
            assert frame.data.size == reader.header.geometry.bytes_per_frame
            assert np.all(samples == 40003)

    def test_next_frame_wraps(self, ser_writer):
        """Test that next_frame wraps around at the end of the video."""
        path = ser_writer("video.ser", numbered_frames())

        with SerFileReader(path) as reader:
            reader.seek_last()
            assert reader.current_frame().index == 4
            reader.next_frame()
            assert reader.current_frame().index == 0

    def test_seek_is_modulo_frame_count(self, ser_writer):
        """Test that seeking past the end wraps around."""
        path = ser_writer("video.ser", numbered_frames())

        with SerFileReader(path) as reader:
            reader.seek_frame(7)
            assert reader.current_index == 2

    def test_frames_range(self, ser_writer):
        """Test iterating over a range of frames."""
        path = ser_writer("video.ser", numbered_frames())

        with SerFileReader(path) as reader:
            assert [f.index for f in reader.frames(1, 4)] == [1, 2, 3]
            assert [f.index for f in reader.frames()] == [0, 1, 2, 3, 4]
            assert list(reader.frames(3, 3)) == []

    def test_access_after_close(self, ser_writer):
        """Test that reading a closed file raises ValueError."""
        path = ser_writer("video.ser", numbered_frames())
        reader = SerFileReader(path)
        reader.close()

        assert reader.closed
        with pytest.raises(ValueError, match="closed"):
            reader.current_frame()

    def test_close_unmaps_file(self, ser_writer):
        """Test that closing the reader closes the memory map."""
        path = ser_writer("video.ser", numbered_frames())
        reader = SerFileReader(path)
        mapping = reader._mmap

        reader.close()

        assert mapping.closed
        assert reader._mmap is None

    def test_frames_outlive_close(self, ser_writer):
        """Test that a frame kept after close still holds its samples."""
        path = ser_writer("video.ser", numbered_frames())

        with SerFileReader(path) as reader:
            dtype = reader.header.geometry.sample_dtype
            frame = reader.current_frame()

        assert reader.closed
        assert np.all(frame.data.view(dtype) == 40000)

    def test_reopen(self, ser_writer):
        """Test that a closed reader can be reopened for a second pass."""
        path = ser_writer("video.ser", numbered_frames())
        reader = SerFileReader(path)
        first_pass = [f.index for f in reader.frames()]
        reader.close()

        reader.reopen()
        second_pass = [f.index for f in reader.frames()]
        reader.close()

        assert first_pass == second_pass

    def test_big_endian_samples(self, ser_writer):
        """Test reading 16-bit samples stored big endian."""
        path = ser_writer("video.ser", numbered_frames(), byte_order=">")

        with SerFileReader(path) as reader:
            geometry = reader.header.geometry
            assert geometry.byte_order == ">"
            samples = reader.current_frame().data.view(geometry.sample_dtype)
            assert np.all(samples == 40000)

    def test_eight_bit_frames(self, ser_writer):
        """Test reading 8-bit frames."""
        frames = [np.full((4, 8), 200, dtype=np.uint8) for _ in range(3)]
        path = ser_writer("video.ser", frames, depth=8)

        with SerFileReader(path) as reader:
            assert reader.header.geometry.bytes_per_pixel == 1
            assert np.all(reader.current_frame().data == 200)


class TestPixelDepth:
    """Tests for pixel depth detection."""

    def test_depth_from_samples(self, ser_writer):
        """Test that a wrong header depth is replaced by the sampled one."""
        frames = [np.full((4, 8), 4000, dtype=np.uint16) for _ in range(3)]
        path = ser_writer("video.ser", frames, depth=16)

        with SerFileReader(path) as reader:
            assert reader.header.geometry.pixel_depth_per_plane == 12

    def test_depth_keeps_two_bytes(self, ser_writer):
        """Test that small 16-bit values don't turn the file into 8-bit."""
        frames = [np.full((4, 8), 100, dtype=np.uint16) for _ in range(3)]
        path = ser_writer("video.ser", frames, depth=16)

        with SerFileReader(path) as reader:
            assert reader.header.geometry.bytes_per_pixel == 2
            assert reader.header.geometry.pixel_depth_per_plane == 9

    def test_full_depth_unchanged(self, line_video):
        """Test that 16-bit data keeps a 16-bit depth."""
        with SerFileReader(line_video) as reader:
            assert reader.header.geometry.pixel_depth_per_plane == 16


class TestTimestamps:
    """Tests for timestamps and frame rate estimation."""

    def test_ticks_round_trip(self):
        """Test conversion between datetimes and SER ticks."""
        value = datetime(2024, 4, 8, 18, 17, 3, 250000)
        assert ticks_to_datetime(datetime_to_ticks(value)) == value
        assert ticks_to_datetime(0) is None
        assert ticks_to_datetime(-1) is None
        assert datetime_to_ticks(None) == -1

    def test_frame_timestamps(self, ser_writer, timestamps):
        """Test that per-frame timestamps are read from the trailer."""
        frames = [line_frame() for _ in range(10)]
        path = ser_writer("video.ser", frames, timestamps=timestamps)

        with SerFileReader(path) as reader:
            assert reader.header.metadata.has_timestamps
            reader.seek_frame(4)
            assert reader.current_frame().timestamp == timestamps[4]

    def test_truncated_trailer_disables_timestamps(self, ser_writer, timestamps):
        """Test that a partial timestamp trailer is ignored."""
        frames = [line_frame() for _ in range(10)]
        path = ser_writer("video.ser", frames, timestamps=timestamps)
        with open(path, "r+b") as f:
            f.truncate(path.stat().st_size - 4)

        with SerFileReader(path) as reader:
            assert not reader.header.metadata.has_timestamps
            assert reader.current_frame().timestamp is None

    def test_fps_from_telescope_field(self, ser_writer):
        """Test the fps= marker written by some capture software."""
        metadata = ImageMetadata(telescope="Sol'Ex fps=42.5 gain=100")
        path = ser_writer("video.ser", numbered_frames(), metadata=metadata)

        with SerFileReader(path) as reader:
            assert reader.estimate_fps() == pytest.approx(42.5)

    def test_fps_from_timestamps(self, ser_writer, timestamps):
        """Test frame rate estimation from the first and last timestamps."""
        frames = [line_frame() for _ in range(10)]
        path = ser_writer("video.ser", frames, timestamps=timestamps)

        with SerFileReader(path) as reader:
            assert reader.estimate_fps() == pytest.approx(10 / 0.36)

    def test_fps_unknown(self, ser_writer):
        """Test that fps is None without marker or timestamps."""
        path = ser_writer("video.ser", numbered_frames())

        with SerFileReader(path) as reader:
            assert reader.estimate_fps() is None

    def test_header_dates(self, ser_writer):
        """Test that header dates are stored."""
        date = datetime(2024, 4, 8, 18, 17, 0)
        metadata = ImageMetadata(local_date=date, utc_date=date)
        path = ser_writer("video.ser", numbered_frames(), metadata=metadata)

        with SerFileReader(path) as reader:
            assert reader.header.metadata.utc_date == date


class TestWriter:
    """Tests for SerFileWriter."""

    def test_wrong_sample_count(self, tmp_path: Path):
        """Test that frames of the wrong size are rejected."""
        geometry = ImageGeometry(ColorMode.MONO, 8, 4, 16)
        with SerFileWriter(tmp_path / "video.ser", geometry) as writer:
            with pytest.raises(ValueError, match="samples"):
                writer.write_frame(np.zeros((3, 8), dtype=np.uint16))

    def test_rgb_frames(self, ser_writer):
        """Test writing interleaved RGB frames."""
        frames = [np.full((4, 8, 3), 40000, dtype=np.uint16) for _ in range(2)]
        path = ser_writer("video.ser", frames, color_mode=ColorMode.RGB)

        with SerFileReader(path) as reader:
            assert reader.header.geometry.color_mode == ColorMode.RGB
            assert reader.current_frame().data.size == 4 * 8 * 3 * 2


class TestTrim:
    """Tests for trim_video."""

    def test_trim_range(self, ser_writer, tmp_path: Path):
        """Test copying a frame range to a new file."""
        path = ser_writer("video.ser", numbered_frames(count=10))
        output = tmp_path / "trimmed.ser"

        count = trim_video(path, output, 2, 6)

        assert count == 4
        with SerFileReader(output) as reader:
            assert reader.header.frame_count == 4
            values = [
                int(f.data.view(reader.header.geometry.sample_dtype)[0])
                for f in reader.frames()
            ]
            assert values == [40002, 40003, 40004, 40005]

    def test_trim_keeps_timestamps(self, ser_writer, tmp_path: Path, timestamps):
        """Test that timestamps of kept frames are copied."""
        frames = [line_frame() for _ in range(10)]
        path = ser_writer("video.ser", frames, timestamps=timestamps)
        output = tmp_path / "trimmed.ser"

        trim_video(path, output, 5)

        with SerFileReader(output) as reader:
            assert reader.header.frame_count == 5
            assert reader.current_frame().timestamp == timestamps[5]

    def test_trim_empty_range(self, ser_writer, tmp_path: Path):
        """Test that an empty range is rejected."""
        path = ser_writer("video.ser", numbered_frames())

        with pytest.raises(ValueError, match="Empty frame range"):
            trim_video(path, tmp_path / "trimmed.ser", 4, 2)


def test_utc_timestamps_are_aware(ser_writer, timestamps):
    """Test that frame timestamps carry the UTC timezone."""
    frames = [line_frame() for _ in range(10)]
    path = ser_writer("video.ser", frames, timestamps=timestamps)

    with SerFileReader(path) as reader:
        assert reader.current_frame().timestamp.tzinfo == timezone.utc
