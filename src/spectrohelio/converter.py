"""Conversion of raw SER frames to single-channel float buffers."""

import logging
from typing import Literal, Protocol, runtime_checkable

import cv2
import numpy as np

from .errors import FrameConversionError
from .ser import ColorMode, ImageGeometry

logger = logging.getLogger(__name__)

Channel = Literal["red", "green", "blue", "luminance"]

# OpenCV demosaicing codes, keyed by sensor pattern
BAYER_CODES = {
    ColorMode.BAYER_RGGB: cv2.COLOR_BayerRG2RGB,
    ColorMode.BAYER_BGGR: cv2.COLOR_BayerBG2RGB,
    ColorMode.BAYER_GRBG: cv2.COLOR_BayerGR2RGB,
    ColorMode.BAYER_GBRG: cv2.COLOR_BayerGB2RGB,
}

LUMINANCE_WEIGHTS = np.array([0.299, 0.587, 0.114], dtype=np.float32)


@runtime_checkable
class ImageConverter(Protocol):
    """Turns raw frame bytes into a (height, width) float32 buffer."""

    def create_buffer(self, geometry: ImageGeometry) -> np.ndarray:
        """Allocate a zeroed buffer sized for the geometry."""
        ...

    def convert(
        self,
        frame_index: int,
        raw: np.ndarray | bytes,
        geometry: ImageGeometry,
        buffer: np.ndarray,
    ) -> None:
        """Fill ``buffer`` in place from raw frame bytes.

        Raises:
            FrameConversionError: If the bytes or the buffer don't match the
                geometry. The message doesn't name the frame; the pipeline
                reports ``frame_index`` when wrapping it.
        """
        ...


def decode_samples(raw: np.ndarray | bytes, geometry: ImageGeometry) -> np.ndarray:
    """Decode raw frame bytes to samples scaled to the 16-bit range.

    8-bit data is MSB-aligned: the low ``8 - depth`` bits are discarded and
    the value is moved to the high byte. Data deeper than 8 bits is
    LSB-aligned and shifted left by ``16 - depth``.

    Args:
        raw: Raw frame bytes.
        geometry: Frame geometry.

    Returns:
        uint16 array of shape (height, width * planes).

    Raises:
        FrameConversionError: If the byte count doesn't match the geometry.
    """
    size = len(raw) if isinstance(raw, (bytes, bytearray)) else np.asarray(raw).nbytes
    if size != geometry.bytes_per_frame:
        raise FrameConversionError(
            f"Frame has {size} bytes, expected {geometry.bytes_per_frame} "
            f"for {geometry.width}x{geometry.height} "
            f"{geometry.color_mode.name} at {geometry.pixel_depth_per_plane} bits"
        )
    samples = np.frombuffer(raw, dtype=geometry.sample_dtype)
    depth = geometry.pixel_depth_per_plane
    if geometry.bytes_per_pixel == 1:
        scaled = (samples >> (8 - depth)).astype(np.uint16) << 8
    else:
        scaled = samples.astype(np.uint16) << (16 - depth)
    planes = geometry.color_mode.number_of_planes
    return scaled.reshape(geometry.height, geometry.width * planes)


def extract_channel(rgb: np.ndarray, channel: Channel) -> np.ndarray:
    """Pick one channel (or luminance) from an (H, W, 3) RGB image."""
    if channel == "red":
        return rgb[:, :, 0].astype(np.float32)
    if channel == "green":
        return rgb[:, :, 1].astype(np.float32)
    if channel == "blue":
        return rgb[:, :, 2].astype(np.float32)
    if channel == "luminance":
        return rgb.astype(np.float32) @ LUMINANCE_WEIGHTS
    raise ValueError(f"Unknown channel: {channel}")


class _BaseConverter:
    def __init__(self, vflip: bool = False):
        self.vflip = vflip

    def create_buffer(self, geometry: ImageGeometry) -> np.ndarray:
        return np.zeros((geometry.height, geometry.width), dtype=np.float32)

    def convert(
        self,
        frame_index: int,
        raw: np.ndarray | bytes,
        geometry: ImageGeometry,
        buffer: np.ndarray,
    ) -> None:
        if buffer.shape != (geometry.height, geometry.width):
            raise FrameConversionError(
                f"Buffer shape {buffer.shape} doesn't match "
                f"frame size {geometry.width}x{geometry.height}"
            )
        channel = self._to_channel(decode_samples(raw, geometry), geometry)
        if self.vflip:
            channel = channel[::-1]
        buffer[...] = channel

    def _to_channel(self, samples: np.ndarray, geometry: ImageGeometry) -> np.ndarray:
        raise NotImplementedError


class MonoImageConverter(_BaseConverter):
    """Converter for monochrome frames.

    Args:
        vflip: Flip frames vertically.
    """

    def _to_channel(self, samples: np.ndarray, geometry: ImageGeometry) -> np.ndarray:
        return samples


class BayerImageConverter(_BaseConverter):
    """Converter for Bayer mosaiced frames.

    Frames are demosaiced with OpenCV then reduced to a single channel.

    Args:
        channel: Channel to keep ("red", "green", "blue" or "luminance").
        vflip: Flip frames vertically.
    """

    def __init__(self, channel: Channel = "green", vflip: bool = False):
        super().__init__(vflip)
        self.channel = channel

    def _to_channel(self, samples: np.ndarray, geometry: ImageGeometry) -> np.ndarray:
        code = BAYER_CODES.get(geometry.color_mode)
        if code is None:
            raise FrameConversionError(
                f"Unsupported Bayer pattern: {geometry.color_mode.name}"
            )
        rgb = cv2.cvtColor(samples, code)
        return extract_channel(rgb, self.channel)


class RGBImageConverter(_BaseConverter):
    """Converter for frames stored as interleaved RGB or BGR samples.

    Args:
        channel: Channel to keep ("red", "green", "blue" or "luminance").
        vflip: Flip frames vertically.
    """

    def __init__(self, channel: Channel = "green", vflip: bool = False):
        super().__init__(vflip)
        self.channel = channel

    def _to_channel(self, samples: np.ndarray, geometry: ImageGeometry) -> np.ndarray:
        pixels = samples.reshape(geometry.height, geometry.width, 3)
        if geometry.color_mode == ColorMode.BGR:
            pixels = pixels[:, :, ::-1]
        return extract_channel(pixels, self.channel)


def create_image_converter(
    color_mode: ColorMode, channel: Channel = "green", vflip: bool = False
) -> ImageConverter:
    """Build the converter matching a camera color mode.

    Args:
        color_mode: Color mode from the SER header.
        channel: Channel kept for color data (ignored for mono).
        vflip: Flip frames vertically.

    Returns:
        Converter instance.

    Raises:
        ValueError: If the color mode has no converter.
    """
    if color_mode == ColorMode.MONO:
        return MonoImageConverter(vflip=vflip)
    if color_mode in BAYER_CODES:
        return BayerImageConverter(channel=channel, vflip=vflip)
    if color_mode in (ColorMode.RGB, ColorMode.BGR):
        return RGBImageConverter(channel=channel, vflip=vflip)
    raise ValueError(f"Unsupported color mode: {color_mode.name}")
