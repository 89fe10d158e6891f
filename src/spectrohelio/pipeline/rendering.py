"""Rendering of the reconstructed image to stretched PNG files."""

import logging
from pathlib import Path

import cv2
import numpy as np

from ..events import GeneratedImage, ImageGeneratedEvent
from ..io import save_png
from ..stretching import arcsinh_pipeline, linear_pipeline, stretch
from .context import PipelineContext

logger = logging.getLogger(__name__)

LINEAR_IMAGE = "linear"
ARCSINH_IMAGE = "streched"
DOPPLER_IMAGE = "doppler"


def mirror(image: np.ndarray, horizontal: bool, vertical: bool) -> np.ndarray:
    """Return a mirrored copy of ``image``."""
    result = image
    if horizontal:
        result = result[:, ::-1]
    if vertical:
        result = result[::-1, :]
    return np.ascontiguousarray(result)


def shift_label(shift: int, continuum_shift: int | None) -> str:
    """Name suffix of the images reconstructed at ``shift``."""
    if shift == continuum_shift:
        return "continuum"
    return f"shift{shift:+d}"


def _emit(ctx: PipelineContext, title: str, data: np.ndarray, name: str, kind: str) -> Path:
    output = ctx.config.output
    data = mirror(data, output.horizontal_mirror, output.vertical_mirror)
    path = save_png(ctx.output_dir / f"{name}.png", data)
    ctx.broadcaster.broadcast(
        ImageGeneratedEvent(GeneratedImage(title=title, path=path, data=data, kind=kind))
    )
    logger.info("Saved %s to %s", title, path)
    return path


def render_images(
    image: np.ndarray, ctx: PipelineContext, label: str | None = None
) -> dict[str, Path]:
    """Save the linear and arcsinh renderings of a reconstructed image.

    Each rendering is computed on its own copy; ``image`` is left untouched.

    Args:
        image: Reconstructed (rows, width) image.
        ctx: Pipeline context.
        label: Suffix of the image names and titles, None for the main
            reconstruction.

    Returns:
        Mapping from rendering name to written path.
    """
    output = ctx.config.output
    linear = stretch(image, linear_pipeline())
    stretched = stretch(
        image,
        arcsinh_pipeline(
            output.arcsinh_black_point,
            output.arcsinh_stretch,
            output.arcsinh_max_stretch,
        ),
    )
    renderings = [
        (LINEAR_IMAGE, "Linear", linear),
        (ARCSINH_IMAGE, "Stretched", stretched),
    ]
    paths = {}
    for name, title, data in renderings:
        if label is not None:
            name = f"{name}_{label}"
            title = f"{title} ({label})"
        paths[name] = _emit(ctx, title, data, name, "reconstruction")
    return paths


def doppler_composite(red: np.ndarray, blue: np.ndarray) -> np.ndarray:
    """Combine the images of opposite shifts into an RGB Doppler image.

    Red holds the positive shift, blue the negative one and green their
    mean. Saturation is boosted (square root in HLS space) and the result
    expanded to the 16-bit range.

    Returns:
        (rows, width, 3) float32 RGB image.
    """
    rgb = np.stack([red, (red + blue) / 2, blue], axis=-1).astype(np.float32)
    peak = float(rgb.max())
    if peak <= 0:
        return np.zeros_like(rgb)
    hls = cv2.cvtColor(rgb / peak, cv2.COLOR_RGB2HLS)
    hls[..., 2] = np.sqrt(np.clip(hls[..., 2], 0, 1))
    rgb = cv2.cvtColor(hls, cv2.COLOR_HLS2RGB)
    top = float(rgb.max())
    if top <= 0:
        return np.zeros_like(rgb)
    return rgb * (65535 / top)


def render_doppler(
    red: np.ndarray, blue: np.ndarray, ctx: PipelineContext
) -> dict[str, Path]:
    """Save the Doppler composite of two shifted reconstructions."""
    data = doppler_composite(red, blue)
    return {DOPPLER_IMAGE: _emit(ctx, "Doppler", data, DOPPLER_IMAGE, "doppler")}


def render_debug_images(
    image: np.ndarray, average: np.ndarray | None, ctx: PipelineContext
) -> dict[str, Path]:
    """Save the unstretched reconstruction and the average frame."""
    paths = {"raw": _emit(ctx, "Raw reconstruction", image.copy(), "raw", "debug")}
    if average is not None:
        paths["average"] = _emit(
            ctx, "Average frame", average.copy(), "average", "debug"
        )
    return paths
