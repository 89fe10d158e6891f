"""Pipeline context builder for one-time initialization."""

import logging
import os
from pathlib import Path

from ..config import PipelineConfig
from ..converter import ImageConverter, create_image_converter
from ..edges import TransitWindow
from ..events import Broadcaster
from ..ser import Header
from ..spectrum import SpectrumFrameAnalyzer
from .context import PipelineContext

logger = logging.getLogger(__name__)


def resolve_output_dir(config: PipelineConfig, source_path: str | Path) -> Path:
    """Resolve the configured output directory.

    Relative directories are resolved against the directory holding the
    video (or, for a directory of frames, its parent).
    """
    output_dir = Path(config.output.output_dir).expanduser()
    if output_dir.is_absolute():
        return output_dir
    return Path(source_path).resolve().parent / output_dir


def prepare_output_dir(output_dir: Path) -> Path:
    """Create the output directory and check that it is writable.

    Raises:
        OSError: If the directory cannot be created or written to.
    """
    output_dir.mkdir(parents=True, exist_ok=True)
    if not os.access(output_dir, os.W_OK):
        raise PermissionError(f"Output directory is not writable: {output_dir}")
    return output_dir


def create_converter(config: PipelineConfig, header: Header) -> ImageConverter:
    """Build the image converter for a video."""
    return create_image_converter(
        header.geometry.color_mode,
        channel=config.video.channel,
        vflip=config.video.vflip,
    )


def build_pipeline_context(
    config: PipelineConfig,
    header: Header,
    converter: ImageConverter,
    broadcaster: Broadcaster,
    window: TransitWindow,
    output_dir: Path,
) -> PipelineContext:
    """Perform one-time initialization once the transit window is known.

    Creates the spectrum analyzer and saves a copy of the configuration in
    the output directory.

    Args:
        config: Full pipeline configuration.
        header: Header of the video.
        converter: Frame converter.
        broadcaster: Event broadcaster.
        window: Frames to reconstruct.
        output_dir: Directory receiving generated files.

    Returns:
        PipelineContext shared by every frame task.
    """
    geometry = header.geometry
    spectrum = config.spectrum
    analyzer = SpectrumFrameAnalyzer(
        width=geometry.width,
        height=geometry.height,
        spectrum_detection_threshold=spectrum.spectral_line_detection_threshold,
        sun_detection_threshold=spectrum.sun_detection_threshold,
        line_type=spectrum.line_type,
        min_detected_columns=spectrum.min_detected_columns,
        column_step=spectrum.column_step,
    )

    config.to_yaml(output_dir / "config.yaml")
    logger.info("Config saved to %s", output_dir / "config.yaml")

    return PipelineContext(
        config=config,
        header=header,
        geometry=geometry,
        converter=converter,
        analyzer=analyzer,
        broadcaster=broadcaster,
        window=window,
        output_dir=output_dir,
    )
