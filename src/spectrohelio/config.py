"""Configuration management for the spectroheliograph pipeline."""

import logging
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)

logger = logging.getLogger(__name__)


class VideoConfig(BaseModel):
    """Configuration for reading and converting frames.

    Attributes:
        channel: Channel kept when frames are in color ("red", "green",
            "blue" or "luminance"). Ignored for mono videos.
        vflip: Flip frames vertically before analysis.
    """

    model_config = ConfigDict(extra="allow")

    channel: Literal["red", "green", "blue", "luminance"] = "green"
    vflip: bool = False

    @model_validator(mode="after")
    def warn_extra_fields(self) -> "VideoConfig":
        """Warn about unknown configuration keys."""
        if self.__pydantic_extra__:
            logger.warning(
                "Unknown config keys in VideoConfig (ignored): %s",
                list(self.__pydantic_extra__.keys()),
            )
        return self


class SpectrumConfig(BaseModel):
    """Configuration for spectral line detection.

    Attributes:
        spectral_line_detection_threshold: Ratio to the column mean squared
            intensity below which a pixel belongs to an absorption line. An
            emission pixel must exceed the column mean divided by it.
        sun_detection_threshold: Column mean above which a column is part of
            the solar disk.
        line_type: Whether the observed line is dark or bright.
        min_detected_columns: Minimum detected columns to fit the distortion
            polynomial (at least 3).
        column_step: Stride between analyzed columns.
        pixel_shift: Rows added to the line center when extracting the
            scanline (positive = towards the bottom of the frame).
        doppler_shift: When positive, rows at minus and plus this offset
            from the line center are reconstructed too and combined into a
            Doppler image (0 = disabled).
        continuum_shift: Offset of an extra continuum image reconstructed
            from the same frames, e.g. 15 (None = disabled).
    """

    model_config = ConfigDict(extra="allow")

    spectral_line_detection_threshold: float = Field(default=0.85, gt=0)
    sun_detection_threshold: float = 5000.0
    line_type: Literal["absorption", "emission"] = "absorption"
    min_detected_columns: int = Field(default=3, ge=3)
    column_step: int = Field(default=1, ge=1)
    pixel_shift: int = 0
    doppler_shift: int = Field(default=0, ge=0)
    continuum_shift: int | None = None

    def pixel_shifts(self) -> list[int]:
        """Return the distinct shifts to reconstruct, ``pixel_shift`` first."""
        shifts = [self.pixel_shift]
        if self.doppler_shift:
            shifts += [-self.doppler_shift, self.doppler_shift]
        if self.continuum_shift is not None:
            shifts.append(self.continuum_shift)
        return list(dict.fromkeys(shifts))

    @model_validator(mode="after")
    def warn_extra_fields(self) -> "SpectrumConfig":
        """Warn about unknown configuration keys."""
        if self.__pydantic_extra__:
            logger.warning(
                "Unknown config keys in SpectrumConfig (ignored): %s",
                list(self.__pydantic_extra__.keys()),
            )
        return self


class ReconstructionConfig(BaseModel):
    """Configuration for the reconstruction engine.

    Attributes:
        polynomial_mode: "frame" fits a polynomial on every frame, "average"
            fits once on the average of the transit window.
        transit_margin: Frames kept before and after the detected edges.
        edge_detector: Sun edge detection method ("magnitude" or "stats").
        invalid_pixel_policy: How distortion correction fills pixels sampled
            outside the frame ("clamp" or "nan").
    """

    model_config = ConfigDict(extra="allow")

    polynomial_mode: Literal["frame", "average"] = "frame"
    transit_margin: int = Field(default=40, ge=0)
    edge_detector: Literal["magnitude", "stats"] = "magnitude"
    invalid_pixel_policy: Literal["clamp", "nan"] = "clamp"

    @model_validator(mode="after")
    def warn_extra_fields(self) -> "ReconstructionConfig":
        """Warn about unknown configuration keys."""
        if self.__pydantic_extra__:
            logger.warning(
                "Unknown config keys in ReconstructionConfig (ignored): %s",
                list(self.__pydantic_extra__.keys()),
            )
        return self


class ExecutionConfig(BaseModel):
    """Configuration for the worker pool.

    Attributes:
        max_workers: Worker thread count (None = number of CPUs).
        max_pending: Maximum frames in flight (None = twice the workers).
    """

    model_config = ConfigDict(extra="allow")

    max_workers: int | None = Field(default=None, ge=1)
    max_pending: int | None = Field(default=None, ge=1)

    @model_validator(mode="after")
    def warn_extra_fields(self) -> "ExecutionConfig":
        """Warn about unknown configuration keys."""
        if self.__pydantic_extra__:
            logger.warning(
                "Unknown config keys in ExecutionConfig (ignored): %s",
                list(self.__pydantic_extra__.keys()),
            )
        return self


class OutputConfig(BaseModel):
    """Configuration for generated images.

    Attributes:
        output_dir: Directory receiving the images. Relative paths are
            resolved against the directory of the video.
        horizontal_mirror: Mirror generated images left to right.
        vertical_mirror: Mirror generated images top to bottom.
        arcsinh_black_point: Black point of the arcsinh stretch.
        arcsinh_stretch: Arcsinh stretch factor.
        arcsinh_max_stretch: Upper bound for the stretch factor.
        save_debug_images: Also save the raw reconstruction and the average
            frame.
    """

    model_config = ConfigDict(extra="allow")

    output_dir: str = "output"
    horizontal_mirror: bool = False
    vertical_mirror: bool = False
    arcsinh_black_point: float = Field(default=0.0, ge=0)
    arcsinh_stretch: float = Field(default=10.0, gt=0)
    arcsinh_max_stretch: float = Field(default=10.0, gt=0)
    save_debug_images: bool = False

    @model_validator(mode="after")
    def warn_extra_fields(self) -> "OutputConfig":
        """Warn about unknown configuration keys."""
        if self.__pydantic_extra__:
            logger.warning(
                "Unknown config keys in OutputConfig (ignored): %s",
                list(self.__pydantic_extra__.keys()),
            )
        return self


class RuntimeConfig(BaseModel):
    """Configuration for runtime behavior.

    Attributes:
        quiet: Suppress the progress bar.
    """

    model_config = ConfigDict(extra="allow")

    quiet: bool = False

    @model_validator(mode="after")
    def warn_extra_fields(self) -> "RuntimeConfig":
        """Warn about unknown configuration keys."""
        if self.__pydantic_extra__:
            logger.warning(
                "Unknown config keys in RuntimeConfig (ignored): %s",
                list(self.__pydantic_extra__.keys()),
            )
        return self


class PipelineConfig(BaseModel):
    """Top-level configuration for processing a video.

    Attributes:
        video: Frame conversion configuration.
        spectrum: Spectral line detection configuration.
        reconstruction: Reconstruction engine configuration.
        execution: Worker pool configuration.
        output: Generated image configuration.
        runtime: Runtime configuration.
    """

    model_config = ConfigDict(extra="allow")

    video: VideoConfig = Field(default_factory=VideoConfig)
    spectrum: SpectrumConfig = Field(default_factory=SpectrumConfig)
    reconstruction: ReconstructionConfig = Field(default_factory=ReconstructionConfig)
    execution: ExecutionConfig = Field(default_factory=ExecutionConfig)
    output: OutputConfig = Field(default_factory=OutputConfig)
    runtime: RuntimeConfig = Field(default_factory=RuntimeConfig)

    @field_validator("output")
    @classmethod
    def validate_stretch_bounds(cls, v: OutputConfig) -> OutputConfig:
        """Validate that the arcsinh stretch doesn't exceed its bound."""
        if v.arcsinh_stretch > v.arcsinh_max_stretch:
            raise ValueError(
                f"arcsinh_stretch ({v.arcsinh_stretch}) must not exceed "
                f"arcsinh_max_stretch ({v.arcsinh_max_stretch})"
            )
        return v

    @model_validator(mode="after")
    def check_cross_section_constraints(self) -> "PipelineConfig":
        """Validate cross-section constraints and warn about extra fields."""
        execution = self.execution
        if (
            execution.max_workers is not None
            and execution.max_pending is not None
            and execution.max_pending < execution.max_workers
        ):
            logger.warning(
                "execution.max_pending=%d is lower than max_workers=%d; "
                "some workers will stay idle.",
                execution.max_pending,
                execution.max_workers,
            )

        if self.__pydantic_extra__:
            logger.warning(
                "Unknown config keys in PipelineConfig (ignored): %s",
                list(self.__pydantic_extra__.keys()),
            )
        return self

    @classmethod
    def from_yaml(cls, path: str | Path) -> "PipelineConfig":
        """Load configuration from a YAML file.

        Missing fields use their default values.

        Args:
            path: Path to YAML configuration file.

        Returns:
            Loaded configuration with defaults filled in.

        Raises:
            FileNotFoundError: If the file does not exist.
            yaml.YAMLError: If the file is not valid YAML.
            ValueError: If validation fails (with all errors collected).
        """
        path = Path(path)
        with open(path) as f:
            data = yaml.safe_load(f)

        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise ValueError(
                f"Configuration validation failed:\n  (root): expected a mapping, "
                f"got {type(data).__name__}"
            )

        cls._log_default_sections(data)

        try:
            config = cls.model_validate(data)
        except ValidationError as e:
            formatted_errors = format_validation_errors(e)
            raise ValueError(
                f"Configuration validation failed:\n{formatted_errors}"
            ) from None

        return config

    @staticmethod
    def _log_default_sections(data: dict[str, Any]) -> None:
        """Log INFO messages about sections using defaults.

        Args:
            data: Configuration dictionary.
        """
        sections = [
            "video",
            "spectrum",
            "reconstruction",
            "execution",
            "output",
            "runtime",
        ]

        for section in sections:
            if section not in data:
                logger.info("Using default: %s (all defaults)", section)

    def to_yaml(self, path: str | Path) -> None:
        """Save configuration to a YAML file.

        All fields including defaults are written for explicitness.

        Args:
            path: Path to output YAML file.
        """
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)

        data = self.model_dump(mode="json")

        with open(path, "w") as f:
            yaml.safe_dump(data, f, default_flow_style=False, sort_keys=False)


def format_validation_errors(error: ValidationError) -> str:
    """Format Pydantic validation errors with YAML-style paths.

    Args:
        error: Pydantic ValidationError.

    Returns:
        Formatted error string with YAML paths and messages.
    """
    lines = []
    for err in error.errors():
        loc = err["loc"]
        path_parts = []
        for part in loc:
            if isinstance(part, int) and path_parts:
                path_parts[-1] = f"{path_parts[-1]}[{part}]"
            else:
                path_parts.append(str(part))

        path = ".".join(path_parts)
        msg = err["msg"]
        lines.append(f"  {path}: {msg}")

    return "\n".join(lines)
