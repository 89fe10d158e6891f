"""Pipeline context dataclass for per-run data."""

from dataclasses import dataclass
from pathlib import Path

from ..config import PipelineConfig
from ..converter import ImageConverter
from ..edges import TransitWindow
from ..events import Broadcaster
from ..ser import Header, ImageGeometry
from ..spectrum import SpectrumFrameAnalyzer


@dataclass
class PipelineContext:
    """Data that is constant across all frames of a run.

    Created once by build_pipeline_context() and shared by every frame task.
    The analyzer and converter hold no per-frame state.
    """

    config: PipelineConfig
    header: Header
    geometry: ImageGeometry
    converter: ImageConverter
    analyzer: SpectrumFrameAnalyzer
    broadcaster: Broadcaster
    window: TransitWindow
    output_dir: Path
