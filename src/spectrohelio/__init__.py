"""Reconstruction of solar images from spectroheliograph SER videos."""

from .config import PipelineConfig
from .converter import (
    BayerImageConverter,
    ImageConverter,
    MonoImageConverter,
    RGBImageConverter,
    create_image_converter,
)
from .distortion import correct_distortion, corrected_line_center
from .edges import (
    MagnitudeSunEdgeDetector,
    StatsSunEdgeDetector,
    TransitWindow,
)
from .errors import (
    FrameConversionError,
    ProcessingCancelled,
    ProcessingError,
    SerFormatError,
)
from .events import (
    Broadcaster,
    EventCollector,
    EventKind,
    LoggingListener,
)
from .executor import ParallelExecutor
from .io import ImageDirectorySource, open_frame_source, save_png
from .ser import (
    ColorMode,
    Frame,
    Header,
    ImageGeometry,
    ImageMetadata,
    SerFileReader,
    SerFileWriter,
)
from .spectrum import (
    DistortionPolynomial,
    SpectrumFrameAnalyzer,
    SpectrumLine,
    find_distortion_polynomial,
)
from .pipeline import (
    FrameSource,
    PipelineContext,
    ReconstructionResult,
    ScanlineBuffer,
    SolexVideoProcessor,
    reconstruct,
)

__version__ = "0.1.0"

__all__ = [
    "PipelineConfig",
    "ColorMode",
    "Frame",
    "Header",
    "ImageGeometry",
    "ImageMetadata",
    "SerFileReader",
    "SerFileWriter",
    "FrameSource",
    "ImageDirectorySource",
    "open_frame_source",
    "save_png",
    "ImageConverter",
    "MonoImageConverter",
    "BayerImageConverter",
    "RGBImageConverter",
    "create_image_converter",
    "SpectrumLine",
    "DistortionPolynomial",
    "SpectrumFrameAnalyzer",
    "find_distortion_polynomial",
    "correct_distortion",
    "corrected_line_center",
    "MagnitudeSunEdgeDetector",
    "StatsSunEdgeDetector",
    "TransitWindow",
    "ParallelExecutor",
    "Broadcaster",
    "EventCollector",
    "EventKind",
    "LoggingListener",
    "ProcessingError",
    "ProcessingCancelled",
    "FrameConversionError",
    "SerFormatError",
    "PipelineContext",
    "ScanlineBuffer",
    "ReconstructionResult",
    "SolexVideoProcessor",
    "reconstruct",
]
