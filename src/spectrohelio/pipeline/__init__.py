"""Reconstruction pipeline package.

Provides the pipeline context, the scanline buffer, the reconstruction
engine and the video processor driving a full run.
"""

from .buffer import ScanlineBuffer
from .builder import build_pipeline_context
from .context import PipelineContext
from .interfaces import FrameSource, iter_frames
from .runner import (
    ReconstructionResult,
    SolexVideoProcessor,
    process_frame,
    reconstruct,
)

__all__ = [
    "FrameSource",
    "PipelineContext",
    "ReconstructionResult",
    "ScanlineBuffer",
    "SolexVideoProcessor",
    "build_pipeline_context",
    "iter_frames",
    "process_frame",
    "reconstruct",
]
