"""Pipeline runner: reconstruction engine and video processor."""

import logging
import sys
import threading
import time
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path

import numpy as np
from tqdm import tqdm

from ..config import PipelineConfig
from ..distortion import corrected_line_center, correct_distortion
from ..edges import SunEdgeDetector, TransitWindow, create_edge_detector
from ..errors import ProcessingCancelled, ProcessingError
from ..events import (
    Broadcaster,
    ImageLine,
    Notification,
    NotificationEvent,
    OutputImageDimensionsDeterminedEvent,
    PartialReconstructionEvent,
)
from ..executor import ParallelExecutor
from ..io import open_frame_source
from ..profiling import timed_stage
from ..spectrum import DistortionPolynomial
from .buffer import ScanlineBuffer
from .builder import (
    build_pipeline_context,
    create_converter,
    prepare_output_dir,
    resolve_output_dir,
)
from .context import PipelineContext
from .interfaces import FrameSource, iter_frames
from .rendering import (
    render_debug_images,
    render_doppler,
    render_images,
    shift_label,
)

logger = logging.getLogger(__name__)


def middle_row(center: float, pixel_shift: int, height: int) -> int:
    """Row extracted from a frame whose line center is ``center``."""
    row = int(np.floor(center + 0.5)) + pixel_shift
    return min(max(row, 0), height - 1)


def process_frame(
    frame_index: int,
    buffer: np.ndarray,
    ctx: PipelineContext,
    scanlines: Mapping[int, ScanlineBuffer],
    polynomial: DistortionPolynomial | None = None,
) -> None:
    """Extract the scanlines of one converted frame.

    Runs on a worker thread. Without a fixed ``polynomial`` the frame is
    analyzed and corrected with its own polynomial. A frame where no
    polynomial can be fitted is used uncorrected, the line center being the
    mean of the detected centers (or the middle of the frame when nothing
    was detected). The frame is analyzed once and one row is extracted per
    pixel shift.

    Args:
        frame_index: Index of the frame in the video.
        buffer: Converted frame, owned by this task.
        ctx: Pipeline context.
        scanlines: Output buffer of each pixel shift; only row
            ``frame_index - window.start`` is written.
        polynomial: Polynomial shared by all frames ("average" mode).

    Raises:
        ProcessingError: If the frame cannot be processed.
    """
    try:
        height = ctx.geometry.height
        config = ctx.config
        center: float | None
        if polynomial is None:
            analysis = ctx.analyzer.analyze(buffer)
            frame_polynomial = analysis.polynomial
            if frame_polynomial is None:
                detected = analysis.detected_lines
                center = (
                    float(np.mean([line.middle for line in detected]))
                    if detected
                    else None
                )
                corrected = buffer
                logger.debug(
                    "Frame %d: no line model, using uncorrected data", frame_index
                )
            else:
                corrected = correct_distortion(
                    buffer,
                    frame_polynomial,
                    invalid=config.reconstruction.invalid_pixel_policy,
                )
                center = corrected_line_center(analysis, frame_polynomial, height)
        else:
            # Correction moves the modelled line to the middle of the frame
            corrected = correct_distortion(
                buffer, polynomial, invalid=config.reconstruction.invalid_pixel_policy
            )
            center = height / 2

        if center is None:
            center = height / 2
        output_row = frame_index - ctx.window.start
        for pixel_shift, target in scanlines.items():
            row = middle_row(center, pixel_shift, height)
            line = np.nan_to_num(
                corrected[row].astype(np.float32), nan=0.0, posinf=0.0, neginf=0.0
            )
            target.write_row(output_row, line)
            ctx.broadcaster.broadcast(
                PartialReconstructionEvent(ImageLine(output_row, line, pixel_shift))
            )
    except ProcessingError:
        raise
    except Exception as e:
        raise ProcessingError(str(e), frame_index=frame_index) from e


def convert_frame(frame, ctx: PipelineContext) -> np.ndarray:
    """Convert a raw frame on the reader thread.

    Raises:
        ProcessingError: If the frame cannot be converted.
    """
    try:
        buffer = ctx.converter.create_buffer(ctx.geometry)
        ctx.converter.convert(frame.index, frame.data, ctx.geometry, buffer)
    except Exception as e:
        raise ProcessingError(str(e), frame_index=frame.index) from e
    return buffer


def average_frame(source: FrameSource, ctx: PipelineContext) -> np.ndarray:
    """Average the converted frames of the transit window."""
    window = ctx.window
    total = np.zeros((ctx.geometry.height, ctx.geometry.width), dtype=np.float64)
    for frame in iter_frames(source, window.start, window.end):
        total += convert_frame(frame, ctx)
    return (total / max(1, window.frame_count)).astype(np.float32)


def reconstruct(
    source: FrameSource,
    ctx: PipelineContext,
    executor: ParallelExecutor,
    polynomial: DistortionPolynomial | None = None,
) -> dict[int, ScanlineBuffer]:
    """Reconstruct the images of the transit window.

    Frames are read and converted sequentially on the calling thread; each
    converted frame is processed by one task on the executor. The call
    returns once every task has finished. Cancelling the executor stops
    the submission of further frames.

    Args:
        source: Frame source.
        ctx: Pipeline context.
        executor: Worker pool.
        polynomial: Polynomial applied to every frame, or None to fit one
            per frame.

    Returns:
        One filled scanline buffer (one row per frame of the window) per
        configured pixel shift, main shift first.

    Raises:
        ProcessingError: If any frame fails; no partial result is returned.
        ProcessingCancelled: If the executor was cancelled.
    """
    window = ctx.window
    shifts = ctx.config.spectrum.pixel_shifts()
    scanlines = {
        shift: ScanlineBuffer(ctx.geometry.width, window.frame_count)
        for shift in shifts
    }
    logger.info(
        "Reconstructing frames %d to %d (%d rows, pixel shifts %s)",
        window.start,
        window.end - 1,
        window.frame_count,
        shifts,
    )

    with tqdm(
        total=window.frame_count,
        desc="Reconstructing",
        disable=ctx.config.runtime.quiet or not sys.stderr.isatty(),
        unit="frame",
    ) as progress:

        def task(frame_index: int, buffer: np.ndarray) -> None:
            process_frame(frame_index, buffer, ctx, scanlines, polynomial)
            progress.update(1)

        try:
            for frame in iter_frames(source, window.start, window.end):
                buffer = convert_frame(frame, ctx)
                executor.submit(task, frame.index, buffer)
        except BaseException:
            executor.cancel()
            executor.wait()
            raise
        executor.join()

    return scanlines


@dataclass
class ReconstructionResult:
    """Outcome of a successful run.

    Attributes:
        image: Reconstructed image at the main pixel shift, one row per
            frame of the window.
        window: Frames used for the reconstruction.
        images: Generated files by rendering name.
        elapsed: Run duration in seconds.
        polynomial: Polynomial shared by all frames ("average" mode only).
        timings: Duration of each stage in seconds.
        shifted_images: Reconstructed image of every pixel shift, including
            the main one.
    """

    image: np.ndarray
    window: TransitWindow
    images: dict[str, Path]
    elapsed: float
    polynomial: DistortionPolynomial | None = None
    timings: dict[str, float] = field(default_factory=dict)
    shifted_images: dict[int, np.ndarray] = field(default_factory=dict)


class SolexVideoProcessor:
    """Turns one spectroheliograph video into a solar image.

    The processor detects the transit of the solar disk, reconstructs one
    row per frame of the transit and writes ``linear.png`` and
    ``streched.png``. Extra pixel shifts (Doppler, continuum) are
    reconstructed from the same pass and saved with a suffix, and opposite
    Doppler shifts are combined into ``doppler.png``. Listeners registered
    on ``broadcaster`` receive, in order: the output dimensions, one partial
    reconstruction event per frame and pixel shift, one event per generated
    image, and a single terminal notification.

    ``cancel()`` may be called from any thread, listeners included; the run
    then ends with a warning notification and no image.

    Example:
        processor = SolexVideoProcessor("capture.ser", config)
        processor.broadcaster.add_listener(LoggingListener())
        result = processor.process()

    Args:
        source_path: SER file or directory of frames.
        config: Pipeline configuration.
        broadcaster: Event broadcaster (a new one is created if omitted).
        edge_detector: Sun edge detector (default: from the configuration).
        output_dir: Output directory overriding the configured one.
    """

    def __init__(
        self,
        source_path: str | Path,
        config: PipelineConfig | None = None,
        broadcaster: Broadcaster | None = None,
        edge_detector: SunEdgeDetector | None = None,
        output_dir: str | Path | None = None,
    ):
        self.source_path = Path(source_path)
        self.config = config or PipelineConfig()
        self.broadcaster = broadcaster or Broadcaster()
        self.edge_detector = edge_detector or create_edge_detector(
            self.config.reconstruction.edge_detector
        )
        self.output_dir = (
            Path(output_dir)
            if output_dir is not None
            else resolve_output_dir(self.config, self.source_path)
        )
        self._lock = threading.Lock()
        self._cancelled = threading.Event()
        self._active_executor: ParallelExecutor | None = None

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def cancel(self) -> None:
        """Request cancellation of the run in progress.

        Frames which haven't been processed yet are skipped. Frames being
        processed complete, then ``process()`` sends a warning notification
        and returns None.
        """
        logger.info("Cancellation requested for %s", self.source_path)
        with self._lock:
            self._cancelled.set()
            executor = self._active_executor
        if executor is not None:
            executor.cancel()

    def _check_cancelled(self) -> None:
        if self._cancelled.is_set():
            raise ProcessingCancelled("Processing was cancelled")

    @contextmanager
    def _executor(self) -> Iterator[ParallelExecutor]:
        execution = self.config.execution
        with ParallelExecutor(execution.max_workers, execution.max_pending) as executor:
            with self._lock:
                self._active_executor = executor
                if self._cancelled.is_set():
                    executor.cancel()
            try:
                yield executor
            finally:
                with self._lock:
                    self._active_executor = None

    def _notify(self, notification: Notification) -> None:
        self.broadcaster.broadcast(NotificationEvent(notification))

    def process(self) -> ReconstructionResult | None:
        """Run the pipeline.

        Processing errors and cancellation are reported through a terminal
        notification instead of being raised.

        Returns:
            The reconstruction, or None if it failed, was cancelled or no
            transit was found.
        """
        self._cancelled.clear()
        start = time.perf_counter()
        timings: dict[str, float] = {}
        try:
            result = self._process(timings)
        except ProcessingCancelled as e:
            elapsed = time.perf_counter() - start
            logger.warning("Processing of %s was cancelled", self.source_path)
            self._notify(
                Notification(
                    level="warning",
                    title="Processing cancelled",
                    message=f"Processing of {self.source_path.name} was cancelled",
                    elapsed=elapsed,
                    error=e,
                )
            )
            return None
        except Exception as e:
            elapsed = time.perf_counter() - start
            logger.error("Processing of %s failed: %s", self.source_path, e)
            logger.debug("Processing failure details", exc_info=True)
            self._notify(
                Notification(
                    level="error",
                    title="Processing failed",
                    message=str(e),
                    elapsed=elapsed,
                    error=e,
                )
            )
            return None

        elapsed = time.perf_counter() - start
        if result is None:
            self._notify(
                Notification(
                    level="warning",
                    title="No sun transit",
                    message=f"No sun edges detected in {self.source_path.name}",
                    elapsed=elapsed,
                )
            )
            return None

        result.elapsed = elapsed
        self._notify(
            Notification(
                level="info",
                title="Processing done",
                message=f"Processed {self.source_path.name} in {elapsed:.2f}s",
                elapsed=elapsed,
            )
        )
        return result

    def _process(self, timings: dict[str, float]) -> ReconstructionResult | None:
        config = self.config
        output_dir = prepare_output_dir(self.output_dir)

        with open_frame_source(self.source_path) as source:
            header = source.header
            geometry = header.geometry
            logger.info(
                "Opened %s: %d frames of %dx%d pixels (%s, %d bits)",
                self.source_path,
                header.frame_count,
                geometry.width,
                geometry.height,
                geometry.color_mode.name,
                geometry.pixel_depth_per_plane,
            )
            converter = create_converter(config, header)

            with timed_stage("edge_detection", logger, timings):
                with self._executor() as executor:
                    edges = self.edge_detector.detect(
                        iter_frames(source),
                        geometry,
                        header.frame_count,
                        converter,
                        executor,
                    )
            self._check_cancelled()
            if edges is None:
                return None

            window = TransitWindow.from_edges(
                edges[0],
                edges[1],
                config.reconstruction.transit_margin,
                header.frame_count,
            )
            ctx = build_pipeline_context(
                config, header, converter, self.broadcaster, window, output_dir
            )
            self.broadcaster.broadcast(
                OutputImageDimensionsDeterminedEvent(
                    "Reconstruction", geometry.width, window.frame_count
                )
            )

            average = None
            polynomial = None
            if config.reconstruction.polynomial_mode == "average":
                with timed_stage("average_polynomial", logger, timings):
                    average = average_frame(source, ctx)
                    polynomial = ctx.analyzer.analyze(average).polynomial
                if polynomial is None:
                    logger.warning(
                        "No spectral line found in the average frame, "
                        "frames are fitted individually"
                    )
                else:
                    logger.info(
                        "Distortion polynomial: a=%g b=%g c=%g", *polynomial.as_tuple()
                    )
                self._check_cancelled()

            with timed_stage("reconstruction", logger, timings):
                with self._executor() as executor:
                    scanlines = reconstruct(source, ctx, executor, polynomial)

        self._check_cancelled()
        spectrum = config.spectrum
        shifted = {shift: buffer.as_image() for shift, buffer in scanlines.items()}
        image = shifted[spectrum.pixel_shift]
        with timed_stage("rendering", logger, timings):
            images = render_images(image, ctx)
            for shift, data in shifted.items():
                if shift != spectrum.pixel_shift:
                    label = shift_label(shift, spectrum.continuum_shift)
                    images.update(render_images(data, ctx, label))
            doppler = spectrum.doppler_shift
            if doppler and -doppler in shifted and doppler in shifted:
                images.update(render_doppler(shifted[doppler], shifted[-doppler], ctx))
            if config.output.save_debug_images:
                images.update(render_debug_images(image, average, ctx))

        return ReconstructionResult(
            image=image,
            window=window,
            images=images,
            elapsed=0.0,
            polynomial=polynomial,
            timings=timings,
            shifted_images=shifted,
        )
