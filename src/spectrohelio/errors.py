"""Exception types raised by the reconstruction pipeline."""


class ProcessingError(RuntimeError):
    """Fatal error raised while reconstructing an image.

    Attributes:
        frame_index: Index of the frame being processed when the error
            occurred, or None when the failure is not tied to a frame.
    """

    def __init__(self, message: str, frame_index: int | None = None):
        super().__init__(message)
        self.frame_index = frame_index

    def __str__(self) -> str:
        message = super().__str__()
        if self.frame_index is None:
            return message
        return f"Frame {self.frame_index}: {message}"


class ProcessingCancelled(ProcessingError):
    """Raised when processing was cancelled before completion."""


class FrameConversionError(ValueError):
    """Raised when raw frame bytes cannot be converted to a channel buffer."""


class SerFormatError(OSError):
    """Raised when a SER file is malformed or truncated."""
