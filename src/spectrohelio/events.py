"""Processing events and the broadcaster delivering them to listeners.

Every event carries a ``kind`` so a listener is a single callable which
dispatches on it:

    def on_event(event: ProcessingEvent) -> None:
        if event.kind is EventKind.NOTIFICATION:
            ...
"""

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Literal

import numpy as np

logger = logging.getLogger(__name__)


class EventKind(str, Enum):
    DIMENSIONS_DETERMINED = "dimensions_determined"
    PARTIAL_RECONSTRUCTION = "partial_reconstruction"
    IMAGE_GENERATED = "image_generated"
    NOTIFICATION = "notification"


@dataclass(frozen=True, eq=False)
class ImageLine:
    """One reconstructed row.

    Attributes:
        row: Row index in the output image.
        data: Row values (width floats).
        pixel_shift: Row offset applied relative to the line center.
    """

    row: int
    data: np.ndarray
    pixel_shift: int = 0


@dataclass(frozen=True, eq=False)
class GeneratedImage:
    title: str
    path: Path | None
    data: np.ndarray
    kind: str = "reconstruction"


@dataclass(frozen=True)
class Notification:
    """Terminal summary of a run.

    Attributes:
        level: "info", "warning" or "error".
        title: Short title.
        message: Human readable message.
        elapsed: Run duration in seconds, if known.
        error: Exception which terminated the run, if any.
    """

    level: Literal["info", "warning", "error"]
    title: str
    message: str
    elapsed: float | None = None
    error: BaseException | None = None


@dataclass(frozen=True)
class OutputImageDimensionsDeterminedEvent:
    label: str
    width: int
    height: int
    kind: EventKind = field(default=EventKind.DIMENSIONS_DETERMINED, init=False)


@dataclass(frozen=True)
class PartialReconstructionEvent:
    line: ImageLine
    kind: EventKind = field(default=EventKind.PARTIAL_RECONSTRUCTION, init=False)


@dataclass(frozen=True)
class ImageGeneratedEvent:
    image: GeneratedImage
    kind: EventKind = field(default=EventKind.IMAGE_GENERATED, init=False)


@dataclass(frozen=True)
class NotificationEvent:
    notification: Notification
    kind: EventKind = field(default=EventKind.NOTIFICATION, init=False)


ProcessingEvent = (
    OutputImageDimensionsDeterminedEvent
    | PartialReconstructionEvent
    | ImageGeneratedEvent
    | NotificationEvent
)
Listener = Callable[[ProcessingEvent], None]


class Broadcaster:
    """Thread-safe registry of event listeners.

    Each broadcast is delivered to the listeners registered when it starts,
    so listeners may add or remove listeners while handling an event. A
    failing listener doesn't prevent delivery to the others.
    """

    def __init__(self, *listeners: Listener):
        self._lock = threading.Lock()
        self._listeners: list[Listener] = list(listeners)

    def add_listener(self, listener: Listener) -> None:
        with self._lock:
            self._listeners.append(listener)

    def remove_listener(self, listener: Listener) -> None:
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    @property
    def listeners(self) -> list[Listener]:
        with self._lock:
            return list(self._listeners)

    def broadcast(self, event: ProcessingEvent) -> None:
        """Deliver ``event`` to every registered listener.

        A listener which raises is logged and skipped; the remaining
        listeners still receive the event and the error never reaches the
        caller.
        """
        for listener in self.listeners:
            try:
                listener(event)
            except Exception:
                logger.exception(
                    "Listener %r failed on %s event", listener, event.kind.value
                )


class LoggingListener:
    """Listener writing events to a logger."""

    def __init__(self, log: logging.Logger | None = None):
        self.log = log or logger

    def __call__(self, event: ProcessingEvent) -> None:
        if event.kind is EventKind.DIMENSIONS_DETERMINED:
            self.log.info(
                "Dimensions of %s: %dx%d", event.label, event.width, event.height
            )
        elif event.kind is EventKind.PARTIAL_RECONSTRUCTION:
            self.log.debug("Reconstructed row %d", event.line.row)
        elif event.kind is EventKind.IMAGE_GENERATED:
            self.log.info("Generated %s: %s", event.image.title, event.image.path)
        elif event.kind is EventKind.NOTIFICATION:
            notification = event.notification
            level = {
                "info": logging.INFO,
                "warning": logging.WARNING,
                "error": logging.ERROR,
            }[notification.level]
            self.log.log(level, "%s: %s", notification.title, notification.message)


class EventCollector:
    """Listener recording every event it receives."""

    def __init__(self):
        self._lock = threading.Lock()
        self.events: list[ProcessingEvent] = []

    def __call__(self, event: ProcessingEvent) -> None:
        with self._lock:
            self.events.append(event)

    def of_kind(self, kind: EventKind) -> list[ProcessingEvent]:
        with self._lock:
            return [event for event in self.events if event.kind is kind]

    @property
    def kinds(self) -> list[EventKind]:
        with self._lock:
            return [event.kind for event in self.events]
