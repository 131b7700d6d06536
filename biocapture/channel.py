"""
Landmark Event Channel

Decouples frame delivery from the capture state machine. A producer (the
DetectorPump, or a WebSocket handler) publishes one LandmarkEvent per video
frame; the CaptureController consumes them one at a time in arrival order.

The channel is bounded. When the consumer falls behind, the oldest pending
event is dropped so the controller always works on recent frames.

Usage:
    channel = LandmarkChannel(maxsize=8)
    pump = DetectorPump(webcam.read_frame, detector, channel)

    # producer thread
    while pump.step():
        pass

    # consumer
    payload = controller.run(channel)
"""

import logging
import queue
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Iterator, Optional, Tuple

import numpy as np

from biocapture.landmarks import LandmarkSet

logger = logging.getLogger(__name__)


@dataclass(frozen=True, eq=False)
class LandmarkEvent:
    """
    Detector result for one video frame.

    Attributes:
        landmarks: Detected landmarks, or None when no face was found.
        frame: The source frame (BGR). CaptureController.run() encodes the
               snapshot of a captured pose from this frame.
        timestamp: Unix time at which the frame was read.
    """

    landmarks: Optional[LandmarkSet]
    frame: Optional[np.ndarray] = None
    timestamp: float = field(default_factory=time.time)


class ChannelClosed(Exception):
    """Raised by get() once the channel is closed and drained."""


class LandmarkChannel:
    """Bounded, thread-safe FIFO of LandmarkEvents."""

    def __init__(self, maxsize: int = 8):
        if maxsize < 1:
            raise ValueError("Channel size must be at least 1")
        self._queue: "queue.Queue[Optional[LandmarkEvent]]" = queue.Queue(maxsize=maxsize)
        self._closed = threading.Event()
        self._lock = threading.Lock()
        self.dropped = 0

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def publish(self, event: LandmarkEvent) -> bool:
        """
        Enqueue an event, dropping the oldest pending one if the channel is full.

        Returns:
            False if the channel is closed and the event was discarded.
        """
        if self.closed:
            return False

        with self._lock:
            while True:
                try:
                    self._queue.put_nowait(event)
                    return True
                except queue.Full:
                    try:
                        self._queue.get_nowait()
                        self.dropped += 1
                        logger.debug(f"Landmark channel full, dropped oldest event ({self.dropped} total)")
                    except queue.Empty:
                        pass

    def get(self, timeout: Optional[float] = None) -> LandmarkEvent:
        """
        Take the next event.

        Raises:
            ChannelClosed: If the channel is closed and no events remain.
            queue.Empty: If timeout expires with no event available.
        """
        while True:
            if self.closed and self._queue.empty():
                raise ChannelClosed()
            try:
                event = self._queue.get(timeout=timeout if timeout is not None else 0.1)
            except queue.Empty:
                if timeout is not None:
                    raise
                continue
            if event is None:
                # Wake-up sentinel from close()
                continue
            return event

    def close(self) -> None:
        """Close the channel; pending events can still be consumed."""
        self._closed.set()
        try:
            self._queue.put_nowait(None)
        except queue.Full:
            pass

    def __iter__(self) -> Iterator[LandmarkEvent]:
        while True:
            try:
                yield self.get()
            except ChannelClosed:
                return


FrameSource = Callable[[], Tuple[bool, Optional[np.ndarray]]]


class DetectorPump:
    """
    Reads frames from a source, runs the landmark detector and publishes events.

    Args:
        read_frame: Callable returning (success, frame_bgr), like
                    WebcamCapture.read_frame.
        detector: Object with detect(frame) -> Optional[LandmarkSet].
        channel: Channel to publish events on.
    """

    def __init__(self, read_frame: FrameSource, detector: Any, channel: LandmarkChannel):
        self.read_frame = read_frame
        self.detector = detector
        self.channel = channel
        self.frames_read = 0

    def step(self) -> bool:
        """
        Process one frame.

        Returns:
            False when the source is exhausted or the channel is closed.
        """
        if self.channel.closed:
            return False

        success, frame = self.read_frame()
        if not success or frame is None:
            return False

        self.frames_read += 1
        landmarks = self.detector.detect(frame)
        return self.channel.publish(LandmarkEvent(landmarks=landmarks, frame=frame))

    def run(self, should_stop: Optional[Callable[[], bool]] = None) -> int:
        """Pump frames until the source ends, the channel closes or should_stop() is true."""
        while should_stop is None or not should_stop():
            if not self.step():
                break
        return self.frames_read
