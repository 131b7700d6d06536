"""
Capture Controller

Drives a biometric capture session: the user is prompted through a fixed
sequence of head poses, and a pose is captured when the nose tip has moved
from its baseline in the requested direction (or, for the center pose, has
stayed still). Once every pose is captured, the controller synthesises the
features, measurements and liveness verdict and emits one payload.

The controller is a reactive state machine. It never blocks and never starts
background work; everything happens inside on_landmark_frame(), called once
per video frame by whoever owns the camera and detector.

    IDLE --start_session()--> CAPTURING --last pose--> PROCESSING --> COMPLETE
      |                          |                         |
      +----cancel_session()------+--> CANCELLED <--synthesis error

Snapshots come from one of two hooks. encode_frame(frame) turns the frame
the landmarks were detected on into a stored image; it is used whenever a
frame travels with the landmarks (run() over a LandmarkChannel). Otherwise
capture_snapshot() grabs whatever the camera shows now.

Usage:
    controller = CaptureController.from_config(
        encode_frame=lambda frame: frame_to_data_url(frame, 85),
        on_complete=submit_payload,
    )
    controller.start_session(detector)

    # In your frame loop:
    controller.on_landmark_frame(detector.detect(frame), frame)
"""

import logging
import time
from typing import Any, Callable, Dict, Optional, Tuple

import numpy as np

from biocapture.channel import LandmarkChannel
from biocapture.config import get_capture_config, get_landmark_config
from biocapture.errors import CaptureStateError, DetectorInitError, SynthesisError
from biocapture.landmarks import LandmarkIndexMap, LandmarkSet
from biocapture.payload import (
    DEFAULT_CAPTURE_QUALITY,
    BiometricPayload,
    Encoder,
    build_payload,
    encode_document,
)
from biocapture.poses import DEFAULT_MOVEMENT_THRESHOLD, Pose, parse_pose_sequence, pose_satisfied
from biocapture.session import CapturedFrame, MovementRecord, SessionPhase, SessionState
from biocapture.synthesis import DEFAULT_KEY_LANDMARK_COUNT

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[float, Optional[str]], None]
CompleteCallback = Callable[[BiometricPayload], None]
CancelledCallback = Callable[[], None]
FrameEncoder = Callable[[np.ndarray], Any]


class CaptureController:
    """
    Pose-guided capture and liveness state machine for one session.

    Attributes:
        poses: The pose sequence, in capture order.
        movement_threshold: Nose displacement (normalized units) that
                            satisfies a directional pose.
        liveness_tolerance: Poses allowed to finish without significant movement.
        key_landmark_count: Raw landmarks kept per pose in the measurements.
        capture_quality: Quality constant reported in the payload.
        index_map: Landmark indices of the key points.
        payload: The emitted payload once the session is COMPLETE.
    """

    def __init__(
        self,
        capture_snapshot: Optional[Callable[[], Any]] = None,
        config: Optional[Dict[str, Any]] = None,
        encode_frame: Optional[FrameEncoder] = None,
        index_map: Optional[LandmarkIndexMap] = None,
        on_progress: Optional[ProgressCallback] = None,
        on_complete: Optional[CompleteCallback] = None,
        on_cancelled: Optional[CancelledCallback] = None,
        device_info: Optional[str] = None,
        encoder: Encoder = encode_document,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize the controller.

        Args:
            capture_snapshot: Returns a still image of the current video
                              frame, or None if none is available yet.
                              Used for frames delivered without their image.
            config: Capture configuration containing:
                - poses: Pose labels in capture order
                - movement_threshold: Pose movement threshold (default 0.04)
                - liveness_tolerance: Poses allowed without movement (default 1)
                - key_landmark_count: Raw landmarks per pose (default 50)
                - capture_quality: Reported quality constant (default 0.95)
            encode_frame: Turns the frame a pose was detected on into the
                          stored snapshot (None means no snapshot).
            index_map: Landmark index scheme; defaults to MediaPipe Face Mesh.
            on_progress: Called after every capture with (fraction, next pose label).
            on_complete: Called once with the payload.
            on_cancelled: Called once if the session is cancelled.
            device_info: Opaque device metadata for the payload.
            encoder: Encoder for the payload documents.
            clock: Returns the current Unix time in seconds.

        Raises:
            ValueError: On an invalid pose sequence or threshold, or when
                        neither snapshot hook is given.
        """
        if capture_snapshot is None and encode_frame is None:
            raise ValueError("Either capture_snapshot or encode_frame is required")

        config = config or {}

        self.poses: Tuple[Pose, ...] = parse_pose_sequence(config.get("poses"))
        self.movement_threshold = float(config.get("movement_threshold", DEFAULT_MOVEMENT_THRESHOLD))
        self.liveness_tolerance = int(config.get("liveness_tolerance", 1))
        self.key_landmark_count = int(config.get("key_landmark_count", DEFAULT_KEY_LANDMARK_COUNT))
        self.capture_quality = float(config.get("capture_quality", DEFAULT_CAPTURE_QUALITY))

        if self.movement_threshold <= 0:
            raise ValueError(f"movement_threshold must be positive, got {self.movement_threshold}")
        if not 0 <= self.liveness_tolerance <= len(self.poses):
            raise ValueError(f"liveness_tolerance must be between 0 and {len(self.poses)}")
        if self.key_landmark_count < 0:
            raise ValueError("key_landmark_count must not be negative")

        self.index_map = index_map or LandmarkIndexMap()
        self.device_info = device_info
        self.payload: Optional[BiometricPayload] = None

        self._capture_snapshot = capture_snapshot
        self._encode_frame = encode_frame
        self._on_progress = on_progress
        self._on_complete = on_complete
        self._on_cancelled = on_cancelled
        self._encoder = encoder
        self._clock = clock

        self._state = SessionState()

    @classmethod
    def from_config(cls, capture_snapshot: Optional[Callable[[], Any]] = None, **kwargs) -> "CaptureController":
        """
        Create a controller from the capture and landmarks sections of config.yaml.

        Remaining keyword arguments (encode_frame, callbacks, device_info, ...)
        are passed to the constructor unchanged.
        """
        return cls(
            capture_snapshot,
            config=get_capture_config(),
            index_map=LandmarkIndexMap.from_config(get_landmark_config()),
            **kwargs,
        )

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def phase(self) -> SessionPhase:
        return self._state.phase

    @property
    def current_pose(self) -> Optional[Pose]:
        """The pose being captured, or None once every pose is done."""
        if self._state.current_pose_index >= len(self.poses):
            return None
        return self.poses[self._state.current_pose_index]

    @property
    def progress(self) -> float:
        """Fraction of poses captured (0.0 to 1.0)."""
        return self._state.current_pose_index / len(self.poses)

    @property
    def is_finished(self) -> bool:
        return self._state.phase in (SessionPhase.COMPLETE, SessionPhase.CANCELLED)

    # ------------------------------------------------------------------
    # Inputs
    # ------------------------------------------------------------------

    def start_session(self, detector: Any = None) -> None:
        """
        Start capturing.

        Args:
            detector: Optional landmark detector. Its ensure_ready() is called
                      before the session starts so a broken detector is
                      reported up front.

        Raises:
            DetectorInitError: If the detector fails to initialise. The
                               controller stays IDLE.
            CaptureStateError: If a session is already running or finished.
        """
        if self._state.phase not in (SessionPhase.IDLE, SessionPhase.CANCELLED):
            raise CaptureStateError(
                f"Cannot start a session in phase '{self._state.phase.value}'"
            )

        if detector is not None:
            try:
                detector.ensure_ready()
            except DetectorInitError:
                raise
            except Exception as e:
                raise DetectorInitError(f"Face landmark detector failed to start: {e}") from e

        self._state = SessionState(phase=SessionPhase.CAPTURING)
        self.payload = None
        logger.info(
            f"Capture session started: poses={[p.value for p in self.poses]}, "
            f"threshold={self.movement_threshold}"
        )

    def on_landmark_frame(self, landmarks: Optional[LandmarkSet], frame: Optional[np.ndarray] = None) -> bool:
        """
        Process the detector result for one video frame.

        Args:
            landmarks: Landmarks of the detected face, or None / empty when
                       no face was found.
            frame: The image the landmarks were detected on. When given (and
                   encode_frame is set) the snapshot is taken from it.

        Returns:
            True if this frame captured a pose.

        Raises:
            SynthesisError: If this frame completed the sequence but the
                            payload could not be built. The session is
                            CANCELLED by then.
        """
        state = self._state
        if state.phase != SessionPhase.CAPTURING:
            return False

        if landmarks is None or landmarks.is_empty or not landmarks.covers(self.index_map):
            return False

        nose = landmarks.xy(self.index_map.nose_tip)

        # The first frame of a pose only sets the reference point
        if state.baseline_point is None:
            self._state = state.with_baseline(nose)
            return False

        pose = self.poses[state.current_pose_index]
        dx = nose[0] - state.baseline_point[0]
        dy = nose[1] - state.baseline_point[1]

        if not pose_satisfied(pose, dx, dy, self.movement_threshold):
            return False

        snapshot = self._take_snapshot(frame)
        if snapshot is None:
            logger.debug(f"Pose '{pose.value}' satisfied but no snapshot available, retrying")
            return False

        self._state = state.with_capture(
            CapturedFrame(pose=pose, landmarks=landmarks, snapshot=snapshot),
            MovementRecord(pose=pose, dx=dx, dy=dy),
        )
        logger.info(
            f"Captured pose '{pose.value}' ({self._state.current_pose_index}/{len(self.poses)}): "
            f"dx={dx:+.3f}, dy={dy:+.3f}"
        )

        next_pose = self.current_pose
        if self._on_progress is not None:
            self._on_progress(self.progress, next_pose.value if next_pose else None)

        if self._state.current_pose_index == len(self.poses):
            self._finish()

        return True

    def cancel_session(self) -> bool:
        """
        Abort the session and discard everything captured so far.

        Returns:
            True if the session was cancelled, False if it had already
            finished (completed or cancelled) or is being processed.
        """
        if self._state.phase not in (SessionPhase.IDLE, SessionPhase.CAPTURING):
            return False

        logger.info(
            f"Capture session cancelled after {self._state.current_pose_index}/{len(self.poses)} poses"
        )
        self._discard()
        return True

    def run(self, channel: LandmarkChannel) -> Optional[BiometricPayload]:
        """
        Consume landmark events until the session finishes or the channel closes.

        Snapshots are taken from each event's own frame, so a capture always
        stores the image its landmarks came from even when the producer has
        moved on.

        Returns:
            The payload if the session completed, otherwise None.

        Raises:
            SynthesisError: If the payload could not be built.
        """
        for event in channel:
            self.on_landmark_frame(event.landmarks, event.frame)
            if self.is_finished:
                break
        return self.payload

    # ------------------------------------------------------------------
    # Processing
    # ------------------------------------------------------------------

    def synthesize(self, timestamp_ms: Optional[int] = None) -> BiometricPayload:
        """
        Build the payload from the captured frames and movements.

        Pure with respect to session state: calling it twice on the same
        captures yields identical documents, apart from the timestamp.
        """
        if timestamp_ms is None:
            timestamp_ms = int(self._clock() * 1000)

        return build_payload(
            self._state.captured_frames,
            self._state.movement_records,
            poses=self.poses,
            index_map=self.index_map,
            threshold=self.movement_threshold,
            timestamp_ms=timestamp_ms,
            device_info=self.device_info,
            capture_quality=self.capture_quality,
            key_landmark_count=self.key_landmark_count,
            liveness_tolerance=self.liveness_tolerance,
            encoder=self._encoder,
        )

    def _take_snapshot(self, frame: Optional[np.ndarray]) -> Any:
        if frame is not None and self._encode_frame is not None:
            return self._encode_frame(frame)
        if self._capture_snapshot is not None:
            return self._capture_snapshot()
        return None

    def _discard(self) -> None:
        self._state = SessionState(phase=SessionPhase.CANCELLED)
        self.payload = None
        if self._on_cancelled is not None:
            self._on_cancelled()

    def _finish(self) -> None:
        self._state = self._state.with_phase(SessionPhase.PROCESSING)
        logger.info("All poses captured, processing biometric data")

        try:
            payload = self.synthesize()
        except Exception as e:
            # Never leave the session stuck in PROCESSING
            logger.error(f"Biometric synthesis failed, discarding session: {e}")
            self._discard()
            raise SynthesisError(f"Could not build the biometric payload: {e}") from e

        self.payload = payload
        self._state = self._state.with_phase(SessionPhase.COMPLETE)
        logger.info(f"Capture complete: liveness_passed={payload.liveness_passed}")

        if self._on_complete is not None:
            self._on_complete(payload)
