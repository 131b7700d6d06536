"""
Capture Session State

All state of one capture session lives in a single immutable SessionState
record. The controller never mutates it; each transition builds a new record
with dataclasses.replace(), so the state seen by callbacks and by the UI is
always the state the controller is working from.
"""

from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Optional, Tuple

from biocapture.landmarks import LandmarkSet
from biocapture.poses import Pose


class SessionPhase(Enum):
    """Lifecycle of a capture session."""

    IDLE = "idle"
    CAPTURING = "capturing"
    PROCESSING = "processing"
    COMPLETE = "complete"
    CANCELLED = "cancelled"


@dataclass(frozen=True, eq=False)
class CapturedFrame:
    """
    A frame captured at the moment a pose was satisfied.

    Attributes:
        pose: The pose that was performed.
        landmarks: Landmarks detected on that frame.
        snapshot: Opaque image handle returned by the capture surface
                  (a JPEG data URL for the webcam surface). Stored for
                  audit only, never inspected by the pipeline.
    """

    pose: Pose
    landmarks: LandmarkSet
    snapshot: Any


@dataclass(frozen=True)
class MovementRecord:
    """Nose displacement from the baseline when a pose was captured."""

    pose: Pose
    dx: float
    dy: float

    def to_dict(self) -> dict:
        return {"angle": self.pose.value, "movement": {"x": self.dx, "y": self.dy}}


@dataclass(frozen=True)
class SessionState:
    """
    Snapshot of a capture session.

    Invariant while CAPTURING:
        len(captured_frames) == len(movement_records) == current_pose_index
    """

    phase: SessionPhase = SessionPhase.IDLE
    current_pose_index: int = 0
    captured_frames: Tuple[CapturedFrame, ...] = ()
    movement_records: Tuple[MovementRecord, ...] = ()
    baseline_point: Optional[Tuple[float, float]] = None

    def with_baseline(self, point: Tuple[float, float]) -> "SessionState":
        return replace(self, baseline_point=point)

    def with_capture(self, frame: CapturedFrame, movement: MovementRecord) -> "SessionState":
        """Record a capture, advance to the next pose and clear the baseline."""
        return replace(
            self,
            current_pose_index=self.current_pose_index + 1,
            captured_frames=self.captured_frames + (frame,),
            movement_records=self.movement_records + (movement,),
            baseline_point=None,
        )

    def with_phase(self, phase: SessionPhase) -> "SessionState":
        return replace(self, phase=phase)

    @property
    def captured_poses(self) -> Tuple[Pose, ...]:
        return tuple(frame.pose for frame in self.captured_frames)
