"""
WashLab Biometric Capture

Client-side face capture and liveness verification for WashLab staff
authentication, clock-in and clock-out.

Main components:
    - controller: Pose-guided capture state machine (CaptureController)
    - synthesis: Feature, measurement and liveness documents
    - payload: Payload assembly for the hosted backend
    - channel: Landmark event channel between detector and controller
    - face_detector: MediaPipe Face Landmarker adapter
    - webcam: Camera capture surface and snapshots
    - backend_client: Enrollment / verification / attendance mutations
    - config: Configuration loading

Usage:
    from biocapture import CaptureController, LandmarkSet
    from biocapture.config import get_capture_config
"""

__version__ = "0.1.0"

from biocapture.errors import (
    BiocaptureError,
    BackendError,
    CaptureStateError,
    DetectorInitError,
    SynthesisError,
)

from biocapture.landmarks import LandmarkIndexMap, LandmarkSet

from biocapture.poses import (
    Pose,
    DEFAULT_POSE_SEQUENCE,
    DEFAULT_MOVEMENT_THRESHOLD,
    pose_satisfied,
)

from biocapture.session import (
    SessionPhase,
    SessionState,
    CapturedFrame,
    MovementRecord,
)

from biocapture.payload import BiometricPayload, build_payload

from biocapture.channel import LandmarkChannel, LandmarkEvent, DetectorPump

from biocapture.controller import CaptureController

__all__ = [
    "__version__",
    # Errors
    "BiocaptureError",
    "BackendError",
    "CaptureStateError",
    "DetectorInitError",
    "SynthesisError",
    # Landmarks
    "LandmarkIndexMap",
    "LandmarkSet",
    # Poses
    "Pose",
    "DEFAULT_POSE_SEQUENCE",
    "DEFAULT_MOVEMENT_THRESHOLD",
    "pose_satisfied",
    # Session
    "SessionPhase",
    "SessionState",
    "CapturedFrame",
    "MovementRecord",
    # Payload
    "BiometricPayload",
    "build_payload",
    # Channel
    "LandmarkChannel",
    "LandmarkEvent",
    "DetectorPump",
    # Controller
    "CaptureController",
]
