"""
Biometric Payload Assembly

Packages the synthesis documents and capture metadata into the payload the
hosted backend accepts for enrollment, verification and clock-in/out.

The three documents (features, measurements, liveness data) are encoded
independently; JSON text is the default encoding and any callable turning a
dict into a string can be injected instead.

Usage:
    from biocapture.payload import build_payload

    payload = build_payload(frames, movements, poses, index_map)
    backend.verify_biometric(attendant_id, challenge, "login", payload)
"""

import json
import platform
import sys
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional, Sequence, Tuple

from biocapture import __version__
from biocapture.landmarks import LandmarkIndexMap
from biocapture.poses import DEFAULT_MOVEMENT_THRESHOLD, Pose
from biocapture.session import CapturedFrame, MovementRecord
from biocapture.synthesis import (
    DEFAULT_KEY_LANDMARK_COUNT,
    extract_features,
    extract_measurements,
    synthesize_liveness,
)

CAPTURE_TYPE = "face"
DEFAULT_CAPTURE_QUALITY = 0.95

Encoder = Callable[[Any], str]


def encode_document(document: Any) -> str:
    """Encode a synthesis document as compact, key-ordered JSON."""
    return json.dumps(document, separators=(",", ":"), sort_keys=True, allow_nan=False)


def decode_document(text: str) -> Any:
    return json.loads(text)


def now_ms() -> int:
    return int(time.time() * 1000)


def default_device_info(timestamp_ms: Optional[int] = None) -> str:
    """Describe the capturing device the way a browser client reports itself."""
    info = {
        "userAgent": f"washlab-biocapture/{__version__} python/{platform.python_version()}",
        "platform": sys.platform,
        "timestamp": timestamp_ms if timestamp_ms is not None else now_ms(),
    }
    return json.dumps(info, separators=(",", ":"))


@dataclass(frozen=True)
class BiometricPayload:
    """
    Terminal artifact of a capture session.

    Attributes:
        capture_type: Always "face".
        angles: Pose labels in capture order.
        capture_quality: Fixed quality estimate reported to the backend.
        features: Encoded {pose -> {keyPoints, ratios}} document.
        measurements: Encoded {pose -> {landmarkCount, boundingBox,
                      centerPoint, keyLandmarks}} document.
        liveness_data: Encoded {passed, movements, movementCount,
                       significantMovements, timestamp} document.
        device_info: Opaque caller-supplied device metadata.
    """

    capture_type: str
    angles: Tuple[str, ...]
    capture_quality: float
    features: str
    measurements: str
    liveness_data: str
    device_info: Optional[str] = None
    liveness_passed: bool = field(default=False, compare=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "capture_type": self.capture_type,
            "angles": list(self.angles),
            "capture_quality": self.capture_quality,
            "features": self.features,
            "measurements": self.measurements,
            "liveness_data": self.liveness_data,
            "device_info": self.device_info,
        }

    def to_backend_args(self) -> Dict[str, Any]:
        """Render the payload as the backend's biometricData argument."""
        args = {
            "captureType": self.capture_type,
            "angles": list(self.angles),
            "captureQuality": self.capture_quality,
            "features": self.features,
            "measurements": self.measurements,
            "livenessData": self.liveness_data,
        }
        if self.device_info is not None:
            args["deviceInfo"] = self.device_info
        return args


def build_payload(
    frames: Sequence[CapturedFrame],
    movements: Sequence[MovementRecord],
    poses: Sequence[Pose],
    index_map: LandmarkIndexMap,
    threshold: float = DEFAULT_MOVEMENT_THRESHOLD,
    timestamp_ms: Optional[int] = None,
    device_info: Optional[str] = None,
    capture_quality: float = DEFAULT_CAPTURE_QUALITY,
    key_landmark_count: int = DEFAULT_KEY_LANDMARK_COUNT,
    liveness_tolerance: int = 1,
    encoder: Encoder = encode_document,
) -> BiometricPayload:
    """
    Run the synthesis step and assemble the payload.

    Args:
        frames: Captured frames, one per pose.
        movements: Movement records, one per pose.
        poses: The pose sequence used for the session.
        index_map: Landmark indices of the key points.
        threshold: Movement threshold used during capture.
        timestamp_ms: Liveness timestamp; defaults to the current time.
        device_info: Opaque device metadata; defaults to default_device_info().
        capture_quality: Quality constant reported to the backend.
        key_landmark_count: Raw landmarks kept per pose in the measurements.
        liveness_tolerance: Poses allowed without significant movement.
        encoder: Function encoding each document to a string.

    Returns:
        The assembled BiometricPayload.
    """
    if timestamp_ms is None:
        timestamp_ms = now_ms()

    features = extract_features(frames, index_map)
    measurements = extract_measurements(frames, key_landmark_count)
    liveness = synthesize_liveness(
        movements,
        required_count=len(poses),
        threshold=threshold,
        timestamp_ms=timestamp_ms,
        tolerance=liveness_tolerance,
    )

    return BiometricPayload(
        capture_type=CAPTURE_TYPE,
        angles=tuple(p.value for p in poses),
        capture_quality=capture_quality,
        features=encoder(features),
        measurements=encoder(measurements),
        liveness_data=encoder(liveness),
        device_info=device_info if device_info is not None else default_device_info(timestamp_ms),
        liveness_passed=liveness["passed"],
    )
