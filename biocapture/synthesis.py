"""
Feature, Measurement and Liveness Synthesis

Runs once, after every pose has been captured, and turns the captured frames
and movement records into the three documents carried by the biometric
payload:

1. Features: per pose, six key points and the distances/ratios between them.
   This is the geometric fingerprint the backend matches against.
2. Measurements: per pose, landmark count, bounding box, centroid and the
   first raw landmarks (a compact view of the mesh).
3. Liveness: whether the nose genuinely moved for the directional poses.
   A printed photo held in front of the camera cannot produce four distinct
   directional displacements from fresh baselines.

All functions are pure. The only time-dependent value is the liveness
timestamp, which comes from the caller.
"""

import logging
import numpy as np
from typing import Any, Dict, List, Sequence

from biocapture.landmarks import LandmarkIndexMap, LandmarkSet, point_to_dict
from biocapture.poses import is_significant_movement
from biocapture.session import CapturedFrame, MovementRecord

logger = logging.getLogger(__name__)

# Estimated face width as a multiple of the inner eye-corner distance
FACE_WIDTH_FACTOR = 1.5

DEFAULT_KEY_LANDMARK_COUNT = 50


def landmark_distance(p1: np.ndarray, p2: np.ndarray) -> float:
    """3D Euclidean distance between two (x, y, z) points."""
    return float(np.linalg.norm(np.asarray(p1, dtype=np.float64) - np.asarray(p2, dtype=np.float64)))


def extract_features(
    frames: Sequence[CapturedFrame],
    index_map: LandmarkIndexMap,
) -> Dict[str, Dict[str, Any]]:
    """
    Compute geometric features for every captured pose.

    Args:
        frames: Captured frames in capture order.
        index_map: Landmark indices of the key points.

    Returns:
        Mapping of pose label to {"keyPoints": {...}, "ratios": {...}}.

    Raises:
        ValueError: If a frame's landmark set does not contain every key point.
    """
    features: Dict[str, Dict[str, Any]] = {}

    for frame in frames:
        landmarks = frame.landmarks
        if not landmarks.covers(index_map):
            raise ValueError(
                f"Frame for pose '{frame.pose.value}' has {len(landmarks)} landmarks, "
                f"need at least {index_map.required_count}"
            )

        nose = landmarks.point(index_map.nose_tip)
        left_eye = landmarks.point(index_map.left_eye_inner)
        right_eye = landmarks.point(index_map.right_eye_inner)
        left_mouth = landmarks.point(index_map.left_mouth)
        right_mouth = landmarks.point(index_map.right_mouth)
        chin = landmarks.point(index_map.chin_center)

        eye_distance = landmark_distance(left_eye, right_eye)
        mouth_width = landmark_distance(left_mouth, right_mouth)

        features[frame.pose.value] = {
            "keyPoints": {
                "nose": point_to_dict(nose),
                "leftEye": point_to_dict(left_eye),
                "rightEye": point_to_dict(right_eye),
                "leftMouth": point_to_dict(left_mouth),
                "rightMouth": point_to_dict(right_mouth),
                "chin": point_to_dict(chin),
            },
            "ratios": {
                "eyeDistance": eye_distance,
                "mouthWidth": mouth_width,
                "noseToChin": landmark_distance(nose, chin),
                "leftEyeToNose": landmark_distance(left_eye, nose),
                "rightEyeToNose": landmark_distance(right_eye, nose),
                # A degenerate mouth width would make the ratio infinite,
                # which JSON cannot carry.
                "eyeToMouthRatio": eye_distance / mouth_width if mouth_width > 0 else 0.0,
                "faceWidth": eye_distance * FACE_WIDTH_FACTOR,
            },
        }

    return features


def compute_bounding_box(landmarks: LandmarkSet) -> Dict[str, float]:
    """
    Axis-aligned bounding box of all landmarks in normalized coordinates.

    Returned as {"x", "y", "width", "height"} with (x, y) the top-left
    corner. An empty landmark set yields an all-zero box.
    """
    if landmarks.is_empty:
        return {"x": 0.0, "y": 0.0, "width": 0.0, "height": 0.0}

    xs = landmarks.points[:, 0]
    ys = landmarks.points[:, 1]
    min_x, max_x = float(np.min(xs)), float(np.max(xs))
    min_y, max_y = float(np.min(ys)), float(np.max(ys))

    return {
        "x": min_x,
        "y": min_y,
        "width": max_x - min_x,
        "height": max_y - min_y,
    }


def compute_centroid(landmarks: LandmarkSet) -> Dict[str, float]:
    """Mean x and y of all landmarks (zeros for an empty set)."""
    if landmarks.is_empty:
        return {"x": 0.0, "y": 0.0}
    return {
        "x": float(np.mean(landmarks.points[:, 0])),
        "y": float(np.mean(landmarks.points[:, 1])),
    }


def extract_measurements(
    frames: Sequence[CapturedFrame],
    key_landmark_count: int = DEFAULT_KEY_LANDMARK_COUNT,
) -> Dict[str, Dict[str, Any]]:
    """
    Summarise the landmark mesh of every captured pose.

    Only the first key_landmark_count raw landmarks are kept; the full mesh
    (478 points for MediaPipe) would dominate the payload size.

    Returns:
        Mapping of pose label to {"landmarkCount", "boundingBox",
        "centerPoint", "keyLandmarks"}.
    """
    measurements: Dict[str, Dict[str, Any]] = {}

    for frame in frames:
        landmarks = frame.landmarks
        measurements[frame.pose.value] = {
            "landmarkCount": len(landmarks),
            "boundingBox": compute_bounding_box(landmarks),
            "centerPoint": compute_centroid(landmarks),
            "keyLandmarks": [
                point_to_dict(p) for p in landmarks.points[:key_landmark_count]
            ],
        }

    return measurements


def synthesize_liveness(
    movements: Sequence[MovementRecord],
    required_count: int,
    threshold: float,
    timestamp_ms: int,
    tolerance: int = 1,
) -> Dict[str, Any]:
    """
    Decide whether the recorded movements prove a live subject.

    The center pose asks the user to hold still, so it is expected to show
    no significant movement; `tolerance` poses may therefore lack it.

    Args:
        movements: One movement record per captured pose.
        required_count: Number of poses in the sequence (N).
        threshold: Displacement above which a movement counts as significant.
        timestamp_ms: Milliseconds since the epoch, stamped on the result.
        tolerance: Poses allowed without significant movement.

    Returns:
        Dict with "passed", "movements", "movementCount",
        "significantMovements" and "timestamp".
    """
    has_movements = len(movements) >= required_count
    significant: List[MovementRecord] = [
        m for m in movements if is_significant_movement(m.dx, m.dy, threshold)
    ]
    passed = has_movements and len(significant) >= required_count - tolerance

    if not passed:
        logger.info(
            f"Liveness check failed: {len(significant)}/{len(movements)} significant movements "
            f"(need {required_count - tolerance})"
        )

    return {
        "passed": passed,
        "movements": [m.to_dict() for m in movements],
        "movementCount": len(movements),
        "significantMovements": len(significant),
        "timestamp": int(timestamp_ms),
    }
