"""
Landmark Data Module

Defines the contract between the face landmark detector and the capture
controller:

- LandmarkSet: one frame's facial keypoints as an immutable (N, 3) array of
  normalized coordinates (x, y in [0, 1], z depth or 0 when the detector
  does not report depth).
- LandmarkIndexMap: the named indices (nose tip, eye corners, mouth corners,
  chin) used to read specific keypoints. The defaults follow the MediaPipe
  Face Mesh topology and can be swapped for another detector's scheme
  through the "landmarks.indices" config section.

Usage:
    from biocapture.landmarks import LandmarkSet, LandmarkIndexMap

    indices = LandmarkIndexMap.from_config({"nose_tip": 1})
    landmarks = LandmarkSet.from_points([(0.5, 0.5, -0.02), ...])
    nose_x, nose_y = landmarks.xy(indices.nose_tip)
"""

import numpy as np
from dataclasses import dataclass, fields
from typing import Any, Dict, Iterable, Optional, Tuple


@dataclass(frozen=True)
class LandmarkIndexMap:
    """
    Named landmark indices for the key points used by the capture pipeline.

    Attributes:
        nose_tip: Nose tip (pose tracking reference).
        left_eye_inner: Left eye inner corner.
        right_eye_inner: Right eye inner corner.
        left_mouth: Left mouth corner.
        right_mouth: Right mouth corner.
        chin_center: Chin center.
    """

    nose_tip: int = 1
    left_eye_inner: int = 33
    right_eye_inner: int = 263
    left_mouth: int = 61
    right_mouth: int = 291
    chin_center: int = 199

    def __post_init__(self):
        for f in fields(self):
            value = getattr(self, f.name)
            if not isinstance(value, int) or isinstance(value, bool) or value < 0:
                raise ValueError(f"Landmark index '{f.name}' must be a non-negative int, got {value!r}")

    @classmethod
    def from_config(cls, config: Optional[Dict[str, Any]]) -> "LandmarkIndexMap":
        """
        Build an index map from a config dict.

        Accepts either the "landmarks" section (with an "indices" mapping) or
        the mapping itself. Unknown names raise ValueError.
        """
        if not config:
            return cls()

        indices = config.get("indices", config)
        known = {f.name for f in fields(cls)}
        unknown = set(indices) - known
        if unknown:
            raise ValueError(f"Unknown landmark names: {sorted(unknown)}. Known: {sorted(known)}")

        return cls(**{name: int(value) for name, value in indices.items()})

    @property
    def required_count(self) -> int:
        """Minimum landmark count a set must have to contain every key point."""
        return max(getattr(self, f.name) for f in fields(self)) + 1

    def as_dict(self) -> Dict[str, int]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


@dataclass(frozen=True, eq=False)
class LandmarkSet:
    """
    Facial landmarks for a single video frame.

    Attributes:
        points: Read-only float64 array of shape (N, 3) holding (x, y, z).
                x, y are normalized to [0, 1] relative to the image size.
                z is the detector's relative depth, 0.0 when unavailable.

    Raises:
        ValueError: On a badly shaped array or a NaN / infinite coordinate.
    """

    points: np.ndarray

    def __post_init__(self):
        points = np.array(self.points, dtype=np.float64)
        if points.ndim != 2 or points.shape[1] not in (2, 3):
            raise ValueError(f"Landmarks must have shape (N, 2) or (N, 3), got {points.shape}")
        if not np.isfinite(points).all():
            raise ValueError("Landmark coordinates must be finite numbers")

        # Missing depth is stored as 0
        if points.shape[1] == 2:
            points = np.hstack([points, np.zeros((len(points), 1))])

        points.flags.writeable = False
        object.__setattr__(self, "points", points)

    @classmethod
    def from_points(cls, points: Iterable[Any]) -> "LandmarkSet":
        """
        Build a LandmarkSet from heterogeneous point objects.

        Each point may be a (x, y) / (x, y, z) sequence, a dict with
        "x", "y" and optional "z" keys, or an object with x/y/z attributes
        (such as MediaPipe's NormalizedLandmark). A None or missing z is 0.
        """
        rows = [_point_to_row(p) for p in points]
        if not rows:
            return cls(np.zeros((0, 3)))
        return cls(np.array(rows, dtype=np.float64))

    def __len__(self) -> int:
        return len(self.points)

    @property
    def is_empty(self) -> bool:
        return len(self.points) == 0

    def point(self, index: int) -> np.ndarray:
        """Return the (x, y, z) point at a landmark index."""
        return self.points[index]

    def xy(self, index: int) -> Tuple[float, float]:
        """Return the (x, y) coordinates at a landmark index."""
        x, y, _ = self.points[index]
        return float(x), float(y)

    def covers(self, index_map: LandmarkIndexMap) -> bool:
        """True if every key point of the index map exists in this set."""
        return len(self.points) >= index_map.required_count

    def tolist(self):
        return self.points.tolist()


def _point_to_row(p: Any) -> Tuple[float, float, float]:
    if isinstance(p, dict):
        x, y, z = p["x"], p["y"], p.get("z")
    elif hasattr(p, "x") and hasattr(p, "y"):
        x, y, z = p.x, p.y, getattr(p, "z", None)
    else:
        values = list(p)
        if len(values) not in (2, 3):
            raise ValueError(f"Landmark point must have 2 or 3 values, got {len(values)}")
        x, y = values[0], values[1]
        z = values[2] if len(values) == 3 else None

    return float(x), float(y), float(z) if z is not None else 0.0


def point_to_dict(point: np.ndarray) -> Dict[str, float]:
    """Convert an (x, y, z) row to the {"x", "y", "z"} form used in payloads."""
    return {"x": float(point[0]), "y": float(point[1]), "z": float(point[2])}
