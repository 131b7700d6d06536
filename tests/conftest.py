"""
Shared fixtures for the capture tests.

Synthetic faces are built on the MediaPipe Face Mesh index scheme: every
point sits at the image center except the six key points, which are placed
around the requested nose position.
"""

import os
import sys

import numpy as np
import pytest

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from biocapture.landmarks import LandmarkIndexMap, LandmarkSet

# Enough points to cover index 291 (right mouth corner)
MESH_SIZE = 300

# Nose positions for one full session with the default sequence and
# threshold 0.04. Pairs of (baseline frame, capture frame).
SESSION_NOSE_PATH = [
    (0.50, 0.50), (0.505, 0.495),  # center: tiny drift
    (0.50, 0.50), (0.40, 0.50),    # left
    (0.40, 0.50), (0.50, 0.50),    # right
    (0.50, 0.50), (0.50, 0.40),    # up
    (0.50, 0.40), (0.50, 0.50),    # down
]


def make_face(nose_x: float = 0.5, nose_y: float = 0.5, size: int = MESH_SIZE,
              index_map: LandmarkIndexMap = LandmarkIndexMap()) -> LandmarkSet:
    """Build a synthetic face with its key points arranged around the nose."""
    points = np.zeros((size, 3))
    points[:, 0] = 0.5
    points[:, 1] = 0.5

    layout = {
        index_map.nose_tip: (nose_x, nose_y, -0.05),
        index_map.left_eye_inner: (nose_x - 0.04, nose_y - 0.08, 0.0),
        index_map.right_eye_inner: (nose_x + 0.04, nose_y - 0.08, 0.0),
        index_map.left_mouth: (nose_x - 0.05, nose_y + 0.07, 0.0),
        index_map.right_mouth: (nose_x + 0.05, nose_y + 0.07, 0.0),
        index_map.chin_center: (nose_x, nose_y + 0.15, 0.0),
    }
    for index, point in layout.items():
        if index < size:
            points[index] = point

    return LandmarkSet(points)


@pytest.fixture
def face():
    """Factory fixture: face(nose_x, nose_y) -> LandmarkSet."""
    return make_face


@pytest.fixture
def session_frames():
    """Landmark frames that complete a default five-pose session."""
    return [make_face(x, y) for x, y in SESSION_NOSE_PATH]


@pytest.fixture
def fixed_clock():
    """Clock returning a constant Unix time (2024-01-01T00:00:00Z)."""
    return lambda: 1704067200.0
