"""
UI overlay helpers for the local capture window.

Provides:
- draw_face_guide()     - ellipse the user centers their face in
- draw_pose_prompt()    - current instruction and progress bar
- draw_pose_checklist() - one dot per pose (green = captured)
- draw_nose_marker()    - baseline and current nose position
"""

import cv2
import numpy as np
from typing import Optional, Sequence, Tuple

from biocapture.poses import Pose, prompt_for

_GREEN = (0, 200, 0)
_GRAY = (160, 160, 160)
_CYAN = (255, 255, 0)
_WHITE = (255, 255, 255)


def draw_face_guide(frame: np.ndarray, face_detected: bool = False) -> None:
    """Draw a guide ellipse in the center of the frame.

    Args:
        frame: BGR image to draw on (modified in-place).
        face_detected: If True the ellipse is drawn green, otherwise gray.
    """
    h, w = frame.shape[:2]
    center = (w // 2, h // 2)

    # Portrait ellipse, vertical axis = 3/4 of frame height
    semi_v = h * 3 // 8
    semi_h = semi_v * 2 // 3
    color = _GREEN if face_detected else _GRAY

    overlay = frame.copy()
    cv2.ellipse(overlay, center, (semi_h, semi_v), 0, 0, 360, color, 2, cv2.LINE_AA)
    cv2.addWeighted(overlay, 0.8, frame, 0.2, 0, frame)


def draw_pose_prompt(
    frame: np.ndarray,
    pose: Optional[Pose],
    progress: float,
    message: Optional[str] = None,
) -> None:
    """Draw the instruction for the current pose and a progress bar.

    Args:
        frame: BGR image to draw on (modified in-place).
        pose: Pose being captured, or None when capture is finished.
        progress: Fraction of poses captured (0.0 to 1.0).
        message: Overrides the pose instruction (e.g. "Processing...").
    """
    h, w = frame.shape[:2]
    text = message or (prompt_for(pose) if pose is not None else "Capture complete")

    text_size = cv2.getTextSize(text, cv2.FONT_HERSHEY_SIMPLEX, 0.8, 2)[0]
    tx = (w - text_size[0]) // 2
    cv2.putText(frame, text, (tx, 40), cv2.FONT_HERSHEY_SIMPLEX, 0.8, _WHITE, 2, cv2.LINE_AA)

    bar_x0, bar_x1 = 40, w - 40
    bar_y0, bar_y1 = h - 30, h - 18
    progress = max(0.0, min(1.0, progress))
    cv2.rectangle(frame, (bar_x0, bar_y0), (bar_x1, bar_y1), _GRAY, 1)
    fill_x = bar_x0 + int((bar_x1 - bar_x0) * progress)
    if fill_x > bar_x0:
        cv2.rectangle(frame, (bar_x0, bar_y0), (fill_x, bar_y1), _GREEN, -1)


def draw_pose_checklist(
    frame: np.ndarray,
    poses: Sequence[Pose],
    captured: Sequence[Pose],
) -> None:
    """Draw one labelled dot per pose in the top-left corner."""
    for i, pose in enumerate(poses):
        cx, cy = 20, 70 + i * 24
        if pose in captured:
            cv2.circle(frame, (cx, cy), 7, _GREEN, -1, cv2.LINE_AA)
        else:
            cv2.circle(frame, (cx, cy), 7, _GRAY, 1, cv2.LINE_AA)
        cv2.putText(frame, pose.value, (cx + 14, cy + 5), cv2.FONT_HERSHEY_SIMPLEX,
                    0.45, _WHITE, 1, cv2.LINE_AA)


def draw_nose_marker(
    frame: np.ndarray,
    current: Optional[Tuple[float, float]],
    baseline: Optional[Tuple[float, float]] = None,
) -> None:
    """Mark the nose tip (cyan) and its baseline (gray) from normalized coordinates."""
    h, w = frame.shape[:2]

    def _px(point: Tuple[float, float]) -> Tuple[int, int]:
        return int(point[0] * w), int(point[1] * h)

    if baseline is not None:
        cv2.circle(frame, _px(baseline), 6, _GRAY, 1, cv2.LINE_AA)
        if current is not None:
            cv2.line(frame, _px(baseline), _px(current), _GRAY, 1, cv2.LINE_AA)
    if current is not None:
        cv2.circle(frame, _px(current), 4, _CYAN, -1, cv2.LINE_AA)
