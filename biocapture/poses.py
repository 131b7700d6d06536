"""
Pose Sequence Module

The user is guided through a fixed sequence of head poses. Each pose is
accepted when the nose tip has moved far enough, in the right direction,
from the baseline recorded when the pose became active. The center pose
works the other way round: the nose must stay still.

Image coordinates grow to the right (x) and downwards (y), so "up" is a
negative y displacement.

Usage:
    from biocapture.poses import Pose, pose_satisfied

    pose_satisfied(Pose.LEFT, dx=-0.1, dy=0.0, threshold=0.04)  # True
"""

from enum import Enum
from typing import Iterable, Optional, Tuple


class Pose(str, Enum):
    """Head poses the user is asked to perform."""

    CENTER = "center"
    LEFT = "left"
    RIGHT = "right"
    UP = "up"
    DOWN = "down"


DEFAULT_POSE_SEQUENCE: Tuple[Pose, ...] = (
    Pose.CENTER,
    Pose.LEFT,
    Pose.RIGHT,
    Pose.UP,
    Pose.DOWN,
)

DEFAULT_MOVEMENT_THRESHOLD = 0.04

_PROMPTS = {
    Pose.CENTER: "Look straight at the camera",
    Pose.LEFT: "Move left",
    Pose.RIGHT: "Move right",
    Pose.UP: "Move up",
    Pose.DOWN: "Move down",
}


def parse_pose_sequence(labels: Optional[Iterable[str]]) -> Tuple[Pose, ...]:
    """
    Validate a configured pose sequence.

    Args:
        labels: Pose labels in capture order, or None for the default sequence.

    Returns:
        Tuple of Pose members in the given order.

    Raises:
        ValueError: On an unknown label, a repeated pose or an empty sequence.
    """
    if labels is None:
        return DEFAULT_POSE_SEQUENCE

    sequence = []
    for label in labels:
        try:
            pose = Pose(label)
        except ValueError:
            raise ValueError(
                f"Unknown pose '{label}'. Valid poses: {[p.value for p in Pose]}"
            ) from None
        if pose in sequence:
            raise ValueError(f"Pose '{label}' appears more than once in the sequence")
        sequence.append(pose)

    if not sequence:
        raise ValueError("Pose sequence must contain at least one pose")

    return tuple(sequence)


def pose_satisfied(pose: Pose, dx: float, dy: float, threshold: float) -> bool:
    """
    Decide whether a nose displacement performs the requested pose.

    Args:
        pose: The pose currently being captured.
        dx: Horizontal nose displacement from the baseline.
        dy: Vertical nose displacement from the baseline.
        threshold: Minimum displacement for directional poses, and the
                   maximum allowed drift for the center pose.

    Returns:
        True if the displacement satisfies the pose.
    """
    if pose == Pose.LEFT:
        return dx < -threshold
    if pose == Pose.RIGHT:
        return dx > threshold
    if pose == Pose.UP:
        return dy < -threshold
    if pose == Pose.DOWN:
        return dy > threshold
    if pose == Pose.CENTER:
        return abs(dx) < threshold and abs(dy) < threshold
    return False


def is_significant_movement(dx: float, dy: float, threshold: float) -> bool:
    """True if the displacement exceeds the threshold on either axis."""
    return abs(dx) > threshold or abs(dy) > threshold


def prompt_for(pose: Pose) -> str:
    """Instruction text shown to the user for a pose."""
    return _PROMPTS[pose]
