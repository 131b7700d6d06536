"""
Webcam capture surface.

Opens the camera, reads BGR frames and provides the still snapshots stored
with each captured pose.
"""

import base64
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

import cv2
import numpy as np

logger = logging.getLogger(__name__)

JPEG_DATA_URL_PREFIX = "data:image/jpeg;base64,"


@dataclass
class CaptureConfig:
    """Configuration for webcam capture."""
    width: int = 640
    height: int = 480
    fps: int = 30
    device_id: int = 0
    mirrored: bool = True
    jpeg_quality: int = 85
    # Detector results buffered between the camera thread and the controller
    channel_size: int = 4

    @classmethod
    def from_dict(cls, config: Optional[Dict[str, Any]]) -> "CaptureConfig":
        config = config or {}
        known = {k: v for k, v in config.items() if k in cls.__dataclass_fields__}
        return cls(**known)


class WebcamCapture:
    """
    Manages the webcam device for a capture session.

    Keeps the last frame read so snapshot() can return the image the user is
    currently seeing.
    """

    def __init__(self, config: Optional[CaptureConfig] = None):
        self.config = config or CaptureConfig()
        self._cap: Optional[cv2.VideoCapture] = None
        self._is_running: bool = False
        self._last_frame: Optional[np.ndarray] = None

    def open(self) -> bool:
        """
        Open the webcam device.

        Returns:
            True if webcam opened successfully, False otherwise.
        """
        if self._cap is not None:
            self.close()

        self._cap = cv2.VideoCapture(self.config.device_id)

        if not self._cap.isOpened():
            logger.error(f"Failed to open camera {self.config.device_id}")
            return False

        self._cap.set(cv2.CAP_PROP_FRAME_WIDTH, self.config.width)
        self._cap.set(cv2.CAP_PROP_FRAME_HEIGHT, self.config.height)
        self._cap.set(cv2.CAP_PROP_FPS, self.config.fps)

        self._is_running = True
        logger.info(f"Opened camera {self.config.device_id} at {self.config.width}x{self.config.height}")
        return True

    def close(self) -> None:
        """Release the webcam device."""
        self._is_running = False
        if self._cap is not None:
            self._cap.release()
            self._cap = None
            logger.info("Camera closed")

    def read_frame(self) -> Tuple[bool, Optional[np.ndarray]]:
        """
        Read a single frame from the webcam.

        Returns:
            Tuple of (success, frame) where frame is BGR numpy array or None.
            Mirrored horizontally when configured, like a selfie preview.
        """
        if self._cap is None or not self._is_running:
            return False, None

        ret, frame = self._cap.read()
        if not ret:
            return False, None

        if self.config.mirrored:
            frame = cv2.flip(frame, 1)

        self._last_frame = frame
        return True, frame

    def snapshot(self) -> Optional[str]:
        """
        Still image of the most recent frame as a JPEG data URL.

        Returns:
            "data:image/jpeg;base64,..." or None if no frame was read yet.
        """
        if self._last_frame is None:
            return None
        return self.encode_frame(self._last_frame)

    def encode_frame(self, frame: np.ndarray) -> str:
        """JPEG data URL of a given frame at the configured quality."""
        return frame_to_data_url(frame, self.config.jpeg_quality)

    @property
    def is_open(self) -> bool:
        return self._cap is not None and self._cap.isOpened()

    def __enter__(self):
        self.open()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False


def frame_to_base64(frame: np.ndarray, quality: int = 85) -> str:
    """
    Encode a BGR frame as base64 JPEG.

    Raises:
        ValueError: If OpenCV cannot encode the frame.
    """
    success, buffer = cv2.imencode(".jpg", frame, [int(cv2.IMWRITE_JPEG_QUALITY), quality])
    if not success:
        raise ValueError("Failed to encode frame")
    return base64.b64encode(buffer).decode("utf-8")


def frame_to_data_url(frame: np.ndarray, quality: int = 85) -> str:
    return JPEG_DATA_URL_PREFIX + frame_to_base64(frame, quality)


def base64_to_frame(b64_string: str) -> Optional[np.ndarray]:
    """
    Decode a base64 image (optionally a data URL) into a BGR frame.

    Returns:
        BGR numpy array, or None if the bytes are not a decodable image.

    Raises:
        binascii.Error: If the string is not valid base64.
    """
    if b64_string.startswith("data:"):
        b64_string = b64_string.split(",", 1)[-1]
    img_bytes = base64.b64decode(b64_string, validate=True)
    nparr = np.frombuffer(img_bytes, np.uint8)
    if nparr.size == 0:
        return None
    return cv2.imdecode(nparr, cv2.IMREAD_COLOR)
