"""
Face Landmark Detection Module

Wraps MediaPipe's Face Landmarker to turn camera frames into LandmarkSets
for the capture controller. One face, 478 landmarks (468 mesh points plus
10 iris points), normalized x/y and relative depth z.

MediaPipe 0.10.x uses the Tasks API (mp.tasks.vision.FaceLandmarker)
instead of the legacy Solutions API (mp.solutions.face_mesh).

The landmarker is created lazily. Any failure to import MediaPipe, download
the model or create the landmarker is raised as DetectorInitError, which is
how the controller learns that a session cannot start.

Usage:
    from biocapture.face_detector import FaceDetector

    detector = FaceDetector(get_face_detection_config())
    controller.start_session(detector)   # calls detector.ensure_ready()
    landmarks = detector.detect(frame)
"""

import logging
import urllib.request
from pathlib import Path
from typing import Any, Dict, Optional

import cv2
import numpy as np

from biocapture.errors import DetectorInitError
from biocapture.landmarks import LandmarkSet

logger = logging.getLogger(__name__)

# URL for the face landmarker model
MODEL_URL = "https://storage.googleapis.com/mediapipe-models/face_landmarker/face_landmarker/float16/1/face_landmarker.task"
MODEL_FILENAME = "face_landmarker.task"


def get_model_path(model_dir: Optional[str] = None) -> str:
    """
    Get the path to the MediaPipe face landmarker model file.
    Downloads the model if it doesn't exist locally.

    Args:
        model_dir: Directory for the model. Defaults to storage/models
                   under the project root.

    Returns:
        Path to the model file.
    """
    if model_dir is None:
        from biocapture.config import get_project_root

        directory = get_project_root() / "storage" / "models"
    else:
        directory = Path(model_dir)
    directory.mkdir(parents=True, exist_ok=True)

    model_path = directory / MODEL_FILENAME

    if not model_path.exists():
        logger.info(f"Downloading MediaPipe face landmarker model from {MODEL_URL}")
        urllib.request.urlretrieve(MODEL_URL, str(model_path))
        logger.info(f"Model saved to {model_path}")

    return str(model_path)


class FaceDetector:
    """
    Face landmark extraction using MediaPipe Face Landmarker.

    Attributes:
        config: Configuration dictionary with detection parameters.
        landmarker: MediaPipe FaceLandmarker, None until initialised.
    """

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        """
        Initialize the FaceDetector.

        Args:
            config: Configuration dictionary containing:
                - min_detection_confidence: Minimum confidence for detection (0-1)
                - min_tracking_confidence: Minimum confidence for tracking (0-1)
                - num_faces: Faces to detect (the first one is used)
                - model_path: Optional explicit path to the .task model
                - model_dir: Optional directory for the downloaded model

        Example:
            detector = FaceDetector({"min_detection_confidence": 0.4})
        """
        self.config = config or {}
        self.min_detection_confidence = self.config.get("min_detection_confidence", 0.4)
        self.min_tracking_confidence = self.config.get("min_tracking_confidence", 0.4)
        self.num_faces = self.config.get("num_faces", 1)
        self.landmarker = None
        self._mp = None

    @property
    def is_ready(self) -> bool:
        return self.landmarker is not None

    def ensure_ready(self) -> None:
        """
        Load MediaPipe and create the landmarker if not done yet.

        Raises:
            DetectorInitError: If MediaPipe or the model cannot be loaded.
        """
        if self.landmarker is not None:
            return

        try:
            import mediapipe as mp
            from mediapipe.tasks import python as mp_tasks
            from mediapipe.tasks.python import vision
        except ImportError as e:
            raise DetectorInitError(f"MediaPipe is not installed: {e}") from e

        try:
            model_path = self.config.get("model_path") or get_model_path(self.config.get("model_dir"))

            base_options = mp_tasks.BaseOptions(model_asset_path=model_path)
            options = vision.FaceLandmarkerOptions(
                base_options=base_options,
                running_mode=vision.RunningMode.IMAGE,
                num_faces=self.num_faces,
                min_face_detection_confidence=self.min_detection_confidence,
                min_face_presence_confidence=self.min_detection_confidence,
                min_tracking_confidence=self.min_tracking_confidence,
                output_face_blendshapes=False,
                output_facial_transformation_matrixes=False,
            )
            self.landmarker = vision.FaceLandmarker.create_from_options(options)
        except Exception as e:
            raise DetectorInitError(f"Failed to create face landmarker: {e}") from e

        self._mp = mp
        logger.info(f"Face landmarker ready (model={model_path})")

    def detect(self, frame: np.ndarray) -> Optional[LandmarkSet]:
        """
        Detect a face and extract its landmarks.

        Args:
            frame: Input image as BGR numpy array with shape (H, W, 3).

        Returns:
            LandmarkSet for the first detected face, or None if no face is found.

        Raises:
            DetectorInitError: If the landmarker cannot be initialised.
        """
        self.ensure_ready()

        # MediaPipe expects RGB, OpenCV delivers BGR
        rgb_frame = cv2.cvtColor(frame, cv2.COLOR_BGR2RGB)
        mp_image = self._mp.Image(image_format=self._mp.ImageFormat.SRGB, data=rgb_frame)

        results = self.landmarker.detect(mp_image)

        if not results.face_landmarks:
            return None

        return self.landmarks_from_result(results.face_landmarks[0])

    @staticmethod
    def landmarks_from_result(face_landmarks) -> LandmarkSet:
        """Convert a list of MediaPipe NormalizedLandmark objects to a LandmarkSet."""
        points = np.zeros((len(face_landmarks), 3), dtype=np.float64)
        for i, landmark in enumerate(face_landmarks):
            # z is relative depth, negative values are closer to the camera
            points[i] = [landmark.x, landmark.y, landmark.z or 0.0]
        return LandmarkSet(points)

    def close(self):
        """Clean up MediaPipe resources."""
        if getattr(self, "landmarker", None) is not None:
            self.landmarker.close()
            self.landmarker = None

    def __del__(self):
        self.close()
