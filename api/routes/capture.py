"""
Capture API Routes

This module provides:
- WebSocket endpoint for a live capture session with frame-by-frame feedback
- REST endpoint replaying recorded landmark frames through a fresh session

The WebSocket endpoint runs the face landmark detector on each frame the
station UI sends and feeds the result to a CaptureController. The UI shows
the returned pose prompt and progress, and forwards the final payload to the
backend together with its challenge.
"""

import binascii
import logging
from typing import Any, Optional

import numpy as np
from fastapi import APIRouter, HTTPException, WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from api.schemas import (
    FrameMessage,
    SessionStartedResponse,
    FrameStatusResponse,
    PayloadModel,
    CaptureCompleteResponse,
    CancelledResponse,
    CaptureErrorResponse,
    ReplayRequest,
    ReplayResponse,
)
from biocapture.config import get_face_detection_config, get_webcam_config
from biocapture.controller import CaptureController
from biocapture.errors import DetectorInitError, SynthesisError
from biocapture.face_detector import FaceDetector
from biocapture.landmarks import LandmarkSet
from biocapture.session import SessionPhase
from biocapture.webcam import base64_to_frame, frame_to_data_url

# Setup logging
logger = logging.getLogger(__name__)

# Create routers
router = APIRouter(prefix="/ws", tags=["capture"])
rest_router = APIRouter(prefix="/capture", tags=["capture"])


class CaptureSession:
    """
    Manages state for a single live capture session.

    Attributes:
        detector: FaceDetector instance for this session.
        controller: CaptureController driving the pose sequence.
    """

    def __init__(self, device_info: Optional[str] = None):
        self.detector = FaceDetector(get_face_detection_config())
        self.jpeg_quality = get_webcam_config().get("jpeg_quality", 85)
        self.controller = CaptureController.from_config(
            encode_frame=self._snapshot, device_info=device_info
        )

    def _snapshot(self, frame: np.ndarray) -> str:
        return frame_to_data_url(frame, self.jpeg_quality)

    def start(self) -> SessionStartedResponse:
        """
        Start capturing.

        Raises:
            DetectorInitError: If the landmark detector cannot be loaded.
            CaptureStateError: If the session already started.
        """
        self.controller.start_session(self.detector)
        return SessionStartedResponse(
            poses=[p.value for p in self.controller.poses],
            current_pose=self.controller.current_pose.value,
            movement_threshold=self.controller.movement_threshold,
        )

    def process_frame(self, frame: np.ndarray) -> FrameStatusResponse:
        """
        Run detection on a decoded frame and advance the session.

        Args:
            frame: BGR image decoded from the client's JPEG.

        Returns:
            FrameStatusResponse with detection and progress status.

        Raises:
            SynthesisError: If the last pose was captured but the payload
                            could not be built.
        """
        landmarks = self.detector.detect(frame)
        captured = self.controller.on_landmark_frame(landmarks, frame)
        return self.status(face_detected=landmarks is not None and not landmarks.is_empty,
                           captured=captured)

    def status(self, face_detected: bool, captured: bool = False) -> FrameStatusResponse:
        current = self.controller.current_pose
        return FrameStatusResponse(
            face_detected=face_detected,
            captured=captured,
            current_pose=current.value if current is not None else None,
            progress=self.controller.progress,
            captured_poses=[p.value for p in self.controller.state.captured_poses],
            phase=self.controller.phase.value,
        )

    def cancel(self) -> bool:
        return self.controller.cancel_session()

    def cleanup(self):
        """Clean up resources."""
        self.detector.close()


async def _send_error(websocket: WebSocket, error: str, code: str) -> None:
    await websocket.send_json(CaptureErrorResponse(error=error, code=code).model_dump())


@router.websocket("/capture")
async def websocket_capture(websocket: WebSocket):
    """
    WebSocket endpoint for a live biometric capture session.

    Protocol:
        Client -> Server:
        {"type": "start", "device_info": "<optional opaque string>"}
        {"type": "frame", "data": "<base64-encoded JPEG>"}
        {"type": "cancel"}

        Server -> Client:
        {"type": "session_started", "poses": [...], "current_pose": "center", ...}
        {"type": "frame_status", "face_detected": bool, "captured": bool,
         "current_pose": "left", "progress": 0.2, "captured_poses": [...], "phase": "capturing"}
        {"type": "capture_complete", "liveness_passed": bool, "payload": {...}}
        {"type": "cancelled"}
        {"type": "error", "error": "...", "code": "..."}

    The connection is closed after capture_complete, cancelled, or a
    detector initialisation failure. Disconnecting mid-capture cancels the
    session; nothing captured is kept.
    """
    await websocket.accept()

    session: Optional[CaptureSession] = None
    disconnected = False

    try:
        while True:
            message: Any = await websocket.receive_json()
            msg_type = message.get("type") if isinstance(message, dict) else None

            if msg_type == "start":
                if session is not None and session.controller.phase != SessionPhase.CANCELLED:
                    await _send_error(websocket, "Session already started", "SESSION_STATE")
                    continue
                if session is not None:
                    session.cleanup()

                session = CaptureSession(device_info=message.get("device_info"))
                try:
                    started = session.start()
                except DetectorInitError as e:
                    logger.error(f"Detector initialisation failed: {e}")
                    await _send_error(websocket, str(e), "DETECTOR_INIT_FAILED")
                    break
                await websocket.send_json(started.model_dump())

            elif msg_type == "frame":
                if session is None or session.controller.phase != SessionPhase.CAPTURING:
                    await _send_error(websocket, "No capture session in progress", "SESSION_STATE")
                    continue

                try:
                    frame = base64_to_frame(FrameMessage(**message).data)
                except (ValidationError, binascii.Error, ValueError) as e:
                    logger.warning(f"Failed to decode image data: {e}")
                    frame = None
                if frame is None:
                    await _send_error(websocket, "Invalid image data", "INVALID_IMAGE")
                    continue

                try:
                    status = session.process_frame(frame)
                except SynthesisError as e:
                    logger.error(f"Capture session discarded: {e}")
                    await _send_error(websocket, str(e), "SYNTHESIS_FAILED")
                    break
                await websocket.send_json(status.model_dump())

                payload = session.controller.payload
                if payload is not None:
                    complete = CaptureCompleteResponse(
                        liveness_passed=payload.liveness_passed,
                        payload=PayloadModel.from_payload(payload),
                    )
                    await websocket.send_json(complete.model_dump())
                    break

            elif msg_type == "cancel":
                if session is not None:
                    session.cancel()
                await websocket.send_json(CancelledResponse().model_dump())
                break

            else:
                logger.warning(f"Unknown message type: {msg_type}")
                await _send_error(websocket, f"Unknown message type: {msg_type}", "INVALID_MESSAGE")

    except WebSocketDisconnect:
        logger.info("Client disconnected during capture")
        disconnected = True
        if session is not None:
            session.cancel()

    finally:
        if session is not None:
            session.cleanup()
        if not disconnected:
            await websocket.close()


@rest_router.post("/replay", response_model=ReplayResponse)
def replay_capture(request: ReplayRequest):
    """
    Run recorded landmark frames through a fresh capture session.

    Each frame is either a list of [x, y] / [x, y, z] points in normalized
    image coordinates, or null for a frame without a detected face. Frames
    after the session completes are ignored.

    Raises:
        422: If a frame's points are malformed or not finite, or the
             captured frames cannot be turned into a payload.
    """
    controller = CaptureController.from_config(
        lambda: f"replay-frame-{processed}", device_info=request.device_info
    )
    controller.start_session()

    processed = 0
    for points in request.frames:
        if controller.is_finished:
            break
        try:
            landmarks = LandmarkSet.from_points(points) if points is not None else None
        except ValueError as e:
            raise HTTPException(status_code=422, detail=f"Frame {processed}: {e}")
        try:
            controller.on_landmark_frame(landmarks)
        except SynthesisError as e:
            raise HTTPException(status_code=422, detail=f"Frame {processed}: {e}")
        processed += 1

    payload = controller.payload
    return ReplayResponse(
        phase=controller.phase.value,
        progress=controller.progress,
        captured_poses=[p.value for p in controller.state.captured_poses],
        frames_processed=processed,
        liveness_passed=payload.liveness_passed if payload is not None else None,
        payload=PayloadModel.from_payload(payload) if payload is not None else None,
    )
