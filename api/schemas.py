"""
Pydantic Schemas for API Request/Response Models

This module defines the messages exchanged between the station UI and the
capture service.

These schemas provide:
- Type validation
- Automatic documentation in OpenAPI/Swagger
- Clear interface contracts
"""

from typing import List, Optional
from pydantic import BaseModel, Field

from biocapture.payload import BiometricPayload


# ============================================================
# Capture Session Schemas (WebSocket)
# ============================================================

class FrameMessage(BaseModel):
    """Message sent by client for each video frame."""
    type: str = Field(default="frame", description="Message type, should be 'frame'")
    data: str = Field(..., description="Base64-encoded JPEG image data (data URL accepted)")


class SessionStartedResponse(BaseModel):
    """Sent once the detector is ready and the session is capturing."""
    type: str = Field(default="session_started", description="Message type")
    poses: List[str] = Field(..., description="Poses the user will be prompted for, in order")
    current_pose: str = Field(..., description="First pose to perform")
    movement_threshold: float = Field(..., description="Nose displacement needed per pose")


class FrameStatusResponse(BaseModel):
    """Response sent to client for each processed frame."""
    type: str = Field(default="frame_status", description="Message type")
    face_detected: bool = Field(..., description="Whether a face was detected")
    captured: bool = Field(False, description="Whether this frame captured a pose")
    current_pose: Optional[str] = Field(None, description="Pose the user should perform now")
    progress: float = Field(0.0, description="Fraction of poses captured (0-1)")
    captured_poses: List[str] = Field(default_factory=list, description="Poses captured so far")
    phase: str = Field(..., description="Session phase")


class PayloadModel(BaseModel):
    """Biometric payload, ready to be forwarded to the backend."""
    capture_type: str = Field(..., description="Always 'face'")
    angles: List[str] = Field(..., description="Pose sequence used for the capture")
    capture_quality: float = Field(..., description="Reported capture quality")
    features: str = Field(..., description="Encoded per-pose geometric features")
    measurements: str = Field(..., description="Encoded per-pose landmark measurements")
    liveness_data: str = Field(..., description="Encoded liveness verdict")
    device_info: Optional[str] = Field(None, description="Opaque device metadata")

    @classmethod
    def from_payload(cls, payload: BiometricPayload) -> "PayloadModel":
        return cls(**payload.to_dict())


class CaptureCompleteResponse(BaseModel):
    """Sent when every pose has been captured."""
    type: str = Field(default="capture_complete", description="Message type")
    liveness_passed: bool = Field(..., description="Whether genuine movement was observed")
    payload: PayloadModel = Field(..., description="Payload for the backend")


class CancelledResponse(BaseModel):
    """Sent when the session is cancelled; nothing is kept."""
    type: str = Field(default="cancelled", description="Message type")


class CaptureErrorResponse(BaseModel):
    """Error response during a capture session."""
    type: str = Field(default="error", description="Message type")
    error: str = Field(..., description="Error message")
    code: str = Field(default="CAPTURE_ERROR", description="Error code")


# ============================================================
# Replay Schemas (REST)
# ============================================================

class ReplayRequest(BaseModel):
    """Landmark frames to run through a fresh capture session."""
    frames: List[Optional[List[List[float]]]] = Field(
        ...,
        min_length=1,
        description="One entry per video frame: a list of [x, y] or [x, y, z] points, or null for no face",
    )
    device_info: Optional[str] = Field(None, description="Opaque device metadata for the payload")


class ReplayResponse(BaseModel):
    """Outcome of a replayed capture session."""
    phase: str = Field(..., description="Final session phase")
    progress: float = Field(..., description="Fraction of poses captured (0-1)")
    captured_poses: List[str] = Field(default_factory=list, description="Poses captured")
    frames_processed: int = Field(..., description="Number of frames fed to the session")
    liveness_passed: Optional[bool] = Field(None, description="Liveness verdict if complete")
    payload: Optional[PayloadModel] = Field(None, description="Payload if the session completed")


# ============================================================
# Health Check Schemas
# ============================================================

class HealthResponse(BaseModel):
    """Service health check response."""
    status: str = Field(..., description="Overall status: 'healthy' or 'degraded'")
    version: str = Field(..., description="Package version")
    detector_model_present: bool = Field(..., description="Whether the landmark model file is available")
    backend_configured: bool = Field(..., description="Whether a backend URL is configured")
