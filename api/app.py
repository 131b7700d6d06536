"""
FastAPI Application Entry Point

This module creates and configures the FastAPI application for the
WashLab biometric capture service.

The application provides:
- WebSocket endpoint for live capture sessions
- REST endpoint for replaying landmark frames
- Health check endpoint

Usage:
    # From project root:
    uvicorn api.app:app --host 0.0.0.0 --port 8000 --reload

    # Or run directly:
    python -m api.app
"""

import logging
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.routes import capture_router, capture_rest_router
from api.schemas import HealthResponse
from biocapture import __version__
from biocapture.config import (
    get_backend_config,
    get_face_detection_config,
    get_logging_config,
    get_project_root,
    get_server_config,
)
from biocapture.face_detector import MODEL_FILENAME


# Configure logging
logging.basicConfig(
    level=get_logging_config().get("level", "INFO"),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


def detector_model_present() -> bool:
    """Check whether the landmark model is available without loading it."""
    face_config = get_face_detection_config()
    if face_config.get("model_path"):
        return Path(face_config["model_path"]).exists()
    model_dir = face_config.get("model_dir") or (get_project_root() / "storage" / "models")
    return (Path(model_dir) / MODEL_FILENAME).exists()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan handler.

    Runs on startup:
    - Report whether the landmark model is present (it downloads on first session otherwise)
    - Report the configured backend
    """
    logger.info("=" * 60)
    logger.info(f"Starting WashLab Biometric Capture service v{__version__}")
    logger.info("=" * 60)

    if detector_model_present():
        logger.info("Face landmarker model found")
    else:
        logger.warning("Face landmarker model missing - it will be downloaded on the first session")

    backend_url = get_backend_config().get("url")
    if backend_url:
        logger.info(f"Backend: {backend_url}")
    else:
        logger.warning("No backend URL configured")

    logger.info("Service startup complete!")

    yield

    logger.info("Shutdown complete")


# Create FastAPI application
app = FastAPI(
    title="WashLab Biometric Capture API",
    description="""
Pose-guided face capture and liveness verification for WashLab stations.

## Features
- **Live capture**: WebSocket session with per-frame pose feedback
- **Replay**: Run recorded landmark frames through a capture session

## WebSocket Capture
Connect to `/ws/capture`, send `{"type": "start"}`, then frames as JSON:
`{"type": "frame", "data": "<base64 JPEG>"}`. Send `{"type": "cancel"}` to abort.
    """,
    version=__version__,
    lifespan=lifespan,
)

# Configure CORS for the station UI
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(capture_router)
app.include_router(capture_rest_router)


# ============================================================
# Health Check Endpoint
# ============================================================

@app.get("/health", response_model=HealthResponse, tags=["system"])
async def health_check():
    """
    Check the health of the service and its dependencies.

    Returns status of:
    - Face landmarker model file (present/missing)
    - Backend configuration
    """
    model_present = detector_model_present()
    backend_configured = bool(get_backend_config().get("url"))

    status = "healthy" if model_present and backend_configured else "degraded"

    return HealthResponse(
        status=status,
        version=__version__,
        detector_model_present=model_present,
        backend_configured=backend_configured,
    )


@app.get("/", tags=["system"])
async def root():
    """Root endpoint with API information."""
    return {
        "name": "WashLab Biometric Capture API",
        "version": __version__,
        "docs": "/docs",
        "health": "/health",
    }


if __name__ == "__main__":
    import uvicorn

    server_config = get_server_config()
    logger.info(f"Starting server on {server_config['host']}:{server_config['port']}")
    uvicorn.run(
        "api.app:app",
        host=server_config["host"],
        port=server_config["port"],
        reload=True,
        log_level="info",
    )
