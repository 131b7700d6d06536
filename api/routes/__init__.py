"""
API Routes Package

This package contains route handlers organized by feature:
- capture.py: WebSocket capture sessions and REST replay
"""

from api.routes.capture import router as capture_router
from api.routes.capture import rest_router as capture_rest_router

__all__ = [
    "capture_router",
    "capture_rest_router",
]
