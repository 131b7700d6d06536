"""
API Layer for WashLab Biometric Capture

This package provides the FastAPI-based capture service that exposes:
- WebSocket endpoint for live capture sessions with per-frame feedback
- REST endpoint for replaying recorded landmark frames
- Health check endpoint

The station UI streams camera frames to the service and forwards the
resulting payload to the hosted backend.
"""
