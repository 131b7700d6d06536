"""Exception types raised by the biometric capture package."""

from typing import Optional


class BiocaptureError(Exception):
    """Base class for all capture pipeline errors."""


class DetectorInitError(BiocaptureError):
    """The face landmark detector could not be loaded or started."""


class CaptureStateError(BiocaptureError):
    """An operation was requested in a session phase that does not allow it."""


class BackendError(BiocaptureError):
    """
    A call to the hosted backend failed.

    Attributes:
        path: Backend function path that was called (e.g. "attendants:verifyBiometric").
        status_code: HTTP status code, if the failure came with a response.
    """

    def __init__(self, message: str, path: str = "", status_code: Optional[int] = None):
        super().__init__(message)
        self.path = path
        self.status_code = status_code


class SynthesisError(BiocaptureError):
    """The features, measurements or liveness documents could not be built."""
