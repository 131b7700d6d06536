"""
Backend client for the WashLab hosted backend.

The backend owns enrollment, verification and attendance. Every biometric
flow has the same shape:

1. Ask the backend for a one-time challenge.
2. Run a capture session.
3. Send the payload back together with the challenge.

Calls go through the backend's HTTP function API:

    POST {url}/api/mutation
    {"path": "attendants:verifyBiometric", "args": {...}, "format": "json"}

    -> {"status": "success", "value": ...}
    -> {"status": "error", "errorMessage": "..."}

Usage:
    client = BackendClient.from_config(get_backend_config())
    challenge = client.start_verification(attendant_id, "login")
    ...
    result = client.verify_biometric(attendant_id, challenge, "login", payload)
"""

import logging
from typing import Any, Dict, Optional

import httpx

from biocapture.errors import BackendError
from biocapture.payload import BiometricPayload

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SEC = 15.0

VERIFICATION_TYPES = ("login", "action")


class BackendClient:
    """
    Client for the biometric mutations of the hosted backend.

    Attributes:
        base_url: Deployment URL of the backend.
        timeout_sec: Request timeout in seconds.
    """

    def __init__(
        self,
        base_url: str,
        timeout_sec: float = DEFAULT_TIMEOUT_SEC,
        auth_token: Optional[str] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout_sec = timeout_sec

        headers = {"Content-Type": "application/json"}
        if auth_token:
            headers["Authorization"] = f"Bearer {auth_token}"

        self._client = httpx.Client(
            base_url=self.base_url,
            headers=headers,
            timeout=timeout_sec,
            transport=transport,
        )

    @classmethod
    def from_config(cls, config: Dict[str, Any], **kwargs) -> "BackendClient":
        if not config.get("url"):
            raise ValueError("Backend configuration is missing 'url'")
        return cls(
            base_url=config["url"],
            timeout_sec=config.get("timeout_sec", DEFAULT_TIMEOUT_SEC),
            auth_token=config.get("auth_token"),
            **kwargs,
        )

    def close(self) -> None:
        self._client.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    # ==================== Transport ====================

    def mutation(self, path: str, args: Dict[str, Any]) -> Any:
        """
        Call a backend mutation.

        Args:
            path: Function path, e.g. "attendants:startVerification".
            args: Mutation arguments.

        Returns:
            The mutation's return value.

        Raises:
            BackendError: On transport failure, HTTP error or an error result.
        """
        body = {"path": path, "args": _drop_none(args), "format": "json"}
        logger.debug(f"Calling backend mutation {path}")

        try:
            response = self._client.post("/api/mutation", json=body)
        except httpx.HTTPError as e:
            raise BackendError(f"Backend request failed: {e}", path=path) from e

        try:
            data = response.json()
        except ValueError:
            data = None

        if response.status_code >= 400:
            message = (data or {}).get("errorMessage") if isinstance(data, dict) else None
            raise BackendError(
                message or f"Backend returned HTTP {response.status_code}",
                path=path,
                status_code=response.status_code,
            )

        if not isinstance(data, dict):
            raise BackendError("Backend returned a malformed response", path=path,
                               status_code=response.status_code)

        if data.get("status") != "success":
            raise BackendError(
                data.get("errorMessage") or "Backend mutation failed",
                path=path,
                status_code=response.status_code,
            )

        return data.get("value")

    def _challenge(self, path: str, args: Dict[str, Any]) -> str:
        value = self.mutation(path, args)
        if not isinstance(value, dict) or not value.get("challenge"):
            raise BackendError("Backend did not return a challenge", path=path)
        return value["challenge"]

    # ==================== Enrollment ====================

    def start_enrollment(self, enrollment_token: str) -> str:
        """Start face enrollment for an attendant; returns the challenge."""
        return self._challenge(
            "attendants:startBiometricEnrollment",
            {"enrollmentToken": enrollment_token, "method": "face"},
        )

    def complete_enrollment(
        self, enrollment_token: str, challenge: str, payload: BiometricPayload
    ) -> Dict[str, Any]:
        """
        Submit the enrollment capture.

        Returns:
            Backend result, e.g. {"success": True, "requiresPIN": True}.
        """
        return self.mutation(
            "attendants:completeBiometricEnrollment",
            {
                "enrollmentToken": enrollment_token,
                "challenge": challenge,
                "biometricData": payload.to_backend_args(),
            },
        )

    # ==================== Verification ====================

    def start_verification(
        self,
        attendant_id: str,
        verification_type: str = "login",
        action_context: Optional[Dict[str, Any]] = None,
    ) -> str:
        """
        Start a login or action verification; returns the challenge.

        Args:
            attendant_id: Backend id of the attendant.
            verification_type: "login" or "action".
            action_context: For actions, e.g. {"actionType": "refund", "orderId": "..."}.
        """
        _check_verification_type(verification_type)
        return self._challenge(
            "attendants:startVerification",
            {
                "attendantId": attendant_id,
                "verificationType": verification_type,
                "actionContext": action_context,
            },
        )

    def verify_biometric(
        self,
        attendant_id: str,
        challenge: str,
        verification_type: str,
        payload: BiometricPayload,
        action_context: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """
        Submit a verification capture.

        Returns:
            Backend result, e.g. {"success": True, "verificationId": ..., "expiresAt": ...}.
        """
        _check_verification_type(verification_type)
        return self.mutation(
            "attendants:verifyBiometric",
            {
                "attendantId": attendant_id,
                "challenge": challenge,
                "verificationType": verification_type,
                "biometricData": payload.to_backend_args(),
                "actionContext": action_context,
            },
        )

    # ==================== Station attendance ====================

    def start_clock_in(self, station_token: str, attendant_id: str) -> str:
        return self._challenge(
            "stations:startClockInVerification",
            {"stationToken": station_token, "attendantId": attendant_id},
        )

    def complete_clock_in(
        self, station_token: str, attendant_id: str, challenge: str, payload: BiometricPayload
    ) -> Dict[str, Any]:
        return self.mutation(
            "stations:completeClockIn",
            {
                "stationToken": station_token,
                "attendantId": attendant_id,
                "challenge": challenge,
                "biometricData": payload.to_backend_args(),
            },
        )

    def start_clock_out(self, station_token: str, attendance_id: str) -> str:
        return self._challenge(
            "stations:startClockOutVerification",
            {"stationToken": station_token, "attendanceId": attendance_id},
        )

    def complete_clock_out(
        self, station_token: str, attendance_id: str, challenge: str, payload: BiometricPayload
    ) -> Dict[str, Any]:
        return self.mutation(
            "stations:completeClockOut",
            {
                "stationToken": station_token,
                "attendanceId": attendance_id,
                "challenge": challenge,
                "biometricData": payload.to_backend_args(),
            },
        )


def _check_verification_type(verification_type: str) -> None:
    if verification_type not in VERIFICATION_TYPES:
        raise ValueError(
            f"verification_type must be one of {VERIFICATION_TYPES}, got '{verification_type}'"
        )


def _drop_none(args: Dict[str, Any]) -> Dict[str, Any]:
    # Optional backend arguments must be omitted, not sent as null
    return {k: v for k, v in args.items() if v is not None}
