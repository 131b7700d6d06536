"""
Tests for the Backend Client

Requests are served by httpx.MockTransport, so no network is used.

Run with: pytest tests/test_backend_client.py -v
"""

import json
import os
import sys

import httpx
import pytest

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from biocapture.backend_client import BackendClient
from biocapture.errors import BackendError
from biocapture.payload import BiometricPayload


@pytest.fixture
def payload():
    return BiometricPayload(
        capture_type="face",
        angles=("center", "left", "right", "up", "down"),
        capture_quality=0.95,
        features="{}",
        measurements="{}",
        liveness_data='{"passed":true}',
        device_info=None,
    )


class RecordingBackend:
    """Mock transport handler that records requests and replays responses."""

    def __init__(self, responses):
        self.responses = list(responses)
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        status, body = self.responses.pop(0)
        if isinstance(body, str):
            return httpx.Response(status, text=body)
        return httpx.Response(status, json=body)

    def body(self, i=0):
        return json.loads(self.requests[i].content)


def make_client(*responses, auth_token=None):
    backend = RecordingBackend(responses)
    client = BackendClient(
        "https://backend.test/",
        auth_token=auth_token,
        transport=httpx.MockTransport(backend),
    )
    return client, backend


class TestMutationTransport:
    """Tests for the generic mutation call."""

    def test_success_returns_value(self):
        client, backend = make_client((200, {"status": "success", "value": {"ok": 1}}))
        assert client.mutation("attendants:ping", {"a": 1, "b": None}) == {"ok": 1}

        request = backend.requests[0]
        assert request.url == "https://backend.test/api/mutation"
        assert backend.body() == {"path": "attendants:ping", "args": {"a": 1}, "format": "json"}

    def test_auth_header(self):
        client, backend = make_client((200, {"status": "success", "value": None}), auth_token="secret")
        client.mutation("x:y", {})
        assert backend.requests[0].headers["Authorization"] == "Bearer secret"

    def test_error_status_in_body(self):
        client, _ = make_client((200, {"status": "error", "errorMessage": "Invalid challenge"}))
        with pytest.raises(BackendError, match="Invalid challenge") as exc_info:
            client.mutation("attendants:verifyBiometric", {})
        assert exc_info.value.path == "attendants:verifyBiometric"

    def test_http_error(self):
        client, _ = make_client((500, {"errorMessage": "Server exploded"}))
        with pytest.raises(BackendError, match="Server exploded") as exc_info:
            client.mutation("x:y", {})
        assert exc_info.value.status_code == 500

    def test_http_error_without_body(self):
        client, _ = make_client((502, "Bad Gateway"))
        with pytest.raises(BackendError, match="HTTP 502"):
            client.mutation("x:y", {})

    def test_malformed_response(self):
        client, _ = make_client((200, "not json"))
        with pytest.raises(BackendError, match="malformed"):
            client.mutation("x:y", {})

    def test_transport_failure(self):
        def fail(request):
            raise httpx.ConnectError("connection refused", request=request)

        client = BackendClient("https://backend.test", transport=httpx.MockTransport(fail))
        with pytest.raises(BackendError, match="request failed"):
            client.mutation("x:y", {})


class TestBiometricFlows:
    """Tests for the enrollment, verification and attendance calls."""

    def test_enrollment(self, payload):
        client, backend = make_client(
            (200, {"status": "success", "value": {"challenge": "c-1", "expiresAt": 1}}),
            (200, {"status": "success", "value": {"success": True, "requiresPIN": True}}),
        )
        challenge = client.start_enrollment("tok")
        result = client.complete_enrollment("tok", challenge, payload)

        assert challenge == "c-1"
        assert result["requiresPIN"] is True
        assert backend.body(0)["path"] == "attendants:startBiometricEnrollment"
        assert backend.body(0)["args"] == {"enrollmentToken": "tok", "method": "face"}

        args = backend.body(1)["args"]
        assert args["challenge"] == "c-1"
        assert args["biometricData"]["captureType"] == "face"
        assert "deviceInfo" not in args["biometricData"]

    def test_verification(self, payload):
        client, backend = make_client(
            (200, {"status": "success", "value": {"challenge": "c-2"}}),
            (200, {"status": "success", "value": {"success": True, "verificationId": "v1"}}),
        )
        challenge = client.start_verification("att-1", "action", {"actionType": "refund"})
        result = client.verify_biometric("att-1", challenge, "action", payload)

        assert result["verificationId"] == "v1"
        assert backend.body(0)["args"] == {
            "attendantId": "att-1",
            "verificationType": "action",
            "actionContext": {"actionType": "refund"},
        }
        assert "actionContext" not in backend.body(1)["args"]

    def test_invalid_verification_type(self):
        client, backend = make_client()
        with pytest.raises(ValueError):
            client.start_verification("att-1", "payment")
        assert backend.requests == []

    def test_missing_challenge(self):
        client, _ = make_client((200, {"status": "success", "value": {}}))
        with pytest.raises(BackendError, match="challenge"):
            client.start_verification("att-1")

    def test_clock_in(self, payload):
        client, backend = make_client(
            (200, {"status": "success", "value": {"challenge": "c-3"}}),
            (200, {"status": "success", "value": {"success": True}}),
        )
        challenge = client.start_clock_in("station", "att-1")
        client.complete_clock_in("station", "att-1", challenge, payload)

        assert backend.body(0)["path"] == "stations:startClockInVerification"
        assert backend.body(1)["path"] == "stations:completeClockIn"
        assert backend.body(1)["args"]["attendantId"] == "att-1"

    def test_clock_out(self, payload):
        client, backend = make_client(
            (200, {"status": "success", "value": {"challenge": "c-4"}}),
            (200, {"status": "success", "value": {"success": True}}),
        )
        challenge = client.start_clock_out("station", "attendance-9")
        client.complete_clock_out("station", "attendance-9", challenge, payload)

        assert backend.body(0)["args"] == {"stationToken": "station", "attendanceId": "attendance-9"}
        assert backend.body(1)["path"] == "stations:completeClockOut"


class TestFromConfig:
    """Tests for building the client from config.yaml values."""

    def test_from_config(self):
        client = BackendClient.from_config({"url": "https://backend.test/", "timeout_sec": 3})
        assert client.base_url == "https://backend.test"
        assert client.timeout_sec == 3
        client.close()

    def test_missing_url(self):
        with pytest.raises(ValueError):
            BackendClient.from_config({"url": None})


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
