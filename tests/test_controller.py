"""
Tests for the Capture Controller

This test suite verifies:
- Session lifecycle (start, capture, complete, cancel)
- Progress and baseline handling per frame
- Detector initialisation failure
- Frames without a face or without a snapshot
- Synthesis failures and snapshot sources
- Construction from config.yaml sections
- Consuming frames from a LandmarkChannel

Run with: pytest tests/test_controller.py -v
"""

import os
import sys
from unittest.mock import MagicMock

import numpy as np
import pytest

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from biocapture.channel import LandmarkChannel, LandmarkEvent
from biocapture.config import set_config
from biocapture.controller import CaptureController
from biocapture.errors import CaptureStateError, DetectorInitError, SynthesisError
from biocapture.landmarks import LandmarkIndexMap
from biocapture.payload import decode_document
from biocapture.poses import Pose
from biocapture.session import SessionPhase


def snapshot_counter():
    count = {"n": 0}

    def snapshot():
        count["n"] += 1
        return f"snapshot-{count['n']}"

    return snapshot


@pytest.fixture
def controller(fixed_clock):
    return CaptureController(capture_snapshot=snapshot_counter(), clock=fixed_clock)


class TestSessionLifecycle:
    """Tests for start / complete transitions."""

    def test_initial_state(self, controller):
        assert controller.phase == SessionPhase.IDLE
        assert controller.progress == 0.0
        assert controller.current_pose == Pose.CENTER
        assert controller.payload is None

    def test_frames_ignored_before_start(self, controller, face):
        assert controller.on_landmark_frame(face()) is False
        assert controller.state.baseline_point is None

    def test_start_session(self, controller):
        controller.start_session()
        assert controller.phase == SessionPhase.CAPTURING
        assert controller.state.current_pose_index == 0

    def test_start_twice_raises(self, controller):
        controller.start_session()
        with pytest.raises(CaptureStateError):
            controller.start_session()

    def test_full_session(self, session_frames, fixed_clock):
        """Five poses captured in order, one payload emitted."""
        on_complete = MagicMock()
        controller = CaptureController(
            capture_snapshot=snapshot_counter(), on_complete=on_complete, clock=fixed_clock
        )
        controller.start_session()

        captured = [controller.on_landmark_frame(f) for f in session_frames]

        assert captured == [False, True] * 5
        assert controller.phase == SessionPhase.COMPLETE
        assert controller.progress == 1.0
        assert controller.current_pose is None
        assert controller.state.captured_poses == (
            Pose.CENTER, Pose.LEFT, Pose.RIGHT, Pose.UP, Pose.DOWN
        )

        payload = controller.payload
        on_complete.assert_called_once_with(payload)
        assert len(payload.angles) == 5
        assert payload.liveness_passed is True

        features = decode_document(payload.features)
        assert set(features) == {"center", "left", "right", "up", "down"}

        liveness = decode_document(payload.liveness_data)
        assert liveness["passed"] is True
        assert liveness["movementCount"] == 5
        assert liveness["significantMovements"] == 4
        assert liveness["timestamp"] == 1704067200000

    def test_frames_after_completion_ignored(self, controller, session_frames, face):
        controller.start_session()
        for f in session_frames:
            controller.on_landmark_frame(f)
        state = controller.state

        assert controller.on_landmark_frame(face(0.1, 0.1)) is False
        assert controller.state is state

    def test_start_after_complete_raises(self, controller, session_frames):
        controller.start_session()
        for f in session_frames:
            controller.on_landmark_frame(f)
        with pytest.raises(CaptureStateError):
            controller.start_session()


class TestFrameProcessing:
    """Tests for per-frame capture rules."""

    def test_first_frame_sets_baseline_only(self, controller, face):
        controller.start_session()
        assert controller.on_landmark_frame(face(0.5, 0.5)) is False
        assert controller.state.baseline_point == (0.5, 0.5)
        assert controller.state.current_pose_index == 0

    def test_progress_is_monotonic(self, controller, face):
        """Index never decreases and grows by at most one per frame."""
        controller.start_session()
        path = [(0.5, 0.5), (0.5, 0.5), (0.5, 0.5), (0.3, 0.5), (0.2, 0.5),
                (0.5, 0.5), (0.1, 0.9), (0.5, 0.5), (0.5, 0.1)]
        last = 0
        for x, y in path:
            controller.on_landmark_frame(face(x, y))
            index = controller.state.current_pose_index
            assert last <= index <= last + 1
            last = index

    def test_baseline_reset_after_capture(self, controller, face):
        controller.start_session()
        controller.on_landmark_frame(face(0.5, 0.5))
        assert controller.on_landmark_frame(face(0.5, 0.5)) is True
        assert controller.state.baseline_point is None

        # The next frame only sets the new baseline, even though it is far away
        assert controller.on_landmark_frame(face(0.2, 0.5)) is False
        assert controller.state.baseline_point == (0.2, 0.5)
        assert controller.state.current_pose_index == 1

    def test_no_face_is_ignored(self, controller, face):
        controller.start_session()
        controller.on_landmark_frame(face(0.5, 0.5))
        baseline = controller.state.baseline_point

        assert controller.on_landmark_frame(None) is False
        assert controller.on_landmark_frame(face(size=0)) is False
        assert controller.state.baseline_point == baseline

    def test_short_landmark_set_is_ignored(self, controller, face):
        """A set missing the key points is treated as no face."""
        controller.start_session()
        assert controller.on_landmark_frame(face(size=100)) is False
        assert controller.state.baseline_point is None

    def test_missing_snapshot_skips_capture(self, face):
        snapshots = iter([None, "frame"])
        controller = CaptureController(capture_snapshot=lambda: next(snapshots))
        controller.start_session()
        controller.on_landmark_frame(face(0.5, 0.5))

        assert controller.on_landmark_frame(face(0.5, 0.5)) is False
        assert controller.state.current_pose_index == 0
        assert controller.state.baseline_point == (0.5, 0.5)

        assert controller.on_landmark_frame(face(0.5, 0.5)) is True
        assert controller.state.captured_frames[0].snapshot == "frame"

    def test_no_duplicate_poses(self, controller, session_frames, face):
        controller.start_session()
        for f in session_frames + [face(), face(0.1, 0.5)]:
            controller.on_landmark_frame(f)
        poses = controller.state.captured_poses
        assert len(poses) == 5
        assert len(set(poses)) == 5

    def test_progress_callback(self, face, session_frames):
        on_progress = MagicMock()
        controller = CaptureController(capture_snapshot=snapshot_counter(), on_progress=on_progress)
        controller.start_session()
        for f in session_frames:
            controller.on_landmark_frame(f)

        calls = [c.args for c in on_progress.call_args_list]
        assert calls == [
            (0.2, "left"),
            (0.4, "right"),
            (0.6, "up"),
            (0.8, "down"),
            (1.0, None),
        ]

    def test_custom_pose_sequence(self, face):
        controller = CaptureController(
            capture_snapshot=snapshot_counter(),
            config={"poses": ["left", "right"], "liveness_tolerance": 0},
        )
        controller.start_session()
        for x in (0.5, 0.4, 0.4, 0.5):
            controller.on_landmark_frame(face(x, 0.5))

        assert controller.phase == SessionPhase.COMPLETE
        assert controller.payload.angles == ("left", "right")
        assert controller.payload.liveness_passed is True


class TestCancellation:
    """Tests for cancel_session()."""

    def test_cancel_mid_session_discards_state(self, face):
        on_cancelled = MagicMock()
        controller = CaptureController(capture_snapshot=snapshot_counter(), on_cancelled=on_cancelled)
        controller.start_session()
        for x, y in [(0.5, 0.5), (0.5, 0.5), (0.5, 0.5), (0.4, 0.5)]:
            controller.on_landmark_frame(face(x, y))
        assert controller.state.current_pose_index == 2

        assert controller.cancel_session() is True
        on_cancelled.assert_called_once()
        assert controller.phase == SessionPhase.CANCELLED
        assert controller.state.captured_frames == ()

        controller.start_session()
        assert controller.state.current_pose_index == 0
        assert controller.state.captured_frames == ()
        assert controller.state.movement_records == ()
        assert controller.state.baseline_point is None

    def test_cancel_twice_is_noop(self, controller):
        controller.start_session()
        assert controller.cancel_session() is True
        assert controller.cancel_session() is False

    def test_cancel_after_complete_is_noop(self, controller, session_frames):
        controller.start_session()
        for f in session_frames:
            controller.on_landmark_frame(f)
        assert controller.cancel_session() is False
        assert controller.phase == SessionPhase.COMPLETE
        assert controller.payload is not None


class TestDetectorInit:
    """Tests for detector readiness at session start."""

    def test_detector_ready_called(self, controller):
        detector = MagicMock()
        controller.start_session(detector)
        detector.ensure_ready.assert_called_once()

    def test_detector_failure_keeps_idle(self, controller):
        detector = MagicMock()
        detector.ensure_ready.side_effect = RuntimeError("model missing")

        with pytest.raises(DetectorInitError, match="model missing"):
            controller.start_session(detector)
        assert controller.phase == SessionPhase.IDLE

    def test_detector_init_error_propagates(self, controller):
        detector = MagicMock()
        detector.ensure_ready.side_effect = DetectorInitError("no mediapipe")

        with pytest.raises(DetectorInitError, match="no mediapipe"):
            controller.start_session(detector)


class TestConfigValidation:
    """Tests for controller construction."""

    def test_non_positive_threshold(self):
        with pytest.raises(ValueError):
            CaptureController(capture_snapshot=lambda: "x", config={"movement_threshold": 0})

    def test_tolerance_out_of_range(self):
        with pytest.raises(ValueError):
            CaptureController(capture_snapshot=lambda: "x", config={"liveness_tolerance": 6})


class TestSynthesisFailure:
    """A failed payload build must not leave the session in PROCESSING."""

    def test_encoder_error_cancels_session(self, session_frames):
        on_complete = MagicMock()
        on_cancelled = MagicMock()

        def broken_encoder(document):
            raise ValueError("Out of range float values are not JSON compliant")

        controller = CaptureController(
            capture_snapshot=snapshot_counter(),
            on_complete=on_complete,
            on_cancelled=on_cancelled,
            encoder=broken_encoder,
        )
        controller.start_session()
        for f in session_frames[:-1]:
            controller.on_landmark_frame(f)

        with pytest.raises(SynthesisError, match="JSON compliant"):
            controller.on_landmark_frame(session_frames[-1])

        assert controller.phase == SessionPhase.CANCELLED
        assert controller.payload is None
        assert controller.state.captured_frames == ()
        on_complete.assert_not_called()
        on_cancelled.assert_called_once()

    def test_new_session_after_failure(self, session_frames):
        controller = CaptureController(
            capture_snapshot=snapshot_counter(),
            encoder=MagicMock(side_effect=ValueError("boom")),
        )
        controller.start_session()
        with pytest.raises(SynthesisError):
            for f in session_frames:
                controller.on_landmark_frame(f)

        assert controller.cancel_session() is False
        controller.start_session()
        assert controller.phase == SessionPhase.CAPTURING
        assert controller.state.current_pose_index == 0


class TestFrameSnapshots:
    """Snapshots are taken from the frame the landmarks were detected on."""

    def test_encode_frame_uses_given_frame(self, face):
        frame = np.full((4, 4, 3), 7, dtype=np.uint8)
        live_camera = MagicMock(return_value="live-camera")
        controller = CaptureController(
            capture_snapshot=live_camera,
            encode_frame=lambda f: f"encoded-{int(f[0, 0, 0])}",
        )
        controller.start_session()
        controller.on_landmark_frame(face(0.5, 0.5), frame)
        controller.on_landmark_frame(face(0.5, 0.5), frame)

        assert controller.state.captured_frames[0].snapshot == "encoded-7"
        live_camera.assert_not_called()

    def test_falls_back_to_capture_snapshot_without_frame(self, face):
        controller = CaptureController(
            capture_snapshot=lambda: "live-camera",
            encode_frame=lambda f: "encoded",
        )
        controller.start_session()
        controller.on_landmark_frame(face(0.5, 0.5))
        controller.on_landmark_frame(face(0.5, 0.5))
        assert controller.state.captured_frames[0].snapshot == "live-camera"

    def test_requires_a_snapshot_hook(self):
        with pytest.raises(ValueError):
            CaptureController()


class TestFromConfig:
    """Tests for CaptureController.from_config()."""

    @pytest.fixture(autouse=True)
    def station_config(self):
        set_config({
            "capture": {"poses": ["left", "right"], "movement_threshold": 0.06},
            "landmarks": {"nose_tip": 4},
        })
        yield
        set_config(None)

    def test_reads_capture_and_landmark_sections(self):
        controller = CaptureController.from_config(lambda: "x", device_info="kiosk")
        assert controller.poses == (Pose.LEFT, Pose.RIGHT)
        assert controller.movement_threshold == 0.06
        assert controller.index_map.nose_tip == 4
        assert controller.device_info == "kiosk"

    def test_passes_hooks_through(self, face):
        on_progress = MagicMock()
        controller = CaptureController.from_config(
            encode_frame=lambda f: "encoded", on_progress=on_progress
        )
        index_map = LandmarkIndexMap(nose_tip=4)
        frame = np.zeros((4, 4, 3), dtype=np.uint8)

        controller.start_session()
        controller.on_landmark_frame(face(0.5, 0.5, index_map=index_map), frame)
        assert controller.on_landmark_frame(face(0.4, 0.5, index_map=index_map), frame) is True

        assert controller.state.captured_frames[0].snapshot == "encoded"
        on_progress.assert_called_once_with(0.5, "right")


class TestRunFromChannel:
    """Tests for consuming a LandmarkChannel."""

    def test_run_completes(self, controller, session_frames):
        channel = LandmarkChannel(maxsize=len(session_frames))
        for f in session_frames:
            channel.publish(LandmarkEvent(landmarks=f))
        channel.close()

        controller.start_session()
        payload = controller.run(channel)

        assert payload is not None
        assert controller.phase == SessionPhase.COMPLETE

    def test_run_snapshots_come_from_event_frames(self, session_frames):
        """Each stored snapshot is the frame its landmarks were detected on."""
        channel = LandmarkChannel(maxsize=len(session_frames))
        for i, f in enumerate(session_frames):
            frame = np.full((2, 2, 3), i, dtype=np.uint8)
            channel.publish(LandmarkEvent(landmarks=f, frame=frame))
        channel.close()

        controller = CaptureController(
            capture_snapshot=lambda: "newest-camera-frame",
            encode_frame=lambda frame: f"frame-{int(frame[0, 0, 0])}",
        )
        controller.start_session()
        controller.run(channel)

        snapshots = [c.snapshot for c in controller.state.captured_frames]
        assert snapshots == ["frame-1", "frame-3", "frame-5", "frame-7", "frame-9"]

    def test_run_returns_none_when_channel_closes_early(self, controller, session_frames):
        channel = LandmarkChannel(maxsize=len(session_frames))
        for f in session_frames[:4]:
            channel.publish(LandmarkEvent(landmarks=f))
        channel.close()

        controller.start_session()
        assert controller.run(channel) is None
        assert controller.phase == SessionPhase.CAPTURING
        assert controller.state.current_pose_index == 2


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
