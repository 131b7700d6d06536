"""
Station Capture CLI

Runs one biometric capture session on the local webcam and, optionally,
submits the payload to the hosted backend for enrollment, verification,
clock-in or clock-out.

Each backend flow asks for a challenge first, runs the capture, then sends
the payload together with the challenge. Without a backend option the
payload is only printed (or written with --output).

Controls:
    ESC / q  - cancel the session

Usage:
    # Capture only, save the payload
    python scripts/run_capture.py --output storage/payload.json

    # Enroll with a one-time enrollment token
    python scripts/run_capture.py --enroll-token <token>

    # Login verification for an attendant
    python scripts/run_capture.py --verify-attendant <attendant_id>

    # Clock in / clock out at a station
    python scripts/run_capture.py --station-token <token> --clock-in-attendant <attendant_id>
    python scripts/run_capture.py --station-token <token> --clock-out-attendance <attendance_id>

    # Replay recorded landmark frames (JSON list of point lists) without a camera
    python scripts/run_capture.py --replay storage/recorded_frames.json
"""

import argparse
import json
import logging
import queue
import sys
import threading
from pathlib import Path
from typing import List, Optional

import cv2

# Add project root to path
SCRIPT_DIR = Path(__file__).resolve().parent
PROJECT_ROOT = SCRIPT_DIR.parent
sys.path.insert(0, str(PROJECT_ROOT))

from biocapture.backend_client import BackendClient
from biocapture.channel import ChannelClosed, DetectorPump, LandmarkChannel, LandmarkEvent
from biocapture.config import (
    get_api_config,
    get_backend_config,
    get_face_detection_config,
    get_logging_config,
    get_webcam_config,
)
from biocapture.controller import CaptureController
from biocapture.errors import BackendError, DetectorInitError, SynthesisError
from biocapture.face_detector import FaceDetector
from biocapture.landmarks import LandmarkSet
from biocapture.payload import BiometricPayload
from biocapture.ui_overlay import (
    draw_face_guide,
    draw_nose_marker,
    draw_pose_checklist,
    draw_pose_prompt,
)
from biocapture.webcam import CaptureConfig, WebcamCapture

logging.basicConfig(
    level=get_logging_config().get("level", "INFO"),
    format="%(asctime)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

WINDOW_NAME = "WashLab - Biometric Capture"
KEY_ESC = 27


def log_progress(fraction: float, pose: Optional[str]) -> None:
    logger.info(f"Progress {fraction:.0%}, next pose: {pose or '-'}")


def draw_guide(frame, landmarks, controller: CaptureController) -> None:
    """Draw the face guide, pose prompt and checklist onto a frame."""
    face_detected = landmarks is not None and landmarks.covers(controller.index_map)
    draw_face_guide(frame, face_detected)
    draw_pose_prompt(frame, controller.current_pose, controller.progress)
    draw_pose_checklist(frame, controller.poses, controller.state.captured_poses)
    if face_detected:
        draw_nose_marker(
            frame,
            landmarks.xy(controller.index_map.nose_tip),
            controller.state.baseline_point,
        )


# ============================================================
# Capture modes
# ============================================================

def capture_from_webcam(device_info: Optional[str] = None) -> Optional[BiometricPayload]:
    """
    Run a capture session on the webcam with an on-screen pose guide.

    A DetectorPump reads frames and runs the landmark detector on a worker
    thread. This thread consumes the landmark events, advances the
    controller and draws the guide on the frame each event came from.

    Returns:
        The payload, or None if the user cancelled or the camera failed.
    """
    webcam_config = CaptureConfig.from_dict(get_webcam_config())
    webcam = WebcamCapture(webcam_config)
    detector = FaceDetector(get_face_detection_config())
    controller = CaptureController.from_config(
        webcam.snapshot,
        encode_frame=webcam.encode_frame,
        on_progress=log_progress,
        device_info=device_info,
    )

    try:
        controller.start_session(detector)
    except DetectorInitError as e:
        print(f"ERROR: {e}")
        return None

    if not webcam.open():
        print("ERROR: Could not open webcam!")
        controller.cancel_session()
        return None

    channel = LandmarkChannel(maxsize=webcam_config.channel_size)
    pump = DetectorPump(webcam.read_frame, detector, channel)
    stop = threading.Event()

    def produce():
        try:
            pump.run(stop.is_set)
        finally:
            channel.close()

    producer = threading.Thread(target=produce, daemon=True)
    producer.start()
    print("Webcam opened. Follow the prompts; press ESC to cancel.")

    try:
        while not controller.is_finished:
            try:
                event = channel.get(timeout=1.0)
            except queue.Empty:
                continue
            except ChannelClosed:
                print("ERROR: Lost the camera feed.")
                controller.cancel_session()
                break

            try:
                controller.on_landmark_frame(event.landmarks, event.frame)
            except SynthesisError as e:
                print(f"ERROR: {e}")
                break

            # Draw UI on a copy so the stored snapshot stays clean
            display = event.frame.copy()
            draw_guide(display, event.landmarks, controller)
            cv2.imshow(WINDOW_NAME, display)

            key = cv2.waitKey(1) & 0xFF
            if key in (KEY_ESC, ord('q')):
                print("Cancelled by user.")
                controller.cancel_session()
    finally:
        stop.set()
        channel.close()
        producer.join(timeout=1.0)
        webcam.close()
        detector.close()
        cv2.destroyAllWindows()

    if channel.dropped:
        logger.info(f"Detector ran ahead of the session, {channel.dropped} frames skipped")
    return controller.payload


def replay_session(frames: List[Optional[list]], device_info: Optional[str] = None) -> CaptureController:
    """
    Run recorded landmark frames through a fresh capture session.

    Every frame is queued on a LandmarkChannel before the controller starts
    consuming. Snapshots are labelled with the pose being captured, read
    from the controller itself when the capture happens.
    """
    channel = LandmarkChannel(maxsize=max(len(frames), 1))
    for points in frames:
        landmarks = LandmarkSet.from_points(points) if points is not None else None
        channel.publish(LandmarkEvent(landmarks=landmarks))
    channel.close()

    controller = CaptureController.from_config(
        lambda: f"replay-{controller.current_pose.value}",
        on_progress=log_progress,
        device_info=device_info,
    )
    controller.start_session()
    controller.run(channel)
    return controller


def capture_from_replay(replay_path: Path, device_info: Optional[str] = None) -> Optional[BiometricPayload]:
    """
    Feed recorded landmark frames through a capture session.

    The file holds a JSON list with one entry per frame: a list of
    [x, y] / [x, y, z] points, or null for a frame without a face.
    """
    with open(replay_path, "r", encoding="utf-8") as f:
        frames = json.load(f)

    try:
        controller = replay_session(frames, device_info=device_info)
    except (ValueError, SynthesisError) as e:
        print(f"ERROR: Could not replay {replay_path}: {e}")
        return None

    if controller.payload is None:
        print(f"Replay ended in phase '{controller.phase.value}' "
              f"after {len(controller.state.captured_poses)}/{len(controller.poses)} poses.")
    return controller.payload


# ============================================================
# Backend flows
# ============================================================

def submit(args, capture) -> int:
    """Run the backend flow selected on the command line around one capture."""
    backend_config = dict(get_backend_config())
    if args.backend_url:
        backend_config["url"] = args.backend_url

    with BackendClient.from_config(backend_config) as client:
        if args.enroll_token:
            challenge = client.start_enrollment(args.enroll_token)
            payload = capture()
            if payload is None:
                return 1
            result = client.complete_enrollment(args.enroll_token, challenge, payload)

        elif args.verify_attendant:
            challenge = client.start_verification(args.verify_attendant, args.verification_type)
            payload = capture()
            if payload is None:
                return 1
            result = client.verify_biometric(
                args.verify_attendant, challenge, args.verification_type, payload
            )

        elif args.clock_in_attendant:
            challenge = client.start_clock_in(args.station_token, args.clock_in_attendant)
            payload = capture()
            if payload is None:
                return 1
            result = client.complete_clock_in(
                args.station_token, args.clock_in_attendant, challenge, payload
            )

        else:
            challenge = client.start_clock_out(args.station_token, args.clock_out_attendance)
            payload = capture()
            if payload is None:
                return 1
            result = client.complete_clock_out(
                args.station_token, args.clock_out_attendance, challenge, payload
            )

    print(f"Backend result: {json.dumps(result, indent=2)}")
    return 0


def write_payload(payload: BiometricPayload, output: Optional[str]) -> None:
    document = json.dumps(payload.to_backend_args(), indent=2)
    if output:
        output_path = Path(output)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        output_path.write_text(document, encoding="utf-8")
        print(f"Payload saved to {output_path}")
    else:
        print(document)


def main():
    parser = argparse.ArgumentParser(
        description="WashLab biometric capture",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__
    )
    flow = parser.add_mutually_exclusive_group()
    flow.add_argument(
        "--enroll-token", type=str,
        help="Enroll the attendant owning this enrollment token"
    )
    flow.add_argument(
        "--verify-attendant", type=str,
        help="Verify this attendant id"
    )
    flow.add_argument(
        "--clock-in-attendant", type=str,
        help="Clock in this attendant id (needs --station-token)"
    )
    flow.add_argument(
        "--clock-out-attendance", type=str,
        help="Clock out this attendance record id (needs --station-token)"
    )
    parser.add_argument(
        "--verification-type", choices=["login", "action"], default="login",
        help="Verification type for --verify-attendant (default: login)"
    )
    parser.add_argument(
        "--station-token", type=str,
        help="Station token for clock-in / clock-out"
    )
    parser.add_argument(
        "--backend-url", type=str, default=None,
        help="Override backend.url from config.yaml"
    )
    parser.add_argument(
        "--replay", type=str, default=None,
        help="Replay recorded landmark frames instead of using the webcam"
    )
    parser.add_argument(
        "--device-info", type=str, default=None,
        help="Device metadata to attach to the payload"
    )
    parser.add_argument(
        "--output", type=str, default=None,
        help="Write the payload JSON here instead of printing it"
    )
    args = parser.parse_args()

    if (args.clock_in_attendant or args.clock_out_attendance) and not args.station_token:
        parser.error("--station-token is required for clock-in / clock-out")

    print("=" * 60)
    print("WashLab - Biometric Capture")
    print(f"Service config: {get_api_config().get('base_url')}")
    print("=" * 60)

    def capture() -> Optional[BiometricPayload]:
        if args.replay:
            payload = capture_from_replay(Path(args.replay), device_info=args.device_info)
        else:
            payload = capture_from_webcam(device_info=args.device_info)
        if payload is not None:
            print(f"Capture complete. Liveness passed: {payload.liveness_passed}")
        return payload

    uses_backend = any([
        args.enroll_token, args.verify_attendant,
        args.clock_in_attendant, args.clock_out_attendance,
    ])

    if uses_backend:
        try:
            return submit(args, capture)
        except BackendError as e:
            print(f"ERROR: Backend call {e.path or ''} failed: {e}")
            return 1

    payload = capture()
    if payload is None:
        print("No payload captured.")
        return 1
    write_payload(payload, args.output)
    return 0


if __name__ == "__main__":
    sys.exit(main())
