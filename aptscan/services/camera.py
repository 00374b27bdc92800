# aptscan/services/camera.py
from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional, Tuple, Union

import cv2
import numpy as np

from .orientation import Orientation, image_orientation, orient

logger = logging.getLogger("camera")


@dataclass
class Frame:
    image: np.ndarray        # BGR, upright for the configured mount
    timestamp: float         # time.monotonic() at capture


# =========================
# Module state
# =========================
_BACKEND: Optional[str] = None          # "picamera2" | "opencv" | None
_LOCK = threading.RLock()

# Picamera2 runtime
_picam2 = None                          # type: ignore
_picam2_started = False

# OpenCV runtime
_opencv_cap: Optional[cv2.VideoCapture] = None

# Cached configuration
_cfg_device: Optional[Union[int, str]] = None
_cfg_resolution: Tuple[int, int] = (1280, 720)
_cfg_preview_fps: int = 30
_cfg_orientation: Orientation = Orientation.UP

# Frame feed thread
_feed_thread: Optional[threading.Thread] = None
_feed_stop = threading.Event()

# JPEG quality (0-100)
_JPEG_QUALITY = 85


# =========================
# Public API
# =========================

def init(
    device: Optional[str] = None,
    backend: Optional[str] = None,
    resolution: Tuple[int, int] = (1280, 720),
    preview_fps: int = 30,
    mount: str = "landscape_left",
    position: str = "back",
) -> None:
    """
    Initialize the camera service.

    Args:
        device: If None, prefer Picamera2; else force OpenCV/V4L2.
                Accepts '/dev/videoX' or an integer index as a string.
        backend: Optional explicit backend: "picamera2" or "opencv".
        resolution: (width, height) request.
        preview_fps: Target capture FPS (best effort).
        mount: How the camera is held: "portrait", "landscape_left",
               "landscape_right" or "portrait_upside_down".
        position: "back" or "front" (front frames are un-mirrored).
    """
    global _BACKEND, _picam2, _picam2_started, _opencv_cap
    global _cfg_device, _cfg_resolution, _cfg_preview_fps, _cfg_orientation

    with _LOCK:
        if _BACKEND is not None:
            logger.info("camera.init(): backend already initialized: %s", _BACKEND)
            return

        _cfg_device = _coerce_device(device)
        _cfg_resolution = (int(resolution[0]), int(resolution[1]))
        _cfg_preview_fps = int(preview_fps)
        _cfg_orientation = image_orientation(mount, position)

        forced = (backend or "").strip().lower() or None

        if forced == "picamera2" or (forced is None and _should_try_picamera2(_cfg_device)):
            try:
                from picamera2 import Picamera2  # type: ignore
                _picam2 = Picamera2()
                _configure_picamera2(_picam2, _cfg_resolution)
                _picam2.start()
                _picam2_started = True
                _BACKEND = "picamera2"
                logger.info("Picamera2 backend initialized at %sx%s (orientation=%s)", *_cfg_resolution, _cfg_orientation.value)
                return
            except Exception as e:
                logger.warning("Picamera2 init failed, falling back to OpenCV: %s", e, exc_info=True)

        _opencv_cap = _open_opencv_capture(_cfg_device, _cfg_resolution, _cfg_preview_fps)
        _BACKEND = "opencv"
        logger.info(
            "OpenCV backend initialized on device=%s at %sx%s (orientation=%s)",
            _cfg_device, *_cfg_resolution, _cfg_orientation.value,
        )


def status() -> bool:
    """Return True if the camera backend is initialized and ready."""
    with _LOCK:
        if _BACKEND == "picamera2":
            return bool(_picam2 is not None and _picam2_started)
        if _BACKEND == "opencv":
            return bool(_opencv_cap is not None and _opencv_cap.isOpened())
        return False


def get_frame() -> Optional[np.ndarray]:
    """Return a single upright BGR frame (numpy ndarray) or None."""
    with _LOCK:
        frame = None
        if _BACKEND == "picamera2" and _picam2 is not None:
            frame = _picam2.capture_array()
            # Picamera2 gives RGB(X); convert to BGR for OpenCV
            if frame is not None and frame.ndim == 3:
                if frame.shape[-1] == 4:
                    frame = cv2.cvtColor(frame, cv2.COLOR_RGBA2BGR)
                elif frame.shape[-1] == 3:
                    frame = cv2.cvtColor(frame, cv2.COLOR_RGB2BGR)
        elif _BACKEND == "opencv" and _opencv_cap is not None:
            ok, frame = _opencv_cap.read()
            if not ok:
                frame = None

        if frame is None:
            return None
        return orient(frame, _cfg_orientation)


def read_frame() -> Optional[Frame]:
    """Grab one frame stamped with the monotonic clock."""
    image = get_frame()
    if image is None:
        return None
    return Frame(image=image, timestamp=time.monotonic())


def get_jpeg_frame() -> Optional[bytes]:
    """Return a single JPEG frame (bytes), or None on failure."""
    frame = get_frame()
    if frame is None:
        return None
    ok, buf = cv2.imencode(".jpg", frame, [int(cv2.IMWRITE_JPEG_QUALITY), _JPEG_QUALITY])
    if not ok:
        return None
    return bytes(buf)


def mjpeg_stream():
    """
    MJPEG generator. Each yielded chunk is a valid multipart part:
      --frame\r\n
      Content-Type: image/jpeg\r\n
      Content-Length: <n>\r\n
      \r\n
      <JPEG bytes>\r\n
    """
    boundary = b"--frame"
    while True:
        try:
            jpg = get_jpeg_frame()
            if not jpg:
                time.sleep(0.05)
                continue

            yield (
                boundary + b"\r\n"
                b"Content-Type: image/jpeg\r\n"
                b"Content-Length: " + str(len(jpg)).encode() + b"\r\n"
                b"\r\n" + jpg + b"\r\n"
            )
            time.sleep(0.05)
        except GeneratorExit:
            break
        except Exception:
            # transient issue; keep streaming
            logger.debug("MJPEG frame skipped", exc_info=True)
            time.sleep(0.2)


def start_feed(on_frame: Callable[[Frame], object]) -> None:
    """
    Deliver frames to `on_frame` from a background thread at the capture
    rate. The callback must return quickly; slow work belongs elsewhere.
    """
    global _feed_thread
    with _LOCK:
        if _feed_thread is not None and _feed_thread.is_alive():
            logger.info("camera.start_feed(): feed already running")
            return
        _feed_stop.clear()
        _feed_thread = threading.Thread(target=_feed_loop, args=(on_frame,), name="camera-feed", daemon=True)
        _feed_thread.start()
        logger.info("Camera feed started")


def stop_feed(timeout_s: float = 2.0) -> None:
    global _feed_thread
    _feed_stop.set()
    thread = _feed_thread
    if thread is not None:
        thread.join(timeout=timeout_s)
    _feed_thread = None


def shutdown() -> None:
    """Release resources safely."""
    global _BACKEND, _picam2_started, _picam2, _opencv_cap
    stop_feed()
    with _LOCK:
        if _BACKEND == "picamera2":
            try:
                if _picam2 is not None and _picam2_started:
                    _picam2.stop()
            except Exception:
                logger.warning("Error stopping Picamera2", exc_info=True)
            finally:
                _picam2_started = False
                _picam2 = None

        if _BACKEND == "opencv":
            try:
                if _opencv_cap is not None:
                    _opencv_cap.release()
            except Exception:
                logger.warning("Error releasing OpenCV capture", exc_info=True)
            finally:
                _opencv_cap = None

        _BACKEND = None
        logger.info("Camera shutdown complete")


# =========================
# Backend helpers
# =========================

def _feed_loop(on_frame: Callable[[Frame], object]) -> None:
    period = 1.0 / max(1, _cfg_preview_fps)
    while not _feed_stop.is_set():
        frame = read_frame()
        if frame is None:
            _feed_stop.wait(0.05)
            continue
        try:
            on_frame(frame)
        except Exception:
            logger.error("Frame callback failed", exc_info=True)
        _feed_stop.wait(period)


def _coerce_device(device: Optional[str]) -> Optional[Union[int, str]]:
    if device is None:
        return None
    # Accept integer-like strings as indices
    try:
        return int(device)  # type: ignore[return-value]
    except (TypeError, ValueError):
        return device  # e.g., "/dev/video0"


def _should_try_picamera2(device: Optional[Union[int, str]]) -> bool:
    """Prefer Picamera2 if no explicit V4L2 device/index was provided."""
    if device is None:
        return True
    if isinstance(device, int):
        return False
    return not str(device).startswith("/dev/video")


def _configure_picamera2(p2, resolution: Tuple[int, int]) -> None:
    # video configuration: continuous frames rather than stills
    w, h = int(resolution[0]), int(resolution[1])
    cfg = p2.create_video_configuration(main={"size": (w, h)}, buffer_count=4)
    p2.configure(cfg)
    try:
        p2.set_controls({"AwbEnable": True, "AeEnable": True})
        time.sleep(0.2)
    except Exception:
        logger.debug("Some Picamera2 controls not supported", exc_info=True)


def _open_opencv_capture(
    device: Optional[Union[int, str]],
    resolution: Tuple[int, int],
    preview_fps: int,
) -> cv2.VideoCapture:
    """Open a V4L2 device, request MJPG, warm up, and verify a test frame."""
    index = 0 if device is None else device
    cap = cv2.VideoCapture(index, cv2.CAP_V4L2)
    if not cap.isOpened():
        raise RuntimeError(f"Failed to open camera device: {index}")

    w, h = int(resolution[0]), int(resolution[1])
    cap.set(cv2.CAP_PROP_FRAME_WIDTH, w)
    cap.set(cv2.CAP_PROP_FRAME_HEIGHT, h)
    cap.set(cv2.CAP_PROP_FPS, int(preview_fps))
    cap.set(cv2.CAP_PROP_FOURCC, cv2.VideoWriter_fourcc(*"MJPG"))

    ok, frame = False, None
    for _ in range(10):
        ok, frame = cap.read()
        if ok and frame is not None:
            break
        time.sleep(0.05)

    if not ok or frame is None:
        cap.release()
        raise RuntimeError("OpenCV camera test frame failed")

    actual_w = int(cap.get(cv2.CAP_PROP_FRAME_WIDTH))
    actual_h = int(cap.get(cv2.CAP_PROP_FRAME_HEIGHT))
    if (actual_w, actual_h) != (w, h):
        logger.warning("Requested %sx%s but got %sx%s", w, h, actual_w, actual_h)

    return cap
