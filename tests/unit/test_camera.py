import threading

import numpy as np

from aptscan.services import camera
from aptscan.services.camera import Frame


def test_status_false_before_init():
    assert camera.status() is False
    assert camera.get_frame() is None
    assert camera.read_frame() is None
    assert camera.get_jpeg_frame() is None


def test_coerce_device():
    assert camera._coerce_device(None) is None
    assert camera._coerce_device("2") == 2
    assert camera._coerce_device("/dev/video0") == "/dev/video0"


def test_picamera2_preferred_only_without_v4l2_device():
    assert camera._should_try_picamera2(None) is True
    assert camera._should_try_picamera2(0) is False
    assert camera._should_try_picamera2("/dev/video1") is False


def test_feed_delivers_frames_until_stopped(monkeypatch):
    got = []
    enough = threading.Event()

    def fake_read_frame():
        return Frame(image=np.zeros((4, 4, 3), dtype=np.uint8), timestamp=float(len(got)))

    def on_frame(frame):
        got.append(frame)
        if len(got) >= 3:
            enough.set()

    monkeypatch.setattr(camera, "read_frame", fake_read_frame)
    monkeypatch.setattr(camera, "_cfg_preview_fps", 200)
    camera.start_feed(on_frame)
    try:
        assert enough.wait(5)
    finally:
        camera.stop_feed()

    assert len(got) >= 3
    assert all(isinstance(f, Frame) for f in got)
    assert camera._feed_thread is None


def test_feed_survives_callback_errors(monkeypatch):
    calls = []
    twice = threading.Event()

    def on_frame(frame):
        calls.append(frame)
        if len(calls) >= 2:
            twice.set()
        raise RuntimeError("slow consumer")

    monkeypatch.setattr(
        camera, "read_frame", lambda: Frame(image=np.zeros((4, 4, 3), dtype=np.uint8), timestamp=0.0)
    )
    monkeypatch.setattr(camera, "_cfg_preview_fps", 200)
    camera.start_feed(on_frame)
    try:
        assert twice.wait(5)
    finally:
        camera.stop_feed()
