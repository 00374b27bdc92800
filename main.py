# main.py
"""
Desktop viewfinder:
1. Stream camera frames into the scan pipeline
2. Show the live preview
3. On a match, show the apartment number full-screen
4. Double-click (or space) dismisses it; q / ESC quits
"""

import logging
import threading
from typing import Optional, Tuple

import cv2
import numpy as np

from aptscan.main import CONFIG, build_pipeline
from aptscan.services import camera, ocr

WINDOW = "Apt Scanner"

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s [%(name)s] %(message)s")
log = logging.getLogger("viewfinder")


class Display:
    """Holds the unit to show; written by the pipeline worker, read by the UI loop."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._result: Optional[Tuple[str, str]] = None

    def show(self, address: str, unit: str) -> None:
        with self._lock:
            self._result = (address, unit)

    def hide(self) -> None:
        with self._lock:
            self._result = None

    def current(self) -> Optional[Tuple[str, str]]:
        with self._lock:
            return self._result


def render_result(unit: str, size: Tuple[int, int]) -> np.ndarray:
    """Black canvas with `unit` centered in large bold white text."""
    w, h = size
    canvas = np.zeros((h, w, 3), dtype=np.uint8)
    font = cv2.FONT_HERSHEY_DUPLEX
    thickness = 8
    (tw, th), _ = cv2.getTextSize(unit, font, 1.0, thickness)
    scale = max(1.0, min(0.8 * w / max(1, tw), 0.5 * h / max(1, th)))
    (tw, th), _ = cv2.getTextSize(unit, font, scale, thickness)
    org = ((w - tw) // 2, (h + th) // 2)
    cv2.putText(canvas, unit, org, font, scale, (255, 255, 255), thickness, cv2.LINE_AA)
    return canvas


def run() -> None:
    display = Display()
    pipeline = build_pipeline(CONFIG, display.show)

    ocr.init(cfg=CONFIG.ocr.model_dump())
    camera.init(
        device=CONFIG.camera.device,
        backend=CONFIG.camera.backend,
        resolution=tuple(CONFIG.camera.resolution) if CONFIG.camera.resolution else (1280, 720),
        preview_fps=CONFIG.camera.preview_fps or 30,
        mount=CONFIG.camera.mount,
        position=CONFIG.camera.position,
    )

    def on_mouse(event, _x, _y, _flags, _param):
        if event == cv2.EVENT_LBUTTONDBLCLK:
            display.hide()

    cv2.namedWindow(WINDOW, cv2.WINDOW_NORMAL)
    cv2.setWindowProperty(WINDOW, cv2.WND_PROP_FULLSCREEN, cv2.WINDOW_FULLSCREEN)
    cv2.setMouseCallback(WINDOW, on_mouse)

    size = (1280, 720)
    try:
        while True:
            result = display.current()
            if result is None:
                frame = camera.read_frame()
                if frame is not None:
                    size = (frame.image.shape[1], frame.image.shape[0])
                    pipeline.on_frame(frame)
                    cv2.imshow(WINDOW, frame.image)
            else:
                cv2.imshow(WINDOW, render_result(result[1], size))

            key = cv2.waitKey(15) & 0xFF
            if key in (ord("q"), 27):
                break
            if key == ord(" "):
                display.hide()
    except KeyboardInterrupt:
        log.info("Exiting.")
    finally:
        pipeline.shutdown(wait=False)
        camera.shutdown()
        cv2.destroyAllWindows()


if __name__ == "__main__":
    run()
