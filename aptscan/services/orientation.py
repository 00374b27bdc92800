# aptscan/services/orientation.py
from __future__ import annotations

from enum import Enum
from typing import Dict, Optional, Tuple

import cv2
import numpy as np


class Orientation(str, Enum):
    """How the content sits in the buffer; `orient()` turns it upright."""
    UP = "up"
    RIGHT = "right"
    DOWN = "down"
    LEFT = "left"
    UP_MIRRORED = "up_mirrored"
    RIGHT_MIRRORED = "right_mirrored"
    DOWN_MIRRORED = "down_mirrored"
    LEFT_MIRRORED = "left_mirrored"


# Rotation hypotheses tried by the scanner, in order.
CANDIDATE_ORIENTATIONS: Tuple[Orientation, ...] = (
    Orientation.UP,
    Orientation.RIGHT,
    Orientation.DOWN,
    Orientation.LEFT,
)

_ROTATE: Dict[Orientation, Optional[int]] = {
    Orientation.UP: None,
    Orientation.RIGHT: cv2.ROTATE_90_CLOCKWISE,
    Orientation.DOWN: cv2.ROTATE_180,
    Orientation.LEFT: cv2.ROTATE_90_COUNTERCLOCKWISE,
}

_UNMIRRORED: Dict[Orientation, Orientation] = {
    Orientation.UP_MIRRORED: Orientation.UP,
    Orientation.RIGHT_MIRRORED: Orientation.RIGHT,
    Orientation.DOWN_MIRRORED: Orientation.DOWN,
    Orientation.LEFT_MIRRORED: Orientation.LEFT,
}

# (device orientation, camera position) -> buffer orientation
_MOUNT_TABLE: Dict[Tuple[str, str], Orientation] = {
    ("portrait", "back"): Orientation.RIGHT,
    ("portrait", "front"): Orientation.LEFT_MIRRORED,
    ("landscape_left", "back"): Orientation.UP,
    ("landscape_left", "front"): Orientation.DOWN_MIRRORED,
    ("landscape_right", "back"): Orientation.DOWN,
    ("landscape_right", "front"): Orientation.UP_MIRRORED,
    ("portrait_upside_down", "back"): Orientation.LEFT,
    ("portrait_upside_down", "front"): Orientation.RIGHT_MIRRORED,
}


def image_orientation(device_orientation: str, camera_position: str = "back") -> Orientation:
    """
    Buffer orientation for a device pose and camera. Unknown poses fall back
    to portrait; anything other than "front" counts as the back camera.
    """
    pose = (device_orientation or "").strip().lower()
    position = "front" if (camera_position or "").strip().lower() == "front" else "back"
    if (pose, position) not in _MOUNT_TABLE:
        pose = "portrait"
    return _MOUNT_TABLE[(pose, position)]


def orient(image: np.ndarray, orientation: Orientation) -> np.ndarray:
    """Return `image` rotated (and un-mirrored) so its content reads upright."""
    orientation = Orientation(orientation)
    mirrored = orientation in _UNMIRRORED
    base = _UNMIRRORED.get(orientation, orientation)

    code = _ROTATE[base]
    out = image if code is None else cv2.rotate(image, code)
    if mirrored:
        out = cv2.flip(out, 1)
    return out
