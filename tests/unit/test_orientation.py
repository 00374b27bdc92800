import numpy as np
import pytest

from aptscan.services.orientation import Orientation, image_orientation, orient

IMG = np.arange(6, dtype=np.uint8).reshape(2, 3)


@pytest.mark.parametrize(
    "pose,position,expected",
    [
        ("portrait", "back", Orientation.RIGHT),
        ("portrait", "front", Orientation.LEFT_MIRRORED),
        ("landscape_left", "back", Orientation.UP),
        ("landscape_left", "front", Orientation.DOWN_MIRRORED),
        ("landscape_right", "back", Orientation.DOWN),
        ("landscape_right", "front", Orientation.UP_MIRRORED),
        ("portrait_upside_down", "back", Orientation.LEFT),
        ("portrait_upside_down", "front", Orientation.RIGHT_MIRRORED),
    ],
)
def test_mount_table(pose, position, expected):
    assert image_orientation(pose, position) is expected


def test_unknown_pose_falls_back_to_portrait():
    assert image_orientation("face_up", "back") is Orientation.RIGHT
    assert image_orientation("face_up", "front") is Orientation.LEFT_MIRRORED
    assert image_orientation("Portrait", "unknown") is Orientation.RIGHT


def test_up_is_identity():
    assert np.array_equal(orient(IMG, Orientation.UP), IMG)


def test_quarter_turns():
    assert np.array_equal(orient(IMG, Orientation.RIGHT), np.rot90(IMG, k=-1))
    assert np.array_equal(orient(IMG, Orientation.DOWN), np.rot90(IMG, k=2))
    assert np.array_equal(orient(IMG, Orientation.LEFT), np.rot90(IMG, k=1))


def test_mirrored_variants_flip_after_rotating():
    assert np.array_equal(orient(IMG, Orientation.UP_MIRRORED), np.fliplr(IMG))
    assert np.array_equal(orient(IMG, Orientation.RIGHT_MIRRORED), np.fliplr(np.rot90(IMG, k=-1)))


def test_accepts_string_values():
    assert np.array_equal(orient(IMG, "down"), np.rot90(IMG, k=2))
