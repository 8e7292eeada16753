import math

import cv2
import numpy as np
import pytest

from jewelry_config import TuningParameters
from jewelry_render import JewelryAsset
from landmark_smoothing import LEFT_EAR_IDX, NECK_IDX, RIGHT_EAR_IDX

N_LANDMARKS = 468


def make_landmarks(left=(0.3, 0.5), right=(0.7, 0.5), neck=(0.5, 0.8),
                   box=((0.3, 0.2), (0.7, 0.8)), n=N_LANDMARKS):
    """Synthetic face mesh: everything at the box center except the corners and anchors."""
    (x0, y0), (x1, y1) = box
    pts = np.zeros((n, 3), dtype=np.float64)
    pts[:, 0] = (x0 + x1) / 2.0
    pts[:, 1] = (y0 + y1) / 2.0
    pts[0, :2] = (x0, y0)
    pts[1, :2] = (x1, y1)
    pts[LEFT_EAR_IDX, :2] = left
    pts[RIGHT_EAR_IDX, :2] = right
    pts[NECK_IDX, :2] = neck
    return pts


def tilted_ears(angle, center=(0.5, 0.5), half=0.2):
    dx, dy = half * math.cos(angle), half * math.sin(angle)
    return (center[0] - dx, center[1] - dy), (center[0] + dx, center[1] + dy)


def solid_asset(name="item", w=20, h=40, bgr=(0, 0, 255), alpha=255):
    rgba = np.zeros((h, w, 4), np.uint8)
    rgba[..., :3] = bgr
    rgba[..., 3] = alpha
    return JewelryAsset(name=name, rgba=rgba)


def write_png(path, w=20, h=40, bgr=(0, 200, 255)):
    path.parent.mkdir(parents=True, exist_ok=True)
    img = np.zeros((h, w, 4), np.uint8)
    img[..., :3] = bgr
    img[..., 3] = 255
    assert cv2.imwrite(str(path), img)
    return path


@pytest.fixture
def params():
    return TuningParameters()
