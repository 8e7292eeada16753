import math
import os
from dataclasses import dataclass
from typing import Dict, Optional

import cv2, numpy as np

JEWELRY_KINDS = ("earring", "necklace")

WATERMARK_WIDTH_PCT = 0.22
WATERMARK_MARGIN = 14
WATERMARK_OPACITY = 0.85


@dataclass(frozen=True)
class JewelryAsset:
    name: str
    rgba: np.ndarray

    @property
    def width(self):
        return self.rgba.shape[1]

    @property
    def height(self):
        return self.rgba.shape[0]

    @property
    def aspect(self):
        """height / width of the source image."""
        return self.height / float(self.width or 1)


class JewelrySlots:
    """One optional asset per jewelry kind. An empty slot means "not selected"."""

    def __init__(self):
        self._slots: Dict[str, Optional[JewelryAsset]] = {k: None for k in JEWELRY_KINDS}

    def _check(self, kind):
        if kind not in self._slots:
            raise KeyError(f"unknown jewelry kind: {kind}")

    def get(self, kind) -> Optional[JewelryAsset]:
        self._check(kind)
        return self._slots[kind]

    def set(self, kind, asset: Optional[JewelryAsset]):
        self._check(kind)
        self._slots[kind] = asset

    def clear(self, kind=None):
        if kind is None:
            for k in self._slots:
                self._slots[k] = None
            return
        self.set(kind, None)

    def names(self):
        return {k: (a.name if a is not None else None) for k, a in self._slots.items()}


def read_rgba(path):
    img = cv2.imread(path, cv2.IMREAD_UNCHANGED)
    if img is None: raise FileNotFoundError(path)
    if img.ndim == 2:
        img = cv2.cvtColor(img, cv2.COLOR_GRAY2BGRA)
    elif img.shape[2] == 3:
        a = np.full(img.shape[:2], 255, np.uint8)
        img = np.dstack([img, a])
    return img

def load_asset(path) -> Optional[JewelryAsset]:
    try:
        rgba = read_rgba(path)
    except FileNotFoundError:
        print(f"[WARNING] Jewelry image not found or unreadable: {path}")
        return None
    name = os.path.splitext(os.path.basename(path))[0]
    return JewelryAsset(name=name, rgba=rgba)


def _blend(roi, bgr, alpha):
    roi[:] = (roi * (1 - alpha) + bgr * alpha).astype(np.uint8)

def draw_sprite(frame, asset: JewelryAsset, center, width, height, rotation=0.0, opacity=1.0):
    """
    Scale `asset` to width x height, rotate it by `rotation` radians about its
    center and alpha-blend it into `frame` (BGR, in place) centered at `center`.
    Returns False when nothing landed inside the frame.
    """
    if width <= 0 or height <= 0:
        return False
    h0, w0 = asset.rgba.shape[:2]
    H, W = frame.shape[:2]

    c, s = math.cos(rotation), math.sin(rotation)
    M2 = np.array([[c, -s], [s, c]], np.float32) @ np.array([[width / w0, 0], [0, height / h0]], np.float32)
    t = np.array(center, np.float32) - M2 @ np.array([w0 / 2.0, h0 / 2.0], np.float32)

    corners = M2 @ np.array([[0, w0, w0, 0], [0, 0, h0, h0]], np.float32) + t[:, None]
    x0 = max(0, int(math.floor(corners[0].min())))
    y0 = max(0, int(math.floor(corners[1].min())))
    x1 = min(W, int(math.ceil(corners[0].max())) + 1)
    y1 = min(H, int(math.ceil(corners[1].max())) + 1)
    if x1 <= x0 or y1 <= y0:
        return False

    M = np.zeros((2, 3), np.float32)
    M[:, :2] = M2
    M[:, 2] = t - np.array([x0, y0], np.float32)

    warped = cv2.warpAffine(asset.rgba, M, (x1 - x0, y1 - y0),
                            flags=cv2.INTER_LINEAR,
                            borderMode=cv2.BORDER_CONSTANT,
                            borderValue=(0,0,0,0))
    bgr = warped[..., :3].astype(np.float32)
    alpha = warped[..., 3:4].astype(np.float32) / 255.0 * opacity
    _blend(frame[y0:y1, x0:x1], bgr, alpha)
    return True


def watermark_rect(frame_shape, watermark: JewelryAsset):
    """(x, y, w, h) of the watermark in the bottom-right corner."""
    H, W = frame_shape[:2]
    w = int(round(W * WATERMARK_WIDTH_PCT))
    h = int(round(watermark.aspect * w))
    return W - w - WATERMARK_MARGIN, H - h - WATERMARK_MARGIN, w, h

def draw_watermark(frame, watermark: Optional[JewelryAsset]):
    if watermark is None:
        return False
    x, y, w, h = watermark_rect(frame.shape, watermark)
    if w <= 0 or h <= 0 or x < 0 or y < 0:
        return False
    logo = cv2.resize(watermark.rgba, (w, h), interpolation=cv2.INTER_AREA)
    alpha = logo[..., 3:4].astype(np.float32) / 255.0 * WATERMARK_OPACITY
    _blend(frame[y:y+h, x:x+w], logo[..., :3].astype(np.float32), alpha)
    return True


def draw_debug_markers(frame, anchors):
    if anchors is None or not anchors.ready:
        return
    for pt, label, color in ((anchors.left_ear, "L", (255,255,0)),
                             (anchors.right_ear, "R", (255,0,255)),
                             (anchors.neck_point, "N", (0,255,255))):
        x, y = int(round(float(pt[0]))), int(round(float(pt[1])))
        cv2.circle(frame, (x, y), 6, color, -1, cv2.LINE_AA)
        cv2.putText(frame, label, (x + 8, y), cv2.FONT_HERSHEY_SIMPLEX, 0.5, color, 1, cv2.LINE_AA)
