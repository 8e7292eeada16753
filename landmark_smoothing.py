import math
from collections import deque
from dataclasses import dataclass, replace
from typing import Optional

import numpy as np

from face_shape import FaceMeasure, FaceShapeClassifier

# MediaPipe FaceMesh indices used as ear / neck proxies
LEFT_EAR_IDX = 132
RIGHT_EAR_IDX = 361
NECK_IDX = 152
MIN_LANDMARKS = max(LEFT_EAR_IDX, RIGHT_EAR_IDX, NECK_IDX) + 1

# Per-frame decays, independent of the actual frame rate
LANDMARK_DECAY = 0.72
LANDMARK_GAIN = 1.0 - LANDMARK_DECAY
ANGLE_DECAY = 0.82
ANGLE_WINDOW = 5


def to_img_px(lm, W, H):
    return np.array([lm[0] * W, lm[1] * H], np.float32)

def wrap_angle(a):
    """Wrap into (-pi, pi]."""
    a = math.fmod(a + math.pi, 2*math.pi)
    if a <= 0:
        a += 2*math.pi
    return a - math.pi

def smooth_angle(prev, cur, a):
    if prev is None: return wrap_angle(cur)
    delta = wrap_angle(cur - prev)
    return wrap_angle(prev + (1.0 - a) * delta)

def lerp(prev, new, a):
    """Weight `a` on the previous value, `1 - a` on the new one."""
    return prev * a + new * (1.0 - a)


def landmarks_to_array(landmarks):
    """Accepts an (N, 3) array or any sequence of objects exposing .x/.y/.z."""
    if isinstance(landmarks, np.ndarray):
        arr = landmarks.astype(np.float64, copy=True)
        if arr.ndim != 2 or arr.shape[1] < 2:
            raise ValueError(f"landmark array must be (N, 2|3), got {arr.shape}")
        if arr.shape[1] == 2:
            arr = np.hstack([arr, np.zeros((arr.shape[0], 1))])
        return arr[:, :3]
    return np.array([[lm.x, lm.y, getattr(lm, 'z', 0.0)] for lm in landmarks], dtype=np.float64)


@dataclass(frozen=True)
class AnchorState:
    left_ear: Optional[np.ndarray] = None
    right_ear: Optional[np.ndarray] = None
    neck_point: Optional[np.ndarray] = None
    angle: float = 0.0
    ear_distance: Optional[float] = None
    face_shape: str = 'unknown'

    @property
    def ready(self):
        return self.left_ear is not None


@dataclass(frozen=True)
class SmoothedFrame:
    landmarks: np.ndarray
    anchors: AnchorState
    face: FaceMeasure


class SmoothingEngine:
    """
    Temporal smoother for face-mesh landmarks and the ear/neck anchors derived from them.

    One engine per video stream. All memory lives on the instance:
      - landmarks: exponentially smoothed (0.72 / 0.28) copy of the last detections,
        None while no face is visible
      - anchors: ear / neck points, ear distance and head tilt, kept across gaps
        but re-seeded from raw values on the first detection after a gap
      - angle window: last 5 post-blend angles, median taken once > 2 samples
    """

    def __init__(self, classifier: Optional[FaceShapeClassifier] = None):
        self.classifier = classifier or FaceShapeClassifier()
        self.landmarks = None
        self.anchors = AnchorState()
        self.face = None
        self.angle_window = deque(maxlen=ANGLE_WINDOW)

    @property
    def has_face(self):
        return self.landmarks is not None

    def reset(self):
        self.landmarks = None
        self.anchors = AnchorState()
        self.face = None
        self.angle_window.clear()

    def update(self, raw_landmarks, W, H, params) -> Optional[SmoothedFrame]:
        if raw_landmarks is None:
            # Anchors stay as last known; callers check has_face before drawing
            self.landmarks = None
            return None

        raw = landmarks_to_array(raw_landmarks)
        if raw.shape[0] < MIN_LANDMARKS:
            print(f"[WARNING] Expected >= {MIN_LANDMARKS} landmarks, got {raw.shape[0]}; frame skipped")
            self.landmarks = None
            return None

        warm_start = self.landmarks is None or self.landmarks.shape != raw.shape
        if warm_start:
            self.landmarks = raw.copy()
        else:
            self.landmarks = self.landmarks * LANDMARK_DECAY + raw * LANDMARK_GAIN

        left_ear = to_img_px(self.landmarks[LEFT_EAR_IDX], W, H)
        right_ear = to_img_px(self.landmarks[RIGHT_EAR_IDX], W, H)
        neck = to_img_px(self.landmarks[NECK_IDX], W, H)

        d = right_ear - left_ear
        raw_ear_dist = float(math.hypot(d[0], d[1]))
        # atan2 can return exactly -pi for a -0.0 dy
        raw_angle = wrap_angle(math.atan2(float(d[1]), float(d[0])))

        face = self.classifier.measure(self.landmarks, W, H)
        self.face = face

        prev = self.anchors
        if warm_start or not prev.ready:
            self.angle_window.clear()
            self.angle_window.append(raw_angle)
            self.anchors = AnchorState(
                left_ear=left_ear,
                right_ear=right_ear,
                neck_point=neck,
                angle=raw_angle,
                ear_distance=raw_ear_dist,
                face_shape=face.shape,
            )
            return SmoothedFrame(self.landmarks, self.anchors, face)

        s = params.position_smoothing
        if prev.ear_distance is None:
            ear_distance = raw_ear_dist
        else:
            ear_distance = lerp(prev.ear_distance, raw_ear_dist, params.ear_distance_smoothing)

        angle = smooth_angle(prev.angle, raw_angle, ANGLE_DECAY)
        self.angle_window.append(angle)
        if len(self.angle_window) > 2:
            ordered = sorted(self.angle_window)
            angle = ordered[len(ordered) // 2]

        self.anchors = replace(
            prev,
            left_ear=lerp(prev.left_ear, left_ear, s).astype(np.float32),
            right_ear=lerp(prev.right_ear, right_ear, s).astype(np.float32),
            neck_point=lerp(prev.neck_point, neck, s).astype(np.float32),
            angle=angle,
            ear_distance=float(ear_distance),
            face_shape=face.shape,
        )
        return SmoothedFrame(self.landmarks, self.anchors, face)
