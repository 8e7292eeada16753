from dataclasses import dataclass

import numpy as np

FACE_SHAPES = ("round", "oval", "long", "unknown")


@dataclass(frozen=True)
class FaceMeasure:
    width: float
    height: float
    aspect: float
    shape: str


class FaceShapeClassifier:
    """
    Coarse face shape classifier (3 types)
    Classifies faces into: round, oval, long

    Uses the aspect ratio (height / width) of the landmark bounding box
    measured in pixels, so the frame size matters for non-square frames.
    """

    def __init__(self, round_max=1.05, long_min=1.25):
        self.thresholds = {
            'round_max': round_max,   # Round: H/W < 1.05
            'long_min': long_min,     # Long: H/W > 1.25
        }

    def measure(self, points, W, H) -> FaceMeasure:
        """
        points: array-like of shape (N, 2+) in normalized image coordinates
        """
        pts = np.asarray(points, dtype=np.float64)
        if pts.ndim != 2 or pts.shape[0] == 0:
            return FaceMeasure(0.0, 0.0, 0.0, 'unknown')

        face_width = float(pts[:, 0].max() - pts[:, 0].min()) * W
        face_height = float(pts[:, 1].max() - pts[:, 1].min()) * H
        aspect = face_height / (face_width or 1)
        return FaceMeasure(face_width, face_height, aspect, self.classify_aspect(aspect))

    def classify_aspect(self, aspect: float) -> str:
        if aspect < self.thresholds['round_max']:
            return 'round'
        if aspect > self.thresholds['long_min']:
            return 'long'
        return 'oval'
