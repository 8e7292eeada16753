import math
from dataclasses import dataclass
from typing import List, Optional, Tuple

from jewelry_render import JewelryAsset

EARRING_DROP = 0.18      # fraction of earring height the earring hangs below the lobe
EARRING_TILT_DAMP = 0.08 # earrings only follow 8% of the head tilt


@dataclass(frozen=True)
class JewelryTransform:
    kind: str
    asset: JewelryAsset
    center: Tuple[float, float]
    rotation: float
    width: float
    height: float


def _round_px(v):
    # half-up, not banker's rounding
    return int(math.floor(v + 0.5))


class JewelryPlacer:
    """
    Shape-aware placement rules for earrings and necklaces
    """

    def __init__(self):
        # Offsets are fractions of the face bounding box (width, height)
        self.face_shape_rules = {
            'round': {
                'horizontal_offset': 0.06,   # push further out on wide faces
                'vertical_offset': 0.02,
                'size_multiplier': 1.10,
            },
            'oval': {
                'horizontal_offset': 0.045,
                'vertical_offset': 0.015,
                'size_multiplier': 1.00,
            },
            'long': {
                'horizontal_offset': 0.04,
                'vertical_offset': 0.005,
                'size_multiplier': 0.95,
            },
        }

    def shape_adjustments(self, face_shape, face_width, face_height):
        """(horizontal px, vertical px, size multiplier); unknown shapes use the 'long' row."""
        rules = self.face_shape_rules.get(face_shape, self.face_shape_rules['long'])
        return (
            _round_px(face_width * rules['horizontal_offset']),
            _round_px(face_height * rules['vertical_offset']),
            rules['size_multiplier'],
        )

    def compute_transforms(self,
                           anchors,
                           face_width: float,
                           face_height: float,
                           face_shape: str,
                           params,
                           earring: Optional[JewelryAsset] = None,
                           necklace: Optional[JewelryAsset] = None) -> List[JewelryTransform]:
        if anchors is None or not anchors.ready:
            return []

        left_ear, right_ear, neck = anchors.left_ear, anchors.right_ear, anchors.neck_point
        ear_dist = anchors.ear_distance
        if not ear_dist:
            ear_dist = math.hypot(float(right_ear[0] - left_ear[0]), float(right_ear[1] - left_ear[1]))
        angle = anchors.angle or 0.0

        x_adj, y_adj, size_mult = self.shape_adjustments(face_shape, face_width, face_height)
        out = []

        if earring is not None:
            e_w = ear_dist * params.ear_size_factor * size_mult
            e_h = earring.aspect * e_w
            drop = e_h * EARRING_DROP + y_adj
            tilt = -(angle * EARRING_TILT_DAMP)
            out.append(JewelryTransform(
                'earring_left', earring,
                (float(left_ear[0]) - x_adj, float(left_ear[1]) + drop),
                tilt, e_w, e_h))
            out.append(JewelryTransform(
                'earring_right', earring,
                (float(right_ear[0]) + x_adj, float(right_ear[1]) + drop),
                -tilt, e_w, e_h))

        if necklace is not None:
            n_w = ear_dist * params.neck_scale_multiplier
            n_h = necklace.aspect * n_w
            y_off = ear_dist * params.neck_y_offset_factor
            out.append(JewelryTransform(
                'necklace', necklace,
                (float(neck[0]), float(neck[1]) + y_off),
                angle, n_w, n_h))

        return out


_default_placer = JewelryPlacer()

def compute_transforms(anchors, face_width, face_height, face_shape, params,
                       earring=None, necklace=None):
    return _default_placer.compute_transforms(
        anchors, face_width, face_height, face_shape, params,
        earring=earring, necklace=necklace)
