import math
from types import SimpleNamespace

import numpy as np
import pytest

import landmark_smoothing
from landmark_smoothing import (ANGLE_WINDOW, LEFT_EAR_IDX, SmoothingEngine,
                                landmarks_to_array, smooth_angle, wrap_angle)
from tests.conftest import make_landmarks, tilted_ears

W, H = 1000, 1000


def test_wrap_angle_half_open_interval():
    assert wrap_angle(math.pi) == pytest.approx(math.pi)
    assert wrap_angle(-math.pi) == pytest.approx(math.pi)
    assert wrap_angle(1.5 * math.pi) == pytest.approx(-0.5 * math.pi)
    assert wrap_angle(-1.5 * math.pi) == pytest.approx(0.5 * math.pi)
    assert wrap_angle(0.0) == 0.0


def test_smooth_angle_takes_short_way_round():
    prev = math.pi - 0.1
    cur = -math.pi + 0.1
    out = smooth_angle(prev, cur, 0.82)
    # diff is +0.2 across the seam, not -2pi + 0.2
    assert out == pytest.approx(wrap_angle(prev + 0.2 * 0.18))


def test_landmarks_to_array_accepts_mediapipe_like_objects():
    pts = [SimpleNamespace(x=0.1, y=0.2, z=0.3), SimpleNamespace(x=0.4, y=0.5, z=0.6)]
    arr = landmarks_to_array(pts)
    assert arr.shape == (2, 3)
    assert arr[1].tolist() == pytest.approx([0.4, 0.5, 0.6])


def test_first_detection_seeds_anchors_from_raw(params):
    engine = SmoothingEngine()
    frame = engine.update(make_landmarks(), W, H, params)

    a = frame.anchors
    assert a.left_ear.tolist() == pytest.approx([300, 500])
    assert a.right_ear.tolist() == pytest.approx([700, 500])
    assert a.neck_point.tolist() == pytest.approx([500, 800])
    assert a.ear_distance == pytest.approx(400)
    assert a.angle == pytest.approx(0.0)
    assert engine.has_face


def test_landmarks_blend_with_fixed_decay(params):
    engine = SmoothingEngine()
    first = make_landmarks()
    second = make_landmarks(left=(0.4, 0.5))
    engine.update(first, W, H, params)
    engine.update(second, W, H, params)

    expected = first * 0.72 + second * 0.28
    np.testing.assert_allclose(engine.landmarks, expected)


def test_anchor_positions_use_position_smoothing(params):
    engine = SmoothingEngine()
    engine.update(make_landmarks(), W, H, params)
    frame = engine.update(make_landmarks(left=(0.4, 0.5)), W, H, params)

    smoothed_x = (0.3 * 0.72 + 0.4 * 0.28) * W
    assert frame.anchors.left_ear[0] == pytest.approx(300 * 0.88 + smoothed_x * 0.12, rel=1e-5)
    assert frame.anchors.right_ear[0] == pytest.approx(700, rel=1e-5)


def test_ear_distance_uses_its_own_smoothing(params):
    engine = SmoothingEngine()
    engine.update(make_landmarks(), W, H, params)
    frame = engine.update(make_landmarks(left=(0.4, 0.5)), W, H, params)

    raw = 700 - (0.3 * 0.72 + 0.4 * 0.28) * W
    assert frame.anchors.ear_distance == pytest.approx(400 * 0.90 + raw * 0.10, rel=1e-5)


def test_no_face_clears_landmarks_but_keeps_anchors(params):
    engine = SmoothingEngine()
    engine.update(make_landmarks(), W, H, params)
    before = engine.anchors

    assert engine.update(None, W, H, params) is None
    assert not engine.has_face
    assert engine.anchors is before


def test_warm_start_after_gap_uses_raw_values(params):
    engine = SmoothingEngine()
    engine.update(make_landmarks(), W, H, params)
    engine.update(make_landmarks(left=(0.32, 0.52)), W, H, params)
    engine.update(None, W, H, params)

    left, right = tilted_ears(0.3)
    fresh = make_landmarks(left=left, right=right, neck=(0.45, 0.75))
    frame = engine.update(fresh, W, H, params)

    a = frame.anchors
    assert a.left_ear.tolist() == pytest.approx([left[0] * W, left[1] * H], rel=1e-5)
    assert a.right_ear.tolist() == pytest.approx([right[0] * W, right[1] * H], rel=1e-5)
    assert a.neck_point.tolist() == pytest.approx([450, 750], rel=1e-5)
    assert a.angle == pytest.approx(0.3, abs=1e-5)
    assert a.ear_distance == pytest.approx(400, rel=1e-5)
    np.testing.assert_allclose(engine.landmarks, fresh)
    assert list(engine.angle_window) == [pytest.approx(0.3, abs=1e-5)]


def test_angle_stays_in_range_for_noisy_sequences(params):
    rng = np.random.default_rng(7)
    engine = SmoothingEngine()
    for i in range(300):
        if i % 37 == 0:
            engine.update(None, W, H, params)
            continue
        # hover around the +-pi seam, where unwrapping matters most
        base = math.pi if i % 2 else -math.pi
        left, right = tilted_ears(base + rng.normal(0, 0.4))
        frame = engine.update(make_landmarks(left=left, right=right), W, H, params)
        assert -math.pi < frame.anchors.angle <= math.pi


def test_seed_angle_is_wrapped_for_negative_zero_dy(params):
    # ears level with the right ear on the left: atan2(-0.0, dx < 0) == -pi
    engine = SmoothingEngine()
    frame = engine.update(make_landmarks(left=(0.7, 0.0), right=(0.3, -0.0)), W, H, params)

    assert frame.anchors.angle == pytest.approx(math.pi)
    assert -math.pi < frame.anchors.angle <= math.pi
    assert -math.pi < engine.angle_window[0] <= math.pi


def test_median_filter_suppresses_single_spike(params, monkeypatch):
    engine = SmoothingEngine()
    left, right = tilted_ears(0.1)
    lms = make_landmarks(left=left, right=right)
    engine.update(lms, W, H, params)

    blended = iter([0.1, 0.1, 3.0, 0.1])
    monkeypatch.setattr(landmark_smoothing, "smooth_angle", lambda prev, cur, a: next(blended))

    angles = [engine.update(lms, W, H, params).anchors.angle for _ in range(4)]

    assert list(engine.angle_window) == pytest.approx([0.1, 0.1, 0.1, 3.0, 0.1], abs=1e-5)
    # the spike frame and the one after both report the window median
    assert angles[2] == pytest.approx(0.1, abs=1e-5)
    assert angles[3] == pytest.approx(0.1, abs=1e-5)


def test_angle_window_is_bounded(params):
    engine = SmoothingEngine()
    lms = make_landmarks()
    for _ in range(12):
        engine.update(lms, W, H, params)
    assert len(engine.angle_window) == ANGLE_WINDOW


def test_too_few_landmarks_is_treated_as_no_face(params):
    engine = SmoothingEngine()
    assert engine.update(np.zeros((LEFT_EAR_IDX, 3)), W, H, params) is None
    assert not engine.has_face


def test_face_shape_is_tracked_per_frame(params):
    engine = SmoothingEngine()
    frame = engine.update(make_landmarks(neck=(0.5, 0.7), box=((0.3, 0.3), (0.7, 0.7))), W, H, params)
    assert frame.anchors.face_shape == "round"
    assert frame.face.width == pytest.approx(400)


def test_reset_forgets_everything(params):
    engine = SmoothingEngine()
    engine.update(make_landmarks(), W, H, params)
    engine.reset()
    assert not engine.has_face
    assert not engine.anchors.ready
    assert len(engine.angle_window) == 0
