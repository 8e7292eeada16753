"""Head/hair occlusion: put original video pixels back over the jewelry layer
wherever the person-segmentation mask marks foreground around the head."""
import numpy as np

from landmark_smoothing import landmarks_to_array

# Forehead -> nose bridge -> nose tip column of the face mesh
HEAD_REGION_IDX = (10, 151, 9, 197, 195, 4)
HEAD_PAD_X = 0.18
HEAD_PAD_Y = 0.40   # hairline needs more slack than the sides


def head_region(landmarks, W, H):
    """
    Padded head box in pixels, clamped to the frame.
    Returns (L, T, R, B) with exclusive right/bottom edges, or None when empty.
    """
    pts = landmarks_to_array(landmarks)
    if pts.shape[0] <= max(HEAD_REGION_IDX):
        return None
    sel = pts[list(HEAD_REGION_IDX), :2]
    min_x, min_y = sel.min(axis=0)
    max_x, max_y = sel.max(axis=0)

    pad_x = HEAD_PAD_X * (max_x - min_x)
    pad_y = HEAD_PAD_Y * (max_y - min_y)
    L = max(0, int(round((min_x - pad_x) * W)))
    T = max(0, int(round((min_y - pad_y) * H)))
    R = min(W, int(round((max_x + pad_x) * W)))
    B = min(H, int(round((max_y + pad_y) * H)))
    if R - L <= 0 or B - T <= 0:
        return None
    return L, T, R, B


def mask_cells(start, stop, scale, limit):
    """Nearest (floor) mask index for each pixel in [start, stop) plus an in-range flag."""
    idx = np.floor(np.arange(start, stop) * scale).astype(np.int64)
    return idx, (idx >= 0) & (idx < limit)


def occlude(rendered, source, landmarks, mask):
    """
    Restore `source` pixels into `rendered` (in place) inside the head region
    where the mask says person. Returns False when occlusion was skipped.
    """
    if mask is None:
        return False
    grid = mask.grid()
    if grid is None:
        print(f"[WARNING] Segmentation mask unusable: {mask.width}x{mask.height}, {len(mask.data)} labels")
        return False
    if rendered.shape != source.shape:
        print(f"[WARNING] Frame/source shape mismatch: {rendered.shape} vs {source.shape}")
        return False

    H, W = rendered.shape[:2]
    region = head_region(landmarks, W, H)
    if region is None:
        return False
    L, T, R, B = region

    mh, mw = grid.shape
    ys, ok_y = mask_cells(T, B, mh / float(H), mh)
    xs, ok_x = mask_cells(L, R, mw / float(W), mw)

    person = np.zeros((B - T, R - L), dtype=bool)
    person[np.ix_(ok_y, ok_x)] = grid[np.ix_(ys[ok_y], xs[ok_x])] == 1

    dst = rendered[T:B, L:R]
    dst[person] = source[T:B, L:R][person]
    return True
