import io
import threading
import time
import zipfile
from typing import Callable, Optional

import cv2

from jewelry_catalog import JewelryCatalog, kind_for
from jewelry_config import TuningParameters
from jewelry_render import (JewelrySlots, draw_debug_markers, draw_sprite,
                            draw_watermark, load_asset)
from landmark_smoothing import SmoothingEngine
from occlusion import occlude
from placement_solver import JewelryPlacer


class TryOnSession:
    """
    Per-stream rendering state: smoothing engine, selected jewelry, tuning.

    process_frame() is the only per-frame entry point; it never raises for
    missing faces, masks or assets, it just draws less.
    """

    def __init__(self,
                 params: Optional[TuningParameters] = None,
                 watermark=None,
                 mask_source: Optional[Callable] = None,
                 engine: Optional[SmoothingEngine] = None,
                 placer: Optional[JewelryPlacer] = None,
                 show_debug=False):
        self.params = params or TuningParameters.from_env()
        self.engine = engine or SmoothingEngine()
        self.placer = placer or JewelryPlacer()
        self.slots = JewelrySlots()
        self.watermark = watermark
        self.mask_source = mask_source
        self.show_debug = show_debug

        self.lock = threading.RLock()
        self.last_source = None
        self.frame_count = 0
        self.occluded_count = 0

    def current_mask(self):
        return self.mask_source() if self.mask_source is not None else None

    def select(self, kind, asset):
        with self.lock:
            self.slots.set(kind, asset)

    def clear(self, kind=None):
        with self.lock:
            self.slots.clear(kind)

    def update_tuning(self, **values):
        with self.lock:
            self.params = self.params.updated(**values)
            return self.params

    def reset(self):
        with self.lock:
            self.engine.reset()
            self.slots.clear()
            self.last_source = None

    def _compose(self, source):
        """Jewelry + occlusion + watermark on a copy of `source`. Returns (image, occluded)."""
        out = source.copy()
        face = self.engine.face
        transforms = self.placer.compute_transforms(
            self.engine.anchors, face.width, face.height, face.shape, self.params,
            earring=self.slots.get("earring"),
            necklace=self.slots.get("necklace"),
        )
        for t in transforms:
            draw_sprite(out, t.asset, t.center, t.width, t.height, t.rotation)

        occluded = occlude(out, source, self.engine.landmarks, self.current_mask())
        # Watermark goes on regardless of the occlusion outcome
        draw_watermark(out, self.watermark)
        return out, occluded

    def process_frame(self, frame, landmarks):
        with self.lock:
            H, W = frame.shape[:2]
            self.last_source = frame
            self.frame_count += 1

            smoothed = self.engine.update(landmarks, W, H, self.params)
            if smoothed is None:
                out = frame.copy()
                draw_watermark(out, self.watermark)
                return out

            out, occluded = self._compose(frame)
            if occluded:
                self.occluded_count += 1
            if self.show_debug:
                draw_debug_markers(out, smoothed.anchors)
            return out

    def snapshot_image(self):
        with self.lock:
            if not self.engine.has_face or self.last_source is None:
                return None
            out, _ = self._compose(self.last_source)
            return out

    def snapshot(self) -> Optional[bytes]:
        """PNG of the current look, or None when no face is tracked."""
        img = self.snapshot_image()
        if img is None:
            return None
        ok, buf = cv2.imencode('.png', img)
        return buf.tobytes() if ok else None

    def status(self):
        with self.lock:
            a = self.engine.anchors
            mask = self.current_mask()
            # mask timestamps come from the segmenter's monotonic clock
            mask_age = round((time.monotonic() - mask.timestamp) * 1000) if mask is not None else None
            return {
                "hasFace": self.engine.has_face,
                "faceShape": a.face_shape,
                "angle": a.angle,
                "earDistance": a.ear_distance,
                "selected": self.slots.names(),
                "tuning": self.params.as_dict(),
                "frames": self.frame_count,
                "occludedFrames": self.occluded_count,
                "maskAgeMs": mask_age,
                "debug": self.show_debug,
            }


class TryAllRunner:
    """
    Cycles through every item of a category and captures one still per item.

    A fixed settle delay between selecting an item and capturing it lets the
    smoothing filters catch up; a capture is skipped while no face is tracked.
    """

    def __init__(self, session: TryOnSession, catalog: JewelryCatalog,
                 settle_delay=0.8, step_delay=2.0):
        self.session = session
        self.catalog = catalog
        self.settle_delay = settle_delay
        self.step_delay = step_delay

        self.lock = threading.Lock()
        self._stop = threading.Event()
        self.thread = None
        self.category = None
        self.snapshots = []

    @property
    def running(self):
        return self.thread is not None and self.thread.is_alive()

    def start(self, category, background=True):
        if self.running:
            return False
        paths = self.catalog.paths(category)
        if not paths:
            raise ValueError(f"no items in category {category}")
        with self.lock:
            self.snapshots = []
        self.category = category
        self._stop.clear()
        if background:
            self.thread = threading.Thread(target=self._run, args=(category, paths), daemon=True)
            self.thread.start()
        else:
            self._run(category, paths)
        return True

    def _run(self, category, paths):
        kind = kind_for(category)
        print(f"[INFO] Try-all started: {category} ({len(paths)} items)")
        for i, path in enumerate(paths):
            if self._stop.is_set():
                break
            asset = load_asset(path)
            if asset is None:
                continue
            self.session.select(kind, asset)
            if self._stop.wait(self.settle_delay):
                break
            png = self.session.snapshot()
            if png is not None:
                with self.lock:
                    self.snapshots.append((asset.name, png))
            if i == len(paths) - 1:
                break
            if self._stop.wait(self.step_delay):
                break
        print(f"[INFO] Try-all finished: {len(self.snapshots)} looks captured")

    def stop(self):
        """Stop early; stills captured so far stay in the gallery."""
        self._stop.set()
        if self.thread is not None and self.thread is not threading.current_thread():
            self.thread.join(timeout=max(1.0, self.settle_delay + 1.0))

    def clear(self):
        self.stop()
        with self.lock:
            self.snapshots = []

    def gallery(self):
        with self.lock:
            return [name for name, _ in self.snapshots]

    def image(self, index):
        with self.lock:
            return self.snapshots[index][1]

    def zip_bytes(self):
        with self.lock:
            shots = list(self.snapshots)
        buf = io.BytesIO()
        with zipfile.ZipFile(buf, "w", zipfile.ZIP_DEFLATED) as zf:
            for i, (_, png) in enumerate(shots, start=1):
                zf.writestr(f"Looks/look_{i}.png", png)
        return buf.getvalue()
