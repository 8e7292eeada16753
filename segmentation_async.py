# Person segmentation on a background thread
# The render loop never waits for it: it reads whatever mask finished last

import threading
import time
from dataclasses import dataclass

import cv2
import numpy as np
import mediapipe as mp


@dataclass(frozen=True)
class SegmentationMask:
    """Binary person mask (1 = person) with its own resolution."""

    width: int
    height: int
    data: np.ndarray
    timestamp: float = 0.0

    def grid(self):
        """(height, width) view of the labels, or None if the sizes don't add up."""
        data = np.asarray(self.data).reshape(-1)
        if self.width <= 0 or self.height <= 0 or data.size != self.width * self.height:
            return None
        return data.reshape(self.height, self.width)

    @classmethod
    def from_probabilities(cls, probs, threshold=0.7, timestamp=0.0):
        probs = np.asarray(probs)
        if probs.ndim == 3:
            probs = probs[..., 0]
        h, w = probs.shape[:2]
        labels = (probs > threshold).astype(np.uint8).reshape(-1)
        return cls(width=w, height=h, data=labels, timestamp=timestamp)


class SelfieSegmentationModel:
    """
    MediaPipe selfie segmentation behind a plain callable: frame (BGR) -> probabilities.
    Frames are downscaled to `input_width` first, like a low internal resolution.
    """

    def __init__(self, input_width=256, model_selection=1):
        self.input_width = input_width
        self.seg = mp.solutions.selfie_segmentation.SelfieSegmentation(model_selection=model_selection)

    def __call__(self, frame):
        h, w = frame.shape[:2]
        if self.input_width and w > self.input_width:
            small_h = max(1, int(round(h * self.input_width / float(w))))
            frame = cv2.resize(frame, (self.input_width, small_h), interpolation=cv2.INTER_AREA)
        res = self.seg.process(cv2.cvtColor(frame, cv2.COLOR_BGR2RGB))
        return res.segmentation_mask

    def close(self):
        self.seg.close()


def create_selfie_segmenter(input_width=256):
    """Build the segmentation model; None (no occlusion) if it cannot be loaded."""
    try:
        model = SelfieSegmentationModel(input_width=input_width)
    except Exception as e:
        print(f"[WARNING] Segmentation model unavailable, continuing without occlusion: {e}")
        return None
    print(f"[INFO] Segmentation model loaded (input width {input_width}px)")
    return model


class AsyncSegmenter:
    """
    Throttled asynchronous segmentation with a single-slot result cache

    - submit() accepts at most one frame per `interval` seconds; others are dropped
    - a request arriving while the model is busy replaces any older pending frame
    - latest() returns the newest finished mask immediately (may be stale or None)
    """

    def __init__(self, model, interval=0.3, threshold=0.7, clock=time.monotonic, threaded=True):
        self.model = model
        self.interval = interval
        self.threshold = threshold
        self.clock = clock

        self.lock = threading.Lock()
        self.wakeup = threading.Condition(self.lock)
        self._pending = None
        self._mask = None
        self.last_request = None
        self.completed = 0
        self.failed = 0

        self.running = threaded and model is not None
        self.thread = None
        if self.running:
            self.thread = threading.Thread(target=self._worker, daemon=True)
            self.thread.start()

    @property
    def available(self):
        return self.model is not None

    def submit(self, frame):
        """Returns True when the frame was accepted for segmentation."""
        if self.model is None or frame is None:
            return False
        now = self.clock()
        if self.last_request is not None and now - self.last_request < self.interval:
            return False
        self.last_request = now
        with self.wakeup:
            self._pending = (frame.copy(), now)
            self.wakeup.notify()
        return True

    def latest(self):
        with self.lock:
            return self._mask

    def process_pending(self):
        """Run the model on the pending frame, if any. Returns True when a mask was published."""
        with self.lock:
            job, self._pending = self._pending, None
        if job is None:
            return False
        frame, ts = job
        try:
            probs = self.model(frame)
            if probs is None:
                return False
            mask = SegmentationMask.from_probabilities(probs, self.threshold, timestamp=ts)
        except Exception as e:
            self.failed += 1
            print(f"[WARNING] Segmentation failed, keeping previous mask: {e}")
            return False
        with self.lock:
            self._mask = mask
            self.completed += 1
        return True

    def _worker(self):
        while self.running:
            with self.wakeup:
                while self.running and self._pending is None:
                    self.wakeup.wait(timeout=0.5)
            if not self.running:
                break
            self.process_pending()

    def release(self):
        self.running = False
        with self.wakeup:
            self.wakeup.notify_all()
        if self.thread is not None and self.thread.is_alive():
            self.thread.join(timeout=1.0)
        close = getattr(self.model, "close", None)
        if close is not None:
            close()
