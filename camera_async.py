# Background webcam reader for the try-on stream
# The render loop takes the newest (already mirrored) frame and never blocks on camera IO

import cv2
import threading
import time


class AsyncVideoCapture:
    """
    Webcam capture on a daemon thread

    - frames are mirrored on the reader thread when `mirror` is set, so the
      render loop sees the selfie view the user expects
    - read() hands back a copy of the newest frame; older unread frames are dropped
    - frame_id counts delivered frames, letting callers skip a frame they already rendered
    """

    def __init__(self, src=0, width=None, height=None, fps=None, mirror=False, capture=None):
        """
        Args:
            src: camera index or video path
            width, height: requested capture resolution
            fps: requested frame rate
            mirror: flip frames horizontally
            capture: an opened cv2.VideoCapture-like object used instead of `src`
        """
        self.src = src
        self.mirror = mirror
        self.cap = capture if capture is not None else cv2.VideoCapture(src)
        for prop, value in ((cv2.CAP_PROP_FRAME_WIDTH, width),
                            (cv2.CAP_PROP_FRAME_HEIGHT, height),
                            (cv2.CAP_PROP_FPS, fps)):
            if value is not None:
                self.cap.set(prop, value)
        if not self.cap.isOpened():
            print(f"[WARNING] Camera {src} could not be opened")

        self.lock = threading.Lock()
        self.first_frame = threading.Event()
        self.ret, self.frame = False, None
        self.frame_id = 0
        self._stat_count = 0
        self._stat_since = time.perf_counter()

        self.running = True
        self.thread = threading.Thread(target=self._reader, daemon=True)
        self.thread.start()

    def _reader(self):
        while self.running:
            ok, frame = self.cap.read()
            if not ok or frame is None:
                time.sleep(0.01)
                continue
            if self.mirror:
                frame = cv2.flip(frame, 1)
            with self.lock:
                self.ret, self.frame = True, frame
                self.frame_id += 1
                self._stat_count += 1
            self.first_frame.set()

    def wait_first_frame(self, timeout=2.0):
        """True once the camera has delivered at least one frame."""
        return self.first_frame.wait(timeout)

    def read(self):
        """(ok, frame) like cv2.VideoCapture.read(); the frame is a private copy."""
        with self.lock:
            if self.frame is None:
                return False, None
            return self.ret, self.frame.copy()

    def frame_size(self):
        """(width, height) of the newest frame, or None before the first one."""
        with self.lock:
            if self.frame is None:
                return None
            h, w = self.frame.shape[:2]
            return w, h

    def get(self, prop_id):
        return self.cap.get(prop_id)

    def set(self, prop_id, value):
        return self.cap.set(prop_id, value)

    def release(self):
        if not self.running:
            return
        self.running = False
        if self.thread.is_alive():
            self.thread.join(timeout=1.0)
        self.cap.release()

    def get_read_fps(self):
        """Camera delivery rate since the previous call."""
        with self.lock:
            now = time.perf_counter()
            dt = now - self._stat_since
            count, self._stat_count, self._stat_since = self._stat_count, 0, now
        return count / dt if dt > 0 else 0.0

    def __del__(self):
        try:
            self.release()
        except AttributeError:
            pass
