# idcapture/session/camera.py
from __future__ import annotations
import logging
import threading
import time
from typing import Dict, Optional
import cv2
import numpy as np

from idcapture.core.errors import CameraError

logger = logging.getLogger(__name__)


class CameraStream:
    """
    cv2.VideoCapture with a background reader thread that keeps only the
    newest frame. The requested width/height are a hint; the driver picks the
    closest mode it has. Audio is never opened.
    """

    def __init__(self, index: int = 0, width: int = 1440, height: int = 2560,
                 facing: str = "user", aspect_ratio: Optional[float] = None,
                 backend: int = cv2.CAP_ANY):
        self.index = index
        self.width = int(width)
        self.height = int(height)
        self.facing = facing
        self.aspect_ratio = aspect_ratio
        self.backend = backend
        self.cap: Optional[cv2.VideoCapture] = None
        self.join_timeout = 1.0
        self._frame: Optional[np.ndarray] = None
        self._lock = threading.Lock()
        self._stop_event: Optional[threading.Event] = None
        self._thread: Optional[threading.Thread] = None

    @classmethod
    def from_cfg(cls, cam_cfg: Dict) -> "CameraStream":
        return cls(index=cam_cfg.get("index", 0), width=cam_cfg.get("width", 1440),
                   height=cam_cfg.get("height", 2560), facing=cam_cfg.get("facing", "user"),
                   aspect_ratio=cam_cfg.get("aspect_ratio"))

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self, first_frame_timeout: float = 5.0) -> None:
        """Open the device and wait for the first frame. Raises CameraError with a readable message."""
        if self.running:
            return
        cap = cv2.VideoCapture(self.index, self.backend)
        if not cap.isOpened():
            cap.release()
            raise CameraError(f"Camera {self.index} could not be opened. Check that it is connected "
                              f"and not in use by another application.")
        cap.set(cv2.CAP_PROP_FRAME_WIDTH, self.width)
        cap.set(cv2.CAP_PROP_FRAME_HEIGHT, self.height)
        ok, frame = cap.read()
        deadline = time.monotonic() + first_frame_timeout
        while not ok and time.monotonic() < deadline:
            time.sleep(0.05)
            ok, frame = cap.read()
        if not ok:
            cap.release()
            raise CameraError(f"Camera {self.index} opened but delivered no frames.")

        self.cap = cap
        with self._lock:
            self._frame = frame
        # one event per reader; a stopped reader stays stopped
        stop_event = threading.Event()
        self._stop_event = stop_event
        self._thread = threading.Thread(target=self._reader, args=(cap, stop_event),
                                        name="camera-reader", daemon=True)
        self._thread.start()
        h, w = frame.shape[:2]
        logger.info("[camera] %s camera %d streaming %dx%d (asked %dx%d)",
                    self.facing, self.index, w, h, self.width, self.height)
        if self.aspect_ratio and abs(w / float(h) - self.aspect_ratio) > 0.02:
            logger.debug("[camera] delivered aspect %.3f, asked %.3f; preview will crop", w / float(h), self.aspect_ratio)

    def _reader(self, cap: cv2.VideoCapture, stop_event: threading.Event) -> None:
        """Owns `cap` from here on and releases it on exit."""
        try:
            while not stop_event.is_set():
                ok, frame = cap.read()
                if not ok:
                    time.sleep(0.01)
                    continue
                with self._lock:
                    # a read that outlived stop() must not publish its frame
                    if stop_event.is_set():
                        break
                    self._frame = frame
        finally:
            cap.release()
            logger.info("[camera] released camera %d", self.index)

    def latest_frame(self) -> Optional[np.ndarray]:
        with self._lock:
            return self._frame

    def stop(self) -> None:
        """Idempotent. Once this returns no frame from the stopped stream is visible."""
        thread, stop_event = self._thread, self._stop_event
        self._thread = self._stop_event = None
        self.cap = None
        if stop_event is not None:
            stop_event.set()
        with self._lock:
            self._frame = None
        if thread is not None:
            thread.join(timeout=self.join_timeout)
            if thread.is_alive():
                logger.warning("[camera] reader for camera %d is still blocked in read(); "
                               "it releases the device when the read returns", self.index)
