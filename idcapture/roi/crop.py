from __future__ import annotations
from contextlib import contextmanager
import math
import threading
from typing import Iterator, Optional, Tuple
import cv2
import numpy as np

from idcapture.core.contracts import Rectangle
from idcapture.geometry.guides import CARD_ASPECT


def working_size(width: int, aspect: float = CARD_ASPECT) -> Tuple[int, int]:
    """(W, H) of a detector working raster: fixed width, card aspect height."""
    return int(width), max(1, int(round(width / aspect)))


def roi_bounds(frame_shape, rect: Rectangle) -> Optional[Tuple[int, int, int, int]]:
    """Integer (x0, y0, x1, y1) covering `rect`, clipped to the frame; None if empty."""
    h, w = frame_shape[:2]
    x0 = max(0, min(int(math.floor(rect.x)), w))
    y0 = max(0, min(int(math.floor(rect.y)), h))
    x1 = max(0, min(int(math.ceil(rect.x + rect.width)), w))
    y1 = max(0, min(int(math.ceil(rect.y + rect.height)), h))
    if x1 <= x0 or y1 <= y0:
        return None
    return x0, y0, x1, y1


def safe_crop(frame: np.ndarray, rect: Rectangle) -> Optional[np.ndarray]:
    b = roi_bounds(frame.shape, rect)
    if b is None:
        return None
    x0, y0, x1, y1 = b
    return frame[y0:y1, x0:x1]


def crop_to_raster(frame: np.ndarray, rect: Rectangle, out: np.ndarray) -> bool:
    """
    Crop `rect` (source pixels) and area-downscale it into the preallocated
    `out` raster. A grayscale source is copied into every channel.
    Returns False when the clipped rectangle is empty.
    """
    crop = safe_crop(frame, rect)
    if crop is None:
        return False
    out_h, out_w = out.shape[:2]
    small = cv2.resize(crop, (out_w, out_h), interpolation=cv2.INTER_AREA)
    if small.ndim == 2 and out.ndim == 3:
        small = small[..., None]
    out[...] = small
    return True


class WorkingRaster:
    """
    Process-wide scratch buffer the card detectors draw their ROI into.
    Reused across ticks; borrow() holds a lock so two detector calls never
    write into it at the same time.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._buf: Optional[np.ndarray] = None

    @contextmanager
    def borrow(self, out_w: int, out_h: int, channels: int = 3) -> Iterator[np.ndarray]:
        with self._lock:
            shape = (out_h, out_w, channels)
            if self._buf is None or self._buf.shape != shape:
                self._buf = np.empty(shape, np.uint8)
            yield self._buf


SCRATCH = WorkingRaster()
