# idcapture/session/render.py
from __future__ import annotations
import asyncio
import logging
import math
from typing import Callable, Optional, Tuple
import cv2
import numpy as np

from idcapture.core.contracts import DetectionState, GuideMode, Mapping
from idcapture.geometry.guides import GuidePath, guide_for_mode
from idcapture.geometry.mapping import compute_mapping, cover_affine

logger = logging.getLogger(__name__)

DIM_ALPHA = 0.35
OK_COLOR = (252, 211, 125)       # light blue, BGR
IDLE_COLOR = (242, 242, 242)     # near-white
STROKE_WIDTH = 3
MIN_PIXEL_RATIO, MAX_PIXEL_RATIO = 1.0, 3.0


def clamp_pixel_ratio(ratio: float) -> float:
    return min(MAX_PIXEL_RATIO, max(MIN_PIXEL_RATIO, float(ratio or 1.0)))


def render_frame(frame: np.ndarray, mapping: Mapping, guide: GuidePath, ok: bool,
                 pixel_ratio: float = 1.0) -> np.ndarray:
    """
    Draw one preview frame: camera image scaled to cover (mirror baked into
    the mapping), darkened outside the guide, guide outline on top.
    """
    canvas = cv2.warpAffine(frame, cover_affine(mapping), (mapping.dest_w, mapping.dest_h),
                            flags=cv2.INTER_LINEAR, borderMode=cv2.BORDER_CONSTANT)
    pts = guide.as_int32()
    mask = np.zeros(canvas.shape[:2], np.uint8)
    cv2.fillPoly(mask, [pts], 255)

    out = cv2.convertScaleAbs(canvas, alpha=1.0 - DIM_ALPHA)
    inside = mask > 0
    out[inside] = canvas[inside]

    thickness = max(1, int(round(STROKE_WIDTH * pixel_ratio)))
    cv2.polylines(out, [pts], True, OK_COLOR if ok else IDLE_COLOR, thickness, cv2.LINE_AA)
    return out


class RenderLoop:
    """
    Preview loop. Sole writer of the Mapping: whenever the destination size,
    the source size or the mirroring changes it builds a new Mapping and hands
    it to `publish` before drawing.

    frames:    returns the latest camera frame or None (not decoded yet)
    mode:      returns the active GuideMode
    presenter: receives each rendered BGR canvas (window, stream, test sink)
    """

    def __init__(self, frames: Callable[[], Optional[np.ndarray]], mode: Callable[[], GuideMode],
                 state: DetectionState, publish: Callable[[Optional[Mapping]], None],
                 presenter: Optional[Callable[[np.ndarray], None]] = None,
                 width: int = 720, height: int = 1280, pixel_ratio: float = 1.0,
                 refresh_hz: float = 60):
        self.frames = frames
        self.mode = mode
        self.state = state
        self.publish = publish
        self.presenter = presenter
        self.refresh_hz = float(refresh_hz)
        self.mapping: Optional[Mapping] = None
        self.set_viewport(width, height, pixel_ratio)

    def set_viewport(self, width: int, height: int, pixel_ratio: float = 1.0) -> None:
        self.width, self.height = int(width), int(height)
        self.pixel_ratio = clamp_pixel_ratio(pixel_ratio)

    def dest_size(self) -> Tuple[int, int]:
        r = self.pixel_ratio
        return max(1, math.floor(self.width * r)), max(1, math.floor(self.height * r))

    def step(self) -> Optional[np.ndarray]:
        frame = self.frames()
        if frame is None:
            return None
        dw, dh = self.dest_size()
        sh, sw = frame.shape[:2]
        mode = self.mode()
        mirror = mode is GuideMode.FACE

        m = self.mapping
        if m is None or (m.dest_w, m.dest_h, m.src_w, m.src_h, m.mirrored) != (dw, dh, sw, sh, mirror):
            m = compute_mapping(dw, dh, sw, sh, mirror)
            self.mapping = m
            self.publish(m)
            logger.debug("[render] mapping %dx%d <- %dx%d scale=%.4f mirrored=%s",
                         dw, dh, sw, sh, m.scale, mirror)

        canvas = render_frame(frame, m, guide_for_mode(mode, dw, dh), self.state.for_mode(mode),
                              self.pixel_ratio)
        if self.presenter is not None:
            self.presenter(canvas)
        return canvas

    async def run(self) -> None:
        period = 1.0 / max(1.0, self.refresh_hz)
        while True:
            try:
                self.step()
            except Exception as e:
                logger.warning("[render] frame skipped: %s", e)
            await asyncio.sleep(period)

    def reset(self) -> None:
        self.mapping = None
