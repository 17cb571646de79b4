# idcapture/geometry/guides.py
from __future__ import annotations
from dataclasses import dataclass
from typing import List, Sequence, Tuple
import cv2
import numpy as np

from idcapture.core.contracts import GuideMode, Rectangle

# ISO/IEC 7810 ID-1 (85.60 x 53.98 mm)
CARD_ASPECT = 1.586

_CURVE_STEPS = 16

Point = Tuple[float, float]


@dataclass(frozen=True)
class GuidePath:
    """
    Closed outline in destination pixels, stored as a flattened polygon.
    The same points are filled for the cutout, stroked for the border and
    hit-tested for the face check.

    pts: np.ndarray with shape (N, 2), dtype float32
    """
    pts: np.ndarray

    def contains(self, x: float, y: float) -> bool:
        cnt = self.pts.reshape(-1, 1, 2)
        return cv2.pointPolygonTest(cnt, (float(x), float(y)), False) >= 0

    def as_int32(self) -> np.ndarray:
        return np.round(self.pts).astype(np.int32).reshape(-1, 1, 2)

    @property
    def centroid(self) -> Point:
        m = cv2.moments(self.pts.reshape(-1, 1, 2))
        if abs(m["m00"]) < 1e-9:
            c = self.pts.mean(axis=0)
            return float(c[0]), float(c[1])
        return m["m10"] / m["m00"], m["m01"] / m["m00"]


def _cubic(p0: Point, c1: Point, c2: Point, p3: Point, steps: int = _CURVE_STEPS) -> np.ndarray:
    t = np.linspace(0.0, 1.0, steps + 1, dtype=np.float64)[1:, None]
    u = 1.0 - t
    pts = (u ** 3) * np.array(p0) + 3 * (u ** 2) * t * np.array(c1) \
        + 3 * u * (t ** 2) * np.array(c2) + (t ** 3) * np.array(p3)
    return pts


def _quad(p0: Point, c: Point, p2: Point, steps: int = _CURVE_STEPS // 2) -> np.ndarray:
    t = np.linspace(0.0, 1.0, steps + 1, dtype=np.float64)[1:, None]
    u = 1.0 - t
    return (u ** 2) * np.array(p0) + 2 * u * t * np.array(c) + (t ** 2) * np.array(p2)


def _chain(start: Point, segments: Sequence[Tuple[Point, Point, Point]]) -> np.ndarray:
    out: List[np.ndarray] = [np.array([start], dtype=np.float64)]
    cur = start
    for c1, c2, end in segments:
        out.append(_cubic(cur, c1, c2, end))
        cur = end
    return np.vstack(out)


def face_silhouette(cx: float, cy: float, width: float, height: float) -> GuidePath:
    """
    Head outline: cranium, temples, cheeks, jaw, chin. Built as the right half
    top-to-chin and reflected for the left half, so it is exactly symmetric.
    """
    rx = width / 2.0
    ry = height / 1.8
    top_y = cy - ry
    chin_y = cy + ry * 0.86
    brow_y = cy - ry * 0.35
    cheek_y = cy
    jaw_y = cy + ry * 0.55
    cranium_x, temple_x, cheek_x, jaw_x = rx * 1.05, rx * 0.95, rx * 0.9, rx * 0.69

    right = _chain((cx, top_y), [
        ((cx + cranium_x, top_y), (cx + temple_x, brow_y), (cx + temple_x, brow_y)),
        ((cx + temple_x, brow_y + ry * 0.1), (cx + cheek_x, cheek_y), (cx + cheek_x, cheek_y)),
        ((cx + cheek_x * 0.95, cheek_y + ry * 0.2), (cx + jaw_x, jaw_y), (cx + jaw_x, jaw_y)),
        ((cx + jaw_x * 0.85, jaw_y + ry * 0.2), (cx + width * 0.1, chin_y), (cx, chin_y)),
    ])
    # left half: reflect about cx, walk back up from the chin; drop the shared
    # chin and crown points
    left = right[-2:0:-1].copy()
    left[:, 0] = 2.0 * cx - left[:, 0]
    return GuidePath(pts=np.vstack([right, left]).astype(np.float32))


def face_guide(dest_w: int, dest_h: int) -> GuidePath:
    w = min(dest_w, dest_h) * 0.7
    return face_silhouette(dest_w / 2.0, dest_h * 0.5, w, w * 1.25)


def card_guide_rect(dest_w: int, dest_h: int) -> Rectangle:
    """90% of the raster width, ID-1 aspect, centered at 55% of the height."""
    w = dest_w * 0.9
    h = w / CARD_ASPECT
    return Rectangle((dest_w - w) / 2.0, dest_h * 0.55 - h / 2.0, w, h)


def rounded_rect(rect: Rectangle, corner_radius: float) -> GuidePath:
    x, y, w, h = rect.as_tuple()
    r = max(0.0, min(float(corner_radius), w / 2.0, h / 2.0))
    pieces = [
        np.array([[x + r, y], [x + w - r, y]]),
        _quad((x + w - r, y), (x + w, y), (x + w, y + r)),
        np.array([[x + w, y + h - r]]),
        _quad((x + w, y + h - r), (x + w, y + h), (x + w - r, y + h)),
        np.array([[x + r, y + h]]),
        _quad((x + r, y + h), (x, y + h), (x, y + h - r)),
        np.array([[x, y + r]]),
        _quad((x, y + r), (x, y), (x + r, y))[:-1],
    ]
    return GuidePath(pts=np.vstack(pieces).astype(np.float32))


def card_guide(dest_w: int, dest_h: int) -> GuidePath:
    rect = card_guide_rect(dest_w, dest_h)
    return rounded_rect(rect, min(rect.width, rect.height) * 0.06)


def guide_for_mode(mode: GuideMode, dest_w: int, dest_h: int) -> GuidePath:
    if mode is GuideMode.FACE:
        return face_guide(dest_w, dest_h)
    return card_guide(dest_w, dest_h)
