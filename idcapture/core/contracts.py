"""
Core contracts and simple data types shared across stages.

Three coordinate spaces are in play:
  * source      - pixels of the raw camera frame
  * destination - pixels of the rendered display raster
  * working     - the small fixed-size raster a detector crops the ROI into
"""

from __future__ import annotations
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple
import numpy as np

from idcapture.core.errors import ConfigError


@dataclass(frozen=True)
class Rectangle:
    """Axis-aligned box (x, y, width, height) in one named coordinate space."""
    x: float
    y: float
    width: float
    height: float

    def __post_init__(self):
        if self.width < 0 or self.height < 0:
            object.__setattr__(self, "width", max(0.0, float(self.width)))
            object.__setattr__(self, "height", max(0.0, float(self.height)))

    @property
    def area(self) -> float:
        return float(self.width) * float(self.height)

    @property
    def center(self) -> Tuple[float, float]:
        return (self.x + self.width / 2.0, self.y + self.height / 2.0)

    def clamp_to(self, w: float, h: float) -> "Rectangle":
        """Keep x, y >= 0 and never extend past (w, h)."""
        x = max(0.0, float(self.x))
        y = max(0.0, float(self.y))
        width = max(0.0, min(float(self.width), w - x))
        height = max(0.0, min(float(self.height), h - y))
        return Rectangle(x, y, width, height)

    def as_tuple(self) -> Tuple[float, float, float, float]:
        return (float(self.x), float(self.y), float(self.width), float(self.height))


@dataclass(frozen=True)
class Mapping:
    """
    Cover-fit transform of one rendered frame: source raster scaled by `scale`,
    shifted by (offset_x, offset_y) into the destination raster, optionally
    mirrored around the vertical axis.

    The render loop replaces the whole object when anything changes; readers
    only ever see a complete snapshot.
    """
    dest_w: int
    dest_h: int
    src_w: int
    src_h: int
    scale: float
    offset_x: float
    offset_y: float
    mirrored: bool


class GuideMode(str, Enum):
    FACE = "face"
    CARD = "card"

    @classmethod
    def parse(cls, value) -> "GuideMode":
        if isinstance(value, GuideMode):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ConfigError(f"Unknown guide mode: {value!r} (expected 'face' or 'card')") from None


@dataclass
class DetectionState:
    """Latest 'framed correctly' flag per mode. One writer per field: the detection tick."""
    face_inside: bool = False
    card_ok: bool = False

    def for_mode(self, mode: GuideMode) -> bool:
        return self.face_inside if mode is GuideMode.FACE else self.card_ok

    def set_for_mode(self, mode: GuideMode, value: bool) -> None:
        if mode is GuideMode.FACE:
            self.face_inside = bool(value)
        else:
            self.card_ok = bool(value)

    def reset(self) -> None:
        self.face_inside = False
        self.card_ok = False


@dataclass(frozen=True)
class FrameContext:
    """What a detection tick sees: the mapping and mode at the moment it started."""
    mapping: Optional[Mapping]
    mode: GuideMode


@dataclass(frozen=True)
class FaceBox:
    """A face box reported by the detector, in source space."""
    x: float
    y: float
    width: float
    height: float
    score: float = 1.0


@dataclass
class CaptureResult:
    """
    One still produced by the capture pipeline.

    image: np.ndarray (H, W, 3) BGR, unmirrored, no overlay
    data_url: 'data:image/jpeg;base64,...'
    """
    image: np.ndarray
    data_url: str

    @property
    def size(self) -> Tuple[int, int]:
        h, w = self.image.shape[:2]
        return w, h
