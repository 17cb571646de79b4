# idcapture/detect/face.py
"""
Face check: run YuNet on the raw camera frame, map the face-box center into
the (always mirrored) display raster and test it against the face guide.
"""
from __future__ import annotations
import asyncio
import logging
from pathlib import Path
from typing import Any, Optional, Tuple
import cv2
import numpy as np

from idcapture.core.contracts import FaceBox, Mapping, Rectangle
from idcapture.core.errors import ModelLoadError
from idcapture.core.lazy import LazyResource
from idcapture.geometry.guides import face_guide
from idcapture.geometry.mapping import mirrored, source_rect_to_dest_rect

logger = logging.getLogger(__name__)

INPUT_SIZE = 224
SCORE_THRESHOLD = 0.5
NMS_THRESHOLD = 0.3
TOP_K = 50


class YuNetFaceDetector:
    """
    OpenCV YuNet wrapper. The ONNX model is loaded lazily on first use from
    `model_dir / model_file`; detect() before a successful load reports no face.
    """

    def __init__(self, model_dir: str | Path = "models",
                 model_file: str = "face_detection_yunet_2023mar.onnx",
                 input_size: int = INPUT_SIZE, score_threshold: float = SCORE_THRESHOLD):
        self.model_path = Path(model_dir) / model_file
        self.input_size = int(input_size)
        self.score_threshold = float(score_threshold)
        self._model = LazyResource(f"face model {self.model_path}", self._create)

    def _create(self) -> Any:
        if not self.model_path.exists():
            raise ModelLoadError(f"Face model not found at {self.model_path}")
        try:
            return cv2.FaceDetectorYN.create(
                str(self.model_path),
                "",
                (self.input_size, self.input_size),
                score_threshold=self.score_threshold,
                nms_threshold=NMS_THRESHOLD,
                top_k=TOP_K,
            )
        except cv2.error as e:
            raise ModelLoadError(f"Could not load face model {self.model_path}: {e}") from e

    @property
    def loaded(self) -> bool:
        return self._model.ready

    async def load(self) -> None:
        """Idempotent; overlapping calls share one load."""
        await self._model.ensure()

    def _input_shape(self, frame_shape) -> Tuple[int, int, float]:
        h, w = frame_shape[:2]
        f = self.input_size / float(max(h, w))
        return max(1, int(round(w * f))), max(1, int(round(h * f))), f

    def detect(self, frame: np.ndarray) -> Optional[FaceBox]:
        """Best face in source pixels, or None. Blocking; call from an executor."""
        net = self._model.value
        if net is None:
            return None
        iw, ih, f = self._input_shape(frame.shape)
        small = cv2.resize(frame, (iw, ih), interpolation=cv2.INTER_AREA)
        net.setInputSize((iw, ih))
        _, faces = net.detect(small)
        if faces is None or len(faces) == 0:
            return None
        best = max(faces, key=lambda row: float(row[-1]))
        x, y, bw, bh = (float(v) / f for v in best[:4])
        return FaceBox(x=x, y=y, width=bw, height=bh, score=float(best[-1]))


def map_face_center(box: FaceBox, mapping: Mapping) -> Tuple[float, float]:
    """Center of the box in destination pixels, mirrored like the face preview."""
    r = source_rect_to_dest_rect(Rectangle(box.x, box.y, box.width, box.height), mirrored(mapping, True))
    return r.center


class FaceGuideAdapter:
    """Turns a face detector into the face-mode 'framed correctly' boolean."""

    def __init__(self, detector):
        self.detector = detector

    def box_in_guide(self, box: Optional[FaceBox], mapping: Mapping) -> bool:
        if box is None:
            return False
        cx, cy = map_face_center(box, mapping)
        return face_guide(mapping.dest_w, mapping.dest_h).contains(cx, cy)

    async def is_framed(self, frame: np.ndarray, mapping: Mapping) -> bool:
        if not getattr(self.detector, "loaded", True):
            return False
        loop = asyncio.get_running_loop()
        try:
            box = await loop.run_in_executor(None, self.detector.detect, frame)
        except Exception as e:
            logger.debug("[face] detector error treated as no face: %s", e)
            return False
        return self.box_in_guide(box, mapping)
