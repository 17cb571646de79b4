# idcapture/detect/heuristic.py
"""
Cheap card check: is there a strong brightness step just inside each side of
the ROI? Works on a small fixed raster with plain numpy sampling, so it stays
available when the configured contour engine is not.
"""
from __future__ import annotations
import logging
from typing import Dict, Optional
import numpy as np

from idcapture.core.config import merge_cfg
from idcapture.core.contracts import Rectangle
from idcapture.roi.crop import SCRATCH, crop_to_raster, working_size

logger = logging.getLogger(__name__)

_DEFAULT_CFG: Dict = {
    "raster_width": 320,
    "samples": 200,
    "threshold": 0.18,       # ~18% normalized edge contrast
}

# BGR order
_LUMA = np.array([0.114, 0.587, 0.299], dtype=np.float64)


def _luma(raster: np.ndarray) -> np.ndarray:
    if raster.ndim == 2:
        return raster.astype(np.float64)
    return raster[..., :3].astype(np.float64) @ _LUMA


def edge_score(raster: np.ndarray, samples: int = 200) -> float:
    """
    Mean |Y1 - Y2| / 255 over pixel pairs straddling each border:
    `samples` columns at rows (2, 5) and (h-3, h-6), `samples` rows at
    columns (2, 5) and (w-3, w-6). Returns 0..1.
    """
    y = _luma(raster)
    h, w = y.shape[:2]
    if h < 1 or w < 1:
        return 0.0
    s = np.arange(samples)
    xs = np.clip(2 + ((w - 4) * s) // samples, 0, w - 1)
    ys = np.clip(2 + ((h - 4) * s) // samples, 0, h - 1)

    def clamp(v: int, hi: int) -> int:
        return max(0, min(hi, v))

    top1, top2 = clamp(2, h - 1), min(5, h - 1)
    bot1, bot2 = clamp(h - 3, h - 1), clamp(h - 6, h - 1)
    left1, left2 = clamp(2, w - 1), min(5, w - 1)
    right1, right2 = clamp(w - 3, w - 1), clamp(w - 6, w - 1)

    diffs = np.concatenate([
        np.abs(y[top1, xs] - y[top2, xs]),
        np.abs(y[bot1, xs] - y[bot2, xs]),
        np.abs(y[ys, left1] - y[ys, left2]),
        np.abs(y[ys, right1] - y[ys, right2]),
    ]) / 255.0
    return float(diffs.mean())


def heuristic_score(frame: np.ndarray, roi: Rectangle, cfg: Optional[Dict] = None) -> float:
    """Edge score of the source-space ROI drawn into the working raster; 0.0 for an empty ROI."""
    cfg = merge_cfg(cfg, _DEFAULT_CFG)
    out_w, out_h = working_size(int(cfg["raster_width"]))
    with SCRATCH.borrow(out_w, out_h) as raster:
        if not crop_to_raster(frame, roi, raster):
            return 0.0
        return edge_score(raster, int(cfg["samples"]))


def estimate_card_heuristic(frame: np.ndarray, roi: Rectangle, cfg: Optional[Dict] = None) -> bool:
    cfg = merge_cfg(cfg, _DEFAULT_CFG)
    score = heuristic_score(frame, roi, cfg)
    logger.debug("[heuristic] roi=%s score=%.3f", roi.as_tuple(), score)
    return score > float(cfg["threshold"])
