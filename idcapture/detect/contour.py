# idcapture/detect/contour.py
from __future__ import annotations
import logging
from types import ModuleType
from typing import Dict, Optional, Tuple
import cv2
import numpy as np

from idcapture.core.config import merge_cfg
from idcapture.core.contracts import Rectangle
from idcapture.roi.crop import SCRATCH, safe_crop, working_size

logger = logging.getLogger(__name__)

RotatedRect = Tuple[Tuple[float, float], Tuple[float, float], float]

# Ratios are relative to the working raster area (= ROI area)
_DEFAULT_CFG: Dict = {
    "raster_width": 540,
    "blur": {"ksize": 5},
    "canny": {"low_factor": 0.66, "high_factor": 1.33, "low_floor": 10.0, "high_cap": 255.0},
    "dilate_ksize": 3,
    "min_contour_area_ratio": 0.05,
    "min_rect_area_ratio": 0.12,
    "max_rect_area_ratio": 0.98,
    "aspect_range": (1.35, 1.9),     # rotation invariant, long/short side
    "min_rectangularity": 0.6,       # contour area / rotated rect area
    "debug": False,
}


def auto_canny_thresholds(blurred: np.ndarray, cfg: Dict) -> Tuple[float, float]:
    """Thresholds from the mean intensity: (max(floor, 0.66*mean), min(cap, 1.33*mean))."""
    c = cfg["canny"]
    mean = float(blurred.mean()) if blurred.size else 0.0
    lower = max(float(c["low_floor"]), mean * float(c["low_factor"]))
    upper = min(float(c["high_cap"]), mean * float(c["high_factor"]))
    return lower, upper


def find_card_contour(raster: np.ndarray, cfg: Optional[Dict] = None,
                      cv: ModuleType = cv2) -> Optional[RotatedRect]:
    """
    Run the edge/contour pipeline on a BGR working raster and return the
    rotated rectangle of the first contour that looks like a card, or None.
    First match wins; no attempt is made to find the best one.
    """
    cfg = merge_cfg(cfg, _DEFAULT_CFG)
    H, W = raster.shape[:2]
    roi_area = float(H * W)
    gray = blur = edges = kernel = cnts = None
    try:
        gray = cv.cvtColor(raster, cv.COLOR_BGR2GRAY)
        gray = cv.equalizeHist(gray)
        k = int(cfg["blur"]["ksize"])
        if k % 2 == 0:
            k += 1
        blur = cv.GaussianBlur(gray, (k, k), 0)

        lower, upper = auto_canny_thresholds(blur, cfg)
        edges = cv.Canny(blur, lower, upper)
        d = int(cfg["dilate_ksize"])
        kernel = cv.getStructuringElement(cv.MORPH_RECT, (d, d))
        edges = cv.dilate(edges, kernel)

        cnts, _ = cv.findContours(edges, cv.RETR_EXTERNAL, cv.CHAIN_APPROX_SIMPLE)
        a_min, a_max = cfg["aspect_range"]
        for c in cnts:
            area = float(cv.contourArea(c))
            if area < roi_area * float(cfg["min_contour_area_ratio"]):
                continue
            rr = cv.minAreaRect(c)
            rw, rh = rr[1]
            rect_area = float(rw) * float(rh)
            if rect_area <= 0:
                continue
            ar = max(rw, rh) / max(1.0, min(rw, rh))
            rectangularity = area / rect_area
            if cfg.get("debug"):
                logger.debug("[contour] area=%.0f rect=%.0f ar=%.3f rectangularity=%.3f",
                             area, rect_area, ar, rectangularity)
            if (roi_area * float(cfg["min_rect_area_ratio"]) < rect_area < roi_area * float(cfg["max_rect_area_ratio"])
                    and a_min < ar < a_max
                    and rectangularity > float(cfg["min_rectangularity"])):
                return rr
        return None
    finally:
        # a logged traceback keeps this frame alive; don't let it pin the rasters
        gray = blur = edges = kernel = cnts = None


def estimate_card_contours(frame: np.ndarray, roi: Rectangle, cfg: Optional[Dict] = None,
                           cv: ModuleType = cv2) -> bool:
    """Crop the source-space ROI into the 540px working raster and look for a card contour."""
    cfg = merge_cfg(cfg, _DEFAULT_CFG)
    out_w, out_h = working_size(int(cfg["raster_width"]))
    crop = safe_crop(frame, roi)
    if crop is None:
        return False
    with SCRATCH.borrow(out_w, out_h) as raster:
        raster[...] = cv.resize(crop, (out_w, out_h), interpolation=cv.INTER_AREA)
        found = find_card_contour(raster, cfg, cv)
    logger.debug("[contour] roi=%s card=%s", roi.as_tuple(), found is not None)
    return found is not None
