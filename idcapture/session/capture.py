# idcapture/session/capture.py
from __future__ import annotations
import base64
import logging
import cv2
import numpy as np

from idcapture.core.contracts import CaptureResult
from idcapture.core.errors import CaptureError
from idcapture.geometry.mapping import compute_mapping, cover_affine

logger = logging.getLogger(__name__)

OUT_W, OUT_H = 1440, 2560
JPEG_QUALITY = 95


def to_data_url(jpeg: bytes) -> str:
    return "data:image/jpeg;base64," + base64.b64encode(jpeg).decode("ascii")


def capture_still(frame: np.ndarray, out_w: int = OUT_W, out_h: int = OUT_H,
                  quality: int = JPEG_QUALITY) -> CaptureResult:
    """
    Raw frame only: no overlay, never mirrored, whatever the preview shows.
    Builds its own cover-fit into exactly out_w x out_h and JPEG-encodes it.
    """
    sh, sw = frame.shape[:2]
    mapping = compute_mapping(out_w, out_h, sw, sh, mirrored=False)
    still = cv2.warpAffine(frame, cover_affine(mapping), (out_w, out_h),
                           flags=cv2.INTER_LINEAR, borderMode=cv2.BORDER_CONSTANT)
    ok, buf = cv2.imencode(".jpg", still, [int(cv2.IMWRITE_JPEG_QUALITY), int(quality)])
    if not ok:
        raise CaptureError("JPEG encoding failed")
    logger.info("[capture] %dx%d from %dx%d, %d bytes", out_w, out_h, sw, sh, buf.size)
    return CaptureResult(image=still, data_url=to_data_url(buf.tobytes()))
