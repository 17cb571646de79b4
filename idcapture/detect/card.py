# idcapture/detect/card.py
from __future__ import annotations
import asyncio
import logging
from typing import Dict, Optional
import numpy as np

from idcapture.core.contracts import Rectangle
from idcapture.detect.contour import estimate_card_contours
from idcapture.detect.engine import DEFAULT_ENGINE, ensure_vision_engine, is_vision_engine_ready, vision_engine
from idcapture.detect.heuristic import estimate_card_heuristic

logger = logging.getLogger(__name__)


async def estimate_card(frame: np.ndarray, roi: Rectangle, engine_module: str = DEFAULT_ENGINE,
                        cfg: Optional[Dict] = None) -> bool:
    """
    Card present in the source-space ROI?

    Contour detector when the vision engine is loaded, heuristic otherwise.
    If the contour pass raises, this tick falls back to the heuristic.
    Pixel work runs in the default executor.
    """
    cfg = cfg or {}
    loop = asyncio.get_running_loop()
    if is_vision_engine_ready(engine_module):
        cv = vision_engine(engine_module)
    else:
        try:
            cv = await ensure_vision_engine(engine_module)
        except Exception as e:
            logger.debug("[card] vision engine unavailable (%s), using heuristic", e)
            cv = None

    if cv is not None:
        try:
            return await loop.run_in_executor(
                None, estimate_card_contours, frame, roi, cfg.get("contour"), cv)
        except Exception as e:
            logger.warning("[card] contour detector failed, falling back to heuristic: %s", e)

    return await loop.run_in_executor(None, estimate_card_heuristic, frame, roi, cfg.get("heuristic"))
