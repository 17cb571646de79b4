# idcapture/detect/engine.py
"""
Lazy, process-wide handle on the contour vision engine (OpenCV by default).

The engine is imported by module name the first time a card tick asks for it
and is considered ready once it exposes getBuildInformation(). Later callers
reuse the loaded module; a failed import is remembered and the card check
keeps using the heuristic detector.
"""
from __future__ import annotations
import importlib
import logging
from types import ModuleType
from typing import Dict, Optional

from idcapture.core.errors import VisionEngineError
from idcapture.core.lazy import LazyResource

logger = logging.getLogger(__name__)

DEFAULT_ENGINE = "cv2"

_engines: Dict[str, LazyResource] = {}


def _import_engine(module_name: str) -> ModuleType:
    try:
        mod = importlib.import_module(module_name)
    except ImportError as e:
        raise VisionEngineError(f"Failed to load vision engine '{module_name}': {e}") from e
    if not callable(getattr(mod, "getBuildInformation", None)):
        raise VisionEngineError(f"'{module_name}' loaded but is not ready (no getBuildInformation)")
    return mod


def _resource(module_name: str) -> LazyResource:
    res = _engines.get(module_name)
    if res is None:
        res = LazyResource(f"vision engine {module_name}", lambda: _import_engine(module_name))
        _engines[module_name] = res
    return res


async def ensure_vision_engine(module_name: str = DEFAULT_ENGINE) -> ModuleType:
    """Idempotent; concurrent callers share one in-flight import."""
    return await _resource(module_name).ensure()


def is_vision_engine_ready(module_name: str = DEFAULT_ENGINE) -> bool:
    res = _engines.get(module_name)
    return res is not None and res.ready


def vision_engine(module_name: str = DEFAULT_ENGINE) -> Optional[ModuleType]:
    res = _engines.get(module_name)
    return res.value if res is not None and res.ready else None


def reset_vision_engines() -> None:
    """Forget every loaded engine (tests)."""
    _engines.clear()
