# idcapture/core/config.py
from __future__ import annotations
from pathlib import Path
from typing import Dict, Optional
import yaml

from idcapture.core.errors import ConfigError

# Session-level defaults. Detector thresholds live next to their detector
# (see _DEFAULT_CFG in idcapture/detect/*.py) and are merged the same way.
_DEFAULT_CFG: Dict = {
    "face_models_url": "models",
    "face_model_file": "face_detection_yunet_2023mar.onnx",
    "opencv_module": "cv2",
    "is_open": False,
    "initial_overlay": "face",
    "auto_capture": False,
    "auto_capture_delay_ms": 5000,
    "detection_interval_ms": 333,

    # what we ask the camera for; drivers treat width/height as a hint
    "camera": {
        "index": 0,
        "facing": "user",
        "width": 1440,
        "height": 2560,
        "aspect_ratio": 9 / 16,
        "audio": False,
    },
    "display": {
        "width": 720,
        "height": 1280,
        "pixel_ratio": 1.0,          # clamped to [1, 3] by the render loop
        "refresh_hz": 60,
    },
    "capture": {
        "width": 1440,
        "height": 2560,
        "jpeg_quality": 95,
    },
    "face": {
        "input_size": 224,
        "score_threshold": 0.5,
    },
    "heuristic": {},
    "contour": {},
    "debug": False,
}


def merge_cfg(cfg: Optional[Dict], defaults: Optional[Dict] = None) -> Dict:
    """Overlay `cfg` on `defaults` (session defaults if omitted); nested dicts merge one level deep."""
    base = _DEFAULT_CFG if defaults is None else defaults
    merged = {k: (dict(v) if isinstance(v, dict) else v) for k, v in base.items()}
    if not cfg:
        return merged
    for k, v in cfg.items():
        if isinstance(v, dict) and k in merged and isinstance(merged[k], dict):
            merged[k] = {**merged[k], **v}
        else:
            merged[k] = v
    return merged


def load_config(path: str | Path) -> Dict:
    """
    Read a YAML config file and merge it over the session defaults.
    Raises FileNotFoundError if missing, ConfigError if the top level is not a mapping.
    """
    with open(path, "r") as f:
        raw = yaml.safe_load(f)
    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise ConfigError(f"Config at {path} must be a mapping, got {type(raw).__name__}")
    return merge_cfg(raw)


def model_path(cfg: Dict) -> Path:
    return Path(cfg["face_models_url"]) / cfg["face_model_file"]
