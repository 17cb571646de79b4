"""
Still-image I/O: read test images from disk (BGR, as OpenCV expects) and
turn a captured data URL back into pixels or a file.
"""

from __future__ import annotations
import base64
from pathlib import Path
import cv2
import numpy as np

_JPEG_PREFIX = "data:image/jpeg;base64,"


def load_image(path: str | Path) -> np.ndarray:
    """
    Load an image from disk (BGR).
    Raises FileNotFoundError if not found.
    """
    img = cv2.imread(str(path), cv2.IMREAD_COLOR)
    if img is None:
        raise FileNotFoundError(f"Could not read image at: {path}")
    return img


def data_url_bytes(data_url: str) -> bytes:
    if not data_url.startswith(_JPEG_PREFIX):
        raise ValueError("Not a JPEG data URL")
    return base64.b64decode(data_url[len(_JPEG_PREFIX):])


def decode_data_url(data_url: str) -> np.ndarray:
    """BGR pixels of a 'data:image/jpeg;base64,...' capture."""
    buf = np.frombuffer(data_url_bytes(data_url), dtype=np.uint8)
    img = cv2.imdecode(buf, cv2.IMREAD_COLOR)
    if img is None:
        raise ValueError("Data URL does not contain a decodable JPEG")
    return img


def save_data_url(data_url: str, path: str | Path) -> Path:
    """Write the JPEG bytes as-is (no re-encode)."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(data_url_bytes(data_url))
    return path
