# idcapture/geometry/mapping.py
"""
Cover-fit mapping between the camera frame (source) and the display raster
(destination).

Forward:  x_d = offset_x + x_s * scale                (plain)
          x_d = offset_x + (src_w - x_s) * scale      (mirrored)
          y_d = offset_y + y_s * scale
"""
from __future__ import annotations
from dataclasses import replace
import math
import numpy as np

from idcapture.core.contracts import Mapping, Rectangle


def compute_mapping(dest_w: int, dest_h: int, src_w: int, src_h: int, mirrored: bool = False) -> Mapping:
    """
    Scale-to-cover fit of a src_w x src_h raster into dest_w x dest_h:
    uniform scale = max(dest_w/src_w, dest_h/src_h), centered, overflow cropped.
    Offsets are floored to whole destination pixels.
    """
    if src_w <= 0 or src_h <= 0:
        raise ValueError(f"Source raster must be non-empty, got {src_w}x{src_h}")
    if dest_w <= 0 or dest_h <= 0:
        raise ValueError(f"Destination raster must be non-empty, got {dest_w}x{dest_h}")
    scale = max(dest_w / float(src_w), dest_h / float(src_h))
    dw, dh = src_w * scale, src_h * scale
    offset_x = math.floor((dest_w - dw) / 2.0)
    offset_y = math.floor((dest_h - dh) / 2.0)
    return Mapping(
        dest_w=int(dest_w), dest_h=int(dest_h),
        src_w=int(src_w), src_h=int(src_h),
        scale=float(scale),
        offset_x=float(offset_x), offset_y=float(offset_y),
        mirrored=bool(mirrored),
    )


def dest_rect_to_source_rect(rect: Rectangle, mapping: Mapping) -> Rectangle:
    """
    Map a destination-space rectangle back to source pixels (undo offset and
    scale, then reflect x when mirrored). Clamped to the source raster so the
    result is always a valid crop request.
    """
    s = mapping.scale
    w = rect.width / s
    h = rect.height / s
    if mapping.mirrored:
        x = mapping.src_w - (rect.x - mapping.offset_x) / s - w
    else:
        x = (rect.x - mapping.offset_x) / s
    y = (rect.y - mapping.offset_y) / s
    return Rectangle(x, y, w, h).clamp_to(mapping.src_w, mapping.src_h)


def source_rect_to_dest_rect(rect: Rectangle, mapping: Mapping) -> Rectangle:
    """Forward transform of a source-space rectangle (no clamping)."""
    s = mapping.scale
    if mapping.mirrored:
        x = mapping.offset_x + (mapping.src_w - (rect.x + rect.width)) * s
    else:
        x = mapping.offset_x + rect.x * s
    y = mapping.offset_y + rect.y * s
    return Rectangle(x, y, rect.width * s, rect.height * s)


def mirrored(mapping: Mapping, value: bool = True) -> Mapping:
    """Same fit, different mirroring."""
    return mapping if mapping.mirrored == value else replace(mapping, mirrored=value)


def cover_affine(mapping: Mapping) -> np.ndarray:
    """2x3 matrix for cv2.warpAffine drawing the source into the destination raster."""
    s = mapping.scale
    if mapping.mirrored:
        return np.float32([[-s, 0.0, mapping.offset_x + mapping.src_w * s],
                           [0.0, s, mapping.offset_y]])
    return np.float32([[s, 0.0, mapping.offset_x],
                       [0.0, s, mapping.offset_y]])
