#!/usr/bin/env python3
"""
Run both card detectors on a still image with the card guide placed the way
the live preview would place it, and save a visualization.

    python tools/check_card.py photo.jpg --out tests/output/photo_check.png
"""
from __future__ import annotations
import argparse
import asyncio
import logging
import os
import cv2

from idcapture.core.config import load_config, merge_cfg
from idcapture.core.contracts import Rectangle
from idcapture.detect.card import estimate_card
from idcapture.detect.contour import estimate_card_contours
from idcapture.detect.heuristic import estimate_card_heuristic, heuristic_score
from idcapture.geometry.guides import card_guide, card_guide_rect
from idcapture.geometry.mapping import compute_mapping, dest_rect_to_source_rect
from idcapture.io.ingest import load_image
from idcapture.session.render import render_frame

logger = logging.getLogger("check_card")


def main():
    ap = argparse.ArgumentParser(description="Check whether a still image shows an ID card inside the card guide.")
    ap.add_argument("image", help="Path to input image (BGR).")
    ap.add_argument("--config", default=None, help="YAML config (display size, detector overrides).")
    ap.add_argument("--out_dir", default="tests/output", help="Directory for outputs.")
    ap.add_argument("--out", default=None, help="Visualization PNG path. Default: <out_dir>/<image_basename>_check.png")
    ap.add_argument("--roi", default=None, help="Source-pixel ROI x,y,w,h instead of the card guide.")
    ap.add_argument("--debug", action="store_true", help="Debug logging, including per-contour stats.")
    args = ap.parse_args()

    logging.basicConfig(level=logging.DEBUG if args.debug else logging.INFO,
                        format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    cfg = load_config(args.config) if args.config else merge_cfg(None)
    if args.debug:
        cfg["contour"] = {**cfg["contour"], "debug": True}

    try:
        img = load_image(args.image)
    except FileNotFoundError as e:
        raise SystemExit(str(e))

    d = cfg["display"]
    dw, dh = int(d["width"]), int(d["height"])
    sh, sw = img.shape[:2]
    mapping = compute_mapping(dw, dh, sw, sh, mirrored=False)
    if args.roi:
        try:
            roi = Rectangle(*(float(v) for v in args.roi.split(",")))
        except (TypeError, ValueError):
            raise SystemExit(f"--roi expects x,y,w,h, got {args.roi!r}")
        roi = roi.clamp_to(sw, sh)
    else:
        roi = dest_rect_to_source_rect(card_guide_rect(dw, dh), mapping)
    logger.info("image %dx%d, preview %dx%d, card ROI in source %s", sw, sh, dw, dh,
                tuple(round(v, 1) for v in roi.as_tuple()))

    score = heuristic_score(img, roi, cfg["heuristic"])
    heuristic = estimate_card_heuristic(img, roi, cfg["heuristic"])
    contour = estimate_card_contours(img, roi, cfg["contour"])
    fused = asyncio.run(estimate_card(img, roi, cfg["opencv_module"], cfg))
    logger.info("heuristic: score=%.3f ok=%s", score, heuristic)
    logger.info("contour:   ok=%s", contour)
    logger.info("fused:     ok=%s", fused)

    vis = render_frame(img, mapping, card_guide(dw, dh), fused)
    os.makedirs(args.out_dir, exist_ok=True)
    base = os.path.splitext(os.path.basename(args.image))[0]
    out = args.out or os.path.join(args.out_dir, f"{base}_check.png")
    cv2.imwrite(out, vis)
    logger.info("Saved visualization -> %s", out)


if __name__ == "__main__":
    main()
