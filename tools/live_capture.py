#!/usr/bin/env python3
"""
tools/live_capture.py

- Opens the camera and shows the guided preview in a window
- Keys: o = open (unless --open), f = face guide, c = card guide, space = capture, q / Esc = close
- Each capture is written as JPEG to --out_dir
"""
from __future__ import annotations
import argparse
import asyncio
import logging
import os
from datetime import datetime
from typing import List, Optional
import cv2
import numpy as np

from idcapture.core.config import load_config, merge_cfg
from idcapture.io.ingest import save_data_url
from idcapture.session.session import CaptureSession

logger = logging.getLogger("live_capture")

WINDOW = "idcapture"


async def run(cfg, out_dir: str) -> int:
    latest: List[Optional[np.ndarray]] = [None]
    saved: List[str] = []

    def present(canvas: np.ndarray) -> None:
        latest[0] = canvas

    def on_capture(data_url: Optional[str]) -> None:
        if data_url is None:
            logger.info("Closed without capture")
            return
        path = os.path.join(out_dir, f"capture_{datetime.now().strftime('%Y%m%d_%H%M%S_%f')}.jpg")
        save_data_url(data_url, path)
        saved.append(path)
        logger.info("Saved capture -> %s", path)

    d = cfg["display"]
    idle = np.zeros((int(d["height"]), int(d["width"]), 3), np.uint8)
    cv2.putText(idle, "press o to open", (20, 40), cv2.FONT_HERSHEY_SIMPLEX, 0.8, (242, 242, 242), 2, cv2.LINE_AA)

    cv2.namedWindow(WINDOW, cv2.WINDOW_NORMAL)
    session = CaptureSession(cfg, on_capture=on_capture, presenter=present)
    try:
        if cfg["is_open"]:
            await session.open()
        while True:
            if session.error:
                logger.error("Camera: %s", session.error)
                return 1
            cv2.imshow(WINDOW, latest[0] if session.is_streaming and latest[0] is not None else idle)
            key = cv2.waitKey(1) & 0xFF
            if key in (ord("q"), 27):
                break
            if key == ord("o"):
                await session.open()
            elif key == ord("f"):
                session.set_mode("face")
            elif key == ord("c"):
                session.set_mode("card")
            elif key == ord(" "):
                await session.capture()
            await asyncio.sleep(1.0 / 60)
    finally:
        await session.close()
        cv2.destroyAllWindows()
    logger.info("%d capture(s) saved", len(saved))
    return 0


def main():
    ap = argparse.ArgumentParser(description="Live guided face / ID-card capture from a webcam.")
    ap.add_argument("--config", default=None, help="YAML config file (see config/capture.yaml).")
    ap.add_argument("--camera", type=int, default=None, help="Camera index override.")
    ap.add_argument("--mode", choices=["face", "card"], default=None, help="Initial guide.")
    ap.add_argument("--open", action="store_true", help="Start streaming right away.")
    ap.add_argument("--auto", action="store_true", help="Enable auto-capture.")
    ap.add_argument("--out_dir", default="captures", help="Directory for captured JPEGs.")
    ap.add_argument("--debug", action="store_true")
    args = ap.parse_args()

    logging.basicConfig(level=logging.DEBUG if args.debug else logging.INFO,
                        format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    cfg = load_config(args.config) if args.config else merge_cfg(None)
    if args.camera is not None:
        cfg["camera"]["index"] = args.camera
    if args.mode:
        cfg["initial_overlay"] = args.mode
    if args.debug:
        cfg["debug"] = True
    if args.open:
        cfg["is_open"] = True
    if args.auto:
        cfg["auto_capture"] = True
    os.makedirs(args.out_dir, exist_ok=True)

    raise SystemExit(asyncio.run(run(cfg, args.out_dir)))


if __name__ == "__main__":
    main()
