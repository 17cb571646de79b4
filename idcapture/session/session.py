# idcapture/session/session.py
"""
One capture session: camera stream, preview loop, detection loop and the
caller's capture callback.

    session = CaptureSession(cfg, on_capture=handle)
    await session.open()          # or: async with CaptureSession(...) as s:
    session.set_mode("card")
    await session.capture()       # manual trigger
    await session.close()         # handle(None) if nothing was captured

`on_capture` receives a 'data:image/jpeg;base64,...' string per capture, or
None once when the session closes without a capture.
"""
from __future__ import annotations
import asyncio
import logging
from typing import Callable, Dict, List, Optional

from idcapture.core.config import merge_cfg
from idcapture.core.contracts import CaptureResult, DetectionState, FrameContext, GuideMode, Mapping
from idcapture.core.errors import CameraError
from idcapture.detect.face import FaceGuideAdapter, YuNetFaceDetector
from idcapture.session.camera import CameraStream
from idcapture.session.capture import capture_still
from idcapture.session.fusion import AutoCapture, DetectionFusion
from idcapture.session.render import RenderLoop

logger = logging.getLogger(__name__)


class CaptureSession:
    def __init__(self, cfg: Optional[Dict] = None, on_capture: Optional[Callable[[Optional[str]], None]] = None,
                 camera=None, face_detector=None, presenter=None):
        self.cfg = merge_cfg(cfg)
        self.on_capture = on_capture
        self.camera = camera if camera is not None else CameraStream.from_cfg(self.cfg["camera"])
        if face_detector is None:
            face_detector = YuNetFaceDetector(
                self.cfg["face_models_url"], self.cfg["face_model_file"],
                input_size=self.cfg["face"]["input_size"],
                score_threshold=self.cfg["face"]["score_threshold"],
            )
        self.face_detector = face_detector

        self.mode = GuideMode.parse(self.cfg["initial_overlay"])
        self.state = DetectionState()
        self.mapping: Optional[Mapping] = None
        self.error: Optional[str] = None
        self.is_open = False
        self.is_streaming = False
        self._captured = False
        self._tasks: List[asyncio.Task] = []
        self._face_load: Optional[asyncio.Task] = None

        self.auto = AutoCapture(
            self.cfg["auto_capture_delay_ms"],
            is_ok=lambda: self.state.for_mode(self.mode),
            trigger=self.capture,
            enabled=self.cfg["auto_capture"],
        )
        display = self.cfg["display"]
        self.render = RenderLoop(
            frames=self.camera.latest_frame,
            mode=lambda: self.mode,
            state=self.state,
            publish=self._publish_mapping,
            presenter=presenter,
            width=display["width"], height=display["height"],
            pixel_ratio=display["pixel_ratio"], refresh_hz=display["refresh_hz"],
        )
        self.fusion = DetectionFusion(
            context=self.frame_context,
            frames=self.camera.latest_frame,
            state=self.state,
            face=FaceGuideAdapter(self.face_detector),
            auto=self.auto,
            engine_module=self.cfg["opencv_module"],
            cfg={"heuristic": self.cfg["heuristic"],
                 "contour": {"debug": self.cfg["debug"], **self.cfg["contour"]}},
            interval_ms=self.cfg["detection_interval_ms"],
        )

    async def __aenter__(self) -> "CaptureSession":
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    # --- shared state ---

    def _publish_mapping(self, mapping: Optional[Mapping]) -> None:
        self.mapping = mapping

    def frame_context(self) -> FrameContext:
        return FrameContext(mapping=self.mapping, mode=self.mode)

    @property
    def framed(self) -> bool:
        """Fused boolean of the active mode."""
        return self.state.for_mode(self.mode)

    def set_mode(self, mode) -> None:
        mode = GuideMode.parse(mode)
        if mode is self.mode:
            return
        # a re-check armed for the previous guide never carries over
        self.auto.cancel()
        self.mode = mode
        logger.info("[session] guide mode -> %s", mode.value)

    # --- lifecycle ---

    async def _load_face_model(self) -> None:
        try:
            await self.face_detector.load()
        except Exception as e:
            logger.warning("[session] face model unavailable, face mode reports not framed: %s", e)

    async def open(self) -> None:
        """Start the stream. A camera failure leaves the session open, not streaming, with `error` set."""
        if self.is_streaming:
            return
        loop = asyncio.get_running_loop()
        self.is_open = True
        self.error = None
        self._captured = False
        if self._face_load is None or self._face_load.done():
            self._face_load = loop.create_task(self._load_face_model())
        try:
            await loop.run_in_executor(None, self.camera.start)
        except CameraError as e:
            self.error = str(e)
            self.is_streaming = False
            logger.error("[session] %s", self.error)
            return
        self.is_streaming = True
        self._tasks = [
            loop.create_task(self.render.run(), name="idcapture-render"),
            loop.create_task(self.fusion.run(), name="idcapture-detect"),
        ]
        logger.info("[session] streaming in %s mode", self.mode.value)

    async def stop_stream(self) -> None:
        """Cancel loops and timers, release the camera, forget geometry and detections. Idempotent."""
        self.auto.cancel()
        tasks, self._tasks = self._tasks, []
        if self._face_load is not None and not self._face_load.done():
            self._face_load.cancel()
            tasks.append(self._face_load)
        self._face_load = None
        for t in tasks:
            t.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        try:
            await asyncio.get_running_loop().run_in_executor(None, self.camera.stop)
        except Exception as e:
            logger.warning("[session] camera release failed: %s", e)
        self.render.reset()
        self.mapping = None
        self.state.reset()
        self.is_streaming = False

    async def close(self) -> None:
        """Stop streaming and report None to the callback if nothing was captured. Idempotent."""
        if not self.is_open:
            return
        await self.stop_stream()
        self.is_open = False
        if not self._captured:
            self._emit(None)
        logger.info("[session] closed (captured=%s)", self._captured)

    # --- capture ---

    def _emit(self, payload: Optional[str]) -> None:
        if self.on_capture is None:
            return
        try:
            self.on_capture(payload)
        except Exception as e:
            logger.error("[session] capture callback raised: %s", e)

    async def capture(self) -> Optional[CaptureResult]:
        """Encode the current raw frame and hand it to the callback. No-op unless streaming."""
        if not self.is_streaming:
            logger.debug("[session] capture ignored, not streaming")
            return None
        frame = self.camera.latest_frame()
        if frame is None:
            return None
        c = self.cfg["capture"]
        result = await asyncio.get_running_loop().run_in_executor(
            None, capture_still, frame, c["width"], c["height"], c["jpeg_quality"])
        self._captured = True
        self._emit(result.data_url)
        return result
