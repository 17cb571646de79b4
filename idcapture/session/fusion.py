# idcapture/session/fusion.py
"""
Detection tick + auto-capture.

Every tick takes one FrameContext snapshot, runs the detector for that mode
and overwrites the mode's DetectionState flag with the result (no
hysteresis). The fused boolean then feeds the auto-capture state machine:

    IDLE --ok--> ARMED --delay, still ok--> CAPTURING --> IDLE
                       --delay, not ok----------------> IDLE
"""
from __future__ import annotations
import asyncio
import logging
from typing import Awaitable, Callable, Dict, Optional
import numpy as np

from idcapture.core.contracts import DetectionState, FrameContext, GuideMode
from idcapture.detect.card import estimate_card
from idcapture.detect.engine import DEFAULT_ENGINE
from idcapture.geometry.guides import card_guide_rect
from idcapture.geometry.mapping import dest_rect_to_source_rect, mirrored

logger = logging.getLogger(__name__)

IDLE = "idle"
ARMED = "armed"
CAPTURING = "capturing"


class AutoCapture:
    """
    Arm-and-reconfirm timer. At most one pending re-check; a true reading
    while ARMED or CAPTURING is ignored.

    is_ok:   returns the fused boolean of the active mode at re-check time
    trigger: coroutine function that runs the capture pipeline
    """

    def __init__(self, delay_ms: float, is_ok: Callable[[], bool],
                 trigger: Callable[[], Awaitable[None]], enabled: bool = True):
        self.delay_ms = float(delay_ms)
        self.enabled = bool(enabled)
        self._is_ok = is_ok
        self._trigger = trigger
        self.state = IDLE
        self._handle: Optional[asyncio.TimerHandle] = None
        self._task: Optional[asyncio.Task] = None

    def observe(self, ok: bool) -> bool:
        """Feed one fused reading. Returns True if this reading armed the timer."""
        if not self.enabled or not ok or self.state != IDLE:
            return False
        loop = asyncio.get_running_loop()
        self.state = ARMED
        self._handle = loop.call_later(self.delay_ms / 1000.0, self._fire)
        logger.debug("[auto] armed, re-check in %.0f ms", self.delay_ms)
        return True

    def _fire(self) -> None:
        self._handle = None
        if not self._is_ok():
            logger.debug("[auto] no longer framed, disarmed")
            self.state = IDLE
            return
        self.state = CAPTURING
        self._task = asyncio.get_running_loop().create_task(self._capture())

    async def _capture(self) -> None:
        try:
            await self._trigger()
        except Exception as e:
            logger.error("[auto] capture failed: %s", e)
        finally:
            self.state = IDLE
            self._task = None

    def cancel(self) -> None:
        """Drop a pending re-check or in-flight capture. Safe to call any time."""
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
        if self._task is not None:
            self._task.cancel()
            self._task = None
        if self.state != IDLE:
            logger.debug("[auto] cancelled")
        self.state = IDLE


class DetectionFusion:
    """
    context: returns the current FrameContext (mapping may be None before the first frame)
    frames:  returns the latest camera frame or None
    face:    FaceGuideAdapter-like object with `async is_framed(frame, mapping)`
    """

    def __init__(self, context: Callable[[], FrameContext], frames: Callable[[], Optional[np.ndarray]],
                 state: DetectionState, face, auto: Optional[AutoCapture] = None,
                 engine_module: str = DEFAULT_ENGINE, cfg: Optional[Dict] = None,
                 interval_ms: float = 333):
        self.context = context
        self.frames = frames
        self.state = state
        self.face = face
        self.auto = auto
        self.engine_module = engine_module
        self.cfg = cfg or {}
        self.interval_ms = float(interval_ms)

    async def _evaluate(self, ctx: FrameContext, frame: np.ndarray) -> bool:
        m = ctx.mapping
        if ctx.mode is GuideMode.FACE:
            return await self.face.is_framed(frame, m)
        # card mode is never mirrored
        roi = dest_rect_to_source_rect(card_guide_rect(m.dest_w, m.dest_h), mirrored(m, False))
        return await estimate_card(frame, roi, self.engine_module, self.cfg)

    async def tick(self) -> Optional[bool]:
        """One detection pass. Returns the fused boolean, or None when there was nothing to look at."""
        ctx = self.context()
        if ctx.mapping is None:
            return None
        frame = self.frames()
        if frame is None:
            return None
        try:
            ok = await self._evaluate(ctx, frame)
        except Exception as e:
            logger.warning("[fusion] %s tick failed, treating as not framed: %s", ctx.mode.value, e)
            ok = False
        self.state.set_for_mode(ctx.mode, ok)
        # a reading taken for the previous mode must not arm the new one
        if self.auto is not None and self.context().mode is ctx.mode:
            self.auto.observe(ok)
        return ok

    async def run(self) -> None:
        """Tick forever on a fixed cadence. Each tick is awaited before the next one is scheduled."""
        loop = asyncio.get_running_loop()
        period = self.interval_ms / 1000.0
        next_at = loop.time()
        while True:
            await self.tick()
            next_at += period
            now = loop.time()
            if next_at < now:
                # a slow tick skips the intervals it overran instead of bursting
                next_at = now
            await asyncio.sleep(next_at - now)
