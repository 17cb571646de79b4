"""
Session lifecycle with a fake camera and a fake face model, so no device or
model file is needed.
"""
from __future__ import annotations
import asyncio

import numpy as np
import pytest

from idcapture.core.contracts import FaceBox, GuideMode
from idcapture.core.errors import CameraError, ConfigError
from idcapture.session.fusion import ARMED, IDLE
from idcapture.session.session import CaptureSession


class FakeCamera:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.frame = None
        self.starts = 0
        self.stops = 0

    def start(self):
        self.starts += 1
        if self.fail:
            raise CameraError("Camera access failed. Check permissions.")
        self.frame = np.full((1280, 720, 3), 90, np.uint8)

    def latest_frame(self):
        return self.frame

    def stop(self):
        self.stops += 1
        self.frame = None


class FakeFaceModel:
    loaded = True

    def __init__(self, box=None):
        self.box = box
        self.loads = 0

    async def load(self):
        self.loads += 1

    def detect(self, frame):
        return self.box


def _session(calls, camera=None, face=None, **cfg):
    base = {"display": {"width": 90, "height": 160}, "detection_interval_ms": 20}
    base.update(cfg)
    return CaptureSession(base, on_capture=calls.append, camera=camera or FakeCamera(),
                          face_detector=face or FakeFaceModel())


def test_open_stream_and_close_reports_none_once():
    calls = []
    cam = FakeCamera()

    async def scenario():
        s = _session(calls, cam)
        await s.open()
        assert s.is_open and s.is_streaming and s.error is None
        await asyncio.sleep(0.1)
        assert s.mapping is not None
        assert s.mapping.mirrored            # face preview
        await s.close()
        await s.close()
        return s

    s = asyncio.run(scenario())
    assert calls == [None]
    assert cam.stops >= 1
    assert s.mapping is None and not s.is_streaming and not s.is_open
    assert not s.state.face_inside and not s.state.card_ok


def test_capture_then_close_has_no_none():
    calls = []

    async def scenario():
        s = _session(calls)
        await s.open()
        res = await s.capture()
        assert res is not None and res.size == (1440, 2560)
        await s.close()

    asyncio.run(scenario())
    assert len(calls) == 1
    assert calls[0].startswith("data:image/jpeg;base64,")


def test_camera_failure_keeps_session_open_without_stream():
    calls = []
    cam = FakeCamera(fail=True)

    async def scenario():
        s = _session(calls, cam)
        await s.open()
        assert s.is_open and not s.is_streaming
        assert s.error == "Camera access failed. Check permissions."
        assert await s.capture() is None
        await s.close()

    asyncio.run(scenario())
    assert calls == [None]


def test_stop_stream_is_idempotent_before_open():
    cam = FakeCamera()

    async def scenario():
        s = _session([], cam)
        await s.stop_stream()
        await s.stop_stream()
        await s.close()

    asyncio.run(scenario())
    assert cam.starts == 0


def test_context_manager_opens_and_closes():
    calls = []
    cam = FakeCamera()

    async def scenario():
        async with _session(calls, cam) as s:
            assert s.is_streaming

    asyncio.run(scenario())
    assert cam.starts == 1 and cam.stops >= 1
    assert calls == [None]


def test_mode_change_cancels_armed_capture():
    calls = []

    async def scenario():
        s = _session(calls, auto_capture=True, auto_capture_delay_ms=50)
        await s.open()
        s.auto.observe(True)
        assert s.auto.state == ARMED
        s.set_mode("card")
        assert s.mode is GuideMode.CARD
        assert s.auto.state == IDLE
        await asyncio.sleep(0.15)
        await s.close()

    asyncio.run(scenario())
    assert calls == [None]


def test_auto_capture_fires_through_session():
    calls = []

    async def scenario():
        # face centered in the sensor lands on the guide center of the preview
        s = _session(calls, face=FakeFaceModel(FaceBox(310, 590, 100, 100)),
                     auto_capture=True, auto_capture_delay_ms=30)
        await s.open()
        await asyncio.sleep(0.25)
        assert s.state.face_inside
        await s.close()

    asyncio.run(scenario())
    assert calls
    assert all(c is not None and c.startswith("data:image/jpeg;base64,") for c in calls)


def test_callback_errors_do_not_escape():
    def bad(payload):
        raise RuntimeError("consumer bug")

    async def scenario():
        s = CaptureSession({"display": {"width": 90, "height": 160}}, on_capture=bad,
                           camera=FakeCamera(), face_detector=FakeFaceModel())
        await s.open()
        await s.capture()
        await s.close()

    asyncio.run(scenario())


def test_bad_initial_overlay_is_a_config_error():
    with pytest.raises(ConfigError):
        CaptureSession({"initial_overlay": "passport"}, camera=FakeCamera(), face_detector=FakeFaceModel())
