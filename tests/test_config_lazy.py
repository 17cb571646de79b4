from __future__ import annotations
import asyncio
import threading
import time
import traceback

import pytest

from idcapture.core.config import load_config, merge_cfg, model_path
from idcapture.core.contracts import DetectionState, GuideMode, Rectangle
from idcapture.core.errors import ConfigError, VisionEngineError
from idcapture.core.lazy import FAILED, READY, UNINITIALIZED, LazyResource
from idcapture.detect import engine


# ---------- config ---------- #

def test_defaults():
    cfg = merge_cfg(None)
    assert cfg["face_models_url"] == "models"
    assert cfg["opencv_module"] == "cv2"
    assert cfg["is_open"] is False
    assert cfg["initial_overlay"] == "face"
    assert cfg["auto_capture"] is False
    assert cfg["auto_capture_delay_ms"] == 5000
    assert cfg["detection_interval_ms"] == 333
    assert (cfg["capture"]["width"], cfg["capture"]["height"]) == (1440, 2560)


def test_merge_is_nested_and_does_not_touch_defaults():
    cfg = merge_cfg({"display": {"pixel_ratio": 2.0}, "auto_capture": True})
    assert cfg["display"]["pixel_ratio"] == 2.0
    assert cfg["display"]["width"] == 720
    assert cfg["auto_capture"] is True
    assert merge_cfg(None)["display"]["pixel_ratio"] == 1.0


def test_load_config_yaml(tmp_path):
    p = tmp_path / "capture.yaml"
    p.write_text("initial_overlay: card\ncamera:\n  index: 2\ncontour:\n  min_rectangularity: 0.7\n")
    cfg = load_config(p)
    assert cfg["initial_overlay"] == "card"
    assert cfg["camera"]["index"] == 2
    assert cfg["camera"]["width"] == 1440
    assert cfg["contour"] == {"min_rectangularity": 0.7}
    assert model_path(cfg).name == "face_detection_yunet_2023mar.onnx"


def test_load_config_empty_file(tmp_path):
    p = tmp_path / "empty.yaml"
    p.write_text("")
    assert load_config(p) == merge_cfg(None)


def test_load_config_rejects_non_mapping(tmp_path):
    p = tmp_path / "bad.yaml"
    p.write_text("- just\n- a list\n")
    with pytest.raises(ConfigError):
        load_config(p)


def test_guide_mode_parse():
    assert GuideMode.parse("Card") is GuideMode.CARD
    assert GuideMode.parse(GuideMode.FACE) is GuideMode.FACE
    with pytest.raises(ConfigError):
        GuideMode.parse("passport")


def test_contract_basics():
    r = Rectangle(10, 20, -5, 30)
    assert r.width == 0
    assert Rectangle(-10, 5, 100, 100).clamp_to(50, 60).as_tuple() == (0.0, 5.0, 50.0, 55.0)
    s = DetectionState()
    s.set_for_mode(GuideMode.CARD, True)
    assert s.for_mode(GuideMode.CARD) and not s.for_mode(GuideMode.FACE)
    s.reset()
    assert not s.card_ok


# ---------- lazy resources ---------- #

def test_concurrent_ensure_shares_one_load():
    calls = []
    lock = threading.Lock()

    def loader():
        with lock:
            calls.append(1)
        time.sleep(0.05)
        return "model"

    res = LazyResource("test", loader)
    assert res.state == UNINITIALIZED

    async def scenario():
        values = await asyncio.gather(*(res.ensure() for _ in range(5)))
        again = await res.ensure()
        return values, again

    values, again = asyncio.run(scenario())
    assert values == ["model"] * 5 and again == "model"
    assert calls == [1]
    assert res.state == READY and res.ready


def test_failed_load_is_remembered():
    calls = []

    def loader():
        calls.append(1)
        raise FileNotFoundError("no model here")

    res = LazyResource("broken", loader)

    async def scenario():
        for _ in range(3):
            with pytest.raises(FileNotFoundError):
                await res.ensure()

    asyncio.run(scenario())
    assert calls == [1]
    assert res.state == FAILED
    res.reset()
    assert res.state == UNINITIALIZED and res.error is None


def test_cached_failure_traceback_does_not_grow():
    def loader():
        raise FileNotFoundError("no model here")

    res = LazyResource("broken", loader)

    async def scenario():
        depths = []
        for _ in range(50):
            try:
                await res.ensure()
            except FileNotFoundError as e:
                depths.append(len(traceback.extract_tb(e.__traceback__)))
        return depths

    depths = asyncio.run(scenario())
    assert len(depths) == 50
    assert len(set(depths[1:])) == 1


def test_vision_engine_loads_once_and_reports_ready():
    engine.reset_vision_engines()
    try:
        assert not engine.is_vision_engine_ready()
        assert engine.vision_engine() is None
        mod = asyncio.run(engine.ensure_vision_engine("cv2"))
        assert hasattr(mod, "getBuildInformation")
        assert engine.is_vision_engine_ready("cv2")
        assert engine.vision_engine("cv2") is mod
        # a later loop reuses the loaded module
        assert asyncio.run(engine.ensure_vision_engine("cv2")) is mod
    finally:
        engine.reset_vision_engines()


@pytest.mark.parametrize("name", ["idcapture_missing_engine", "json"])
def test_vision_engine_failures(name):
    engine.reset_vision_engines()
    try:
        with pytest.raises(VisionEngineError):
            asyncio.run(engine.ensure_vision_engine(name))
        assert not engine.is_vision_engine_ready(name)
    finally:
        engine.reset_vision_engines()
