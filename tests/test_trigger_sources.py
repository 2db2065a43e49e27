import numpy as np
import pytest

from emulation_core import FrameOutput
from trigger_sources import (
    IntervalTimerSource,
    LevelCompleteSource,
    PauseTriggerSource,
    ScreenFadeDetector,
    TriggerEvent,
    TriggerReason,
)


def frame(level):
    return FrameOutput(video=np.full((32, 32, 3), level, dtype=np.uint8))


def test_interval_zero_never_fires():
    source = IntervalTimerSource(0)
    assert not source.enabled
    for t in range(0, 10000, 100):
        assert source.poll(float(t), None) is None


def test_interval_fires_each_period():
    source = IntervalTimerSource(60)
    assert source.poll(0.0, None) is None
    assert source.poll(59.0, None) is None

    event = source.poll(60.0, None)
    assert event.reason == TriggerReason.INTERVAL
    assert source.poll(61.0, None) is None
    assert source.poll(120.0, None) is not None


def test_pause_latches_once():
    source = PauseTriggerSource()
    assert source.poll(0.0, None) is None
    source.notify_pause()
    event = source.poll(1.0, None)
    assert event.reason == TriggerReason.PAUSE
    assert source.poll(2.0, None) is None


def test_level_complete_fires_on_rising_edge_only():
    signal = iter([False, True, True, True, False, True])
    source = LevelCompleteSource(lambda video: next(signal), level_hint="World 1-1")

    events = [source.poll(float(i), frame(0)) for i in range(6)]
    fired = [i for i, e in enumerate(events) if e is not None]
    assert fired == [1, 5]
    assert events[1].level_hint == "World 1-1"


def test_level_complete_ignores_missing_frames():
    source = LevelCompleteSource(lambda video: True)
    assert source.poll(0.0, None) is None


def test_fade_detector_needs_sustained_gameplay_first():
    detector = ScreenFadeDetector(min_bright_frames=10, dark_frames=3)
    # Dark from the start (boot screen) is not a level end
    assert not any(detector(frame(0).video) for _ in range(10))

    results = [detector(frame(200).video) for _ in range(10)]
    results += [detector(frame(0).video) for _ in range(5)]
    assert results.count(True) == 1
    assert results.index(True) == 12


def test_fade_detector_feeds_level_complete_source():
    source = LevelCompleteSource(ScreenFadeDetector(min_bright_frames=5, dark_frames=2))
    frames = [frame(180)] * 5 + [frame(90)] + [frame(0)] * 4
    events = [source.poll(float(i), f) for i, f in enumerate(frames)]
    assert sum(e is not None for e in events) == 1


def test_unknown_reason_rejected():
    with pytest.raises(ValueError):
        TriggerEvent("lunch", 0.0)
