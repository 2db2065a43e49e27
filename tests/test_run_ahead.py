import numpy as np
import pytest

from errors import NotReadyError, TimingOverrunError
from run_ahead import RunAheadPreset, RunAheadScheduler
from snapshot_engine import SnapshotEngine

from conftest import FakeClock, FakeCore

ROM = b"NES\x1a test rom"


def loaded_core(**kwargs):
    core = FakeCore(**kwargs)
    core.load_content(ROM)
    return core


def test_no_content_declines_without_advancing():
    core = loaded_core()
    scheduler = RunAheadScheduler(core, SnapshotEngine(core), frames=1)
    core.unload()

    with pytest.raises(NotReadyError):
        scheduler.tick(0)
    assert core.advance_calls == 0
    assert scheduler.frame_index == 0


def test_authoritative_time_advances_one_frame_per_tick():
    core = loaded_core()
    reference = loaded_core()
    scheduler = RunAheadScheduler(core, SnapshotEngine(core), frames=1)

    for i in range(20):
        out = scheduler.tick(i % 3)
        expected = reference.advance(i % 3)
        assert core.capture_state() == reference.capture_state()
        np.testing.assert_array_equal(out.audio, expected.audio)

    assert scheduler.frame_index == 20


def test_displayed_frame_runs_ahead():
    core = loaded_core()
    ahead = loaded_core()
    scheduler = RunAheadScheduler(core, SnapshotEngine(core), frames=2)

    out = scheduler.tick(5)
    for _ in range(3):
        shown = ahead.advance(5)
    np.testing.assert_array_equal(out.video, shown.video)


def test_call_pattern_per_tick():
    core = loaded_core()
    scheduler = RunAheadScheduler(core, SnapshotEngine(core), frames=2)
    scheduler.tick(0)
    # k speculative + displayed + authoritative
    assert core.advance_calls == 4
    assert core.restore_calls == 1


def test_zero_frames_is_plain_advance():
    core = loaded_core()
    scheduler = RunAheadScheduler(core, SnapshotEngine(core), frames=0)
    scheduler.tick(0)
    assert core.advance_calls == 1
    assert core.restore_calls == 0
    assert not scheduler.enabled


def test_overrun_disables_run_ahead():
    clock = FakeClock()
    core = loaded_core(clock=clock, advance_cost=0.005)
    scheduler = RunAheadScheduler(core, SnapshotEngine(core), frames=2, clock=clock)

    scheduler.tick(0)  # 4 advances = 20ms > 16.6ms
    assert scheduler.suspended
    assert scheduler.overruns == 1
    assert isinstance(scheduler.last_overrun, TimingOverrunError)
    assert scheduler.last_overrun.elapsed > scheduler.budget

    calls = core.advance_calls
    scheduler.tick(0)
    assert core.advance_calls == calls + 1
    assert scheduler.suspended


def test_within_budget_keeps_run_ahead():
    clock = FakeClock()
    core = loaded_core(clock=clock, advance_cost=0.005)
    scheduler = RunAheadScheduler(core, SnapshotEngine(core), frames=1, clock=clock)
    for _ in range(10):
        scheduler.tick(0)  # 3 advances = 15ms
    assert scheduler.enabled
    assert scheduler.overruns == 0


def test_higher_refresh_rate_tightens_budget():
    clock = FakeClock()
    core = loaded_core(clock=clock, advance_cost=0.005)
    scheduler = RunAheadScheduler(
        core, SnapshotEngine(core), frames=1, refresh_hz=120, clock=clock
    )
    scheduler.tick(0)
    assert scheduler.suspended


def test_recovery_after_cheap_ticks():
    clock = FakeClock()
    core = loaded_core(clock=clock, advance_cost=0.005)
    scheduler = RunAheadScheduler(
        core, SnapshotEngine(core), frames=2, recovery_ticks=3, clock=clock
    )
    scheduler.tick(0)
    assert scheduler.suspended

    core.advance_cost = 0.001
    for _ in range(3):
        scheduler.tick(0)
    assert scheduler.enabled


def test_restore_failure_disables_without_raising():
    core = loaded_core()
    scheduler = RunAheadScheduler(core, SnapshotEngine(core), frames=1)
    core.reject_restore = True

    out = scheduler.tick(0)
    assert out is not None
    assert scheduler.suspended


class SerialiseFailsCore(FakeCore):
    fail_capture = False

    def capture_state_into(self, buffer):
        if self.fail_capture:
            return 0
        return super().capture_state_into(buffer)


def test_capture_failure_falls_back_to_direct_advance():
    core = SerialiseFailsCore()
    core.load_content(ROM)
    scheduler = RunAheadScheduler(core, SnapshotEngine(core), frames=1)
    core.fail_capture = True

    out = scheduler.tick(0)
    assert out is not None
    assert scheduler.suspended
    assert core.advance_calls == 1
    assert scheduler.frame_index == 1

    scheduler.tick(0)
    assert core.advance_calls == 2


def test_set_frames_clamps():
    core = loaded_core()
    scheduler = RunAheadScheduler(core, SnapshotEngine(core), frames=9)
    assert scheduler.frames == 4
    scheduler.set_frames(-1)
    assert scheduler.frames == 0


def test_stats_and_presets():
    core = loaded_core()
    scheduler = RunAheadScheduler(core, SnapshotEngine(core), frames=1)
    scheduler.tick(0)
    stats = scheduler.stats()
    assert stats.enabled
    assert stats.frames == 1
    assert stats.snapshot_size_bytes == core.state_size()
    assert stats.description.startswith("Run-ahead: 1 frames")

    assert RunAheadPreset.DISABLED.display_name == "Disabled"
    assert RunAheadPreset.MINIMAL.display_name == "Minimal (1 frame)"
    assert RunAheadPreset.STANDARD.latency_reduction == "-33ms"
