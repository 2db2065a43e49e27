from auto_save import AutoSaveCoordinator
from errors import NotReadyError
from play_session import SessionContext
from settings import SaveStateSettings
from trigger_sources import IntervalTimerSource, PauseTriggerSource, TriggerEvent, TriggerReason

from conftest import FakeCore

CONTEXT = SessionContext("1", "b" * 40, "Test Game")


def make_coordinator(core, manager, clock, **overrides):
    settings = SaveStateSettings(history_size=5, **overrides)
    return AutoSaveCoordinator(core, manager, settings, clock=clock)


def auto_entries(manager, context=CONTEXT):
    return manager.entries(context.profile_id, context.game_id, is_auto=True)


def test_events_inside_window_collapse(core, manager, clock):
    coordinator = make_coordinator(core, manager, clock)

    first = coordinator.submit(CONTEXT, TriggerEvent(TriggerReason.PAUSE, clock()))
    clock.advance(4.0)
    second = coordinator.submit(CONTEXT, TriggerEvent(TriggerReason.LEVEL_COMPLETE, clock()))

    assert first is not None
    assert second is None
    assert len(auto_entries(manager)) == 1


def test_event_after_window_saves_again(core, manager, clock):
    coordinator = make_coordinator(core, manager, clock)
    coordinator.submit(CONTEXT, TriggerEvent(TriggerReason.PAUSE, clock()))
    clock.advance(10.5)
    coordinator.submit(CONTEXT, TriggerEvent(TriggerReason.PAUSE, clock()))
    assert len(auto_entries(manager)) == 2


def test_debounce_is_per_game(core, manager, clock):
    coordinator = make_coordinator(core, manager, clock)
    other = SessionContext("1", "c" * 40, "Other Game")

    coordinator.submit(CONTEXT, TriggerEvent(TriggerReason.PAUSE, clock()))
    coordinator.submit(other, TriggerEvent(TriggerReason.PAUSE, clock()))

    assert len(auto_entries(manager)) == 1
    assert len(auto_entries(manager, other)) == 1


def test_auto_saves_never_touch_manual_stack(core, manager, clock):
    coordinator = make_coordinator(core, manager, clock)
    for _ in range(8):
        coordinator.submit(CONTEXT, TriggerEvent(TriggerReason.PAUSE, clock()))
        clock.advance(11.0)

    assert manager.entries(CONTEXT.profile_id, CONTEXT.game_id) == ()
    assert len(auto_entries(manager)) == 5


def test_accepted_save_carries_full_state_and_metadata(core, manager, clock):
    coordinator = make_coordinator(core, manager, clock)
    core.advance(3)
    expected = core.capture_state()

    entry_id = coordinator.submit(
        CONTEXT, TriggerEvent(TriggerReason.LEVEL_COMPLETE, clock(), "World 1-2"),
        play_time=12.5, frame_count=750,
    )

    entry = manager.get_entry(entry_id)
    assert entry.is_auto
    assert entry.metadata.is_auto_save
    assert entry.metadata.level_hint == "World 1-2"
    assert entry.metadata.frame_count == 750
    assert manager.load(entry_id) == expected


def test_disabled_reasons_are_ignored(core, manager, clock):
    coordinator = make_coordinator(
        core, manager, clock, auto_save_on_pause=False, auto_save_on_level_complete=False
    )
    assert coordinator.submit(CONTEXT, TriggerEvent(TriggerReason.PAUSE, clock())) is None
    assert coordinator.submit(CONTEXT, TriggerEvent(TriggerReason.LEVEL_COMPLETE, clock())) is None
    # Interval is off at 0 minutes
    assert coordinator.submit(CONTEXT, TriggerEvent(TriggerReason.INTERVAL, clock())) is None
    assert auto_entries(manager) == ()


def test_master_switch(core, manager, clock):
    coordinator = make_coordinator(core, manager, clock, auto_save_enabled=False)
    assert coordinator.trigger(CONTEXT) is None
    assert auto_entries(manager) == ()


def test_no_content_skips_and_does_not_start_window(manager, clock):
    core = FakeCore()
    coordinator = make_coordinator(core, manager, clock)
    assert coordinator.submit(CONTEXT, TriggerEvent(TriggerReason.PAUSE, clock())) is None

    core.load_content(b"rom")
    assert coordinator.submit(CONTEXT, TriggerEvent(TriggerReason.PAUSE, clock())) is not None


def test_core_not_ready_is_skipped(core, manager, clock):
    def not_ready():
        raise NotReadyError("no content loaded")

    core.capture_state = not_ready
    coordinator = make_coordinator(core, manager, clock)
    assert coordinator.trigger(CONTEXT) is None
    assert auto_entries(manager) == ()


def test_poll_dispatches_every_source(core, manager, clock):
    coordinator = make_coordinator(core, manager, clock, auto_save_interval_minutes=1)
    pause = coordinator.add_source(PauseTriggerSource())
    coordinator.add_source(IntervalTimerSource(60))

    assert coordinator.poll(CONTEXT) is None  # arms the timer
    pause.notify_pause()
    clock.advance(60.0)

    # Both fire on the same tick; the second collapses into the first
    assert coordinator.poll(CONTEXT) is not None
    assert len(auto_entries(manager)) == 1
    assert coordinator.poll(CONTEXT) is None


def test_default_sources_follow_settings(core, manager, clock):
    coordinator = make_coordinator(core, manager, clock, auto_save_interval_minutes=5)
    coordinator.add_default_sources()
    kinds = {type(s).__name__ for s in coordinator.sources}
    assert kinds == {"LevelCompleteSource", "IntervalTimerSource", "PauseTriggerSource"}

    quiet = make_coordinator(
        core, manager, clock, auto_save_on_level_complete=False, auto_save_on_pause=False
    )
    quiet.add_default_sources()
    assert quiet.sources == []


def test_interval_zero_adds_no_timer(core, manager, clock):
    coordinator = make_coordinator(core, manager, clock, auto_save_interval_minutes=0)
    coordinator.add_default_sources()
    assert not any(isinstance(s, IntervalTimerSource) for s in coordinator.sources)
