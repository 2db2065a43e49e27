#!/usr/bin/env python3

"""
auto_save.py - Routes trigger events into the auto-save stack

Polls every trigger source once per tick, debounces what they emit per
(profile, game) and, for an accepted event, takes a full state capture
from the core and pushes it to the auto stack.  Auto-saves never touch
the manual stack.

The debounce is leading edge: the first event in a quiet period saves
immediately, anything within debounce_seconds of the last accepted
event is dropped.
"""

import threading
import time

from errors import NotReadyError
from save_stack import SaveMetadata
from trigger_sources import (
    IntervalTimerSource,
    LevelCompleteSource,
    PauseTriggerSource,
    ScreenFadeDetector,
    TriggerEvent,
    TriggerReason,
)


class AutoSaveCoordinator:
    """
    Usage:
        coordinator = AutoSaveCoordinator(core, manager, state_settings)
        coordinator.add_default_sources()
        ...
        coordinator.poll(context, frame, play_time, frame_count)   # each tick
    """

    def __init__(self, core, manager, settings, sources=None, clock=time.monotonic):
        self.core = core
        self.manager = manager
        self.settings = settings
        self.sources = list(sources or [])
        self._clock = clock
        self._last_accepted = {}
        self._lock = threading.Lock()
        self.pause_source = None

    # ------------------------------------------------------------------
    # Sources
    # ------------------------------------------------------------------

    def add_source(self, source):
        self.sources.append(source)
        if isinstance(source, PauseTriggerSource) and self.pause_source is None:
            self.pause_source = source
        return source

    def add_default_sources(self, detector=None):
        """Create the sources the current settings switch on."""
        if self.settings.auto_save_on_level_complete:
            self.add_source(LevelCompleteSource(detector or ScreenFadeDetector()))
        if self.settings.interval_seconds > 0:
            self.add_source(IntervalTimerSource(self.settings.interval_seconds))
        if self.settings.auto_save_on_pause:
            self.add_source(PauseTriggerSource())
        names = ", ".join(type(s).__name__ for s in self.sources) or "none"
        print(f"[AutoSave] Trigger sources: {names}")

    def notify_pause(self):
        if self.pause_source is not None:
            self.pause_source.notify_pause()

    def reset(self):
        now = self._clock()
        for source in self.sources:
            source.reset(now)
        with self._lock:
            self._last_accepted.clear()

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def _reason_enabled(self, reason):
        if not self.settings.auto_save_enabled:
            return False
        if reason == TriggerReason.LEVEL_COMPLETE:
            return self.settings.auto_save_on_level_complete
        if reason == TriggerReason.PAUSE:
            return self.settings.auto_save_on_pause
        if reason == TriggerReason.INTERVAL:
            return self.settings.interval_seconds > 0
        return True

    def poll(self, context, frame=None, play_time=0.0, frame_count=0):
        """
        Poll every source and save for the first accepted event.

        Every source is polled even after one has fired so latched events
        are consumed; the rest collapse into the debounce window.

        Returns:
            str entry id of the auto-save made this tick, or None
        """
        now = self._clock()
        events = []
        for source in self.sources:
            event = source.poll(now, frame)
            if event is not None:
                events.append(event)

        entry_id = None
        for event in events:
            result = self.submit(context, event, frame, play_time, frame_count)
            if result is not None:
                entry_id = result
        return entry_id

    def trigger(self, context, frame=None, play_time=0.0, frame_count=0, level_hint=None):
        """Submit a manual-reason event (e.g. from a menu command)."""
        event = TriggerEvent(TriggerReason.MANUAL, self._clock(), level_hint)
        return self.submit(context, event, frame, play_time, frame_count)

    def submit(self, context, event, frame=None, play_time=0.0, frame_count=0):
        """
        Debounce one event and, if accepted, push an auto-save.

        Returns:
            str entry id, or None when the event was filtered, debounced or
            the core had nothing to capture
        """
        if not self._reason_enabled(event.reason):
            return None

        key = (context.profile_id, context.game_id)
        with self._lock:
            last = self._last_accepted.get(key)
            if last is not None and event.time - last < self.settings.debounce_seconds:
                print(f"[AutoSave] {event.reason} trigger debounced ({event.time - last:.1f}s since last)")
                return None

            try:
                state = self.core.capture_state()
            except NotReadyError as e:
                print(f"[AutoSave] Skipped {event.reason} auto-save: {e}")
                return None
            if state is None:
                print(f"[AutoSave] Skipped {event.reason} auto-save: core returned no state")
                return None
            self._last_accepted[key] = event.time

        metadata = SaveMetadata(
            game_name=context.game_name,
            play_time=play_time,
            level_hint=event.level_hint or "Auto-Save",
            is_auto_save=True,
            frame_count=frame_count,
        )
        screenshot = getattr(frame, "video", None)
        entry_id = self.manager.push(
            context.profile_id, context.game_id, state, screenshot, metadata, is_auto=True
        )
        print(f"[AutoSave] Auto-saved on {event.reason} ({entry_id[:8]})")
        return entry_id
