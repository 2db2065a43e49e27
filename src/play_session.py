#!/usr/bin/env python3

"""
play_session.py - Play session lifecycle

Wires one loaded game to the frame-state subsystems for the length of a
session:

  SnapshotEngine        pooled buffers for run-ahead, owned by this session
  RunAheadScheduler     per-tick frame execution
  AutoSaveCoordinator   trigger sources -> auto stack
  SaveStackManager      shared; the profile and game are passed explicitly

Entry points called by the frontend loop:
  start()                  load content, build the per-session objects
  tick()                   one displayed frame
  quick_save()/quick_load() manual stack head
  load_entry()             restore any entry from the history view
  pause()/resume()         pause also fires the pause trigger
  stop()                   flush writes, release the pool, unload
"""

import time

from emulation_core import content_game_id
from errors import CorruptStateError, NotReadyError
from auto_save import AutoSaveCoordinator
from run_ahead import RunAheadScheduler
from save_stack import SaveMetadata
from snapshot_engine import SnapshotEngine

# Longer gaps between ticks (debugger, window drag) don't count as play time
MAX_TICK_GAP = 0.25


class SessionContext:
    """The (profile, game) a session saves under.  There is no global current profile."""

    def __init__(self, profile_id, game_id=None, game_name=""):
        self.profile_id = str(profile_id)
        self.game_id = game_id
        self.game_name = game_name

    def __repr__(self):
        game = self.game_id[:12] if self.game_id else None
        return f"SessionContext(profile={self.profile_id}, game={game})"


class PlaySession:
    """
    Usage:
        session = PlaySession(core, manager, state_settings, SessionContext("1"))
        session.start(rom_bytes, "Super Mario Bros.")
        while running:
            frame = session.tick(input_state)
        session.stop()
    """

    def __init__(self, core, manager, settings, context, clock=time.monotonic):
        self.core = core
        self.manager = manager
        self.settings = settings
        self.context = context
        self._clock = clock

        self.snapshots = None
        self.scheduler = None
        self.auto_save = None

        self.running = False
        self.paused = False
        self.frame_count = 0
        self.play_time = 0.0
        self.last_frame = None
        self._last_tick = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self, content, game_name=None, content_path=None, detector=None):
        """
        Load *content* and build the per-session subsystems.

        Returns:
            bool: True if the content is loaded and ticking can begin
        """
        if self.running:
            self.stop()

        if content_path:
            ok = self.core.load_content(content, path=content_path)
        else:
            ok = self.core.load_content(content)
        if not ok:
            print("[Session] Content failed to load")
            return False

        self.context.game_id = content_game_id(content)
        if game_name:
            self.context.game_name = game_name

        self.manager.set_capacity(
            self.settings.history_size,
            self.settings.auto_history_size,
            profile_id=self.context.profile_id,
        )

        try:
            self.snapshots = SnapshotEngine(self.core)
        except NotReadyError as e:
            print(f"[Session] Run-ahead unavailable: {e}")
            self.snapshots = None

        self.scheduler = RunAheadScheduler(
            self.core,
            self.snapshots,
            frames=self.settings.run_ahead_frames,
            refresh_hz=self.settings.refresh_hz,
            recovery_ticks=self.settings.run_ahead_recovery_ticks,
        )

        self.auto_save = AutoSaveCoordinator(self.core, self.manager, self.settings)
        self.auto_save.add_default_sources(detector)
        self.auto_save.reset()

        self.running = True
        self.paused = False
        self.frame_count = 0
        self.play_time = 0.0
        self.last_frame = None
        self._last_tick = None

        print(f"[Session] Started {self.context.game_name or 'game'} for profile {self.context.profile_id}")
        return True

    def stop(self, timeout=5.0):
        """Flush pending saves, release the snapshot pool and unload the content."""
        if not self.running:
            return
        self.running = False
        if not self.manager.flush(timeout):
            print(f"[Session] WARNING: saves still pending after {timeout}s")
        if self.snapshots is not None:
            self.snapshots.close()
            self.snapshots = None
        self.core.unload()
        print(f"[Session] Stopped after {self.frame_count} frames ({self.play_time:.0f}s)")

    # ------------------------------------------------------------------
    # Per-frame
    # ------------------------------------------------------------------

    def tick(self, input_state):
        """
        Run one displayed frame.

        Returns:
            FrameOutput, or None while paused

        Raises:
            NotReadyError: the session has not been started
        """
        if not self.running:
            raise NotReadyError("session not started")
        if self.paused:
            return None

        now = self._clock()
        if self._last_tick is not None:
            self.play_time += min(now - self._last_tick, MAX_TICK_GAP)
        self._last_tick = now

        output = self.scheduler.tick(input_state)
        self.frame_count += 1
        self.last_frame = output
        self.auto_save.poll(self.context, output, self.play_time, self.frame_count)
        return output

    def pause(self):
        if not self.running or self.paused:
            return
        self.paused = True
        self._last_tick = None
        self.auto_save.notify_pause()
        self.auto_save.poll(self.context, self.last_frame, self.play_time, self.frame_count)
        print("[Session] Paused")

    def resume(self):
        if self.paused:
            self.paused = False
            print("[Session] Resumed")

    def set_run_ahead(self, frames):
        if self.scheduler is not None:
            self.scheduler.set_frames(frames)

    # ------------------------------------------------------------------
    # Saves
    # ------------------------------------------------------------------

    def _metadata(self, level_hint=None):
        return SaveMetadata(
            game_name=self.context.game_name,
            play_time=self.play_time,
            level_hint=level_hint,
            is_auto_save=False,
            frame_count=self.frame_count,
        )

    def quick_save(self, level_hint=None):
        """
        Push the current state to the head of the manual stack.

        Returns:
            str: new entry id

        Raises:
            NotReadyError: nothing is loaded or the core produced no state
        """
        if not self.running or not self.core.loaded:
            raise NotReadyError("no content loaded")
        state = self.core.capture_state()
        if state is None:
            raise NotReadyError("core produced no state")
        video = self.last_frame.video if self.last_frame is not None else None
        return self.manager.push(
            self.context.profile_id,
            self.context.game_id,
            state,
            video,
            self._metadata(level_hint),
            is_auto=False,
        )

    def quick_load(self):
        """Restore the newest manual save.  Returns the entry, or None if there are none."""
        latest = self.manager.latest(self.context.profile_id, self.context.game_id)
        if latest is None:
            print("[Session] No saves to load")
            return None
        return self.load_entry(latest.entry_id)

    def load_entry(self, entry_id):
        """
        Restore the core from a save entry.

        Raises:
            NotFoundError: unknown id
            CorruptStateError: the record or the core rejected it; the
                running state is left as it was
        """
        if not self.running:
            raise NotReadyError("session not started")
        entry = self.manager.get_entry(entry_id)
        data = self.manager.load(entry_id)
        if not self.core.restore_state(data):
            raise CorruptStateError(f"core rejected save {entry_id}")

        self.frame_count = entry.metadata.frame_count
        self.play_time = entry.metadata.play_time
        self._last_tick = None
        print(f"[Session] Loaded save {entry_id[:8]} (#{entry.timestamp})")
        return entry

    def list_saves(self, include_auto=True):
        return self.manager.list(self.context.profile_id, self.context.game_id, include_auto)
