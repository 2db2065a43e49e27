#!/usr/bin/env python3

"""
run_ahead.py - Speculative frame execution to hide input latency

Runs inline with the emulation/render loop, once per displayed frame.
With k run-ahead frames and input I, a tick is:

  1. h = capture()          state at authoritative frame N
  2. advance(I) x k         speculative frames
  3. advance(I)             the frame handed to the display this tick
  4. restore(h)             back to frame N
  5. advance(I)             authoritative frame N; its audio is played

Step 5 keeps authoritative time moving exactly one frame per tick, so
after every tick the core holds the same state an uninterrupted
advance(I) would have produced.  The display is k frames ahead of it.

If a tick does not fit inside the frame budget the scheduler records a
TimingOverrunError, disables run-ahead and falls back to one plain
advance per tick.  With recovery_ticks > 0 it re-enables itself after
that many consecutive cheap plain ticks.
"""

import time
from collections import deque
from enum import IntEnum

from config import (
    FRAME_TIME_NTSC,
    FPS,
    RUN_AHEAD_FRAMES_DEFAULT,
    RUN_AHEAD_FRAMES_MAX,
    RUN_AHEAD_RECOVERY_TICKS_DEFAULT,
    TIMING_SAMPLES,
    frame_budget,
)
from emulation_core import FrameOutput
from errors import CorruptStateError, NotReadyError, TimingOverrunError


class RunAheadPreset(IntEnum):
    """Named run-ahead depths offered in settings."""

    DISABLED = 0
    MINIMAL = 1
    STANDARD = 2
    AGGRESSIVE = 3
    MAXIMUM = 4

    @property
    def display_name(self):
        if self == RunAheadPreset.DISABLED:
            return "Disabled"
        label = "frame" if self.value == 1 else "frames"
        return f"{self.name.title()} ({self.value} {label})"

    @property
    def latency_reduction(self):
        if self.value == 0:
            return "No reduction"
        return f"-{self.value * FRAME_TIME_NTSC * 1000.0:.0f}ms"

    @property
    def cpu_cost(self):
        if self.value == 0:
            return "None"
        return f"~{self.value + 2}x CPU"


class RunAheadStats:
    """Snapshot of scheduler state for the performance overlay."""

    def __init__(self, enabled, frames, latency_reduction_ms, overhead_percent,
                 snapshot_size_bytes, overruns):
        self.enabled = enabled
        self.frames = frames
        self.latency_reduction_ms = latency_reduction_ms
        self.overhead_percent = overhead_percent
        self.snapshot_size_bytes = snapshot_size_bytes
        self.overruns = overruns

    @property
    def description(self):
        if not self.enabled:
            return "Run-ahead: Disabled"
        return (
            f"Run-ahead: {self.frames} frames\n"
            f"Latency reduction: {self.latency_reduction_ms:.1f}ms\n"
            f"CPU overhead: {self.overhead_percent:.1f}%\n"
            f"Snapshot size: {self.snapshot_size_bytes // 1024}KB"
        )


class RunAheadScheduler:
    """
    Per-tick orchestrator for run-ahead.

    Not thread safe: the core is not reentrant, so tick() must only ever be
    called from the session's emulation loop.
    """

    def __init__(
        self,
        core,
        snapshots=None,
        frames=RUN_AHEAD_FRAMES_DEFAULT,
        refresh_hz=FPS,
        recovery_ticks=RUN_AHEAD_RECOVERY_TICKS_DEFAULT,
        clock=time.perf_counter,
    ):
        """
        Args:
            core: EmulationCore
            snapshots: SnapshotEngine (required when frames > 0)
            frames: run-ahead depth, 0..RUN_AHEAD_FRAMES_MAX
            refresh_hz: display refresh, sets the per-tick budget
            recovery_ticks: cheap plain ticks needed to re-enable after an
                overrun; 0 keeps run-ahead off for the rest of the session
            clock: monotonic seconds source (tests inject a fake)
        """
        self.core = core
        self.snapshots = snapshots
        self.budget = frame_budget(refresh_hz)
        self.recovery_ticks = int(recovery_ticks)
        self._clock = clock

        self.frames = 0
        self.suspended = False
        self.last_overrun = None
        self.overruns = 0
        self.frame_index = 0
        self._cheap_ticks = 0
        self._timings = deque(maxlen=TIMING_SAMPLES)

        self.set_frames(frames)

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    @property
    def enabled(self):
        return self.frames > 0 and not self.suspended and self.snapshots is not None

    def set_frames(self, frames):
        """Set run-ahead depth (clamped to 0..RUN_AHEAD_FRAMES_MAX)."""
        self.frames = min(max(int(frames), 0), RUN_AHEAD_FRAMES_MAX)
        self.suspended = False
        self._cheap_ticks = 0
        self._timings.clear()
        print(
            f"[RunAhead] Run-ahead set to {self.frames} frames "
            f"({self.latency_reduction_ms:.1f}ms reduction)"
        )

    @property
    def latency_reduction_ms(self):
        return self.frames * FRAME_TIME_NTSC * 1000.0

    # ------------------------------------------------------------------
    # Per-tick entry point
    # ------------------------------------------------------------------

    def tick(self, input_state):
        """
        Run one displayed frame.

        Returns:
            FrameOutput: video to display, audio of the authoritative frame

        Raises:
            NotReadyError: no content loaded; no frame was advanced
        """
        if not self.core.loaded:
            raise NotReadyError("no content loaded")
        if self.enabled:
            return self._speculative_tick(input_state)
        return self._direct_tick(input_state)

    def _speculative_tick(self, input_state):
        start = self._clock()

        try:
            handle = self.snapshots.capture()
        except CorruptStateError as e:
            print(f"[RunAhead] Capture failed, run-ahead disabled: {e}")
            self._suspend()
            return self._direct_tick(input_state)

        for _ in range(self.frames):
            self.core.advance(input_state)
        shown = self.core.advance(input_state)

        try:
            self.snapshots.restore(handle)
        except CorruptStateError as e:
            # Core is left on the speculative timeline; keep running from there.
            print(f"[RunAhead] Restore failed, run-ahead disabled: {e}")
            self._suspend()
            self.frame_index += self.frames + 1
            return shown

        authoritative = self.core.advance(input_state)
        self.frame_index += 1

        elapsed = self._clock() - start
        self._timings.append(elapsed)
        if elapsed > self.budget:
            self.last_overrun = TimingOverrunError(elapsed, self.budget)
            self.overruns += 1
            print(f"[RunAhead] Timing overrun, run-ahead disabled: {self.last_overrun}")
            self._suspend()

        return FrameOutput(video=shown.video, audio=authoritative.audio)

    def _direct_tick(self, input_state):
        start = self._clock()
        output = self.core.advance(input_state)
        self.frame_index += 1
        elapsed = self._clock() - start
        self._timings.append(elapsed)

        if self.suspended and self.recovery_ticks > 0:
            # A run-ahead tick costs roughly frames + 2 plain advances.
            if elapsed * (self.frames + 2) < self.budget:
                self._cheap_ticks += 1
            else:
                self._cheap_ticks = 0
            if self._cheap_ticks >= self.recovery_ticks:
                self.suspended = False
                self._cheap_ticks = 0
                self._timings.clear()
                print(f"[RunAhead] Load recovered, run-ahead re-enabled ({self.frames} frames)")

        return output

    def _suspend(self):
        self.suspended = True
        self._cheap_ticks = 0

    # ------------------------------------------------------------------
    # Stats
    # ------------------------------------------------------------------

    @property
    def overhead_percent(self):
        if not self._timings:
            return 0.0
        average = sum(self._timings) / len(self._timings)
        return average / self.budget * 100.0

    def stats(self):
        snapshot_size = 0
        if self.snapshots is not None and not self.snapshots.closed:
            snapshot_size = self.snapshots.stats()["last_size"]
        return RunAheadStats(
            enabled=self.enabled,
            frames=self.frames,
            latency_reduction_ms=self.latency_reduction_ms if self.enabled else 0.0,
            overhead_percent=self.overhead_percent,
            snapshot_size_bytes=snapshot_size,
            overruns=self.overruns,
        )
