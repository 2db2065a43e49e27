#!/usr/bin/env python3
"""
trigger_sources.py

    Independent emitters of auto-save trigger events.  Every source has the
    same single capability, poll(now, frame), which returns a TriggerEvent or
    None.  The coordinator polls them all once per tick and does not care how
    any of them decides to fire.

    More sources (memory watches, audio cues) can be added by subclassing
    TriggerSource and passing an instance to the coordinator.
"""

from abc import ABC, abstractmethod

import numpy as np


class TriggerReason:
    LEVEL_COMPLETE = "level_complete"
    INTERVAL = "interval"
    PAUSE = "pause"
    MANUAL = "manual"

    ALL = (LEVEL_COMPLETE, INTERVAL, PAUSE, MANUAL)


class TriggerEvent:
    def __init__(self, reason, time, level_hint=None):
        if reason not in TriggerReason.ALL:
            raise ValueError(f"unknown trigger reason: {reason!r}")
        self.reason = reason
        self.time = time
        self.level_hint = level_hint

    def __repr__(self):
        return f"TriggerEvent({self.reason}, t={self.time:.2f})"


# --- Source Interface ---

class TriggerSource(ABC):
    reason = None

    @abstractmethod
    def poll(self, now, frame):
        """Return a TriggerEvent if this source fires this tick, else None."""

    def reset(self, now=None):
        pass


# --- Sources ---

class IntervalTimerSource(TriggerSource):
    """Fires every interval_seconds of session time.  0 disables it entirely."""

    reason = TriggerReason.INTERVAL

    def __init__(self, interval_seconds):
        self.interval = float(interval_seconds)
        self._next = None

    @property
    def enabled(self):
        return self.interval > 0

    def reset(self, now=None):
        self._next = None if now is None else now + self.interval

    def poll(self, now, frame):
        if not self.enabled:
            return None
        if self._next is None:
            self._next = now + self.interval
            return None
        if now < self._next:
            return None
        self._next = now + self.interval
        return TriggerEvent(self.reason, now, "Auto-Save")


class PauseTriggerSource(TriggerSource):
    """Latches a pause notification until the next poll."""

    reason = TriggerReason.PAUSE

    def __init__(self):
        self._latched = False

    def notify_pause(self):
        self._latched = True

    def reset(self, now=None):
        self._latched = False

    def poll(self, now, frame):
        if not self._latched:
            return None
        self._latched = False
        return TriggerEvent(self.reason, now, "Paused")


class LevelCompleteSource(TriggerSource):
    """
    Wraps a detector callable(video) -> bool.  Fires on the rising edge only,
    so a detector that stays true for several frames yields one event.
    """

    reason = TriggerReason.LEVEL_COMPLETE

    def __init__(self, detector, level_hint="Level Complete"):
        self.detector = detector
        self.level_hint = level_hint
        self._was_active = False

    def reset(self, now=None):
        self._was_active = False
        if hasattr(self.detector, "reset"):
            self.detector.reset()

    def poll(self, now, frame):
        video = getattr(frame, "video", frame)
        if video is None:
            return None
        active = bool(self.detector(video))
        fired = active and not self._was_active
        self._was_active = active
        if fired:
            return TriggerEvent(self.reason, now, self.level_hint)
        return None


# --- Detectors ---

class ScreenFadeDetector:
    """
    Level-complete heuristic: a fade to black after a long stretch of
    gameplay.  Most NES games blank the screen between stages, so a run of
    dark frames preceded by at least min_bright_frames lit frames counts.

    Luminance is the mean of a subsampled frame (every 4th pixel each way).
    """

    def __init__(self, dark_threshold=16.0, bright_threshold=48.0,
                 min_bright_frames=300, dark_frames=8):
        self.dark_threshold = dark_threshold
        self.bright_threshold = bright_threshold
        self.min_bright_frames = min_bright_frames
        self.dark_frames = dark_frames
        self.reset()

    def reset(self):
        self._bright_run = 0
        self._dark_run = 0
        self._armed = False

    @staticmethod
    def luminance(video):
        frame = np.asarray(video)
        if frame.ndim == 3:
            frame = frame[::4, ::4, :3]
            # ITU-R 601 luma weights
            return float(np.dot(frame.reshape(-1, 3).mean(axis=0), (0.299, 0.587, 0.114)))
        return float(frame[::4, ::4].mean())

    def __call__(self, video):
        level = self.luminance(video)

        if level >= self.bright_threshold:
            self._bright_run += 1
            self._dark_run = 0
            if self._bright_run >= self.min_bright_frames:
                self._armed = True
            return False

        if level <= self.dark_threshold:
            self._dark_run += 1
            if self._armed and self._dark_run >= self.dark_frames:
                self._armed = False
                self._bright_run = 0
                return True
            return False

        # Mid-tone frame: part of a fade, keep counters
        return False
