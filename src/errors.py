#!/usr/bin/env python3

"""
errors.py - Exception types shared by the frame-state subsystems

  NotReadyError        no content loaded when a capture/save was attempted
  CorruptStateError    a state buffer or stored record failed its integrity check
  PersistenceIOError   the blob store could not read or write a record
  TimingOverrunError   a run-ahead tick did not fit inside the frame budget
  NotFoundError        load/delete referenced an unknown entry id
  ConfigError          a settings value is outside its allowed range
"""


class FrameStateError(Exception):
    """Base class for every error raised by the frame-state subsystems."""


class NotReadyError(FrameStateError):
    pass


class CorruptStateError(FrameStateError):
    pass


class PersistenceIOError(FrameStateError):
    pass


class TimingOverrunError(FrameStateError):
    """Recorded (not raised) by the run-ahead scheduler when a tick runs long."""

    def __init__(self, elapsed, budget):
        self.elapsed = elapsed
        self.budget = budget
        super().__init__(
            f"run-ahead tick took {elapsed * 1000.0:.2f}ms "
            f"(budget {budget * 1000.0:.2f}ms)"
        )


class NotFoundError(FrameStateError):
    def __init__(self, entry_id):
        self.entry_id = entry_id
        super().__init__(f"save state not found: {entry_id}")


class ConfigError(FrameStateError, ValueError):
    pass
