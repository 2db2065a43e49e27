#!/usr/bin/env python3

"""
snapshot_engine.py - Pooled, pre-sized state buffers for run-ahead

The pool is sized once per session from the core's reported maximum state
size.  capture() has the core serialise straight into a pooled bytearray
through a memoryview and restore() hands a memoryview slice back, so the
per-frame path does not create new state buffers.

Each slot records the payload length and a CRC32 at capture time;
restore() checks both before touching the core.
"""

import zlib

from config import SNAPSHOT_POOL_SLOTS
from errors import CorruptStateError, NotReadyError


class Handle:
    """Reference to one captured snapshot: pool slot + capture sequence number."""

    __slots__ = ("slot", "sequence")

    def __init__(self, slot, sequence):
        self.slot = slot
        self.sequence = sequence

    def __eq__(self, other):
        return (
            isinstance(other, Handle)
            and self.slot == other.slot
            and self.sequence == other.sequence
        )

    def __hash__(self):
        return hash((self.slot, self.sequence))

    def __repr__(self):
        return f"Handle(slot={self.slot}, sequence={self.sequence})"


class _Slot:
    __slots__ = ("buffer", "view", "length", "crc", "sequence")

    def __init__(self, size):
        self.buffer = bytearray(size)
        self.view = memoryview(self.buffer)
        self.length = 0
        self.crc = 0
        self.sequence = 0


class SnapshotEngine:
    """
    Ephemeral snapshot/restore over a fixed pool of buffers.

    Owned by exactly one play session; never shared between profiles.

    Usage:
        engine = SnapshotEngine(core)
        h = engine.capture()
        core.advance(inputs)
        engine.restore(h)
    """

    def __init__(self, core, slots=SNAPSHOT_POOL_SLOTS, state_size=None):
        """
        Args:
            core: EmulationCore with content loaded
            slots: number of pooled buffers (>= 1)
            state_size: override for the per-slot size (defaults to core.state_size())

        Raises:
            NotReadyError: if no content is loaded, so no size is known
        """
        if not core.loaded:
            raise NotReadyError("cannot size snapshot pool: no content loaded")
        self.core = core
        self.slot_size = int(state_size or core.state_size())
        if self.slot_size <= 0:
            raise NotReadyError("core reports no serialisable state")
        self._slots = [_Slot(self.slot_size) for _ in range(max(1, int(slots)))]
        self._next_slot = 0
        self._sequence = 0
        self.closed = False
        print(
            f"[Snapshot] Pool ready: {len(self._slots)} x {self.slot_size} bytes"
        )

    @property
    def sequence(self):
        """Sequence number of the most recent capture (0 before any capture)."""
        return self._sequence

    def capture(self):
        """
        Capture the core's current state into the next pooled slot.

        Returns:
            Handle

        Raises:
            NotReadyError: no content loaded in the core
            CorruptStateError: the core wrote nothing or overflowed the slot
        """
        if self.closed or not self.core.loaded:
            raise NotReadyError("no content loaded")

        index = self._next_slot
        slot = self._slots[index]
        written = self.core.capture_state_into(slot.view)
        if not written or written > self.slot_size:
            slot.length = 0
            slot.sequence = 0
            raise CorruptStateError(
                f"core serialise returned {written} bytes (slot holds {self.slot_size})"
            )

        self._sequence += 1
        slot.length = written
        slot.crc = zlib.crc32(slot.view[:written])
        slot.sequence = self._sequence
        self._next_slot = (index + 1) % len(self._slots)
        return Handle(index, self._sequence)

    def restore(self, handle):
        """
        Put the core back to the state referenced by *handle*.

        Raises:
            NotReadyError: no content loaded
            CorruptStateError: stale handle, failed integrity check, or the
                core rejected the buffer
        """
        if self.closed or not self.core.loaded:
            raise NotReadyError("no content loaded")
        if handle is None or not 0 <= handle.slot < len(self._slots):
            raise CorruptStateError(f"invalid snapshot handle {handle!r}")

        slot = self._slots[handle.slot]
        if slot.sequence != handle.sequence:
            raise CorruptStateError(
                f"snapshot slot {handle.slot} was reused "
                f"(holds #{slot.sequence}, wanted #{handle.sequence})"
            )
        if not 0 < slot.length <= self.slot_size:
            raise CorruptStateError(f"snapshot slot {handle.slot} has bad length")

        data = slot.view[:slot.length]
        if zlib.crc32(data) != slot.crc:
            raise CorruptStateError(f"snapshot #{handle.sequence} checksum mismatch")
        if not self.core.restore_state(data):
            raise CorruptStateError(f"core rejected snapshot #{handle.sequence}")

    def payload(self, handle):
        """Copy of the raw state held by *handle* (bit-compatible with persisted blobs)."""
        slot = self._slots[handle.slot]
        if slot.sequence != handle.sequence:
            raise CorruptStateError(f"snapshot slot {handle.slot} was reused")
        return bytes(slot.view[:slot.length])

    def stats(self):
        return {
            "slots": len(self._slots),
            "slot_size": self.slot_size,
            "sequence": self._sequence,
            "last_size": max((s.length for s in self._slots), default=0),
        }

    def close(self):
        """Release the pool at the end of the session."""
        self._slots = []
        self.closed = True
