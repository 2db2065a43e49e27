#!/usr/bin/env python3

"""
emulation_core.py - The capability every emulation backend exposes

The frame-state subsystems never look inside a core.  They only need to
advance it by one frame, serialise its complete state, and put a
serialised state back.  LibretroCore (libretro_core.py) implements this
on top of a ctypes-loaded libretro core; the test suite ships a small
deterministic core of its own.
"""

import hashlib
from abc import ABC, abstractmethod


class FrameOutput:
    """
    Result of advancing the core by one frame.

    video  numpy uint8 array (height, width, 3) or None
    audio  numpy int16 array (samples, 2) or None
    """

    __slots__ = ("video", "audio")

    def __init__(self, video=None, audio=None):
        self.video = video
        self.audio = audio

    def __repr__(self):
        shape = getattr(self.video, "shape", None)
        return f"FrameOutput(video={shape}, audio={getattr(self.audio, 'shape', None)})"


class EmulationCore(ABC):
    """Opaque emulation engine: frame advance plus state serialise/restore."""

    @property
    @abstractmethod
    def loaded(self):
        """True while content is loaded and the core can run frames."""

    @abstractmethod
    def advance(self, input_state):
        """Emulate one frame with *input_state* and return a FrameOutput."""

    @abstractmethod
    def state_size(self):
        """Upper bound, in bytes, of a serialised state for the loaded content."""

    @abstractmethod
    def capture_state_into(self, buffer):
        """
        Serialise the current state into a writable buffer.

        Args:
            buffer: memoryview/bytearray at least state_size() bytes long

        Returns:
            int: number of bytes written, 0 on failure
        """

    @abstractmethod
    def restore_state(self, data):
        """Replace the whole core state from a bytes-like object. Returns bool."""

    @abstractmethod
    def load_content(self, data):
        """Load content (ROM bytes). Returns bool."""

    @abstractmethod
    def reset(self):
        pass

    def unload(self):
        pass

    def capture_state(self):
        """Serialise the current state into a new bytes object (allocates)."""
        buf = bytearray(self.state_size())
        written = self.capture_state_into(memoryview(buf))
        if not written:
            return None
        return bytes(buf[:written])


def content_game_id(content):
    """Stable identifier for a piece of loaded content (SHA-1 of its bytes)."""
    return hashlib.sha1(bytes(content)).hexdigest()
