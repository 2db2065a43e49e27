import struct

import numpy as np
import pytest

from blob_store import BlobStore
from emulation_core import EmulationCore, FrameOutput
from errors import PersistenceIOError
from save_stack import SaveMetadata, SaveStackManager
from write_queue import WriteQueue

RAM_SIZE = 64
_STATE = struct.Struct("<II")


class FakeClock:
    def __init__(self, start=1000.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class FakeCore(EmulationCore):
    """
    Tiny deterministic machine: a frame counter, an accumulator that mixes
    in every input, and a little RAM.  Video and audio are pure functions
    of that state, so two runs from the same state with the same inputs
    produce identical frames.
    """

    def __init__(self, clock=None, advance_cost=0.0):
        self._loaded = False
        self.frame = 0
        self.acc = 0
        self.ram = bytearray(RAM_SIZE)
        self.advance_calls = 0
        self.restore_calls = 0
        self.reject_restore = False
        self.clock = clock
        self.advance_cost = advance_cost

    @property
    def loaded(self):
        return self._loaded

    def load_content(self, data, path=None):
        if not data:
            return False
        self._loaded = True
        self.frame = 0
        self.acc = sum(bytes(data)) & 0xFFFFFFFF
        self.ram = bytearray(RAM_SIZE)
        return True

    def unload(self):
        self._loaded = False

    def reset(self):
        self.frame = 0
        self.acc = 0
        self.ram = bytearray(RAM_SIZE)

    def advance(self, input_state):
        if not self._loaded:
            raise AssertionError("advance() called with no content loaded")
        self.advance_calls += 1
        if self.clock is not None:
            self.clock.advance(self.advance_cost)
        self.frame += 1
        self.acc = (self.acc * 31 + int(input_state) + self.frame) & 0xFFFFFFFF
        self.ram[self.frame % RAM_SIZE] = self.acc & 0xFF

        shade = self.acc & 0xFF
        video = np.full((16, 16, 3), shade, dtype=np.uint8)
        video[0, 0] = (self.frame & 0xFF, 0, 0)
        audio = np.array([[self.frame & 0x7FFF, shade]], dtype=np.int16)
        return FrameOutput(video=video, audio=audio)

    def state_size(self):
        return _STATE.size + RAM_SIZE if self._loaded else 0

    def _serialise(self):
        return _STATE.pack(self.frame, self.acc) + bytes(self.ram)

    def capture_state_into(self, buffer):
        if not self._loaded:
            return 0
        data = self._serialise()
        if len(buffer) < len(data):
            return 0
        buffer[:len(data)] = data
        return len(data)

    def restore_state(self, data):
        self.restore_calls += 1
        if self.reject_restore or len(data) != _STATE.size + RAM_SIZE:
            return False
        self.frame, self.acc = _STATE.unpack_from(bytes(data[:_STATE.size]), 0)
        self.ram = bytearray(data[_STATE.size:])
        return True


class FailingStore(BlobStore):
    """BlobStore whose record writes fail while fail_writes > 0."""

    def __init__(self, root):
        super().__init__(root)
        self.fail_writes = 0
        self.write_attempts = 0

    def write(self, key, data):
        if key[2].endswith(".state"):
            self.write_attempts += 1
            if self.fail_writes > 0:
                self.fail_writes -= 1
                raise PersistenceIOError(f"disk full writing {key[2]}")
        super().write(key, data)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def core():
    core = FakeCore()
    core.load_content(b"NES\x1a test rom")
    return core


@pytest.fixture
def store(tmp_path):
    return BlobStore(tmp_path / "profiles")


@pytest.fixture
def failing_store(tmp_path):
    return FailingStore(tmp_path / "profiles")


@pytest.fixture
def manager(store):
    manager = SaveStackManager(store, history_size=5, writer=WriteQueue(threaded=False))
    yield manager
    manager.close()


@pytest.fixture
def make_metadata():
    def _make(name="Test Game", **kwargs):
        return SaveMetadata(game_name=name, **kwargs)
    return _make
