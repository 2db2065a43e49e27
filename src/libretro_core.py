#!/usr/bin/env python3

"""
libretro_core.py - libretro core wrapper for NesCaster
Drives a NES libretro core (Mesen, Nestopia, FCEUmm) one frame at a time
and exposes its serialise/unserialise entry points as an EmulationCore
"""

import ctypes
import os
from ctypes import (
    CFUNCTYPE,
    POINTER,
    byref,
    c_bool,
    c_char,
    c_char_p,
    c_int16,
    c_size_t,
    c_uint16,
    c_uint32,
    c_void_p,
    cast,
    create_string_buffer,
)

import numpy as np
import pygame

from config import CORES_DIR, DATA_DIR, DEFAULT_CORE_PATH, SYSTEM_DIR, get_core_filename, get_platform_info
from emulation_core import EmulationCore, FrameOutput


def find_core_path(core_path=None, cores_dir=None):
    """
    Find the libretro core for this platform.

    Looks for cores named: {core}_libretro_{os}_{arch}.{ext}
    e.g.:
        - mesen_libretro_windows_x64.dll
        - nestopia_libretro_linux_arm64.so

    Args:
        core_path: Explicit path to use (returned as is when it exists)
        cores_dir: Directory to search (default: CORES_DIR)

    Returns:
        str: Absolute path to the core

    Raises:
        FileNotFoundError: If no core is found
    """
    if core_path and os.path.exists(core_path):
        return os.path.abspath(core_path)

    if cores_dir is None:
        cores_dir = CORES_DIR

    candidates = [DEFAULT_CORE_PATH] if cores_dir == CORES_DIR else []
    for name in ("mesen", "nestopia", "fceumm"):
        candidates.append(os.path.join(cores_dir, get_core_filename(name)))

    for candidate in candidates:
        if os.path.exists(candidate):
            return os.path.abspath(candidate)

    os_name, arch_name, _ = get_platform_info()
    raise FileNotFoundError(
        f"No NES libretro core found for {os_name} {arch_name}.\n"
        f"Looked in: {cores_dir}\n"
        f"Please download the correct core for your platform."
    )


# ---------------- LIBRETRO CONSTANTS ----------------
# Environment commands
RETRO_ENVIRONMENT_GET_CAN_DUPE = 3
RETRO_ENVIRONMENT_GET_SYSTEM_DIRECTORY = 9
RETRO_ENVIRONMENT_SET_PIXEL_FORMAT = 10
RETRO_ENVIRONMENT_SET_INPUT_DESCRIPTORS = 11
RETRO_ENVIRONMENT_GET_VARIABLE = 15
RETRO_ENVIRONMENT_GET_VARIABLE_UPDATE = 17
RETRO_ENVIRONMENT_GET_LOG_INTERFACE = 27
RETRO_ENVIRONMENT_GET_SAVE_DIRECTORY = 31
RETRO_ENVIRONMENT_SET_CONTROLLER_INFO = 35
RETRO_ENVIRONMENT_SET_MEMORY_MAPS = 36
RETRO_ENVIRONMENT_GET_LANGUAGE = 39
RETRO_ENVIRONMENT_GET_INPUT_BITMASKS = 52
RETRO_ENVIRONMENT_GET_CORE_OPTIONS_VERSION = 53
RETRO_ENVIRONMENT_SET_CORE_OPTIONS = 54
RETRO_ENVIRONMENT_SET_CORE_OPTIONS_INTL = 55
RETRO_ENVIRONMENT_GET_MESSAGE_INTERFACE_VERSION = 59
RETRO_ENVIRONMENT_SET_CORE_OPTIONS_V2 = 67
RETRO_ENVIRONMENT_SET_CORE_OPTIONS_V2_INTL = 68

# Pixel formats
RETRO_PIXEL_FORMAT_0RGB1555 = 0
RETRO_PIXEL_FORMAT_XRGB8888 = 1
RETRO_PIXEL_FORMAT_RGB565 = 2

# Joypad buttons (the NES pad only uses B, A, SELECT, START and the D-pad)
RETRO_DEVICE_ID_JOYPAD_B = 0
RETRO_DEVICE_ID_JOYPAD_SELECT = 2
RETRO_DEVICE_ID_JOYPAD_START = 3
RETRO_DEVICE_ID_JOYPAD_UP = 4
RETRO_DEVICE_ID_JOYPAD_DOWN = 5
RETRO_DEVICE_ID_JOYPAD_LEFT = 6
RETRO_DEVICE_ID_JOYPAD_RIGHT = 7
RETRO_DEVICE_ID_JOYPAD_A = 8

RETRO_DEVICE_JOYPAD = 1

# Default keyboard layout: retro button id -> pygame keys
KEYBOARD_MAP = {
    RETRO_DEVICE_ID_JOYPAD_A: (pygame.K_z,),
    RETRO_DEVICE_ID_JOYPAD_B: (pygame.K_x,),
    RETRO_DEVICE_ID_JOYPAD_SELECT: (pygame.K_BACKSPACE, pygame.K_RSHIFT),
    RETRO_DEVICE_ID_JOYPAD_START: (pygame.K_RETURN,),
    RETRO_DEVICE_ID_JOYPAD_UP: (pygame.K_UP,),
    RETRO_DEVICE_ID_JOYPAD_DOWN: (pygame.K_DOWN,),
    RETRO_DEVICE_ID_JOYPAD_LEFT: (pygame.K_LEFT,),
    RETRO_DEVICE_ID_JOYPAD_RIGHT: (pygame.K_RIGHT,),
}


def input_mask(*button_ids):
    """Build a joypad bitmask from retro button ids."""
    mask = 0
    for button_id in button_ids:
        mask |= 1 << button_id
    return mask


def keyboard_input_state(pressed, keymap=None):
    """Turn pygame.key.get_pressed() output into a joypad bitmask."""
    keymap = keymap or KEYBOARD_MAP
    mask = 0
    for button_id, keys in keymap.items():
        for key in keys:
            if pressed[key]:
                mask |= 1 << button_id
                break
    return mask


# ---------------- LIBRETRO STRUCTS ----------------
class retro_game_info(ctypes.Structure):
    _fields_ = [
        ("path", c_char_p),
        ("data", c_void_p),
        ("size", c_size_t),
        ("meta", c_char_p),
    ]


class retro_system_info(ctypes.Structure):
    _fields_ = [
        ("library_name", c_char_p),
        ("library_version", c_char_p),
        ("valid_extensions", c_char_p),
        ("need_fullpath", c_bool),
        ("block_extract", c_bool),
    ]


class retro_game_geometry(ctypes.Structure):
    _fields_ = [
        ("base_width", c_uint32),
        ("base_height", c_uint32),
        ("max_width", c_uint32),
        ("max_height", c_uint32),
        ("aspect_ratio", ctypes.c_float),
    ]


class retro_system_timing(ctypes.Structure):
    _fields_ = [
        ("fps", ctypes.c_double),
        ("sample_rate", ctypes.c_double),
    ]


class retro_system_av_info(ctypes.Structure):
    _fields_ = [
        ("geometry", retro_game_geometry),
        ("timing", retro_system_timing),
    ]


# Callback types
ENV_CB = CFUNCTYPE(c_bool, c_uint32, c_void_p)
VIDEO_CB = CFUNCTYPE(None, c_void_p, c_uint32, c_uint32, c_size_t)
AUDIO_SAMPLE_CB = CFUNCTYPE(None, c_int16, c_int16)
AUDIO_BATCH_CB = CFUNCTYPE(c_size_t, POINTER(c_int16), c_size_t)
POLL_CB = CFUNCTYPE(None)
STATE_CB = CFUNCTYPE(c_int16, c_uint32, c_uint32, c_uint32, c_uint32)


class LibretroCore(EmulationCore):
    """
    NES libretro core wrapper.

    Input is not polled from inside the core: every advance() carries the
    joypad bitmask for that frame, so run-ahead can replay the same input
    on the speculative and the authoritative timeline.

    Usage:
        core = LibretroCore()
        with open("roms/smb.nes", "rb") as f:
            core.load_content(f.read())

        # In game loop:
        frame = core.advance(keyboard_input_state(pygame.key.get_pressed()))
        surface = core.get_surface(frame.video, scale=3)
    """

    # NES native resolution
    WIDTH = 256
    HEIGHT = 240

    # (name, argtypes, restype) for every libretro entry point this wrapper calls
    _SIGNATURES = (
        ("retro_init", [], None),
        ("retro_deinit", [], None),
        ("retro_reset", [], None),
        ("retro_run", [], None),
        ("retro_get_system_info", [POINTER(retro_system_info)], None),
        ("retro_get_system_av_info", [POINTER(retro_system_av_info)], None),
        ("retro_load_game", [POINTER(retro_game_info)], c_bool),
        ("retro_unload_game", [], None),
        ("retro_serialize_size", [], c_size_t),
        ("retro_serialize", [c_void_p, c_size_t], c_bool),
        ("retro_unserialize", [c_void_p, c_size_t], c_bool),
    )

    # Environment commands acknowledged without doing anything
    _ACCEPTED_ENV = frozenset((
        RETRO_ENVIRONMENT_SET_INPUT_DESCRIPTORS,
        RETRO_ENVIRONMENT_SET_CONTROLLER_INFO,
        RETRO_ENVIRONMENT_SET_MEMORY_MAPS,
        RETRO_ENVIRONMENT_SET_CORE_OPTIONS_V2,
        RETRO_ENVIRONMENT_SET_CORE_OPTIONS_V2_INTL,
        RETRO_ENVIRONMENT_SET_CORE_OPTIONS,
        RETRO_ENVIRONMENT_SET_CORE_OPTIONS_INTL,
    ))

    def __init__(self, core_path=None, system_dir=None, save_dir=None, cores_dir=None):
        """
        Initialize the core.

        Args:
            core_path: Path to the libretro core file (auto-detected if None)
            system_dir: Directory for BIOS files (default: from config)
            save_dir: Directory the core may write battery saves to
            cores_dir: Directory containing libretro cores (default: from config)
        """
        self.core_path = find_core_path(core_path, cores_dir)
        self.system_dir = os.path.abspath(system_dir or SYSTEM_DIR)
        self.save_dir = os.path.abspath(save_dir or os.path.join(DATA_DIR, "sram"))

        os_name, arch_name, _ = get_platform_info()
        print(f"[LibretroCore] Platform: {os_name} {arch_name}")
        print(f"[LibretroCore] Core path: {self.core_path}")

        os.makedirs(self.save_dir, exist_ok=True)
        os.makedirs(self.system_dir, exist_ok=True)

        self._loaded = False
        self.need_fullpath = False
        self.fps = 60.0
        self.sample_rate = 44100
        self._content = None

        # Framebuffer
        self.pixel_format = RETRO_PIXEL_FORMAT_0RGB1555
        self.framebuffer = np.zeros((self.HEIGHT, self.WIDTH, 3), dtype=np.uint8)
        self._raw_framebuf_size = self.HEIGHT * 1024 * 4
        self._raw_framebuf = (ctypes.c_uint8 * self._raw_framebuf_size)()
        self._raw_framebuf_ptr = ctypes.cast(self._raw_framebuf, c_void_p)
        self._frame_meta = {"width": 0, "height": 0, "pitch": 0}
        self._frame_ready = False

        # Audio produced by the frame currently being run
        self._audio_chunks = []

        # Joypad bitmask for the frame currently being run
        self._input_mask = 0

        # Keep callbacks alive
        self._keep_alive = []

        # Directory buffers (must stay alive)
        self._save_dir_buf = create_string_buffer(self.save_dir.encode("utf-8"))
        self._system_dir_buf = create_string_buffer(self.system_dir.encode("utf-8"))

        self._load_core()

    def _load_core(self):
        """Open the shared library, bind callbacks and run retro_init."""
        if not os.path.exists(self.core_path):
            raise FileNotFoundError(f"Core not found: {self.core_path}")

        self.lib = ctypes.CDLL(self.core_path)
        for name, argtypes, restype in self._SIGNATURES:
            func = getattr(self.lib, name)
            func.argtypes = argtypes
            func.restype = restype

        for setter, callback in self._create_callbacks():
            getattr(self.lib, setter)(callback)
            self._keep_alive.append(callback)

        self.lib.retro_init()

        info = retro_system_info()
        self.lib.retro_get_system_info(byref(info))
        self.core_name = info.library_name.decode()
        self.core_version = info.library_version.decode()
        self.need_fullpath = bool(info.need_fullpath)
        print(f"[LibretroCore] Loaded {self.core_name} v{self.core_version}")

    def _create_callbacks(self):
        """Return (registration function, ctypes callback) pairs."""

        def video_refresh(data_ptr, width, height, pitch):
            # NULL: the core is duping the previous frame
            if not data_ptr:
                return
            size = min(int(height * pitch), self._raw_framebuf_size)
            ctypes.memmove(self._raw_framebuf_ptr, data_ptr, size)
            self._frame_meta.update(width=int(width), height=int(height), pitch=int(pitch))
            self._frame_ready = True

        def audio_sample(left, right):
            self._audio_chunks.append(np.array([[left, right]], dtype=np.int16))

        def audio_batch(ptr, frames):
            frames = int(frames)
            if frames <= 0:
                return 0
            try:
                samples = np.ctypeslib.as_array(ptr, shape=(frames * 2,))
            except (ValueError, TypeError) as e:
                print(f"[LibretroCore] Audio batch error: {e}")
                return 0
            self._audio_chunks.append(samples.reshape(-1, 2).copy())
            return frames

        def input_state(port, device, index, button_id):
            if port or device != RETRO_DEVICE_JOYPAD:
                return 0
            return (self._input_mask >> button_id) & 1

        return (
            ("retro_set_environment", ENV_CB(self._handle_environment)),
            ("retro_set_video_refresh", VIDEO_CB(video_refresh)),
            ("retro_set_audio_sample", AUDIO_SAMPLE_CB(audio_sample)),
            ("retro_set_audio_sample_batch", AUDIO_BATCH_CB(audio_batch)),
            ("retro_set_input_poll", POLL_CB(lambda: None)),
            ("retro_set_input_state", STATE_CB(input_state)),
        )

    def _handle_environment(self, cmd, data):
        if cmd in self._ACCEPTED_ENV:
            return True

        if cmd == RETRO_ENVIRONMENT_SET_PIXEL_FORMAT:
            if data:
                self.pixel_format = cast(data, POINTER(c_uint32))[0]
            return True

        answers = {
            RETRO_ENVIRONMENT_GET_CAN_DUPE: (c_bool, True),
            RETRO_ENVIRONMENT_GET_VARIABLE_UPDATE: (c_bool, False),
            RETRO_ENVIRONMENT_GET_SYSTEM_DIRECTORY: (c_char_p, ctypes.addressof(self._system_dir_buf)),
            RETRO_ENVIRONMENT_GET_SAVE_DIRECTORY: (c_char_p, ctypes.addressof(self._save_dir_buf)),
            RETRO_ENVIRONMENT_GET_LANGUAGE: (c_uint32, 0),
            RETRO_ENVIRONMENT_GET_CORE_OPTIONS_VERSION: (c_uint32, 0),
            RETRO_ENVIRONMENT_GET_MESSAGE_INTERFACE_VERSION: (c_uint32, 0),
        }
        if cmd not in answers:
            # GET_VARIABLE, GET_LOG_INTERFACE, GET_INPUT_BITMASKS and the rest
            return False
        ctype, value = answers[cmd]
        if data:
            cast(data, POINTER(ctype))[0] = value
        return True

    # ------------------------------------------------------------------
    # EmulationCore
    # ------------------------------------------------------------------

    @property
    def loaded(self):
        return self._loaded

    def load_content(self, data, path=None):
        """
        Load content from memory.

        Args:
            data: ROM bytes
            path: Original file path, required by cores that need_fullpath
        """
        if self._loaded:
            self.unload()

        if self.need_fullpath and not path:
            print(f"[LibretroCore] {self.core_name} needs a file path to load content")
            return False

        self._content = create_string_buffer(bytes(data), len(data))
        game = retro_game_info(
            path=os.path.abspath(path).encode("utf-8") if path else None,
            data=cast(self._content, c_void_p),
            size=len(data),
            meta=None,
        )
        if not self.lib.retro_load_game(byref(game)):
            print("[LibretroCore] Core rejected the content")
            self._content = None
            return False

        av_info = retro_system_av_info()
        self.lib.retro_get_system_av_info(byref(av_info))
        self.fps = av_info.timing.fps
        self.sample_rate = int(av_info.timing.sample_rate)
        self._loaded = True

        print(f"[LibretroCore] Content loaded ({len(data)} bytes)")
        print(f"[LibretroCore] FPS: {self.fps:.2f}, Sample rate: {self.sample_rate}")
        print(f"[LibretroCore] State size: {self.state_size()} bytes")
        return True

    def advance(self, input_state):
        """Run exactly one frame with the given joypad bitmask."""
        self._input_mask = int(input_state or 0)
        self._audio_chunks = []
        self.lib.retro_run()
        self._process_video()

        if self._audio_chunks:
            audio = np.concatenate(self._audio_chunks)
        else:
            audio = np.zeros((0, 2), dtype=np.int16)
        return FrameOutput(video=self.framebuffer.copy(), audio=audio)

    def state_size(self):
        if not self._loaded:
            return 0
        return int(self.lib.retro_serialize_size())

    def capture_state_into(self, buffer):
        size = self.state_size()
        if size == 0 or len(buffer) < size:
            return 0
        target = (c_char * len(buffer)).from_buffer(buffer)
        try:
            ok = self.lib.retro_serialize(ctypes.addressof(target), size)
        finally:
            del target
        return size if ok else 0

    def restore_state(self, data):
        if not self._loaded:
            return False
        size = len(data)
        try:
            source = (c_char * size).from_buffer(data)
        except TypeError:
            # Read-only (bytes): take a copy
            source = (c_char * size).from_buffer_copy(data)
        try:
            return bool(self.lib.retro_unserialize(ctypes.addressof(source), size))
        finally:
            del source

    def reset(self):
        """Reset the emulation."""
        if self._loaded:
            self.lib.retro_reset()
            print("[LibretroCore] Reset")

    def unload(self):
        """Unload the current content."""
        if self._loaded:
            try:
                self.lib.retro_unload_game()
            except Exception as e:
                print(f"[LibretroCore] Unload failed: {e}")
            self._loaded = False
            self._content = None
            print("[LibretroCore] Unloaded")

    def shutdown(self):
        """Shutdown the core completely."""
        self.unload()
        try:
            self.lib.retro_deinit()
        except Exception as e:
            print(f"[LibretroCore] Deinit failed: {e}")
        print("[LibretroCore] Shutdown complete")

    # ------------------------------------------------------------------
    # Video
    # ------------------------------------------------------------------

    def _process_video(self):
        """Convert the core's last frame into the RGB framebuffer."""
        if not self._frame_ready:
            return

        self._frame_ready = False
        w = min(self._frame_meta["width"], self.WIDTH)
        h = min(self._frame_meta["height"], self.HEIGHT)
        pitch = self._frame_meta["pitch"]

        if w == 0 or h == 0 or pitch == 0:
            return

        try:
            if self.pixel_format == RETRO_PIXEL_FORMAT_XRGB8888:
                row_pixels = pitch // 4
                src_ptr = cast(self._raw_framebuf_ptr, POINTER(c_uint32))
                fb32 = np.ctypeslib.as_array(src_ptr, shape=(h * row_pixels,))
                fb32 = fb32.reshape(h, row_pixels)[:, :w]

                r = ((fb32 >> 16) & 0xFF).astype(np.uint8)
                g = ((fb32 >> 8) & 0xFF).astype(np.uint8)
                b = (fb32 & 0xFF).astype(np.uint8)
            else:
                row_pixels = pitch // 2
                src_ptr = cast(self._raw_framebuf_ptr, POINTER(c_uint16))
                fb16 = np.ctypeslib.as_array(src_ptr, shape=(h * row_pixels,))
                fb16 = fb16.reshape(h, row_pixels)[:, :w]

                if self.pixel_format == RETRO_PIXEL_FORMAT_RGB565:
                    r = ((fb16 >> 11) & 0x1F).astype(np.uint8)
                    g = ((fb16 >> 5) & 0x3F).astype(np.uint8)
                    g = (g << 2) | (g >> 4)
                else:
                    r = ((fb16 >> 10) & 0x1F).astype(np.uint8)
                    g = ((fb16 >> 5) & 0x1F).astype(np.uint8)
                    g = (g << 3) | (g >> 2)
                b = (fb16 & 0x1F).astype(np.uint8)

                r = (r << 3) | (r >> 2)
                b = (b << 3) | (b >> 2)

            self.framebuffer[:h, :w] = np.dstack((r, g, b))
        except Exception as e:
            print(f"[LibretroCore] Frame processing error: {e}")

    def get_surface(self, video=None, scale=1):
        """
        Get a frame as a pygame Surface.

        Args:
            video: (h, w, 3) array to show (default: the last frame)
            scale: Scale factor (1 = native 256x240)
        """
        frame = self.framebuffer if video is None else video
        surf = pygame.surfarray.make_surface(frame.swapaxes(0, 1))

        if scale != 1:
            new_size = (frame.shape[1] * scale, frame.shape[0] * scale)
            surf = pygame.transform.scale(surf, new_size)

        return surf
