import os

import pygame
import pytest

from libretro_core import (
    RETRO_DEVICE_ID_JOYPAD_A,
    RETRO_DEVICE_ID_JOYPAD_RIGHT,
    RETRO_DEVICE_ID_JOYPAD_START,
    LibretroCore,
    find_core_path,
    input_mask,
    keyboard_input_state,
)


class Pressed:
    """Stand-in for pygame.key.get_pressed()."""

    def __init__(self, *keys):
        self.keys = set(keys)

    def __getitem__(self, key):
        return key in self.keys


def test_input_mask():
    assert input_mask() == 0
    assert input_mask(RETRO_DEVICE_ID_JOYPAD_A, RETRO_DEVICE_ID_JOYPAD_START) == (1 << 8) | (1 << 3)


def test_keyboard_state_maps_to_joypad_bits():
    pressed = Pressed(pygame.K_z, pygame.K_RIGHT, pygame.K_q)
    assert keyboard_input_state(pressed) == input_mask(RETRO_DEVICE_ID_JOYPAD_A, RETRO_DEVICE_ID_JOYPAD_RIGHT)
    assert keyboard_input_state(Pressed()) == 0


def test_custom_keymap():
    keymap = {RETRO_DEVICE_ID_JOYPAD_START: (pygame.K_SPACE,)}
    assert keyboard_input_state(Pressed(pygame.K_SPACE, pygame.K_RETURN), keymap) == 1 << 3


def test_find_core_path(tmp_path):
    core = tmp_path / "my_core.so"
    core.write_bytes(b"")
    assert find_core_path(str(core)) == os.path.abspath(str(core))

    with pytest.raises(FileNotFoundError):
        find_core_path(cores_dir=str(tmp_path / "empty"))


def test_missing_core_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        LibretroCore(cores_dir=str(tmp_path), system_dir=str(tmp_path / "system"),
                     save_dir=str(tmp_path / "sram"))
