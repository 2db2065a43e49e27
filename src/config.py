#!/usr/bin/env python3

"""
NesCaster Configuration
All paths, constants, and default settings for the frame-state core

NOTE: All paths are absolute and should be constructed using os.path.join for cross-platform compatibility.
"""

import os
import platform
import sys

# ===== Display Settings =====
FPS = 60
REFRESH_RATE_OPTIONS = (60, 120)


# ===== Directory Paths =====

# Core directories (internal, read-only)
BASE_DIR = getattr(sys, "_MEIPASS", os.path.dirname(os.path.abspath(__file__)))
CORES_DIR = os.path.join(BASE_DIR, "cores")

# External (user-accessible) directories and files
if os.environ.get("CASTER_BASE_DIR"):
    # Launcher script tells us where everything is
    EXT_DIR = os.environ["CASTER_BASE_DIR"]
    CORES_DIR = os.path.join(EXT_DIR, "cores")
elif getattr(sys, "frozen", False) and hasattr(sys, "_MEIPASS"):
    appimage_path = os.environ.get("APPIMAGE")
    if appimage_path:
        EXT_DIR = os.path.dirname(appimage_path)
    else:
        EXT_DIR = os.path.dirname(sys.executable)
else:
    EXT_DIR = os.path.abspath(os.path.join(BASE_DIR, "../dist"))

DATA_DIR = os.path.join(EXT_DIR, "data")
ROMS_DIR = os.path.join(EXT_DIR, "roms")
SYSTEM_DIR = os.path.join(EXT_DIR, "system")

# Per-profile save-state store: PROFILES_DIR/<profile>/<game>/<entry files>
PROFILES_DIR = os.path.join(EXT_DIR, "profiles")
SETTINGS_FILE = os.path.join(EXT_DIR, "caster_settings.json")
LOG_FILE_NAME = "caster.log"


# ===== Emulator Paths =====
# Platform-specific core detection


def get_platform_info():
    """Get platform and architecture info for core selection."""
    system = platform.system().lower()
    machine = platform.machine().lower()
    if system == "windows":
        os_name = "windows"
        ext = ".dll"
    elif system == "darwin":
        os_name = "macos"
        ext = ".dylib"
    else:  # Linux and others
        os_name = "linux"
        ext = ".so"

    if machine in ("amd64", "x86_64"):
        arch_name = "x64"
    elif machine in ("i386", "i686", "x86"):
        arch_name = "x86"
    elif machine in ("aarch64", "arm64"):
        arch_name = "arm64"
    elif machine in ("armv7l", "armv6l", "arm"):
        arch_name = "arm32"
    else:
        import struct

        arch_name = "x64" if struct.calcsize("P") == 8 else "x86"

    return os_name, arch_name, ext


def get_core_filename(core_name="mesen"):
    """Get the platform-specific libretro core filename."""
    os_name, arch_name, ext = get_platform_info()
    return f"{core_name}_libretro_{os_name}_{arch_name}{ext}"


DEFAULT_CORE_PATH = os.path.join(CORES_DIR, get_core_filename())


# ===== Save State Defaults =====
SAVE_HISTORY_OPTIONS = (5, 10, 15)
SAVE_HISTORY_DEFAULT = 10

# Auto-saves live in their own stack and never count toward the manual bound
AUTO_SAVE_HISTORY_DEFAULT = 5
AUTO_SAVE_HISTORY_MAX = 15

AUTO_SAVE_ENABLED_DEFAULT = True
AUTO_SAVE_ON_LEVEL_COMPLETE_DEFAULT = True
AUTO_SAVE_ON_PAUSE_DEFAULT = True
AUTO_SAVE_INTERVAL_MINUTES_DEFAULT = 0   # 0 = timer disabled
AUTO_SAVE_INTERVAL_OPTIONS = (0, 1, 2, 5, 10, 15, 30)
AUTO_SAVE_DEBOUNCE_SECONDS = 10.0

# Thumbnails stored next to each entry
THUMBNAIL_MAX_SIZE = (128, 120)

# Persisted records are zlib compressed at this level
STATE_COMPRESSION_LEVEL = 6


# ===== Run-Ahead Defaults =====
RUN_AHEAD_FRAMES_DEFAULT = 1
RUN_AHEAD_FRAMES_MAX = 4
RUN_AHEAD_RECOVERY_TICKS_DEFAULT = 0   # 0 = stay disabled after an overrun
SNAPSHOT_POOL_SLOTS = 2
TIMING_SAMPLES = 30

# NES NTSC frame period
FRAME_TIME_NTSC = 1.0 / 60.0988


def frame_budget(refresh_hz):
    """Seconds available per displayed frame at *refresh_hz*."""
    return 1.0 / float(refresh_hz)


def ensure_directories():
    """Create the user-writable directories if they don't exist."""
    for dir_path in [ROMS_DIR, SYSTEM_DIR, PROFILES_DIR, DATA_DIR]:
        os.makedirs(dir_path, exist_ok=True)


# ===== Debug Info =====
def print_paths():
    """Print all configured paths for debugging."""
    print("=" * 50)
    print("NesCaster Path Configuration")
    print("=" * 50)
    print(f"BASE_DIR:      {BASE_DIR}")
    print(f"EXT_DIR:       {EXT_DIR}")
    print(f"DATA_DIR:      {DATA_DIR}")
    print(f"ROMS_DIR:      {ROMS_DIR}")
    print(f"PROFILES_DIR:  {PROFILES_DIR}")
    print(f"SETTINGS_FILE: {SETTINGS_FILE}")
    print(f"CORES_DIR:     {CORES_DIR}")
    print(f"CORE:          {DEFAULT_CORE_PATH}")
    print("=" * 50)


if __name__ == "__main__":
    print_paths()
