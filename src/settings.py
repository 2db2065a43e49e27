#!/usr/bin/env python3

"""
NesCaster Settings
Loading / saving caster_settings.json and the save-state settings block

File shape:
    {
        "refresh_hz": 60,
        "run_ahead_frames": 1,
        "save_states": { ...global SaveStateSettings... },
        "profiles": {
            "<profile id>": { "save_states": { ...per-profile overrides... } }
        }
    }
"""

import json
import os

from config import (
    AUTO_SAVE_DEBOUNCE_SECONDS,
    AUTO_SAVE_ENABLED_DEFAULT,
    AUTO_SAVE_HISTORY_DEFAULT,
    AUTO_SAVE_HISTORY_MAX,
    AUTO_SAVE_INTERVAL_MINUTES_DEFAULT,
    AUTO_SAVE_INTERVAL_OPTIONS,
    AUTO_SAVE_ON_LEVEL_COMPLETE_DEFAULT,
    AUTO_SAVE_ON_PAUSE_DEFAULT,
    FPS,
    REFRESH_RATE_OPTIONS,
    RUN_AHEAD_FRAMES_DEFAULT,
    RUN_AHEAD_FRAMES_MAX,
    RUN_AHEAD_RECOVERY_TICKS_DEFAULT,
    SAVE_HISTORY_DEFAULT,
    SAVE_HISTORY_OPTIONS,
    SETTINGS_FILE,
)
from errors import ConfigError


def load_settings(path=None):
    """Load settings from caster_settings.json"""
    path = path or SETTINGS_FILE
    if os.path.exists(path):
        try:
            with open(path, "r", encoding="utf-8") as f:
                settings = json.load(f)
            print(f"[Settings] Loaded from: {path}")
            return settings
        except Exception as e:
            print(f"[Settings] Failed to load settings from {path}: {e}")
    else:
        print(f"[Settings] File not found: {path}")
    return {}


def save_settings(data, path=None):
    """Save settings to caster_settings.json (temp file + rename)"""
    path = path or SETTINGS_FILE
    temp_path = path + ".tmp"
    try:
        settings_dir = os.path.dirname(path)
        if settings_dir:
            os.makedirs(settings_dir, exist_ok=True)

        with open(temp_path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)
        os.replace(temp_path, path)

        print(f"[Settings] Saved to: {path}")
        return True
    except Exception as e:
        print(f"[Settings] Failed to save settings to {path}: {e}")
        if os.path.exists(temp_path):
            try:
                os.remove(temp_path)
            except OSError:
                pass
        return False


def save_settings_merged(data, path=None):
    """Load existing settings, merge *data* into them, then write back.

    Unlike save_settings() which overwrites the entire file, this
    preserves any keys that are not present in *data*.
    """
    existing = load_settings(path)
    existing.update(data)
    return save_settings(existing, path)


class SaveStateSettings:
    """
    Stack bounds, auto-save toggles and run-ahead options for one profile.

    Auto-saves are always kept out of the manual bound; the
    ``separate_from_manual`` flag is reported to the UI but cannot be
    switched off.
    """

    separate_from_manual = True

    def __init__(
        self,
        history_size=SAVE_HISTORY_DEFAULT,
        auto_history_size=AUTO_SAVE_HISTORY_DEFAULT,
        auto_save_enabled=AUTO_SAVE_ENABLED_DEFAULT,
        auto_save_on_level_complete=AUTO_SAVE_ON_LEVEL_COMPLETE_DEFAULT,
        auto_save_on_pause=AUTO_SAVE_ON_PAUSE_DEFAULT,
        auto_save_interval_minutes=AUTO_SAVE_INTERVAL_MINUTES_DEFAULT,
        debounce_seconds=AUTO_SAVE_DEBOUNCE_SECONDS,
        run_ahead_frames=RUN_AHEAD_FRAMES_DEFAULT,
        run_ahead_recovery_ticks=RUN_AHEAD_RECOVERY_TICKS_DEFAULT,
        refresh_hz=FPS,
    ):
        self.history_size = history_size
        self.auto_history_size = auto_history_size
        self.auto_save_enabled = auto_save_enabled
        self.auto_save_on_level_complete = auto_save_on_level_complete
        self.auto_save_on_pause = auto_save_on_pause
        self.auto_save_interval_minutes = auto_save_interval_minutes
        self.debounce_seconds = debounce_seconds
        self.run_ahead_frames = run_ahead_frames
        self.run_ahead_recovery_ticks = run_ahead_recovery_ticks
        self.refresh_hz = refresh_hz
        self.validate()

    def validate(self):
        """Raise ConfigError if any value is outside its allowed range."""
        if self.history_size not in SAVE_HISTORY_OPTIONS:
            raise ConfigError(
                f"history_size must be one of {SAVE_HISTORY_OPTIONS}, got {self.history_size!r}"
            )
        if not 1 <= int(self.auto_history_size) <= AUTO_SAVE_HISTORY_MAX:
            raise ConfigError(
                f"auto_history_size must be 1..{AUTO_SAVE_HISTORY_MAX}, got {self.auto_history_size!r}"
            )
        if self.auto_save_interval_minutes not in AUTO_SAVE_INTERVAL_OPTIONS:
            raise ConfigError(
                f"auto_save_interval_minutes must be one of {AUTO_SAVE_INTERVAL_OPTIONS}, "
                f"got {self.auto_save_interval_minutes!r}"
            )
        if float(self.debounce_seconds) < 0:
            raise ConfigError("debounce_seconds cannot be negative")
        if not 0 <= int(self.run_ahead_frames) <= RUN_AHEAD_FRAMES_MAX:
            raise ConfigError(
                f"run_ahead_frames must be 0..{RUN_AHEAD_FRAMES_MAX}, got {self.run_ahead_frames!r}"
            )
        if int(self.run_ahead_recovery_ticks) < 0:
            raise ConfigError("run_ahead_recovery_ticks cannot be negative")
        if self.refresh_hz not in REFRESH_RATE_OPTIONS:
            raise ConfigError(
                f"refresh_hz must be one of {REFRESH_RATE_OPTIONS}, got {self.refresh_hz!r}"
            )

    @property
    def interval_seconds(self):
        return int(self.auto_save_interval_minutes) * 60

    def to_dict(self):
        return {
            "history_size": self.history_size,
            "auto_history_size": self.auto_history_size,
            "auto_save_enabled": self.auto_save_enabled,
            "auto_save_on_level_complete": self.auto_save_on_level_complete,
            "auto_save_on_pause": self.auto_save_on_pause,
            "auto_save_interval_minutes": self.auto_save_interval_minutes,
            "separate_from_manual": self.separate_from_manual,
            "debounce_seconds": self.debounce_seconds,
            "run_ahead_frames": self.run_ahead_frames,
            "run_ahead_recovery_ticks": self.run_ahead_recovery_ticks,
            "refresh_hz": self.refresh_hz,
        }

    @classmethod
    def from_dict(cls, data, strict=False):
        """
        Build settings from a dict, ignoring unknown keys.

        Args:
            data: dict as stored in caster_settings.json
            strict: raise ConfigError on bad values instead of falling
                back to the defaults

        Returns:
            SaveStateSettings
        """
        data = dict(data or {})
        data.pop("separate_from_manual", None)
        known = cls().to_dict()
        kwargs = {k: v for k, v in data.items() if k in known}
        try:
            return cls(**kwargs)
        except ConfigError as e:
            if strict:
                raise
            print(f"[Settings] Invalid save-state settings ({e}), using defaults")
            return cls()


def save_state_settings_for(settings, profile_id=None):
    """
    Resolve the SaveStateSettings for *profile_id*.

    Global ``save_states`` values are applied first, then the profile's
    own overrides.  The top-level ``refresh_hz`` / ``run_ahead_frames``
    keys are honoured when the save_states block doesn't set them.
    """
    merged = {}
    for key in ("refresh_hz", "run_ahead_frames"):
        if key in settings:
            merged[key] = settings[key]
    merged.update(settings.get("save_states", {}))
    if profile_id is not None:
        profile = settings.get("profiles", {}).get(str(profile_id), {})
        merged.update(profile.get("save_states", {}))
    return SaveStateSettings.from_dict(merged)


def store_save_state_settings(state_settings, profile_id=None, path=None):
    """Persist *state_settings* globally or as a profile override."""
    settings = load_settings(path)
    if profile_id is None:
        settings["save_states"] = state_settings.to_dict()
    else:
        profiles = settings.setdefault("profiles", {})
        profile = profiles.setdefault(str(profile_id), {})
        profile["save_states"] = state_settings.to_dict()
    return save_settings(settings, path)
