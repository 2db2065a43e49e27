import pytest

from errors import ConfigError
from settings import (
    SaveStateSettings,
    load_settings,
    save_settings,
    save_settings_merged,
    save_state_settings_for,
    store_save_state_settings,
)


def test_defaults():
    settings = SaveStateSettings()
    assert settings.history_size == 10
    assert settings.auto_history_size == 5
    assert settings.auto_save_interval_minutes == 0
    assert settings.interval_seconds == 0
    assert settings.debounce_seconds == 10.0
    assert settings.run_ahead_frames == 1
    assert settings.separate_from_manual is True


@pytest.mark.parametrize("bad", [
    {"history_size": 7},
    {"auto_history_size": 0},
    {"run_ahead_frames": 5},
    {"refresh_hz": 75},
    {"auto_save_interval_minutes": -1},
    {"auto_save_interval_minutes": 3},
])
def test_out_of_range_values(bad):
    with pytest.raises(ConfigError):
        SaveStateSettings(**bad)
    with pytest.raises(ConfigError):
        SaveStateSettings.from_dict(bad, strict=True)
    assert SaveStateSettings.from_dict(bad).to_dict() == SaveStateSettings().to_dict()


def test_from_dict_ignores_unknown_keys():
    settings = SaveStateSettings.from_dict({"history_size": 15, "theme": "dark"})
    assert settings.history_size == 15


def test_save_and_load_round_trip(tmp_path):
    path = str(tmp_path / "caster_settings.json")
    assert save_settings({"refresh_hz": 120}, path)
    assert load_settings(path) == {"refresh_hz": 120}

    save_settings_merged({"run_ahead_frames": 2}, path)
    assert load_settings(path) == {"refresh_hz": 120, "run_ahead_frames": 2}


def test_missing_file_loads_empty(tmp_path):
    assert load_settings(str(tmp_path / "nope.json")) == {}


def test_profile_overrides_global(tmp_path):
    data = {
        "refresh_hz": 120,
        "save_states": {"history_size": 15, "auto_save_interval_minutes": 5},
        "profiles": {"2": {"save_states": {"history_size": 5}}},
    }
    global_settings = save_state_settings_for(data)
    assert global_settings.history_size == 15
    assert global_settings.refresh_hz == 120

    profile = save_state_settings_for(data, "2")
    assert profile.history_size == 5
    assert profile.interval_seconds == 300


def test_store_profile_settings(tmp_path):
    path = str(tmp_path / "caster_settings.json")
    store_save_state_settings(SaveStateSettings(history_size=5), profile_id=3, path=path)

    data = load_settings(path)
    assert data["profiles"]["3"]["save_states"]["history_size"] == 5
    assert save_state_settings_for(data, 3).history_size == 5
