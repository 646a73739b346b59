import json

import pytest

from keepaway.config import Config, ConfigError
from keepaway.settings import Settings, SettingsSink, SettingsStore, apply_settings, is_within_schedule


def test_load_creates_defaults(tmp_path) -> None:
    path = tmp_path / "settings.json"
    settings = SettingsStore(path).load()
    assert settings == Settings()
    assert json.loads(path.read_text(encoding="utf-8"))["threshold_factor"] == 2.0


def test_load_applies_saved_values(tmp_path) -> None:
    path = tmp_path / "settings.json"
    path.write_text(json.dumps({"baseline_area": 0.12, "is_calibrated": "true", "unknown": 1}), encoding="utf-8")
    settings = SettingsStore(path).load()
    assert settings.baseline_area == 0.12
    assert settings.is_calibrated is True


def test_persist_baseline_keeps_other_preferences(tmp_path) -> None:
    store = SettingsStore(tmp_path / "settings.json")
    store.save(Settings(threshold_factor=2.5, warning_time=5))
    store.persist_baseline(0.08)
    loaded = store.load()
    assert loaded.baseline_area == 0.08
    assert loaded.is_calibrated is True
    assert loaded.threshold_factor == 2.5
    assert loaded.warning_time == 5

    store.clear_calibration()
    assert store.load().is_calibrated is False


def test_settings_sink_writes_baseline(tmp_path) -> None:
    store = SettingsStore(tmp_path / "settings.json")
    SettingsSink(store).persist_baseline(0.15)
    assert store.load().baseline_area == 0.15


def test_apply_settings_overrides_config() -> None:
    cfg = apply_settings(Config(), Settings(threshold_factor=3.0, warning_time=7, haptics_enabled=False))
    assert cfg.threshold_factor == 3.0
    assert cfg.warning_time_seconds == 7
    assert cfg.haptics_enabled is False


def test_apply_settings_rejects_bad_factor() -> None:
    with pytest.raises(ConfigError):
        apply_settings(Config(), Settings(threshold_factor=0.9))


@pytest.mark.parametrize("hour,expected", [(8, False), (9, True), (20, True), (21, False)])
def test_schedule_daytime(hour, expected) -> None:
    assert is_within_schedule(Settings(scheduled_enabled=True), hour) is expected


@pytest.mark.parametrize("hour,expected", [(23, True), (2, True), (6, False), (12, False)])
def test_schedule_overnight(hour, expected) -> None:
    settings = Settings(scheduled_enabled=True, schedule_start_hour=22, schedule_end_hour=6)
    assert is_within_schedule(settings, hour) is expected


def test_schedule_disabled() -> None:
    assert is_within_schedule(Settings(), 12) is False
