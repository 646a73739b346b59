import pytest

from keepaway.baseline import BaselineStore, CalibrationError, ProtectionProfile, calibrate_baseline
from keepaway.config import Config, ConfigError


def test_calibration_uses_median() -> None:
    result = calibrate_baseline([0.1, 0.12, 0.11, 0.5, 0.09])
    assert result.baseline == pytest.approx(0.11)
    assert result.minimum == 0.09
    assert result.maximum == 0.5
    assert result.count == 5


def test_calibration_ignores_empty_readings() -> None:
    result = calibrate_baseline([0.0, 0.1, 0.1, 0.1, 0.1, 0.1, -1.0])
    assert result.count == 5


def test_calibration_needs_enough_samples() -> None:
    with pytest.raises(CalibrationError, match="insuficientes"):
        calibrate_baseline([0.1, 0.1])


@pytest.mark.parametrize("area", [0.001, 0.5])
def test_calibration_rejects_implausible_baseline(area) -> None:
    with pytest.raises(CalibrationError):
        calibrate_baseline([area] * 6)


def test_profile_validation() -> None:
    with pytest.raises(ConfigError):
        ProtectionProfile(baseline_area=-0.1).validate()
    with pytest.raises(ConfigError):
        ProtectionProfile(threshold_factor=1.0).validate()


def test_profile_from_config() -> None:
    cfg = Config(threshold_factor=2.5, hysteresis_gap=0.4, warning_time_seconds=5)
    profile = ProtectionProfile.from_config(cfg, 0.1)
    assert profile == ProtectionProfile(0.1, 2.5, 0.4, 5)


def test_store_swaps_whole_profile() -> None:
    store = BaselineStore(ProtectionProfile(baseline_area=0.1, threshold_factor=3.0))
    before = store.snapshot()
    after = store.replace_baseline(0.15)
    assert before.baseline_area == 0.1
    assert after is store.snapshot()
    assert store.baseline == 0.15
    assert after.threshold_factor == 3.0


def test_store_rejects_negative_baseline() -> None:
    store = BaselineStore(ProtectionProfile(baseline_area=0.1))
    with pytest.raises(ConfigError):
        store.replace_baseline(-1.0)
    assert store.baseline == 0.1
