"""Preferências persistidas do usuário (calibração, feedback, agenda)."""
import json
import logging
import os
from dataclasses import asdict, dataclass, replace
from pathlib import Path

from .config import Config, apply_mapping
from .engine import NullSink

_LOGGER = logging.getLogger(__name__)


@dataclass
class Settings:
    baseline_area: float = 0.0
    threshold_factor: float = 2.0
    hysteresis_gap: float = 0.3
    warning_time: int = 3
    detection_threshold: float = 0.5
    is_calibrated: bool = False
    haptics_enabled: bool = True
    sound_enabled: bool = False
    scheduled_enabled: bool = False
    schedule_start_hour: int = 9
    schedule_end_hour: int = 21


def apply_settings(cfg: Config, settings: Settings) -> Config:
    """Preferências do usuário sobrepõem os knobs de proteção da sessão."""
    cfg.threshold_factor = float(settings.threshold_factor)
    cfg.hysteresis_gap = float(settings.hysteresis_gap)
    cfg.warning_time_seconds = int(settings.warning_time)
    cfg.detection_threshold = float(settings.detection_threshold)
    cfg.haptics_enabled = bool(settings.haptics_enabled)
    return cfg.validate()


def is_within_schedule(settings: Settings, hour: int) -> bool:
    if not settings.scheduled_enabled:
        return False
    start, end = settings.schedule_start_hour, settings.schedule_end_hour
    if start <= end:
        return start <= hour < end
    # janela que atravessa a meia-noite (ex: 22h -> 6h)
    return hour >= start or hour < end


class SettingsStore:
    def __init__(self, path: Path):
        self.path = path

    def load(self) -> Settings:
        settings = Settings()
        if not self.path.exists():
            self.save(settings)
            _LOGGER.info("Preferências padrão criadas em %s", self.path)
            return settings
        with open(self.path, "r", encoding="utf-8") as fh:
            loaded = json.load(fh)
        if not isinstance(loaded, dict):
            raise ValueError(f"Formato inválido em {self.path}: esperado objeto JSON")
        apply_mapping(settings, loaded)
        return settings

    def save(self, settings: Settings):
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        with open(tmp, "w", encoding="utf-8") as fh:
            json.dump(asdict(settings), fh, ensure_ascii=False, indent=4)
        os.replace(tmp, self.path)

    def persist_baseline(self, value: float, calibrated: bool = True) -> Settings:
        settings = replace(self.load(), baseline_area=float(value), is_calibrated=calibrated)
        self.save(settings)
        _LOGGER.info("Baseline salvo: %.4f", value)
        return settings

    def clear_calibration(self) -> Settings:
        settings = replace(self.load(), baseline_area=0.0, is_calibrated=False)
        self.save(settings)
        return settings


class SettingsSink(NullSink):
    """Grava no disco o baseline corrigido durante a sessão."""

    def __init__(self, store: SettingsStore):
        self.store = store

    def persist_baseline(self, value: float) -> None:
        self.store.persist_baseline(value)
