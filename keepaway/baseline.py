"""
Baseline calibrado e parâmetros de proteção da sessão.

O perfil é imutável: o corretor troca a referência inteira por um perfil
novo, então um leitor nunca vê meio baseline escrito.
"""
import logging
import threading
from dataclasses import dataclass, replace
from typing import Iterable

import numpy as np

from .config import Config, ConfigError

_LOGGER = logging.getLogger(__name__)

CALIBRATION_MIN_SAMPLES = 5
CALIBRATION_MIN_BASELINE = 0.005
CALIBRATION_MAX_BASELINE = 0.3


class CalibrationError(ValueError):
    pass


@dataclass(frozen=True)
class ProtectionProfile:
    baseline_area: float = 0.0
    threshold_factor: float = 2.0
    hysteresis_gap: float = 0.3
    warning_time_seconds: int = 3

    def validate(self) -> "ProtectionProfile":
        if self.baseline_area < 0:
            raise ConfigError(f"baseline_area não pode ser negativo (recebido {self.baseline_area})")
        if self.threshold_factor <= 1.0:
            raise ConfigError(f"threshold_factor deve ser > 1 (recebido {self.threshold_factor})")
        if self.hysteresis_gap < 0:
            raise ConfigError(f"hysteresis_gap não pode ser negativo (recebido {self.hysteresis_gap})")
        if self.warning_time_seconds < 0:
            raise ConfigError("warning_time_seconds não pode ser negativo")
        return self

    @classmethod
    def from_config(cls, cfg: Config, baseline_area: float) -> "ProtectionProfile":
        return cls(
            baseline_area=float(baseline_area),
            threshold_factor=float(cfg.threshold_factor),
            hysteresis_gap=float(cfg.hysteresis_gap),
            warning_time_seconds=int(cfg.warning_time_seconds),
        ).validate()


class BaselineStore:
    """Célula de valor único: leitura sem lock, escrita por troca de referência."""

    def __init__(self, profile: ProtectionProfile):
        self._profile = profile.validate()
        self._write_lock = threading.Lock()

    def snapshot(self) -> ProtectionProfile:
        return self._profile

    @property
    def baseline(self) -> float:
        return self._profile.baseline_area

    def replace_baseline(self, value: float) -> ProtectionProfile:
        if value < 0:
            raise ConfigError(f"baseline_area não pode ser negativo (recebido {value})")
        with self._write_lock:
            self._profile = replace(self._profile, baseline_area=float(value))
            return self._profile


@dataclass(frozen=True)
class CalibrationResult:
    baseline: float
    minimum: float
    maximum: float
    mean: float
    count: int


def calibrate_baseline(samples: Iterable[float], min_samples: int = CALIBRATION_MIN_SAMPLES) -> CalibrationResult:
    """
    Baseline = mediana das amostras (robusta a piscadas/saídas do quadro).
    Rejeita coletas curtas demais ou fora da faixa plausível de rosto.
    """
    arr = np.array([s for s in samples if s > 0], dtype=float)
    if arr.size < min_samples:
        raise CalibrationError(
            f"Amostras insuficientes ({arr.size}/{min_samples}). Tente novamente."
        )
    baseline = float(np.median(arr))
    if baseline < CALIBRATION_MIN_BASELINE or baseline > CALIBRATION_MAX_BASELINE:
        raise CalibrationError(
            f"Calibração inválida (baseline: {baseline:.4f}). Mantenha o rosto visível e tente novamente."
        )
    result = CalibrationResult(
        baseline=baseline,
        minimum=float(arr.min()),
        maximum=float(arr.max()),
        mean=float(arr.mean()),
        count=int(arr.size),
    )
    _LOGGER.info(
        "Calibração concluída: baseline=%.4f faixa=%.4f-%.4f média=%.4f amostras=%d",
        result.baseline, result.minimum, result.maximum, result.mean, result.count,
    )
    return result
