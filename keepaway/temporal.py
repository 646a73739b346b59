import logging
from collections import deque
from typing import Callable, Optional, Union

import numpy as np

from .features import Observation
from .protection import ProtectionState

_LOGGER = logging.getLogger(__name__)


class AdaptiveSampler:
    """
    Decide quais frames seguem para o pipeline. Com leituras estáveis o
    intervalo dobra para poupar bateria; qualquer movimento volta ao normal.
    """

    def __init__(self, frame_skip_count: int = 2, stability_threshold: float = 0.05,
                 stable_count_for_slowdown: int = 10, adaptive: bool = True):
        self.frame_skip_count = max(1, int(frame_skip_count))
        self.stability_threshold = stability_threshold
        self.stable_count_for_slowdown = stable_count_for_slowdown
        self.adaptive = adaptive
        self.reset()

    def reset(self):
        self.frame_counter = 0
        self.consecutive_stable_count = 0
        self.last_area = 0.0
        self.skip_multiplier = 1

    @property
    def effective_skip(self) -> int:
        return self.frame_skip_count * self.skip_multiplier

    def accept(self, observation: Union[Observation, Callable[[], Observation], None] = None) -> bool:
        # conta todo frame oferecido, aceito ou não
        self.frame_counter += 1
        return self.frame_counter % self.effective_skip == 0

    def update_stability(self, area: float):
        change = abs(area - self.last_area)
        relative = change / self.last_area if self.last_area > 0 else 1.0
        if relative < self.stability_threshold:
            self.consecutive_stable_count += 1
            if self.adaptive and self.consecutive_stable_count >= self.stable_count_for_slowdown:
                if self.skip_multiplier != 2:
                    _LOGGER.debug("Leituras estáveis: reduzindo cadência (skip=%d)", self.frame_skip_count * 2)
                self.skip_multiplier = 2
        else:
            self.consecutive_stable_count = 0
            self.skip_multiplier = 1
        self.last_area = area

    def mark_unstable(self):
        """Rosto perdido: volta à cadência máxima até estabilizar de novo."""
        # escolha deliberada: sem rosto não há leitura estável, então não há economia a manter
        self.consecutive_stable_count = 0
        self.skip_multiplier = 1
        self.last_area = 0.0


class SmoothingFilter:
    """Média móvel curta sobre as áreas brutas aceitas."""

    def __init__(self, window_size: int = 5):
        self.window_size = max(1, int(window_size))
        self._window: deque = deque(maxlen=self.window_size)

    def __len__(self) -> int:
        return len(self._window)

    @property
    def window(self) -> tuple:
        return tuple(self._window)

    def reset(self):
        self._window.clear()

    def ingest(self, observation: Observation) -> float:
        if not observation.face_detected:
            # perda de rosto não pode deixar média antiga pendurada
            self._window.clear()
            return 0.0
        self._window.append(observation.normalized_area)
        if len(self._window) == 1:
            return float(self._window[0])
        return float(np.mean(self._window))


class BaselineCorrector:
    """
    Observa amostras estáveis (estado seguro, rosto presente) e, a cada
    intervalo, puxa o baseline meio caminho em direção à mediana observada
    quando o desvio passa do limite. Nunca coleta durante aviso/bloqueio.
    """

    def __init__(self, interval_sec: float = 30.0, min_samples: int = 10, max_samples: int = 20,
                 max_drift: float = 0.5, started_at: Optional[float] = None):
        self.interval_sec = interval_sec
        self.min_samples = min_samples
        self.max_drift = max_drift
        self.observed: deque = deque(maxlen=max_samples)
        self.last_check = started_at

    def observe(self, state: ProtectionState, smoothed_area: float, face_detected: bool):
        if state is not ProtectionState.SAFE or not face_detected:
            return
        self.observed.append(float(smoothed_area))

    def median(self) -> Optional[float]:
        if not self.observed:
            return None
        return float(np.median(np.fromiter(self.observed, dtype=float)))

    def maybe_correct(self, baseline: float, now: float) -> Optional[float]:
        if self.last_check is None:
            self.last_check = now
            return None
        if now - self.last_check < self.interval_sec:
            return None
        self.last_check = now

        if len(self.observed) < self.min_samples:
            return None
        median = self.median()
        drift = abs(median - baseline) / baseline if baseline > 0 else 1.0
        if drift <= self.max_drift:
            return None
        # meio passo amortecido: uma janela ruidosa não derruba o baseline
        corrected = (baseline + median) / 2.0
        _LOGGER.info(
            "Correção de baseline: antigo=%.4f observado=%.4f novo=%.4f desvio=%d%%",
            baseline, median, corrected, int(drift * 100),
        )
        return corrected
