"""
Núcleo único de monitoramento de proximidade.

Observação -> AdaptiveSampler -> SmoothingFilter -> {máquina de estados,
corretor de baseline} -> intents para os colaboradores externos. Um ciclo
roda inteiro de forma síncrona; só há uma observação em voo por vez.
"""
import logging
import time
from dataclasses import dataclass
from typing import Callable, List, Optional, Protocol, Tuple, Union

from .baseline import BaselineStore, ProtectionProfile
from .config import Config
from .features import Observation
from .protection import (
    Intent,
    ProtectionState,
    ProtectionStateMachine,
    Thresholds,
    Transition,
    distance_status,
    thresholds,
)
from .temporal import AdaptiveSampler, BaselineCorrector, SmoothingFilter

_LOGGER = logging.getLogger(__name__)


class ProtectionSink(Protocol):
    """Colaboradores que recebem os intents (fire-and-forget)."""

    def show_overlay(self) -> None:
        ...

    def hide_overlay(self) -> None:
        ...

    def trigger_haptic_feedback(self) -> None:
        ...

    def record_warning_event(self) -> None:
        ...

    def record_block_event(self) -> None:
        ...

    def update_status_message(self, text: str) -> None:
        ...

    def persist_baseline(self, value: float) -> None:
        ...


class NullSink:
    def show_overlay(self) -> None:
        pass

    def hide_overlay(self) -> None:
        pass

    def trigger_haptic_feedback(self) -> None:
        pass

    def record_warning_event(self) -> None:
        pass

    def record_block_event(self) -> None:
        pass

    def update_status_message(self, text: str) -> None:
        pass

    def persist_baseline(self, value: float) -> None:
        pass


class RecordingSink(NullSink):
    """Guarda as chamadas recebidas, em ordem. Útil em testes e dry-run."""

    def __init__(self):
        self.calls: List[Tuple[str, tuple]] = []

    def names(self) -> List[str]:
        return [name for name, _ in self.calls]

    def count(self, name: str) -> int:
        return sum(1 for n, _ in self.calls if n == name)

    def show_overlay(self) -> None:
        self.calls.append(("show_overlay", ()))

    def hide_overlay(self) -> None:
        self.calls.append(("hide_overlay", ()))

    def trigger_haptic_feedback(self) -> None:
        self.calls.append(("trigger_haptic_feedback", ()))

    def record_warning_event(self) -> None:
        self.calls.append(("record_warning_event", ()))

    def record_block_event(self) -> None:
        self.calls.append(("record_block_event", ()))

    def update_status_message(self, text: str) -> None:
        self.calls.append(("update_status_message", (text,)))

    def persist_baseline(self, value: float) -> None:
        self.calls.append(("persist_baseline", (value,)))


class CompositeSink:
    """Repassa cada chamada para todos os sinks, na ordem dada."""

    def __init__(self, *sinks):
        self.sinks = sinks

    def __getattr__(self, name: str) -> Callable[..., None]:
        if name.startswith("_"):
            raise AttributeError(name)

        def fan_out(*args):
            for sink in self.sinks:
                method = getattr(sink, name, None)
                if method is not None:
                    method(*args)
        return fan_out


@dataclass(frozen=True)
class EngineResult:
    observation: Optional[Observation]
    smoothed_area: float
    transition: Transition
    thresholds: Thresholds
    corrected_baseline: Optional[float] = None

    @property
    def state(self) -> ProtectionState:
        return self.transition.current


class ProximityEngine:
    def __init__(
        self,
        store: Union[BaselineStore, ProtectionProfile],
        sink: Optional[ProtectionSink] = None,
        *,
        sampler: Optional[AdaptiveSampler] = None,
        smoother: Optional[SmoothingFilter] = None,
        corrector: Optional[BaselineCorrector] = None,
        haptics_enabled: bool = True,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.store = store if isinstance(store, BaselineStore) else BaselineStore(store)
        self.sink = sink if sink is not None else NullSink()
        self.clock = clock
        # SmoothingFilter tem __len__: vazio é falsy, então nada de `or` aqui
        self.sampler = sampler if sampler is not None else AdaptiveSampler()
        self.smoother = smoother if smoother is not None else SmoothingFilter()
        self.corrector = corrector if corrector is not None else BaselineCorrector(started_at=clock())
        self.fsm = ProtectionStateMachine(haptics_enabled=haptics_enabled)
        self._smoothed = 0.0

    @classmethod
    def from_config(cls, cfg: Config, baseline_area: float, sink: Optional[ProtectionSink] = None,
                    clock: Callable[[], float] = time.monotonic) -> "ProximityEngine":
        profile = ProtectionProfile.from_config(cfg, baseline_area)
        return cls(
            BaselineStore(profile),
            sink,
            sampler=AdaptiveSampler(
                cfg.frame_skip_count, cfg.stability_threshold,
                cfg.stable_count_for_slowdown, cfg.adaptive_sampling,
            ),
            smoother=SmoothingFilter(cfg.smoothing_window),
            corrector=BaselineCorrector(
                cfg.correction_interval_sec, cfg.correction_min_samples,
                cfg.correction_max_samples, cfg.correction_max_drift, started_at=clock(),
            ),
            haptics_enabled=cfg.haptics_enabled,
            clock=clock,
        )

    @property
    def state(self) -> ProtectionState:
        return self.fsm.state

    @property
    def smoothed_area(self) -> float:
        return self._smoothed

    @property
    def profile(self) -> ProtectionProfile:
        return self.store.snapshot()

    @property
    def thresholds(self) -> Thresholds:
        return thresholds(self.store.snapshot())

    @property
    def status(self) -> str:
        return self.fsm.status_text(self.store.snapshot())

    def process(self, observation: Union[Observation, Callable[[], Observation]],
                now: Optional[float] = None) -> Optional[EngineResult]:
        """
        Passa pelo sampler; frames descartados retornam None. Aceita também
        uma função sem argumentos que produz a observação: assim a detecção
        só roda nos frames aceitos.
        """
        if not self.sampler.accept(observation):
            return None
        if callable(observation):
            observation = observation()
        return self.ingest(observation, now)

    def ingest(self, observation: Observation, now: Optional[float] = None) -> EngineResult:
        now = self.clock() if now is None else now
        face = observation.face_detected
        smoothed = self.smoother.ingest(observation)
        self._smoothed = smoothed
        # estabilidade medida no mesmo sinal que alimenta a máquina de estados
        if face:
            self.sampler.update_stability(smoothed)
        else:
            self.sampler.mark_unstable()

        # baseline relido a cada ciclo (o corretor pode ter trocado)
        profile = self.store.snapshot()
        th = thresholds(profile)
        transition = self.fsm.update(smoothed, face, profile, now)

        if face:
            _LOGGER.debug(
                "Detecção: bruto=%.4f suavizado=%.4f baseline=%.4f enter=%.4f exit=%.4f status=%s skip=%d",
                observation.normalized_area, smoothed, profile.baseline_area,
                th.enter, th.exit, distance_status(smoothed, th), self.sampler.effective_skip,
            )

        corrected = None
        self.corrector.observe(self.fsm.state, smoothed, face)
        if self.fsm.state is ProtectionState.SAFE and face:
            corrected = self.corrector.maybe_correct(profile.baseline_area, now)
            if corrected is not None:
                self.store.replace_baseline(corrected)

        self._dispatch(transition)
        if corrected is not None:
            self._call(Intent.PERSIST_BASELINE.value, corrected)
            self.notify(f"Baseline auto-corrected to {corrected:.4f}")

        return EngineResult(observation, smoothed, transition, th, corrected)

    def poll(self, now: Optional[float] = None) -> Optional[EngineResult]:
        """Tick de relógio: escala Warning -> Blocked mesmo sem frames novos."""
        now = self.clock() if now is None else now
        profile = self.store.snapshot()
        transition = self.fsm.poll(profile, now)
        if not transition.changed:
            return None
        self._dispatch(transition)
        return EngineResult(None, self._smoothed, transition, thresholds(profile))

    def release(self):
        """Fim de sessão: nunca deixa o overlay preso na tela."""
        if self.fsm.state is ProtectionState.BLOCKED:
            self._call("hide_overlay")
        self.fsm.reset()
        self.smoother.reset()
        self.sampler.reset()
        self._smoothed = 0.0

    def notify(self, text: str):
        self._call("update_status_message", text)

    def _dispatch(self, transition: Transition):
        for intent in transition.intents:
            self._call(intent.value)
        if transition.status:
            self._call("update_status_message", transition.status)

    def _call(self, name: str, *args):
        try:
            getattr(self.sink, name)(*args)
        except Exception:  # noqa: BLE001 - intents são fire-and-forget
            _LOGGER.exception("Falha ao entregar intent %s", name)
