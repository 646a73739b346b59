"""
Máquina de estados Safe -> Warning -> Blocked -> Safe.

Limiares derivados a cada decisão:
    enter = baseline * factor
    exit  = baseline * max(factor - gap, 1.0)
O piso 1.0 garante exit <= enter e ambos >= baseline (banda nunca invertida).
"""
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple

from .baseline import ProtectionProfile

_LOGGER = logging.getLogger(__name__)

STATUS_NO_FACE = "Monitoring - no face detected"
STATUS_RESTORED = "Monitoring - comfortable distance restored"
STATUS_BLOCKED = "Screen blocked - move back to comfortable distance!"
STATUS_STARTING = "Monitoring face distance"


class ProtectionState(str, Enum):
    SAFE = "safe"
    WARNING = "warning"
    BLOCKED = "blocked"


class SafeReason(str, Enum):
    STARTING = "starting"
    NO_FACE = "no_face"
    COMFORTABLE = "comfortable"


class Intent(str, Enum):
    SHOW_OVERLAY = "show_overlay"
    HIDE_OVERLAY = "hide_overlay"
    TRIGGER_HAPTIC_FEEDBACK = "trigger_haptic_feedback"
    RECORD_WARNING_EVENT = "record_warning_event"
    RECORD_BLOCK_EVENT = "record_block_event"
    PERSIST_BASELINE = "persist_baseline"


@dataclass(frozen=True)
class Thresholds:
    enter: float
    exit: float


@dataclass(frozen=True)
class Transition:
    previous: ProtectionState
    current: ProtectionState
    intents: Tuple[Intent, ...] = ()
    status: Optional[str] = None

    @property
    def changed(self) -> bool:
        return self.previous is not self.current


def thresholds(profile: ProtectionProfile) -> Thresholds:
    b = profile.baseline_area
    return Thresholds(
        enter=b * profile.threshold_factor,
        exit=b * max(profile.threshold_factor - profile.hysteresis_gap, 1.0),
    )


def closer_percentage(area: float, baseline: float) -> int:
    if baseline <= 0:
        return 0
    return int((area - baseline) / baseline * 100)


def warning_message(area: float, baseline: float) -> str:
    return f"Warning: Face {closer_percentage(area, baseline)}% closer than baseline!"


def distance_status(area: float, th: Thresholds) -> str:
    if area > th.enter:
        return "TOO_CLOSE"
    if area < th.exit:
        return "SAFE"
    return "BORDERLINE"


class ProtectionStateMachine:
    def __init__(self, haptics_enabled: bool = True):
        self.haptics_enabled = haptics_enabled
        self.state = ProtectionState.SAFE
        self.safe_reason = SafeReason.STARTING
        self.warning_started_at: Optional[float] = None
        self._last_area = 0.0
        self._last_face = False

    def status_text(self, profile: ProtectionProfile) -> str:
        if self.state is ProtectionState.WARNING:
            return warning_message(self._last_area, profile.baseline_area)
        if self.state is ProtectionState.BLOCKED:
            return STATUS_BLOCKED
        if self.safe_reason is SafeReason.NO_FACE:
            return STATUS_NO_FACE
        if self.safe_reason is SafeReason.COMFORTABLE:
            return STATUS_RESTORED
        return STATUS_STARTING

    def update(self, smoothed_area: float, face_detected: bool, profile: ProtectionProfile,
               now: float) -> Transition:
        self._last_area = smoothed_area
        self._last_face = face_detected
        th = thresholds(profile)
        too_close = face_detected and smoothed_area > th.enter
        released = (not face_detected) or smoothed_area < th.exit
        st = self.state

        if st is ProtectionState.SAFE:
            if face_detected:
                self.safe_reason = SafeReason.COMFORTABLE
            elif self.safe_reason is not SafeReason.STARTING:
                self.safe_reason = SafeReason.NO_FACE
            if too_close:
                return self._enter_warning(smoothed_area, profile, now)

        elif st is ProtectionState.WARNING:
            if too_close and self._timer_elapsed(profile, now):
                return self._enter_blocked(profile, now)
            if released:
                # aviso cancelado antes do bloqueio: nada a esconder
                return self._enter_safe(face_detected, ())
            # banda entre exit e enter: continua em aviso, timer mantido

        elif st is ProtectionState.BLOCKED:
            if released:
                return self._enter_safe(face_detected, (Intent.HIDE_OVERLAY,))

        return Transition(st, st)

    def poll(self, profile: ProtectionProfile, now: float) -> Transition:
        """
        Reavalia só o timer de aviso com a última área conhecida. Usado quando
        a cadência de frames cai e nenhuma observação chega a tempo.
        """
        st = self.state
        if st is not ProtectionState.WARNING or not self._last_face:
            return Transition(st, st)
        if self._last_area > thresholds(profile).enter and self._timer_elapsed(profile, now):
            return self._enter_blocked(profile, now)
        return Transition(st, st)

    def reset(self):
        self.state = ProtectionState.SAFE
        self.safe_reason = SafeReason.STARTING
        self.warning_started_at = None
        self._last_area = 0.0
        self._last_face = False

    def _timer_elapsed(self, profile: ProtectionProfile, now: float) -> bool:
        if self.warning_started_at is None:
            return False
        return now - self.warning_started_at >= profile.warning_time_seconds

    def _enter_warning(self, area: float, profile: ProtectionProfile, now: float) -> Transition:
        self.state = ProtectionState.WARNING
        self.warning_started_at = now
        msg = warning_message(area, profile.baseline_area)
        _LOGGER.info("Aviso iniciado: área %.4f (%d%% acima do baseline)",
                     area, closer_percentage(area, profile.baseline_area))
        return Transition(ProtectionState.SAFE, ProtectionState.WARNING,
                          (Intent.RECORD_WARNING_EVENT,), msg)

    def _enter_blocked(self, profile: ProtectionProfile, now: float) -> Transition:
        self.state = ProtectionState.BLOCKED
        intents = [Intent.SHOW_OVERLAY]
        if self.haptics_enabled:
            intents.append(Intent.TRIGGER_HAPTIC_FEEDBACK)
        intents.append(Intent.RECORD_BLOCK_EVENT)
        _LOGGER.info("Tela bloqueada: rosto perto demais por %ss", profile.warning_time_seconds)
        return Transition(ProtectionState.WARNING, ProtectionState.BLOCKED, tuple(intents), STATUS_BLOCKED)

    def _enter_safe(self, face_detected: bool, intents: Tuple[Intent, ...]) -> Transition:
        previous = self.state
        self.state = ProtectionState.SAFE
        self.warning_started_at = None
        self.safe_reason = SafeReason.COMFORTABLE if face_detected else SafeReason.NO_FACE
        msg = STATUS_RESTORED if face_detected else STATUS_NO_FACE
        _LOGGER.info("Estado seguro (%s): %s", previous.value, msg)
        return Transition(previous, ProtectionState.SAFE, intents, msg)
