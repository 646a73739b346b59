import pytest

from keepaway.baseline import ProtectionProfile
from keepaway.protection import (
    STATUS_BLOCKED,
    STATUS_NO_FACE,
    STATUS_RESTORED,
    Intent,
    ProtectionState,
    ProtectionStateMachine,
    distance_status,
    thresholds,
    warning_message,
)

PROFILE = ProtectionProfile(baseline_area=0.1, threshold_factor=2.0, hysteresis_gap=0.3, warning_time_seconds=3)


def test_thresholds_with_hysteresis_band() -> None:
    th = thresholds(PROFILE)
    assert th.enter == pytest.approx(0.2)
    assert th.exit == pytest.approx(0.17)


def test_exit_threshold_floor_never_drops_below_baseline() -> None:
    th = thresholds(ProtectionProfile(0.1, 1.2, 0.5, 3))
    assert th.exit == pytest.approx(0.1)
    assert th.exit <= th.enter


def test_hysteresis_sequence_safe_warning_blocked_safe() -> None:
    fsm = ProtectionStateMachine()
    states = []
    for area, now in ((0.05, 0.0), (0.25, 0.0), (0.25, 1.0), (0.25, 3.0), (0.05, 4.0)):
        fsm.update(area, True, PROFILE, now)
        states.append(fsm.state)
    assert states == [
        ProtectionState.SAFE,
        ProtectionState.WARNING,
        ProtectionState.WARNING,
        ProtectionState.BLOCKED,
        ProtectionState.SAFE,
    ]


def test_intents_on_each_transition() -> None:
    fsm = ProtectionStateMachine(haptics_enabled=True)
    t = fsm.update(0.25, True, PROFILE, 0.0)
    assert t.intents == (Intent.RECORD_WARNING_EVENT,)
    assert t.status.startswith("Warning: Face ")

    t = fsm.update(0.25, True, PROFILE, 3.0)
    assert t.intents == (Intent.SHOW_OVERLAY, Intent.TRIGGER_HAPTIC_FEEDBACK, Intent.RECORD_BLOCK_EVENT)
    assert t.status == STATUS_BLOCKED

    # continuar perto demais não repete intents
    t = fsm.update(0.3, True, PROFILE, 10.0)
    assert t.intents == ()
    assert not t.changed

    t = fsm.update(0.1, True, PROFILE, 11.0)
    assert t.intents == (Intent.HIDE_OVERLAY,)
    assert t.status == STATUS_RESTORED


def test_haptics_disabled_skips_haptic_intent() -> None:
    fsm = ProtectionStateMachine(haptics_enabled=False)
    fsm.update(0.25, True, PROFILE, 0.0)
    t = fsm.update(0.25, True, PROFILE, 3.0)
    assert Intent.TRIGGER_HAPTIC_FEEDBACK not in t.intents
    assert Intent.SHOW_OVERLAY in t.intents


def test_warning_band_keeps_warning_and_timer() -> None:
    fsm = ProtectionStateMachine()
    fsm.update(0.25, True, PROFILE, 0.0)
    # entre exit (0.17) e enter (0.2): continua em aviso sem zerar o timer
    t = fsm.update(0.18, True, PROFILE, 1.0)
    assert fsm.state is ProtectionState.WARNING
    assert not t.changed
    assert fsm.warning_started_at == 0.0
    fsm.update(0.25, True, PROFILE, 3.0)
    assert fsm.state is ProtectionState.BLOCKED


def test_warning_band_alone_never_blocks() -> None:
    fsm = ProtectionStateMachine()
    fsm.update(0.25, True, PROFILE, 0.0)
    fsm.update(0.18, True, PROFILE, 10.0)
    assert fsm.state is ProtectionState.WARNING


def test_warning_cancelled_without_hide_overlay() -> None:
    fsm = ProtectionStateMachine()
    fsm.update(0.25, True, PROFILE, 0.0)
    t = fsm.update(0.1, True, PROFILE, 1.0)
    assert fsm.state is ProtectionState.SAFE
    assert t.intents == ()
    assert t.status == STATUS_RESTORED


def test_face_loss_releases_warning_and_blocked() -> None:
    fsm = ProtectionStateMachine()
    fsm.update(0.25, True, PROFILE, 0.0)
    t = fsm.update(0.0, False, PROFILE, 1.0)
    assert fsm.state is ProtectionState.SAFE
    assert t.status == STATUS_NO_FACE

    fsm.update(0.25, True, PROFILE, 2.0)
    fsm.update(0.25, True, PROFILE, 5.0)
    assert fsm.state is ProtectionState.BLOCKED
    t = fsm.update(0.0, False, PROFILE, 6.0)
    assert t.intents == (Intent.HIDE_OVERLAY,)
    t = fsm.update(0.0, False, PROFILE, 7.0)
    assert t.intents == ()


def test_blocked_holds_in_band() -> None:
    fsm = ProtectionStateMachine()
    fsm.update(0.25, True, PROFILE, 0.0)
    fsm.update(0.25, True, PROFILE, 3.0)
    fsm.update(0.18, True, PROFILE, 4.0)
    assert fsm.state is ProtectionState.BLOCKED


def test_no_face_in_safe_stays_safe() -> None:
    fsm = ProtectionStateMachine()
    t = fsm.update(0.0, False, PROFILE, 0.0)
    assert fsm.state is ProtectionState.SAFE
    assert t.intents == ()


def test_zero_baseline_escalates_on_any_face() -> None:
    fsm = ProtectionStateMachine()
    fsm.update(0.01, True, ProtectionProfile(0.0, 2.0, 0.3, 3), 0.0)
    assert fsm.state is ProtectionState.WARNING
    assert warning_message(0.01, 0.0) == "Warning: Face 0% closer than baseline!"


def test_poll_escalates_without_new_observations() -> None:
    fsm = ProtectionStateMachine()
    fsm.update(0.25, True, PROFILE, 0.0)
    assert not fsm.poll(PROFILE, 2.9).changed
    t = fsm.poll(PROFILE, 3.0)
    assert t.current is ProtectionState.BLOCKED
    assert Intent.SHOW_OVERLAY in t.intents


def test_poll_does_not_escalate_from_band_or_safe() -> None:
    fsm = ProtectionStateMachine()
    assert not fsm.poll(PROFILE, 100.0).changed
    fsm.update(0.25, True, PROFILE, 0.0)
    fsm.update(0.18, True, PROFILE, 1.0)
    assert not fsm.poll(PROFILE, 10.0).changed


def test_warning_message_reports_percentage() -> None:
    assert warning_message(0.25, 0.125) == "Warning: Face 100% closer than baseline!"
    assert warning_message(0.1875, 0.125) == "Warning: Face 50% closer than baseline!"


def test_distance_status_labels() -> None:
    th = thresholds(PROFILE)
    assert distance_status(0.3, th) == "TOO_CLOSE"
    assert distance_status(0.18, th) == "BORDERLINE"
    assert distance_status(0.1, th) == "SAFE"
