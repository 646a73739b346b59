import pytest

from keepaway.features import Observation
from keepaway.protection import ProtectionState
from keepaway.temporal import AdaptiveSampler, BaselineCorrector, SmoothingFilter


def test_no_face_always_clears_window() -> None:
    f = SmoothingFilter(5)
    for _ in range(3):
        assert f.ingest(Observation.no_face()) == 0.0
        assert len(f) == 0
    f.ingest(Observation.face(0.2))
    f.ingest(Observation.face(0.3))
    assert f.ingest(Observation.no_face()) == 0.0
    assert f.window == ()


def test_single_entry_returns_raw_value() -> None:
    f = SmoothingFilter(5)
    assert f.ingest(Observation.face(0.125)) == 0.125


def test_constant_stream_converges_exactly() -> None:
    f = SmoothingFilter(5)
    for _ in range(5):
        f.ingest(Observation.face(0.5))
    for _ in range(4):
        assert f.ingest(Observation.face(0.25)) != 0.25
    assert f.ingest(Observation.face(0.25)) == 0.25
    assert len(f) == 5


def test_moving_average_evicts_oldest() -> None:
    f = SmoothingFilter(3)
    for v in (0.5, 0.25, 0.25):
        f.ingest(Observation.face(v))
    assert f.ingest(Observation.face(0.25)) == 0.25
    assert f.window == (0.25, 0.25, 0.25)


def test_sampler_counts_every_frame() -> None:
    s = AdaptiveSampler(frame_skip_count=2)
    assert [s.accept() for _ in range(6)] == [False, True, False, True, False, True]
    assert s.frame_counter == 6


def test_sampler_slows_down_after_stable_run_and_resets_on_change() -> None:
    s = AdaptiveSampler(frame_skip_count=2, stability_threshold=0.05, stable_count_for_slowdown=10)
    s.update_stability(0.10)  # primeira leitura: last_area 0 conta como instável
    assert s.consecutive_stable_count == 0
    for _ in range(9):
        s.update_stability(0.102)
    assert s.skip_multiplier == 1
    s.update_stability(0.102)
    assert s.consecutive_stable_count == 10
    assert s.skip_multiplier == 2
    assert s.effective_skip == 4

    s.update_stability(0.2)
    assert s.skip_multiplier == 1
    assert s.consecutive_stable_count == 0


def test_sampler_with_adaptive_off_never_slows_down() -> None:
    s = AdaptiveSampler(adaptive=False)
    s.update_stability(0.1)
    for _ in range(20):
        s.update_stability(0.1)
    assert s.skip_multiplier == 1


def test_mark_unstable_restores_full_cadence() -> None:
    s = AdaptiveSampler()
    s.update_stability(0.1)
    for _ in range(10):
        s.update_stability(0.1)
    assert s.skip_multiplier == 2
    s.mark_unstable()
    assert s.skip_multiplier == 1
    assert s.last_area == 0.0


def _filled(values, started_at=0.0) -> BaselineCorrector:
    c = BaselineCorrector(started_at=started_at)
    for v in values:
        c.observe(ProtectionState.SAFE, v, True)
    return c


def test_correction_converges_by_half_step() -> None:
    c = _filled([0.20] * 10)
    assert c.maybe_correct(0.10, 30.0) == pytest.approx(0.15)


def test_no_correction_within_drift_tolerance() -> None:
    c = _filled([0.12, 0.13, 0.14, 0.12, 0.13, 0.14, 0.12, 0.13, 0.14, 0.13])
    assert c.maybe_correct(0.10, 30.0) is None


def test_correction_waits_for_interval_and_min_samples() -> None:
    c = _filled([0.20] * 9)
    assert c.maybe_correct(0.10, 29.0) is None
    # intervalo passou, mas só 9 amostras: checa, não corrige, reinicia o relógio
    assert c.maybe_correct(0.10, 30.0) is None
    c.observe(ProtectionState.SAFE, 0.20, True)
    assert c.maybe_correct(0.10, 45.0) is None
    assert c.maybe_correct(0.10, 60.0) == pytest.approx(0.15)


def test_observe_ignores_warning_blocked_and_no_face() -> None:
    c = BaselineCorrector(started_at=0.0)
    c.observe(ProtectionState.WARNING, 0.5, True)
    c.observe(ProtectionState.BLOCKED, 0.5, True)
    c.observe(ProtectionState.SAFE, 0.0, False)
    assert len(c.observed) == 0


def test_observed_window_is_bounded() -> None:
    c = _filled([0.1] * 5 + [0.3] * 20)
    assert len(c.observed) == 20
    assert c.median() == pytest.approx(0.3)


def test_zero_baseline_counts_as_full_drift() -> None:
    c = _filled([0.08] * 10)
    assert c.maybe_correct(0.0, 30.0) == pytest.approx(0.04)


def test_first_check_starts_the_clock_when_unset() -> None:
    c = BaselineCorrector()
    for _ in range(10):
        c.observe(ProtectionState.SAFE, 0.2, True)
    assert c.maybe_correct(0.1, 100.0) is None
    assert c.maybe_correct(0.1, 130.0) == pytest.approx(0.15)
