import logging

import pytest

from keepaway.diag import DiagLogger


def test_reports_after_interval(clock, caplog) -> None:
    caplog.set_level(logging.INFO, logger="keepaway.diag")
    diag = DiagLogger(interval_sec=5, clock=clock)
    for _ in range(10):
        clock.advance(0.5)
        diag.tick(0.02, effective_skip=4)
    fps, avg_ms, skip = diag.last_report
    assert fps == 2.0
    assert avg_ms == pytest.approx(20.0)
    assert skip == 4
    assert "[diag] fps=2.0 avg_cycle_ms=20.00 skip=4" in caplog.text
    assert diag.frame_count == 0


def test_silent_before_interval(clock) -> None:
    diag = DiagLogger(interval_sec=5, clock=clock)
    clock.advance(1.0)
    diag.tick(0.01)
    assert diag.last_report is None
    assert diag.frame_count == 1
