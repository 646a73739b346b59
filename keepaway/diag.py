import logging
import time

_LOGGER = logging.getLogger(__name__)


class DiagLogger:
    """
    Registra FPS, tempo médio por ciclo e skip efetivo para ajudar a
    detectar gargalos e conferir a economia do modo adaptativo.
    """
    def __init__(self, interval_sec=5, clock=time.monotonic):
        self.interval = interval_sec
        self.clock = clock
        self.last = clock()
        self.frame_count = 0
        self.cycle_sum = 0.0
        self.last_report = None

    def tick(self, cycle_s: float, effective_skip: int = 1):
        self.frame_count += 1
        self.cycle_sum += cycle_s
        now = self.clock()
        if (now - self.last) >= self.interval:
            fps = self.frame_count / (now - self.last)
            avg_ms = (self.cycle_sum / max(1, self.frame_count)) * 1000
            self.last_report = (fps, avg_ms, effective_skip)
            _LOGGER.info("[diag] fps=%.1f avg_cycle_ms=%.2f skip=%d", fps, avg_ms, effective_skip)
            self.last = now
            self.frame_count = 0
            self.cycle_sum = 0.0
