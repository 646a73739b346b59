"""
Dono da sessão de proteção: consome observações uma a uma, faz o tick do
timer de aviso quando a câmera atrasa e trata falhas da fonte com
retry/backoff até cair em modo limitado.
"""
import logging
import queue
import threading
import time
from typing import Callable, Optional, Protocol, Union

from .engine import ProximityEngine
from .features import Observation

_LOGGER = logging.getLogger(__name__)

STATUS_RETRYING = "Camera issue - retrying ({attempt}/{limit})"
STATUS_FALLBACK = "Camera unavailable - protection limited"


class SourceError(RuntimeError):
    """Falha da fonte de observações (câmera indisponível, leitura falhou)."""


class ObservationSource(Protocol):
    def next(self, timeout: float) -> Optional[Union[Observation, Callable[[], Observation]]]:
        ...

    def close(self) -> None:
        ...


class FrameSlot:
    """
    Canal de capacidade 1 entre produtor e pipeline. Frame novo com o slot
    ocupado é descartado na origem: staleness limitada, nunca fila crescente.
    """

    def __init__(self):
        self._q: queue.Queue = queue.Queue(maxsize=1)
        self.dropped = 0

    def offer(self, item) -> bool:
        try:
            self._q.put_nowait(item)
            return True
        except queue.Full:
            self.dropped += 1
            return False

    def take(self, timeout: Optional[float] = None):
        try:
            return self._q.get(timeout=timeout)
        except queue.Empty:
            return None

    def clear(self):
        try:
            while True:
                self._q.get_nowait()
        except queue.Empty:
            pass


class ProtectionSession:
    def __init__(
        self,
        engine: ProximityEngine,
        source_factory: Callable[[], ObservationSource],
        *,
        max_retries: int = 3,
        retry_delay_s: float = 5.0,
        poll_interval_s: float = 1.0,
        stats=None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
        on_result: Optional[Callable] = None,
        diag=None,
    ):
        self.engine = engine
        self.source_factory = source_factory
        self.max_retries = max_retries
        self.retry_delay_s = retry_delay_s
        self.poll_interval_s = poll_interval_s
        self.stats = stats
        self.sleep = sleep
        self.clock = clock
        self.on_result = on_result
        self.diag = diag
        self.retry_count = 0
        self.fallback_mode = False
        self.started_at: Optional[float] = None

    def run(self, stop_event: threading.Event):
        self.started_at = self.clock()
        self.retry_count = 0
        self.fallback_mode = False
        source: Optional[ObservationSource] = None
        _LOGGER.info("Sessão de proteção iniciada (baseline=%.4f)", self.engine.profile.baseline_area)
        self.engine.notify("Monitoring face distance")
        try:
            while not stop_event.is_set():
                if source is None:
                    source = self._open_source()
                    if source is None:
                        if self.fallback_mode:
                            break
                        continue
                try:
                    obs = source.next(self.poll_interval_s)
                    result = None
                    if obs is not None:
                        t0 = time.perf_counter()
                        result = self.engine.process(obs)
                        self.retry_count = 0
                        if result is not None and self.diag is not None:
                            # só o ciclo que rodou detecção; espera no slot fica de fora
                            self.diag.tick(time.perf_counter() - t0, self.engine.sampler.effective_skip)
                    if result is None:
                        # frame atrasado ou descartado: o timer de aviso ainda precisa andar
                        result = self.engine.poll()
                except SourceError as err:
                    _LOGGER.error("Erro na detecção facial: %s", err)
                    self._close(source)
                    source = None
                    if not self._schedule_retry():
                        break
                    continue

                if result is not None and self.on_result is not None:
                    self.on_result(result)
        finally:
            self._close(source)
            self.engine.release()
            self._report_minutes()
            _LOGGER.info("Sessão de proteção encerrada")

    def _open_source(self) -> Optional[ObservationSource]:
        try:
            return self.source_factory()
        except SourceError as err:
            _LOGGER.error("Não consegui abrir a fonte de observações: %s", err)
            self._schedule_retry()
            return None

    def _schedule_retry(self) -> bool:
        if self.retry_count < self.max_retries and not self.fallback_mode:
            self.retry_count += 1
            _LOGGER.warning("Tentando novamente a detecção facial (%d/%d)", self.retry_count, self.max_retries)
            self.engine.notify(
                STATUS_RETRYING.format(attempt=self.retry_count, limit=self.max_retries)
            )
            self.sleep(self.retry_delay_s)
            return True
        _LOGGER.error("Entrando em modo limitado: câmera indisponível")
        self.fallback_mode = True
        self.retry_count = 0
        self.engine.notify(STATUS_FALLBACK)
        return False

    def _close(self, source: Optional[ObservationSource]):
        if source is None:
            return
        try:
            source.close()
        except Exception:  # noqa: BLE001
            _LOGGER.exception("Falha ao fechar a fonte de observações")

    def _report_minutes(self):
        if self.stats is None or self.started_at is None:
            return
        minutes = int((self.clock() - self.started_at) // 60)
        if minutes > 0:
            self.stats.add_session_minutes(minutes)
