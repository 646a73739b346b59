import argparse
import logging
import sys
import threading
import time
from datetime import datetime
from pathlib import Path
from typing import List, Optional

import cv2

from .baseline import CalibrationError, calibrate_baseline
from .config import Config, load_config
from .diag import DiagLogger
from .engine import CompositeSink, EngineResult, NullSink, ProximityEngine
from .server import StatusServer
from .session import ProtectionSession, SourceError
from .settings import SettingsSink, SettingsStore, apply_settings, is_within_schedule
from .stats import StatisticsRecorder, StatsSink
from .video import CameraObservationSource
from .viz import AreaHistory, draw_block_overlay, draw_status

WINDOW = "KeepAway"
CALIBRATION_COUNTDOWN_SEC = 5
CALIBRATION_DURATION_SEC = 10
CALIBRATION_TARGET_SAMPLES = 15


def _init_logging(level: str = "INFO"):
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(message)s",
        handlers=[
            logging.StreamHandler(),
            logging.FileHandler("keepaway.log", encoding="utf-8"),
        ],
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="keepaway", description="Screen distance protection via webcam")
    parser.add_argument("--config", type=Path, default=None, help="JSON de configuração técnica")
    parser.add_argument("--settings", type=Path, default=Path("settings.json"), help="preferências do usuário")
    parser.add_argument("--stats", type=Path, default=Path("stats.json"), help="arquivo de estatísticas")
    parser.add_argument("--calibrate", action="store_true", help="calibra o baseline e sai")
    parser.add_argument("--reset-calibration", action="store_true", help="apaga o baseline salvo e sai")
    parser.add_argument("--no-window", action="store_true", help="roda sem janela (só logs)")
    parser.add_argument("--log-level", default=None, help="DEBUG, INFO, WARNING...")
    return parser


def _bell():
    sys.stdout.write("\a")
    sys.stdout.flush()


class WindowSink(NullSink):
    """Overlay e feedback para a janela OpenCV; estado lido pelo loop de UI."""

    def __init__(self, sound_enabled: bool = False):
        self.sound_enabled = sound_enabled
        self.blocked = False
        self.message = ""
        self._lock = threading.Lock()

    def show_overlay(self) -> None:
        with self._lock:
            self.blocked = True
        logging.warning("Overlay de bloqueio exibido")
        if self.sound_enabled:
            _bell()

    def hide_overlay(self) -> None:
        with self._lock:
            self.blocked = False
        logging.info("Overlay de bloqueio removido")

    def trigger_haptic_feedback(self) -> None:
        # desktop não vibra
        logging.info("Feedback háptico solicitado")

    def update_status_message(self, text: str) -> None:
        with self._lock:
            self.message = text
        logging.info("Status: %s", text)

    def snapshot(self):
        with self._lock:
            return self.blocked, self.message


def run_calibration(cfg: Config, store: SettingsStore, show_window: bool = True) -> Optional[float]:
    """Contagem regressiva, coleta de amostras brutas e mediana como baseline."""
    try:
        source = CameraObservationSource(cfg)
    except SourceError as err:
        logging.error("Calibração impossível: %s", err)
        return None

    samples: List[float] = []
    try:
        t0 = time.monotonic()
        while time.monotonic() - t0 < CALIBRATION_COUNTDOWN_SEC:
            remaining = CALIBRATION_COUNTDOWN_SEC - int(time.monotonic() - t0)
            frame = source.slot.take(0.5)
            if frame is not None and show_window:
                cv2.putText(frame, f"Get ready! Calibration starts in {remaining}s", (20, 40),
                            cv2.FONT_HERSHEY_SIMPLEX, 0.8, (0, 200, 255), 2)
                cv2.imshow(WINDOW, frame)
                cv2.waitKey(1)

        logging.info("Calibrando: mantenha a distância confortável de uso")
        t1 = time.monotonic()
        while time.monotonic() - t1 < CALIBRATION_DURATION_SEC and len(samples) < CALIBRATION_TARGET_SAMPLES:
            frame = source.slot.take(0.5)
            if frame is None:
                continue
            obs = source.processor.observe(frame)
            if obs.face_detected and obs.normalized_area > 0:
                samples.append(obs.normalized_area)
                logging.info("Amostra %d/%d (área: %.4f)", len(samples), CALIBRATION_TARGET_SAMPLES,
                             obs.normalized_area)
            if show_window:
                cv2.putText(frame, f"Calibrating... {len(samples)}/{CALIBRATION_TARGET_SAMPLES}", (20, 40),
                            cv2.FONT_HERSHEY_SIMPLEX, 0.8, (0, 200, 0), 2)
                cv2.imshow(WINDOW, frame)
                cv2.waitKey(1)
    finally:
        source.close()
        if show_window:
            cv2.destroyAllWindows()

    try:
        result = calibrate_baseline(samples)
    except CalibrationError as err:
        logging.error("%s", err)
        return None
    store.persist_baseline(result.baseline)
    return result.baseline


def run_protection(cfg: Config, store: SettingsStore, recorder: StatisticsRecorder, show_window: bool = True):
    settings = store.load()
    apply_settings(cfg, settings)
    window = WindowSink(settings.sound_enabled)
    sink = CompositeSink(window, StatsSink(recorder), SettingsSink(store))
    engine = ProximityEngine.from_config(cfg, settings.baseline_area, sink)

    server = StatusServer(cfg.http_port, cfg.ws_port, cfg.broadcast_hz) if cfg.enable_server else None
    diag = DiagLogger(cfg.log_interval_sec) if cfg.log_diag else None
    history = AreaHistory(seconds=30)
    sources: List[CameraObservationSource] = []
    latest: dict = {"result": None}
    t0 = time.monotonic()

    def open_source():
        src = CameraObservationSource(cfg)
        sources.append(src)
        return src

    def on_result(result: EngineResult):
        latest["result"] = result
        if result.observation is not None:
            history.add(time.monotonic() - t0, result.smoothed_area)
        if server:
            server.publish(result, engine.store.baseline, engine.status)

    session = ProtectionSession(
        engine, open_source,
        max_retries=cfg.max_retries,
        retry_delay_s=cfg.retry_delay_sec,
        poll_interval_s=cfg.poll_interval_sec,
        stats=recorder,
        on_result=on_result,
        diag=diag,
    )
    stop = threading.Event()
    worker = threading.Thread(target=session.run, args=(stop,), name="keepaway-session", daemon=True)

    if server:
        server.start()
    worker.start()
    try:
        while worker.is_alive():
            if not show_window:
                worker.join(timeout=0.5)
                continue
            frame = sources[-1].last_frame if sources else None
            if frame is None:
                time.sleep(0.05)
                continue
            blocked, message = window.snapshot()
            if blocked:
                frame = draw_block_overlay(frame)
            else:
                result = latest["result"]
                bbox = result.observation.bbox if result and result.observation else None
                frame = draw_status(
                    frame.copy(), engine.state, engine.smoothed_area, engine.store.baseline,
                    engine.thresholds, bbox, engine.sampler.effective_skip,
                    time.monotonic() - t0, message, history,
                )
            cv2.imshow(WINDOW, frame)
            key = cv2.waitKey(30) & 0xFF
            if key == ord("q"):
                logging.info("Encerrado pelo usuário.")
                break
    except KeyboardInterrupt:
        logging.info("Encerrado pelo usuário.")
    finally:
        stop.set()
        worker.join(timeout=5.0)
        if server:
            server.stop()
        if show_window:
            cv2.destroyAllWindows()
    if session.fallback_mode:
        return 2
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    cfg = load_config(args.config)
    _init_logging(args.log_level or cfg.log_level)
    store = SettingsStore(args.settings)
    show_window = not args.no_window

    if args.reset_calibration:
        store.clear_calibration()
        logging.info("Calibração apagada em %s", args.settings)
        return 0

    if args.calibrate:
        baseline = run_calibration(cfg, store, show_window)
        return 0 if baseline is not None else 1

    settings = store.load()
    if not settings.is_calibrated or settings.baseline_area <= 0:
        logging.error("Sem calibração salva. Rode com --calibrate primeiro.")
        return 1
    if settings.scheduled_enabled and not is_within_schedule(settings, datetime.now().hour):
        logging.info("Fora do horário agendado (%02dh-%02dh); proteção não iniciada.",
                     settings.schedule_start_hour, settings.schedule_end_hour)
        return 0

    recorder = StatisticsRecorder(args.stats)
    code = run_protection(cfg, store, recorder, show_window)
    today = recorder.today_stats()
    logging.info("Hoje: %d avisos, %d bloqueios, score de distância segura %d",
                 today.warnings, today.blocks, recorder.safe_distance_score())
    return code


if __name__ == "__main__":
    sys.exit(main())
