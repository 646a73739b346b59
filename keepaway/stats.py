"""
Estatísticas de proteção: contadores diários e acumulados, histórico dos
últimos 30 dias e um score de "distância segura" (0-100).
"""
import json
import logging
import os
import threading
from dataclasses import asdict, dataclass
from datetime import date
from pathlib import Path
from typing import Callable, List, Optional

from .engine import NullSink

_LOGGER = logging.getLogger(__name__)

HISTORY_DAYS = 30


@dataclass
class DailyStats:
    date: str
    warnings: int = 0
    blocks: int = 0
    session_minutes: int = 0


@dataclass
class TotalStats:
    total_warnings: int = 0
    total_blocks: int = 0
    total_session_minutes: int = 0

    @property
    def formatted_session_time(self) -> str:
        return f"{self.total_session_minutes // 60}h {self.total_session_minutes % 60}m"


def _today_string() -> str:
    return date.today().isoformat()


class StatisticsRecorder:
    def __init__(self, path: Optional[Path] = None, today: Callable[[], str] = _today_string):
        self.path = path
        self._today = today
        self._lock = threading.Lock()
        self._day = DailyStats(date="")
        self._total = TotalStats()
        self._history: List[DailyStats] = []
        if path is not None and path.exists():
            self._load(path)

    def record_warning(self):
        with self._lock:
            self._roll_day()
            self._day.warnings += 1
            self._total.total_warnings += 1
            self._save()
        _LOGGER.debug("Aviso registrado: hoje=%d total=%d", self._day.warnings, self._total.total_warnings)

    def record_block(self):
        with self._lock:
            self._roll_day()
            self._day.blocks += 1
            self._total.total_blocks += 1
            self._save()
        _LOGGER.debug("Bloqueio registrado: hoje=%d total=%d", self._day.blocks, self._total.total_blocks)

    def add_session_minutes(self, minutes: int):
        if minutes <= 0:
            return
        with self._lock:
            self._roll_day()
            self._day.session_minutes += minutes
            self._total.total_session_minutes += minutes
            self._save()

    def today_stats(self) -> DailyStats:
        with self._lock:
            self._roll_day()
            return DailyStats(**asdict(self._day))

    def total_stats(self) -> TotalStats:
        return TotalStats(**asdict(self._total))

    def week_history(self) -> List[DailyStats]:
        with self._lock:
            self._roll_day()
            return [DailyStats(**asdict(d)) for d in self._history[-7:]]

    def safe_distance_score(self) -> int:
        """100 = nenhum aviso por hora; 0 = 10+ avisos por hora."""
        today = self.today_stats()
        if today.session_minutes == 0:
            return 100
        per_hour = today.warnings / (today.session_minutes / 60.0)
        return int(round(min(100.0, max(0.0, 100.0 - per_hour * 10))))

    def _roll_day(self):
        today = self._today()
        if self._day.date == today:
            return
        if self._day.date:
            # fecha o dia anterior no histórico antes de zerar
            self._history.append(self._day)
            del self._history[:-HISTORY_DAYS]
            _LOGGER.info("Novo dia (%s): estatísticas diárias zeradas", today)
        self._day = DailyStats(date=today)

    def _load(self, path: Path):
        with open(path, "r", encoding="utf-8") as fh:
            data = json.load(fh)
        if not isinstance(data, dict):
            raise ValueError(f"Formato inválido em {path}: esperado objeto JSON")
        self._day = DailyStats(**data.get("today", {"date": ""}))
        self._total = TotalStats(**data.get("total", {}))
        self._history = [DailyStats(**item) for item in data.get("history", [])][-HISTORY_DAYS:]

    def _save(self):
        if self.path is None:
            return
        payload = {
            "today": asdict(self._day),
            "total": asdict(self._total),
            "history": [asdict(d) for d in self._history],
        }
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        with open(tmp, "w", encoding="utf-8") as fh:
            json.dump(payload, fh, ensure_ascii=False, indent=2)
        os.replace(tmp, self.path)


class StatsSink(NullSink):
    """Liga os intents de registro ao gravador de estatísticas."""

    def __init__(self, recorder: StatisticsRecorder):
        self.recorder = recorder

    def record_warning_event(self) -> None:
        self.recorder.record_warning()

    def record_block_event(self) -> None:
        self.recorder.record_block()
