import json
import logging
import os
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any

_LOGGER = logging.getLogger(__name__)


class ConfigError(ValueError):
    """Configuração inválida detectada antes de iniciar a sessão."""


@dataclass
class Config:
    # captura
    fps: int = 30
    device_index: int = 0
    mirror: bool = True  # espelhar câmera melhora UX, pode ser desligado
    buffer_size: int | None = 1  # 1 reduz latência; None mantém padrão do backend
    frame_width: int | None = 640
    frame_height: int | None = 480

    # detecção
    detection_threshold: float = 0.5  # piso de confiança aplicado antes do núcleo

    # amostragem adaptativa
    frame_skip_count: int = 2
    adaptive_sampling: bool = True
    stability_threshold: float = 0.05
    stable_count_for_slowdown: int = 10

    # suavização
    smoothing_window: int = 5

    # proteção
    threshold_factor: float = 2.0  # área dobra ~ rosto 30% mais perto
    hysteresis_gap: float = 0.3
    warning_time_seconds: int = 3
    haptics_enabled: bool = True

    # correção de baseline
    correction_interval_sec: float = 30.0
    correction_min_samples: int = 10
    correction_max_samples: int = 20
    correction_max_drift: float = 0.5

    # sessão
    max_retries: int = 3
    retry_delay_sec: float = 5.0
    poll_interval_sec: float = 1.0

    # servidor de status (REST/WS)
    enable_server: bool = False
    http_port: int = 8000
    ws_port: int = 8765
    broadcast_hz: float = 5.0

    # diagnósticos
    log_diag: bool = True
    log_interval_sec: int = 5
    log_level: str = "INFO"

    def validate(self) -> "Config":
        if self.threshold_factor <= 1.0:
            raise ConfigError(f"threshold_factor deve ser > 1 (recebido {self.threshold_factor})")
        if self.hysteresis_gap < 0:
            raise ConfigError(f"hysteresis_gap não pode ser negativo (recebido {self.hysteresis_gap})")
        if self.warning_time_seconds < 0:
            raise ConfigError("warning_time_seconds não pode ser negativo")
        if self.frame_skip_count < 1:
            raise ConfigError("frame_skip_count deve ser >= 1")
        if self.smoothing_window < 1:
            raise ConfigError("smoothing_window deve ser >= 1")
        if not 0.0 <= self.detection_threshold <= 1.0:
            raise ConfigError("detection_threshold fora de [0, 1]")
        if self.correction_min_samples > self.correction_max_samples:
            raise ConfigError("correction_min_samples maior que a janela do corretor")
        return self


def apply_mapping(target: Any, data: dict[str, Any]) -> None:
    known = {f.name: f for f in fields(target)}
    for key, value in data.items():
        if key not in known:
            _LOGGER.debug("Chave de configuração ignorada: %s", key)
            continue
        current = getattr(target, key)
        if isinstance(current, bool):
            value = _coerce_bool(value, current)
        setattr(target, key, value)


def _coerce_bool(value: Any, default: bool) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return bool(value)
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"1", "true", "yes", "on"}:
            return True
        if lowered in {"0", "false", "no", "off"}:
            return False
    return default


def get_config_path() -> Path | None:
    env_path = os.environ.get("KEEPAWAY_CONFIG", "").strip()
    return Path(env_path).expanduser() if env_path else None


def load_config(path: Path | None = None) -> Config:
    """
    Lê o JSON de configuração (se houver) e aplica overrides de ambiente.
    Arquivo ausente é criado com os valores padrão.
    """
    cfg = Config()
    config_path = path if path is not None else get_config_path()

    if config_path is not None:
        if not config_path.exists():
            config_path.parent.mkdir(parents=True, exist_ok=True)
            with open(config_path, "w", encoding="utf-8") as fh:
                json.dump(asdict(cfg), fh, ensure_ascii=False, indent=4)
            _LOGGER.info("Configuração padrão criada em %s", config_path)
        else:
            with open(config_path, "r", encoding="utf-8") as fh:
                loaded = json.load(fh)
            if not isinstance(loaded, dict):
                raise ConfigError(f"Formato inválido em {config_path}: esperado objeto JSON")
            apply_mapping(cfg, loaded)

    # permite override via env: KEEPAWAY_DEVICE_INDEX e KEEPAWAY_LOG_LEVEL
    env_index = os.getenv("KEEPAWAY_DEVICE_INDEX")
    if env_index:
        try:
            cfg.device_index = int(env_index)
        except ValueError:
            _LOGGER.warning("KEEPAWAY_DEVICE_INDEX inválido: %s", env_index)
    env_level = os.getenv("KEEPAWAY_LOG_LEVEL")
    if env_level:
        cfg.log_level = env_level.upper()

    return cfg.validate()
