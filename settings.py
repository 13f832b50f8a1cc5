"""
全局配置：从根目录的 settings.yaml 读取，环境变量优先。
"""

from __future__ import annotations

import os
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import yaml

CONFIG_PATH = Path(__file__).with_name("settings.yaml")

# 环境变量 -> (配置段, 字段)
ENV_OVERRIDES = {
    "RABBITMQ_URL": ("queue", "broker_url"),
    "RABBITMQ_QUEUE": ("queue", "queue_name"),
    "ROBOFLOW_API_KEY": ("detection", "api_key"),
    "ROBOFLOW_MODEL": ("detection", "model"),
    "ROBOFLOW_API_URL": ("detection", "api_url"),
    "DETECTION_TIMEOUT_SECONDS": ("detection", "timeout_seconds"),
    "LOG_LEVEL": ("logging", "level"),
}


class ConfigError(Exception):
    """Required configuration is missing or invalid."""


@dataclass
class QueueSettings:
    broker_url: str = ""
    queue_name: str = ""
    prefetch_count: int = 1
    poll_interval_seconds: float = 1.0
    requeue_permanent_failures: bool = True


@dataclass
class DetectionSettings:
    api_url: str = "https://detect.roboflow.com"
    api_key: str = ""
    model: str = ""
    timeout_seconds: float = 30.0


@dataclass
class LoggingSettings:
    level: str = "INFO"


@dataclass
class Settings:
    queue: QueueSettings = field(default_factory=QueueSettings)
    detection: DetectionSettings = field(default_factory=DetectionSettings)
    logging: LoggingSettings = field(default_factory=LoggingSettings)

    def validate(self, *, require_queue: bool = True, require_detection: bool = True) -> None:
        missing: List[str] = []
        if require_queue:
            if not self.queue.broker_url:
                missing.append("queue.broker_url (RABBITMQ_URL)")
            if not self.queue.queue_name:
                missing.append("queue.queue_name (RABBITMQ_QUEUE)")
        if require_detection:
            if not self.detection.api_key:
                missing.append("detection.api_key (ROBOFLOW_API_KEY)")
            if not self.detection.model:
                missing.append("detection.model (ROBOFLOW_MODEL)")
        if missing:
            raise ConfigError("missing configuration: " + ", ".join(missing))
        if self.detection.timeout_seconds <= 0:
            raise ConfigError("detection.timeout_seconds must be > 0")


def _merge(defaults: Dict[str, Any], overrides: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    data = defaults.copy()
    # yaml 中留空的键（null）沿用默认值
    data.update({k: v for k, v in (overrides or {}).items() if v is not None})
    return data


def _coerce(current: Any, value: str) -> Any:
    if isinstance(current, bool):
        return value.strip().lower() in ("1", "true", "yes", "on")
    if isinstance(current, int):
        return int(value)
    if isinstance(current, float):
        return float(value)
    return value


def _apply_env(raw: Dict[str, Dict[str, Any]], environ: Mapping[str, str]) -> None:
    defaults = Settings()
    for env_name, (section, key) in ENV_OVERRIDES.items():
        value = environ.get(env_name)
        if value is None or value == "":
            continue
        current = getattr(getattr(defaults, section), key)
        try:
            raw.setdefault(section, {})[key] = _coerce(current, value)
        except ValueError as exc:
            raise ConfigError(f"invalid value for {env_name}: {value!r}") from exc


def load_settings(
    path: Path = CONFIG_PATH,
    environ: Optional[Mapping[str, str]] = None,
) -> Settings:
    if not path.exists():
        raise FileNotFoundError(f"配置文件 {path} 不存在")
    raw = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    if not isinstance(raw, dict):
        raise ConfigError(f"{path} must contain a mapping")
    raw = {name: dict(raw.get(name) or {}) for name in ("queue", "detection", "logging")}
    _apply_env(raw, os.environ if environ is None else environ)
    try:
        queue = QueueSettings(**_merge(asdict(QueueSettings()), raw["queue"]))
        detection = DetectionSettings(**_merge(asdict(DetectionSettings()), raw["detection"]))
        log = LoggingSettings(**_merge(asdict(LoggingSettings()), raw["logging"]))
    except TypeError as exc:
        raise ConfigError(f"unknown setting in {path}: {exc}") from exc
    return Settings(queue=queue, detection=detection, logging=log)
