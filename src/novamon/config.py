"""Settings schema and load/save helpers."""

import json
import logging
import os
import platform
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

CONFIG_VERSION = 1


@dataclass
class MonitorConfig:
    poll_rate: float = 2.0
    workers: int = 4
    smart_ttl: float = 60.0
    smartctl_path: str = "smartctl"
    smartctl_timeout: float = 10.0
    sensors_interval: float = 2.0
    enable_nvml: bool = True
    sysfs_root: str = "/sys"


@dataclass
class LoggingConfig:
    level: str = "INFO"
    keep_files: int = 7
    console: bool = False


@dataclass
class AppConfig:
    config_version: int = CONFIG_VERSION
    monitor: MonitorConfig = field(default_factory=MonitorConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def config_root() -> Path:
    system = platform.system()
    if system == "Windows":
        base = Path(os.environ.get("APPDATA", Path.home() / "AppData" / "Roaming"))
        return base / "novamon"
    if system == "Darwin":
        return Path.home() / "Library" / "Application Support" / "novamon"
    base = os.environ.get("XDG_CONFIG_HOME")
    return (Path(base) if base else Path.home() / ".config") / "novamon"


def config_path() -> Path:
    return config_root() / "config.json"


def _merge(dataclass_type, raw: Any):
    defaults = dataclass_type()
    if not isinstance(raw, dict):
        return defaults
    for k, v in raw.items():
        if hasattr(defaults, k):
            setattr(defaults, k, v)
    return defaults


def _normalize_monitor(cfg: AppConfig) -> None:
    m = cfg.monitor
    m.poll_rate = max(0.1, float(m.poll_rate))
    m.workers = max(1, min(32, int(m.workers)))
    m.smart_ttl = max(0.0, float(m.smart_ttl))
    m.smartctl_timeout = max(1.0, float(m.smartctl_timeout))
    m.sensors_interval = max(0.0, float(m.sensors_interval))
    m.enable_nvml = bool(m.enable_nvml)
    m.smartctl_path = str(m.smartctl_path) if m.smartctl_path else "smartctl"
    m.sysfs_root = str(m.sysfs_root) if m.sysfs_root else "/sys"


def _normalize_logging(cfg: AppConfig) -> None:
    level = str(cfg.logging.level).upper()
    if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
        level = "INFO"
    cfg.logging.level = level
    cfg.logging.keep_files = max(1, int(cfg.logging.keep_files))
    cfg.logging.console = bool(cfg.logging.console)


def load_config(path: Path | None = None) -> AppConfig:
    path = path or config_path()
    if not path.exists():
        return AppConfig()

    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        logger.warning("ignoring unreadable config %s: %s", path, exc)
        return AppConfig()
    if not isinstance(raw, dict):
        return AppConfig()

    cfg = AppConfig(
        config_version=CONFIG_VERSION,
        monitor=_merge(MonitorConfig, raw.get("monitor", {})),
        logging=_merge(LoggingConfig, raw.get("logging", {})),
    )
    try:
        _normalize_monitor(cfg)
        _normalize_logging(cfg)
    except (TypeError, ValueError) as exc:
        logger.warning("invalid values in config %s: %s", path, exc)
        return AppConfig()
    return cfg


def save_config(cfg: AppConfig, path: Path | None = None) -> Path:
    cfg.config_version = CONFIG_VERSION
    path = path or config_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(asdict(cfg), indent=2, sort_keys=True), encoding="utf-8")
    return path
