"""Configuration management for the fridge monitor."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, List

import yaml


@dataclass
class RadioConfig:
    """Bluetooth adapter settings."""

    adapter: str = "hci0"
    connect_timeout_sec: float = 10.0  # platform-level bleak connect timeout
    power_poll_sec: float = 5.0


@dataclass
class DeriverConfig:
    """Door event derivation options."""

    # Record one event per missed increment instead of one per reading
    backfill_missed: bool = False
    # Larger jumps are recorded as a single event
    backfill_max: int = 100


@dataclass
class NotificationConfig:
    """Door-open alert settings."""

    enabled: bool = True
    foreground: bool = False  # treat the monitor as the active application
    command: List[str] = field(default_factory=list)


@dataclass
class MonitorConfig:
    status_interval_sec: float = 30.0


@dataclass
class LoggingConfig:
    """Configuration for structured event logs."""

    dir: str = "./logs"
    file_prefix: str = "fridge"
    mode: str = "regular"  # regular or verbose
    debug_dir: str = ""
    verbose_whitelist: List[str] = field(default_factory=list)


@dataclass
class AppConfig:
    """Main application configuration."""

    radio: RadioConfig = field(default_factory=RadioConfig)
    deriver: DeriverConfig = field(default_factory=DeriverConfig)
    notifications: NotificationConfig = field(default_factory=NotificationConfig)
    monitor: MonitorConfig = field(default_factory=MonitorConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


_SECTIONS = {
    "radio": RadioConfig,
    "deriver": DeriverConfig,
    "notifications": NotificationConfig,
    "monitor": MonitorConfig,
    "logging": LoggingConfig,
}


def load_config(config_path: str) -> AppConfig:
    """Load configuration from YAML file with environment variable support."""
    config_file = Path(config_path)

    if not config_file.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with config_file.open("r", encoding="utf-8") as f:
        raw_config = yaml.safe_load(f)

    if raw_config is None:
        raw_config = {}
    if not isinstance(raw_config, dict):
        raise ValueError(f"Invalid configuration file: {config_path}")

    _substitute_env_vars(raw_config)

    config = AppConfig()
    for section, section_cls in _SECTIONS.items():
        data = raw_config.get(section)
        if data is None:
            continue
        if not isinstance(data, dict):
            raise ValueError(f"Section '{section}' must be a mapping")
        try:
            setattr(config, section, section_cls(**data))
        except TypeError as e:
            raise ValueError(f"Invalid '{section}' configuration: {e}") from e

    if isinstance(config.notifications.command, str):
        config.notifications.command = config.notifications.command.split()

    return config


def _substitute_env_vars(data: Any) -> None:
    """Recursively substitute ${VAR} values from the environment."""
    if isinstance(data, dict):
        for key, value in data.items():
            if isinstance(value, str) and value.startswith("${") and value.endswith("}"):
                data[key] = os.getenv(value[2:-1], value)
            else:
                _substitute_env_vars(value)
    elif isinstance(data, list):
        for i, item in enumerate(data):
            if isinstance(item, str) and item.startswith("${") and item.endswith("}"):
                data[i] = os.getenv(item[2:-1], item)
            else:
                _substitute_env_vars(item)


def validate_config(config: AppConfig) -> List[str]:
    """Validate configuration and return list of validation errors."""
    errors = []

    if not config.radio.adapter:
        errors.append("radio.adapter is required")
    if config.radio.connect_timeout_sec <= 0:
        errors.append("radio.connect_timeout_sec must be positive")
    if config.radio.power_poll_sec <= 0:
        errors.append("radio.power_poll_sec must be positive")
    if config.deriver.backfill_max < 1:
        errors.append("deriver.backfill_max must be at least 1")
    if config.monitor.status_interval_sec <= 0:
        errors.append("monitor.status_interval_sec must be positive")
    if config.logging.mode not in ("regular", "verbose"):
        errors.append("logging.mode must be 'regular' or 'verbose'")

    for path_name, path_str in [
        ("logging.dir", config.logging.dir),
        ("logging.debug_dir", config.logging.debug_dir),
    ]:
        if not path_str:
            continue
        try:
            Path(path_str).mkdir(parents=True, exist_ok=True)
        except OSError as e:
            errors.append(f"Cannot create directory {path_name}: {path_str} - {e}")

    return errors
