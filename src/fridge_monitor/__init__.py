"""Fridge Monitor - BLE refrigerator door-open tracking."""

__version__ = "0.1.0"

from .config import AppConfig, load_config
from .logs import NdjsonLogger
from .monitor import Monitor, run_monitor
from .session import ConnectionState, MonitorSnapshot

__all__ = [
    "AppConfig",
    "ConnectionState",
    "Monitor",
    "MonitorSnapshot",
    "NdjsonLogger",
    "load_config",
    "run_monitor",
]
