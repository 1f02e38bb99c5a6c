"""Door-open alert delivery and foreground tracking."""

from __future__ import annotations

import logging
import subprocess
from typing import List, Optional

from .logs import NdjsonLogger


logger = logging.getLogger(__name__)

ALERT_TITLE = "Fridge Alert!"
ALERT_BODY = "Your refrigerator door was just opened."


class Notifier:
    """Receives one call per door opening detected while in the background."""

    def notify_door_opened(self) -> None:
        raise NotImplementedError


class LogNotifier(Notifier):
    """Record alerts in the structured event log."""

    def __init__(self, event_logger: Optional[NdjsonLogger] = None) -> None:
        self.event_logger = event_logger
        self.sent = 0

    def notify_door_opened(self) -> None:
        self.sent += 1
        logger.info(f"{ALERT_TITLE} {ALERT_BODY}")
        if self.event_logger:
            self.event_logger.event("ALERT", data={"title": ALERT_TITLE, "body": ALERT_BODY})


def _fill(arg: str) -> str:
    return arg.replace("{title}", ALERT_TITLE).replace("{body}", ALERT_BODY)


class CommandNotifier(LogNotifier):
    """Log the alert and launch an external command (e.g. notify-send).

    The command is started without waiting for it to finish. Only the
    literal placeholders `{title}` and `{body}` are replaced; other braces
    are passed through untouched.
    """

    def __init__(self, command: List[str], event_logger: Optional[NdjsonLogger] = None) -> None:
        super().__init__(event_logger)
        self.command = list(command)

    def notify_door_opened(self) -> None:
        super().notify_door_opened()
        argv = [_fill(arg) for arg in self.command]
        try:
            subprocess.Popen(argv, stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL)
        except (OSError, ValueError, subprocess.SubprocessError) as e:
            logger.warning(f"Alert command {argv[0]!r} failed: {e}")


class ForegroundSignal:
    """Tracks whether the consuming application is currently active."""

    def __init__(self, active: bool = False) -> None:
        self.active = active

    def is_active(self) -> bool:
        return self.active

    def set_active(self, active: bool) -> None:
        self.active = active
