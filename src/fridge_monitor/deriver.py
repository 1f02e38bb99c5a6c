"""Turns door counter readings into discrete door-open events."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, List, Optional

from .events import DoorOpenEvent, EventLog
from .notify import Notifier


logger = logging.getLogger(__name__)

DEFAULT_BACKFILL_MAX = 100


@dataclass
class DisplayedMetrics:
    """Live values mirrored from the device."""

    door_open_count: int = 0
    battery_level: Optional[int] = None  # None until the device reports one


class EventDeriver:
    """Compare successive counter readings and record new openings.

    The baseline (`last_known_count`) is ``None`` after every (re)connect, so
    the first reading of a session only establishes it. Each later reading
    greater than the baseline records one event, however large the jump, unless
    `backfill_missed` is set, in which case one event per missed increment is
    recorded with timestamps spread since the previous reading. Jumps larger
    than `backfill_max` fall back to a single event.
    """

    def __init__(
        self,
        store: EventLog,
        notifier: Optional[Notifier] = None,
        is_foreground: Optional[Callable[[], bool]] = None,
        backfill_missed: bool = False,
        backfill_max: int = DEFAULT_BACKFILL_MAX,
    ) -> None:
        self.store = store
        self.notifier = notifier
        self.is_foreground = is_foreground or (lambda: True)
        self.backfill_missed = backfill_missed
        self.backfill_max = backfill_max

        self.metrics = DisplayedMetrics()
        self.last_known_count: Optional[int] = None
        self._last_reading_at: Optional[datetime] = None

        # Callbacks
        self._on_event: Optional[Callable[[DoorOpenEvent], None]] = None

    def set_event_callback(self, callback: Callable[[DoorOpenEvent], None]) -> None:
        """Set callback invoked for every recorded event."""
        self._on_event = callback

    def on_door_count(self, count: int) -> List[DoorOpenEvent]:
        """Apply a decoded door counter value. Returns the events recorded."""
        now = self.store.clock()
        self.metrics.door_open_count = count

        recorded: List[DoorOpenEvent] = []
        baseline = self.last_known_count
        if baseline is not None and count > baseline:
            missed = count - baseline
            if self.backfill_missed and missed <= self.backfill_max:
                recorded = self._backfill(missed, now)
            else:
                recorded = [self.store.record_open(now)]

        # Baseline is committed before any callback runs
        self.last_known_count = count
        self._last_reading_at = now

        if not recorded:
            return recorded

        for event in recorded:
            if self._on_event:
                self._on_event(event)

        if self.notifier and not self.is_foreground():
            try:
                self.notifier.notify_door_opened()
            except Exception:
                logger.exception("Door-open alert failed")

        return recorded

    def on_battery(self, level: int) -> None:
        self.metrics.battery_level = level

    def reset(self) -> None:
        """Forget the baseline and battery level when the session ends."""
        self.last_known_count = None
        self._last_reading_at = None
        self.metrics.battery_level = None

    def _backfill(self, missed: int, now: datetime) -> List[DoorOpenEvent]:
        start = self._last_reading_at or now
        step = (now - start) / missed
        # Oldest first so the newest lands at the head of the log
        return [self.store.record_open(start + step * (i + 1)) for i in range(missed)]
