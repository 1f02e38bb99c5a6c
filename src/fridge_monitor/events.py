"""In-memory log of door-open events."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, List, Optional, Tuple


@dataclass(frozen=True)
class DoorOpenEvent:
    """A single recorded door opening."""

    timestamp: datetime
    id: uuid.UUID = field(default_factory=uuid.uuid4)

    def to_dict(self) -> dict:
        """Convert event to dictionary for logging."""
        return {
            "id": str(self.id),
            "timestamp": self.timestamp.isoformat(),
        }


class EventLog:
    """Ordered event store, most recent first.

    Events live for the lifetime of the process only. "Today" is the local
    calendar date reported by `clock`, evaluated on every read.
    """

    def __init__(self, clock: Optional[Callable[[], datetime]] = None) -> None:
        self.clock = clock or datetime.now
        # Stored oldest-first so appends stay O(1); exposed newest-first.
        self._events: List[DoorOpenEvent] = []

    def append(self, event: DoorOpenEvent) -> None:
        """Insert an event at the head of the log."""
        self._events.append(event)

    def record_open(self, timestamp: Optional[datetime] = None) -> DoorOpenEvent:
        """Create and append a new event stamped `timestamp` (default: now)."""
        event = DoorOpenEvent(timestamp=timestamp or self.clock())
        self.append(event)
        return event

    def clear_today(self) -> int:
        """Remove every event from the current local date. Returns the number removed."""
        today = self.clock().date()
        kept = [e for e in self._events if e.timestamp.date() != today]
        removed = len(self._events) - len(kept)
        self._events = kept
        return removed

    def today_count(self) -> int:
        today = self.clock().date()
        return sum(1 for e in self._events if e.timestamp.date() == today)

    @property
    def events(self) -> Tuple[DoorOpenEvent, ...]:
        """Snapshot of stored events, most recent first."""
        return tuple(reversed(self._events))

    def __len__(self) -> int:
        return len(self._events)
