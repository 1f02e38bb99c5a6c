"""Commands sent to the fridge monitor peripheral."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Optional

from .ble.gatt import RESET_COMMAND
from .session import ConnectionState, DeviceSession


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResetRequested:
    """Request to reset the device counter."""


class CommandDispatcher:
    """Issues device commands and applies their optimistic local effects."""

    def __init__(self, session: DeviceSession) -> None:
        self.session = session

        # Callbacks
        self._on_reset: Optional[Callable[[int], None]] = None

    def set_reset_callback(self, callback: Callable[[int], None]) -> None:
        """Set callback for applied resets. Callback receives the number of events cleared."""
        self._on_reset = callback

    def send_reset(self) -> bool:
        """Write the reset trigger and clear today's local state.

        Fire-and-forget: local state is updated as soon as the transport
        accepts the write, and is never rolled back if the device does not
        actually reset. Returns False (and changes nothing) when there is no
        connected session with a resolved reset characteristic.
        """
        session = self.session
        if (
            session.state is not ConnectionState.CONNECTED
            or session.peripheral is None
            or session.reset_handle is None
        ):
            logger.debug("Reset ignored: no connected session with a reset characteristic")
            return False

        accepted = session.radio.write_value(
            session.peripheral, session.reset_handle, RESET_COMMAND, response=True
        )
        if not accepted:
            logger.warning("Reset write was not accepted by the transport")
            return False

        session.deriver.metrics.door_open_count = 0
        cleared = session.deriver.store.clear_today()
        logger.info(f"Reset sent, cleared {cleared} event(s) from today")

        if self._on_reset:
            self._on_reset(cleared)
        return True
