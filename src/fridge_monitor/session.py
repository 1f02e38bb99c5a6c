"""Connection lifecycle for the single monitored fridge peripheral."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Optional, Tuple

from .ble.decode import BatteryReading, DoorCountReading, decode
from .ble.gatt import FRIDGE_SERVICE_UUID, RESET_COUNTER_CHAR_UUID, uuid_matches
from .ble.radio import (
    Characteristic,
    CharacteristicsDiscovered,
    ConnectFailed,
    ConnectSucceeded,
    Peripheral,
    PeripheralDisconnected,
    PeripheralDiscovered,
    Radio,
    RadioStateChanged,
    ServicesDiscovered,
    ValueUpdated,
    WriteCompleted,
)
from .deriver import EventDeriver
from .events import DoorOpenEvent


logger = logging.getLogger(__name__)


class ConnectionState(Enum):
    DISCONNECTED = "disconnected"
    SCANNING = "scanning"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    FAILED = "failed"

    @property
    def status_text(self) -> str:
        return _STATUS_TEXT[self]


_STATUS_TEXT = {
    ConnectionState.DISCONNECTED: "Disconnected",
    ConnectionState.SCANNING: "Searching for Fridge Monitor...",
    ConnectionState.CONNECTING: "Connecting...",
    ConnectionState.CONNECTED: "Connected & Monitoring",
    ConnectionState.FAILED: "Connection Failed",
}

_IDLE_STATES = (ConnectionState.DISCONNECTED, ConnectionState.FAILED)


@dataclass(frozen=True)
class RetryRequested:
    """Manual request to start scanning again."""


@dataclass(frozen=True)
class MonitorSnapshot:
    """Read-only view of monitor state handed to observers."""

    state: ConnectionState
    door_open_count: int
    battery_level: Optional[int]
    events: Tuple[DoorOpenEvent, ...]
    today_count: int
    peripheral_address: Optional[str] = None
    can_reset: bool = False

    @property
    def status_text(self) -> str:
        return self.state.status_text

    def to_dict(self) -> Dict[str, Any]:
        return {
            "state": self.state.value,
            "door_open_count": self.door_open_count,
            "battery_level": self.battery_level,
            "today_count": self.today_count,
            "event_count": len(self.events),
            "peripheral": self.peripheral_address,
            "can_reset": self.can_reset,
        }


class DeviceSession:
    """State machine driving discovery, connection and subscription.

    `handle()` is the only mutator. It receives radio messages (and manual
    retries) in delivery order and issues follow-up radio requests whose
    results arrive later as further messages. There are no timeouts: a
    connect attempt stays pending until the radio reports its outcome.
    """

    def __init__(
        self,
        radio: Radio,
        deriver: EventDeriver,
        service_uuid: str = FRIDGE_SERVICE_UUID,
    ) -> None:
        self.radio = radio
        self.deriver = deriver
        self.service_uuid = service_uuid

        self.state = ConnectionState.DISCONNECTED
        self.peripheral: Optional[Peripheral] = None
        self.reset_handle: Optional[Characteristic] = None
        self.radio_powered_on = False

        self._handlers: Dict[type, Callable[[Any], None]] = {
            RadioStateChanged: self._on_radio_state,
            RetryRequested: self._on_retry,
            PeripheralDiscovered: self._on_discovered,
            ConnectSucceeded: self._on_connect_succeeded,
            ConnectFailed: self._on_connect_failed,
            PeripheralDisconnected: self._on_disconnected,
            ServicesDiscovered: self._on_services,
            CharacteristicsDiscovered: self._on_characteristics,
            ValueUpdated: self._on_value,
            WriteCompleted: self._on_write_completed,
        }

        # Callbacks
        self._on_state_change: Optional[Callable[[ConnectionState, ConnectionState], None]] = None

    def set_state_callback(self, callback: Callable[[ConnectionState, ConnectionState], None]) -> None:
        """Set callback for state transitions. Callback receives (old, new)."""
        self._on_state_change = callback

    def handle(self, message: Any) -> None:
        """Apply one message to the session."""
        handler = self._handlers.get(type(message))
        if handler is None:
            logger.debug(f"Ignoring unknown message {message!r}")
            return
        handler(message)

    def snapshot(self) -> MonitorSnapshot:
        store = self.deriver.store
        metrics = self.deriver.metrics
        return MonitorSnapshot(
            state=self.state,
            door_open_count=metrics.door_open_count,
            battery_level=metrics.battery_level,
            events=store.events,
            today_count=store.today_count(),
            peripheral_address=self.peripheral.address if self.peripheral else None,
            can_reset=self.state is ConnectionState.CONNECTED and self.reset_handle is not None,
        )

    def _is_current(self, peripheral: Peripheral) -> bool:
        return self.peripheral is not None and self.peripheral.address == peripheral.address

    def _transition(self, new_state: ConnectionState) -> None:
        old_state = self.state
        if old_state is new_state:
            return
        self.state = new_state
        logger.info(f"Session {old_state.value} -> {new_state.value}")
        if self._on_state_change:
            self._on_state_change(old_state, new_state)

    def _begin_scan(self) -> None:
        self._transition(ConnectionState.SCANNING)
        self.radio.scan(self.service_uuid)

    def _end_session(self, new_state: ConnectionState) -> None:
        """Drop every per-connection resource and move to an idle state."""
        self.peripheral = None
        self.reset_handle = None
        self.deriver.reset()
        self._transition(new_state)

    def _on_radio_state(self, message: RadioStateChanged) -> None:
        self.radio_powered_on = message.powered_on

        if message.powered_on:
            if self.state is ConnectionState.DISCONNECTED:
                self._begin_scan()
            return

        if self.state is ConnectionState.SCANNING:
            self.radio.stop_scan()
        if self.state is not ConnectionState.DISCONNECTED:
            self._end_session(ConnectionState.DISCONNECTED)

    def _on_retry(self, message: RetryRequested) -> None:
        if self.state not in _IDLE_STATES:
            logger.debug(f"Retry ignored while {self.state.value}")
            return
        if not self.radio_powered_on:
            logger.info("Retry ignored: Bluetooth radio is not available")
            return
        self._begin_scan()

    def _on_discovered(self, message: PeripheralDiscovered) -> None:
        # Only the first match is pursued
        if self.state is not ConnectionState.SCANNING:
            return

        self.radio.stop_scan()
        self.peripheral = message.peripheral
        logger.info(f"Found fridge monitor {message.peripheral.address} rssi={message.rssi}")
        self._transition(ConnectionState.CONNECTING)
        self.radio.connect(message.peripheral)

    def _on_connect_succeeded(self, message: ConnectSucceeded) -> None:
        if self.state is not ConnectionState.CONNECTING or not self._is_current(message.peripheral):
            return

        self._transition(ConnectionState.CONNECTED)
        self.radio.discover_services(message.peripheral, [self.service_uuid])

    def _on_connect_failed(self, message: ConnectFailed) -> None:
        if self.state is not ConnectionState.CONNECTING or not self._is_current(message.peripheral):
            return

        logger.warning(f"Connect to {message.peripheral.address} failed: {message.error}")
        self._end_session(ConnectionState.FAILED)

    def _on_disconnected(self, message: PeripheralDisconnected) -> None:
        if not self._is_current(message.peripheral):
            return

        self._end_session(ConnectionState.DISCONNECTED)

    def _on_services(self, message: ServicesDiscovered) -> None:
        if self.state is not ConnectionState.CONNECTED or not self._is_current(message.peripheral):
            return

        for service in message.services:
            if uuid_matches(service.uuid, self.service_uuid):
                self.radio.discover_characteristics(message.peripheral, service)

    def _on_characteristics(self, message: CharacteristicsDiscovered) -> None:
        if self.state is not ConnectionState.CONNECTED or not self._is_current(message.peripheral):
            return

        for characteristic in message.characteristics:
            if characteristic.supports("notify"):
                self.radio.subscribe(message.peripheral, characteristic)
            if characteristic.supports("read"):
                self.radio.read_value(message.peripheral, characteristic)
            if uuid_matches(characteristic.uuid, RESET_COUNTER_CHAR_UUID):
                self.reset_handle = characteristic

    def _on_value(self, message: ValueUpdated) -> None:
        # Late values from a finished session must not re-establish a baseline
        if self.state is not ConnectionState.CONNECTED or not self._is_current(message.peripheral):
            return

        reading = decode(message.uuid, message.data)
        if isinstance(reading, DoorCountReading):
            self.deriver.on_door_count(reading.count)
        elif isinstance(reading, BatteryReading):
            self.deriver.on_battery(reading.level)

    def _on_write_completed(self, message: WriteCompleted) -> None:
        if message.error:
            # Local state already reflects the optimistic update
            logger.warning(f"Device rejected write to {message.uuid}: {message.error}")
        else:
            logger.debug(f"Write to {message.uuid} acknowledged")
