"""Radio provider used by the device session, plus the bleak-backed implementation.

Every operation is fire-and-forget: results are delivered later as messages
through the callback registered with `set_message_callback`.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, FrozenSet, Iterable, Optional, Set, Tuple

from bleak import BleakClient, BleakError, BleakScanner

from .gatt import uuid_matches


logger = logging.getLogger(__name__)

# Exceptions bleak surfaces for adapter, connection and GATT failures
RADIO_ERRORS = (BleakError, OSError, asyncio.TimeoutError)


@dataclass(frozen=True)
class Peripheral:
    """A discovered peripheral. `handle` is the backend's device object."""

    address: str
    name: Optional[str] = None
    handle: Any = field(default=None, compare=False, repr=False)


@dataclass(frozen=True)
class Service:
    uuid: str
    handle: Any = field(default=None, compare=False, repr=False)


@dataclass(frozen=True)
class Characteristic:
    uuid: str
    properties: FrozenSet[str] = frozenset()
    handle: Any = field(default=None, compare=False, repr=False)

    def supports(self, prop: str) -> bool:
        return prop in self.properties


# Messages delivered by the radio

@dataclass(frozen=True)
class RadioStateChanged:
    powered_on: bool


@dataclass(frozen=True)
class PeripheralDiscovered:
    peripheral: Peripheral
    rssi: Optional[int] = None


@dataclass(frozen=True)
class ConnectSucceeded:
    peripheral: Peripheral


@dataclass(frozen=True)
class ConnectFailed:
    peripheral: Peripheral
    error: Optional[str] = None


@dataclass(frozen=True)
class PeripheralDisconnected:
    peripheral: Peripheral
    error: Optional[str] = None


@dataclass(frozen=True)
class ServicesDiscovered:
    peripheral: Peripheral
    services: Tuple[Service, ...]


@dataclass(frozen=True)
class CharacteristicsDiscovered:
    peripheral: Peripheral
    service: Service
    characteristics: Tuple[Characteristic, ...]


@dataclass(frozen=True)
class ValueUpdated:
    peripheral: Peripheral
    uuid: str
    data: bytes


@dataclass(frozen=True)
class WriteCompleted:
    """Outcome of a write as reported by the transport (informational only)."""

    peripheral: Peripheral
    uuid: str
    error: Optional[str] = None


class Radio:
    """Abstract BLE radio/session provider."""

    def __init__(self) -> None:
        self._post: Optional[Callable[[Any], None]] = None

    def set_message_callback(self, callback: Callable[[Any], None]) -> None:
        """Set callback receiving every radio message."""
        self._post = callback

    def _emit(self, message: Any) -> None:
        if self._post:
            self._post(message)

    async def start(self) -> None:
        """Begin reporting radio availability."""

    async def stop(self) -> None:
        """Release scanner and connection resources."""

    def scan(self, service_uuid: str) -> None:
        raise NotImplementedError

    def stop_scan(self) -> None:
        raise NotImplementedError

    def connect(self, peripheral: Peripheral) -> None:
        raise NotImplementedError

    def discover_services(self, peripheral: Peripheral, service_uuids: Iterable[str]) -> None:
        raise NotImplementedError

    def discover_characteristics(self, peripheral: Peripheral, service: Service) -> None:
        raise NotImplementedError

    def subscribe(self, peripheral: Peripheral, characteristic: Characteristic) -> None:
        raise NotImplementedError

    def read_value(self, peripheral: Peripheral, characteristic: Characteristic) -> None:
        raise NotImplementedError

    def write_value(
        self,
        peripheral: Peripheral,
        characteristic: Characteristic,
        data: bytes,
        response: bool = True,
    ) -> bool:
        """Issue a write. Returns True when the transport accepted the request."""
        raise NotImplementedError


class BleakRadio(Radio):
    """Radio backed by bleak's BleakScanner and BleakClient."""

    def __init__(
        self,
        adapter: str = "hci0",
        connect_timeout_sec: float = 10.0,
        power_poll_sec: float = 5.0,
    ) -> None:
        super().__init__()
        self.adapter = adapter
        self.connect_timeout_sec = connect_timeout_sec
        self.power_poll_sec = power_poll_sec

        self._scanner: Optional[BleakScanner] = None
        self._scan_lock = asyncio.Lock()
        self._client: Optional[BleakClient] = None
        self._peripheral: Optional[Peripheral] = None
        self._powered_on: Optional[bool] = None
        self._stop_requested = False
        self._power_task: Optional[asyncio.Task] = None
        self._tasks: Set[asyncio.Task] = set()

    @property
    def powered_on(self) -> bool:
        return bool(self._powered_on)

    async def start(self) -> None:
        self._stop_requested = False
        self._power_task = asyncio.create_task(self._power_loop())

    async def stop(self) -> None:
        self._stop_requested = True

        if self._power_task:
            self._power_task.cancel()
            try:
                await self._power_task
            except asyncio.CancelledError:
                pass

        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

        await self._stop_scan()

        client, self._client = self._client, None
        if client:
            try:
                if client.is_connected:
                    await client.disconnect()
            except RADIO_ERRORS as e:
                logger.warning(f"Error during disconnect: {e}")

    def scan(self, service_uuid: str) -> None:
        self._spawn(self._start_scan(service_uuid))

    def stop_scan(self) -> None:
        self._spawn(self._stop_scan())

    def connect(self, peripheral: Peripheral) -> None:
        self._spawn(self._connect(peripheral))

    def discover_services(self, peripheral: Peripheral, service_uuids: Iterable[str]) -> None:
        client = self._client_for(peripheral)
        if client is None:
            return

        wanted = list(service_uuids)
        services = tuple(
            Service(uuid=s.uuid, handle=s)
            for s in client.services
            if not wanted or any(uuid_matches(s.uuid, u) for u in wanted)
        )
        self._emit(ServicesDiscovered(peripheral, services))

    def discover_characteristics(self, peripheral: Peripheral, service: Service) -> None:
        if self._client_for(peripheral) is None or service.handle is None:
            return

        characteristics = tuple(
            Characteristic(uuid=c.uuid, properties=frozenset(c.properties), handle=c)
            for c in service.handle.characteristics
        )
        self._emit(CharacteristicsDiscovered(peripheral, service, characteristics))

    def subscribe(self, peripheral: Peripheral, characteristic: Characteristic) -> None:
        self._spawn(self._subscribe(peripheral, characteristic))

    def read_value(self, peripheral: Peripheral, characteristic: Characteristic) -> None:
        self._spawn(self._read(peripheral, characteristic))

    def write_value(
        self,
        peripheral: Peripheral,
        characteristic: Characteristic,
        data: bytes,
        response: bool = True,
    ) -> bool:
        client = self._client_for(peripheral)
        if client is None or not client.is_connected:
            return False

        self._spawn(self._write(client, peripheral, characteristic, data, response))
        return True

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def _client_for(self, peripheral: Peripheral) -> Optional[BleakClient]:
        if self._client is None or self._peripheral is None:
            return None
        if self._peripheral.address != peripheral.address:
            return None
        return self._client

    def _set_powered(self, powered_on: bool) -> None:
        if powered_on == self._powered_on:
            return
        self._powered_on = powered_on
        logger.info(f"Bluetooth adapter {self.adapter} {'available' if powered_on else 'unavailable'}")
        self._emit(RadioStateChanged(powered_on))

    async def _power_loop(self) -> None:
        """Track adapter availability.

        While no link is active the adapter is checked every poll period: an
        idle adapter is test-scanned, and a running scan is restarted, which fails
        the same way once the adapter is gone. A connected link reports
        adapter loss as a disconnect, after which checking resumes.
        """
        while not self._stop_requested:
            if self._client is None:
                self._set_powered(await self._check_adapter())
            await asyncio.sleep(self.power_poll_sec)

    async def _check_adapter(self) -> bool:
        if self._scanner is not None:
            return await self._restart_scan()
        return await self._test_adapter()

    async def _restart_scan(self) -> bool:
        async with self._scan_lock:
            scanner = self._scanner
            if scanner is None:
                return True
            try:
                await scanner.stop()
                await scanner.start()
                return True
            except RADIO_ERRORS as e:
                logger.warning(f"Scan stopped: {e}")
                self._scanner = None
                return False

    async def _test_adapter(self) -> bool:
        async with self._scan_lock:
            scanner = BleakScanner(adapter=self.adapter)
            try:
                await scanner.start()
                await scanner.stop()
                return True
            except RADIO_ERRORS as e:
                logger.debug(f"Adapter {self.adapter} unavailable: {e}")
                return False

    async def _start_scan(self, service_uuid: str) -> None:
        async with self._scan_lock:
            if self._scanner is not None:
                return

            scanner = BleakScanner(
                detection_callback=self._on_detection,
                service_uuids=[service_uuid],
                adapter=self.adapter,
            )
            try:
                await scanner.start()
            except RADIO_ERRORS as e:
                logger.warning(f"Scan could not start: {e}")
                self._set_powered(False)
                return

            self._scanner = scanner
            logger.info(f"Scanning for service {service_uuid}")

    async def _stop_scan(self) -> None:
        async with self._scan_lock:
            scanner, self._scanner = self._scanner, None
            if scanner is None:
                return
            try:
                await scanner.stop()
            except RADIO_ERRORS as e:
                logger.warning(f"Error stopping scan: {e}")

    def _on_detection(self, device, advertisement_data) -> None:
        peripheral = Peripheral(address=device.address, name=device.name, handle=device)
        self._emit(PeripheralDiscovered(peripheral, rssi=getattr(advertisement_data, "rssi", None)))

    async def _connect(self, peripheral: Peripheral) -> None:
        logger.info(f"Connecting to {peripheral.address}")

        client = BleakClient(
            peripheral.handle or peripheral.address,
            disconnected_callback=self._on_device_disconnect,
            timeout=self.connect_timeout_sec,
            adapter=self.adapter,
        )
        self._client = client
        self._peripheral = peripheral

        try:
            await client.connect()
        except RADIO_ERRORS as e:
            logger.warning(f"Connection to {peripheral.address} failed: {e}")
            if self._client is client:
                self._client = None
                self._peripheral = None
            self._emit(ConnectFailed(peripheral, str(e) or type(e).__name__))
            return

        logger.info(f"Connected to {peripheral.address}")
        self._emit(ConnectSucceeded(peripheral))

    def _on_device_disconnect(self, client: BleakClient) -> None:
        """Handle disconnection callback from bleak."""
        if client is not self._client:
            return

        peripheral = self._peripheral
        self._client = None
        self._peripheral = None
        logger.warning(f"{peripheral.address if peripheral else 'device'} disconnected")
        if peripheral:
            self._emit(PeripheralDisconnected(peripheral))

    async def _subscribe(self, peripheral: Peripheral, characteristic: Characteristic) -> None:
        client = self._client_for(peripheral)
        if client is None:
            return

        def on_notify(sender: Any, data: bytearray) -> None:
            self._emit(ValueUpdated(peripheral, characteristic.uuid, bytes(data)))

        try:
            await client.start_notify(characteristic.handle, on_notify)
            logger.debug(f"Subscribed to {characteristic.uuid}")
        except RADIO_ERRORS as e:
            logger.warning(f"Subscribe to {characteristic.uuid} failed: {e}")

    async def _read(self, peripheral: Peripheral, characteristic: Characteristic) -> None:
        client = self._client_for(peripheral)
        if client is None:
            return

        try:
            data = await client.read_gatt_char(characteristic.handle)
        except RADIO_ERRORS as e:
            logger.warning(f"Read of {characteristic.uuid} failed: {e}")
            return

        self._emit(ValueUpdated(peripheral, characteristic.uuid, bytes(data)))

    async def _write(
        self,
        client: BleakClient,
        peripheral: Peripheral,
        characteristic: Characteristic,
        data: bytes,
        response: bool,
    ) -> None:
        error: Optional[str] = None
        try:
            await client.write_gatt_char(characteristic.handle, data, response=response)
        except RADIO_ERRORS as e:
            logger.warning(f"Write to {characteristic.uuid} failed: {e}")
            error = str(e) or type(e).__name__

        self._emit(WriteCompleted(peripheral, characteristic.uuid, error))
