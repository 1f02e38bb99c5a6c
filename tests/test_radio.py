"""Tests for the bleak-backed radio with BleakClient/BleakScanner mocked out."""

import asyncio
from unittest.mock import AsyncMock, Mock, patch

from bleak import BleakError

from fridge_monitor.ble.gatt import DOOR_COUNT_CHAR_UUID, FRIDGE_SERVICE_UUID, RESET_COUNTER_CHAR_UUID
from fridge_monitor.ble.radio import (
    BleakRadio,
    Characteristic,
    CharacteristicsDiscovered,
    ConnectFailed,
    ConnectSucceeded,
    PeripheralDisconnected,
    PeripheralDiscovered,
    RadioStateChanged,
    Service,
    ServicesDiscovered,
    ValueUpdated,
    WriteCompleted,
)

from fakes import FRIDGE, wait_until


async def settle(radio):
    while radio._tasks:
        await asyncio.gather(*list(radio._tasks), return_exceptions=True)


def make_client():
    client = Mock()
    client.connect = AsyncMock()
    client.disconnect = AsyncMock()
    client.start_notify = AsyncMock()
    client.read_gatt_char = AsyncMock()
    client.write_gatt_char = AsyncMock()
    client.is_connected = True
    return client


class TestBleakRadio:

    def setup_method(self):
        self.radio = BleakRadio(adapter="hci0", connect_timeout_sec=12.0)
        self.messages = []
        self.radio.set_message_callback(self.messages.append)
        self.client = make_client()
        self.client_cls = Mock(return_value=self.client)
        self.patcher = patch("fridge_monitor.ble.radio.BleakClient", self.client_cls)
        self.patcher.start()

    def teardown_method(self):
        self.patcher.stop()

    def connect(self):
        async def run():
            self.radio.connect(FRIDGE)
            await settle(self.radio)

        asyncio.run(run())

    def test_connect_success(self):
        self.connect()

        assert self.messages == [ConnectSucceeded(FRIDGE)]
        self.client_cls.assert_called_once_with(
            FRIDGE.address,
            disconnected_callback=self.radio._on_device_disconnect,
            timeout=12.0,
            adapter="hci0",
        )

    def test_connect_failure(self):
        self.client.connect.side_effect = BleakError("device not found")

        self.connect()

        assert self.messages == [ConnectFailed(FRIDGE, "device not found")]
        assert self.radio._client is None

    def test_disconnect_callback(self):
        self.connect()

        self.radio._on_device_disconnect(Mock())
        assert self.messages == [ConnectSucceeded(FRIDGE)]

        self.radio._on_device_disconnect(self.client)
        assert self.messages[-1] == PeripheralDisconnected(FRIDGE)
        assert self.radio._client is None

    def test_adapter_loss_while_connected_reported_after_disconnect(self):
        self.radio.power_poll_sec = 0.01
        scanner = Mock(start=AsyncMock(), stop=AsyncMock())

        async def run():
            with patch("fridge_monitor.ble.radio.BleakScanner", Mock(return_value=scanner)):
                await self.radio.start()
                await wait_until(lambda: self.radio.powered_on)
                self.radio.connect(FRIDGE)
                await settle(self.radio)

                # No adapter checks while the link is up
                checks = scanner.start.await_count
                await asyncio.sleep(0.05)
                assert scanner.start.await_count == checks

                scanner.start.side_effect = BleakError("adapter off")
                self.radio._on_device_disconnect(self.client)
                await wait_until(lambda: not self.radio.powered_on)

                scanner.start.side_effect = None
                await wait_until(lambda: self.radio.powered_on)
                await self.radio.stop()

        asyncio.run(run())

        assert self.messages == [
            RadioStateChanged(True),
            ConnectSucceeded(FRIDGE),
            PeripheralDisconnected(FRIDGE),
            RadioStateChanged(False),
            RadioStateChanged(True),
        ]

    def test_discover_services_filters_by_uuid(self):
        self.connect()
        self.client.services = [
            Mock(uuid="0000180f-0000-1000-8000-00805f9b34fb"),
            Mock(uuid=FRIDGE_SERVICE_UUID),
        ]

        self.radio.discover_services(FRIDGE, [FRIDGE_SERVICE_UUID])

        assert self.messages[-1] == ServicesDiscovered(FRIDGE, (Service(FRIDGE_SERVICE_UUID),))

    def test_discover_characteristics(self):
        self.connect()
        service = Service(FRIDGE_SERVICE_UUID, handle=Mock(characteristics=[
            Mock(uuid=DOOR_COUNT_CHAR_UUID, properties=["read", "notify"]),
            Mock(uuid=RESET_COUNTER_CHAR_UUID, properties=["write"]),
        ]))

        self.radio.discover_characteristics(FRIDGE, service)

        assert self.messages[-1] == CharacteristicsDiscovered(FRIDGE, service, (
            Characteristic(DOOR_COUNT_CHAR_UUID, frozenset({"read", "notify"})),
            Characteristic(RESET_COUNTER_CHAR_UUID, frozenset({"write"})),
        ))

    def test_requests_ignored_for_unknown_peripheral(self):
        self.radio.discover_services(FRIDGE, [FRIDGE_SERVICE_UUID])
        assert self.messages == []

    def test_read_value(self):
        self.connect()
        self.client.read_gatt_char.return_value = bytearray(b"\x05\x00\x00\x00")
        char = Characteristic(DOOR_COUNT_CHAR_UUID, frozenset({"read"}))

        async def run():
            self.radio.read_value(FRIDGE, char)
            await settle(self.radio)

        asyncio.run(run())

        assert self.messages[-1] == ValueUpdated(FRIDGE, DOOR_COUNT_CHAR_UUID, b"\x05\x00\x00\x00")

    def test_subscribe_forwards_notifications(self):
        self.connect()
        char = Characteristic(DOOR_COUNT_CHAR_UUID, frozenset({"notify"}), handle=Mock())

        async def run():
            self.radio.subscribe(FRIDGE, char)
            await settle(self.radio)

        asyncio.run(run())

        handle, callback = self.client.start_notify.call_args.args
        assert handle is char.handle
        callback(Mock(), bytearray(b"\x07\x00\x00\x00"))
        assert self.messages[-1] == ValueUpdated(FRIDGE, DOOR_COUNT_CHAR_UUID, b"\x07\x00\x00\x00")

    def test_write_without_connection_not_accepted(self):
        char = Characteristic(RESET_COUNTER_CHAR_UUID, frozenset({"write"}))
        assert self.radio.write_value(FRIDGE, char, b"1") is False

    def test_write_accepted_and_reported(self):
        self.connect()
        char = Characteristic(RESET_COUNTER_CHAR_UUID, frozenset({"write"}), handle=Mock())

        async def run():
            accepted = self.radio.write_value(FRIDGE, char, b"1", response=True)
            await settle(self.radio)
            return accepted

        assert asyncio.run(run()) is True
        self.client.write_gatt_char.assert_awaited_once_with(char.handle, b"1", response=True)
        assert self.messages[-1] == WriteCompleted(FRIDGE, RESET_COUNTER_CHAR_UUID, None)

    def test_write_failure_reported(self):
        self.connect()
        self.client.write_gatt_char.side_effect = BleakError("rejected")
        char = Characteristic(RESET_COUNTER_CHAR_UUID, frozenset({"write"}))

        async def run():
            self.radio.write_value(FRIDGE, char, b"1")
            await settle(self.radio)

        asyncio.run(run())

        assert self.messages[-1] == WriteCompleted(FRIDGE, RESET_COUNTER_CHAR_UUID, "rejected")


class TestBleakRadioScanning:

    def setup_method(self):
        self.radio = BleakRadio(adapter="hci0")
        self.messages = []
        self.radio.set_message_callback(self.messages.append)

    def test_scan_start_failure_marks_radio_unavailable(self):
        scanner = Mock(start=AsyncMock(side_effect=BleakError("adapter off")), stop=AsyncMock())
        self.radio._powered_on = True

        async def run():
            with patch("fridge_monitor.ble.radio.BleakScanner", Mock(return_value=scanner)):
                self.radio.scan(FRIDGE_SERVICE_UUID)
                await settle(self.radio)

        asyncio.run(run())

        assert self.messages == [RadioStateChanged(False)]
        assert not self.radio.powered_on

    def test_scan_and_stop(self):
        scanner = Mock(start=AsyncMock(), stop=AsyncMock())
        scanner_cls = Mock(return_value=scanner)

        async def run():
            with patch("fridge_monitor.ble.radio.BleakScanner", scanner_cls):
                self.radio.scan(FRIDGE_SERVICE_UUID)
                self.radio.stop_scan()
                await settle(self.radio)

        asyncio.run(run())

        scanner_cls.assert_called_once_with(
            detection_callback=self.radio._on_detection,
            service_uuids=[FRIDGE_SERVICE_UUID],
            adapter="hci0",
        )
        scanner.start.assert_awaited_once()
        scanner.stop.assert_awaited_once()

    def test_detection_emits_discovery(self):
        device = Mock(address=FRIDGE.address)
        device.name = "FridgeMon"

        self.radio._on_detection(device, Mock(rssi=-55))

        assert self.messages == [PeripheralDiscovered(FRIDGE, rssi=-55)]
        assert self.messages[0].peripheral.handle is device

    def test_adapter_check(self):
        ok = Mock(start=AsyncMock(), stop=AsyncMock())
        off = Mock(start=AsyncMock(side_effect=BleakError("no adapter")), stop=AsyncMock())

        async def run():
            with patch("fridge_monitor.ble.radio.BleakScanner", Mock(return_value=ok)):
                first = await self.radio._test_adapter()
            with patch("fridge_monitor.ble.radio.BleakScanner", Mock(return_value=off)):
                second = await self.radio._test_adapter()
            return first, second

        assert asyncio.run(run()) == (True, False)

    def test_running_scan_restarted_as_adapter_check(self):
        scanner = Mock(start=AsyncMock(), stop=AsyncMock())

        async def run():
            with patch("fridge_monitor.ble.radio.BleakScanner", Mock(return_value=scanner)):
                self.radio.scan(FRIDGE_SERVICE_UUID)
                await settle(self.radio)
                return await self.radio._check_adapter()

        assert asyncio.run(run()) is True
        assert scanner.start.await_count == 2
        assert self.radio._scanner is scanner

    def test_adapter_loss_during_scan(self):
        self.radio.power_poll_sec = 0.01
        scanner = Mock(start=AsyncMock(), stop=AsyncMock())

        async def run():
            with patch("fridge_monitor.ble.radio.BleakScanner", Mock(return_value=scanner)):
                await self.radio.start()
                await wait_until(lambda: self.radio.powered_on)
                self.radio.scan(FRIDGE_SERVICE_UUID)
                await settle(self.radio)

                scanner.start.side_effect = BleakError("adapter off")
                await wait_until(lambda: not self.radio.powered_on)
                await self.radio.stop()

        asyncio.run(run())

        assert self.messages == [RadioStateChanged(True), RadioStateChanged(False)]
        assert self.radio._scanner is None

    def test_power_state_reported_once_per_change(self):
        self.radio._set_powered(True)
        self.radio._set_powered(True)
        self.radio._set_powered(False)

        assert self.messages == [RadioStateChanged(True), RadioStateChanged(False)]
