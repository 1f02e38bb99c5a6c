"""Tests for characteristic payload decoding."""

import struct

import pytest

from fridge_monitor.ble.decode import BatteryReading, DoorCountReading, decode
from fridge_monitor.ble.gatt import (
    BATTERY_LEVEL_CHAR_UUID,
    DOOR_COUNT_CHAR_UUID,
    RESET_COUNTER_CHAR_UUID,
    normalize_uuid,
    uuid_matches,
)


class TestDoorCount:

    def test_little_endian_int32(self):
        assert decode(DOOR_COUNT_CHAR_UUID, struct.pack("<i", 1234)) == DoorCountReading(1234)
        assert decode(DOOR_COUNT_CHAR_UUID, bytes([0x05, 0x00, 0x00, 0x00])) == DoorCountReading(5)

    def test_negative_value_is_passed_through(self):
        assert decode(DOOR_COUNT_CHAR_UUID, b"\xff\xff\xff\xff") == DoorCountReading(-1)

    @pytest.mark.parametrize("payload", [b"", b"\x01", b"\x01\x00\x00", b"\x01\x00\x00\x00\x00"])
    def test_wrong_length_is_discarded(self, payload):
        assert decode(DOOR_COUNT_CHAR_UUID, payload) is None

    def test_uppercase_uuid(self):
        assert decode(DOOR_COUNT_CHAR_UUID.upper(), struct.pack("<i", 3)) == DoorCountReading(3)


class TestBattery:

    @pytest.mark.parametrize("raw", [0, 50, 100])
    def test_percentage(self, raw):
        assert decode(BATTERY_LEVEL_CHAR_UUID, bytes([raw])) == BatteryReading(raw)

    def test_no_clamping_above_100(self):
        assert decode(BATTERY_LEVEL_CHAR_UUID, bytes([250])) == BatteryReading(250)

    def test_only_first_byte_used(self):
        assert decode(BATTERY_LEVEL_CHAR_UUID, bytes([42, 99])) == BatteryReading(42)

    def test_empty_payload_is_discarded(self):
        assert decode(BATTERY_LEVEL_CHAR_UUID, b"") is None

    def test_short_uuid_forms(self):
        assert decode("2a19", bytes([77])) == BatteryReading(77)
        assert decode("0x2A19", bytes([77])) == BatteryReading(77)


def test_reset_characteristic_never_decoded():
    assert decode(RESET_COUNTER_CHAR_UUID, b"1") is None


def test_unknown_characteristic_ignored():
    assert decode("00002a00-0000-1000-8000-00805f9b34fb", b"\x01\x00\x00\x00") is None


def test_uuid_normalization():
    assert normalize_uuid("2A19") == BATTERY_LEVEL_CHAR_UUID
    assert uuid_matches("0x2a19", BATTERY_LEVEL_CHAR_UUID)
    assert not uuid_matches(DOOR_COUNT_CHAR_UUID, RESET_COUNTER_CHAR_UUID)
