"""BLE package: GATT identifiers, payload decoding and the radio provider."""

from .decode import BatteryReading, DoorCountReading, decode
from .radio import BleakRadio, Radio

__all__ = ["BatteryReading", "BleakRadio", "DoorCountReading", "Radio", "decode"]
