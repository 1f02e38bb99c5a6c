"""GATT identifiers exposed by the fridge monitor peripheral."""

from __future__ import annotations

FRIDGE_SERVICE_UUID = "c48e6067-5295-43d8-9c59-16616a5a300a"
DOOR_COUNT_CHAR_UUID = "a1e8f2de-570a-45b3-851f-365a6a364d1f"
RESET_COUNTER_CHAR_UUID = "f0b1a051-a20c-43f1-b1e4-39f5c43a3d53"

# Standard Battery Level characteristic (0x2A19)
BATTERY_LEVEL_CHAR_UUID = "00002a19-0000-1000-8000-00805f9b34fb"

RESET_COMMAND = "1".encode("utf-8")

_BASE_UUID_SUFFIX = "-0000-1000-8000-00805f9b34fb"


def normalize_uuid(uuid: str) -> str:
    """Return the lowercase 128-bit form of a UUID string.

    Accepts 16-bit ("2a19", "0x2A19") and 32-bit short forms and expands them
    with the Bluetooth base UUID.
    """
    value = str(uuid).strip().lower()
    if value.startswith("0x"):
        value = value[2:]
    if len(value) == 4:
        return f"0000{value}{_BASE_UUID_SUFFIX}"
    if len(value) == 8:
        return f"{value}{_BASE_UUID_SUFFIX}"
    return value


def uuid_matches(a: str, b: str) -> bool:
    return normalize_uuid(a) == normalize_uuid(b)
