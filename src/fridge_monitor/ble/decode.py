"""Decoder for fridge monitor characteristic payloads.

`decode(uuid, payload)` maps a characteristic identifier and its raw bytes to a
typed reading, or ``None`` when the payload is not one we interpret:

  door counter  4 bytes, little-endian int32, cumulative opens since boot/reset
  battery       first byte as an unsigned percentage (not clamped)
  reset         write-only, never decoded
  anything else ignored

Malformed payloads (wrong length, empty) are dropped without raising.
"""

from __future__ import annotations

import logging
import struct
from dataclasses import dataclass
from typing import Optional, Union

from .gatt import (
    BATTERY_LEVEL_CHAR_UUID,
    DOOR_COUNT_CHAR_UUID,
    normalize_uuid,
)


logger = logging.getLogger(__name__)

_DOOR_COUNT_LEN = 4


@dataclass(frozen=True)
class DoorCountReading:
    """Cumulative door-open counter reported by the device."""

    count: int


@dataclass(frozen=True)
class BatteryReading:
    """Raw battery percentage byte (0-255)."""

    level: int


Reading = Union[DoorCountReading, BatteryReading]


def _int32_le(b: bytes) -> int:
    return struct.unpack("<i", b)[0]


def decode_door_count(payload: bytes) -> Optional[DoorCountReading]:
    if payload is None or len(payload) != _DOOR_COUNT_LEN:
        logger.debug(f"Discarding door count payload of length {0 if payload is None else len(payload)}")
        return None
    return DoorCountReading(_int32_le(bytes(payload)))


def decode_battery(payload: bytes) -> Optional[BatteryReading]:
    if not payload:
        logger.debug("Discarding empty battery payload")
        return None
    return BatteryReading(payload[0])


def decode(uuid: str, payload: bytes) -> Optional[Reading]:
    """Decode a characteristic value update into a typed reading."""
    key = normalize_uuid(uuid)

    if key == DOOR_COUNT_CHAR_UUID:
        return decode_door_count(payload)
    if key == BATTERY_LEVEL_CHAR_UUID:
        return decode_battery(payload)

    return None
