#!/usr/bin/env python3
"""Scan helper: prints address, name and rssi for peripherals advertising the fridge service."""
import argparse
import asyncio
import sys
from pathlib import Path

from bleak import BleakScanner

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from fridge_monitor.ble.gatt import FRIDGE_SERVICE_UUID


async def scan(timeout: float, all_devices: bool):
    print(f'Starting BLE scan for {timeout:.0f}s...')
    service_uuids = None if all_devices else [FRIDGE_SERVICE_UUID]
    found = await BleakScanner.discover(timeout=timeout, service_uuids=service_uuids, return_adv=True)
    print(f'Found {len(found)} devices')
    for device, adv in found.values():
        print(f"{device.address}  | {repr(device.name)} | rssi={adv.rssi}")


if __name__ == '__main__':
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument('--timeout', type=float, default=10.0)
    parser.add_argument('--all', action='store_true', help='list every advertiser, not just fridge monitors')
    args = parser.parse_args()
    asyncio.run(scan(args.timeout, args.all))
