#!/usr/bin/env python3
"""CLI entry point for the Fridge Monitor."""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

# Add src to path for development
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from fridge_monitor.monitor import run_monitor


def setup_logging(debug: bool = False) -> None:
    """Set up logging configuration."""
    level = logging.DEBUG if debug else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%H:%M:%S",
    )


def main() -> None:
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Fridge Monitor - BLE refrigerator door-open tracking"
    )
    parser.add_argument(
        "--config",
        required=True,
        help="Path to YAML configuration file",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging",
    )
    parser.add_argument(
        "--no-input",
        action="store_true",
        help="Do not read retry/reset/status commands from stdin",
    )

    args = parser.parse_args()

    setup_logging(args.debug)

    config_path = Path(args.config)
    if not config_path.exists():
        print(f"Error: Configuration file not found: {config_path}", file=sys.stderr)
        sys.exit(1)

    try:
        asyncio.run(run_monitor(str(config_path), interactive=not args.no_input))
    except KeyboardInterrupt:
        print("\nMonitor stopped by user")
    except Exception as e:
        print(f"Monitor failed: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
