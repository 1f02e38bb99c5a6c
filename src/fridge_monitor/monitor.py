"""Main monitor module wiring the radio, session and event log together."""

from __future__ import annotations

import asyncio
import logging
import sys
import threading
from datetime import datetime
from typing import Any, Callable, List, Optional

from .ble.radio import BleakRadio, Radio
from .commands import CommandDispatcher, ResetRequested
from .config import AppConfig
from .deriver import EventDeriver
from .events import DoorOpenEvent, EventLog
from .logs import DualNdjsonLogger, NdjsonLogger
from .notify import CommandNotifier, ForegroundSignal, LogNotifier, Notifier
from .session import ConnectionState, DeviceSession, MonitorSnapshot, RetryRequested

logger = logging.getLogger(__name__)


class Monitor:
    """Serializes radio messages and commands onto one consumer task.

    Radio callbacks may fire on any thread; `post()` hands each message to
    the event loop, and `_consume()` applies them one at a time in delivery
    order. Observers receive an immutable snapshot after every message.
    """

    def __init__(
        self,
        config: AppConfig,
        radio: Optional[Radio] = None,
        notifier: Optional[Notifier] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.config = config

        if config.logging.debug_dir:
            self.logger: NdjsonLogger = DualNdjsonLogger(
                config.logging.dir,
                config.logging.debug_dir,
                config.logging.file_prefix,
            )
        else:
            self.logger = NdjsonLogger(config.logging.dir, config.logging.file_prefix)

        self.logger.mode = config.logging.mode
        if config.logging.verbose_whitelist:
            self.logger.verbose_whitelist.update(config.logging.verbose_whitelist)

        self.foreground = ForegroundSignal(config.notifications.foreground)
        if notifier is None and config.notifications.enabled:
            if config.notifications.command:
                notifier = CommandNotifier(config.notifications.command, self.logger)
            else:
                notifier = LogNotifier(self.logger)

        self.store = EventLog(clock)
        self.deriver = EventDeriver(
            self.store,
            notifier=notifier,
            is_foreground=self.foreground.is_active,
            backfill_missed=config.deriver.backfill_missed,
            backfill_max=config.deriver.backfill_max,
        )

        self.radio = radio or BleakRadio(
            adapter=config.radio.adapter,
            connect_timeout_sec=config.radio.connect_timeout_sec,
            power_poll_sec=config.radio.power_poll_sec,
        )
        self.session = DeviceSession(self.radio, self.deriver)
        self.dispatcher = CommandDispatcher(self.session)

        self.session.set_state_callback(self._on_state_change)
        self.deriver.set_event_callback(self._on_door_event)
        self.dispatcher.set_reset_callback(self._on_reset)

        self._snapshot = self.session.snapshot()
        self._observers: List[Callable[[MonitorSnapshot], None]] = []

        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._queue: Optional[asyncio.Queue] = None
        self._tasks: List[asyncio.Task] = []

    @property
    def snapshot(self) -> MonitorSnapshot:
        """Latest published state."""
        return self._snapshot

    def add_observer(self, callback: Callable[[MonitorSnapshot], None]) -> None:
        """Register a callback receiving a snapshot after every applied message."""
        self._observers.append(callback)

    def post(self, message: Any) -> None:
        """Queue a message for the consumer task. Safe to call from any thread."""
        if self._loop is None or self._queue is None:
            logger.warning(f"Monitor not running, dropping {type(message).__name__}")
            return
        self._loop.call_soon_threadsafe(self._queue.put_nowait, message)

    def start_scanning(self) -> None:
        """Manual retry after a disconnect or failed connect."""
        self.post(RetryRequested())

    def send_reset(self) -> None:
        self.post(ResetRequested())

    def set_foreground(self, active: bool) -> None:
        self.foreground.set_active(active)

    def apply(self, message: Any) -> None:
        """Apply one message on the consumer context and publish a snapshot."""
        if isinstance(message, ResetRequested):
            self.dispatcher.send_reset()
        else:
            self.session.handle(message)

        self._snapshot = self.session.snapshot()
        for observer in self._observers:
            observer(self._snapshot)

    async def start(self) -> None:
        """Start the consumer, the status loop and the radio."""
        self._loop = asyncio.get_running_loop()
        self._queue = asyncio.Queue()
        self.radio.set_message_callback(self.post)

        self.logger.status("Monitor starting", {
            "adapter": self.config.radio.adapter,
            "backfill_missed": self.config.deriver.backfill_missed,
            "notifications": self.config.notifications.enabled,
        })

        self._tasks.append(asyncio.create_task(self._consume()))
        self._tasks.append(asyncio.create_task(self._status_loop()))

        await self.radio.start()

        self.logger.status("Monitor started", {"active_tasks": len(self._tasks)})

    async def stop(self) -> None:
        """Stop the radio and all tasks, then close the event log."""
        self.logger.status("Monitor stopping")

        await self.radio.stop()
        await self.drain()

        for task in self._tasks:
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()

        self.logger.status("Monitor stopped", self._snapshot.to_dict())
        self.logger.close()

    async def drain(self) -> None:
        """Wait until every queued message has been applied.

        Called by `stop()` so messages already posted (such as the disconnect
        reported while the radio shuts down) reach the session and the log.
        """
        while self._queue is not None:
            await self._queue.join()
            # Let pending call_soon_threadsafe puts land before checking again
            await asyncio.sleep(0)
            if self._queue.empty():
                return

    async def _consume(self) -> None:
        while True:
            message = await self._queue.get()
            try:
                self.apply(message)
            except Exception as e:
                logger.exception(f"Error applying {type(message).__name__}")
                self.logger.error("Message handling error", {
                    "message": type(message).__name__,
                    "error": str(e),
                    "type": type(e).__name__,
                })
            finally:
                self._queue.task_done()

    async def _status_loop(self) -> None:
        """Periodic status reporting."""
        while True:
            await asyncio.sleep(self.config.monitor.status_interval_sec)
            self.logger.status("Monitor status", self._snapshot.to_dict())

    def _on_state_change(self, old: ConnectionState, new: ConnectionState) -> None:
        self.logger.status(new.status_text, {
            "from": old.value,
            "to": new.value,
            "peripheral": self.session.peripheral.address if self.session.peripheral else None,
        })

    def _on_door_event(self, event: DoorOpenEvent) -> None:
        self.logger.event("DOOR_OPEN", device=self.session.peripheral.address if self.session.peripheral else None, data={
            **event.to_dict(),
            "door_open_count": self.deriver.metrics.door_open_count,
            "today_count": self.store.today_count(),
        })

    def _on_reset(self, cleared: int) -> None:
        self.logger.event("RESET", data={"cleared_today": cleared})


def handle_command(monitor: Monitor, line: str) -> None:
    """Apply one console command: retry, reset, status, foreground or background."""
    command = line.strip().lower()
    if command == "retry":
        monitor.start_scanning()
    elif command == "reset":
        monitor.send_reset()
    elif command == "status":
        snap = monitor.snapshot
        battery = f"{snap.battery_level}%" if snap.battery_level is not None else "--%"
        print(f"{snap.status_text} | today={snap.today_count} count={snap.door_open_count} battery={battery}")
    elif command in ("foreground", "background"):
        monitor.set_foreground(command == "foreground")
    elif command:
        print("Commands: retry, reset, status, foreground, background")


def _start_command_reader(monitor: Monitor, loop: asyncio.AbstractEventLoop) -> threading.Thread:
    """Read stdin on a daemon thread and hand each line to the event loop."""

    def reader() -> None:
        for line in sys.stdin:
            loop.call_soon_threadsafe(handle_command, monitor, line)

    thread = threading.Thread(target=reader, name="stdin-commands", daemon=True)
    thread.start()
    return thread


async def run_monitor(config_path: str, interactive: bool = True) -> None:
    """Run the monitor with the specified configuration."""
    from .config import load_config, validate_config

    config = load_config(config_path)
    errors = validate_config(config)

    if errors:
        logger.error("Configuration validation failed:")
        for error in errors:
            logger.error(f"  - {error}")
        return

    monitor = Monitor(config)

    try:
        await monitor.start()

        if interactive:
            _start_command_reader(monitor, asyncio.get_running_loop())

        # Run until interrupted
        while True:
            await asyncio.sleep(1.0)

    except KeyboardInterrupt:
        logger.info("Received interrupt signal, stopping monitor")
    finally:
        await monitor.stop()
