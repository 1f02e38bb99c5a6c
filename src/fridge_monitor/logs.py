"""NDJSON event logging with sequence numbers and daily rotation."""

from __future__ import annotations

import json
import time
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional, TextIO


class NdjsonLogger:
    """NDJSON logger writing one file per local date.

    Records look like ``{"seq", "type", "ts_ms", "msg", "device"?, "data"?, "hms"}``
    where ``ts_ms`` is milliseconds since the logger was created.
    """

    def __init__(self, log_dir: str, file_prefix: str = "fridge") -> None:
        self.log_dir = Path(log_dir)
        self.file_prefix = file_prefix
        self.mode = "regular"  # regular or verbose
        self.verbose_whitelist: set[str] = set()

        self.log_dir.mkdir(parents=True, exist_ok=True)

        self._seq = 0
        self._current_file: Optional[TextIO] = None
        self._current_date: Optional[str] = None
        self._start_time_ns = time.monotonic_ns()

        self._rotate_if_needed()

    @property
    def current_path(self) -> Path:
        return self.log_dir / f"{self.file_prefix}_{self._current_date}.ndjson"

    def log(
        self,
        msg_type: str,
        msg: str,
        device: Optional[str] = None,
        data: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Log a structured message to NDJSON."""
        self._rotate_if_needed()

        # Debug records are dropped in regular mode unless whitelisted
        if msg_type == "debug" and self.mode == "regular":
            if msg not in self.verbose_whitelist:
                return

        self._seq += 1
        record = self._build_record(self._seq, msg_type, msg, device, data)

        if self._current_file:
            self._write(self._current_file, record)

    def event(
        self,
        msg: str,
        device: Optional[str] = None,
        data: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Log an event message."""
        self.log("event", msg, device=device, data=data)

    def status(self, msg: str, data: Optional[Dict[str, Any]] = None) -> None:
        self.log("status", msg, data=data)

    def error(self, msg: str, data: Optional[Dict[str, Any]] = None) -> None:
        self.log("error", msg, data=data)

    def debug(self, msg: str, data: Optional[Dict[str, Any]] = None) -> None:
        """Log a debug message (subject to filtering)."""
        self.log("debug", msg, data=data)

    def close(self) -> None:
        if self._current_file:
            self._current_file.close()
            self._current_file = None

    def _build_record(
        self,
        seq: int,
        msg_type: str,
        msg: str,
        device: Optional[str],
        data: Optional[Dict[str, Any]],
    ) -> Dict[str, Any]:
        ts_ms = (time.monotonic_ns() - self._start_time_ns) / 1_000_000
        record: Dict[str, Any] = {
            "seq": seq,
            "type": msg_type,
            "ts_ms": round(ts_ms, 3),
            "msg": msg,
        }
        if device is not None:
            record["device"] = device
        if data is not None:
            record["data"] = data
        record["hms"] = datetime.now().strftime("%H:%M:%S.%f")[:-3]
        return record

    @staticmethod
    def _write(stream: TextIO, record: Dict[str, Any]) -> None:
        json.dump(record, stream, separators=(",", ":"), ensure_ascii=False, default=str)
        stream.write("\n")
        stream.flush()

    def _rotate_if_needed(self) -> None:
        """Open a new file when the local date changes."""
        current_date = datetime.now().strftime("%Y%m%d")

        if self._current_date != current_date:
            if self._current_file:
                self._current_file.close()

            self._current_date = current_date
            self._current_file = self.current_path.open("a", encoding="utf-8", buffering=1)

    def __enter__(self) -> NdjsonLogger:
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()


class DualNdjsonLogger(NdjsonLogger):
    """Logger that also writes every record, unfiltered, to a per-session debug file."""

    def __init__(self, log_dir: str, debug_dir: str, file_prefix: str = "fridge") -> None:
        super().__init__(log_dir, file_prefix)

        self.debug_dir = Path(debug_dir)
        self.debug_dir.mkdir(parents=True, exist_ok=True)

        session = datetime.now().strftime("%Y%m%d_%H%M%S")
        self.debug_path = self.debug_dir / f"{file_prefix}_debug_{session}.ndjson"
        self._debug_file: Optional[TextIO] = self.debug_path.open("a", encoding="utf-8", buffering=1)
        self._debug_seq = 0

    def log(
        self,
        msg_type: str,
        msg: str,
        device: Optional[str] = None,
        data: Optional[Dict[str, Any]] = None,
    ) -> None:
        if self._debug_file:
            self._debug_seq += 1
            record = self._build_record(self._debug_seq, msg_type, msg, device, data)
            self._write(self._debug_file, record)

        super().log(msg_type, msg, device=device, data=data)

    def close(self) -> None:
        super().close()
        if self._debug_file:
            self._debug_file.close()
            self._debug_file = None
