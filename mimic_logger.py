"""
Mimic V1 — Structured Session Logger
====================================
Appends engine lifecycle events, per-frame tracking results and
inference errors to a JSONL file for offline inspection of a session.

Key Features:
  - JSONL (one JSON object per line)
  - Thread-safe writes (capture and inference threads share one file)
  - Levels: SYSTEM, AUDIT, WARN, ERROR
  - NumPy arrays and scalars serialised transparently

Developer: Mimic Team
"""

from __future__ import annotations

import json
import logging
import os
import sys
import threading
import time
from typing import Any, Dict, Optional

import numpy as np

_log = logging.getLogger("MimicLogger")

LOG_FILENAME = "mimic_audit.jsonl"


class MimicJSONEncoder(json.JSONEncoder):
    """Handles NumPy types for JSON serialization."""
    def default(self, obj):
        if isinstance(obj, np.ndarray):
            return obj.tolist()
        if isinstance(obj, np.floating):
            return float(obj)
        if isinstance(obj, np.integer):
            return int(obj)
        if isinstance(obj, np.bool_):
            return bool(obj)
        if hasattr(obj, "to_dict"):
            return obj.to_dict()
        return super().default(obj)


class MimicLogger:
    """JSONL audit log for one tracking process."""

    def __init__(self, log_dir: str = "logs"):
        self.log_dir = log_dir
        os.makedirs(self.log_dir, exist_ok=True)

        self.log_path = os.path.join(self.log_dir, LOG_FILENAME)
        self._file = open(self.log_path, "a", encoding="utf-8")
        self._lock = threading.Lock()

        self.log({
            "event": "system_startup",
            "python_version": sys.version,
            "platform": sys.platform,
        }, level="SYSTEM")

    @property
    def closed(self) -> bool:
        return self._file.closed

    def _write(self, entry: Dict[str, Any]) -> None:
        line = json.dumps(entry, cls=MimicJSONEncoder) + "\n"
        # Caller holds self._lock.
        if self._file.closed:
            return
        self._file.write(line)
        self._file.flush()

    def log(self, data: Dict[str, Any], level: str = "AUDIT",
            event: Optional[str] = None) -> None:
        """Append log entry."""
        entry = {
            "timestamp": time.time(),
            "level": level,
            "event": event or data.get("event", "unknown"),
            "data": data,
        }
        with self._lock:
            self._write(entry)

    def log_frame(self, frame_data: Dict[str, Any]) -> None:
        """Helper for per-frame tracking logs."""
        self.log(frame_data, level="AUDIT", event="frame_processed")

    def warn(self, message: str, context: Optional[Dict] = None) -> None:
        """Log structured warning."""
        _log.warning(message)
        self.log({"message": message, "context": context},
                 level="WARN", event="system_warning")

    def error(self, message: str, exception: Optional[BaseException] = None) -> None:
        """Log structured error with exception details."""
        _log.error(message)
        err_details = repr(exception) if exception else None
        self.log({"message": message, "exception": err_details},
                 level="ERROR", event="system_error")

    def close(self) -> None:
        """Clean shutdown."""
        with self._lock:
            if self._file.closed:
                return
            self._write({
                "timestamp": time.time(),
                "level": "SYSTEM",
                "event": "system_shutdown",
                "data": {"message": "Logger shutting down"},
            })
            self._file.close()


_logger: Optional[MimicLogger] = None


def get_logger(log_dir: str = "logs") -> MimicLogger:
    """Process-wide logger; reopened if a previous one was closed."""
    global _logger
    if _logger is None or _logger.closed:
        _logger = MimicLogger(log_dir)
    return _logger
