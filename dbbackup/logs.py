"""Structured logging helpers for backup operations."""
from __future__ import annotations

import json
import logging
import os
import socket
from datetime import datetime, timezone
from pathlib import Path
from threading import Lock
from typing import Any, Dict

from core.logging_utils import json_log_path

LOGGER = logging.getLogger("dbbackup.run")


class BackupLogger:
    """Write structured JSONL entries for backup related events."""

    def __init__(self, logs_dir: Path) -> None:
        self._log_path = json_log_path(Path(logs_dir))
        self._host = socket.gethostname()
        self._lock = Lock()

    @property
    def path(self) -> Path:
        return self._log_path

    # ------------------------------------------------------------------
    def _write(self, payload: Dict[str, Any], *, level: int) -> None:
        payload.setdefault("ts", datetime.now(timezone.utc).isoformat())
        payload.setdefault("host", self._host)
        payload.setdefault("pid", os.getpid())
        line = json.dumps(payload, sort_keys=True, default=str)
        with self._lock:
            self._log_path.parent.mkdir(parents=True, exist_ok=True)
            with self._log_path.open("a", encoding="utf-8") as handle:
                handle.write(line + "\n")
        LOGGER.log(level, "%s", _describe(payload))

    def event(self, *, event: str, phase: str, ok: bool, **extra: Any) -> None:
        payload = {
            "event": event,
            "phase": phase,
            "ok": bool(ok),
        }
        if extra:
            payload.update(extra)
        level = logging.INFO if ok else logging.ERROR
        self._write(payload, level=level)

    def info(self, event: str, **extra: Any) -> None:
        self._write({"event": event, **extra, "ok": True}, level=logging.INFO)

    def warning(self, event: str, **extra: Any) -> None:
        self._write({"event": event, **extra, "ok": False}, level=logging.WARNING)

    def error(self, event: str, **extra: Any) -> None:
        self._write({"event": event, **extra, "ok": False}, level=logging.ERROR)


def _describe(payload: Dict[str, Any]) -> str:
    skip = {"ts", "host", "pid", "event", "ok"}
    details = " ".join(f"{key}={payload[key]}" for key in sorted(payload) if key not in skip)
    return f"{payload['event']} {details}".rstrip()


__all__ = ["BackupLogger"]
