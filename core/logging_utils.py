from __future__ import annotations

import logging
import logging.handlers
import os
import socket
import sys
from pathlib import Path
from typing import Any, Mapping, Optional

from .paths import expand_path

ROOT_LOGGER = "dbbackup"


class TaggedFormatter(logging.Formatter):
    """``[host] [pid] [YYYY-MM-DD HH:MM:SS] [category] message`` lines."""

    def __init__(self, category: str = "dbbackup") -> None:
        super().__init__(datefmt="%Y-%m-%d %H:%M:%S")
        self._host = socket.gethostname()
        self._category = category

    def format(self, record: logging.LogRecord) -> str:  # noqa: D401
        header = f"[{self._host}] [{record.process}] [{self.formatTime(record, self.datefmt)}] [{self._category}]"
        message = record.getMessage()
        if record.levelno >= logging.WARNING:
            message = f"{record.levelname}: {message}"
        line = f"{header} {message}"
        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


def _syslog_address(value: Any) -> Any:
    text = str(value)
    if text.startswith("/"):
        return text
    host, _, port = text.partition(":")
    return (host, int(port or logging.handlers.SYSLOG_UDP_PORT))


def configure_logging(settings: Optional[Mapping[str, Any]] = None, *, verbose: bool = False) -> logging.Logger:
    """Attach console, file and syslog handlers to the ``dbbackup`` logger.

    Calling it twice replaces the handlers installed by the previous call.
    """

    section = dict((settings or {}).get("logging") or {})
    category = str(section.get("category") or "dbbackup")
    level_name = "DEBUG" if verbose else str(section.get("level") or "INFO").upper()
    level = getattr(logging, level_name, logging.INFO)

    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel(level)
    for handler in list(logger.handlers):
        if getattr(handler, "_dbbackup_handler", False):
            logger.removeHandler(handler)
            handler.close()

    handlers: list[logging.Handler] = []
    console = logging.StreamHandler(sys.stdout)
    console.setFormatter(TaggedFormatter(category))
    handlers.append(console)

    log_file = section.get("file")
    if log_file:
        path = expand_path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            str(path), maxBytes=10 * 1024 * 1024, backupCount=5, encoding="utf-8"
        )
        file_handler.setFormatter(TaggedFormatter(category))
        handlers.append(file_handler)

    syslog_address = section.get("syslog_address")
    if syslog_address:
        syslog_handler = logging.handlers.SysLogHandler(address=_syslog_address(syslog_address))
        syslog_handler.ident = f"{category}[{os.getpid()}]: "
        syslog_handler.setFormatter(logging.Formatter("%(message)s"))
        handlers.append(syslog_handler)

    for handler in handlers:
        handler.setLevel(level)
        handler._dbbackup_handler = True  # type: ignore[attr-defined]
        logger.addHandler(handler)
    logger.propagate = False
    return logger


def redact_secret(value: str | None) -> str:
    if not value:
        return ""
    if len(value) <= 6:
        return "***"
    return f"{value[:3]}***{value[-2:]}"


def json_log_path(logs_dir: Path) -> Path:
    return logs_dir / "dbbackup.jsonl"


__all__ = [
    "ROOT_LOGGER",
    "TaggedFormatter",
    "configure_logging",
    "json_log_path",
    "redact_secret",
]
