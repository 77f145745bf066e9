"""Failure reports by mail and optional webhook."""
from __future__ import annotations

import logging
import socket
from datetime import datetime
from typing import Callable, Optional

import requests

from core.logging_utils import redact_secret

from .config import CommandsConfig, NotifyConfig
from .runner import ProcessRunner

LOGGER = logging.getLogger("dbbackup.notify")


class Notifier:
    """Send failure reports. Delivery problems are logged, never raised."""

    def __init__(
        self,
        config: NotifyConfig,
        commands: CommandsConfig,
        runner: ProcessRunner,
        *,
        clock: Optional[Callable[[], datetime]] = None,
        session: Optional[requests.Session] = None,
    ) -> None:
        self._config = config
        self._commands = commands
        self._runner = runner
        self._clock = clock or datetime.now
        self._session = session

    def failure(self, command: str, reason: str) -> None:
        subject = f"{socket.gethostname()} dbbackup {command} failed"
        body = f"{self._clock().strftime('%Y-%m-%d %H:%M:%S')}  {reason}"
        self.send(subject, body, command=command)

    def send(self, subject: str, body: str, *, command: str = "") -> None:
        for address in self._config.emails:
            self._mail(address, subject, body)
        if self._config.webhook_url:
            self._webhook(subject, body, command)

    def _mail(self, address: str, subject: str, body: str) -> None:
        result = self._runner.run([self._commands.mail, "-s", subject, address], input_text=body + "\n")
        if not result.ok:
            LOGGER.error("mail to %s failed with status %s", address, result.returncode)

    def _webhook(self, subject: str, body: str, command: str) -> None:
        url = str(self._config.webhook_url)
        payload = {
            "host": socket.gethostname(),
            "command": command,
            "subject": subject,
            "text": body,
        }
        poster = self._session.post if self._session is not None else requests.post
        try:
            response = poster(url, json=payload, timeout=self._config.timeout_s)
        except requests.RequestException as exc:
            LOGGER.error("webhook %s failed: %s", redact_secret(url), exc)
            return
        if response.status_code >= 300:
            LOGGER.error("webhook %s returned HTTP %s", redact_secret(url), response.status_code)


__all__ = ["Notifier"]
