"""Run external tools and stream their output into the log."""
from __future__ import annotations

import logging
import queue
import shlex
import subprocess
import threading
import time
import uuid
from dataclasses import dataclass
from typing import List, Optional, Sequence, Type

from .errors import CommandError

LOGGER = logging.getLogger("dbbackup.runner")

MISSING_BINARY = 127
_CLOSE_GRACE_S = 5.0


def format_argv(argv: Sequence[str]) -> str:
    return " ".join(shlex.quote(str(part)) for part in argv)


@dataclass(slots=True)
class CommandResult:
    argv: List[str]
    returncode: int
    output: str
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return self.returncode == 0 and not self.timed_out

    def check(self, message: str, error: Type[CommandError] = CommandError) -> "CommandResult":
        if self.ok:
            return self
        if self.timed_out:
            reason = "timed out"
        else:
            reason = f"exit status {self.returncode}"
        raise error(f"{message} ({reason})", argv=self.argv, returncode=self.returncode)


class InteractiveProcess:
    """Long lived child fed statements through stdin.

    Each :meth:`execute` call appends a marker query and waits until the marker
    comes back, so output of one statement is never confused with the next.
    """

    def __init__(self, argv: Sequence[str], process: subprocess.Popen) -> None:
        self.argv = list(argv)
        self._process = process
        self._lines: "queue.Queue[Optional[str]]" = queue.Queue()
        self._reader = threading.Thread(target=self._pump, name="dbbackup-session", daemon=True)
        self._reader.start()

    def _pump(self) -> None:
        assert self._process.stdout is not None
        for line in self._process.stdout:
            self._lines.put(line.rstrip("\n"))
        self._lines.put(None)

    @property
    def alive(self) -> bool:
        return self._process.poll() is None

    def execute(self, statement: str, timeout: Optional[float] = None) -> List[str]:
        marker = f"dbbackup-{uuid.uuid4().hex}"
        payload = f"{statement.rstrip().rstrip(';')};\nSELECT '{marker}';\n"
        stdin = self._process.stdin
        if stdin is None or not self.alive:
            raise CommandError("session is not running", argv=self.argv, returncode=self._process.poll())
        try:
            stdin.write(payload)
            stdin.flush()
        except OSError as exc:
            raise CommandError(f"session closed its input: {exc}", argv=self.argv) from exc

        deadline = time.monotonic() + timeout if timeout else None
        output: List[str] = []
        while True:
            remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
            try:
                line = self._lines.get(timeout=remaining)
            except queue.Empty:
                raise CommandError(f"no answer to {statement!r} after {timeout}s", argv=self.argv) from None
            if line is None:
                returncode = self._process.wait()
                detail = "; ".join(output)
                raise CommandError(
                    f"session exited with status {returncode} during {statement!r}: {detail}",
                    argv=self.argv,
                    returncode=returncode,
                )
            if line == marker:
                return output
            LOGGER.info("%s", line)
            output.append(line)

    def close(self, grace: float = _CLOSE_GRACE_S) -> int:
        if self._process.stdin is not None and not self._process.stdin.closed:
            try:
                self._process.stdin.close()
            except OSError:
                LOGGER.debug("session stdin already closed")
        try:
            return self._process.wait(timeout=grace)
        except subprocess.TimeoutExpired:
            self._process.kill()
            return self._process.wait()


class ProcessRunner:
    """Execute commands, forwarding every output line to the log."""

    def __init__(self, *, timeout_s: Optional[float] = None) -> None:
        self._timeout_s = timeout_s

    def run(
        self,
        argv: Sequence[str],
        *,
        input_text: Optional[str] = None,
        echo: bool = True,
        timeout: Optional[float] = None,
    ) -> CommandResult:
        command = [str(part) for part in argv]
        LOGGER.info("running: %s", format_argv(command))
        try:
            process = subprocess.Popen(
                command,
                stdin=subprocess.PIPE if input_text is not None else subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                bufsize=1,
            )
        except OSError as exc:
            LOGGER.error("cannot execute %s: %s", command[0], exc)
            return CommandResult(command, MISSING_BINARY, str(exc))

        limit = timeout if timeout is not None else self._timeout_s
        expired = threading.Event()
        timer: Optional[threading.Timer] = None
        if limit:
            timer = threading.Timer(limit, self._expire, args=(process, expired))
            timer.daemon = True
            timer.start()

        feeder: Optional[threading.Thread] = None
        if input_text is not None:
            feeder = threading.Thread(target=_feed, args=(process, input_text), daemon=True)
            feeder.start()

        lines: List[str] = []
        level = logging.INFO if echo else logging.DEBUG
        try:
            assert process.stdout is not None
            for raw in process.stdout:
                line = raw.rstrip("\n")
                lines.append(line)
                LOGGER.log(level, "%s", line)
            returncode = process.wait()
        finally:
            if timer is not None:
                timer.cancel()
            if feeder is not None:
                feeder.join(timeout=_CLOSE_GRACE_S)
        if expired.is_set():
            LOGGER.error("%s timed out after %ss", command[0], limit)
        return CommandResult(command, returncode, "\n".join(lines), timed_out=expired.is_set())

    def spawn(self, argv: Sequence[str]) -> InteractiveProcess:
        command = [str(part) for part in argv]
        LOGGER.info("starting session: %s", format_argv(command))
        try:
            process = subprocess.Popen(
                command,
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                bufsize=1,
            )
        except OSError as exc:
            raise CommandError(f"cannot start {command[0]}: {exc}", argv=command, returncode=MISSING_BINARY) from exc
        return InteractiveProcess(command, process)

    @staticmethod
    def _expire(process: subprocess.Popen, expired: threading.Event) -> None:
        if process.poll() is None:
            expired.set()
            process.kill()


def _feed(process: subprocess.Popen, text: str) -> None:
    stdin = process.stdin
    if stdin is None:
        return
    try:
        stdin.write(text)
    except OSError:
        LOGGER.debug("child closed stdin early")
    finally:
        try:
            stdin.close()
        except OSError:
            LOGGER.debug("child stdin already closed")


__all__ = ["CommandResult", "InteractiveProcess", "ProcessRunner", "format_argv"]
