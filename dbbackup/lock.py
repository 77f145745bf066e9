"""Pid-file run lock shared by every mutating command."""
from __future__ import annotations

import contextlib
import os
import time
from pathlib import Path
from typing import Optional

from .errors import AlreadyRunningError
from .logs import BackupLogger


def _pid_alive(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        # exists but owned by someone else
        return True
    return True


def _read_pid(path: Path) -> Optional[int]:
    try:
        text = path.read_text(encoding="utf-8").strip()
    except FileNotFoundError:
        return None
    try:
        return int(text)
    except ValueError:
        return None


class RunLock(contextlib.AbstractContextManager):
    """Exclusive pid file; a file left by a dead process is replaced.

    A file without a readable pid belongs to a run that has created it but
    not written it yet, until it is older than ``grace_s``.
    """

    def __init__(self, path: Path, *, logger: BackupLogger, grace_s: float = 10.0) -> None:
        self._path = Path(path)
        self._logger = logger
        self._grace_s = grace_s
        self._held = False

    @property
    def path(self) -> Path:
        return self._path

    def acquire(self) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        for _ in range(2):
            try:
                fd = os.open(str(self._path), os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
            except FileExistsError:
                pid = _read_pid(self._path)
                if pid is None and self._age() < self._grace_s:
                    raise AlreadyRunningError(f"{self._path} is being written by another run") from None
                if pid is not None and _pid_alive(pid):
                    raise AlreadyRunningError(f"dbbackup is already running (pid {pid}, {self._path})") from None
                self._logger.warning("stale_pidfile", path=str(self._path), pid=pid)
                self._path.unlink(missing_ok=True)
                continue
            try:
                os.write(fd, f"{os.getpid()}\n".encode())
            finally:
                os.close(fd)
            self._held = True
            return
        raise AlreadyRunningError(f"could not create {self._path}")

    def _age(self) -> float:
        try:
            return time.time() - self._path.stat().st_mtime
        except FileNotFoundError:
            return float("inf")

    def release(self) -> None:
        if not self._held:
            return
        self._held = False
        if _read_pid(self._path) == os.getpid():
            self._path.unlink(missing_ok=True)

    def __enter__(self) -> "RunLock":
        self.acquire()
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        self.release()
        return False


__all__ = ["RunLock"]
