"""SQL and supervisor control for MySQL instances."""
from __future__ import annotations

import logging
from typing import Dict, List, Optional, Sequence, Tuple

from .config import Instance
from .errors import CommandError
from .runner import InteractiveProcess, ProcessRunner

LOGGER = logging.getLogger("dbbackup.mysql")


def parse_batch(output: str) -> List[Dict[str, str]]:
    """Turn ``mysql --batch`` output (header line plus TSV rows) into dicts."""

    lines = [line for line in output.splitlines() if line]
    if not lines:
        return []
    header = lines[0].split("\t")
    rows: List[Dict[str, str]] = []
    for line in lines[1:]:
        values = line.split("\t")
        values += [""] * (len(header) - len(values))
        rows.append(dict(zip(header, values)))
    return rows


class LockSession:
    """Interactive client connection holding ``FLUSH TABLES WITH READ LOCK``."""

    def __init__(self, instance: Instance, process: InteractiveProcess, timeout: Optional[float]) -> None:
        self.instance = instance
        self._process = process
        self._timeout = timeout

    @property
    def alive(self) -> bool:
        return self._process.alive

    def execute(self, statement: str) -> List[str]:
        LOGGER.info("[%s] %s", self.instance.name, statement)
        return self._process.execute(statement, timeout=self._timeout)

    def close(self) -> int:
        return self._process.close()


class MysqlClient:
    """Issue statements against one instance through the ``mysql`` binary."""

    def __init__(self, runner: ProcessRunner, client: str, instance: Instance, *, lock_timeout_s: Optional[float] = None) -> None:
        self._runner = runner
        self._client = client
        self.instance = instance
        self._lock_timeout_s = lock_timeout_s

    @property
    def name(self) -> str:
        return self.instance.name

    def _base_argv(self) -> List[str]:
        return [self._client, f"--socket={self.instance.socket}"]

    def _run(self, statement: str, flags: Sequence[str], *, echo: bool) -> str:
        LOGGER.info("[%s] %s", self.name, statement)
        argv = self._base_argv() + list(flags) + ["-e", statement]
        result = self._runner.run(argv, echo=echo)
        result.check(f"{self.name}: {statement}")
        return result.output

    def execute(self, statement: str) -> str:
        return self._run(statement, ["--batch"], echo=True)

    def query(self, statement: str) -> List[Dict[str, str]]:
        return parse_batch(self._run(statement, ["--batch"], echo=False))

    def status_text(self, statement: str) -> str:
        """Vertical (``\\G``) output, as saved into the status files."""

        return self._run(statement.rstrip(";") + "\\G", [], echo=False)

    # ------------------------------------------------------------------
    def stop_replication(self) -> None:
        self.execute("STOP SLAVE")

    def start_replication(self) -> None:
        self.execute("START SLAVE")

    def flush_logs(self) -> None:
        self.execute("FLUSH LOGS")

    def purge_logs_to(self, log_name: str) -> None:
        self.execute(f"PURGE BINARY LOGS TO '{log_name}'")

    def master_status(self) -> Tuple[str, int]:
        rows = self.query("SHOW MASTER STATUS")
        if not rows or not rows[0].get("File"):
            raise CommandError(f"{self.name}: binary logging is not enabled")
        row = rows[0]
        return row["File"], int(row.get("Position") or 0)

    def active_log(self) -> str:
        return self.master_status()[0]

    def slave_status(self) -> Dict[str, str]:
        rows = self.query("SHOW SLAVE STATUS")
        return rows[0] if rows else {}

    def open_lock_session(self) -> LockSession:
        argv = self._base_argv() + ["--batch", "--unbuffered", "--skip-column-names"]
        process = self._runner.spawn(argv)
        return LockSession(self.instance, process, self._lock_timeout_s)


class InstanceGroup:
    """Start or stop every instance through the process supervisor."""

    def __init__(self, runner: ProcessRunner, start_command: Sequence[str], stop_command: Sequence[str]) -> None:
        self._runner = runner
        self._start = list(start_command)
        self._stop = list(stop_command)

    def start(self) -> None:
        self._runner.run(self._start).check("starting mysql instances")

    def stop(self) -> None:
        self._runner.run(self._stop).check("stopping mysql instances")


__all__ = ["InstanceGroup", "LockSession", "MysqlClient", "parse_batch"]
