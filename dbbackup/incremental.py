"""Incremental backups: copy closed binary log segments into ``current``."""
from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import Callable, Dict, List, Optional

from .config import BackupConfig
from .consistency import ConsistencyController
from .errors import BackupError, PreconditionError
from .full import mysql_clients
from .logs import BackupLogger
from .mysql import MysqlClient
from .runner import ProcessRunner
from .session import RunContext
from .sync import Synchronizer
from .types import IncrementalResult

STATUS_FILE = "incremental_slave_status.txt"


def _split_log_name(name: str) -> tuple[str, int]:
    base, _, number = name.rpartition(".")
    if not base or not number.isdigit():
        raise BackupError(f"unexpected binary log name {name!r}")
    return base, int(number)


def select_closed_segments(binlog_dir: Path, active_log: str) -> List[Path]:
    """Segments of ``active_log``'s series numbered below it.

    Index files, relay logs and anything outside the series are ignored.
    """

    base, active_number = _split_log_name(active_log)
    segments: List[tuple[int, Path]] = []
    if not binlog_dir.is_dir():
        return []
    for path in binlog_dir.iterdir():
        stem, _, suffix = path.name.rpartition(".")
        if stem != base or not suffix.isdigit() or not path.is_file():
            continue
        number = int(suffix)
        if number < active_number:
            segments.append((number, path))
    segments.sort()
    return [path for _, path in segments]


def resume_statement(instance: str, position: str, slave: Dict[str, str], when: datetime) -> str:
    change_master = (
        'CHANGE MASTER TO master_host="{host}", master_user="{user}", master_password="XXXXXXXXX", '
        'master_log_file="{log_file}", master_log_pos="{log_pos}";'
    ).format(
        host=slave.get("Master_Host", ""),
        user=slave.get("Master_User", ""),
        log_file=slave.get("Relay_Master_Log_File", ""),
        log_pos=slave.get("Exec_Master_Log_Pos", ""),
    )
    stamp = when.strftime("%Y-%m-%d %H:%M:%S")
    return f"/* dbbackup {instance} instance at {position} ({stamp}) */   {change_master}"


class IncrementalBackup:
    def __init__(
        self,
        config: BackupConfig,
        *,
        runner: ProcessRunner,
        logger: BackupLogger,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._config = config
        self._runner = runner
        self._logger = logger
        self._clock = clock or datetime.now
        self._sync = Synchronizer(runner, config.commands)

    def run(self, context: Optional[RunContext] = None) -> List[IncrementalResult]:
        context = context or RunContext("incremental", self._logger)
        current = self._config.layout.current_target()
        if current is None:
            raise PreconditionError(f"no current backup at {self._config.layout.current}")
        missing = [i.name for i in self._config.instances if not (current / i.name).is_dir()]
        if missing:
            raise PreconditionError(f"current backup {current} has no directory for {', '.join(missing)}")

        clients = mysql_clients(self._config, self._runner)
        controller = ConsistencyController(clients, context)
        context.rollback.push("resume_replication", controller.resume_paused)
        results: List[IncrementalResult] = []
        try:
            for client in clients:
                context.enter("incremental", instance=client.name)
                results.append(self._capture(client, controller, current / client.name))
            context.enter("done", instances=len(results))
        except BaseException as exc:
            failures = context.rollback.unwind()
            self._logger.event(
                event="incremental_failed",
                phase=context.phase,
                ok=False,
                error=str(exc) or type(exc).__name__,
                rollback_failed=failures,
            )
            raise
        context.rollback.clear()
        return results

    def _capture(self, client: MysqlClient, controller: ConsistencyController, target: Path) -> IncrementalResult:
        controller.stop_replication(client)
        log_file, position = client.master_status()
        slave = client.slave_status()
        client.flush_logs()
        new_log = client.active_log()
        if new_log == log_file:
            raise BackupError(f"{client.name}: binary log did not rotate (still {log_file})")
        controller.start_replication(client)

        segments = select_closed_segments(client.instance.binlog_dir, new_log)
        self._sync.copy_files(segments, target / "binlog", label=f"{client.name} binlog")

        line = resume_statement(client.name, f"{log_file}:{position}", slave, self._clock())
        with (target / STATUS_FILE).open("a", encoding="utf-8") as handle:
            handle.write(line + "\n")

        client.purge_logs_to(new_log)
        copied = [path.name for path in segments]
        self._logger.info("incremental_copied", instance=client.name, segments=len(copied), active=new_log)
        return IncrementalResult(
            instance=client.name,
            captured_log=log_file,
            captured_position=position,
            new_log=new_log,
            copied=copied,
        )


__all__ = ["IncrementalBackup", "resume_statement", "select_closed_segments"]
