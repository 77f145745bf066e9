"""Full backups: lock, snapshot, copy, verify and publish."""
from __future__ import annotations

import os
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, List, Optional

from .config import BackupConfig
from .consistency import ConsistencyController
from .errors import BackupError, PreconditionError
from .logs import BackupLogger
from .mysql import MysqlClient
from .runner import ProcessRunner
from .session import RunContext
from .snapshot import Snapshot, SnapshotManager
from .sync import Synchronizer
from .types import BackupLayout, BackupStamp, FullBackupResult
from .verify import verify_copy


class Phase(str, Enum):
    START = "start"
    PAUSING = "pausing"
    LOCKING = "locking"
    LOG_ROTATED = "log_rotated"
    SNAPSHOTTING = "snapshotting"
    UNLOCKING = "unlocking"
    RESUMING = "resuming"
    MOUNTED = "mounted"
    COPYING = "copying"
    UNMOUNTING = "unmounting"
    SNAPSHOT_DESTROYED = "snapshot_destroyed"
    PUBLISHING = "publishing"
    DONE = "done"
    FAILED = "failed"


def mysql_clients(config: BackupConfig, runner: ProcessRunner) -> List[MysqlClient]:
    return [
        MysqlClient(runner, config.mysql_client, instance, lock_timeout_s=config.lock_timeout_s)
        for instance in config.instances
    ]


def repoint_current(layout: BackupLayout, target: Path) -> None:
    """Swap the ``current`` symlink to ``target`` with a single rename."""

    link = layout.current
    temp = link.with_name(f".current.{os.getpid()}")
    if temp.is_symlink() or temp.exists():
        temp.unlink()
    os.symlink(str(target), str(temp))
    os.replace(temp, link)


class FullBackup:
    """Drive one full backup through its phases.

    Compensating actions are pushed as each forward step begins. On failure
    they run newest first: unmount, destroy the snapshot, unlock, resume
    replication, remove the mount point. The staging directory stays behind
    for inspection and ``current`` is left alone.
    """

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
        self._clock = clock
        self._layout = config.layout
        self._snapshots = SnapshotManager(runner, config.commands, config.snapshot)
        self._sync = Synchronizer(runner, config.commands)

    def run(self, context: Optional[RunContext] = None) -> FullBackupResult:
        if not self._config.instances:
            raise PreconditionError("no mysql instances configured")
        context = context or RunContext("full", self._logger)
        stamp = BackupStamp.now(self._clock)
        staging = self._layout.staging_dir(stamp)
        clients = mysql_clients(self._config, self._runner)
        controller = ConsistencyController(clients, context)
        snapshot = self._snapshots.handle_for(stamp)
        rollback = context.rollback
        fingerprints: Dict[str, str] = {}

        try:
            context.enter(Phase.START.value, stamp=stamp.name, staging=str(staging))
            staging.mkdir(parents=True, exist_ok=True)

            rollback.push("remove_mount_point", lambda: self._snapshots.remove_mount_point(snapshot))
            rollback.push("resume_replication", controller.resume_paused)
            rollback.push("unlock_tables", controller.release_locks)
            context.enter(Phase.PAUSING.value)
            controller.pause()

            for client in clients:
                self._rotate_logs(client, staging / client.name)
            context.enter(Phase.LOG_ROTATED.value)

            rollback.push("destroy_snapshot", lambda: self._snapshots.destroy(snapshot))
            context.enter(Phase.SNAPSHOTTING.value, snapshot=snapshot.name)
            self._snapshots.create(snapshot)

            context.enter(Phase.UNLOCKING.value)
            controller.unlock()
            context.enter(Phase.RESUMING.value)
            controller.start()

            rollback.push("unmount_snapshot", lambda: self._snapshots.unmount(snapshot))
            self._snapshots.mount(snapshot)
            context.enter(Phase.MOUNTED.value, mount_point=str(snapshot.mount_point))

            for client in clients:
                context.enter(Phase.COPYING.value, instance=client.name)
                fingerprints[client.name] = self._copy_instance(client, snapshot, staging)

            context.enter(Phase.UNMOUNTING.value)
            self._snapshots.unmount(snapshot)
            self._snapshots.remove_mount_point(snapshot)
            self._snapshots.destroy(snapshot)
            context.enter(Phase.SNAPSHOT_DESTROYED.value)
            rollback.clear()

            context.enter(Phase.PUBLISHING.value)
            directory = self._publish(stamp, staging)
            context.enter(Phase.DONE.value, directory=str(directory))
        except BaseException as exc:
            failures = rollback.unwind()
            failed_phase = context.phase
            context.phase = Phase.FAILED.value
            self._logger.event(
                event="full_backup_failed",
                phase=failed_phase,
                ok=False,
                error=str(exc) or type(exc).__name__,
                staging=str(staging),
            )
            if failures:
                self._logger.error("rollback_incomplete", steps=failures)
            raise

        return FullBackupResult(
            stamp=stamp,
            directory=directory,
            instances=[client.name for client in clients],
            fingerprints=fingerprints,
        )

    # ------------------------------------------------------------------
    def _rotate_logs(self, client: MysqlClient, instance_dir: Path) -> None:
        before = client.active_log()
        client.flush_logs()
        after = client.active_log()
        if after == before:
            raise BackupError(f"{client.name}: binary log did not rotate (still {before})")
        client.purge_logs_to(after)
        instance_dir.mkdir(parents=True, exist_ok=True)
        (instance_dir / "master_status.txt").write_text(client.status_text("SHOW MASTER STATUS"), encoding="utf-8")
        (instance_dir / "slave_status.txt").write_text(client.status_text("SHOW SLAVE STATUS"), encoding="utf-8")
        self._logger.info("logs_rotated", instance=client.name, previous=before, active=after)

    def _copy_instance(self, client: MysqlClient, snapshot: Snapshot, staging: Path) -> str:
        source = client.instance.snapshot_data_dir(self._config.base_dir, snapshot.mount_point)
        destination = staging / client.name / "data"
        self._sync.copy_tree(source, destination, exclude=self._config.copy_exclude)
        return verify_copy(
            source,
            destination,
            exclude=self._config.copy_exclude,
            logger=self._logger,
            instance=client.name,
        )

    def _publish(self, stamp: BackupStamp, staging: Path) -> Path:
        target = self._layout.set_dir(stamp)
        if target.exists():
            raise BackupError(f"backup set {target} already exists")
        os.rename(staging, target)
        repoint_current(self._layout, target)
        return target


__all__ = ["FullBackup", "Phase", "mysql_clients", "repoint_current"]
