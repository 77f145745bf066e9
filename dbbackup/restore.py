"""Refresh live instance data directories from the current backup."""
from __future__ import annotations

import shutil
import time
from pathlib import Path
from typing import Callable, List

from .config import BackupConfig, Instance
from .errors import BackupError, BackupRestoreError, PreconditionError, RunInterrupted
from .logs import BackupLogger
from .mysql import InstanceGroup
from .runner import ProcessRunner
from .sync import Synchronizer


def _clear_binlogs(binlog_dir: Path) -> int:
    removed = 0
    if not binlog_dir.is_dir():
        return removed
    for path in binlog_dir.iterdir():
        if path.is_file() or path.is_symlink():
            path.unlink()
            removed += 1
    return removed


def restore_current(
    config: BackupConfig,
    *,
    runner: ProcessRunner,
    logger: BackupLogger,
    sleep: Callable[[float], None] = time.sleep,
) -> List[str]:
    """Copy ``current/<instance>/data`` over every live data directory.

    Instances are stopped first and started again at the end. On failure
    they are left stopped.
    """

    current = config.layout.current_target()
    if current is None:
        raise PreconditionError(f"no current backup at {config.layout.current}")
    missing = [i.name for i in config.instances if not (current / i.name / "data").is_dir()]
    if missing:
        raise PreconditionError(f"current backup {current} has no data for {', '.join(missing)}")

    group = InstanceGroup(runner, config.restore.start_command, config.restore.stop_command)
    sync = Synchronizer(runner, config.commands)
    restored: List[str] = []
    logger.event(event="restore_start", phase="restore", ok=True, source=str(current))
    try:
        group.stop()
        sleep(config.restore.settle_s)
        for instance in config.instances:
            _restore_instance(instance, current / instance.name / "data", sync, config.restore.exclude, logger)
            restored.append(instance.name)
        group.start()
    except RunInterrupted:
        raise
    except (BackupError, OSError) as exc:
        logger.event(event="restore_failed", phase="restore", ok=False, error=str(exc), restored=restored)
        raise BackupRestoreError(f"restore from {current} failed: {exc}") from exc
    logger.event(event="restore_done", phase="restore", ok=True, instances=restored)
    return restored


def _restore_instance(
    instance: Instance,
    source: Path,
    sync: Synchronizer,
    exclude: List[str],
    logger: BackupLogger,
) -> None:
    if instance.data_dir.exists():
        shutil.rmtree(instance.data_dir)
    binlogs = _clear_binlogs(instance.binlog_dir)
    logger.info("restore_cleared", instance=instance.name, data_dir=str(instance.data_dir), binlogs=binlogs)
    sync.copy_tree(source, instance.data_dir, exclude=exclude)
    logger.info("restore_copied", instance=instance.name, source=str(source))


__all__ = ["restore_current"]
