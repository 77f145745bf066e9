"""Public API for backup operations."""
from __future__ import annotations

import time
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, TypeVar

from .archive import ArchivePipeline
from .config import BackupConfig
from .errors import AlreadyRunningError, BackupError
from .full import FullBackup
from .incremental import IncrementalBackup
from .lock import RunLock
from .logs import BackupLogger
from .notify import Notifier
from .restore import restore_current
from .retention import RetentionPolicy, apply_retention
from .runner import ProcessRunner
from .session import InterruptGuard, RunContext
from .status import StatusReport, StatusReporter
from .types import ArchiveSummary, FullBackupResult, IncrementalResult, RetentionSummary

T = TypeVar("T")


class BackupService:
    """Run each command under the run lock, signal guard and failure notifier."""

    def __init__(
        self,
        config: BackupConfig,
        *,
        runner: Optional[ProcessRunner] = None,
        notifier: Optional[Notifier] = None,
        clock: Optional[Callable[[], datetime]] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._config = config
        self._runner = runner or ProcessRunner(timeout_s=config.commands.timeout_s)
        self._logger = BackupLogger(config.layout.logs)
        self._notifier = notifier or Notifier(config.notify, config.commands, self._runner, clock=clock)
        self._clock = clock
        self._sleep = sleep

    @classmethod
    def from_settings(cls, settings: Optional[Dict[str, Any]] = None, **kwargs: Any) -> "BackupService":
        return cls(BackupConfig.from_settings(settings), **kwargs)

    # ------------------------------------------------------------------
    @property
    def config(self) -> BackupConfig:
        return self._config

    @property
    def logger(self) -> BackupLogger:
        return self._logger

    # ------------------------------------------------------------------
    def _run(self, command: str, operation: Callable[[RunContext], T]) -> T:
        context = RunContext(command, self._logger)
        try:
            with RunLock(self._config.pidfile, logger=self._logger), InterruptGuard(self._logger, context.rollback):
                self._logger.event(event="run_start", phase=command, ok=True)
                result = operation(context)
        except AlreadyRunningError as exc:
            self._logger.error("already_running", command=command, error=str(exc))
            raise
        except (BackupError, OSError) as exc:
            self._logger.event(event="run_failed", phase=command, ok=False, error=str(exc) or type(exc).__name__)
            self._notifier.failure(command, str(exc) or type(exc).__name__)
            raise
        self._logger.event(event="run_done", phase=command, ok=True)
        return result

    # ------------------------------------------------------------------
    def full(self) -> FullBackupResult:
        job = FullBackup(self._config, runner=self._runner, logger=self._logger, clock=self._clock)
        return self._run("full", job.run)

    def incremental(self) -> List[IncrementalResult]:
        job = IncrementalBackup(self._config, runner=self._runner, logger=self._logger, clock=self._clock)
        return self._run("incremental", job.run)

    def archive(self) -> ArchiveSummary:
        pipeline = ArchivePipeline(self._config, logger=self._logger)

        def _archive(_context: RunContext) -> ArchiveSummary:
            summary = pipeline.run()
            if not summary.ok:
                details = "; ".join(f"{name}: {reason}" for name, reason in sorted(summary.failed.items()))
                raise BackupError(f"archiving failed for {len(summary.failed)} backup(s): {details}")
            return summary

        return self._run("archive", _archive)

    def delete(self) -> RetentionSummary:
        policy = RetentionPolicy(retention_days=self._config.archive.retention_days)
        return self._run(
            "delete",
            lambda _context: apply_retention(self._config.layout.archive, policy, logger=self._logger, clock=self._clock),
        )

    def restore(self) -> List[str]:
        return self._run(
            "restore",
            lambda _context: restore_current(self._config, runner=self._runner, logger=self._logger, sleep=self._sleep),
        )

    def status(self, scope: Optional[str] = None) -> StatusReport:
        return StatusReporter(self._config).report(scope)


__all__ = ["BackupService"]
