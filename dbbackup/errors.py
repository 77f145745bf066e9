"""Error hierarchy for backup operations."""
from __future__ import annotations

from typing import Optional, Sequence


class BackupError(RuntimeError):
    """Base exception for backup related failures."""


class CommandError(BackupError):
    """Raised when an external tool exits nonzero or times out."""

    def __init__(self, message: str, *, argv: Optional[Sequence[str]] = None, returncode: Optional[int] = None) -> None:
        super().__init__(message)
        self.argv = list(argv or [])
        self.returncode = returncode


class SnapshotError(CommandError):
    """Raised when an LVM snapshot cannot be created, mounted or removed."""


class BackupVerificationError(BackupError):
    """Raised when a copied directory does not match its source."""


class PreconditionError(BackupError):
    """Raised before any mutation when a run cannot start."""


class ArchiveTooSmallError(BackupError):
    """Raised when a staged archive is below the configured minimum size."""


class BackupRestoreError(BackupError):
    """Raised when restoring the current backup fails."""


class AlreadyRunningError(BackupError):
    """Raised when another run holds the run lock."""


class RunInterrupted(BackupError):
    """Raised inside a run when SIGINT or SIGTERM arrives."""


__all__ = [
    "AlreadyRunningError",
    "ArchiveTooSmallError",
    "BackupError",
    "BackupRestoreError",
    "BackupVerificationError",
    "CommandError",
    "PreconditionError",
    "RunInterrupted",
    "SnapshotError",
]
