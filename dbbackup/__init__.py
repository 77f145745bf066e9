"""Crash-consistent backups of MySQL instances sharing one LVM volume."""
from __future__ import annotations

__version__ = "1.0.0"

from .api import BackupService
from .config import BackupConfig, Instance
from .errors import BackupError
from .retention import RetentionPolicy
from .types import BackupStamp, RetentionSummary

__all__ = [
    "BackupConfig",
    "BackupError",
    "BackupService",
    "BackupStamp",
    "Instance",
    "RetentionPolicy",
    "RetentionSummary",
    "__version__",
]
