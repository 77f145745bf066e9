"""Common dataclasses shared across backup modules."""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Callable, List, Optional

from core.paths import get_archive_dir, get_current_link, get_incomplete_dir, get_logs_dir

STAMP_FORMAT = "%Y-%m-%d_%H.%M.%S"
_STAMP_RE = re.compile(r"^\d{4}-\d{2}-\d{2}_\d{2}\.\d{2}\.\d{2}$")
_BUNDLE_SUFFIX = ".tar"


@dataclass(frozen=True, slots=True)
class BackupStamp:
    """Timestamp naming a backup set (``<stamp>/``) or bundle (``<stamp>.tar``)."""

    moment: datetime
    path: Optional[Path] = None

    @property
    def name(self) -> str:
        return self.moment.strftime(STAMP_FORMAT)

    @property
    def archive_name(self) -> str:
        return f"{self.name}{_BUNDLE_SUFFIX}"

    def __str__(self) -> str:
        return self.name

    @classmethod
    def now(cls, clock: Optional[Callable[[], datetime]] = None) -> "BackupStamp":
        moment = (clock or datetime.now)()
        return cls(moment.replace(microsecond=0))

    @classmethod
    def parse(cls, name: str, path: Optional[Path] = None) -> "BackupStamp":
        """Parse ``YYYY-MM-DD_HH.MM.SS``; anything else raises ``ValueError``."""

        if not _STAMP_RE.match(name or ""):
            raise ValueError(f"not a backup stamp: {name!r}")
        return cls(datetime.strptime(name, STAMP_FORMAT), path)

    @classmethod
    def parse_archive(cls, name: str, path: Optional[Path] = None) -> "BackupStamp":
        if not name.endswith(_BUNDLE_SUFFIX):
            raise ValueError(f"not an archive bundle: {name!r}")
        return cls.parse(name[: -len(_BUNDLE_SUFFIX)], path)

    @classmethod
    def try_parse(cls, name: str, path: Optional[Path] = None) -> Optional["BackupStamp"]:
        try:
            return cls.parse(name, path)
        except ValueError:
            return None


@dataclass(frozen=True, slots=True)
class BackupLayout:
    """Directory layout under the backup root."""

    root: Path

    @property
    def current(self) -> Path:
        return get_current_link(self.root)

    @property
    def incomplete(self) -> Path:
        return get_incomplete_dir(self.root)

    @property
    def archive(self) -> Path:
        return get_archive_dir(self.root)

    @property
    def logs(self) -> Path:
        return get_logs_dir(self.root)

    def staging_dir(self, stamp: BackupStamp) -> Path:
        return self.incomplete / f"new_{stamp.name}"

    def set_dir(self, stamp: BackupStamp) -> Path:
        return self.root / stamp.name

    def archive_file(self, stamp: BackupStamp) -> Path:
        return self.archive / stamp.archive_name

    def archive_staging_dir(self, stamp: BackupStamp) -> Path:
        return self.incomplete / stamp.name

    def archive_staging_file(self, stamp: BackupStamp) -> Path:
        return self.incomplete / stamp.archive_name

    def current_target(self) -> Optional[Path]:
        """Resolved target of ``current`` or ``None`` when it does not exist."""

        link = self.current
        if not link.is_symlink() and not link.exists():
            return None
        target = link.resolve()
        if not target.is_dir():
            return None
        return target


@dataclass(slots=True)
class FullBackupResult:
    stamp: BackupStamp
    directory: Path
    instances: List[str]
    fingerprints: dict = field(default_factory=dict)


@dataclass(slots=True)
class IncrementalResult:
    instance: str
    captured_log: str
    captured_position: int
    new_log: str
    copied: List[str] = field(default_factory=list)


@dataclass(slots=True)
class ArchiveOutcome:
    stamp: BackupStamp
    bundle: Path
    created: bool
    size_bytes: int


@dataclass(slots=True)
class ArchiveSummary:
    archived: List[ArchiveOutcome] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    failed: dict = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failed


@dataclass(slots=True)
class RetentionSummary:
    removed: List[str]
    kept: List[str]
    skipped: List[str]
    freed_bytes: int


__all__ = [
    "ArchiveOutcome",
    "ArchiveSummary",
    "BackupLayout",
    "BackupStamp",
    "FullBackupResult",
    "IncrementalResult",
    "RetentionSummary",
    "STAMP_FORMAT",
]
