"""Directory fingerprints used to check copies against their source."""
from __future__ import annotations

import fnmatch
import hashlib
import os
from pathlib import Path
from typing import Iterable, List, Sequence

from .errors import BackupVerificationError
from .logs import BackupLogger

DEFAULT_EXCLUDE = ("lost+found", "*.pid", "mysql.sock")


def _excluded(name: str, patterns: Sequence[str]) -> bool:
    return any(fnmatch.fnmatchcase(name, pattern) for pattern in patterns)


def _entries(directory: Path, patterns: Sequence[str]) -> List[str]:
    entries: List[str] = []
    for root, dirs, files in os.walk(directory):
        dirs[:] = sorted(name for name in dirs if not _excluded(name, patterns))
        for name in files:
            if _excluded(name, patterns):
                continue
            path = Path(root) / name
            if path.is_symlink() or not path.is_file():
                continue
            stat = path.stat()
            relative = path.relative_to(directory).as_posix()
            entries.append(f"{relative}\t{stat.st_size}\t{int(stat.st_mtime)}")
    entries.sort()
    return entries


def fingerprint(directory: Path, exclude: Iterable[str] = DEFAULT_EXCLUDE) -> str:
    """SHA-256 over the sorted ``path, size, mtime`` lines of every regular file.

    This detects a truncated or incomplete copy on the same host. It does not
    read file contents.
    """

    directory = Path(directory)
    if not directory.is_dir():
        raise BackupVerificationError(f"cannot fingerprint {directory}: not a directory")
    digest = hashlib.sha256()
    for line in _entries(directory, tuple(exclude)):
        digest.update(line.encode("utf-8", "surrogateescape"))
        digest.update(b"\n")
    return digest.hexdigest()


def compare(source: str, copy: str) -> bool:
    return source == copy


def verify_copy(
    source: Path,
    copy: Path,
    *,
    exclude: Iterable[str] = DEFAULT_EXCLUDE,
    logger: BackupLogger,
    instance: str,
) -> str:
    patterns = tuple(exclude)
    expected = fingerprint(source, patterns)
    actual = fingerprint(copy, patterns)
    ok = compare(expected, actual)
    logger.event(event="verify", phase="copying", ok=ok, instance=instance, source=expected, copy=actual)
    if not ok:
        raise BackupVerificationError(f"{instance}: copy of {source} does not match ({expected} != {actual})")
    return actual


__all__ = ["DEFAULT_EXCLUDE", "compare", "fingerprint", "verify_copy"]
