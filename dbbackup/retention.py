"""Retention policy enforcement for archive bundles."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path
from typing import Callable, List, Optional

from .logs import BackupLogger
from .types import BackupStamp, RetentionSummary


@dataclass(slots=True)
class RetentionPolicy:
    retention_days: int = 30


@dataclass(slots=True)
class _BundleMeta:
    stamp: BackupStamp
    path: Path
    size_bytes: int


def _load_bundles(base: Path, *, logger: BackupLogger) -> tuple[List[_BundleMeta], List[str]]:
    items: List[_BundleMeta] = []
    skipped: List[str] = []
    if not base.exists():
        return items, skipped
    for child in sorted(base.glob("*.tar")):
        if not child.is_file():
            continue
        try:
            stamp = BackupStamp.parse_archive(child.name, child)
        except ValueError:
            skipped.append(child.name)
            logger.warning("retention_skipped", name=child.name, reason="unparsable name")
            continue
        items.append(_BundleMeta(stamp=stamp, path=child, size_bytes=child.stat().st_size))
    items.sort(key=lambda meta: meta.stamp.moment)
    return items, skipped


def apply_retention(
    archive_dir: Path,
    policy: RetentionPolicy,
    *,
    logger: BackupLogger,
    clock: Optional[Callable[[], datetime]] = None,
) -> RetentionSummary:
    items, skipped = _load_bundles(archive_dir, logger=logger)
    cutoff = (clock or datetime.now)() - timedelta(days=policy.retention_days)

    removed: List[str] = []
    kept: List[str] = []
    freed = 0
    for meta in items:
        if meta.stamp.moment >= cutoff:
            kept.append(meta.path.name)
            continue
        meta.path.unlink()
        removed.append(meta.path.name)
        freed += meta.size_bytes
        logger.warning("archive_removed", name=meta.path.name, reason="retention")

    logger.event(
        event="retention_applied",
        phase="retention",
        ok=True,
        removed=len(removed),
        kept=len(kept),
        skipped=len(skipped),
        cutoff=cutoff.isoformat(),
    )
    return RetentionSummary(removed=removed, kept=kept, skipped=skipped, freed_bytes=freed)


__all__ = ["RetentionPolicy", "apply_retention"]
