"""Compact aged backup sets into size-checked tar bundles."""
from __future__ import annotations

import os
import shutil
import tarfile
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import List

from .config import BackupConfig
from .errors import ArchiveTooSmallError, BackupError, PreconditionError, RunInterrupted
from .logs import BackupLogger
from .types import ArchiveOutcome, ArchiveSummary, BackupStamp

STATUS_FILES = ("master_status.txt", "slave_status.txt", "incremental_slave_status.txt")
COMPRESSED_DIRS = ("data", "binlog")


def _ensure_parent(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)


def _compress_directory(source: Path, dest: Path) -> int:
    _ensure_parent(dest)
    with tarfile.open(dest, "w:gz") as bundle:
        bundle.add(str(source), arcname=source.name)
    return dest.stat().st_size


def _bundle_directory(source: Path, dest: Path, *, arcname: str) -> int:
    _ensure_parent(dest)
    with tarfile.open(dest, "w") as bundle:
        bundle.add(str(source), arcname=arcname)
    return dest.stat().st_size


def _remove(path: Path) -> None:
    if path.is_symlink() or path.is_file():
        path.unlink()
    elif path.exists():
        shutil.rmtree(path)


class ArchivePipeline:
    def __init__(self, config: BackupConfig, *, logger: BackupLogger) -> None:
        self._config = config
        self._layout = config.layout
        self._logger = logger

    def candidates(self) -> List[BackupStamp]:
        """Backup sets that are neither ``current`` nor archived yet, oldest first."""

        root = self._layout.root
        if not root.is_dir():
            return []
        current = self._layout.current_target()
        found: List[BackupStamp] = []
        for child in root.iterdir():
            if child.is_symlink() or not child.is_dir():
                continue
            stamp = BackupStamp.try_parse(child.name, child)
            if stamp is None:
                continue
            if current is not None and child.resolve() == current:
                continue
            if self._layout.archive_file(stamp).exists():
                self._logger.info("archive_exists", stamp=stamp.name)
                continue
            found.append(stamp)
        found.sort(key=lambda item: item.moment)
        return found

    def run(self) -> ArchiveSummary:
        summary = ArchiveSummary()
        self._layout.incomplete.mkdir(parents=True, exist_ok=True)
        self._layout.archive.mkdir(parents=True, exist_ok=True)
        for stamp in self.candidates():
            try:
                outcome = self.archive_set(stamp)
            except RunInterrupted:
                raise
            except (BackupError, OSError, tarfile.TarError) as exc:
                summary.failed[stamp.name] = str(exc)
                self._logger.event(event="archive_failed", phase="archive", ok=False, stamp=stamp.name, error=str(exc))
                continue
            if outcome.created:
                summary.archived.append(outcome)
            else:
                summary.skipped.append(stamp.name)
        self._logger.event(
            event="archive_done",
            phase="archive",
            ok=summary.ok,
            archived=len(summary.archived),
            skipped=len(summary.skipped),
            failed=len(summary.failed),
        )
        return summary

    def archive_set(self, stamp: BackupStamp) -> ArchiveOutcome:
        bundle = self._layout.archive_file(stamp)
        if bundle.exists():
            self._logger.info("archive_exists", stamp=stamp.name, bundle=str(bundle))
            return ArchiveOutcome(stamp=stamp, bundle=bundle, created=False, size_bytes=bundle.stat().st_size)

        source = self._layout.set_dir(stamp)
        if not source.is_dir():
            raise PreconditionError(f"backup set {source} does not exist")
        staging_dir = self._layout.archive_staging_dir(stamp)
        staging_file = self._layout.archive_staging_file(stamp)
        for leftover in (staging_dir, staging_file):
            if leftover.exists() or leftover.is_symlink():
                self._logger.warning("archive_leftover_removed", path=str(leftover))
                _remove(leftover)

        instances = [i.name for i in self._config.instances if (source / i.name).is_dir()]
        for instance in self._config.instances:
            if instance.name not in instances:
                self._logger.warning("archive_instance_missing", stamp=stamp.name, instance=instance.name)
        self._logger.event(event="archive_start", phase="compress", ok=True, stamp=stamp.name, instances=instances)
        with ThreadPoolExecutor(max_workers=self._config.archive.workers) as pool:
            futures = [pool.submit(self._stage_instance, source / name, staging_dir / name) for name in instances]
            for future in futures:
                future.result()

        size = _bundle_directory(staging_dir, staging_file, arcname=stamp.name)
        minimum = self._config.archive.minimum_bytes
        if size < minimum:
            self._logger.event(
                event="archive_too_small", phase="validate", ok=False, stamp=stamp.name, size=size, minimum=minimum
            )
            raise ArchiveTooSmallError(f"archive {staging_file} is {size} bytes, below the minimum of {minimum}")

        bundle.parent.mkdir(parents=True, exist_ok=True)
        os.rename(staging_file, bundle)
        self._logger.event(event="archive_published", phase="publish", ok=True, stamp=stamp.name, size=size)
        shutil.rmtree(staging_dir)
        shutil.rmtree(source)
        self._logger.info("archive_source_removed", path=str(source))
        return ArchiveOutcome(stamp=stamp, bundle=bundle, created=True, size_bytes=size)

    def _stage_instance(self, source: Path, target: Path) -> None:
        target.mkdir(parents=True, exist_ok=True)
        for name in COMPRESSED_DIRS:
            directory = source / name
            if not directory.is_dir():
                continue
            size = _compress_directory(directory, target / f"{name}.tar.gz")
            self._logger.info("compressed", source=str(directory), size=size)
        for name in STATUS_FILES:
            status = source / name
            if status.is_file():
                shutil.copy2(status, target / name)


__all__ = ["ArchivePipeline"]
