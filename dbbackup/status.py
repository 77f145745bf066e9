"""Read-only status report about archives, the current set and instances."""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from .config import BackupConfig

SCOPES = ("archive", "current", "instances", "all")

_KB = 1024
_MB = 1024 * 1024
_GB = 1024 * 1024 * 1024


def format_size(size: int) -> str:
    if size <= _KB:
        human = f"{size} B"
    elif size <= _MB:
        human = f"{size // _KB} kB"
    elif size <= _GB:
        human = f"{size // _MB} MB"
    else:
        human = f"{size // _GB} GB"
    return f"{size} ({human})"


def format_mtime(mtime: float) -> str:
    stamp = datetime.fromtimestamp(mtime).strftime("%Y-%m-%d %H:%M:%S")
    return f"{int(mtime)} ({stamp})"


def tree_size(path: Path) -> int:
    total = 0
    for root, dirs, files in os.walk(path):
        for name in dirs + files:
            entry = Path(root) / name
            try:
                total += entry.lstat().st_size
            except FileNotFoundError:
                continue
    return total + path.lstat().st_size


def _newest(paths: List[Path]) -> Optional[Path]:
    files = [path for path in paths if path.is_file()]
    if not files:
        return None
    return max(files, key=lambda path: path.stat().st_mtime)


@dataclass(slots=True)
class StatusReport:
    lines: List[str] = field(default_factory=list)
    ok: bool = True

    def text(self) -> str:
        return "\n".join(self.lines)


class StatusReporter:
    def __init__(self, config: BackupConfig) -> None:
        self._config = config
        self._layout = config.layout

    def report(self, scope: Optional[str] = None) -> StatusReport:
        report = StatusReport()
        scope = (scope or "all").strip() or "all"
        if scope == "archive":
            self._archive(report)
        elif scope == "current":
            self._current(report)
        elif scope == "instances":
            for instance in self._config.instances:
                self._instance(report, instance.name)
        elif scope == "all":
            self._archive(report)
            self._current(report)
            for instance in self._config.instances:
                self._instance(report, instance.name)
        else:
            self._instance(report, scope)
        return report

    # ------------------------------------------------------------------
    def _archive(self, report: StatusReport) -> None:
        archive_dir = self._layout.archive
        latest = _newest(list(archive_dir.iterdir())) if archive_dir.is_dir() else None
        if latest is None:
            report.lines.append("Zero archived backups.")
            return
        stat = latest.stat()
        report.lines.append(f"Latest archived backup: {latest}")
        report.lines.append(f"  Size: {format_size(stat.st_size)}")
        report.lines.append(f"  mtime: {format_mtime(stat.st_mtime)}")

    def _current(self, report: StatusReport) -> None:
        target = self._layout.current_target()
        if target is None:
            report.lines.append("Current backup directory does not exist.  You probably need to run your first full backup.")
            report.ok = False
            return
        report.lines.append("")
        report.lines.append("Current backup status:")
        report.lines.append(f"  {target}")
        report.lines.append(f"  Size: {format_size(tree_size(target))}")
        report.lines.append("")

    def _instance(self, report: StatusReport, name: str) -> None:
        target = self._layout.current_target()
        directory = target / name if target is not None else None
        if directory is None or not directory.is_dir():
            report.lines.append(f"Backup instance '{name}' does not exist.  You probably need to run your first full backup.")
            report.ok = False
            return
        report.lines.append(f"  {name} Size: {format_size(tree_size(directory))}")
        binlog_dir = directory / "binlog"
        latest = _newest(list(binlog_dir.iterdir())) if binlog_dir.is_dir() else None
        if latest is None:
            report.lines.append("    No incremental binlogs.")
        else:
            stat = latest.stat()
            report.lines.append(f"    Latest incremental binlog: {latest}")
            report.lines.append(f"    Size:  {format_size(stat.st_size)}")
            report.lines.append(f"    mtime: {format_mtime(stat.st_mtime)}")
        report.lines.append("")


__all__ = ["SCOPES", "StatusReport", "StatusReporter", "format_size", "tree_size"]
