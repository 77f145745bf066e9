"""LVM copy-on-write snapshot lifecycle."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import List

from .config import CommandsConfig, SnapshotConfig
from .errors import SnapshotError
from .runner import ProcessRunner
from .types import BackupStamp

LOGGER = logging.getLogger("dbbackup.snapshot")


@dataclass(frozen=True, slots=True)
class Snapshot:
    name: str
    volume_group: str
    mount_point: Path

    @property
    def device(self) -> str:
        return f"/dev/{self.volume_group}/{self.name}"


class SnapshotManager:
    """Create, mount and tear down a snapshot of the shared MySQL volume.

    ``unmount`` and ``destroy`` check the mount table and the volume group
    first and succeed without doing anything when the resource is gone.
    """

    def __init__(self, runner: ProcessRunner, commands: CommandsConfig, config: SnapshotConfig) -> None:
        self._runner = runner
        self._commands = commands
        self._config = config

    def handle_for(self, stamp: BackupStamp) -> Snapshot:
        name = f"{self._config.name_prefix}_{stamp.name}"
        return Snapshot(name=name, volume_group=self._config.volume_group, mount_point=self._config.mount_root / name)

    # ------------------------------------------------------------------
    def create(self, snapshot: Snapshot) -> Snapshot:
        argv = [
            self._commands.lvcreate,
            f"-L{self._config.size}",
            "-s",
            "-n",
            snapshot.name,
            self._config.source_volume,
        ]
        self._runner.run(argv).check(f"creating snapshot {snapshot.name}", SnapshotError)
        return snapshot

    def mount(self, snapshot: Snapshot) -> None:
        snapshot.mount_point.mkdir(parents=True, exist_ok=True)
        if self.is_mounted(snapshot):
            return
        argv = [
            self._commands.mount,
            "-t",
            self._config.filesystem,
            "-o",
            "rw",
            snapshot.device,
            str(snapshot.mount_point),
        ]
        self._runner.run(argv).check(f"mounting snapshot {snapshot.name}", SnapshotError)

    def unmount(self, snapshot: Snapshot) -> None:
        if not self.is_mounted(snapshot):
            LOGGER.info("snapshot %s is not mounted", snapshot.name)
            return
        self._runner.run([self._commands.umount, str(snapshot.mount_point)]).check(
            f"unmounting snapshot {snapshot.name}", SnapshotError
        )

    def destroy(self, snapshot: Snapshot) -> None:
        if not self.exists(snapshot):
            LOGGER.info("snapshot %s does not exist", snapshot.name)
            return
        self._runner.run([self._commands.lvremove, "-f", snapshot.device]).check(
            f"removing snapshot {snapshot.name}", SnapshotError
        )

    def remove_mount_point(self, snapshot: Snapshot) -> None:
        if not snapshot.mount_point.exists():
            return
        if self.is_mounted(snapshot):
            raise SnapshotError(f"refusing to remove {snapshot.mount_point}: still mounted")
        snapshot.mount_point.rmdir()

    # ------------------------------------------------------------------
    def is_mounted(self, snapshot: Snapshot) -> bool:
        result = self._runner.run([self._commands.mount], echo=False)
        result.check("listing mounts", SnapshotError)
        target = str(snapshot.mount_point)
        return any(target in _mount_targets(line) for line in result.output.splitlines())

    def exists(self, snapshot: Snapshot) -> bool:
        argv = [self._commands.lvs, "--noheadings", "-o", "lv_name", snapshot.volume_group]
        result = self._runner.run(argv, echo=False)
        result.check(f"listing volumes in {snapshot.volume_group}", SnapshotError)
        return snapshot.name in {line.strip() for line in result.output.splitlines()}


def _mount_targets(line: str) -> List[str]:
    # "<device> on <target> type <fs> (<options>)"
    parts = line.split(" on ", 1)
    if len(parts) != 2:
        return []
    target = parts[1].split(" type ", 1)[0]
    return [target.strip()]


__all__ = ["Snapshot", "SnapshotManager"]
