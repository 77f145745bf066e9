"""Typed view over the merged settings dictionary."""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, List, Mapping, Optional

from core.paths import expand_path
from core.settings import DEFAULT_SETTINGS, merge_defaults

from .types import BackupLayout


@dataclass(frozen=True, slots=True)
class Instance:
    """One MySQL server sharing the snapshot volume."""

    name: str
    socket: Path
    data_dir: Path
    binlog_dir: Path

    def snapshot_data_dir(self, base_dir: Path, mount_point: Path) -> Path:
        """Location of ``data_dir`` inside a mounted snapshot of ``base_dir``."""

        try:
            relative = self.data_dir.relative_to(base_dir)
        except ValueError:
            relative = Path(self.name) / "data"
        return mount_point / relative


@dataclass(frozen=True, slots=True)
class CommandsConfig:
    lvcreate: str
    lvremove: str
    lvs: str
    mount: str
    umount: str
    rsync: str
    nice: str
    nice_adjustment: int
    mail: str
    timeout_s: Optional[float]


@dataclass(frozen=True, slots=True)
class SnapshotConfig:
    size: str
    volume_group: str
    volume: str
    mount_root: Path
    filesystem: str
    name_prefix: str

    @property
    def source_volume(self) -> str:
        return f"/dev/{self.volume_group}/{self.volume}"


@dataclass(frozen=True, slots=True)
class ArchiveConfig:
    minimum_bytes: int
    retention_days: int
    workers: int


@dataclass(frozen=True, slots=True)
class RestoreConfig:
    settle_s: float
    exclude: List[str]
    start_command: List[str]
    stop_command: List[str]


@dataclass(frozen=True, slots=True)
class NotifyConfig:
    emails: List[str]
    webhook_url: Optional[str]
    timeout_s: float


@dataclass(frozen=True, slots=True)
class BackupConfig:
    backup_root: Path
    pidfile: Path
    require_root: bool
    mysql_client: str
    base_dir: Path
    lock_timeout_s: float
    instances: List[Instance]
    commands: CommandsConfig
    snapshot: SnapshotConfig
    copy_exclude: List[str]
    archive: ArchiveConfig
    restore: RestoreConfig
    notify: NotifyConfig

    @property
    def layout(self) -> BackupLayout:
        return BackupLayout(self.backup_root)

    def instance(self, name: str) -> Optional[Instance]:
        for instance in self.instances:
            if instance.name == name:
                return instance
        return None

    @classmethod
    def from_settings(cls, settings: Optional[Mapping[str, Any]] = None) -> "BackupConfig":
        merged = merge_defaults(dict(settings or {}))
        mysql = merged["mysql"]
        base_dir = expand_path(mysql["base_dir"])
        instances = _parse_instances(mysql, base_dir)

        commands = merged["commands"]
        snapshot = merged["snapshot"]
        archive = merged["archive"]
        restore = merged["restore"]
        notify = merged["notify"]
        timeout = commands.get("timeout_s")
        return cls(
            backup_root=expand_path(merged["backup_root"]),
            pidfile=expand_path(merged["pidfile"]),
            require_root=bool(merged["require_root"]),
            mysql_client=str(mysql["client"]),
            base_dir=base_dir,
            lock_timeout_s=float(mysql.get("lock_timeout_s") or DEFAULT_SETTINGS["mysql"]["lock_timeout_s"]),
            instances=instances,
            commands=CommandsConfig(
                lvcreate=str(commands["lvcreate"]),
                lvremove=str(commands["lvremove"]),
                lvs=str(commands["lvs"]),
                mount=str(commands["mount"]),
                umount=str(commands["umount"]),
                rsync=str(commands["rsync"]),
                nice=str(commands["nice"]),
                nice_adjustment=int(commands.get("nice_adjustment") or 0),
                mail=str(commands["mail"]),
                timeout_s=float(timeout) if timeout else None,
            ),
            snapshot=SnapshotConfig(
                size=str(snapshot["size"]),
                volume_group=str(snapshot["volume_group"]),
                volume=str(snapshot["volume"]),
                mount_root=expand_path(snapshot["mount_root"]),
                filesystem=str(snapshot["filesystem"]),
                name_prefix=str(snapshot["name_prefix"]),
            ),
            copy_exclude=_string_list(merged["copy"]["exclude"]),
            archive=ArchiveConfig(
                minimum_bytes=int(archive["minimum_bytes"]),
                retention_days=int(archive["retention_days"]),
                workers=max(1, int(archive.get("workers") or 1)),
            ),
            restore=RestoreConfig(
                settle_s=float(restore.get("settle_s") or 0),
                exclude=_string_list(restore["exclude"]),
                start_command=_command(restore["start_command"]),
                stop_command=_command(restore["stop_command"]),
            ),
            notify=NotifyConfig(
                emails=_string_list(notify["emails"]),
                webhook_url=notify.get("webhook_url") or None,
                timeout_s=float(notify.get("timeout_s") or 10),
            ),
        )


def _command(value: Any) -> List[str]:
    if isinstance(value, str):
        return value.split()
    return [str(part) for part in value]


def _string_list(value: Any) -> List[str]:
    if isinstance(value, str):
        return [value]
    return [str(item) for item in value]


def _parse_instances(mysql: Mapping[str, Any], base_dir: Path) -> List[Instance]:
    socket_name = str(mysql.get("socket_name") or "mysql.sock")
    data_subdir = str(mysql.get("data_subdir") or "data")
    binlog_subdir = str(mysql.get("binlog_subdir") or "binlog")
    instances: List[Instance] = []
    seen: set[str] = set()
    for entry in mysql.get("instances") or []:
        overrides: Mapping[str, Any]
        if isinstance(entry, Mapping):
            overrides = entry
            name = str(entry.get("name") or "").strip()
        else:
            overrides = {}
            name = str(entry).strip()
        if not name:
            raise ValueError("mysql.instances entries need a name")
        if name in seen:
            raise ValueError(f"duplicate mysql instance {name!r}")
        seen.add(name)
        home = base_dir / name
        instances.append(
            Instance(
                name=name,
                socket=_override(overrides, "socket", home / socket_name),
                data_dir=_override(overrides, "data_dir", home / data_subdir),
                binlog_dir=_override(overrides, "binlog_dir", home / binlog_subdir),
            )
        )
    return instances


def _override(overrides: Mapping[str, Any], key: str, default: Path) -> Path:
    value = overrides.get(key)
    return expand_path(value) if value else default


__all__ = [
    "ArchiveConfig",
    "BackupConfig",
    "CommandsConfig",
    "Instance",
    "NotifyConfig",
    "RestoreConfig",
    "SnapshotConfig",
]
