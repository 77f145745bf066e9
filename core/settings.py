from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional

from .paths import get_default_settings_paths
from .settings_schema import SETTINGS_VALIDATOR

__all__ = [
    "DEFAULT_SETTINGS",
    "SETTINGS_VERSION",
    "load_settings",
    "merge_defaults",
    "save_settings",
]

SETTINGS_VERSION = 1

LOGGER = logging.getLogger("dbbackup.settings")


DEFAULT_SETTINGS: Dict[str, Any] = {
    "version": SETTINGS_VERSION,
    "backup_root": "/backup/dbbackup",
    "pidfile": "/var/run/dbbackup.pid",
    "require_root": True,
    "mysql": {
        "client": "/usr/local/mysql/bin/mysql",
        "base_dir": "/mysql",
        "socket_name": "mysql.sock",
        "data_subdir": "data",
        "binlog_subdir": "binlog",
        # names, or objects with name/socket/data_dir/binlog_dir overrides
        "instances": [],
        "lock_timeout_s": 600,
    },
    "commands": {
        "lvcreate": "/usr/sbin/lvcreate",
        "lvremove": "/usr/sbin/lvremove",
        "lvs": "/usr/sbin/lvs",
        "mount": "/bin/mount",
        "umount": "/bin/umount",
        "rsync": "/usr/bin/rsync",
        "nice": "/bin/nice",
        "nice_adjustment": 10,
        "mail": "/bin/mail",
        "timeout_s": None,
    },
    "snapshot": {
        "size": "50GB",
        "volume_group": "vgname",
        "volume": "mysql",
        "mount_root": "/mnt",
        "filesystem": "ext3",
        "name_prefix": "mysql_snapshot",
    },
    "copy": {
        "exclude": ["lost+found", "*.pid", "mysql.sock"],
    },
    "archive": {
        "minimum_bytes": 161061273600,
        "retention_days": 30,
        "workers": 1,
    },
    "restore": {
        "settle_s": 5,
        "exclude": ["master.info"],
        "start_command": ["/usr/bin/supervisorctl", "start", "mysql:"],
        "stop_command": ["/usr/bin/supervisorctl", "stop", "mysql:"],
    },
    "notify": {
        "emails": [],
        "webhook_url": None,
        "timeout_s": 10,
    },
    "logging": {
        "level": "INFO",
        "file": None,
        "syslog_address": None,
        "category": "dbbackup",
    },
}


def merge_defaults(data: Dict[str, Any]) -> Dict[str, Any]:
    def _merge(default: Dict[str, Any], payload: Dict[str, Any]) -> Dict[str, Any]:
        result: Dict[str, Any] = {}
        for key, value in default.items():
            if isinstance(value, dict):
                current = payload.get(key)
                if isinstance(current, dict):
                    result[key] = _merge(value, current)
                else:
                    result[key] = _merge(value, {})
            elif isinstance(value, list):
                current = payload.get(key)
                if current is None:
                    result[key] = list(value)
                elif isinstance(current, list):
                    result[key] = list(current)
                else:
                    result[key] = current
            else:
                result[key] = payload.get(key, value)
        for key, value in payload.items():
            if key not in result:
                result[key] = value
        return result

    return _merge(DEFAULT_SETTINGS, data or {})


def _apply_migrations(settings: Dict[str, Any]) -> Dict[str, Any]:
    version = settings.get("version")
    try:
        version_int = int(version)
    except (TypeError, ValueError):
        version_int = 0
    if version_int < SETTINGS_VERSION:
        settings["version"] = SETTINGS_VERSION
    return settings


def _log_unknown_keys(settings: Dict[str, Any], source: Optional[Path]) -> None:
    unknown = list(SETTINGS_VALIDATOR.unknown_keys(settings))
    if not unknown:
        return
    LOGGER.warning("Ignoring unknown settings keys in %s: %s", source or "<defaults>", ", ".join(unknown))


def load_settings(explicit: Optional[Path] = None) -> Dict[str, Any]:
    """Load settings.json, merged over :data:`DEFAULT_SETTINGS`.

    An explicitly requested file must exist and parse; the implicit search
    locations are skipped when missing or unreadable.
    """

    data: Dict[str, Any] = {}
    source: Optional[Path] = None
    for index, candidate in enumerate(get_default_settings_paths(explicit)):
        required = explicit is not None and index == 0
        try:
            with open(candidate, "r", encoding="utf-8") as handle:
                loaded = json.load(handle)
        except FileNotFoundError:
            if required:
                raise
            continue
        except json.JSONDecodeError as exc:
            if required:
                raise ValueError(f"Invalid settings file {candidate}: {exc}") from exc
            LOGGER.warning("Skipping unreadable settings file %s: %s", candidate, exc)
            continue
        except OSError:
            if required:
                raise
            continue
        if isinstance(loaded, dict):
            data = loaded
            source = Path(candidate)
            break
    merged = merge_defaults(data)
    merged = _apply_migrations(merged)
    _log_unknown_keys(merged, source)
    return merged


def save_settings(settings: Dict[str, Any], path: Path) -> None:
    merged = merge_defaults(dict(settings))
    merged = _apply_migrations(merged)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as handle:
        json.dump(merged, handle, ensure_ascii=False, indent=2)
