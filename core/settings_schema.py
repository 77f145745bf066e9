from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Iterable, Mapping


_ALLOWED_STRUCTURE: Dict[str, Any] = {
    "mysql": {
        "client",
        "base_dir",
        "socket_name",
        "data_subdir",
        "binlog_subdir",
        "instances",
        "lock_timeout_s",
    },
    "commands": {
        "lvcreate",
        "lvremove",
        "lvs",
        "mount",
        "umount",
        "rsync",
        "nice",
        "nice_adjustment",
        "mail",
        "timeout_s",
    },
    "snapshot": {
        "size",
        "volume_group",
        "volume",
        "mount_root",
        "filesystem",
        "name_prefix",
    },
    "copy": {"exclude"},
    "archive": {"minimum_bytes", "retention_days", "workers"},
    "restore": {"settle_s", "exclude", "start_command", "stop_command"},
    "notify": {"emails", "webhook_url", "timeout_s"},
    "logging": {"level", "file", "syslog_address", "category"},
    "backup_root": None,
    "pidfile": None,
    "require_root": None,
    "version": None,
}


@dataclass(slots=True)
class SettingsValidator:
    schema: Mapping[str, Any]

    def unknown_keys(self, payload: Mapping[str, Any]) -> Iterable[str]:
        return sorted(self._iter_unknown(payload))

    def _iter_unknown(self, payload: Mapping[str, Any]) -> Iterable[str]:
        for key, value in payload.items():
            if key not in self.schema:
                yield key
                continue
            allowed = self.schema[key]
            if allowed is None or not isinstance(value, Mapping):
                continue
            for sub in value.keys():
                if sub not in allowed:
                    yield f"{key}.{sub}"


SETTINGS_VALIDATOR = SettingsValidator(_ALLOWED_STRUCTURE)

__all__ = ["SETTINGS_VALIDATOR", "SettingsValidator"]
