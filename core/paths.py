from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

__all__ = [
    "SETTINGS_ENV",
    "expand_path",
    "get_archive_dir",
    "get_current_link",
    "get_default_settings_paths",
    "get_incomplete_dir",
    "get_logs_dir",
]

SETTINGS_ENV = "DBBACKUP_SETTINGS"

_PROJECT_ROOT = Path(__file__).resolve().parent.parent
_SYSTEM_SETTINGS = Path("/etc/dbbackup/settings.json")


def expand_path(value: str | os.PathLike[str]) -> Path:
    """Expand ``~`` and environment variables without resolving symlinks."""

    expanded = os.path.expandvars(os.path.expanduser(str(value)))
    return Path(expanded)


def get_current_link(backup_root: Path) -> Path:
    return backup_root / "current"


def get_incomplete_dir(backup_root: Path) -> Path:
    return backup_root / "incomplete"


def get_archive_dir(backup_root: Path) -> Path:
    return backup_root / "archive"


def get_logs_dir(backup_root: Path) -> Path:
    return backup_root / "logs"


def get_default_settings_paths(explicit: Optional[Path] = None) -> list[Path]:
    """Return the search order for settings.json files."""

    paths: list[Path] = []
    if explicit is not None:
        paths.append(expand_path(explicit))
    env_value = os.environ.get(SETTINGS_ENV)
    if env_value:
        paths.append(expand_path(env_value))
    paths.append(_SYSTEM_SETTINGS)
    paths.append(_PROJECT_ROOT / "settings.json")
    return paths
