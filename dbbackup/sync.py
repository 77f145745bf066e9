"""rsync wrapper run under ``nice``."""
from __future__ import annotations

from pathlib import Path
from typing import Iterable, Optional, Sequence

from .config import CommandsConfig
from .runner import ProcessRunner


class Synchronizer:
    def __init__(self, runner: ProcessRunner, commands: CommandsConfig) -> None:
        self._runner = runner
        self._commands = commands

    def _prefix(self) -> list[str]:
        return [self._commands.nice, f"-n{self._commands.nice_adjustment}", self._commands.rsync]

    def copy_tree(self, source: Path, destination: Path, *, exclude: Iterable[str] = (), delete: bool = False) -> None:
        """Mirror the contents of ``source`` into ``destination``."""

        destination.mkdir(parents=True, exist_ok=True)
        argv = self._prefix() + ["-a"]
        if delete:
            argv.append("--delete")
        argv += [f"--exclude={pattern}" for pattern in exclude]
        argv += [f"{source}/", f"{destination}/"]
        self._runner.run(argv).check(f"copying {source} to {destination}")

    def copy_files(self, files: Sequence[Path], destination: Path, *, label: Optional[str] = None) -> None:
        if not files:
            return
        destination.mkdir(parents=True, exist_ok=True)
        argv = self._prefix() + ["-a"] + [str(path) for path in files] + [f"{destination}/"]
        self._runner.run(argv).check(f"copying {label or len(files)} files to {destination}")


__all__ = ["Synchronizer"]
