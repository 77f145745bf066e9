"""Shared fixtures: an in-memory stand-in for mysql, LVM, mount and rsync."""
from __future__ import annotations

import logging
import os
import shutil
from datetime import datetime
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence

import pytest

from dbbackup.config import BackupConfig
from dbbackup.errors import CommandError
from dbbackup.logs import BackupLogger
from dbbackup.runner import CommandResult

FIXED_NOW = datetime(2026, 10, 18, 3, 0, 0)

SLAVE_HEADER = "Master_Host\tMaster_User\tRelay_Master_Log_File\tExec_Master_Log_Pos"
SLAVE_ROW = "master.example.org\trepl\tmysql-bin.000042\t4711"


class FakeServer:
    def __init__(self, name: str, binlog_dir: Path, *, active: int = 1) -> None:
        self.name = name
        self.binlog_dir = binlog_dir
        self.number = active
        self.replicating = True
        self.locked = False
        self.statements: List[str] = []
        binlog_dir.mkdir(parents=True, exist_ok=True)
        for number in range(1, active + 1):
            self._write_log(number)
        (binlog_dir / "bin.index").write_text("", encoding="utf-8")
        (binlog_dir / "relay-bin.000001").write_text("relay", encoding="utf-8")

    @property
    def active_log(self) -> str:
        return f"bin.{self.number:06d}"

    def _write_log(self, number: int) -> None:
        (self.binlog_dir / f"bin.{number:06d}").write_text(f"{self.name} events {number}\n", encoding="utf-8")

    def answer(self, statement: str, *, batch: bool) -> str:
        self.statements.append(statement)
        text = statement.strip().rstrip(";")
        vertical = text.endswith("\\G")
        if vertical:
            text = text[:-2]
        key = text.upper()
        if key == "STOP SLAVE":
            self.replicating = False
            return ""
        if key == "START SLAVE":
            self.replicating = True
            return ""
        if key == "FLUSH LOGS":
            self.number += 1
            self._write_log(self.number)
            return ""
        if key.startswith("PURGE BINARY LOGS TO"):
            target = text.split("'")[1]
            limit = int(target.rsplit(".", 1)[1])
            for path in self.binlog_dir.glob("bin.0*"):
                if int(path.name.rsplit(".", 1)[1]) < limit:
                    path.unlink()
            return ""
        if key == "FLUSH TABLES WITH READ LOCK":
            self.locked = True
            return ""
        if key == "UNLOCK TABLES":
            self.locked = False
            return ""
        if key == "SHOW MASTER STATUS":
            if vertical:
                return f"*************************** 1. row ***************************\n    File: {self.active_log}\nPosition: 154"
            return f"File\tPosition\tBinlog_Do_DB\tBinlog_Ignore_DB\n{self.active_log}\t154\t\t"
        if key == "SHOW SLAVE STATUS":
            if vertical:
                return "*************************** 1. row ***************************\n  Master_Host: master.example.org"
            return f"{SLAVE_HEADER}\n{SLAVE_ROW}"
        raise ValueError(f"unsupported statement {statement!r}")


class FakeSession:
    def __init__(self, runner: "FakeRunner", server: FakeServer, argv: Sequence[str]) -> None:
        self._runner = runner
        self._server = server
        self.argv = list(argv)
        self.alive = True

    def execute(self, statement: str, timeout: Optional[float] = None) -> List[str]:
        argv = self.argv + [statement]
        self._runner.calls.append(argv)
        if not self.alive:
            raise CommandError("session is not running", argv=argv)
        if self._runner._should_fail(argv):
            raise CommandError(f"{statement} failed", argv=argv, returncode=1)
        self._server.answer(statement, batch=True)
        return []

    def close(self) -> int:
        if self.alive:
            self.alive = False
            self._server.locked = False
        return 0


class FakeRunner:
    """Answers the commands dbbackup issues, acting on temporary directories."""

    def __init__(self, volume_dir: Path, lvm_dir: Path) -> None:
        self.volume_dir = volume_dir
        self.lvm_dir = lvm_dir
        self.servers: Dict[str, FakeServer] = {}
        self.volumes: Dict[str, Path] = {}
        self.mounts: Dict[str, str] = {}
        self.calls: List[List[str]] = []
        self.mails: List[tuple] = []
        self.group_running = True
        self._failures: List[Callable[[List[str]], bool]] = []
        self._hooks: List[tuple] = []

    # ------------------------------------------------------------------
    def add_server(self, name: str, socket: Path, binlog_dir: Path, *, active: int = 1) -> FakeServer:
        server = FakeServer(name, binlog_dir, active=active)
        self.servers[str(socket)] = server
        return server

    def fail_when(self, tool: str, *contains: str) -> None:
        def _match(argv: List[str]) -> bool:
            command = _strip_nice(argv)
            joined = " ".join(command)
            return Path(command[0]).name == tool and all(part in joined for part in contains)

        self._failures.append(_match)

    def before(self, tool: str, action: Callable[[List[str]], None]) -> None:
        self._hooks.append((tool, action))

    def _should_fail(self, argv: List[str]) -> bool:
        return any(match(argv) for match in self._failures)

    def tool_calls(self, tool: str) -> List[List[str]]:
        return [argv for argv in self.calls if Path(_strip_nice(argv)[0]).name == tool]

    # ------------------------------------------------------------------
    def run(self, argv, *, input_text=None, echo=True, timeout=None) -> CommandResult:
        argv = [str(part) for part in argv]
        self.calls.append(argv)
        command = _strip_nice(argv)
        tool = Path(command[0]).name
        for name, action in self._hooks:
            if name == tool:
                action(command)
        if self._should_fail(argv):
            return CommandResult(argv, 1, "injected failure")
        handler = getattr(self, f"_{tool}", None)
        if handler is None:
            return CommandResult(argv, 127, f"{tool}: not found")
        returncode, output = handler(command, input_text)
        return CommandResult(argv, returncode, output)

    def spawn(self, argv):
        argv = [str(part) for part in argv]
        self.calls.append(argv)
        server = self._server_for(argv)
        if server is None:
            raise CommandError("cannot connect", argv=argv, returncode=1)
        return FakeSession(self, server, argv)

    # ------------------------------------------------------------------
    def _server_for(self, argv: List[str]) -> Optional[FakeServer]:
        for part in argv:
            if part.startswith("--socket="):
                return self.servers.get(part.split("=", 1)[1])
        return None

    def _mysql(self, argv, input_text):
        server = self._server_for(argv)
        if server is None:
            return 1, "ERROR 2002 (HY000): Can't connect to local MySQL server"
        statement = argv[argv.index("-e") + 1]
        try:
            return 0, server.answer(statement, batch="--batch" in argv)
        except ValueError as exc:
            return 1, f"ERROR 1064: {exc}"

    def _lvcreate(self, argv, input_text):
        name = argv[argv.index("-n") + 1]
        if name in self.volumes:
            return 5, f"Logical volume {name} already exists"
        frozen = self.lvm_dir / name
        shutil.copytree(self.volume_dir, frozen, copy_function=shutil.copy2)
        self.volumes[name] = frozen
        return 0, f'Logical volume "{name}" created'

    def _lvs(self, argv, input_text):
        return 0, "\n".join(f"  {name}" for name in sorted(["mysql", *self.volumes]))

    def _lvremove(self, argv, input_text):
        name = argv[-1].rsplit("/", 1)[1]
        if name not in self.volumes:
            return 5, f"Failed to find logical volume {name}"
        if any(device.endswith(f"/{name}") for device in self.mounts.values()):
            return 5, f"Logical volume {name} contains a filesystem in use"
        shutil.rmtree(self.volumes.pop(name))
        return 0, f'Logical volume "{name}" successfully removed'

    def _mount(self, argv, input_text):
        if len(argv) == 1:
            lines = ["/dev/sda1 on / type ext4 (rw)"]
            lines += [f"{device} on {target} type ext3 (rw)" for target, device in self.mounts.items()]
            return 0, "\n".join(lines)
        device, target = argv[-2], argv[-1]
        name = device.rsplit("/", 1)[1]
        if name not in self.volumes:
            return 32, f"special device {device} does not exist"
        shutil.copytree(self.volumes[name], target, dirs_exist_ok=True, copy_function=shutil.copy2)
        self.mounts[target] = device
        return 0, ""

    def _umount(self, argv, input_text):
        target = argv[-1]
        if target not in self.mounts:
            return 32, f"{target}: not mounted"
        del self.mounts[target]
        shutil.rmtree(target)
        os.mkdir(target)
        return 0, ""

    def _rsync(self, argv, input_text):
        excludes = [part.split("=", 1)[1] for part in argv[1:] if part.startswith("--exclude=")]
        paths = [part for part in argv[1:] if not part.startswith("-")]
        sources, destination = paths[:-1], Path(paths[-1])
        destination.mkdir(parents=True, exist_ok=True)
        for source in sources:
            if source.endswith("/"):
                shutil.copytree(
                    source,
                    destination,
                    dirs_exist_ok=True,
                    ignore=shutil.ignore_patterns(*excludes),
                    copy_function=shutil.copy2,
                )
            else:
                shutil.copy2(source, destination / Path(source).name)
        return 0, f"sent {len(sources)} paths"

    def _supervisorctl(self, argv, input_text):
        self.group_running = argv[1] == "start"
        return 0, f"mysql: {argv[1]}ed"

    def _mail(self, argv, input_text):
        self.mails.append((argv, input_text))
        return 0, ""


def _strip_nice(argv: List[str]) -> List[str]:
    if argv and Path(argv[0]).name == "nice":
        return argv[2:]
    return argv


def _populate_instance(home: Path, name: str) -> None:
    data = home / "data"
    (data / "shop").mkdir(parents=True, exist_ok=True)
    (data / "ibdata1").write_bytes(b"\0" * 4096)
    (data / "shop" / "orders.ibd").write_text(f"{name} orders\n", encoding="utf-8")
    (data / "master.info").write_text("master info\n", encoding="utf-8")
    (data / "mysqld.pid").write_text("4242\n", encoding="utf-8")


def build_settings(tmp_path: Path, instances: Sequence[str] = ("a", "b", "c"), **overrides) -> dict:
    settings = {
        "backup_root": str(tmp_path / "backup"),
        "pidfile": str(tmp_path / "run" / "dbbackup.pid"),
        "require_root": False,
        "mysql": {"client": "mysql", "base_dir": str(tmp_path / "mysql"), "instances": list(instances)},
        "commands": {
            "lvcreate": "lvcreate",
            "lvremove": "lvremove",
            "lvs": "lvs",
            "mount": "mount",
            "umount": "umount",
            "rsync": "rsync",
            "nice": "nice",
            "mail": "mail",
        },
        "snapshot": {"volume_group": "vg", "volume": "mysql", "mount_root": str(tmp_path / "mnt")},
        "archive": {"minimum_bytes": 1},
        "restore": {
            "settle_s": 0,
            "start_command": ["supervisorctl", "start", "mysql:"],
            "stop_command": ["supervisorctl", "stop", "mysql:"],
        },
        "notify": {"emails": ["dba@example.org"]},
    }
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(settings.get(key), dict):
            settings[key].update(value)
        else:
            settings[key] = value
    return settings


class Environment:
    def __init__(self, tmp_path: Path, instances: Sequence[str]) -> None:
        self.tmp_path = tmp_path
        self.settings = build_settings(tmp_path, instances)
        self.config = BackupConfig.from_settings(self.settings)
        volume = tmp_path / "mysql"
        (volume / "lost+found").mkdir(parents=True)
        self.runner = FakeRunner(volume, tmp_path / "lvm")
        for instance in self.config.instances:
            _populate_instance(instance.data_dir.parent, instance.name)
            self.runner.add_server(instance.name, instance.socket, instance.binlog_dir)
        self.logger = BackupLogger(self.config.layout.logs)
        self.now = FIXED_NOW
        self.clock = lambda: self.now

    @property
    def layout(self):
        return self.config.layout

    def reconfigure(self, **overrides) -> BackupConfig:
        self.settings = build_settings(self.tmp_path, [i.name for i in self.config.instances], **overrides)
        self.config = BackupConfig.from_settings(self.settings)
        return self.config

    def server(self, name: str) -> FakeServer:
        return self.runner.servers[str(self.config.instance(name).socket)]

    def make_set(self, name: str, *, current: bool = False) -> Path:
        directory = self.layout.root / name
        for instance in self.config.instances:
            home = directory / instance.name
            (home / "data").mkdir(parents=True, exist_ok=True)
            (home / "data" / "ibdata1").write_bytes(os.urandom(2048))
            (home / "binlog").mkdir(exist_ok=True)
            (home / "binlog" / "bin.000007").write_text("events\n", encoding="utf-8")
            (home / "master_status.txt").write_text("File: bin.000007\n", encoding="utf-8")
            (home / "slave_status.txt").write_text("Master_Host: master\n", encoding="utf-8")
        if current:
            self.layout.current.parent.mkdir(parents=True, exist_ok=True)
            if self.layout.current.is_symlink():
                self.layout.current.unlink()
            os.symlink(str(directory), str(self.layout.current))
        return directory


@pytest.fixture
def env(tmp_path: Path) -> Environment:
    return Environment(tmp_path, ("a", "b", "c"))


@pytest.fixture(autouse=True)
def _reset_dbbackup_logging():
    yield
    logger = logging.getLogger("dbbackup")
    for handler in list(logger.handlers):
        if getattr(handler, "_dbbackup_handler", False):
            logger.removeHandler(handler)
            handler.close()
    logger.propagate = True
