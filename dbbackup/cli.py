"""Command line entry point."""
from __future__ import annotations

import argparse
import logging
import os
import sys
from pathlib import Path

from core.logging_utils import configure_logging
from core.settings import load_settings

from .api import BackupService
from .config import BackupConfig
from .errors import BackupError
from .status import SCOPES

LOGGER = logging.getLogger("dbbackup.cli")

COMMANDS = {
    "full": "snapshot every instance and copy its data directory",
    "incremental": "copy closed binary logs into the current backup",
    "archive": "compress old backups into archive/<stamp>.tar",
    "delete": "delete archives older than the retention window",
    "restore": "copy current/<instance>/data over each live data directory",
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="dbbackup", description="Multi-instance MySQL backups from LVM snapshots")
    parser.add_argument("--config", type=Path, default=None, help="Path to settings.json")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log debug output")
    commands = parser.add_subparsers(dest="command", metavar="command")
    commands.required = True
    for name, text in COMMANDS.items():
        commands.add_parser(name, help=text)
    status = commands.add_parser("status", help="print archive, current and instance status")
    status.add_argument("scope", nargs="?", default="all", help="|".join(SCOPES) + "|<instance>")
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        settings = load_settings(args.config)
        config = BackupConfig.from_settings(settings)
    except (OSError, ValueError) as exc:
        print(f"dbbackup: cannot load settings: {exc}", file=sys.stderr)
        return 1
    configure_logging(settings, verbose=args.verbose)

    service = BackupService(config)
    if args.command == "status":
        if args.scope not in SCOPES and config.instance(args.scope) is None:
            parser.error(f"unknown status scope {args.scope!r}: use {', '.join(SCOPES)} or an instance name")
        report = service.status(args.scope)
        print(report.text())
        return 0 if report.ok else 1

    if config.require_root and os.geteuid() != 0:
        LOGGER.error("dbbackup %s must be run as root", args.command)
        return 1

    try:
        getattr(service, args.command)()
    except (BackupError, OSError) as exc:
        LOGGER.error("dbbackup %s failed: %s", args.command, exc)
        return 1
    LOGGER.info("dbbackup %s finished", args.command)
    return 0


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
