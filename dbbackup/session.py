"""Per-run state: paused/locked instances, rollback actions and signals."""
from __future__ import annotations

import contextlib
import signal
import threading
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Set, Tuple

from .errors import RunInterrupted
from .logs import BackupLogger
from .mysql import LockSession

Action = Callable[[], None]


class RollbackStack:
    """Compensating actions, run newest first, each one best effort."""

    def __init__(self, logger: BackupLogger) -> None:
        self._logger = logger
        self._actions: List[Tuple[str, Action]] = []
        self.unwinding = False

    def __len__(self) -> int:
        return len(self._actions)

    def push(self, name: str, action: Action) -> None:
        self._actions.append((name, action))

    def unwind(self) -> List[str]:
        """Run every pending action in reverse; return the names that failed."""

        failed: List[str] = []
        self.unwinding = True
        try:
            while self._actions:
                name, action = self._actions.pop()
                try:
                    action()
                except Exception as exc:  # noqa: BLE001 - every action is attempted
                    failed.append(name)
                    self._logger.event(event="rollback_step", phase=name, ok=False, error=str(exc))
                else:
                    self._logger.event(event="rollback_step", phase=name, ok=True)
        finally:
            self.unwinding = False
        return failed

    def clear(self) -> None:
        self._actions.clear()


@dataclass
class RunContext:
    """State of one run that rollback consults."""

    command: str
    logger: BackupLogger
    paused: Set[str] = field(default_factory=set)
    locked: Set[str] = field(default_factory=set)
    lock_sessions: Dict[str, LockSession] = field(default_factory=dict)
    phase: str = "start"
    rollback: RollbackStack = field(init=False)

    def __post_init__(self) -> None:
        self.rollback = RollbackStack(self.logger)

    def enter(self, phase: str, **extra) -> None:
        self.phase = phase
        self.logger.event(event="phase", phase=phase, ok=True, command=self.command, **extra)


class InterruptGuard(contextlib.AbstractContextManager):
    """Turn SIGINT/SIGTERM into :class:`RunInterrupted` while a run is active.

    Signals arriving while the rollback stack unwinds are logged and ignored.
    """

    _SIGNALS = (signal.SIGINT, signal.SIGTERM)

    def __init__(self, logger: BackupLogger, rollback: Optional[RollbackStack] = None) -> None:
        self._logger = logger
        self._rollback = rollback
        self._previous: Dict[int, object] = {}
        self.received: Optional[str] = None

    def _handle(self, signum, frame) -> None:  # noqa: ARG002 - signal API
        name = signal.Signals(signum).name
        if self._rollback is not None and self._rollback.unwinding:
            self._logger.warning("signal_ignored", signal=name, reason="rollback in progress")
            return
        if self.received is not None:
            self._logger.warning("signal_ignored", signal=name, reason=f"already interrupted by {self.received}")
            return
        self.received = name
        raise RunInterrupted(f"interrupted by {name}")

    def __enter__(self) -> "InterruptGuard":
        if threading.current_thread() is not threading.main_thread():
            return self
        for signum in self._SIGNALS:
            self._previous[signum] = signal.signal(signum, self._handle)
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        for signum, previous in self._previous.items():
            signal.signal(signum, previous)
        self._previous.clear()
        return False


__all__ = ["InterruptGuard", "RollbackStack", "RunContext"]
