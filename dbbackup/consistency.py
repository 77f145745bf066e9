"""Read locks and replication pauses across every instance."""
from __future__ import annotations

import logging
from typing import List, Sequence

from .errors import BackupError
from .mysql import MysqlClient
from .session import RunContext

LOGGER = logging.getLogger("dbbackup.consistency")


class ConsistencyController:
    """Pause and resume a set of instances, recording progress in ``context``.

    The context is updated one instance at a time so a failure halfway through
    leaves an exact record of what rollback still has to undo.
    """

    def __init__(self, clients: Sequence[MysqlClient], context: RunContext) -> None:
        self._clients = list(clients)
        self._context = context

    # ------------------------------------------------------------------
    def stop_replication(self, client: MysqlClient) -> None:
        client.stop_replication()
        self._context.paused.add(client.name)

    def start_replication(self, client: MysqlClient) -> None:
        client.start_replication()
        self._context.paused.discard(client.name)

    def lock_tables(self, client: MysqlClient) -> None:
        session = client.open_lock_session()
        self._context.lock_sessions[client.name] = session
        try:
            session.execute("FLUSH TABLES WITH READ LOCK")
        except BaseException:
            self._context.lock_sessions.pop(client.name, None)
            session.close()
            raise
        self._context.locked.add(client.name)

    def unlock_tables(self, client: MysqlClient) -> None:
        session = self._context.lock_sessions.get(client.name)
        if session is None:
            self._context.locked.discard(client.name)
            return
        # closing the connection releases the lock even when UNLOCK fails
        try:
            if session.alive:
                session.execute("UNLOCK TABLES")
            else:
                self._context.logger.warning("lock_session_gone", instance=client.name)
        finally:
            session.close()
            self._context.lock_sessions.pop(client.name, None)
            self._context.locked.discard(client.name)

    # ------------------------------------------------------------------
    def pause(self) -> None:
        for client in self._clients:
            self.stop_replication(client)
        self._context.enter("locking")
        for client in self._clients:
            self.lock_tables(client)

    def unlock(self) -> None:
        for client in self._clients:
            self.unlock_tables(client)

    def start(self) -> None:
        for client in self._clients:
            self.start_replication(client)

    # ------------------------------------------------------------------
    def release_locks(self) -> None:
        """Unlock every instance still recorded as locked, best effort."""

        self._best_effort("unlock", [c for c in self._clients if c.name in self._context.locked], self.unlock_tables)

    def resume_paused(self) -> None:
        """Start replication on every instance still recorded as paused, best effort."""

        self._best_effort("resume", [c for c in self._clients if c.name in self._context.paused], self.start_replication)

    def _best_effort(self, action: str, clients: Sequence[MysqlClient], operation) -> None:
        failed: List[str] = []
        for client in clients:
            try:
                operation(client)
            except Exception as exc:  # noqa: BLE001 - keep going for the other instances
                failed.append(client.name)
                self._context.logger.error("rollback_instance", action=action, instance=client.name, error=str(exc))
            else:
                self._context.logger.info("rollback_instance", action=action, instance=client.name)
        if failed:
            raise BackupError(f"{action} failed for {', '.join(failed)}")


__all__ = ["ConsistencyController"]
