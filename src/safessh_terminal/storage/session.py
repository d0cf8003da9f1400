"""In-memory session state: connection metadata and command history."""

from __future__ import annotations

import logging
from dataclasses import replace

from safessh_terminal.storage.models import (
    CommandRecord,
    CommandResult,
    ConnectionInfo,
    RecordStatus,
    SessionCheckpoint,
)

logger = logging.getLogger(__name__)


class SessionState:
    """Single-owner record of the current connection and ordered command history.

    History is append-only. Records are addressed by their index, which is
    returned from ``record_dispatch`` and stays valid for the lifetime of the
    process.
    """

    def __init__(self) -> None:
        self._connection: ConnectionInfo | None = None
        self._commands: list[CommandRecord] = []

    @property
    def connection(self) -> ConnectionInfo | None:
        return self._connection

    def set_connection(self, info: ConnectionInfo) -> None:
        """Replace the current connection metadata."""
        self._connection = info

    def record_dispatch(self, command: str) -> int:
        """Append a pending record for ``command`` and return its index."""
        self._commands.append(CommandRecord(command=command))
        return len(self._commands) - 1

    def record_result(self, index: int, result: CommandResult) -> None:
        """Attach ``result`` to the record at ``index``."""
        record = self._get(index)
        if record is None:
            logger.warning("No command record at index %d, result dropped", index)
            return
        if record.result is not None:
            logger.warning("Command record %d already has a result, ignoring", index)
            return
        record.result = result
        record.status = RecordStatus.COMPLETED

    def mark(self, index: int, status: RecordStatus) -> None:
        """Tag a record that did not complete (rejected, timed out, failed)."""
        record = self._get(index)
        if record is None or record.result is not None:
            return
        record.status = status

    def find_pending(self, command: str) -> int | None:
        """Index of the first pending record whose text equals ``command``."""
        for index, record in enumerate(self._commands):
            if record.command == command and record.status == RecordStatus.PENDING:
                return index
        return None

    def history(self) -> tuple[CommandRecord, ...]:
        """Command records in dispatch order. Callers must not mutate them."""
        return tuple(self._commands)

    def snapshot(self) -> SessionCheckpoint:
        """Materialize the current state for persistence."""
        return SessionCheckpoint(
            connection_info=self._connection,
            commands=[replace(record) for record in self._commands],
        )

    def restore(self, checkpoint: SessionCheckpoint) -> None:
        """Replace connection metadata and history wholesale."""
        self._connection = checkpoint.connection_info
        self._commands = []
        for record in checkpoint.commands:
            record = replace(record)
            if record.status == RecordStatus.PENDING:
                record.status = RecordStatus.INTERRUPTED
            self._commands.append(record)
        logger.info("Restored session with %d commands", len(self._commands))

    def _get(self, index: int) -> CommandRecord | None:
        if 0 <= index < len(self._commands):
            return self._commands[index]
        return None
