"""Durable JSON persistence of session checkpoints and the history mirror."""

from __future__ import annotations

import asyncio
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Callable, Iterable

from safessh_terminal.errors import PersistenceError
from safessh_terminal.storage.models import CommandRecord, SessionCheckpoint

logger = logging.getLogger(__name__)

AUTOSAVE_INTERVAL = 30.0


def _atomic_write_json(path: Path, data: Any) -> None:
    """Write ``data`` as JSON via temp file + rename so readers never see a partial file."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(dir=str(path.parent), prefix=f".{path.name}.tmp_")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            json.dump(data, fh, indent=2)
        os.replace(tmp_path, path)
    except BaseException:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise


class CheckpointStore:
    """Saves and loads whole-session snapshots. Every save replaces the prior file."""

    def __init__(self, checkpoint_path: str | Path, history_path: str | Path | None = None) -> None:
        self.checkpoint_path = Path(checkpoint_path).expanduser()
        self.history_path = Path(history_path).expanduser() if history_path else None

    def exists(self) -> bool:
        return self.checkpoint_path.is_file()

    async def save(self, checkpoint: SessionCheckpoint) -> None:
        """Persist ``checkpoint`` as a full replacement of the file."""
        data = checkpoint.to_dict()
        try:
            await asyncio.to_thread(_atomic_write_json, self.checkpoint_path, data)
        except (OSError, TypeError, ValueError) as e:
            raise PersistenceError(f"Failed to save checkpoint to {self.checkpoint_path}: {e}") from e
        logger.info("Checkpoint saved to %s", self.checkpoint_path)

    def load(self) -> SessionCheckpoint:
        """Load the last saved checkpoint. Raises PersistenceError if absent or corrupt."""
        try:
            with open(self.checkpoint_path, encoding="utf-8") as fh:
                data = json.load(fh)
            if not isinstance(data, dict):
                raise ValueError("checkpoint must be a JSON object")
            checkpoint = SessionCheckpoint.from_dict(data)
        except OSError as e:
            raise PersistenceError(f"Failed to read checkpoint {self.checkpoint_path}: {e}") from e
        except (ValueError, KeyError, TypeError) as e:
            raise PersistenceError(f"Corrupt checkpoint {self.checkpoint_path}: {e}") from e
        logger.info("Checkpoint loaded from %s", self.checkpoint_path)
        return checkpoint

    async def save_history(self, records: Iterable[CommandRecord]) -> None:
        """Mirror the command history to its side file."""
        if self.history_path is None:
            return
        data = [record.to_dict() for record in records]
        try:
            await asyncio.to_thread(_atomic_write_json, self.history_path, data)
        except (OSError, TypeError, ValueError) as e:
            raise PersistenceError(f"Failed to save command history to {self.history_path}: {e}") from e


class Autosaver:
    """Periodically saves a snapshot while ``snapshot()`` returns one.

    ``snapshot`` returns ``None`` to skip a tick (e.g. while disconnected).
    There is no coordination with event-triggered saves: last writer wins.
    """

    def __init__(
        self,
        store: CheckpointStore,
        snapshot: Callable[[], SessionCheckpoint | None],
        interval: float = AUTOSAVE_INTERVAL,
    ) -> None:
        self.store = store
        self.snapshot = snapshot
        self.interval = interval
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._loop(), name="checkpoint-autosave")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    async def tick(self) -> None:
        """Run one autosave cycle."""
        checkpoint = self.snapshot()
        if checkpoint is None:
            return
        try:
            await self.store.save(checkpoint)
            logger.info("Auto-saved session checkpoint")
        except PersistenceError:
            logger.exception("Failed to auto-save checkpoint")

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            await self.tick()
