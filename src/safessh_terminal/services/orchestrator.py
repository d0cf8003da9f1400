"""Execution orchestrator: gate check -> remote exec -> result -> checkpoint."""

from __future__ import annotations

import asyncio
import logging
from contextlib import aclosing
from typing import Callable

from safessh_terminal.config import AppConfig
from safessh_terminal.errors import ExecutionTimeoutError, PersistenceError, RemoteConnectionError
from safessh_terminal.services.remote import RemoteShell, SSHRemoteShell, StreamClosed, StreamData
from safessh_terminal.services.secagent import SafetyGate
from safessh_terminal.storage.checkpoint import CheckpointStore
from safessh_terminal.storage.models import (
    CommandResult,
    ConnectionInfo,
    ExecutionOutcome,
    OutcomeStatus,
    RecordStatus,
    SessionCheckpoint,
)
from safessh_terminal.storage.session import SessionState

logger = logging.getLogger(__name__)

CONNECTION_TIMEOUT = 120
EXEC_TIMEOUT = 120
KEEPALIVE_INTERVAL = 60


class SessionContext:
    """Owns the single remote connection handle.

    ``connect`` builds a fresh handle and retires the previous one instead of
    reconfiguring shared state in place.
    """

    def __init__(self, shell_factory: Callable[[], RemoteShell] = SSHRemoteShell) -> None:
        self._shell_factory = shell_factory
        self.shell: RemoteShell | None = None

    @property
    def connected(self) -> bool:
        return self.shell is not None

    async def connect(
        self,
        host: str,
        port: int,
        username: str,
        password: str,
        ready_timeout: float = CONNECTION_TIMEOUT,
        keepalive_interval: int = KEEPALIVE_INTERVAL,
    ) -> RemoteShell:
        await self.disconnect()
        shell = self._shell_factory()
        try:
            await asyncio.wait_for(
                shell.connect(host, port, username, password, ready_timeout, keepalive_interval),
                timeout=ready_timeout,
            )
        except asyncio.TimeoutError as e:
            await shell.close()
            raise RemoteConnectionError(f"timed out after {ready_timeout:g} seconds") from e
        except RemoteConnectionError:
            await shell.close()
            raise
        self.shell = shell
        return shell

    async def disconnect(self) -> None:
        if self.shell is not None:
            shell, self.shell = self.shell, None
            try:
                await shell.close()
            except Exception:
                logger.exception("Error closing remote connection")


class ExecutionOrchestrator:
    """Sequences one command at a time through the gate and the remote shell."""

    def __init__(
        self,
        gate: SafetyGate,
        session: SessionState,
        store: CheckpointStore,
        context: SessionContext | None = None,
        *,
        connect_timeout: float = CONNECTION_TIMEOUT,
        exec_timeout: float = EXEC_TIMEOUT,
        keepalive_interval: int = KEEPALIVE_INTERVAL,
    ) -> None:
        self.gate = gate
        self.session = session
        self.store = store
        self.context = context or SessionContext()
        self.connect_timeout = connect_timeout
        self.exec_timeout = exec_timeout
        self.keepalive_interval = keepalive_interval
        self._in_flight = False
        self._background: set[asyncio.Task[bool]] = set()

    @classmethod
    def from_config(
        cls,
        config: AppConfig,
        gate: SafetyGate,
        session: SessionState | None = None,
        context: SessionContext | None = None,
    ) -> ExecutionOrchestrator:
        store = CheckpointStore(config.storage.checkpoint_file, config.storage.history_file)
        return cls(
            gate,
            session or SessionState(),
            store,
            context,
            connect_timeout=config.ssh.connect_timeout,
            exec_timeout=config.ssh.exec_timeout,
            keepalive_interval=config.ssh.keepalive_interval,
        )

    @property
    def connected(self) -> bool:
        return self.context.connected

    @property
    def busy(self) -> bool:
        return self._in_flight

    async def connect(self, host: str, port: int, username: str, password: str) -> ExecutionOutcome:
        """Open a new connection, replacing any existing one."""
        logger.info("SSH connection attempt to %s:%d as %s", host, port, username)
        try:
            await self.context.connect(
                host,
                port,
                username,
                password,
                ready_timeout=self.connect_timeout,
                keepalive_interval=self.keepalive_interval,
            )
        except RemoteConnectionError as e:
            logger.error("SSH connection to %s failed: %s", host, e)
            return ExecutionOutcome(OutcomeStatus.FAILED, f"SSH connection to {host} failed: {e}")

        self.session.set_connection(ConnectionInfo(host=host, port=port, username=username))
        self._save_in_background()
        return ExecutionOutcome(OutcomeStatus.COMPLETED, f"SSH connection to {host} as {username} established")

    async def run(self, command: str) -> ExecutionOutcome:
        """Gate-check ``command`` and, if safe, execute it on the remote host."""
        if not self.connected:
            return ExecutionOutcome(
                OutcomeStatus.NOT_CONNECTED,
                "No active SSH connection. Please connect first using new-ssh-connection.",
            )
        if self._in_flight:
            return ExecutionOutcome(
                OutcomeStatus.BUSY,
                "Another command is still running. Wait for it to finish before sending the next one.",
            )

        self._in_flight = True
        try:
            return await self._run(command)
        finally:
            self._in_flight = False

    async def _run(self, command: str) -> ExecutionOutcome:
        index = self.session.record_dispatch(command)
        await self._save_history()

        verdict = await self.gate.evaluate(command)
        if not verdict.safe:
            self.session.mark(index, RecordStatus.REJECTED)
            logger.info("Rejected %r (%s)", command, verdict.source.value)
            return ExecutionOutcome(
                OutcomeStatus.REJECTED,
                "Command execution rejected as it is flagged as potentially unsafe",
                record_index=index,
                verdict=verdict,
            )

        try:
            result = await self._execute(command)
        except ExecutionTimeoutError as e:
            self.session.mark(index, RecordStatus.TIMED_OUT)
            logger.warning("Command %r timed out", command)
            return ExecutionOutcome(OutcomeStatus.TIMED_OUT, str(e), record_index=index, verdict=verdict)
        except RemoteConnectionError as e:
            # Transport is gone; a later run must reconnect first.
            self.session.mark(index, RecordStatus.FAILED)
            logger.error("Connection lost while executing %r: %s", command, e)
            await self.context.disconnect()
            return ExecutionOutcome(
                OutcomeStatus.FAILED,
                f"Failed to execute command: {e}",
                record_index=index,
                verdict=verdict,
            )
        except Exception as e:
            self.session.mark(index, RecordStatus.FAILED)
            logger.exception("Failed to execute command: %s", command)
            return ExecutionOutcome(
                OutcomeStatus.FAILED,
                f"Failed to execute command: {e}",
                record_index=index,
                verdict=verdict,
            )

        self.session.record_result(index, result)
        self._save_in_background()
        return ExecutionOutcome(
            OutcomeStatus.COMPLETED,
            f"Command executed with exit code {result.exit_code} and signal {result.signal}",
            record_index=index,
            result=result,
            verdict=verdict,
        )

    async def _execute(self, command: str) -> CommandResult:
        shell = self.context.shell
        if shell is None:
            raise RemoteConnectionError("Not connected")
        try:
            return await asyncio.wait_for(self._collect(shell, command), timeout=self.exec_timeout)
        except asyncio.TimeoutError as e:
            raise ExecutionTimeoutError(f"Command execution timed out after {self.exec_timeout:g} seconds") from e

    @staticmethod
    async def _collect(shell: RemoteShell, command: str) -> CommandResult:
        stdout = bytearray()
        stderr = bytearray()
        exit_code: int | None = None
        signal: str | None = None
        async with aclosing(shell.exec(command)) as stream:
            async for event in stream:
                if isinstance(event, StreamData):
                    (stderr if event.channel == "stderr" else stdout).extend(event.data)
                elif isinstance(event, StreamClosed):
                    exit_code, signal = event.exit_code, event.signal
                    break
        return CommandResult(
            exit_code=exit_code,
            signal=signal,
            stdout=stdout.decode("utf-8", errors="replace"),
            stderr=stderr.decode("utf-8", errors="replace"),
        )

    def snapshot_if_connected(self) -> SessionCheckpoint | None:
        """Snapshot for the periodic autosave; skipped while disconnected."""
        return self.session.snapshot() if self.connected else None

    async def checkpoint_now(self) -> bool:
        """Save a checkpoint immediately. Returns False if the write failed."""
        try:
            await self.store.save(self.session.snapshot())
        except PersistenceError:
            logger.exception("Failed to save checkpoint")
            return False
        return True

    async def drain(self) -> None:
        """Wait for outstanding background checkpoint saves."""
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)

    async def shutdown(self) -> None:
        """Final checkpoint (if connected) and connection close."""
        await self.drain()
        if self.connected:
            if await self.checkpoint_now():
                logger.info("Session checkpoint saved")
            await self.context.disconnect()
            logger.info("SSH connection closed")

    async def _save_history(self) -> None:
        try:
            await self.store.save_history(self.session.history())
        except PersistenceError:
            logger.exception("Failed to save command history")

    def _save_in_background(self) -> None:
        task = asyncio.create_task(self.checkpoint_now())
        self._background.add(task)
        task.add_done_callback(self._background.discard)
