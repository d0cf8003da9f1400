"""SSH remote execution built on paramiko.

paramiko is blocking, so each call is pushed to a worker thread with
``asyncio.to_thread``; the event loop never blocks on the network.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from dataclasses import dataclass
from typing import AsyncIterator, Protocol, Union

import paramiko

from safessh_terminal.errors import RemoteConnectionError

logger = logging.getLogger(__name__)

BUFFER_SIZE = 4096
POLL_INTERVAL = 0.05


@dataclass(frozen=True)
class StreamData:
    """A chunk of output on ``channel`` ("stdout" or "stderr")."""

    channel: str
    data: bytes


@dataclass(frozen=True)
class StreamClosed:
    """Remote process finished."""

    exit_code: int | None
    signal: str | None = None


StreamEvent = Union[StreamData, StreamClosed]


class RemoteShell(Protocol):
    """What the orchestrator needs from a remote execution channel."""

    async def connect(
        self,
        host: str,
        port: int,
        username: str,
        password: str,
        ready_timeout: float,
        keepalive_interval: int,
    ) -> None: ...

    def exec(self, command: str) -> AsyncIterator[StreamEvent]: ...

    async def close(self) -> None: ...


class SSHRemoteShell:
    """One paramiko SSH connection. Create a new instance per connection."""

    def __init__(self) -> None:
        self._client: paramiko.SSHClient | None = None

    @property
    def connected(self) -> bool:
        if self._client is None:
            return False
        transport = self._client.get_transport()
        return transport is not None and transport.is_active()

    async def connect(
        self,
        host: str,
        port: int,
        username: str,
        password: str,
        ready_timeout: float = 120,
        keepalive_interval: int = 60,
    ) -> None:
        client = paramiko.SSHClient()
        client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
        abandoned = threading.Event()

        def _connect() -> None:
            try:
                client.connect(
                    hostname=host,
                    port=port,
                    username=username,
                    password=password,
                    timeout=ready_timeout,
                    banner_timeout=ready_timeout,
                    auth_timeout=ready_timeout,
                    allow_agent=False,
                    look_for_keys=False,
                )
            finally:
                # The awaiting side gave up; a login that completes late must not survive.
                if abandoned.is_set():
                    client.close()

        try:
            await asyncio.to_thread(_connect)
        except asyncio.CancelledError:
            abandoned.set()
            client.close()
            raise
        except (paramiko.SSHException, OSError) as e:
            client.close()
            raise RemoteConnectionError(str(e) or type(e).__name__) from e

        transport = client.get_transport()
        if transport is not None:
            transport.set_keepalive(keepalive_interval)
        self._client = client

    async def exec(self, command: str) -> AsyncIterator[StreamEvent]:
        """Run ``command`` and yield output chunks, then one StreamClosed.

        Closing the generator early (e.g. on cancellation) closes the channel.
        """
        if self._client is None:
            raise RemoteConnectionError("Not connected")
        try:
            channel = await asyncio.to_thread(self._open_channel, command)
        except paramiko.SSHException as e:
            raise RemoteConnectionError(str(e) or type(e).__name__) from e
        try:
            while True:
                events = await asyncio.to_thread(self._poll, channel)
                for event in events:
                    yield event
                    if isinstance(event, StreamClosed):
                        return
        finally:
            channel.close()

    async def close(self) -> None:
        if self._client is not None:
            client, self._client = self._client, None
            await asyncio.to_thread(client.close)

    def _open_channel(self, command: str) -> paramiko.Channel:
        assert self._client is not None
        transport = self._client.get_transport()
        if transport is None or not transport.is_active():
            raise RemoteConnectionError("SSH transport is not active")
        channel = transport.open_session()
        try:
            channel.exec_command(command)
        except Exception:
            channel.close()
            raise
        return channel

    @staticmethod
    def _read_ready(channel: paramiko.Channel, events: list[StreamEvent]) -> bool:
        got_data = False
        if channel.recv_ready():
            chunk = channel.recv(BUFFER_SIZE)
            if chunk:
                events.append(StreamData("stdout", chunk))
                got_data = True
        if channel.recv_stderr_ready():
            chunk = channel.recv_stderr(BUFFER_SIZE)
            if chunk:
                events.append(StreamData("stderr", chunk))
                got_data = True
        return got_data

    @classmethod
    def _poll(cls, channel: paramiko.Channel) -> list[StreamEvent]:
        # The exit status arrives after all output, so it is checked before reading.
        exited = channel.exit_status_ready()
        events: list[StreamEvent] = []
        if not exited:
            if not cls._read_ready(channel, events):
                time.sleep(POLL_INTERVAL)
            return events

        while cls._read_ready(channel, events):
            pass
        status = channel.recv_exit_status()
        events.append(StreamClosed(exit_code=status if status >= 0 else None))
        return events
