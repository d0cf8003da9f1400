"""Tests for the paramiko-backed remote shell."""

from __future__ import annotations

import asyncio
import time
from unittest.mock import MagicMock, patch

import paramiko
import pytest

from safessh_terminal.errors import RemoteConnectionError
from safessh_terminal.services.remote import SSHRemoteShell, StreamClosed, StreamData


def fake_channel(stdout_chunks, stderr_chunks, exit_status=0):
    channel = MagicMock()
    stdout = list(stdout_chunks)
    stderr = list(stderr_chunks)
    channel.recv_ready.side_effect = lambda: bool(stdout)
    channel.recv.side_effect = lambda n: stdout.pop(0)
    channel.recv_stderr_ready.side_effect = lambda: bool(stderr)
    channel.recv_stderr.side_effect = lambda n: stderr.pop(0)
    channel.exit_status_ready.return_value = True
    channel.recv_exit_status.return_value = exit_status
    return channel


@pytest.fixture
def ssh_client():
    with patch("safessh_terminal.services.remote.paramiko.SSHClient") as cls:
        client = cls.return_value
        transport = client.get_transport.return_value
        transport.is_active.return_value = True
        yield client


class TestSSHRemoteShell:
    @pytest.mark.asyncio
    async def test_connect(self, ssh_client):
        shell = SSHRemoteShell()
        await shell.connect("host", 2222, "alice", "pw", ready_timeout=10, keepalive_interval=60)
        kwargs = ssh_client.connect.call_args.kwargs
        assert kwargs["hostname"] == "host"
        assert kwargs["port"] == 2222
        assert kwargs["username"] == "alice"
        assert kwargs["timeout"] == 10
        ssh_client.get_transport.return_value.set_keepalive.assert_called_once_with(60)
        assert shell.connected

    @pytest.mark.asyncio
    async def test_connect_auth_failure(self, ssh_client):
        ssh_client.connect.side_effect = paramiko.AuthenticationException("Authentication failed.")
        shell = SSHRemoteShell()
        with pytest.raises(RemoteConnectionError, match="Authentication failed"):
            await shell.connect("host", 22, "alice", "bad")
        ssh_client.close.assert_called_once()
        assert not shell.connected

    @pytest.mark.asyncio
    async def test_connect_unreachable(self, ssh_client):
        ssh_client.connect.side_effect = OSError("No route to host")
        with pytest.raises(RemoteConnectionError, match="No route to host"):
            await SSHRemoteShell().connect("host", 22, "alice", "pw")

    @pytest.mark.asyncio
    async def test_exec_streams_events(self, ssh_client):
        channel = fake_channel([b"a", b"b"], [b"e"], exit_status=3)
        ssh_client.get_transport.return_value.open_session.return_value = channel
        shell = SSHRemoteShell()
        await shell.connect("host", 22, "alice", "pw")

        events = [event async for event in shell.exec("ls")]
        channel.exec_command.assert_called_once_with("ls")
        assert StreamData("stdout", b"a") in events
        assert StreamData("stderr", b"e") in events
        assert events[-1] == StreamClosed(exit_code=3)
        channel.close.assert_called_once()

    @pytest.mark.asyncio
    async def test_exec_unknown_exit_status(self, ssh_client):
        channel = fake_channel([], [], exit_status=-1)
        ssh_client.get_transport.return_value.open_session.return_value = channel
        shell = SSHRemoteShell()
        await shell.connect("host", 22, "alice", "pw")
        events = [event async for event in shell.exec("ls")]
        assert events == [StreamClosed(exit_code=None)]

    @pytest.mark.asyncio
    async def test_exec_not_connected(self):
        shell = SSHRemoteShell()
        with pytest.raises(RemoteConnectionError):
            async for _ in shell.exec("ls"):
                pass

    @pytest.mark.asyncio
    async def test_exec_open_session_failure(self, ssh_client):
        ssh_client.get_transport.return_value.open_session.side_effect = paramiko.SSHException("Channel closed.")
        shell = SSHRemoteShell()
        await shell.connect("host", 22, "alice", "pw")
        with pytest.raises(RemoteConnectionError, match="Channel closed"):
            async for _ in shell.exec("ls"):
                pass

    @pytest.mark.asyncio
    async def test_close(self, ssh_client):
        shell = SSHRemoteShell()
        await shell.connect("host", 22, "alice", "pw")
        await shell.close()
        ssh_client.close.assert_called_once()
        assert not shell.connected

    @pytest.mark.asyncio
    async def test_exec_reads_output_arriving_with_exit_status(self, ssh_client):
        pending = [b"tail-output\n"]
        state = {"arrived": False}

        def recv_ready():
            if not state["arrived"]:
                # the last chunk and the exit status land right after this check
                state["arrived"] = True
                return False
            return bool(pending)

        channel = MagicMock()
        channel.recv_ready.side_effect = recv_ready
        channel.recv.side_effect = lambda n: pending.pop(0)
        channel.recv_stderr_ready.return_value = False
        channel.exit_status_ready.side_effect = lambda: state["arrived"]
        channel.recv_exit_status.return_value = 0
        ssh_client.get_transport.return_value.open_session.return_value = channel
        shell = SSHRemoteShell()
        await shell.connect("host", 22, "alice", "pw")

        events = [event async for event in shell.exec("cat log")]
        assert events == [StreamData("stdout", b"tail-output\n"), StreamClosed(exit_code=0)]

    @pytest.mark.asyncio
    async def test_exec_drains_all_buffered_output_before_close(self, ssh_client):
        channel = fake_channel([b"1", b"2", b"3"], [b"x", b"y"], exit_status=0)
        ssh_client.get_transport.return_value.open_session.return_value = channel
        shell = SSHRemoteShell()
        await shell.connect("host", 22, "alice", "pw")

        events = [event async for event in shell.exec("ls")]
        stdout = b"".join(e.data for e in events if isinstance(e, StreamData) and e.channel == "stdout")
        stderr = b"".join(e.data for e in events if isinstance(e, StreamData) and e.channel == "stderr")
        assert stdout == b"123"
        assert stderr == b"xy"
        assert events[-1] == StreamClosed(exit_code=0)

    @pytest.mark.asyncio
    async def test_cancelled_connect_closes_late_login(self, ssh_client):
        calls = []

        def slow_connect(**kwargs):
            time.sleep(0.3)
            calls.append("connected")

        ssh_client.connect.side_effect = slow_connect
        ssh_client.close.side_effect = lambda: calls.append("closed")
        shell = SSHRemoteShell()

        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(shell.connect("host", 22, "alice", "pw", ready_timeout=0.05), timeout=0.05)

        # let the worker thread finish the login
        await asyncio.sleep(0.6)
        assert "connected" in calls
        assert calls[-1] == "closed"
        assert not shell.connected

    @pytest.mark.asyncio
    async def test_exec_command_failure_closes_channel(self, ssh_client):
        channel = MagicMock()
        channel.exec_command.side_effect = paramiko.SSHException("exec refused")
        ssh_client.get_transport.return_value.open_session.return_value = channel
        shell = SSHRemoteShell()
        await shell.connect("host", 22, "alice", "pw")

        with pytest.raises(RemoteConnectionError, match="exec refused"):
            async for _ in shell.exec("ls"):
                pass
        channel.close.assert_called_once()
