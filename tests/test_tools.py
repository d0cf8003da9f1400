"""Tests for the tool surface and server wiring."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from conftest import FakeShell, ls_events
from safessh_terminal.config import PolicyConfig
from safessh_terminal.server.app import create_server, restore_session
from safessh_terminal.server.tools import ToolService
from safessh_terminal.services.orchestrator import ExecutionOrchestrator, SessionContext
from safessh_terminal.services.secagent import SafetyGate
from safessh_terminal.storage.checkpoint import CheckpointStore
from safessh_terminal.storage.models import (
    CommandRecord,
    ConnectionInfo,
    RecordStatus,
    SessionCheckpoint,
)
from safessh_terminal.storage.session import SessionState
from safessh_terminal.utils.formatting import NO_HISTORY, NOTHING_TO_RESUME


@pytest.fixture
def orchestrator(app_config):
    shell = FakeShell(events={"ls -la": ls_events()})
    gate = SafetyGate(PolicyConfig(enabled=True, static_only=True))
    store = CheckpointStore(app_config.storage.checkpoint_file, app_config.storage.history_file)
    return ExecutionOrchestrator(gate, SessionState(), store, SessionContext(lambda: shell))


@pytest.fixture
def service(orchestrator):
    return ToolService(orchestrator)


class TestToolService:
    @pytest.mark.asyncio
    async def test_run_without_connection(self, service):
        text = await service.run_safe_command("ls -la")
        assert text == "No active SSH connection. Please connect first using new-ssh-connection."

    @pytest.mark.asyncio
    async def test_connect_then_run(self, service, orchestrator):
        text = await service.new_ssh_connection("host.example", "alice", "secret")
        assert text == "SSH connection to host.example as alice established"
        assert orchestrator.session.connection.port == 22

        text = await service.run_safe_command("ls -la")
        assert "exit code 0" in text
        assert "STDOUT:\nfile1.txt\nfile2.txt\n" in text
        assert "STDERR:\nwarn\n" in text
        await orchestrator.drain()

    @pytest.mark.asyncio
    async def test_rejection_text(self, service):
        await service.new_ssh_connection("host.example", "alice", "secret")
        text = await service.run_safe_command("chmod 777 /")
        assert text == "Command execution rejected as it is flagged as potentially unsafe"

    @pytest.mark.asyncio
    async def test_history_empty(self, service):
        assert await service.show_command_history() == NO_HISTORY

    @pytest.mark.asyncio
    async def test_history_lists_status(self, service, orchestrator):
        await service.new_ssh_connection("host.example", "alice", "secret")
        await service.run_safe_command("ls -la")
        await service.run_safe_command("rm -rf /")
        await orchestrator.drain()
        text = await service.show_command_history()
        assert text.startswith("Command History:")
        assert "1. ls -la" in text
        assert "Status: Completed (Exit code: 0)" in text
        assert "2. rm -rf /" in text
        assert "Status: Rejected as unsafe" in text
        assert "Executed at:" in text

    @pytest.mark.asyncio
    async def test_resume_nothing(self, service):
        assert await service.resume_session() == NOTHING_TO_RESUME

    @pytest.mark.asyncio
    async def test_resume_summary(self, orchestrator):
        loaded = SessionCheckpoint(
            connection_info=ConnectionInfo("db.internal", 22, "ops", "2026-02-02T08:00:00+00:00"),
            commands=[
                CommandRecord("ls", "2026-02-02T08:00:01+00:00"),
                CommandRecord("sleep 50", "2026-02-02T08:00:02+00:00", status=RecordStatus.INTERRUPTED),
            ],
        )
        text = await ToolService(orchestrator, loaded).resume_session()
        assert "Last connected to db.internal as ops at 2026-02-02T08:00:00+00:00" in text
        assert "You had executed 2 commands." in text
        assert "1 of them were interrupted" in text

    @pytest.mark.asyncio
    async def test_unexpected_error_rendered_as_text(self, service, orchestrator):
        orchestrator.run = AsyncMock(side_effect=RuntimeError("kaboom"))
        text = await service.run_safe_command("ls")
        assert text == "An unexpected error occurred: kaboom"


class TestRestoreSession:
    def test_no_checkpoint(self, orchestrator):
        assert restore_session(orchestrator) is None
        assert orchestrator.session.history() == ()

    @pytest.mark.asyncio
    async def test_restores_and_marks_interrupted(self, orchestrator):
        checkpoint = SessionCheckpoint(
            connection_info=ConnectionInfo("h", 22, "u", "2026-01-01T00:00:00+00:00"),
            commands=[CommandRecord("uptime", "2026-01-01T00:00:01+00:00")],
        )
        await orchestrator.store.save(checkpoint)
        loaded = restore_session(orchestrator)
        assert loaded.connection_info.host == "h"
        assert orchestrator.session.history()[0].status == RecordStatus.INTERRUPTED
        # Restored metadata does not imply a live connection
        assert not orchestrator.connected

    def test_corrupt_checkpoint_ignored(self, orchestrator):
        orchestrator.store.checkpoint_path.write_text("{broken")
        assert restore_session(orchestrator) is None


class TestCreateServer:
    @pytest.mark.asyncio
    async def test_tools_registered(self, service):
        mcp = create_server(service)
        tools = {tool.name for tool in await mcp.list_tools()}
        assert tools == {"new-ssh-connection", "run-safe-command", "show-command-history", "resume-session"}

    @pytest.mark.asyncio
    async def test_connection_port_defaults_to_22(self, service):
        mcp = create_server(service)
        tool = next(t for t in await mcp.list_tools() if t.name == "new-ssh-connection")
        assert tool.inputSchema["properties"]["port"]["default"] == 22
        assert set(tool.inputSchema["required"]) == {"host", "username", "password"}
