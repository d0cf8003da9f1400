"""MCP stdio server setup and lifecycle."""

from __future__ import annotations

import asyncio
import logging
import signal

from mcp.server.fastmcp import FastMCP

from safessh_terminal.config import AppConfig, load_policy
from safessh_terminal.errors import PersistenceError
from safessh_terminal.server.tools import ToolService
from safessh_terminal.services.inference import OllamaClient
from safessh_terminal.services.orchestrator import ExecutionOrchestrator
from safessh_terminal.services.secagent import SafetyGate
from safessh_terminal.storage.checkpoint import Autosaver
from safessh_terminal.storage.models import SessionCheckpoint

logger = logging.getLogger(__name__)

SERVER_NAME = "sshclient"


def create_server(service: ToolService) -> FastMCP:
    """Register the four tools on a new FastMCP instance."""
    mcp = FastMCP(SERVER_NAME)

    @mcp.tool(name="new-ssh-connection", description="Create a new ssh connection to a server")
    async def new_ssh_connection(host: str, username: str, password: str, port: int = 22) -> str:
        return await service.new_ssh_connection(host, username, password, port)

    @mcp.tool(
        name="run-safe-command",
        description=(
            "Run a safe command on the server through an ssh connection, "
            "if the command is unsafe it will not be run"
        ),
    )
    async def run_safe_command(command: str) -> str:
        return await service.run_safe_command(command)

    @mcp.tool(name="show-command-history", description="Show the history of executed commands and their results")
    async def show_command_history() -> str:
        return await service.show_command_history()

    @mcp.tool(name="resume-session", description="Resume a previously interrupted session")
    async def resume_session() -> str:
        return await service.resume_session()

    return mcp


def restore_session(orchestrator: ExecutionOrchestrator) -> SessionCheckpoint | None:
    """Load the previous checkpoint into the session, if one exists."""
    if not orchestrator.store.exists():
        return None
    try:
        checkpoint = orchestrator.store.load()
    except PersistenceError:
        logger.exception("Failed to load previous session")
        return None
    orchestrator.session.restore(checkpoint)
    logger.info("Previous session checkpoint found. Use resume-session tool to view details.")
    return orchestrator.session.snapshot()


async def run_server(config: AppConfig) -> None:
    """Start the MCP server on stdio and run until EOF or a shutdown signal."""
    policy = load_policy(config.secagent.policy_file)
    backend = OllamaClient(config.inference.host)
    gate = SafetyGate(
        policy,
        backend,
        max_retries=config.inference.max_retries,
        retry_delay=config.inference.retry_delay,
        request_timeout=config.inference.request_timeout,
    )
    orchestrator = ExecutionOrchestrator.from_config(config, gate)
    loaded = restore_session(orchestrator)
    mcp = create_server(ToolService(orchestrator, loaded))

    # Model discovery runs in the background; until it finishes the gate uses static checks.
    discovery = asyncio.create_task(gate.discover_models(), name="model-discovery")
    autosaver = Autosaver(
        orchestrator.store,
        orchestrator.snapshot_if_connected,
        interval=config.storage.autosave_interval,
    )
    autosaver.start()

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()

    def _signal_handler() -> None:
        logger.info("Shutdown signal received")
        stop_event.set()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, _signal_handler)

    logger.info("SSHClient MCP server running on stdio")
    server_task = asyncio.create_task(mcp.run_stdio_async(), name="mcp-stdio")
    stop_task = asyncio.create_task(stop_event.wait(), name="shutdown-wait")
    done, pending = await asyncio.wait({server_task, stop_task}, return_when=asyncio.FIRST_COMPLETED)
    for task in pending:
        task.cancel()
    await asyncio.gather(*pending, return_exceptions=True)
    if server_task in done and server_task.exception() is not None:
        logger.error("MCP server stopped with an error", exc_info=server_task.exception())

    # Graceful shutdown
    logger.info("Shutting down server...")
    discovery.cancel()
    await asyncio.gather(discovery, return_exceptions=True)
    await autosaver.stop()
    await orchestrator.shutdown()
    await backend.aclose()
    logger.info("Server stopped.")
