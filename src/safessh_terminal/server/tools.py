"""Tool handlers: the four caller-facing operations, each resolving to text."""

from __future__ import annotations

import functools
import logging
from typing import Any, Callable, Coroutine

from safessh_terminal.services.orchestrator import ExecutionOrchestrator
from safessh_terminal.storage.models import SessionCheckpoint
from safessh_terminal.utils.formatting import format_history, format_resume, format_run_outcome

logger = logging.getLogger(__name__)


def text_on_error(
    func: Callable[..., Coroutine[Any, Any, str]],
) -> Callable[..., Coroutine[Any, Any, str]]:
    """Render unexpected exceptions as text so no raw fault reaches the caller."""

    @functools.wraps(func)
    async def wrapper(*args: Any, **kwargs: Any) -> str:
        try:
            return await func(*args, **kwargs)
        except Exception as e:
            logger.exception("Unexpected error in %s", func.__name__)
            return f"An unexpected error occurred: {e}"

    return wrapper


class ToolService:
    """Binds the tool surface to one orchestrator and the checkpoint loaded at startup."""

    def __init__(self, orchestrator: ExecutionOrchestrator, loaded: SessionCheckpoint | None = None) -> None:
        self.orchestrator = orchestrator
        self.loaded = loaded

    @text_on_error
    async def new_ssh_connection(self, host: str, username: str, password: str, port: int = 22) -> str:
        outcome = await self.orchestrator.connect(host, port, username, password)
        return outcome.message

    @text_on_error
    async def run_safe_command(self, command: str) -> str:
        outcome = await self.orchestrator.run(command)
        return format_run_outcome(outcome)

    @text_on_error
    async def show_command_history(self) -> str:
        return format_history(self.orchestrator.session.history())

    @text_on_error
    async def resume_session(self) -> str:
        return format_resume(self.loaded)
