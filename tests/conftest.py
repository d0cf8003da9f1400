"""Shared test fixtures."""

from __future__ import annotations

import asyncio

import pytest

from safessh_terminal.config import (
    AppConfig,
    InferenceConfig,
    LoggingConfig,
    PolicyConfig,
    SecAgentConfig,
    SSHConfig,
    StorageConfig,
)
from safessh_terminal.errors import ClassifierError, RemoteConnectionError
from safessh_terminal.services.remote import StreamClosed, StreamData


class FakeBackend:
    """Inference backend double with scripted replies."""

    def __init__(self, models=None, replies=None, list_error=None):
        self.models = list(models or [])
        self.replies = list(replies or [])
        self.list_error = list_error
        self.prompts: list[tuple[str, str]] = []

    async def list_models(self):
        if self.list_error is not None:
            raise self.list_error
        return self.models

    async def generate(self, model, prompt, stream=False):
        self.prompts.append((model, prompt))
        reply = self.replies.pop(0) if self.replies else ClassifierError("no reply scripted")
        if isinstance(reply, BaseException):
            raise reply
        if callable(reply):
            return await reply()
        return reply


class FakeShell:
    """Remote shell double that replays scripted stream events per command."""

    def __init__(self, events=None, connect_error=None, hang=False):
        self.events = events if events is not None else {}
        self.connect_error = connect_error
        self.hang = hang
        self.connected_with = None
        self.closed = False
        self.streams_closed = 0
        self.executed: list[str] = []

    async def connect(self, host, port, username, password, ready_timeout, keepalive_interval):
        if self.connect_error is not None:
            raise self.connect_error
        self.connected_with = (host, port, username)

    async def exec(self, command):
        self.executed.append(command)
        if command not in self.events and not self.hang:
            raise RemoteConnectionError("channel open failed")
        try:
            if self.hang:
                await asyncio.sleep(3600)
            for event in self.events[command]:
                await asyncio.sleep(0)
                yield event
        finally:
            self.streams_closed += 1

    async def close(self):
        self.closed = True


def ls_events():
    return [
        StreamData("stdout", b"file1.txt\n"),
        StreamData("stderr", b"warn\n"),
        StreamData("stdout", b"file2.txt\n"),
        StreamClosed(exit_code=0, signal=None),
    ]


@pytest.fixture
def app_config(tmp_path):
    """Create a test configuration."""
    return AppConfig(
        ssh=SSHConfig(connect_timeout=5, exec_timeout=5, keepalive_interval=60),
        inference=InferenceConfig(host="http://ollama.test", request_timeout=1.0, max_retries=3, retry_delay=0),
        secagent=SecAgentConfig(policy_file=str(tmp_path / "secagentconfig.json")),
        storage=StorageConfig(
            checkpoint_file=str(tmp_path / "session_checkpoint.json"),
            history_file=str(tmp_path / "command_history.json"),
            autosave_interval=30,
        ),
        logging=LoggingConfig(level="DEBUG", file=str(tmp_path / "test.log")),
    )


@pytest.fixture
def static_policy():
    return PolicyConfig(enabled=True, use_local_classifier=False, static_only=True)


@pytest.fixture
def classifier_policy():
    return PolicyConfig(
        enabled=True,
        use_local_classifier=True,
        static_only=False,
        security_policy="only listing is safe",
    )
