"""Data models for safessh-terminal."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


def utc_now() -> str:
    """Current time as an ISO-8601 UTC string."""
    return datetime.now(timezone.utc).isoformat()


class VerdictSource(str, Enum):
    """Policy layer that produced a safety verdict."""

    DENY_PATTERN = "DENY_PATTERN"
    ALLOW_PATTERN = "ALLOW_PATTERN"
    DENY_BY_ABSENCE = "DENY_BY_ABSENCE"
    MODEL_CLASSIFIER = "MODEL_CLASSIFIER"
    DISABLED = "DISABLED"


class RecordStatus(str, Enum):
    PENDING = "pending"
    REJECTED = "rejected"
    COMPLETED = "completed"
    TIMED_OUT = "timed_out"
    FAILED = "failed"
    INTERRUPTED = "interrupted"


class OutcomeStatus(str, Enum):
    NOT_CONNECTED = "not_connected"
    BUSY = "busy"
    REJECTED = "rejected"
    COMPLETED = "completed"
    TIMED_OUT = "timed_out"
    FAILED = "failed"


@dataclass(frozen=True)
class SafetyVerdict:
    """Result of a single safety evaluation. Never persisted."""

    safe: bool
    source: VerdictSource
    model: str | None = None


@dataclass(frozen=True)
class ConnectionInfo:
    """Metadata of the current remote connection (no credentials)."""

    host: str
    port: int
    username: str
    connected_at: str = field(default_factory=utc_now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "host": self.host,
            "port": self.port,
            "username": self.username,
            "connectedAt": self.connected_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ConnectionInfo:
        return cls(
            host=data["host"],
            port=int(data["port"]),
            username=data["username"],
            connected_at=data["connectedAt"],
        )


@dataclass(frozen=True)
class CommandResult:
    """Outcome reported by the remote side when the channel closes."""

    exit_code: int | None
    signal: str | None
    stdout: str
    stderr: str
    completed_at: str = field(default_factory=utc_now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "exitCode": self.exit_code,
            "signal": self.signal,
            "stdout": self.stdout,
            "stderr": self.stderr,
            "completedAt": self.completed_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CommandResult:
        return cls(
            exit_code=data.get("exitCode"),
            signal=data.get("signal"),
            stdout=data.get("stdout", ""),
            stderr=data.get("stderr", ""),
            completed_at=data["completedAt"],
        )


@dataclass
class CommandRecord:
    """A dispatched command and, once observed complete, its result."""

    command: str
    executed_at: str = field(default_factory=utc_now)
    result: CommandResult | None = None
    status: RecordStatus = RecordStatus.PENDING

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"command": self.command, "executedAt": self.executed_at}
        if self.result is not None:
            data["result"] = self.result.to_dict()
        data["status"] = self.status.value
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CommandRecord:
        result = CommandResult.from_dict(data["result"]) if data.get("result") else None
        raw_status = data.get("status")
        if raw_status is not None:
            status = RecordStatus(raw_status)
        else:
            # Files written without a status tag only know "has a result" or not.
            status = RecordStatus.COMPLETED if result is not None else RecordStatus.INTERRUPTED
        return cls(
            command=data["command"],
            executed_at=data["executedAt"],
            result=result,
            status=status,
        )


@dataclass
class SessionCheckpoint:
    """Full point-in-time snapshot of session state."""

    connection_info: ConnectionInfo | None = None
    commands: list[CommandRecord] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {}
        if self.connection_info is not None:
            data["connectionInfo"] = self.connection_info.to_dict()
        data["commands"] = [record.to_dict() for record in self.commands]
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SessionCheckpoint:
        info = data.get("connectionInfo")
        commands = data.get("commands") or []
        if not isinstance(commands, list):
            raise ValueError("'commands' must be a list")
        return cls(
            connection_info=ConnectionInfo.from_dict(info) if info else None,
            commands=[CommandRecord.from_dict(item) for item in commands],
        )


@dataclass
class ExecutionOutcome:
    """Caller-facing outcome of a connect or run operation."""

    status: OutcomeStatus
    message: str = ""
    record_index: int | None = None
    result: CommandResult | None = None
    verdict: SafetyVerdict | None = None

    @property
    def ok(self) -> bool:
        return self.status == OutcomeStatus.COMPLETED
