"""Plain-text rendering of outcomes, history and resume summaries."""

from __future__ import annotations

from typing import Sequence

from safessh_terminal.storage.models import (
    CommandRecord,
    ExecutionOutcome,
    OutcomeStatus,
    RecordStatus,
    SessionCheckpoint,
)

NO_HISTORY = "No commands have been executed yet."
NOTHING_TO_RESUME = "No previous session to resume. Please connect first using new-ssh-connection."

_STATUS_LABELS = {
    RecordStatus.PENDING: "Running",
    RecordStatus.REJECTED: "Rejected as unsafe",
    RecordStatus.TIMED_OUT: "Timed out",
    RecordStatus.FAILED: "Failed",
    RecordStatus.INTERRUPTED: "Interrupted",
}


def format_run_outcome(outcome: ExecutionOutcome) -> str:
    """Text reply for run-safe-command."""
    if outcome.status != OutcomeStatus.COMPLETED or outcome.result is None:
        return outcome.message
    result = outcome.result
    return (
        f"Command executed with exit code {result.exit_code} and signal {result.signal}\n"
        f"STDOUT:\n{result.stdout}\n"
        f"STDERR:\n{result.stderr}"
    )


def format_record_status(record: CommandRecord) -> str:
    if record.result is not None:
        return f"Completed (Exit code: {record.result.exit_code})"
    return _STATUS_LABELS.get(record.status, record.status.value)


def format_history(records: Sequence[CommandRecord]) -> str:
    """Numbered command history with dispatch time and completion status."""
    if not records:
        return NO_HISTORY

    lines = ["Command History:", ""]
    for i, record in enumerate(records, 1):
        lines.append(f"{i}. {record.command}")
        lines.append(f"   Executed at: {record.executed_at}")
        lines.append(f"   Status: {format_record_status(record)}")
        if record.result is not None:
            lines.append(f"   Completed at: {record.result.completed_at}")
        lines.append("")
    return "\n".join(lines).rstrip("\n") + "\n"


def format_resume(checkpoint: SessionCheckpoint | None) -> str:
    """Summary of a recovered session, or the nothing-to-resume message."""
    if checkpoint is None or checkpoint.connection_info is None:
        return NOTHING_TO_RESUME

    info = checkpoint.connection_info
    interrupted = sum(1 for r in checkpoint.commands if r.status == RecordStatus.INTERRUPTED)
    text = (
        f"Session information recovered. Last connected to {info.host} as {info.username} "
        f"at {info.connected_at}.\n\n"
        f"You had executed {len(checkpoint.commands)} commands."
    )
    if interrupted:
        text += f" {interrupted} of them were interrupted before completing."
    text += (
        " Use the show-command-history tool to see details.\n\n"
        "Please reconnect using new-ssh-connection to continue your work."
    )
    return text
