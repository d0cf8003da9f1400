"""Exception hierarchy for safessh-terminal."""

from __future__ import annotations


class SafeSSHError(Exception):
    """Base class for all safessh-terminal errors."""


class RemoteConnectionError(SafeSSHError):
    """Host unreachable, authentication failure or connect timeout."""


class ClassifierError(SafeSSHError):
    """Inference backend failed or returned a malformed reply."""


class ExecutionTimeoutError(SafeSSHError):
    """Remote command did not finish within the execution timeout."""


class PersistenceError(SafeSSHError, OSError):
    """Checkpoint or history file could not be read or written."""


class ConfigLoadError(SafeSSHError):
    """Security policy file is missing or malformed."""
