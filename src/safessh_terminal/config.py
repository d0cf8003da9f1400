"""Configuration management using TOML + environment variables.

The security policy itself lives in a separate JSON file (``secagentconfig.json``)
so it can be shared with other tooling that reads the same keys.
"""

from __future__ import annotations

import json
import logging
import os
import sys
from dataclasses import dataclass, field
from pathlib import Path

if sys.version_info >= (3, 11):
    import tomllib
else:
    try:
        import tomllib
    except ModuleNotFoundError:
        import tomli as tomllib  # type: ignore[no-redef]

import tomli_w

from safessh_terminal.errors import ConfigLoadError

logger = logging.getLogger(__name__)

CONFIG_DIR = Path.home() / ".safessh-terminal"
CONFIG_FILE = CONFIG_DIR / "config.toml"

DEFAULT_SECURITY_POLICY = "only listing is safe"


@dataclass
class PolicyConfig:
    """Security agent policy, loaded from the JSON policy file."""

    enabled: bool = False
    use_local_classifier: bool = False
    static_only: bool = False
    security_policy: str = DEFAULT_SECURITY_POLICY

    def to_dict(self) -> dict:
        return {
            "ENABLE_SECAGENT": self.enabled,
            "USE_LOCAL_LLM": self.use_local_classifier,
            "USE_STATIC_CHECKS_ONLY": self.static_only,
            "SECURITY_POLICY": self.security_policy,
        }


@dataclass
class SSHConfig:
    connect_timeout: int = 120
    exec_timeout: int = 120
    keepalive_interval: int = 60


@dataclass
class InferenceConfig:
    host: str = "http://localhost:11434"
    request_timeout: float = 5.0
    max_retries: int = 3
    retry_delay: float = 1.0


@dataclass
class SecAgentConfig:
    policy_file: str = "~/.safessh-terminal/secagentconfig.json"


@dataclass
class StorageConfig:
    checkpoint_file: str = "~/.safessh-terminal/session_checkpoint.json"
    history_file: str = "~/.safessh-terminal/command_history.json"
    autosave_interval: int = 30


@dataclass
class LoggingConfig:
    level: str = "INFO"
    file: str = "~/.safessh-terminal/sshclient.log"


@dataclass
class AppConfig:
    ssh: SSHConfig = field(default_factory=SSHConfig)
    inference: InferenceConfig = field(default_factory=InferenceConfig)
    secagent: SecAgentConfig = field(default_factory=SecAgentConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def ensure_config_dir() -> None:
    """Create config directory with secure permissions."""
    CONFIG_DIR.mkdir(parents=True, exist_ok=True)
    os.chmod(CONFIG_DIR, 0o700)


def load_config() -> AppConfig:
    """Load configuration from TOML file with env var overrides."""
    config = AppConfig()

    if CONFIG_FILE.exists():
        with open(CONFIG_FILE, "rb") as f:
            data = tomllib.load(f)

        ssh = data.get("ssh", {})
        config.ssh.connect_timeout = ssh.get("connect_timeout", config.ssh.connect_timeout)
        config.ssh.exec_timeout = ssh.get("exec_timeout", config.ssh.exec_timeout)
        config.ssh.keepalive_interval = ssh.get("keepalive_interval", config.ssh.keepalive_interval)

        inference = data.get("inference", {})
        config.inference.host = inference.get("host", config.inference.host)
        config.inference.request_timeout = inference.get("request_timeout", config.inference.request_timeout)
        config.inference.max_retries = inference.get("max_retries", config.inference.max_retries)
        config.inference.retry_delay = inference.get("retry_delay", config.inference.retry_delay)

        secagent = data.get("secagent", {})
        config.secagent.policy_file = secagent.get("policy_file", config.secagent.policy_file)

        storage = data.get("storage", {})
        config.storage.checkpoint_file = storage.get("checkpoint_file", config.storage.checkpoint_file)
        config.storage.history_file = storage.get("history_file", config.storage.history_file)
        config.storage.autosave_interval = storage.get("autosave_interval", config.storage.autosave_interval)

        logging_cfg = data.get("logging", {})
        config.logging.level = logging_cfg.get("level", config.logging.level)
        config.logging.file = logging_cfg.get("file", config.logging.file)

    # Environment variable overrides
    if env_host := os.environ.get("SAFESSH_OLLAMA_HOST"):
        config.inference.host = env_host
    if env_policy := os.environ.get("SAFESSH_POLICY_FILE"):
        config.secagent.policy_file = env_policy
    if env_checkpoint := os.environ.get("SAFESSH_CHECKPOINT_FILE"):
        config.storage.checkpoint_file = env_checkpoint
    if env_history := os.environ.get("SAFESSH_HISTORY_FILE"):
        config.storage.history_file = env_history
    if env_exec_timeout := os.environ.get("SAFESSH_EXEC_TIMEOUT"):
        config.ssh.exec_timeout = int(env_exec_timeout)
    if env_log_level := os.environ.get("SAFESSH_LOG_LEVEL"):
        config.logging.level = env_log_level

    return config


def save_config(config: AppConfig) -> None:
    """Save configuration to TOML file."""
    ensure_config_dir()

    data = {
        "ssh": {
            "connect_timeout": config.ssh.connect_timeout,
            "exec_timeout": config.ssh.exec_timeout,
            "keepalive_interval": config.ssh.keepalive_interval,
        },
        "inference": {
            "host": config.inference.host,
            "request_timeout": config.inference.request_timeout,
            "max_retries": config.inference.max_retries,
            "retry_delay": config.inference.retry_delay,
        },
        "secagent": {
            "policy_file": config.secagent.policy_file,
        },
        "storage": {
            "checkpoint_file": config.storage.checkpoint_file,
            "history_file": config.storage.history_file,
            "autosave_interval": config.storage.autosave_interval,
        },
        "logging": {
            "level": config.logging.level,
            "file": config.logging.file,
        },
    }

    with open(CONFIG_FILE, "wb") as f:
        tomli_w.dump(data, f)

    os.chmod(CONFIG_FILE, 0o600)


def read_policy(path: str | Path) -> PolicyConfig:
    """Strictly read the JSON security policy. Raises ConfigLoadError."""
    resolved = Path(path).expanduser()
    try:
        with open(resolved, encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, ValueError) as e:
        raise ConfigLoadError(f"Cannot read security policy {resolved}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigLoadError(f"Security policy {resolved} must be a JSON object")

    return PolicyConfig(
        enabled=data.get("ENABLE_SECAGENT") is True,
        use_local_classifier=data.get("USE_LOCAL_LLM") is True,
        static_only=data.get("USE_STATIC_CHECKS_ONLY") is True,
        security_policy=str(data.get("SECURITY_POLICY", DEFAULT_SECURITY_POLICY)),
    )


def load_policy(path: str | Path) -> PolicyConfig:
    """Read the security policy, falling back to the disabled default on any error."""
    try:
        return read_policy(path)
    except ConfigLoadError:
        logger.exception("Failed to load security policy, security agent disabled")
        return PolicyConfig()


def save_policy(policy: PolicyConfig, path: str | Path) -> None:
    """Write the security policy as JSON."""
    resolved = Path(path).expanduser()
    resolved.parent.mkdir(parents=True, exist_ok=True)
    with open(resolved, "w", encoding="utf-8") as f:
        json.dump(policy.to_dict(), f, indent=2)
