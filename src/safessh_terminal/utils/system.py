"""System utility checks."""

from __future__ import annotations

from pathlib import Path

import httpx

from safessh_terminal.config import read_policy
from safessh_terminal.errors import ConfigLoadError


def check_inference_backend(host: str, timeout: float = 5.0) -> tuple[bool, str]:
    """Check that the inference backend answers and list its models."""
    try:
        response = httpx.get(f"{host.rstrip('/')}/api/tags", timeout=timeout)
        response.raise_for_status()
        models = [m.get("name", "?") for m in response.json().get("models", [])]
    except httpx.HTTPError as e:
        return False, f"Inference backend not reachable at {host}: {e}"
    except (ValueError, AttributeError):
        return False, f"Unexpected reply from inference backend at {host}"
    return True, ", ".join(models) if models else "(no models installed)"


def check_policy_file(path: str) -> tuple[bool, str]:
    """Validate the security policy file."""
    resolved = Path(path).expanduser()
    if not resolved.exists():
        return False, f"Policy file not found: {resolved} (security agent disabled)"
    try:
        policy = read_policy(resolved)
    except ConfigLoadError as e:
        return False, str(e)
    if not policy.enabled:
        return True, "security agent disabled"
    if policy.static_only or not policy.use_local_classifier:
        return True, "static checks only"
    return True, "static checks + local classifier"
