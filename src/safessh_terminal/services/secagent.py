"""Safety gate: decides whether a command may be forwarded to the remote host.

Layers, in order:

1. policy disabled -> SAFE
2. deny patterns -> UNSAFE (cannot be overridden)
3. static allow patterns, when the classifier is off or has no model
4. local model classifier, retried, falling back to step 3 on exhaustion

``evaluate`` never raises; every internal failure degrades to a verdict.
"""

from __future__ import annotations

import asyncio
import logging

from tenacity import AsyncRetrying, stop_after_attempt, wait_fixed

from safessh_terminal.config import PolicyConfig
from safessh_terminal.errors import ClassifierError
from safessh_terminal.services.inference import InferenceBackend
from safessh_terminal.services.patterns import PatternMatcher, allow_matcher, deny_matcher
from safessh_terminal.storage.models import SafetyVerdict, VerdictSource

logger = logging.getLogger(__name__)

MAX_RETRIES = 3
RETRY_DELAY = 1.0
REQUEST_TIMEOUT = 5.0

# Acceptable classifier models, most preferred first.
FALLBACK_MODELS = ["llama2", "llama2-uncensored", "mistral", "gemma"]

PROMPT_TEMPLATE = (
    'Using the following security policy "{policy}". '
    'The command is "{command}". '
    'Only respond with "SAFE" or "UNSAFE" and do not repeat the security policy.'
)


def _base_name(model: str) -> str:
    return model.split(":", 1)[0]


class SafetyGate:
    """Layered SAFE/UNSAFE classifier for candidate commands."""

    def __init__(
        self,
        policy: PolicyConfig,
        backend: InferenceBackend | None = None,
        *,
        max_retries: int = MAX_RETRIES,
        retry_delay: float = RETRY_DELAY,
        request_timeout: float = REQUEST_TIMEOUT,
        deny: PatternMatcher = deny_matcher,
        allow: PatternMatcher = allow_matcher,
    ) -> None:
        self.policy = policy
        self.backend = backend
        self.max_retries = max(1, max_retries)
        self.retry_delay = retry_delay
        self.request_timeout = request_timeout
        self.deny = deny
        self.allow = allow
        self.available_models: list[str] = []

    async def discover_models(self) -> list[str]:
        """List the backend's models once. On failure none are considered available."""
        if self.backend is None:
            self.available_models = []
            return self.available_models
        try:
            self.available_models = await self.backend.list_models()
            logger.info("Available models: %s", ", ".join(self.available_models) or "(none)")
        except Exception:
            logger.exception("Failed to list available models")
            self.available_models = []
        return self.available_models

    def select_model(self) -> str | None:
        """First fallback-chain model present among the discovered models."""
        for wanted in FALLBACK_MODELS:
            for name in self.available_models:
                if name == wanted or _base_name(name) == wanted:
                    return name
        return None

    def static_verdict(self, command: str) -> SafetyVerdict:
        """Deny patterns then allow patterns, with no classifier involved."""
        denied = self.deny.match(command)
        if denied is not None:
            logger.info("Command detected as unsafe by static check (%s): %r", denied.reason, command)
            return SafetyVerdict(safe=False, source=VerdictSource.DENY_PATTERN)
        return self._allow_verdict(command)

    async def evaluate(self, command: str, policy: PolicyConfig | None = None) -> SafetyVerdict:
        """Classify ``command`` under ``policy`` (default: the gate's own policy)."""
        policy = policy or self.policy

        if not policy.enabled:
            logger.info("Security agent is disabled, skipping safety check for %r", command)
            return SafetyVerdict(safe=True, source=VerdictSource.DISABLED)

        denied = self.deny.match(command)
        if denied is not None:
            logger.info("Command detected as unsafe by static check (%s): %r", denied.reason, command)
            return SafetyVerdict(safe=False, source=VerdictSource.DENY_PATTERN)

        if policy.static_only:
            logger.info("Using static checks only for %r", command)
            return self._allow_verdict(command)
        if not policy.use_local_classifier:
            logger.info("Local classifier disabled, using static checks for %r", command)
            return self._allow_verdict(command)

        model = self.select_model()
        if model is None or self.backend is None:
            logger.info("No classifier model available, falling back to static checks for %r", command)
            return self._allow_verdict(command)

        try:
            return await self._classify_with_retry(command, policy, model)
        except Exception:
            logger.warning(
                "All %d classifier attempts failed, falling back to static checks for %r",
                self.max_retries,
                command,
            )
            return self._allow_verdict(command)

    def _allow_verdict(self, command: str) -> SafetyVerdict:
        if self.allow.match(command) is not None:
            return SafetyVerdict(safe=True, source=VerdictSource.ALLOW_PATTERN)
        return SafetyVerdict(safe=False, source=VerdictSource.DENY_BY_ABSENCE)

    async def _classify_with_retry(self, command: str, policy: PolicyConfig, model: str) -> SafetyVerdict:
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_retries),
            wait=wait_fixed(self.retry_delay),
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                number = attempt.retry_state.attempt_number
                logger.info("Checking command safety with %s: %r (attempt %d/%d)", model, command, number, self.max_retries)
                try:
                    return await self._classify_once(command, policy, model)
                except Exception as e:
                    logger.error("Attempt %d/%d failed for %r: %s", number, self.max_retries, command, e)
                    raise
        raise ClassifierError("classifier retry loop exited without a verdict")

    async def _classify_once(self, command: str, policy: PolicyConfig, model: str) -> SafetyVerdict:
        assert self.backend is not None
        prompt = PROMPT_TEMPLATE.format(policy=policy.security_policy, command=command)
        # wait_for cancels the request if the timeout wins the race
        reply = await asyncio.wait_for(
            self.backend.generate(model, prompt, stream=False),
            timeout=self.request_timeout,
        )
        if not isinstance(reply, str):
            raise ClassifierError(f"Non-text reply from {model}")
        safe = "UNSAFE" not in reply.strip().upper()
        logger.info("Classifier %s judged %r %s (reply: %r)", model, command, "SAFE" if safe else "UNSAFE", reply.strip())
        return SafetyVerdict(safe=safe, source=VerdictSource.MODEL_CLASSIFIER, model=model)
