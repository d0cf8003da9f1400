"""Deny and allow pattern sets used by the safety gate."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass

logger = logging.getLogger(__name__)

_PATH = r"[\w/._-]+"

# Checked first and unconditionally. Order matters only for the reported reason.
DENY_PATTERNS: list[tuple[str, str]] = [
    (r"\brm\s+(-\w+\s+)*/", "Recursive delete of root-level path"),
    (r"\bchmod\s+(-\w+\s+)*777\b", "World-writable permission grant"),
    (r"\bmkfs\b", "Filesystem format blocked"),
    (r"\bdd\s+if=.+of=/dev", "Direct device write blocked"),
    (r":\(\)\s*\{\s*:\|:\s*&\s*\}\s*;\s*:", "Fork bomb detected"),
    (r"\bwget\b.+\|\s*(ba|z)?sh\b", "Remote script piped to shell"),
    (r"\bcurl\b.+\|\s*(ba|z)?sh\b", "Remote script piped to shell"),
    (r"\bsudo\s+rm\s+-rf\s+/\*", "Privileged recursive delete"),
]

# Whole-command matches for common read-only / introspection commands.
ALLOW_PATTERNS: list[tuple[str, str]] = [
    (r"ls(\s+-[a-zA-Z]+)*", "listing"),
    (r"pwd", "working directory"),
    (r"echo\s+[^|>;&`$]*", "simple echo"),
    (rf"cd\s+{_PATH}", "change directory"),
    (rf"cat\s+{_PATH}", "file read"),
    (rf"mkdir(\s+-p)?\s+{_PATH}", "directory creation"),
    (rf"cp(\s+-r)?\s+{_PATH}\s+{_PATH}", "simple copy"),
    (r"df\s+-[a-zA-Z]+", "disk free"),
    (r"du\s+-[a-zA-Z]+", "disk usage"),
    (r"ps\s+[auxef]+", "process status"),
    (rf'grep\s+(-[a-zA-Z]+\s+)?"[^"]+"\s+{_PATH}', "quoted search"),
    (r"ping\s+-c\s+\d+\s+[\w.-]+", "counted ping"),
    (r"uname\s+-[a-zA-Z]+", "system info"),
    (r"whoami", "whoami"),
    (r"date", "date"),
    (r"apt\s+(update|list|search\s+[\w-]+)", "package index"),
]


@dataclass(frozen=True)
class PatternRule:
    pattern: re.Pattern[str]
    reason: str


class PatternMatcher:
    """Ordered regex rule set.

    With ``full_match`` the whole (stripped) command must match a rule;
    otherwise a match anywhere in the command counts.
    """

    def __init__(self, patterns: list[tuple[str, str]], full_match: bool = False, flags: int = 0) -> None:
        self.full_match = full_match
        self._rules: list[PatternRule] = []
        for pattern, reason in patterns:
            try:
                self._rules.append(PatternRule(re.compile(pattern, flags), reason))
            except re.error:
                logger.error("Invalid pattern: %s", pattern)

    def __len__(self) -> int:
        return len(self._rules)

    def match(self, command: str) -> PatternRule | None:
        """Return the first rule matching ``command``, or None."""
        text = command.strip()
        for rule in self._rules:
            hit = rule.pattern.fullmatch(text) if self.full_match else rule.pattern.search(text)
            if hit:
                return rule
        return None


deny_matcher = PatternMatcher(DENY_PATTERNS, flags=re.IGNORECASE)
allow_matcher = PatternMatcher(ALLOW_PATTERNS, full_match=True)
