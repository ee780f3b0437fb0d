"""Command sanitiser applied before anything is written to the device shell.

The JunOS CLI is line oriented: a newline inside a command would smuggle a
second command into the session, and shell metacharacters only make sense if
the caller is trying to escape into ``start shell``.  Pipes stay allowed since
``| display xml``, ``| match`` and friends are everyday JunOS syntax.
"""

from __future__ import annotations

import re

from juniper_transport.errors import CommandRejectedError
from juniper_transport.utils.logging import get_logger

log = get_logger(__name__)

# ── ALWAYS-DENIED patterns ────────────────────────────────────────────────
DANGEROUS_PATTERNS: list[re.Pattern[str]] = [
    # shell metacharacters (pipe excluded)
    re.compile(r"[;&<>$`]"),
    # embedded line breaks
    re.compile(r"[\n\r]"),
    # backslash escapes other than \n \r \t
    re.compile(r"\\(?![nrt])"),
]


# ── Public API ────────────────────────────────────────────────────────────

class CommandFilterResult:
    __slots__ = ("allowed", "reason", "command")

    def __init__(self, allowed: bool, reason: str, command: str = ""):
        self.allowed = allowed
        self.reason = reason
        self.command = command

    def __bool__(self) -> bool:
        return self.allowed


def check_command(command: str) -> CommandFilterResult:
    """Check whether *command* is safe to send; the result carries it stripped."""
    cmd = str(command).strip()
    if not cmd:
        return CommandFilterResult(False, "empty command")

    for pat in DANGEROUS_PATTERNS:
        if pat.search(cmd):
            return CommandFilterResult(False, f"invalid characters (rule: {pat.pattern})")

    return CommandFilterResult(True, "allowed", cmd)


def sanitize_command(command: str) -> str:
    """Return the stripped command or raise CommandRejectedError."""
    result = check_command(command)
    if not result:
        log.warning("command.rejected", reason=result.reason)
        raise CommandRejectedError(f"Invalid command {command!r}: {result.reason}")
    return result.command
