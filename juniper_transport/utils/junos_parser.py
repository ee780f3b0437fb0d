"""Utilities for parsing JunOS CLI output."""

from __future__ import annotations

import codecs
import re
from typing import Optional

from lxml import etree

from juniper_transport.errors import ProtocolError


# ---------------------------------------------------------------------------
# Terminal noise
# ---------------------------------------------------------------------------

_ANSI_ESCAPE_RE = re.compile(r"\x1B(?:[@-Z\\-_]|\[[0-?]*[ -/]*[@-~])")
_CONTROL_RE = re.compile(r"[\x00-\x08\x0B\x0C\x0E-\x1F\x7F]")


def clean_terminal_text(text: str) -> str:
    """Strip ANSI sequences, carriage returns and stray control bytes."""
    if not text:
        return ""
    text = _ANSI_ESCAPE_RE.sub("", text)
    text = text.replace("\r", "")
    return _CONTROL_RE.sub("", text)


class TerminalTextDecoder:
    """Incremental bytes -> clean text for an interactive channel.

    UTF-8 sequences and ANSI escapes split across reads are held back until
    the next chunk completes them.
    """

    # longest escape sequence worth waiting for
    _MAX_PENDING_ESCAPE = 32

    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._pending = ""

    def feed(self, data: bytes) -> str:
        text = self._pending + self._decoder.decode(data)
        self._pending = ""
        cut = text.rfind("\x1b")
        if (
            cut != -1
            and len(text) - cut < self._MAX_PENDING_ESCAPE
            and not _ANSI_ESCAPE_RE.match(text, cut)
        ):
            text, self._pending = text[:cut], text[cut:]
        return clean_terminal_text(text)

    def reset(self) -> None:
        self._decoder.reset()
        self._pending = ""


# ---------------------------------------------------------------------------
# Prompt detection
# ---------------------------------------------------------------------------

# Optional mode-indicator line printed above the prompt, e.g. "[edit]",
# "{master:0}" or "{master:0}[edit interfaces]".
_MODE_LINE = r"^(?P<mode>(?:\{[^}\n]*\})?(?:\[edit[^\]\n]*\])?\n)?"

# user@host> / user@host# / host% (shell). Anything between the line start
# and the mode character that looks like a device name is accepted. JunOS
# always prints a space after the mode character; a bare "host>" ending a
# read is output that happens to look like a prompt.
_GENERIC_PROMPT = r"(?P<prompt>[\w.@:/-]+[>#%])[ \t]+"

GENERIC_PROMPT_RE = re.compile(_MODE_LINE + _GENERIC_PROMPT + r"\Z", re.MULTILINE)

_PROMPT_SPLIT_RE = re.compile(r"^(?P<base>.*?)(?P<mode>[>#%])(?P<tail>[ \t]*)$")


def learned_prompt_re(prompt: str) -> re.Pattern[str]:
    """Build a pattern for the prompt seen at login.

    The base (``user@host``) is fixed; the mode character may switch between
    ``>``, ``#`` and ``%`` so configuration mode is still recognised.
    """
    m = _PROMPT_SPLIT_RE.match(prompt)
    if not m or not m.group("base"):
        return GENERIC_PROMPT_RE
    body = r"(?P<prompt>" + re.escape(m.group("base")) + r"[>#%])[ \t]+"
    return re.compile(_MODE_LINE + body + r"\Z", re.MULTILINE)


def find_prompt(
    text: str, pattern: re.Pattern[str] = GENERIC_PROMPT_RE, start: int = 0,
) -> Optional[tuple[int, str]]:
    """Locate a prompt at the very end of ``text[start:]``.

    Returns ``(offset, prompt)`` where *offset* is where the prompt (or its
    mode-indicator line) begins, or ``None``.  *start* must itself be a line
    start.  The prompt has to begin a line and be the last thing received;
    only the last two lines are examined, so a prompt-like line followed by
    more output never ends the response.
    """
    if len(text) <= start:
        return None
    last_nl = text.rfind("\n", start)
    prev_nl = text.rfind("\n", start, last_nl) if last_nl > start else -1
    window = prev_nl + 1 if prev_nl >= 0 else start
    m = pattern.search(text, window)
    if not m:
        return None
    return m.start(), m.group("prompt")


def split_echo(text: str) -> Optional[int]:
    """Index just past the echoed command line, or None if it is incomplete."""
    nl = text.find("\n")
    if nl == -1:
        return None
    return nl + 1


# ---------------------------------------------------------------------------
# Error detection
# ---------------------------------------------------------------------------

JUNOS_ERROR_PATTERNS: list[re.Pattern[str]] = [
    re.compile(r"^\s*error:", re.IGNORECASE),
    re.compile(r"configuration database locked", re.IGNORECASE),
    re.compile(r"^\s*syntax error", re.IGNORECASE),
    re.compile(r"^\s*invalid command", re.IGNORECASE),
    re.compile(r"^\s*unknown command", re.IGNORECASE),
    re.compile(r"^\s*missing argument", re.IGNORECASE),
]

JUNOS_DIAGNOSTIC_PATTERNS: list[re.Pattern[str]] = [
    re.compile(r"^\s*warning:", re.IGNORECASE),
    # caret under the offending token of a rejected command
    re.compile(r"^\s*\^\s*$"),
]


def is_error_line(line: str) -> bool:
    return any(pat.search(line) for pat in JUNOS_ERROR_PATTERNS)


def detect_junos_error(output: str) -> str | None:
    """Return the first JunOS error line found, or None."""
    for line in output.splitlines():
        if is_error_line(line):
            return line.strip()
    return None


def is_junos_error(output: str) -> bool:
    return detect_junos_error(output) is not None


def split_diagnostics(body: str) -> tuple[str, str, bool]:
    """Separate diagnostic lines from regular output.

    Returns ``(stdout, stderr, has_error)``.
    """
    out: list[str] = []
    err: list[str] = []
    has_error = False
    for line in body.split("\n"):
        if is_error_line(line):
            err.append(line)
            has_error = True
        elif any(pat.search(line) for pat in JUNOS_DIAGNOSTIC_PATTERNS):
            err.append(line)
        else:
            out.append(line)
    return "\n".join(out), "\n".join(err), has_error


# ---------------------------------------------------------------------------
# show version parsing
# ---------------------------------------------------------------------------

_ARCH_TOKEN_RE = re.compile(
    r"(?<![\w])(x86[-_]64|amd64|i386|arm[-_]?64|aarch64|arm[-_]32|mips64|ppc)(?![\w])",
    re.IGNORECASE,
)

_ARCH_ALIASES = {
    "x86-64": "x86_64",
    "x86_64": "x86_64",
    "amd64": "x86_64",
    "arm64": "arm64",
    "arm-64": "arm64",
    "arm_64": "arm64",
    "aarch64": "arm64",
    "arm-32": "arm",
    "arm_32": "arm",
}

_ARCH_TAGS = ("arch", "architecture")


def normalize_arch(token: str) -> str:
    token = token.lower()
    return _ARCH_ALIASES.get(token, token)


def _localname(el: etree._Element) -> str:
    return etree.QName(el).localname


def _extract_rpc_reply(output: str) -> str:
    start = output.find("<rpc-reply")
    end = output.rfind("</rpc-reply>")
    if start == -1 or end == -1:
        raise ProtocolError("no <rpc-reply> element in output")
    return output[start:end + len("</rpc-reply>")]


def parse_version_xml(output: str) -> dict[str, str]:
    """Extract identity fields from ``show version | display xml``.

    Tag matching ignores namespaces.  For multi-routing-engine replies the
    first ``software-information`` block wins.  Unknown tags are ignored.
    Raises ProtocolError when the markup cannot be parsed at all.
    """
    try:
        root = etree.fromstring(
            _extract_rpc_reply(output).encode(),
            parser=etree.XMLParser(resolve_entities=False, no_network=True),
        )
    except etree.XMLSyntaxError as exc:
        raise ProtocolError(f"malformed version XML: {exc}") from exc

    info: dict[str, str] = {}
    package_text: list[str] = []
    for el in root.iter():
        if not isinstance(el.tag, str):
            continue
        tag = _localname(el)
        text = (el.text or "").strip()
        if not text:
            continue
        if tag == "host-name":
            info.setdefault("hostname", text)
        elif tag == "product-model":
            info.setdefault("model", text)
        elif tag == "junos-version":
            info.setdefault("version", text)
        elif tag in _ARCH_TAGS:
            info.setdefault("arch", normalize_arch(text))
        elif tag in ("name", "comment") and el.getparent() is not None and (
            _localname(el.getparent()) == "package-information"
        ):
            package_text.append(text)

    # Older releases carry the version only in the package list.
    if "version" not in info:
        for text in package_text:
            m = re.search(r"JUNOS (?:Base OS boot|Software Release) \[([\w.-]+)\]", text)
            if m:
                info["version"] = m.group(1)
                break
    if "arch" not in info:
        for text in package_text:
            m = _ARCH_TOKEN_RE.search(text)
            if m:
                info["arch"] = normalize_arch(m.group(1))
                break
    return info


_TEXT_VERSION_PATTERNS: list[re.Pattern[str]] = [
    re.compile(r"Junos:\s+([\w.-]+)"),
    re.compile(r"JUNOS Software Release \[([\w.-]+)\]"),
    re.compile(r"junos version ([\w.-]+)", re.IGNORECASE),
    re.compile(r"JUNOS Base OS boot \[([\w.-]+)\]"),
]


def parse_version_text(output: str) -> dict[str, str]:
    """Extract identity fields from plain ``show version`` output."""
    info: dict[str, str] = {}
    for pat in _TEXT_VERSION_PATTERNS:
        m = pat.search(output)
        if m:
            info["version"] = m.group(1)
            break
    m = re.search(r"^\s*Model:\s+(\S+)", output, re.MULTILINE)
    if m:
        info["model"] = m.group(1)
    m = re.search(r"^\s*Hostname:\s+(\S+)", output, re.MULTILINE)
    if m:
        info["hostname"] = m.group(1)
    m = re.search(r"^\s*Architecture:\s+(\S+)", output, re.MULTILINE | re.IGNORECASE)
    if m:
        info["arch"] = normalize_arch(m.group(1))
    return info
