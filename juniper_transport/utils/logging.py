"""structlog configuration shared by every module.

Modules call ``get_logger(__name__)`` and log event names with keyword
context (``log.info("ssh.connecting", host=...)``).  ``setup_logging`` is
optional for library callers; without it structlog's defaults apply, but the
redaction processor is only installed through it.
"""

from __future__ import annotations

import logging
import sys
from typing import Any, TextIO

import structlog

REDACTED = "[REDACTED]"

# Event keys whose values must never reach a log sink.
SENSITIVE_KEYS = frozenset(
    {
        "password",
        "passwd",
        "bastion_password",
        "key_passphrase",
        "passphrase",
        "secret",
        "proxy_command",
    },
)


def redact_secrets(
    _logger: Any, _method: str, event_dict: dict[str, Any],
) -> dict[str, Any]:
    """structlog processor replacing sensitive values with a marker."""
    for key in event_dict:
        if key in SENSITIVE_KEYS and event_dict[key] is not None:
            event_dict[key] = REDACTED
    return event_dict


def setup_logging(
    level: str | int = "INFO",
    *,
    json_logs: bool = False,
    stream: TextIO | None = None,
) -> None:
    """Configure structlog (and the stdlib root handler paramiko logs to)."""
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
    logging.basicConfig(
        level=level,
        format="%(message)s",
        stream=stream or sys.stderr,
    )

    renderer: Any
    if json_logs:
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=False)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            redact_secrets,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.PrintLoggerFactory(file=stream or sys.stderr),
        cache_logger_on_first_use=False,
    )
    # paramiko is chatty at INFO; keep it one notch quieter than ours.
    logging.getLogger("paramiko").setLevel(max(level, logging.WARNING))


def get_logger(name: str | None = None, **initial: Any) -> Any:
    """Return a structlog logger bound to *name*."""
    log = structlog.get_logger(name)
    if initial:
        log = log.bind(**initial)
    return log
