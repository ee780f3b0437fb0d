"""Platform probe: identify the JunOS device behind a ready session."""

from __future__ import annotations

from typing import Any, Optional

from juniper_transport.errors import CommandTimeoutError, ProtocolError
from juniper_transport.models.commands import CommandResult
from juniper_transport.models.platform import UNKNOWN, DeviceFacts
from juniper_transport.utils.junos_parser import parse_version_text, parse_version_xml
from juniper_transport.utils.logging import get_logger

log = get_logger(__name__)

VERSION_COMMAND = "show version | display xml"
TEXT_VERSION_COMMAND = "show version"


def facts_from_info(info: dict[str, str], raw: str) -> DeviceFacts:
    return DeviceFacts(
        release=info.get("version") or UNKNOWN,
        model=info.get("model") or UNKNOWN,
        hostname=info.get("hostname") or UNKNOWN,
        arch=info.get("arch") or UNKNOWN,
        raw=raw,
    )


def facts_from_output(output: str) -> DeviceFacts:
    """Parse ``show version`` output, XML first and plain text otherwise."""
    try:
        info = parse_version_xml(output)
    except ProtocolError:
        info = parse_version_text(output)
    return facts_from_info(info, output)


class PlatformProber:
    """Runs the version command on a session and builds DeviceFacts.

    Never raises for device-side problems: anything that cannot be read
    degrades to ``"unknown"``.  Devices whose CLI rejects ``| display xml``
    or returns unusable markup get a second, plain-text ``show version``.
    """

    def __init__(self, logger: Any = None) -> None:
        self._log = logger or log

    def _run(self, session: Any, command: str) -> Optional[CommandResult]:
        result = session.execute(command)
        if result.failed:
            self._log.warning("platform.probe_failed", command=command, error=result.stderr)
            return None
        return result

    def _detect(self, session: Any) -> DeviceFacts:
        result = self._run(session, VERSION_COMMAND)
        if result is not None:
            try:
                return facts_from_info(parse_version_xml(result.stdout), result.stdout)
            except ProtocolError as exc:
                self._log.debug("platform.xml_unusable", error=str(exc))

        result = self._run(session, TEXT_VERSION_COMMAND)
        if result is None:
            return DeviceFacts()
        return facts_from_info(parse_version_text(result.stdout), result.stdout)

    def probe(self, session: Any) -> DeviceFacts:
        try:
            facts = self._detect(session)
        except CommandTimeoutError as exc:
            self._log.warning("platform.probe_timeout", error=str(exc))
            return DeviceFacts()
        if facts.release == UNKNOWN:
            self._log.warning("platform.unknown")
        else:
            self._log.info(
                "platform.detected",
                release=facts.release,
                model=facts.model,
                hostname=facts.hostname,
                arch=facts.arch,
            )
        return facts
