"""Offline session serving canned JunOS responses.

Used when ``mock=True``: nothing touches the network, but the same session
interface (connect / execute / configure_cli / close) is honoured so the
manager, prober and device files run unchanged.
"""

from __future__ import annotations

import time
from typing import Any, Optional

from juniper_transport.config import ConnectionSettings
from juniper_transport.errors import SessionStateError
from juniper_transport.models.commands import CommandResult
from juniper_transport.models.connection import ProxyPlan, SessionState
from juniper_transport.utils.logging import get_logger

log = get_logger(__name__)

# ── Canned JunOS outputs ──────────────────────────────────────────────────

SHOW_VERSION = """\
Hostname: lab-srx
Model: SRX240H2
Junos: 12.1X47-D15.4
JUNOS Software Release [12.1X47-D15.4]
"""

SHOW_VERSION_XML = """\
<rpc-reply xmlns:junos="http://xml.juniper.net/junos/12.1X47/junos">
  <software-information>
    <host-name>lab-srx</host-name>
    <product-model>SRX240H2</product-model>
    <product-name>srx240h2</product-name>
    <junos-version>12.1X47-D15.4</junos-version>
  </software-information>
</rpc-reply>
"""

SHOW_CHASSIS_HARDWARE = """\
Hardware inventory:
Item             Version  Part number  Serial number     Description
Chassis                                JN123456          SRX240H2
"""

SHOW_CHASSIS_HARDWARE_XML = """\
<rpc-reply xmlns:junos="http://xml.juniper.net/junos/12.1X47/junos">
  <chassis-inventory xmlns="http://xml.juniper.net/junos/12.1X47/junos-chassis">
    <chassis junos:style="inventory">
      <name>Chassis</name>
      <serial-number>JN123456</serial-number>
      <description>SRX240H2</description>
    </chassis>
  </chassis-inventory>
</rpc-reply>
"""

SHOW_CONFIGURATION = """\
interfaces {
    ge-0/0/0 {
        unit 0;
    }
}"""

SHOW_ROUTE = """\
inet.0: 5 destinations, 5 routes
0.0.0.0/0       *[Static/5] 00:00:01
"""

SHOW_SYSTEM_INFORMATION = """\
Hardware: SRX240H2
OS: JUNOS 12.1X47-D15.4
"""

SHOW_INTERFACES = "Physical interface: ge-0/0/0, Enabled, Physical link is Up\n"

# display-xml variants, keyed by the command before the pipe
XML_RESPONSES: dict[str, str] = {
    "show version": SHOW_VERSION_XML,
    "show chassis hardware": SHOW_CHASSIS_HARDWARE_XML,
}

# first prefix match wins
TEXT_RESPONSES: list[tuple[str, str]] = [
    ("show version", SHOW_VERSION),
    ("show chassis hardware", SHOW_CHASSIS_HARDWARE),
    ("show configuration", SHOW_CONFIGURATION),
    ("show route", SHOW_ROUTE),
    ("show system information", SHOW_SYSTEM_INFORMATION),
    ("show interfaces", SHOW_INTERFACES),
    ("set cli", ""),
]


def response_for(command: str) -> tuple[str, int]:
    """Return ``(output, exit_status)`` for a canned command."""
    base, _, modifier = command.partition("|")
    base = base.strip()
    if modifier.strip() == "display xml" and base in XML_RESPONSES:
        return XML_RESPONSES[base], 0
    for prefix, output in TEXT_RESPONSES:
        if base.startswith(prefix):
            return output, 0
    return f"% Unknown command: {command}", 1


class MockSession:
    """Drop-in replacement for SessionExecutor backed by canned responses."""

    prompt = "mock@lab-srx> "

    def __init__(self, settings: Optional[ConnectionSettings] = None, *, logger: Any = None) -> None:
        self.settings = settings
        self._log = logger or log
        self.state = SessionState.unconnected
        self.hops: list[str] = []
        self.commands: list[str] = []

    def connect(self, plan: Optional[ProxyPlan] = None) -> None:
        if self.state is not SessionState.unconnected:
            raise SessionStateError(f"cannot connect a session that is {self.state.value}")
        self.state = SessionState.ready
        self.hops = ["mock"]
        self._log.info("ssh.connected", mock=True)

    def execute(self, command: str, timeout: Optional[float] = None) -> CommandResult:
        if self.state is not SessionState.ready:
            raise SessionStateError(f"session is {self.state.value}, not ready")
        started = time.monotonic()
        self.commands.append(command)
        output, status = response_for(command)
        if status:
            return CommandResult(
                command=command,
                stderr=output,
                exit_status=status,
                elapsed_time=time.monotonic() - started,
            )
        return CommandResult(
            command=command,
            stdout=output,
            elapsed_time=time.monotonic() - started,
        )

    def configure_cli(self) -> None:
        self.execute("set cli screen-length 0")
        self.execute("set cli screen-width 0")

    def healthy(self) -> bool:
        return self.state is SessionState.ready

    def close(self) -> None:
        self.state = SessionState.closed
