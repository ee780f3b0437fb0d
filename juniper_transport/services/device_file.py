"""Read-only pseudo-files mapped onto ``show`` commands.

``/config/<section>``      -> ``show configuration <section>``
``/operational/<what>``   -> ``show <what>``
anything else             -> ``show <path>``
"""

from __future__ import annotations

import re
from typing import Any

from juniper_transport.errors import JuniperTransportError

CONFIG_PATH_RE = re.compile(r"^/config/(.*)$")
OPERATIONAL_PATH_RE = re.compile(r"^/operational/(.*)$")

UPLOAD_NOT_SUPPORTED = (
    "File operations not supported for Juniper devices - use command-based configuration"
)
DOWNLOAD_NOT_SUPPORTED = (
    "File operations not supported for Juniper devices - use run_command() to retrieve data"
)


def command_for_path(path: str) -> str:
    m = CONFIG_PATH_RE.match(path)
    if m:
        return f"show configuration {m.group(1)}".rstrip()
    m = OPERATIONAL_PATH_RE.match(path)
    if m:
        return f"show {m.group(1)}".rstrip()
    return f"show {path}".rstrip()


class DeviceFile:
    def __init__(self, connection: Any, path: str) -> None:
        self._connection = connection
        self.path = path

    @property
    def command(self) -> str:
        return command_for_path(self.path)

    @property
    def content(self) -> str:
        return self._connection.run_command(self.command).stdout

    def exists(self) -> bool:
        """True when the backing command produced output."""
        try:
            return bool(self.content)
        except JuniperTransportError:
            return False

    def upload(self, content: Any) -> None:
        raise NotImplementedError(UPLOAD_NOT_SUPPORTED)

    def download(self, local_path: Any) -> None:
        raise NotImplementedError(DOWNLOAD_NOT_SUPPORTED)

    def __str__(self) -> str:
        return self.path

    def __repr__(self) -> str:
        return f"DeviceFile({self.path!r})"
