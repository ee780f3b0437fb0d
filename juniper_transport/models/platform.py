"""Device identity populated by the platform probe."""

from __future__ import annotations

from pydantic import BaseModel

UNKNOWN = "unknown"


class DeviceFacts(BaseModel):
    name: str = "juniper"
    title: str = "Juniper JunOS"
    family: str = "bsd"
    release: str = UNKNOWN
    model: str = UNKNOWN
    hostname: str = UNKNOWN
    arch: str = UNKNOWN
    raw: str = ""

    model_config = {"frozen": True}

    @property
    def version(self) -> str:
        return self.release
