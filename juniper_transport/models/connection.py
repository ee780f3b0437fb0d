"""Bastion strategy, proxy plan and session state values."""

from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel


class StrategyKind(str, Enum):
    none = "none"
    native_proxy_binary = "native-proxy-binary"
    password_injection_script = "password-injection-script"


class BastionStrategy(BaseModel):
    """Proxy strategy chosen once per connection attempt."""

    kind: StrategyKind = StrategyKind.none
    executable: Optional[str] = None

    model_config = {"frozen": True}


class ProxyPlan(BaseModel):
    """Process parameters for an out-of-process proxy hop.

    ``argv`` is ``None`` when hops are chained in-process (or there are none).
    ``env`` is the complete environment for the proxy subprocess only.
    """

    argv: Optional[list[str]] = None
    env: Optional[dict[str, str]] = None
    description: str = ""
    # host:port the proxy was built to reach
    target: str = ""

    model_config = {"frozen": True}

    @property
    def uses_subprocess(self) -> bool:
        return self.argv is not None

    def __repr__(self) -> str:
        # argv/env can hold a password (plink -pw); never render them.
        return f"ProxyPlan(description={self.description!r}, target={self.target!r})"

    __str__ = __repr__


class SessionState(str, Enum):
    unconnected = "unconnected"
    connecting = "connecting"
    ready = "ready"
    failed = "failed"
    closed = "closed"
