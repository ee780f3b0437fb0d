"""Bastion proxy selection.

Picks how the connection reaches the target before any socket is opened:

* no bastion, or bastions authenticated by key/agent -> ``none``
  (hops chained in-process);
* bastion password on Windows with ``plink`` on PATH -> ``native-proxy-binary``;
* bastion password elsewhere -> ``password-injection-script``.

OpenSSH on Windows does not consult ``SSH_ASKPASS`` for proxy hops, so a
bastion password there without ``plink`` is a configuration error.
"""

from __future__ import annotations

import shutil
import sys
from typing import Callable, Optional

from juniper_transport.config import ConnectionSettings
from juniper_transport.errors import ProxyConfigurationError
from juniper_transport.models.connection import BastionStrategy, StrategyKind
from juniper_transport.utils.logging import get_logger

log = get_logger(__name__)

NATIVE_PROXY_NAMES = ("plink.exe", "plink")


class BastionProxySelector:
    def __init__(
        self,
        platform: Optional[str] = None,
        which: Callable[[str], Optional[str]] = shutil.which,
    ) -> None:
        self.platform = platform or sys.platform
        self._which = which

    @property
    def is_problem_platform(self) -> bool:
        return self.platform.startswith("win")

    def find_native_proxy(self) -> Optional[str]:
        for name in NATIVE_PROXY_NAMES:
            path = self._which(name)
            if path:
                return path
        return None

    def resolve(self, settings: ConnectionSettings) -> BastionStrategy:
        hops = settings.resolved_bastion_chain()
        if not hops:
            return BastionStrategy(kind=StrategyKind.none)

        has_password = any(hop.password is not None for hop in hops)
        if not has_password:
            log.debug("bastion.strategy", kind=StrategyKind.none.value, reason="key auth")
            return BastionStrategy(kind=StrategyKind.none)

        if self.is_problem_platform:
            plink = self.find_native_proxy()
            if plink is None:
                raise ProxyConfigurationError(
                    "native proxy executable not found: bastion password "
                    "authentication on Windows requires plink.exe on PATH",
                    hop="bastion-1",
                )
            log.debug("bastion.strategy", kind=StrategyKind.native_proxy_binary.value, executable=plink)
            return BastionStrategy(kind=StrategyKind.native_proxy_binary, executable=plink)

        log.debug("bastion.strategy", kind=StrategyKind.password_injection_script.value)
        return BastionStrategy(
            kind=StrategyKind.password_injection_script,
            executable=self._which("ssh"),
        )


def resolve_strategy(settings: ConnectionSettings) -> BastionStrategy:
    """Resolve with the current platform and PATH."""
    return BastionProxySelector().resolve(settings)
