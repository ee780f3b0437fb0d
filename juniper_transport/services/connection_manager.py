"""Connection manager: the caller-facing handle for one JunOS device.

Validates settings, resolves the bastion strategy before any socket is
opened, holds the proxy adapter's resources (askpass helper) for the
connect attempt only, retries socket-level connect failures, then prepares
the CLI and probes platform facts.
"""

from __future__ import annotations

import contextlib
import time
from typing import Any, Callable, Optional

from juniper_transport.config import ConnectionSettings, load_settings
from juniper_transport.errors import NetworkError, SessionStateError
from juniper_transport.models.commands import CommandResult
from juniper_transport.models.connection import BastionStrategy, ProxyPlan, SessionState, StrategyKind
from juniper_transport.models.platform import DeviceFacts
from juniper_transport.services.bastion import BastionProxySelector
from juniper_transport.services.command_filter import sanitize_command
from juniper_transport.services.device_file import DeviceFile
from juniper_transport.services.mock_session import MockSession
from juniper_transport.services.platform import PlatformProber
from juniper_transport.services.proxy_adapters import adapter_for
from juniper_transport.services.session import SessionExecutor
from juniper_transport.utils.logging import get_logger

log = get_logger(__name__)


class ConnectionManager:
    """One logical session to one device.

    ``cfg`` may be passed ready-made; otherwise keyword options (and
    ``JUNIPER_*`` environment variables) are loaded through
    :func:`load_settings`.
    """

    def __init__(
        self,
        cfg: ConnectionSettings | None = None,
        *,
        logger: Any = None,
        selector: BastionProxySelector | None = None,
        session_factory: Callable[..., Any] | None = None,
        prober: PlatformProber | None = None,
        sleep: Callable[[float], None] = time.sleep,
        **options: Any,
    ) -> None:
        self._cfg = cfg if cfg is not None else load_settings(**options)
        self._log = logger or log
        self._selector = selector or BastionProxySelector()
        self._session_factory = session_factory
        self._prober = prober or PlatformProber(logger=self._log)
        self._sleep = sleep
        self._session: Any = None
        self._stack: Optional[contextlib.ExitStack] = None
        self._facts: Optional[DeviceFacts] = None
        self._closed = False
        self.strategy: Optional[BastionStrategy] = None

    # ── connection lifecycle ──────────────────────────────────────────

    @property
    def settings(self) -> ConnectionSettings:
        return self._cfg

    @property
    def state(self) -> SessionState:
        if self._closed:
            return SessionState.closed
        if self._session is None:
            return SessionState.unconnected
        return self._session.state

    def _new_session(self) -> Any:
        if self._session_factory is not None:
            return self._session_factory(self._cfg, logger=self._log)
        if self._cfg.mock:
            return MockSession(self._cfg, logger=self._log)
        return SessionExecutor(self._cfg, logger=self._log)

    def _open_with_retry(self, plan: ProxyPlan) -> Any:
        attempt = 0
        while True:
            attempt += 1
            session = self._new_session()
            try:
                session.connect(plan)
                return session
            except NetworkError as exc:
                if not exc.retryable or attempt > self._cfg.connection_retries:
                    raise
                delay = self._cfg.connection_retry_sleep * attempt
                self._log.warning(
                    "ssh.connect_retry",
                    attempt=attempt,
                    retries=self._cfg.connection_retries,
                    delay=delay,
                    hop=exc.hop,
                    error=str(exc),
                )
                self._sleep(delay)

    def connect(self) -> "ConnectionManager":
        """Open the session; a no-op when already connected."""
        if self._closed:
            raise SessionStateError("connection manager is closed")
        if self._session is not None and self._session.state is SessionState.ready:
            return self

        self._log.info("ssh.connect", settings=self._cfg.safe_dict())
        if self._cfg.mock:
            self.strategy = BastionStrategy(kind=StrategyKind.none)
        else:
            self.strategy = self._selector.resolve(self._cfg)
        self._log.debug("ssh.strategy", kind=self.strategy.kind.value)

        with contextlib.ExitStack() as stack:
            # the proxy has authenticated every bastion once connect returns;
            # adapter files (askpass) do not outlive the attempt
            with adapter_for(self.strategy).prepare(self._cfg) as plan:
                session = self._open_with_retry(plan)
            stack.callback(session.close)
            session.configure_cli()
            facts = self._prober.probe(session)
            self._stack = stack.pop_all()

        self._session = session
        self._facts = facts
        return self

    def run_command(self, command: str, timeout: float | None = None) -> CommandResult:
        if self._closed:
            raise SessionStateError("connection manager is closed")
        if self._session is None:
            raise SessionStateError("not connected; call connect() first")
        return self._session.execute(sanitize_command(command), timeout=timeout)

    def platform(self, refresh: bool = False) -> DeviceFacts:
        if self._closed or self._session is None:
            raise SessionStateError("not connected; call connect() first")
        if refresh or self._facts is None:
            self._facts = self._prober.probe(self._session)
        return self._facts

    def file(self, path: str) -> DeviceFile:
        return DeviceFile(self, path)

    def healthy(self) -> bool:
        return not self._closed and self._session is not None and self._session.healthy()

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        stack, self._stack = self._stack, None
        if stack is not None:
            stack.close()
        self._session = None
        self._log.info("ssh.manager_closed", host=self._cfg.host)

    # ── dunder ────────────────────────────────────────────────────────

    def __enter__(self) -> "ConnectionManager":
        return self.connect()

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def __repr__(self) -> str:
        cfg = self._cfg
        via = ""
        if cfg.bastion_host or cfg.bastion_chain:
            via = f", bastions={len(cfg.resolved_bastion_chain())}"
        elif cfg.proxy_command:
            via = ", proxy_command=True"
        return (
            f"ConnectionManager({cfg.user}@{cfg.host}:{cfg.port}{via}, "
            f"state={self.state.value})"
        )
