"""Interactive JunOS CLI session over paramiko.

One ``SessionExecutor`` owns one live path to the device: a direct socket,
a chain of in-process ``direct-tcpip`` channels through bastion hosts, or the
stdio of a single proxy subprocess.  Commands are written to an interactive
shell and the response is complete once the JunOS prompt is the last thing on
the wire.
"""

from __future__ import annotations

import contextlib
import os
import socket
import subprocess
import threading
import time
from typing import Any, Callable, Optional

import paramiko
from paramiko.util import ClosingContextManager

from juniper_transport.config import BastionHop, ConnectionSettings, HostKeyPolicy
from juniper_transport.errors import (
    AuthenticationError,
    CommandTimeoutError,
    JuniperTransportError,
    NetworkError,
    ProtocolError,
    ProxyConfigurationError,
    SessionStateError,
)
from juniper_transport.models.commands import CommandResult
from juniper_transport.models.connection import ProxyPlan, SessionState
from juniper_transport.services.proxy_adapters import format_hostport
from juniper_transport.utils.junos_parser import (
    GENERIC_PROMPT_RE,
    TerminalTextDecoder,
    find_prompt,
    learned_prompt_re,
    split_diagnostics,
    split_echo,
)
from juniper_transport.utils.logging import get_logger

log = get_logger(__name__)

POLL_INTERVAL = 0.05
RECV_SIZE = 65535
# wide enough that JunOS never wraps the echoed command
SHELL_WIDTH = 511

CLI_SETUP_COMMANDS = ("set cli screen-length 0", "set cli screen-width 0")
COMPLETE_ON_SPACE_OFF = "set cli complete-on-space off"

DEFAULT_KNOWN_HOSTS = "~/.ssh/known_hosts"

_PROXY_AUTH_MARKERS = ("permission denied", "access denied", "authentication failed")
_PROXY_HOSTKEY_MARKERS = ("host key verification failed", "host key is not cached")


# ── proxy subprocess ──────────────────────────────────────────────────────

class ProxySubprocess(ClosingContextManager):
    """Socket-like wrapper around a proxy process's stdin/stdout.

    Stdout is pumped by a reader thread so ``recv`` honours paramiko's socket
    timeout on every platform; stderr is collected for error reporting.
    """

    _MAX_STDERR_LINES = 200

    def __init__(self, argv: list[str], env: Optional[dict[str, str]] = None) -> None:
        self.cmd = list(argv)
        try:
            self.process = subprocess.Popen(
                self.cmd,
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                bufsize=0,
                env=env,
            )
        except FileNotFoundError as exc:
            raise ProxyConfigurationError(
                f"proxy executable not found: {self.cmd[0]}", hop="proxy",
            ) from exc
        self.timeout: Optional[float] = None
        self._buffer = bytearray()
        self._eof = False
        self._cond = threading.Condition()
        self._stderr_lines: list[bytes] = []
        self._threads = [
            threading.Thread(target=self._pump_stdout, name="proxy-stdout", daemon=True),
            threading.Thread(target=self._drain_stderr, name="proxy-stderr", daemon=True),
        ]
        for thread in self._threads:
            thread.start()

    def _pump_stdout(self) -> None:
        fd = self.process.stdout.fileno()
        while True:
            try:
                data = os.read(fd, RECV_SIZE)
            except OSError:
                data = b""
            with self._cond:
                if not data:
                    self._eof = True
                    self._cond.notify_all()
                    return
                self._buffer += data
                self._cond.notify_all()

    def _drain_stderr(self) -> None:
        for line in iter(self.process.stderr.readline, b""):
            if len(self._stderr_lines) < self._MAX_STDERR_LINES:
                self._stderr_lines.append(line)

    def settimeout(self, timeout: Optional[float]) -> None:
        self.timeout = timeout

    def send(self, content: bytes) -> int:
        written = self.process.stdin.write(content)
        return len(content) if written is None else written

    def recv(self, size: int) -> bytes:
        deadline = None if self.timeout is None else time.monotonic() + self.timeout
        with self._cond:
            while not self._buffer:
                if self._eof:
                    return b""
                remaining = None if deadline is None else deadline - time.monotonic()
                if remaining is not None and remaining <= 0:
                    raise socket.timeout()
                self._cond.wait(remaining)
            data = bytes(self._buffer[:size])
            del self._buffer[:size]
            return data

    @property
    def closed(self) -> bool:
        return self.process.poll() is not None

    def close(self) -> None:
        if self.process.poll() is None:
            self.process.terminate()
            try:
                self.process.wait(timeout=5)
            except subprocess.TimeoutExpired:
                self.process.kill()
                self.process.wait()
        if self.process.stdin:
            self.process.stdin.close()

    def stderr_text(self, wait: float = 1.0) -> str:
        """Collected stderr; waits briefly for the process to finish first."""
        with contextlib.suppress(subprocess.TimeoutExpired):
            self.process.wait(timeout=wait)
        if self.process.poll() is not None:
            self._threads[1].join(timeout=wait)
        return b"".join(self._stderr_lines).decode("utf-8", errors="replace").strip()


# ── host keys ─────────────────────────────────────────────────────────────

class _UnknownHostKey(paramiko.SSHException):
    pass


class _RejectUnknownHostKey(paramiko.MissingHostKeyPolicy):
    def missing_host_key(self, client: Any, hostname: str, key: Any) -> None:
        raise _UnknownHostKey(
            f"host key for {hostname} ({key.get_name()}) is not in known_hosts",
        )


def apply_host_key_policy(client: paramiko.SSHClient, settings: ConnectionSettings) -> None:
    policy = settings.host_key_policy
    if policy is HostKeyPolicy.disabled:
        client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
        return

    client.load_system_host_keys()
    path = settings.known_hosts_file
    if policy is HostKeyPolicy.accept_new and not path:
        path = DEFAULT_KNOWN_HOSTS
    if path:
        path = os.path.expanduser(path)
        if policy is HostKeyPolicy.accept_new and not os.path.exists(path):
            os.makedirs(os.path.dirname(path) or ".", mode=0o700, exist_ok=True)
            fd = os.open(path, os.O_WRONLY | os.O_CREAT, 0o600)
            os.close(fd)
        # load_host_keys also makes this the file AutoAddPolicy saves to
        if os.path.exists(path):
            client.load_host_keys(path)

    if policy is HostKeyPolicy.strict:
        client.set_missing_host_key_policy(_RejectUnknownHostKey())
    else:
        client.set_missing_host_key_policy(paramiko.AutoAddPolicy())


# ── session ───────────────────────────────────────────────────────────────

class SessionExecutor:
    """Live CLI session to one JunOS device."""

    def __init__(
        self,
        settings: ConnectionSettings,
        *,
        client_factory: Callable[[], Any] = paramiko.SSHClient,
        proxy_factory: Callable[..., Any] = ProxySubprocess,
        logger: Any = None,
    ) -> None:
        self.settings = settings
        self._client_factory = client_factory
        self._proxy_factory = proxy_factory
        self._log = logger or log
        self._lock = threading.Lock()
        self._clients: list[Any] = []
        self._proxy: Any = None
        self._channel: Any = None
        self._decoder = TerminalTextDecoder()
        self._buffer = ""
        self._prompt_re = GENERIC_PROMPT_RE
        self._suspect = False
        self._target_hop = "direct"
        self._authenticated = False
        self.prompt: Optional[str] = None
        self.hops: list[str] = []
        self.state = SessionState.unconnected

    # ── connection lifecycle ──────────────────────────────────────────

    def connect(self, plan: Optional[ProxyPlan] = None) -> None:
        """Open every hop, authenticate the target and wait for its prompt."""
        if self.state is not SessionState.unconnected:
            raise SessionStateError(f"cannot connect a session that is {self.state.value}")
        self.state = SessionState.connecting
        cfg = self.settings
        try:
            sock: Any = None
            if plan is not None and plan.uses_subprocess:
                self._log.debug("ssh.proxy_starting", plan=str(plan))
                self._proxy = sock = self._proxy_factory(plan.argv, env=plan.env)
                self.hops.append("proxy")
                self._target_hop = "target"
            else:
                hops = cfg.resolved_bastion_chain()
                for i, hop in enumerate(hops):
                    sock = self._open_bastion(i, hop, hops, sock)
                if hops:
                    self._target_hop = "target"

            password = None if cfg.keys_only else cfg.password
            client = self._open_client(
                cfg.host or "",
                cfg.port,
                cfg.user or "",
                password=password,
                key_files=cfg.identity_files,
                passphrase=cfg.key_passphrase,
                sock=sock,
                hop=self._target_hop,
            )
            self._start_shell(client)
        except Exception:
            self.state = SessionState.failed
            self._teardown()
            raise
        self.state = SessionState.ready
        self._log.info("ssh.connected", host=cfg.host, hops=self.hops, prompt=self.prompt)

    def _open_bastion(self, index: int, hop: BastionHop, hops: list[BastionHop], sock: Any) -> Any:
        label = f"bastion-{index + 1}"
        client = self._open_client(
            hop.host,
            hop.port,
            hop.user or "",
            password=hop.password,
            key_files=hop.key_files,
            sock=sock,
            hop=label,
        )
        if index + 1 < len(hops):
            next_host, next_port = hops[index + 1].host, hops[index + 1].port
        else:
            next_host, next_port = self.settings.host or "", self.settings.port
        return self._open_channel(client, next_host, next_port, label)

    def _open_client(
        self,
        host: str,
        port: int,
        user: str,
        *,
        password: Any = None,
        key_files: Optional[list[str]] = None,
        passphrase: Any = None,
        sock: Any = None,
        hop: str,
    ) -> Any:
        client = self._client_factory()
        # registered before connect so a half-open client is still closed
        self._clients.append(client)
        apply_host_key_policy(client, self.settings)

        kwargs: dict[str, Any] = dict(
            hostname=host,
            port=port,
            username=user,
            timeout=self.settings.timeout,
            banner_timeout=self.settings.timeout,
            auth_timeout=self.settings.timeout,
            allow_agent=True,
            look_for_keys=not key_files,
        )
        if password is not None:
            kwargs["password"] = password.get_secret_value()
        if key_files:
            kwargs["key_filename"] = list(key_files)
        if passphrase is not None:
            kwargs["passphrase"] = passphrase.get_secret_value()
        if sock is not None:
            kwargs["sock"] = sock

        self._log.info("ssh.connecting", hop=hop, host=host, port=port, user=user)
        try:
            client.connect(**kwargs)
        except (_UnknownHostKey, paramiko.BadHostKeyException) as exc:
            raise AuthenticationError(f"host key verification failed: {exc}", hop=hop) from exc
        except paramiko.AuthenticationException as exc:
            raise AuthenticationError(f"authentication failed for {user}@{host}", hop=hop) from exc
        except (OSError, EOFError, paramiko.SSHException) as exc:
            raise self._classify_failure(exc, host, port, hop) from exc

        self._authenticated = True
        self.hops.append(hop)
        transport = client.get_transport()
        if transport is not None and self.settings.keepalive_interval:
            transport.set_keepalive(self.settings.keepalive_interval)
        return client

    def _classify_failure(
        self, exc: Exception, host: str, port: int, hop: str,
    ) -> JuniperTransportError:
        """Map a connect failure to NetworkError/AuthenticationError.

        Behind a proxy subprocess the real cause is usually in its stderr
        (bastion auth or host-key rejection), not in paramiko's exception.
        Only failures before any hop authenticated are retryable: a socket
        error on the first hop, or a proxy that died before the banner.
        """
        pre_auth = not self._authenticated
        if self._proxy is not None:
            detail = self._proxy.stderr_text()
            lowered = detail.lower()
            last_line = detail.splitlines()[-1] if detail else ""
            if any(marker in lowered for marker in _PROXY_HOSTKEY_MARKERS):
                return AuthenticationError(f"bastion host key rejected: {last_line}", hop="proxy")
            if any(marker in lowered for marker in _PROXY_AUTH_MARKERS):
                return AuthenticationError(f"bastion rejected credentials: {last_line}", hop="proxy")
            if detail:
                return NetworkError(f"proxy failed: {last_line}", hop="proxy", retryable=pre_auth)
        if isinstance(exc, (OSError, EOFError)):
            return NetworkError(
                f"cannot reach {format_hostport(host, port)}: {exc}", hop=hop, retryable=pre_auth,
            )
        return NetworkError(
            f"SSH negotiation with {format_hostport(host, port)} failed: {exc}",
            hop=hop,
            retryable=pre_auth and self._proxy is not None,
        )

    def _open_channel(self, client: Any, host: str, port: int, hop: str) -> Any:
        transport = client.get_transport()
        try:
            return transport.open_channel(
                "direct-tcpip", (host, port), ("", 0), timeout=self.settings.timeout,
            )
        except (paramiko.SSHException, OSError, EOFError) as exc:
            raise NetworkError(
                f"cannot forward to {format_hostport(host, port)}: {exc}", hop=hop, retryable=False,
            ) from exc

    def _start_shell(self, client: Any) -> None:
        hop = self._target_hop
        try:
            self._channel = client.invoke_shell(term="vt100", width=SHELL_WIDTH, height=24)
        except (paramiko.SSHException, OSError, EOFError) as exc:
            raise ProtocolError(f"could not open an interactive shell: {exc}", hop=hop) from exc

        try:
            found = self._read_until(
                lambda buf: find_prompt(buf, GENERIC_PROMPT_RE), self.settings.timeout,
            )
        except CommandTimeoutError:
            raise ProtocolError(
                f"no CLI prompt within {self.settings.timeout}s of login", hop=hop,
            ) from None
        _, prompt = found
        self.prompt = prompt
        self._prompt_re = learned_prompt_re(prompt)
        self._buffer = ""

    # ── reading ───────────────────────────────────────────────────────

    def _read_until(self, match: Callable[[str], Any], timeout: float) -> Any:
        """Read until ``match(buffer)`` returns non-None.

        *timeout* is an inactivity timeout: it restarts whenever data arrives.
        """
        idle_since = time.monotonic()
        chan = self._channel
        while True:
            result = match(self._buffer)
            if result is not None:
                return result
            try:
                if chan.recv_ready():
                    data = chan.recv(RECV_SIZE)
                    if not data:
                        self._connection_lost("connection closed by device")
                    self._buffer += self._decoder.feed(data)
                    idle_since = time.monotonic()
                    continue
                if chan.closed or chan.eof_received:
                    self._connection_lost("connection closed by device")
            except (paramiko.SSHException, OSError, EOFError) as exc:
                self._connection_lost(f"connection lost: {exc}")
            if time.monotonic() - idle_since >= timeout:
                raise CommandTimeoutError(
                    f"no prompt after {timeout}s of inactivity", hop=self._target_hop,
                )
            time.sleep(POLL_INTERVAL)

    def _connection_lost(self, reason: str) -> None:
        self._log.warning("ssh.connection_lost", reason=reason)
        was_ready = self.state is SessionState.ready
        self._teardown()
        if was_ready:
            self.state = SessionState.closed
        raise NetworkError(reason, hop=self._target_hop, retryable=False)

    def _match_response(self, buf: str) -> Optional[str]:
        start = split_echo(buf)
        if start is None:
            return None
        found = find_prompt(buf, self._prompt_re, start)
        if found is None:
            return None
        offset, _ = found
        return buf[start:offset].rstrip("\n")

    def _drain_to_prompt(self, timeout: float) -> None:
        """Consume output left over from a timed-out command."""
        self._log.info("ssh.draining")
        self._read_until(lambda buf: find_prompt(buf, self._prompt_re), timeout)
        self._suspect = False
        self._buffer = ""

    def _discard_pending(self) -> None:
        chan = self._channel
        try:
            while chan.recv_ready():
                self._decoder.feed(chan.recv(RECV_SIZE))
        except (paramiko.SSHException, OSError, EOFError) as exc:
            self._connection_lost(f"connection lost: {exc}")
        self._buffer = ""

    def _send(self, text: str) -> None:
        try:
            self._channel.sendall(text.encode("utf-8"))
        except (paramiko.SSHException, OSError, EOFError) as exc:
            self._connection_lost(f"send failed: {exc}")

    # ── public ────────────────────────────────────────────────────────

    def execute(self, command: str, timeout: Optional[float] = None) -> CommandResult:
        """Run one CLI line and return its output once the prompt is back."""
        if timeout is None:
            timeout = self.settings.command_timeout
        with self._lock:
            if self.state is not SessionState.ready:
                raise SessionStateError(f"session is {self.state.value}, not ready")
            if self._suspect:
                self._drain_to_prompt(timeout)

            started = time.monotonic()
            self._discard_pending()
            self._send(command + "\n")
            try:
                body = self._read_until(self._match_response, timeout)
            except CommandTimeoutError:
                self._suspect = True
                self._log.warning("ssh.command_timeout", command=command, timeout=timeout)
                raise
            self._buffer = ""

        stdout, stderr, has_error = split_diagnostics(body)
        elapsed = time.monotonic() - started
        self._log.debug("ssh.command", command=command, elapsed=round(elapsed, 3), error=has_error)
        return CommandResult(
            command=command,
            stdout=stdout,
            stderr=stderr,
            exit_status=1 if has_error else 0,
            elapsed_time=elapsed,
        )

    def configure_cli(self) -> None:
        """Disable paging and wrapping; failures only warn."""
        commands = list(CLI_SETUP_COMMANDS)
        if self.settings.disable_complete_on_space:
            commands.append(COMPLETE_ON_SPACE_OFF)
        for command in commands:
            try:
                result = self.execute(command)
            except CommandTimeoutError as exc:
                self._log.warning("ssh.cli_setup_failed", command=command, error=str(exc))
                continue
            if result.failed:
                self._log.warning("ssh.cli_setup_failed", command=command, error=result.stderr)

    def healthy(self) -> bool:
        if self.state is not SessionState.ready or self._channel is None:
            return False
        if self._channel.closed:
            return False
        transport = self._channel.get_transport()
        return transport is None or transport.is_active()

    @property
    def suspect(self) -> bool:
        return self._suspect

    def close(self) -> None:
        if self.state is SessionState.closed:
            return
        self._teardown()
        self.state = SessionState.closed
        self._log.info("ssh.closed", host=self.settings.host)

    def _teardown(self) -> None:
        # target shell, target client, bastions innermost first, then the proxy
        channel, self._channel = self._channel, None
        clients, self._clients = self._clients, []
        proxy, self._proxy = self._proxy, None
        closers = []
        if channel is not None:
            closers.append(("channel", channel))
        closers += [("client", client) for client in reversed(clients)]
        if proxy is not None:
            closers.append(("proxy", proxy))
        for kind, resource in closers:
            try:
                resource.close()
            except Exception as exc:
                self._log.debug("ssh.close_error", resource=kind, error=str(exc))
        self._decoder.reset()
        self._buffer = ""

    def __enter__(self) -> "SessionExecutor":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()
