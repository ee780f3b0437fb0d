"""Proxy adapters: turn a bastion strategy into a ProxyPlan.

An adapter never opens a socket.  It only prepares what the session needs to
reach the target: nothing at all (direct or in-process chaining), or the argv
and environment of one proxy subprocess whose stdio carries the SSH stream.
Anything written to disk for the subprocess lives only as long as the
``prepare`` context.
"""

from __future__ import annotations

import os
import shlex
import shutil
import subprocess
import tempfile
from contextlib import contextmanager
from typing import Iterator, Optional

from juniper_transport.config import DEFAULT_SSH_PORT, BastionHop, ConnectionSettings, HostKeyPolicy
from juniper_transport.errors import ProxyConfigurationError
from juniper_transport.models.connection import BastionStrategy, ProxyPlan, StrategyKind
from juniper_transport.utils.logging import get_logger

log = get_logger(__name__)


# ── helpers ───────────────────────────────────────────────────────────────

def shell_quote(s: str) -> str:
    """Single-quote *s* for a POSIX shell: ``'foo'"'"'bar'``."""
    if s == "":
        return "''"
    return "'" + s.replace("'", "'\"'\"'") + "'"


def format_hostport(host: str, port: int) -> str:
    """``host:port``, bracketing IPv6 literals."""
    if ":" in host and not host.startswith("["):
        host = f"[{host}]"
    return f"{host}:{port}"


def openssh_options(settings: ConnectionSettings) -> list[str]:
    """``-o`` arguments mirroring the host-key policy and connect timeout."""
    opts: dict[str, str] = {
        "ConnectTimeout": str(max(1, int(settings.timeout))),
        "LogLevel": "ERROR",
        "ForwardAgent": "no",
        "NumberOfPasswordPrompts": "1",
    }
    policy = settings.host_key_policy
    if policy is HostKeyPolicy.disabled:
        opts["StrictHostKeyChecking"] = "no"
        opts["UserKnownHostsFile"] = os.devnull
    else:
        opts["StrictHostKeyChecking"] = "yes" if policy is HostKeyPolicy.strict else "accept-new"
        if settings.known_hosts_file:
            opts["UserKnownHostsFile"] = settings.known_hosts_file

    args: list[str] = []
    for key, value in opts.items():
        args += ["-o", f"{key}={value}"]
    return args


def expand_proxy_command(template: str, host: str, port: int, user: str) -> list[str]:
    """Split a ``ProxyCommand``-style template and expand ``%h %p %r %%``."""
    tokens = {"h": host, "p": str(port), "r": user, "%": "%"}
    argv: list[str] = []
    for word in shlex.split(template):
        out: list[str] = []
        i = 0
        while i < len(word):
            ch = word[i]
            if ch == "%" and i + 1 < len(word) and word[i + 1] in tokens:
                out.append(tokens[word[i + 1]])
                i += 2
                continue
            out.append(ch)
            i += 1
        argv.append("".join(out))
    if not argv:
        raise ProxyConfigurationError("proxy_command is empty", hop="proxy")
    return argv


def _target(settings: ConnectionSettings) -> str:
    return format_hostport(settings.host or "", settings.port)


# ── none ──────────────────────────────────────────────────────────────────

class NoProxyAdapter:
    """Direct connection, in-process bastion chaining, or a user proxy_command."""

    kind = StrategyKind.none

    @contextmanager
    def prepare(self, settings: ConnectionSettings) -> Iterator[ProxyPlan]:
        target = _target(settings)
        if settings.proxy_command:
            argv = expand_proxy_command(
                settings.proxy_command, settings.host or "", settings.port, settings.user or "",
            )
            log.debug("proxy.command_expanded", executable=argv[0])
            yield ProxyPlan(
                argv=argv,
                env=dict(os.environ),
                description="custom proxy command",
                target=target,
            )
            return

        hops = settings.resolved_bastion_chain()
        if hops:
            description = f"in-process chain via {len(hops)} bastion(s)"
        else:
            description = "direct"
        yield ProxyPlan(description=description, target=target)


# ── password-injection-script ─────────────────────────────────────────────

_ASKPASS_NAME = "askpass.sh"


def askpass_script(hops: list[BastionHop]) -> str:
    """POSIX ``sh`` source answering OpenSSH password prompts per hop.

    OpenSSH passes the prompt text (``user@host's password:``) as ``$1``;
    each hop with a password gets its own ``case`` branch.  A bare
    ``password`` prompt is only answered when every hop shares one password.
    """
    lines = ["#!/bin/sh", 'case "$1" in']
    passwords: set[str] = set()
    for hop in hops:
        if hop.password is None:
            continue
        secret = hop.password.get_secret_value()
        passwords.add(secret)
        prompt = f"{hop.user}@{hop.host}'s password"
        lines.append(f"  *{shell_quote(prompt)}*) printf '%s\\n' {shell_quote(secret)} ;;")
    if len(passwords) == 1:
        (only,) = passwords
        lines.append(f"  *[Pp]assword*) printf '%s\\n' {shell_quote(only)} ;;")
    lines.append("  *) exit 1 ;;")
    lines.append("esac")
    return "\n".join(lines) + "\n"


def write_askpass_script(directory: str, hops: list[BastionHop]) -> str:
    path = os.path.join(directory, _ASKPASS_NAME)
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o700)
    with os.fdopen(fd, "w", encoding="utf-8") as fh:
        fh.write(askpass_script(hops))
    return path


def _identity_args(flag: str, paths: list[str]) -> list[str]:
    args: list[str] = []
    for path in paths:
        args += [flag, path]
    return args


class PasswordInjectionAdapter:
    """OpenSSH ``ssh -W`` proxy fed bastion passwords through ``SSH_ASKPASS``."""

    kind = StrategyKind.password_injection_script

    def __init__(self, executable: Optional[str] = None) -> None:
        self.executable = executable or "ssh"

    def hop_argv(
        self,
        settings: ConnectionSettings,
        hop: BastionHop,
        next_target: str,
        inner: Optional[list[str]] = None,
    ) -> list[str]:
        """``ssh -W`` through one hop; *inner* reaches the hop itself.

        Each hop runs in its own ssh process so host-key options and identity
        files apply to all of them (``-J`` forwards neither).
        """
        argv = [self.executable, "-T", *openssh_options(settings)]
        argv += _identity_args("-i", hop.key_files)
        if inner:
            # ssh expands %-tokens in ProxyCommand
            command = " ".join(shell_quote(arg) for arg in inner).replace("%", "%%")
            argv += ["-o", f"ProxyCommand={command}"]
        argv += ["-W", next_target]
        if hop.port != DEFAULT_SSH_PORT:
            argv += ["-p", str(hop.port)]
        argv.append(f"{hop.user}@{hop.host}")
        return argv

    def build_argv(self, settings: ConnectionSettings, hops: list[BastionHop]) -> list[str]:
        argv: Optional[list[str]] = None
        for i, hop in enumerate(hops):
            if i + 1 < len(hops):
                next_target = format_hostport(hops[i + 1].host, hops[i + 1].port)
            else:
                next_target = _target(settings)
            argv = self.hop_argv(settings, hop, next_target, argv)
        assert argv is not None
        return argv

    @contextmanager
    def prepare(self, settings: ConnectionSettings) -> Iterator[ProxyPlan]:
        hops = settings.resolved_bastion_chain()
        if not hops:
            raise ProxyConfigurationError("password injection requires a bastion host")

        workdir = tempfile.mkdtemp(prefix="juniper-askpass-")
        try:
            os.chmod(workdir, 0o700)
            script = write_askpass_script(workdir, hops)
            log.debug("proxy.askpass_created", hops=len(hops))

            env = dict(os.environ)
            env["SSH_ASKPASS"] = script
            env["SSH_ASKPASS_REQUIRE"] = "force"
            # older OpenSSH only consults SSH_ASKPASS when DISPLAY is set
            env.setdefault("DISPLAY", ":0")

            yield ProxyPlan(
                argv=self.build_argv(settings, hops),
                env=env,
                description=f"ssh -W via {len(hops)} bastion(s) with askpass",
                target=_target(settings),
            )
        finally:
            shutil.rmtree(workdir, ignore_errors=True)
            log.debug("proxy.askpass_removed")


# ── native-proxy-binary ───────────────────────────────────────────────────

class NativeProxyAdapter:
    """PuTTY ``plink -nc`` proxy; earlier hops nest through ``-proxycmd``."""

    kind = StrategyKind.native_proxy_binary

    def __init__(self, executable: Optional[str] = None) -> None:
        self.executable = executable or "plink"

    def hop_argv(
        self,
        hop: BastionHop,
        next_host: str,
        next_port: int,
        inner: Optional[list[str]] = None,
    ) -> list[str]:
        argv = [self.executable, "-batch", "-ssh"]
        if hop.password is not None:
            argv += ["-pw", hop.password.get_secret_value()]
        if hop.port != DEFAULT_SSH_PORT:
            argv += ["-P", str(hop.port)]
        argv += _identity_args("-i", hop.key_files)
        if inner:
            argv += ["-proxycmd", subprocess.list2cmdline(inner)]
        argv += [f"{hop.user}@{hop.host}", "-nc", format_hostport(next_host, next_port)]
        return argv

    def build_argv(self, settings: ConnectionSettings, hops: list[BastionHop]) -> list[str]:
        argv: Optional[list[str]] = None
        for i, hop in enumerate(hops):
            if i + 1 < len(hops):
                next_host, next_port = hops[i + 1].host, hops[i + 1].port
            else:
                next_host, next_port = settings.host or "", settings.port
            argv = self.hop_argv(hop, next_host, next_port, argv)
        assert argv is not None
        return argv

    @contextmanager
    def prepare(self, settings: ConnectionSettings) -> Iterator[ProxyPlan]:
        hops = settings.resolved_bastion_chain()
        if not hops:
            raise ProxyConfigurationError("native proxy requires a bastion host")
        log.debug("proxy.native", executable=self.executable, hops=len(hops))
        yield ProxyPlan(
            argv=self.build_argv(settings, hops),
            env=dict(os.environ),
            description=f"plink via {len(hops)} bastion(s)",
            target=_target(settings),
        )


def adapter_for(strategy: BastionStrategy):
    """Adapter instance for a resolved strategy."""
    if strategy.kind is StrategyKind.native_proxy_binary:
        return NativeProxyAdapter(strategy.executable)
    if strategy.kind is StrategyKind.password_injection_script:
        return PasswordInjectionAdapter(strategy.executable)
    return NoProxyAdapter()
