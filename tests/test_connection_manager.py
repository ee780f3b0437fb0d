"""Tests for the connection manager (strategy resolution, retries, lifecycle)."""

from __future__ import annotations

import os

import pytest
from structlog.testing import capture_logs

from juniper_transport import ConnectionManager
from juniper_transport.errors import (
    AuthenticationError,
    CommandRejectedError,
    ConfigurationError,
    NetworkError,
    ProxyConfigurationError,
    SessionStateError,
)
from juniper_transport.models.connection import SessionState, StrategyKind
from juniper_transport.services.bastion import BastionProxySelector
from juniper_transport.services.mock_session import SHOW_CONFIGURATION, SHOW_VERSION, MockSession


class FlakySession(MockSession):
    """MockSession whose connect() raises the next queued error, if any."""

    def __init__(self, settings=None, *, logger=None, errors=None, plans=None):
        super().__init__(settings, logger=logger)
        self._errors = errors
        self._plans = plans

    def connect(self, plan=None):
        self._plans.append(plan)
        if plan is not None and plan.env and "SSH_ASKPASS" in plan.env:
            self.askpass_present = os.path.exists(plan.env["SSH_ASKPASS"])
        if self._errors:
            raise self._errors.pop(0)
        super().connect(plan)


class SessionFactory:
    def __init__(self, *errors):
        self.errors = list(errors)
        self.plans = []
        self.sessions = []

    def __call__(self, cfg, logger=None):
        session = FlakySession(cfg, logger=logger, errors=self.errors, plans=self.plans)
        self.sessions.append(session)
        return session


def linux_selector():
    return BastionProxySelector(platform="linux", which=lambda name: f"/usr/bin/{name}")


def make_manager(factory, sleeps=None, selector=None, **options):
    options.setdefault("host", "10.0.0.1")
    options.setdefault("user", "admin")
    options.setdefault("password", "s3cret")
    options.setdefault("host_key_policy", "disabled")
    return ConnectionManager(
        selector=selector or linux_selector(),
        session_factory=factory,
        sleep=(sleeps.append if sleeps is not None else lambda _: None),
        **options,
    )


# ── strategy resolution ───────────────────────────────────────────────────

def test_windows_password_bastion_without_plink_fails_before_any_socket():
    factory = SessionFactory()
    manager = ConnectionManager(
        host="10.0.0.1",
        user="admin",
        bastion_host="10.0.0.254",
        bastion_password="x",
        selector=BastionProxySelector(platform="win32", which=lambda name: None),
        session_factory=factory,
    )
    with pytest.raises(ProxyConfigurationError) as info:
        manager.connect()
    assert info.value.hop == "bastion-1"
    assert "native proxy executable not found" in str(info.value)
    assert factory.sessions == []


def test_windows_with_plink_builds_native_plan():
    factory = SessionFactory()
    manager = make_manager(
        factory,
        selector=BastionProxySelector(platform="win32", which=lambda name: "C:\\bin\\plink.exe"),
        bastion_host="10.0.0.254",
        bastion_user="jump",
        bastion_password="x",
    )
    manager.connect()
    assert manager.strategy.kind is StrategyKind.native_proxy_binary
    plan = factory.plans[0]
    assert plan.argv[0] == "C:\\bin\\plink.exe"
    assert plan.argv[-2:] == ["-nc", "10.0.0.1:22"]


def test_key_only_bastion_chains_in_process():
    factory = SessionFactory()
    manager = make_manager(factory, bastion_host="10.0.0.254", bastion_user="jump")
    manager.connect()
    assert manager.strategy.kind is StrategyKind.none
    assert not factory.plans[0].uses_subprocess


def test_askpass_removed_once_connected():
    factory = SessionFactory()
    manager = make_manager(factory, bastion_host="10.0.0.254", bastion_user="jump", bastion_password="x")
    manager.connect()
    assert manager.strategy.kind is StrategyKind.password_injection_script
    assert factory.sessions[0].askpass_present
    assert not os.path.exists(factory.plans[0].env["SSH_ASKPASS"])
    assert manager.state is SessionState.ready
    assert manager.run_command("show version").stdout == SHOW_VERSION


def test_askpass_removed_when_connect_fails():
    factory = SessionFactory(AuthenticationError("bastion rejected credentials", hop="proxy"))
    manager = make_manager(factory, bastion_host="10.0.0.254", bastion_password="x")
    with pytest.raises(AuthenticationError):
        manager.connect()
    assert not os.path.exists(factory.plans[0].env["SSH_ASKPASS"])


def test_invalid_settings():
    with pytest.raises(ConfigurationError):
        ConnectionManager(user="admin")


# ── retries ───────────────────────────────────────────────────────────────

def test_retries_network_errors():
    sleeps = []
    factory = SessionFactory(NetworkError("refused", hop="direct"), NetworkError("refused", hop="direct"))
    manager = make_manager(factory, sleeps, connection_retries=3, connection_retry_sleep=0.5)
    manager.connect()
    assert manager.state is SessionState.ready
    assert len(factory.sessions) == 3
    assert sleeps == [0.5, 1.0]


def test_gives_up_after_retries():
    sleeps = []
    factory = SessionFactory(*[NetworkError("unreachable", hop="direct") for _ in range(5)])
    manager = make_manager(factory, sleeps, connection_retries=2, connection_retry_sleep=1)
    with pytest.raises(NetworkError):
        manager.connect()
    assert len(factory.sessions) == 3
    assert sleeps == [1, 2]


def test_no_retry_on_authentication_error():
    sleeps = []
    factory = SessionFactory(AuthenticationError("authentication failed", hop="direct"))
    manager = make_manager(factory, sleeps)
    with pytest.raises(AuthenticationError):
        manager.connect()
    assert len(factory.sessions) == 1
    assert sleeps == []


def test_no_retry_after_authentication():
    sleeps = []
    factory = SessionFactory(
        NetworkError("connection closed by device", hop="direct", retryable=False),
    )
    manager = make_manager(factory, sleeps)
    with pytest.raises(NetworkError):
        manager.connect()
    assert len(factory.sessions) == 1
    assert sleeps == []


def test_retry_is_logged():
    factory = SessionFactory(NetworkError("refused", hop="bastion-1"))
    manager = make_manager(factory)
    with capture_logs() as logs:
        manager.connect()
    retries = [e for e in logs if e["event"] == "ssh.connect_retry"]
    assert retries[0]["hop"] == "bastion-1"
    assert retries[0]["log_level"] == "warning"


# ── lifecycle ─────────────────────────────────────────────────────────────

def test_run_command_before_connect():
    manager = make_manager(SessionFactory())
    with pytest.raises(SessionStateError):
        manager.run_command("show version")
    with pytest.raises(SessionStateError):
        manager.platform()


def test_run_command_after_close():
    manager = make_manager(SessionFactory())
    manager.connect()
    manager.close()
    with pytest.raises(SessionStateError):
        manager.run_command("show version")
    with pytest.raises(SessionStateError):
        manager.connect()


def test_close_is_idempotent():
    factory = SessionFactory()
    manager = make_manager(factory)
    manager.connect()
    manager.close()
    manager.close()
    assert manager.state is SessionState.closed
    assert factory.sessions[0].state is SessionState.closed


def test_connect_twice_is_noop():
    factory = SessionFactory()
    manager = make_manager(factory)
    assert manager.connect() is manager
    manager.connect()
    assert len(factory.sessions) == 1


def test_connect_prepares_cli_and_probes():
    factory = SessionFactory()
    manager = make_manager(factory)
    manager.connect()
    commands = factory.sessions[0].commands
    assert commands[:2] == ["set cli screen-length 0", "set cli screen-width 0"]
    assert "show version | display xml" in commands
    assert manager.platform().hostname == "lab-srx"


def test_run_command_is_sanitised():
    manager = make_manager(SessionFactory())
    manager.connect()
    assert manager.run_command("  show version  ").command == "show version"
    with pytest.raises(CommandRejectedError):
        manager.run_command("show version; start shell")


def test_context_manager():
    factory = SessionFactory()
    with make_manager(factory) as manager:
        assert manager.healthy()
    assert manager.state is SessionState.closed
    assert not manager.healthy()


def test_repr_has_no_secrets():
    manager = make_manager(
        SessionFactory(), bastion_host="10.0.0.254", bastion_password="b4stion",
    )
    text = repr(manager)
    assert "admin@10.0.0.1:22" in text
    assert "bastions=1" in text
    assert "s3cret" not in text
    assert "b4stion" not in text


def test_connect_log_has_no_secrets():
    manager = make_manager(SessionFactory(), bastion_host="10.0.0.254", bastion_password="b4stion")
    with capture_logs() as logs:
        manager.connect()
    dumped = repr(logs)
    assert "s3cret" not in dumped
    assert "b4stion" not in dumped


# ── mock mode ─────────────────────────────────────────────────────────────

class TestMockMode:
    @pytest.fixture
    def manager(self):
        with ConnectionManager(host="lab-srx", user="admin", mock=True) as manager:
            yield manager

    def test_run_command(self, manager):
        result = manager.run_command("show version")
        assert result.stdout == SHOW_VERSION
        assert result.exit_status == 0

    def test_platform(self, manager):
        facts = manager.platform()
        assert facts.hostname == "lab-srx"
        assert facts.release == "12.1X47-D15.4"
        assert facts.model == "SRX240H2"

    def test_unknown_command(self, manager):
        result = manager.run_command("request system reboot")
        assert result.failed
        assert "Unknown command" in result.stderr

    def test_file(self, manager):
        f = manager.file("/config/interfaces")
        assert f.command == "show configuration interfaces"
        assert f.content == SHOW_CONFIGURATION
        assert f.exists()

    def test_mock_ignores_bastion_password_on_windows(self):
        manager = ConnectionManager(
            host="lab-srx",
            user="admin",
            mock=True,
            bastion_host="10.0.0.254",
            bastion_password="x",
            selector=BastionProxySelector(platform="win32", which=lambda name: None),
        )
        with manager:
            assert manager.strategy.kind is StrategyKind.none
