"""Shared pytest fixtures."""

from __future__ import annotations

import os

import pytest
import structlog

from juniper_transport.config import ConnectionSettings, load_settings
from tests.mock_ssh import FakeChannel, FakeClientFactory, FakeSSHClient


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    """Isolate every test from JUNIPER_* variables and any local .env file."""
    for key in list(os.environ):
        if key.startswith("JUNIPER_"):
            monkeypatch.delenv(key, raising=False)
    monkeypatch.chdir(tmp_path)
    yield
    structlog.reset_defaults()


@pytest.fixture
def settings() -> ConnectionSettings:
    """Direct connection to a lab router, fast timeouts."""
    return load_settings(
        host="10.0.0.1",
        user="admin",
        password="s3cret",
        host_key_policy="disabled",
        timeout=2,
        command_timeout=2,
        connection_retry_sleep=0,
    )


@pytest.fixture
def bastion_settings() -> ConnectionSettings:
    """Target behind one key-authenticated bastion."""
    return load_settings(
        host="10.0.0.1",
        user="admin",
        password="s3cret",
        bastion_host="10.0.0.254",
        bastion_user="jump",
        host_key_policy="disabled",
        timeout=2,
        command_timeout=2,
    )


@pytest.fixture
def events() -> list[str]:
    """Shared log of close() calls, in order."""
    return []


@pytest.fixture
def channel(events) -> FakeChannel:
    return FakeChannel(events=events)


@pytest.fixture
def client_factory(channel, events) -> FakeClientFactory:
    return FakeClientFactory(FakeSSHClient("target", channel=channel, events=events))
