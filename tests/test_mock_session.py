"""Tests for the offline mock session."""

from __future__ import annotations

import pytest

from juniper_transport.errors import SessionStateError
from juniper_transport.models.connection import SessionState
from juniper_transport.services.mock_session import (
    SHOW_CHASSIS_HARDWARE_XML,
    SHOW_ROUTE,
    SHOW_VERSION_XML,
    MockSession,
    response_for,
)


@pytest.fixture
def session():
    s = MockSession()
    s.connect()
    return s


def test_display_xml():
    assert response_for("show version | display xml") == (SHOW_VERSION_XML, 0)
    assert response_for("show chassis hardware | display xml")[0] == SHOW_CHASSIS_HARDWARE_XML


def test_prefix_match():
    assert response_for("show route 0.0.0.0/0 exact") == (SHOW_ROUTE, 0)


def test_unknown():
    output, status = response_for("request system halt")
    assert status == 1
    assert output == "% Unknown command: request system halt"


def test_execute_records_commands(session):
    session.configure_cli()
    result = session.execute("show route")
    assert result.stdout == SHOW_ROUTE
    assert session.commands == ["set cli screen-length 0", "set cli screen-width 0", "show route"]


def test_failed_command_goes_to_stderr(session):
    result = session.execute("bogus")
    assert result.failed
    assert result.stdout == ""
    assert "bogus" in result.stderr


def test_state(session):
    assert session.healthy()
    assert session.hops == ["mock"]
    session.close()
    assert session.state is SessionState.closed
    with pytest.raises(SessionStateError):
        session.execute("show version")


def test_execute_before_connect():
    with pytest.raises(SessionStateError):
        MockSession().execute("show version")
