"""Tests for structlog setup and secret redaction."""

from __future__ import annotations

import io
import json

from juniper_transport.utils.logging import REDACTED, get_logger, redact_secrets, setup_logging


def test_redact_processor():
    event = {"event": "ssh.connecting", "password": "s3cret", "bastion_password": "x", "host": "r1"}
    out = redact_secrets(None, "info", event)
    assert out["password"] == REDACTED
    assert out["bastion_password"] == REDACTED
    assert out["host"] == "r1"


def test_none_is_left_alone():
    assert redact_secrets(None, "info", {"password": None})["password"] is None


def test_json_output_is_redacted():
    stream = io.StringIO()
    setup_logging("INFO", json_logs=True, stream=stream)
    get_logger("tests").info("ssh.connecting", host="10.0.0.1", password="s3cret")

    line = json.loads(stream.getvalue().strip().splitlines()[-1])
    assert line["event"] == "ssh.connecting"
    assert line["host"] == "10.0.0.1"
    assert line["password"] == REDACTED
    assert line["level"] == "info"
    assert "s3cret" not in stream.getvalue()


def test_level_filtering():
    stream = io.StringIO()
    setup_logging("WARNING", stream=stream)
    log = get_logger("tests")
    log.info("ssh.connected")
    log.warning("ssh.connect_retry", attempt=1)
    text = stream.getvalue()
    assert "ssh.connected" not in text
    assert "ssh.connect_retry" in text


def test_bound_context():
    stream = io.StringIO()
    setup_logging("DEBUG", json_logs=True, stream=stream)
    get_logger("tests", host="r1").debug("ssh.draining")
    assert json.loads(stream.getvalue().strip())["host"] == "r1"
