"""Tests for logging configuration."""

import json

import structlog

from authgate.logging import (
    REDACTED,
    add_log_level,
    configure_logging,
    flow_log_context,
    get_logger,
    redact_secrets,
)


class TestProcessors:
    def test_add_log_level_translates_warn(self):
        assert add_log_level(None, "warn", {})["level"] == "warning"
        assert add_log_level(None, "info", {})["level"] == "info"

    def test_redact_secrets(self):
        event = redact_secrets(
            None,
            "info",
            {
                "event": "x",
                "password": "hunter2",
                "code": "123456",
                "resolver_token": "pending",
                "error_code": "auth/wrong-password",
                "uid": "u1",
            },
        )
        assert event["password"] == REDACTED
        assert event["code"] == REDACTED
        assert event["resolver_token"] == REDACTED
        assert event["error_code"] == "auth/wrong-password"
        assert event["uid"] == "u1"

    def test_redact_keeps_none(self):
        assert redact_secrets(None, "info", {"password": None})["password"] is None


class TestConfigureLogging:
    def test_json_output_is_redacted(self, capsys):
        configure_logging(level="INFO", json_output=True)
        get_logger("test").info("signed_in", uid="u1", id_token="secret-token")

        line = capsys.readouterr().err.strip().splitlines()[-1]
        payload = json.loads(line)
        assert payload["event"] == "signed_in"
        assert payload["level"] == "info"
        assert payload["id_token"] == REDACTED
        assert "secret-token" not in line

    def test_level_filters(self, capsys):
        configure_logging(level="WARNING", json_output=True)
        get_logger("test").info("hidden")
        assert capsys.readouterr().err == ""

    def test_console_output(self, capsys):
        configure_logging(level="DEBUG", json_output=False)
        get_logger("test").debug("console_event")
        assert "console_event" in capsys.readouterr().err


class TestFlowLogContext:
    def test_binds_and_unbinds(self, capsys):
        configure_logging(level="INFO", json_output=True)
        log = get_logger("test")
        with flow_log_context(flow_mode="login", operation="sign_in"):
            log.info("inside")
        log.info("outside")

        inside, outside = (
            json.loads(line) for line in capsys.readouterr().err.strip().splitlines()[-2:]
        )
        assert inside["flow_mode"] == "login"
        assert inside["operation"] == "sign_in"
        assert "flow_mode" not in outside
        assert structlog.contextvars.get_contextvars() == {}
