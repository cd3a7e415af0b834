"""Tests for structured logging configuration."""

import logging

import pytest
import structlog

from pulpit.observability.logging import (
    REDACTED_PLACEHOLDER,
    bind_context,
    clear_context,
    configure_logging,
    get_logger,
    is_debug_mode,
    redact_sensitive_fields,
    sanitize_for_logging,
)


class TestConfigureLogging:
    """Tests for configure_logging function."""

    def test_configure_logging_respects_log_level(self) -> None:
        """Test that configure_logging sets the correct log level."""
        configure_logging(log_format="console", log_level="WARNING", force=True)

        assert logging.getLogger().level == logging.WARNING

    def test_configure_logging_with_json_format(self) -> None:
        configure_logging(log_format="json", log_level="INFO", force=True)

        logger = get_logger("pulpit.test")
        assert logger is not None
        assert logging.getLogger().level == logging.INFO

    def test_service_name_is_bound(self) -> None:
        configure_logging(service_name="pulpit-test", force=True)

        assert structlog.contextvars.get_contextvars()["service"] == "pulpit-test"

    def test_bind_and_clear_context(self) -> None:
        bind_context(device_id="dev-1")
        assert structlog.contextvars.get_contextvars()["device_id"] == "dev-1"

        clear_context()
        assert "device_id" not in structlog.contextvars.get_contextvars()


class TestSanitizeForLogging:
    """Tests for secret redaction."""

    def test_redacts_sensitive_keys(self) -> None:
        """Tokens, credentials and keys are replaced; other fields pass through."""
        data = {
            "type": "auth",
            "token": "abc123",
            "registration_credential": "secret",
            "push_token": "a1b2",
            "apns": {"key_path": "/keys/AuthKey.p8", "team_id": "TEAM42"},
            "device_id": "dev-1",
        }

        result = sanitize_for_logging(data)

        assert result["type"] == "auth"
        assert result["device_id"] == "dev-1"
        assert result["token"] == REDACTED_PLACEHOLDER
        assert result["registration_credential"] == REDACTED_PLACEHOLDER
        assert result["push_token"] == REDACTED_PLACEHOLDER
        assert result["apns"]["key_path"] == REDACTED_PLACEHOLDER
        assert result["apns"]["team_id"] == "TEAM42"

    def test_lists_of_dicts(self) -> None:
        result = sanitize_for_logging({"devices": [{"name": "Phone", "pushToken": "x"}, "raw"]})

        assert result["devices"] == [{"name": "Phone", "pushToken": REDACTED_PLACEHOLDER}, "raw"]

    def test_empty(self) -> None:
        assert sanitize_for_logging({}) == {}

    def test_does_not_mutate_input(self) -> None:
        data = {"token": "abc"}
        sanitize_for_logging(data)

        assert data == {"token": "abc"}


class TestDebugMode:
    """Tests for PULPIT_DEBUG."""

    @pytest.mark.parametrize(("value", "expected"), [("true", True), ("1", True), ("no", False)])
    def test_is_debug_mode(
        self, monkeypatch: pytest.MonkeyPatch, value: str, expected: bool
    ) -> None:
        monkeypatch.setenv("PULPIT_DEBUG", value)

        assert is_debug_mode() is expected

    def test_unset(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("PULPIT_DEBUG", raising=False)

        assert is_debug_mode() is False


class TestRedactionProcessor:
    """Tests for the structlog redaction processor."""

    def test_redacts_event_fields(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("PULPIT_DEBUG", raising=False)
        event = {"event": "pulpit.push.sent", "device_token": "a1b2", "frame": {"token": "x"}}

        result = redact_sensitive_fields(None, "info", event)

        assert result == {
            "event": "pulpit.push.sent",
            "device_token": REDACTED_PLACEHOLDER,
            "frame": {"token": REDACTED_PLACEHOLDER},
        }

    def test_debug_mode_logs_raw_values(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """PULPIT_DEBUG keeps secrets visible for local troubleshooting."""
        monkeypatch.setenv("PULPIT_DEBUG", "1")

        result = redact_sensitive_fields(None, "info", {"event": "e", "token": "abc"})

        assert result["token"] == "abc"
