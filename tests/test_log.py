"""Tests for logging helpers and redaction."""

from __future__ import annotations

import logging

from typing import TYPE_CHECKING

import pytest

from pedaru import log


if TYPE_CHECKING:
    from collections.abc import Generator


@pytest.fixture(autouse=True)
def restore_level() -> Generator[None, None, None]:
    """Put the pedaru logger back to WARNING after each test."""
    yield
    log.set_level(logging.WARNING)


class TestLogger:
    """Tests for the shared pedaru logger."""

    def test_singleton(self) -> None:
        """get_logger returns the configured 'pedaru' logger."""
        logger = log.get_logger()
        assert logger is log.get_logger()
        assert logger.name == "pedaru"
        assert logger.handlers

    def test_configure_level(self) -> None:
        """configure accepts level names."""
        log.configure("INFO")
        assert log.get_logger().level == logging.INFO

    def test_enable_debug(self) -> None:
        """enable_debug lowers the level to DEBUG."""
        log.enable_debug()
        assert log.get_logger().level == logging.DEBUG

    def test_auth_logger_inherits(self, caplog: pytest.LogCaptureFixture) -> None:
        """Records from pedaru.auth propagate to the package logger."""
        log.configure("INFO")
        with caplog.at_level(logging.INFO, logger="pedaru"):
            logging.getLogger("pedaru.auth").info("flow started")
        assert "flow started" in caplog.text

    def test_debug_helper(self, caplog: pytest.LogCaptureFixture) -> None:
        """debug() is silent until debug logging is enabled."""
        with caplog.at_level(logging.DEBUG):
            log.configure("INFO")
            log.debug("hidden")
            log.enable_debug()
            log.debug("shown")
        assert "hidden" not in caplog.text
        assert "shown" in caplog.text


class TestRedactSensitiveData:
    """Tests for redact_sensitive_data."""

    def test_token_payload(self) -> None:
        """Token endpoint fields are masked while metadata is kept."""
        payload = {
            "access_token": "ya29.secret",
            "refresh_token": "1//rt",
            "expires_in": 3599,
            "token_type": "Bearer",
            "scope": "https://www.googleapis.com/auth/drive.readonly",
        }
        redacted = log.redact_sensitive_data(payload)
        assert redacted == {
            "access_token": "[REDACTED]",
            "refresh_token": "[REDACTED]",
            "expires_in": 3599,
            "token_type": "[REDACTED]",
            "scope": "https://www.googleapis.com/auth/drive.readonly",
        }

    def test_nested_and_lists(self) -> None:
        """Nested containers are traversed."""
        data = {"request": {"code_verifier": "v", "client_secret": "s"}, "items": [{"code": "c"}]}
        assert log.redact_sensitive_data(data) == {
            "request": {"code_verifier": "[REDACTED]", "client_secret": "[REDACTED]"},
            "items": [{"code": "[REDACTED]"}],
        }

    def test_input_not_mutated(self) -> None:
        """A copy is returned."""
        data = {"access_token": "x"}
        log.redact_sensitive_data(data)
        assert data == {"access_token": "x"}

    def test_max_depth(self) -> None:
        """Deep structures are cut off."""
        assert log.redact_sensitive_data({"a": {"b": 1}}, max_depth=1) == {"a": "[MAX_DEPTH]"}

    def test_scalars(self) -> None:
        """Scalars and None pass through."""
        assert log.redact_sensitive_data("plain") == "plain"
        assert log.redact_sensitive_data(None) is None
