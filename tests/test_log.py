"""Tests for wartid.log utilities."""

from __future__ import annotations

import logging

from wartid.log import enable_debug, get_logger, redact_sensitive_data, set_level


class TestLogger:
    """Tests for the package logger."""

    def test_singleton_with_null_handler(self) -> None:
        """get_logger() returns one logger that leaves output to the app."""
        logger = get_logger()
        assert logger is get_logger()
        assert logger.name == "wartid"
        assert len(logger.handlers) == 1
        assert isinstance(logger.handlers[0], logging.NullHandler)
        assert logger.propagate

    def test_set_level_accepts_names(self) -> None:
        """Levels may be given by name or number."""
        set_level("info")
        assert get_logger().level == logging.INFO
        set_level(logging.ERROR)
        assert get_logger().level == logging.ERROR
        enable_debug()
        assert get_logger().level == logging.DEBUG
        set_level("WARNING")

    def test_child_loggers_inherit(self) -> None:
        """The auth and security loggers sit under the package logger."""
        set_level("ERROR")
        assert logging.getLogger("wartid.security").getEffectiveLevel() == logging.ERROR
        set_level("WARNING")


class TestRedaction:
    """Tests for redact_sensitive_data."""

    def test_sensitive_keys_redacted(self) -> None:
        """Secrets, tokens, codes and states never reach the log."""
        data = {
            "client_secret": "s",
            "access_token": "t",
            "code": "c",
            "state": "n",
            "csrf_token": "x",
            "error": "invalid_grant",
        }
        redacted = redact_sensitive_data(data)

        assert redacted == {
            "client_secret": "[REDACTED]",
            "access_token": "[REDACTED]",
            "code": "[REDACTED]",
            "state": "[REDACTED]",
            "csrf_token": "[REDACTED]",
            "error": "invalid_grant",
        }

    def test_nested(self) -> None:
        """Nested dicts and lists are traversed."""
        redacted = redact_sensitive_data({"items": [{"refresh_token": "r", "name": "Ada"}]})
        assert redacted == {"items": [{"refresh_token": "[REDACTED]", "name": "Ada"}]}

    def test_input_not_mutated(self) -> None:
        """The original data is left untouched."""
        data = {"token": "t"}
        redact_sensitive_data(data)
        assert data == {"token": "t"}

    def test_depth_limit(self) -> None:
        """Deeply nested data is cut off."""
        data: dict = {"a": {"a": {"a": {"a": {"a": {"a": 1}}}}}}
        assert "[MAX_DEPTH]" in repr(redact_sensitive_data(data))
