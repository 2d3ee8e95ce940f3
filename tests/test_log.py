"""Tests for logging helpers."""

from __future__ import annotations

import logging

from easyauth.log import enable_debug, get_logger, mask_token, redact_sensitive_data, set_level


class TestLogger:
    """Package logger configuration."""

    def test_get_logger_is_singleton(self) -> None:
        """The same logger object is returned every time."""
        assert get_logger() is get_logger()
        assert get_logger().name == "easyauth"

    def test_single_handler(self) -> None:
        """Repeated calls never stack handlers."""
        get_logger()
        get_logger()
        assert len(logging.getLogger("easyauth").handlers) == 1

    def test_set_level_accepts_names(self) -> None:
        """Level names and numbers both work."""
        set_level("info")
        assert get_logger().level == logging.INFO
        set_level(logging.ERROR)
        assert get_logger().level == logging.ERROR

    def test_enable_debug(self) -> None:
        """enable_debug switches to DEBUG."""
        enable_debug()
        assert get_logger().level == logging.DEBUG

    def test_module_loggers_are_children(self) -> None:
        """Module loggers propagate to the package logger."""
        child = logging.getLogger("easyauth.client")
        assert child.parent is get_logger()


class TestMaskToken:
    """Rendering secrets for log lines."""

    def test_none_and_empty(self) -> None:
        """Missing tokens render as a placeholder."""
        assert mask_token(None) == "<none>"
        assert mask_token("") == "<none>"

    def test_short_token_fully_masked(self) -> None:
        """Short values reveal nothing."""
        assert mask_token("abc") == "***"

    def test_keeps_tail(self) -> None:
        """Long values keep only their last characters."""
        assert mask_token("ya29.a0AfH6SMBxyz1234") == "***1234"


class TestRedaction:
    """Sensitive keys are removed from payloads before logging."""

    def test_token_fields(self) -> None:
        """Anything token- or secret-like is redacted."""
        data = {
            "access_token": "at",
            "refresh_token": "rt",
            "client_secret": "s",
            "code_verifier": "v",
            "error": "invalid_grant",
        }
        redacted = redact_sensitive_data(data)
        assert redacted == {
            "access_token": "[REDACTED]",
            "refresh_token": "[REDACTED]",
            "client_secret": "[REDACTED]",
            "code_verifier": "[REDACTED]",
            "error": "invalid_grant",
        }

    def test_exact_keys(self) -> None:
        """code/state/nonce are redacted but status_code is not."""
        redacted = redact_sensitive_data({"code": "c", "state": "s", "nonce": "n", "status_code": 400})
        assert redacted == {
            "code": "[REDACTED]",
            "state": "[REDACTED]",
            "nonce": "[REDACTED]",
            "status_code": 400,
        }

    def test_nested(self) -> None:
        """Nested dicts and lists are traversed."""
        redacted = redact_sensitive_data({"items": [{"id_token": "x", "sub": "1"}]})
        assert redacted == {"items": [{"id_token": "[REDACTED]", "sub": "1"}]}

    def test_max_depth(self) -> None:
        """Deep structures are cut off."""
        assert redact_sensitive_data({"a": {"b": 1}}, max_depth=1) == {"a": "[MAX_DEPTH]"}

    def test_original_untouched(self) -> None:
        """Redaction returns a copy."""
        data = {"access_token": "at"}
        redact_sensitive_data(data)
        assert data == {"access_token": "at"}
