"""Logging utilities for easyauth.

Modules log through ``logging.getLogger("easyauth.<area>")``; this module
owns the package logger's handler and the helpers that keep tokens and
secrets out of log output.
"""

from __future__ import annotations

import logging
import sys

from typing import Any


DEFAULT_FORMAT = "%(name)s - %(levelname)s - %(message)s"


class _LoggerHolder:
    """Holder for the package logger instance."""

    instance: logging.Logger | None = None


def get_logger() -> logging.Logger:
    """Get the easyauth logger instance.

    Returns
    -------
    logging.Logger
        The ``easyauth`` logger configured with a stream handler.
    """
    if _LoggerHolder.instance is None:
        logger = logging.getLogger("easyauth")
        logger.setLevel(logging.WARNING)

        # Only add handler if none exists
        if not logger.handlers:
            handler = logging.StreamHandler(sys.stderr)
            handler.setLevel(logging.DEBUG)
            handler.setFormatter(logging.Formatter(DEFAULT_FORMAT))
            logger.addHandler(handler)

        _LoggerHolder.instance = logger

    return _LoggerHolder.instance


def set_level(level: int | str) -> None:
    """Set the logging level.

    Parameters
    ----------
    level : int or str
        The logging level (e.g., logging.DEBUG, "DEBUG").
    """
    if isinstance(level, str):
        level = getattr(logging, level.upper())
    get_logger().setLevel(level)


def set_format(fmt: str) -> None:
    """Replace the formatter on the package handlers."""
    for handler in get_logger().handlers:
        handler.setFormatter(logging.Formatter(fmt))


def enable_debug() -> None:
    """Enable debug output for request, state and timer tracing."""
    set_level(logging.DEBUG)


def mask_token(token: str | None, visible: int = 4) -> str:
    """Render a token as its last few characters for log lines.

    Parameters
    ----------
    token : str or None
        The secret value.
    visible : int
        Trailing characters to keep (default 4).

    Returns
    -------
    str
        ``"<none>"`` for empty input, otherwise ``"***abcd"``. Tokens
        shorter than twice ``visible`` are fully masked.
    """
    if not token:
        return "<none>"
    if len(token) < visible * 2:
        return "***"
    return f"***{token[-visible:]}"


# Keys that should be redacted in log output
_SENSITIVE_KEYS = frozenset(
    {
        "secret",
        "password",
        "token",
        "verifier",
        "assertion",
        "credential",
        "authorization",
    }
)

# Matched exactly so that e.g. "status_code" survives
_SENSITIVE_EXACT_KEYS = frozenset({"code", "nonce", "state"})


def redact_sensitive_data(
    data: dict[str, Any] | list[Any] | str | None, max_depth: int = 5
) -> dict[str, Any] | list[Any] | str | None:
    """Redact sensitive values from data for safe logging.

    Recursively traverses dicts/lists and replaces values for keys
    that match sensitive patterns with "[REDACTED]".

    Parameters
    ----------
    data : dict or list or str or None
        The data to redact.
    max_depth : int, optional
        Maximum recursion depth (default: 5).

    Returns
    -------
    dict or list or str or None
        A copy of the data with sensitive values redacted.
    """
    if max_depth <= 0:
        return "[MAX_DEPTH]"

    if data is None:
        return None

    if isinstance(data, dict):
        result: dict[str, Any] = {}
        for k, v in data.items():
            key_lower = k.lower() if isinstance(k, str) else str(k).lower()
            if key_lower in _SENSITIVE_EXACT_KEYS or any(
                sensitive in key_lower for sensitive in _SENSITIVE_KEYS
            ):
                result[k] = "[REDACTED]"
            else:
                result[k] = redact_sensitive_data(v, max_depth - 1)
        return result

    if isinstance(data, list):
        return [redact_sensitive_data(item, max_depth - 1) for item in data]

    return data
