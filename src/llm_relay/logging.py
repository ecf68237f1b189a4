"""
Logging utilities for llm-relay.

All modules log below the ``llm_relay`` logger. The vendor SDKs log below
their own names (``anthropic``, ``openai``, ``httpx``); :func:`setup_logging`
can route those through the same handlers, e.g. to see each HTTP request of
a continuation round.
"""

from __future__ import annotations

import logging
import os
import re
import sys
from typing import TextIO

# Package root logger
_root_logger = logging.getLogger("llm_relay")
_level_before_disable: int | None = None

LOG_LEVEL_ENV = "LLM_RELAY_LOG_LEVEL"
SDK_LOGGERS = ("anthropic", "openai", "httpx")

DEFAULT_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

# sk-..., sk-ant-..., gsk_... and bearer tokens
_SECRET_PATTERN = re.compile(r"\b(sk-ant-|sk-|gsk_|Bearer\s+)[A-Za-z0-9_\-]{8,}")


class RedactSecretsFilter(logging.Filter):
    """Masks API keys that end up in log messages."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        redacted = _SECRET_PATTERN.sub(lambda m: f"{m.group(1)}***", message)
        if redacted != message:
            record.msg = redacted
            record.args = None
        return True


def _to_level(level: str | int) -> int:
    if isinstance(level, str):
        return getattr(logging, level.upper(), logging.INFO)
    return level


def setup_logging(
    level: str | int | None = None,
    format: str | None = None,
    stream: TextIO | None = None,
    file: str | None = None,
    sdk_level: str | int | None = None,
) -> None:
    """
    Configure logging for llm-relay.

    Args:
        level: Log level name or number; defaults to ``$LLM_RELAY_LOG_LEVEL``
            or INFO
        format: Custom log format string
        stream: Output stream (defaults to stderr)
        file: Optional file path to write logs
        sdk_level: When given, the anthropic, openai and httpx loggers are
            attached to the same handlers at this level

    Example:
        from llm_relay.logging import setup_logging

        setup_logging("DEBUG")
        setup_logging("INFO", file="relay.log", sdk_level="INFO")
    """
    level = _to_level(level if level is not None else os.environ.get(LOG_LEVEL_ENV, "INFO"))

    _root_logger.setLevel(level)
    _root_logger.handlers.clear()

    formatter = logging.Formatter(format or DEFAULT_FORMAT)
    handlers: list[logging.Handler] = [logging.StreamHandler(stream or sys.stderr)]
    if file:
        handlers.append(logging.FileHandler(file))

    for handler in handlers:
        handler.setFormatter(formatter)
        handler.addFilter(RedactSecretsFilter())
        _root_logger.addHandler(handler)

    if sdk_level is not None:
        for name in SDK_LOGGERS:
            sdk_logger = logging.getLogger(name)
            sdk_logger.setLevel(_to_level(sdk_level))
            sdk_logger.handlers[:] = handlers
            sdk_logger.propagate = False


def get_logger(name: str) -> logging.Logger:
    """
    Get a child logger for a submodule.

    Args:
        name: Submodule name (e.g., "execution", "adapters.anthropic")

    Returns:
        Logger instance
    """
    if name.startswith("llm_relay."):
        return logging.getLogger(name)
    return logging.getLogger(f"llm_relay.{name}")


def set_level(level: str | int) -> None:
    """Set the log level for llm-relay."""
    _root_logger.setLevel(_to_level(level))


def disable() -> None:
    """Disable all logging for llm-relay."""
    global _level_before_disable
    if _level_before_disable is None:
        _level_before_disable = _root_logger.level
    # Children inherit the level, not the disabled flag
    _root_logger.setLevel(logging.CRITICAL + 1)


def enable() -> None:
    """Re-enable logging for llm-relay."""
    global _level_before_disable
    if _level_before_disable is not None:
        _root_logger.setLevel(_level_before_disable)
        _level_before_disable = None
