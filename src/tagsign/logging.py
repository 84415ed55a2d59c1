"""
tagsign Structured Logging Configuration.

stdout belongs to command output, so every log line goes to stderr:
- Structured JSON lines when TAGSIGN_ENVIRONMENT=production
- Human-readable lines otherwise, tagged with the hostname being decided
- An optional DEBUG file sink (the ``debug`` option of the [global] section)

Secrets are kept out of logs two ways. Extra fields whose names look
sensitive are redacted, and the values registered with ``register_secret``
(the challenge password, account passwords and refresh tokens) are scrubbed
from every rendered line.

Usage:
    from tagsign.logging import get_logger, configure_logging

    configure_logging(level="INFO")

    logger = get_logger(__name__)
    logger.info("Searching account", extra={"account_id": "1234"})
"""

import json
import logging
import os
import sys
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional, Set, Union


REDACTED = "[REDACTED]"

# Field names containing any of these are never logged verbatim
SENSITIVE_PATTERNS = frozenset(
    {
        "password",
        "secret",
        "token",
        "api_key",
        "apikey",
        "private_key",
        "privatekey",
        "preshared",
        "challenge",
        "credential",
        "auth",
    }
)

# Attributes every LogRecord carries; anything else came in through ``extra``
_RECORD_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime", "taskName"}

DEBUG_HANDLER_NAME = "tagsign-debug-file"
STREAM_HANDLER_NAME = "tagsign-stream"

# Context fields shown inline by the development formatter
_CONTEXT_FIELDS = ("hostname", "account_id")


def _is_sensitive_key(key: str) -> bool:
    key_lower = key.lower()
    return any(pattern in key_lower for pattern in SENSITIVE_PATTERNS)


def _redact(value: Any) -> Any:
    """Recursively replace sensitive dict entries."""
    if isinstance(value, dict):
        return {k: REDACTED if _is_sensitive_key(str(k)) else _redact(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_redact(item) for item in value]
    return value


class SecretScrubber(logging.Filter):
    """
    Replaces known secret values in rendered log messages.

    Attached to every tagsign handler. Values shorter than four characters
    are ignored, they would mangle ordinary text.
    """

    MIN_LENGTH = 4

    def __init__(self):
        super().__init__()
        self._secrets: Set[str] = set()
        self._lock = threading.Lock()

    def add(self, *values: Optional[str]) -> None:
        with self._lock:
            self._secrets.update(v for v in values if v and len(v) >= self.MIN_LENGTH)

    def clear(self) -> None:
        with self._lock:
            self._secrets.clear()

    def scrub(self, text: str) -> str:
        with self._lock:
            secrets = sorted(self._secrets, key=len, reverse=True)
        for secret in secrets:
            text = text.replace(secret, REDACTED)
        return text

    def filter(self, record: logging.LogRecord) -> bool:
        if self._secrets:
            try:
                message = record.getMessage()
            except (TypeError, ValueError):
                # Let the handler report the broken format itself
                return True
            scrubbed = self.scrub(message)
            if scrubbed != message:
                record.msg, record.args = scrubbed, None
        return True


_scrubber = SecretScrubber()


def register_secret(*values: Optional[str]) -> None:
    """Never let ``values`` appear in a log line."""
    _scrubber.add(*values)


def _extra_fields(record: logging.LogRecord) -> Dict[str, Any]:
    return {
        key: REDACTED if _is_sensitive_key(key) else _redact(value)
        for key, value in record.__dict__.items()
        if key not in _RECORD_ATTRS
    }


class StructuredFormatter(logging.Formatter):
    """One JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if record.pathname:
            log_data["location"] = {
                "file": os.path.basename(record.pathname),
                "line": record.lineno,
                "function": record.funcName,
            }

        extra_fields = _extra_fields(record)
        if extra_fields:
            log_data["extra"] = extra_fields

        if record.exc_info:
            log_data["exception"] = _scrubber.scrub(self.formatException(record.exc_info))

        return json.dumps(log_data, default=str)


class DevelopmentFormatter(logging.Formatter):
    """Human-readable formatter for interactive runs."""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def __init__(self, use_color: bool = True):
        super().__init__()
        self.use_color = use_color

    def format(self, record: logging.LogRecord) -> str:
        level = f"{record.levelname:8}"
        if self.use_color and record.levelname in self.COLORS:
            level = f"{self.COLORS[record.levelname]}{level}{self.RESET}"

        context = "".join(
            f"[{getattr(record, field)}] " for field in _CONTEXT_FIELDS if getattr(record, field, None)
        )
        timestamp = datetime.now(timezone.utc).strftime("%H:%M:%S.%f")[:-3]
        source = record.name.rsplit(".", 1)[-1][:15].ljust(15)
        line = f"{timestamp} {level} {source} {context}{record.getMessage()}"

        if record.exc_info:
            line += "\n" + _scrubber.scrub(self.formatException(record.exc_info))
        return line


def _package_logger() -> logging.Logger:
    return logging.getLogger("tagsign")


def _named_handler(name: str) -> Optional[logging.Handler]:
    for handler in _package_logger().handlers:
        if handler.get_name() == name:
            return handler
    return None


def _remove_handler(name: str) -> None:
    handler = _named_handler(name)
    if handler is not None:
        _package_logger().removeHandler(handler)
        handler.close()


def _sync_level(stream_level: int) -> None:
    # The package logger must pass DEBUG records when a debug sink exists;
    # the stream handler filters on its own level
    has_debug_sink = _named_handler(DEBUG_HANDLER_NAME) is not None
    _package_logger().setLevel(logging.DEBUG if has_debug_sink else stream_level)


def configure_logging(
    level: str = "INFO",
    json_format: Optional[bool] = None,
    stream: Any = None,
) -> None:
    """
    Configure the stderr handler for tagsign components.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_format: Use JSON output. Default: True in production
        stream: Output stream. Default: sys.stderr

    A debug file sink added by ``configure_debug_log`` survives
    reconfiguration.
    """
    if json_format is None:
        json_format = os.environ.get("TAGSIGN_ENVIRONMENT", "development").lower() == "production"

    stream_level = getattr(logging, level.upper())
    _remove_handler(STREAM_HANDLER_NAME)

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.set_name(STREAM_HANDLER_NAME)
    handler.setLevel(stream_level)
    handler.setFormatter(StructuredFormatter() if json_format else DevelopmentFormatter())
    handler.addFilter(_scrubber)

    logger = _package_logger()
    logger.addHandler(handler)
    logger.propagate = False
    _sync_level(stream_level)


def configure_debug_log(path: Union[str, Path]) -> logging.Handler:
    """
    Attach a DEBUG level JSON file sink to the tagsign logger.

    Decision diagnostics are only ever written here and to stderr, never to
    stdout. Calling this again replaces the previous sink.
    """
    _remove_handler(DEBUG_HANDLER_NAME)

    handler = logging.FileHandler(str(path))
    handler.set_name(DEBUG_HANDLER_NAME)
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(StructuredFormatter())
    handler.addFilter(_scrubber)

    _package_logger().addHandler(handler)
    _package_logger().setLevel(logging.DEBUG)
    return handler


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger under the tagsign namespace.

    Usage:
        logger = get_logger(__name__)
        logger.info("Message", extra={"hostname": "web1"})
    """
    if not name.startswith("tagsign"):
        name = f"tagsign.{name}"
    return logging.getLogger(name)


# Start with sane defaults; the CLI reconfigures from settings
if not _package_logger().handlers:
    configure_logging(level="WARNING")


__all__ = [
    "configure_logging",
    "configure_debug_log",
    "get_logger",
    "register_secret",
    "SecretScrubber",
    "StructuredFormatter",
    "DevelopmentFormatter",
]
