"""
Launch Tracker - Logging

One stream handler on the root logger with a filter that keeps raw network
addresses and full client tokens out of every log line.
"""
import logging
import re
import sys
from typing import Iterable, Tuple, Union

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


class SensitiveDataFilter(logging.Filter):
    """Masks IPv4/IPv6 addresses and full UUID tokens (keeps an 8-char prefix)."""

    _PATTERNS: Iterable[Tuple["re.Pattern[str]", str]] = (
        (
            re.compile(r"\b([0-9a-f]{8})-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}\b", re.I),
            r"\1-****",
        ),
        (re.compile(r"\b(?:\d{1,3}\.){3}\d{1,3}\b"), "[ip]"),
        (
            re.compile(r"(?<![0-9A-Za-z:])[0-9a-f]{0,4}(?::[0-9a-f]{0,4}){2,7}(?![0-9A-Za-z:])", re.I),
            "[ip]",
        ),
    )

    def __init__(self) -> None:
        super().__init__(name="SensitiveDataFilter")

    @classmethod
    def _sanitize_value(cls, value: object) -> object:
        if isinstance(value, str):
            sanitized = value
            for pattern, repl in cls._PATTERNS:
                sanitized = pattern.sub(repl, sanitized)
            return sanitized
        if isinstance(value, (list, tuple)):
            return type(value)(cls._sanitize_value(v) for v in value)
        if isinstance(value, dict):
            return {k: cls._sanitize_value(v) for k, v in value.items()}
        return value

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.msg, str):
            record.msg = self._sanitize_value(record.msg)
        if record.args:
            record.args = self._sanitize_value(record.args)
        return True


def configure_logging(level: Union[str, int] = "INFO") -> logging.Handler:
    """Install (once) the tracker's stream handler on the root logger."""
    resolved_level = logging.getLevelName(str(level).upper()) if isinstance(level, str) else level
    if isinstance(resolved_level, str):  # unknown name returns string
        resolved_level = logging.INFO

    root_logger = logging.getLogger()
    root_logger.setLevel(resolved_level)

    for handler in root_logger.handlers:
        if getattr(handler, "_tracker_handler", False):
            handler.setLevel(resolved_level)
            return handler

    handler = logging.StreamHandler(sys.stderr)
    handler._tracker_handler = True
    handler.setLevel(resolved_level)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    handler.addFilter(SensitiveDataFilter())
    root_logger.addHandler(handler)
    return handler
