"""Structured key=value logging for the answer pipeline.

Loggers come from get_logger(__name__). Anything passed through ``extra``
(request_id, owner_id, backend, ...) is appended to the line after the
fixed timestamp/level/module/function/message fields.
"""

import logging
import sys
from typing import Any

# Attributes every LogRecord has; anything else arrived through ``extra``
_RESERVED = frozenset(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {
    "message",
    "asctime",
    "extra_data",
}


class StructuredFormatter(logging.Formatter):
    """Formats records as ``key=value`` pairs."""

    def format(self, record: logging.LogRecord) -> str:
        fields: dict[str, Any] = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "module": record.module,
            "function": record.funcName,
            "message": record.getMessage(),
        }

        for key, value in vars(record).items():
            if key not in _RESERVED and not key.startswith("_"):
                fields[key] = value

        # Fields attached by log_with_context
        fields.update(getattr(record, "extra_data", None) or {})

        line = " ".join(f"{k}={v}" for k, v in fields.items())
        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


def _level_for_env() -> int:
    try:
        from tutor_guard.core.config import get_settings

        env = get_settings().TUTOR_GUARD_ENV
    except Exception:
        # Settings unavailable (e.g. invalid environment); stay at INFO
        return logging.INFO
    return logging.DEBUG if env == "dev" else logging.INFO


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger with the structured stdout handler attached.

    Args:
        name: Logger name (typically __name__)

    Returns:
        Configured logger instance; DEBUG in dev, INFO elsewhere
    """
    logger = logging.getLogger(name)
    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(StructuredFormatter())
        logger.addHandler(handler)
        logger.setLevel(_level_for_env())
    return logger


def log_with_context(logger: logging.Logger, level: int, msg: str, **fields: Any) -> None:
    """
    Log with context fields such as request_id, owner_id or stage.

    Args:
        logger: Logger instance
        level: Log level (logging.INFO, etc.)
        msg: Log message
        **fields: Context fields appended to the line
    """
    logger.log(level, msg, extra={"extra_data": fields})
