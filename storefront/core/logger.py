import os
import re
import sys
import json
import logging
import traceback
import contextvars
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, Optional

SUCCESS_LEVEL = 25

LOG_COLORS = {
    "DEBUG": "\033[36m",      # Cyan
    "INFO": "\033[37m",       # White
    "SUCCESS": "\033[32m",    # Green
    "WARNING": "\033[33m",    # Yellow
    "ERROR": "\033[31m",      # Red
    "CRITICAL": "\033[35m"    # Magenta
}
RESET_COLOR = "\033[0m"

_RESERVED_ATTRS = {
    "msg", "args", "levelname", "levelno", "pathname",
    "filename", "module", "exc_info", "exc_text", "stack_info",
    "lineno", "funcName", "created", "msecs", "relativeCreated",
    "thread", "threadName", "process", "processName", "scope", "name", "taskName"
}

logging.addLevelName(SUCCESS_LEVEL, "SUCCESS")


class CustomLogger(logging.Logger):
    def success(self, message, *args, **kwargs):
        if self.isEnabledFor(SUCCESS_LEVEL):
            self.log(SUCCESS_LEVEL, message, *args, **kwargs, stacklevel=2)


def stringify_extra(value):
    if isinstance(value, (list, dict)):
        return str(value)
    return value


def _log_level_from_env() -> int:
    level = logging.getLevelName(os.getenv("STOREFRONT_LOG_LEVEL", "DEBUG").strip().upper())
    return level if isinstance(level, int) else logging.DEBUG


# Per-task fields such as operation and attempt, set by LoggingContext
_log_fields: contextvars.ContextVar[Optional[Dict[str, Any]]] = contextvars.ContextVar(
    "storefront_log_fields", default=None
)


class ContextFilter(logging.Filter):
    """Copies the active context fields onto a record; fields passed via ``extra`` win."""

    def filter(self, record):
        for key, value in (_log_fields.get() or {}).items():
            if not hasattr(record, key):
                setattr(record, key, value)
        return True


@contextmanager
def LoggingContext(logger: logging.Logger, **fields):
    """
    Attach fields to every record logged in this task until the block exits.
    Nested contexts add to the outer fields; ``None`` values are left out.
        with LoggingContext(logger, operation="create_product", attempt=2):
            logger.info("Transaction attempt 2/3")
    """
    current = dict(_log_fields.get() or {})
    current.update({key: value for key, value in fields.items() if value is not None})
    token = _log_fields.set(current)
    try:
        yield
    finally:
        _log_fields.reset(token)


class CustomFormatter(logging.Formatter):

    def __init__(self, fmt="%(message)s", include_location=False, with_color=False):
        super().__init__(fmt)
        self.include_location = include_location
        self.with_color = with_color

    def format(self, record):
        level_name = record.levelname
        scope = getattr(record, "scope", "")
        location = ""
        if self.include_location:
            location = f"({record.module}:{record.funcName}:{record.lineno})"

        if self.with_color:
            level_color = LOG_COLORS.get(level_name, "")
            metadata_line = f"{level_color}[{level_name}]{RESET_COLOR} {scope} {location}".strip()
        else:
            metadata_line = f"{datetime.now().isoformat()} [{level_name}] {scope} {location}".strip()

        message = record.getMessage()
        message_split = message.splitlines()
        if len(message_split) > 1:
            message_line = f"     Message: {message_split[0]}"
            for line in message_split[1:]:
                message_line += f"\n             {line}"
        else:
            message_line = f"     Message: {message}"

        extra_items = [
            f"{key}: {stringify_extra(value)}"
            for key, value in record.__dict__.items()
            if key not in _RESERVED_ATTRS
        ]
        extra_info = ""
        if extra_items:
            extra_info = f"\n     {' '.join(extra_items)}"
        formatted_log = f"{metadata_line}\n{message_line}{extra_info}"
        if record.exc_info:
            # clickable "file:line" locations in stack traces
            lines = traceback.format_exception(*record.exc_info)
            lines = [re.sub(r'File "([^"]+)", line (\d+),', r'File "\1:\2"', line) for line in lines]
            formatted_log += "\n" + "".join(lines)
        return formatted_log


class JSONFormatter(logging.Formatter):
    def format(self, record):
        log_dict = {
            "level": record.levelname,
            "message": record.getMessage(),
            "time": self.formatTime(record, self.datefmt),
            "logger": record.name,
        }
        if hasattr(record, "scope"):
            log_dict["scope"] = record.scope
        log_dict["location"] = {
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }
        extra = {
            key: stringify_extra(value)
            for key, value in record.__dict__.items()
            if key not in _RESERVED_ATTRS
        }
        if extra:
            log_dict["extra"] = extra
        if record.exc_info:
            log_dict["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_dict, ensure_ascii=False, default=str)


def setup_logger(name: str, include_location=False, use_json=False) -> CustomLogger:
    logging.setLoggerClass(CustomLogger)
    logger = logging.getLogger(name)
    if not any(isinstance(f, ContextFilter) for f in logger.filters):
        logger.addFilter(ContextFilter())

    if not any(isinstance(h, logging.StreamHandler) for h in logger.handlers):
        stream_handler = logging.StreamHandler(sys.stdout)
        stream_handler.setLevel(logging.DEBUG)
        if use_json or os.getenv("STOREFRONT_LOG_JSON", "").strip().lower() in ("1", "true", "yes", "on"):
            stream_handler.setFormatter(JSONFormatter())
        else:
            stream_handler.setFormatter(CustomFormatter(include_location=include_location))
        logger.addHandler(stream_handler)
    logger.setLevel(_log_level_from_env())
    logger.propagate = False
    return logger


__all__ = [
    "SUCCESS_LEVEL",
    "CustomLogger",
    "ContextFilter",
    "CustomFormatter",
    "JSONFormatter",
    "LoggingContext",
    "setup_logger",
]
