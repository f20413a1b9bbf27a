"""
Structured logging for the home dashboard server.

Log records are emitted as JSON objects by default so that device call
failures, token refreshes and player events can be filtered by field.
Fields passed through ``extra`` become top-level keys of the JSON entry.

Records logged on behalf of a procedure call carry the call's context
(procedure, request id, transport, client host). Use ``procedure_logger``
to get a logger that stamps those fields automatically.
"""

from __future__ import annotations

import json
import logging
import sys
from collections.abc import MutableMapping
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from homedash.config import LoggingConfig
    from homedash.context import ProcedureContext

ROOT_LOGGER_NAME = "homedash"

# Procedure call fields, in the order they appear in a JSON entry
CONTEXT_FIELDS = ("procedure", "request_id", "transport", "client_host")

# Plain-text format used when JSON output is switched off
DEFAULT_LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - [%(procedure)s] %(message)s"

# Attributes every LogRecord carries; anything else came in through `extra`
_RESERVED_RECORD_KEYS = frozenset(
    {
        "name",
        "msg",
        "args",
        "created",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "module",
        "msecs",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "stack_info",
        "exc_info",
        "exc_text",
        "thread",
        "threadName",
        "taskName",
        "message",
    }
)


class JSONFormatter(logging.Formatter):
    """
    A logging formatter that outputs log records as JSON objects.

    Each entry carries:
    - timestamp: ISO 8601 timestamp in UTC
    - level: Log level name
    - logger: Logger name
    - message: Rendered log message
    - the procedure call fields (``CONTEXT_FIELDS``), when set
    - exception: Formatted traceback, when present
    - any other field passed via ``extra``, sorted by name
    """

    def format(self, record: logging.LogRecord) -> str:
        """
        Format the log record as a JSON string.

        Args:
            record: The log record to format.

        Returns:
            JSON-formatted string representation of the log record.
        """
        log_entry: dict[str, Any] = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        for key in CONTEXT_FIELDS:
            value = getattr(record, key, None)
            if value is not None:
                log_entry[key] = value

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        extra_keys = set(record.__dict__) - _RESERVED_RECORD_KEYS - set(CONTEXT_FIELDS)
        for key in sorted(extra_keys):
            value = getattr(record, key, None)
            if value is not None:
                log_entry[key] = value

        return json.dumps(log_entry, default=str)


class ProcedureLoggerAdapter(logging.LoggerAdapter):
    """
    Logger adapter that stamps procedure call fields onto every record.

    Fields passed through ``extra`` at the call site take precedence over
    the bound context.
    """

    def process(
        self, msg: Any, kwargs: MutableMapping[str, Any]
    ) -> tuple[Any, MutableMapping[str, Any]]:
        kwargs["extra"] = {**(self.extra or {}), **(kwargs.get("extra") or {})}
        return msg, kwargs


def procedure_logger(logger: logging.Logger, ctx: ProcedureContext) -> ProcedureLoggerAdapter:
    """
    Bind a logger to the context of one procedure call.

    Args:
        logger: Module logger, as returned by ``get_logger``.
        ctx: Context of the call being handled.

    Returns:
        An adapter adding ``CONTEXT_FIELDS`` from ``ctx`` to each record.
    """
    return ProcedureLoggerAdapter(logger, {key: getattr(ctx, key) for key in CONTEXT_FIELDS})


def setup_logging(
    config: LoggingConfig | None = None,
    *,
    level: str = "INFO",
    json_format: bool = True,
    log_to_stdout: bool = True,
) -> logging.Logger:
    """
    Configure the ``homedash`` logger.

    Args:
        config: Optional LoggingConfig. When given, its values override the
            keyword arguments.
        level: Log level used when no config is provided.
        json_format: Whether to emit JSON (default) or plain text.
        log_to_stdout: Whether to attach a stdout handler.

    Returns:
        The package root logger.

    Example:
        >>> from homedash.logging import setup_logging
        >>> logger = setup_logging(level="DEBUG")
        >>> logger.info("Server started", extra={"port": 2022})
    """
    if config is not None:
        log_level = config.level.upper()
        json_format = config.json_format
        log_to_stdout = config.log_to_stdout
        if config.debug_mode:
            log_level = "DEBUG"
    else:
        log_level = level.upper()

    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.setLevel(getattr(logging, log_level, logging.INFO))

    # Remove existing handlers to avoid duplicates on reconfiguration
    logger.handlers.clear()

    if log_to_stdout:
        handler = logging.StreamHandler(sys.stdout)
        handler.setLevel(getattr(logging, log_level, logging.INFO))

        if json_format:
            handler.setFormatter(JSONFormatter())
        else:
            # Records logged outside a procedure call show "-"
            handler.setFormatter(
                logging.Formatter(DEFAULT_LOG_FORMAT, defaults={"procedure": "-"})
            )

        logger.addHandler(handler)

    logger.propagate = False

    return logger


def get_logger(name: str) -> logging.Logger:
    """
    Get a child logger of the ``homedash`` logger.

    Args:
        name: Logger name, typically ``__name__``. The ``homedash.`` prefix is
            added when missing.

    Returns:
        A logger sharing the package configuration.
    """
    if not name.startswith(ROOT_LOGGER_NAME):
        name = f"{ROOT_LOGGER_NAME}.{name}"

    return logging.getLogger(name)
