"""Logging for the sync engine.

Library modules only obtain loggers (``get_logger(__name__)``) and attach
sync context through ``extra=get_log_context(...)``. Handlers are installed
by the application, once, at startup:

    import leadsync

    leadsync.setup_logging()                    # LOG_LEVEL / LOG_FORMAT from settings
    leadsync.setup_logging("DEBUG", "json")     # explicit override

Formats: ``text`` (plain lines), ``structured`` (plain lines plus the sync
context) and ``json`` (one JSON object per line, see JSONFormatter).
"""

import json
import logging
import logging.config
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from leadsync.app.core.config import settings

PACKAGE_LOGGER = "leadsync"

# Sync context carried on records, in output order
CONTEXT_FIELDS = ("service", "operation", "batch_number", "event_key", "platform", "duration_ms")

LINE_FORMATS = {
    "text": "%(asctime)s %(levelname)-8s %(name)s: %(message)s",
    "structured": (
        "%(asctime)s %(levelname)-8s %(name)s: %(message)s "
        "[service=%(service)s operation=%(operation)s batch=%(batch_number)s]"
    ),
}

# Attributes every LogRecord has; anything else came in through extra=
_RECORD_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {"message", "asctime"}


class JSONFormatter(logging.Formatter):
    """Render records as single-line JSON.

    Keys: ``timestamp`` (UTC, ISO-8601), ``level``, ``logger``, ``message``,
    ``source``, every context field that is set, ``extra`` for any other
    attribute passed through ``extra=``, and ``exception`` when the record
    carries exc_info.
    """

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "source": {
                "file": record.pathname,
                "line": record.lineno,
                "function": record.funcName,
            },
        }

        for name in CONTEXT_FIELDS:
            value = getattr(record, name, None)
            if value is not None:
                payload[name] = value

        extra = {
            key: value
            for key, value in vars(record).items()
            if key not in _RECORD_ATTRS and key not in CONTEXT_FIELDS
        }
        if extra:
            payload["extra"] = extra

        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=str, ensure_ascii=False)


class ContextFilter(logging.Filter):
    """Give every record the context attributes so line formats can use them."""

    def filter(self, record: logging.LogRecord) -> bool:
        for name in CONTEXT_FIELDS:
            if not hasattr(record, name):
                setattr(record, name, None)
        return True


def get_logging_config(level: Optional[str] = None, log_format: Optional[str] = None) -> Dict[str, Any]:
    """Build the dictConfig for the package loggers.

    Args:
        level: Log level name, defaults to settings.log_level
        log_format: text, structured or json, defaults to settings.log_format

    Raises:
        ValueError: If the format is not supported
    """
    level = (level or settings.log_level).upper()
    log_format = (log_format or settings.log_format).lower()

    if log_format == "json":
        formatter: Dict[str, Any] = {"()": f"{__name__}.JSONFormatter"}
    elif log_format in LINE_FORMATS:
        formatter = {"format": LINE_FORMATS[log_format]}
    else:
        raise ValueError(f"Unsupported log format: {log_format!r}")

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {log_format: formatter},
        "filters": {"context": {"()": f"{__name__}.ContextFilter"}},
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "stream": "ext://sys.stderr",
                "formatter": log_format,
                "filters": ["context"],
            },
        },
        "loggers": {
            PACKAGE_LOGGER: {"level": level, "handlers": ["console"], "propagate": False},
            # httpx logs every request at INFO
            "httpx": {"level": "WARNING", "handlers": ["console"], "propagate": False},
        },
    }


def setup_logging(level: Optional[str] = None, log_format: Optional[str] = None) -> None:
    """Install the package's handlers; call once at application startup."""
    config = get_logging_config(level, log_format)
    logging.config.dictConfig(config)
    (log_format,) = config["formatters"]
    get_logger().debug(f"Logging configured: level={config['loggers'][PACKAGE_LOGGER]['level']}, format={log_format}")


def get_logger(name: str = PACKAGE_LOGGER) -> logging.Logger:
    return logging.getLogger(name)


def get_log_context(
    service: Optional[str] = None,
    operation: Optional[str] = None,
    batch_number: Optional[int] = None,
    event_key: Optional[str] = None,
    platform: Optional[str] = None,
    **extra: Any,
) -> Dict[str, Any]:
    """Build an ``extra=`` mapping, leaving out fields that are None.

    Example:
        >>> logger.info("Batch processed", extra=get_log_context(service="lemlist", batch_number=3))
    """
    context = dict(
        service=service,
        operation=operation,
        batch_number=batch_number,
        event_key=event_key,
        platform=platform,
        **extra,
    )
    return {key: value for key, value in context.items() if value is not None}
