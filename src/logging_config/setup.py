"""Logging Setup.

``configure_logging()`` installs a single stdout handler on the root logger:
one JSON object per line in production, colored lines in development.
Bound ``LogContext`` fields and the delivery fields passed through
``extra=`` (channel, fingerprint, attempt, ...) appear on every line.
"""

import json
import logging
import sys
import time
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from src.logging_config.config import LogFormat, LoggingConfig
from src.logging_config.context import get_context_dict
from src.logging_config.performance import set_default_threshold
from src.settings import Settings, get_settings

RECORD_EXTRAS = ("duration_ms", "channel", "fingerprint", "attempt", "status_code", "extra_data")


def record_fields(record: logging.LogRecord) -> Dict[str, Any]:
    """Bound context merged with the delivery extras set on ``record``."""
    fields = get_context_dict()
    for key in RECORD_EXTRAS:
        value = getattr(record, key, None)
        if value is not None:
            fields[key] = value
    return fields


class StructuredFormatter(logging.Formatter):
    """JSON structured log formatter.

    Fixed keys: timestamp, level, logger, message, service (and caller
    when enabled), followed by any bound or extra fields.
    """

    def __init__(self, service_name: str = "insight-ops", include_caller: bool = True):
        super().__init__()
        self.service_name = service_name
        self.include_caller = include_caller

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "service": self.service_name,
        }
        if self.include_caller:
            entry["caller"] = f"{record.module}.{record.funcName}:{record.lineno}"

        entry.update(record_fields(record))

        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = {
                "type": record.exc_info[0].__name__,
                "message": str(record.exc_info[1]),
                "traceback": self.formatException(record.exc_info),
            }
        return json.dumps(entry, default=str, ensure_ascii=False)


class ConsoleFormatter(logging.Formatter):
    """Colored single-line formatter for development."""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, self.RESET)
        stamp = time.strftime("%H:%M:%S", time.gmtime(record.created))
        line = (
            f"{color}{stamp}.{int(record.msecs):03d} {record.levelname:<8}{self.RESET} "
            f"{record.name}: {record.getMessage()}"
        )
        fields = record_fields(record)
        if fields:
            line += " [" + " ".join(f"{k}={v}" for k, v in fields.items()) + "]"
        if record.exc_info and record.exc_info[0] is not None:
            line += "\n" + self.formatException(record.exc_info)
        return line


def configure_logging(
    config: Optional[LoggingConfig] = None,
    settings: Optional[Settings] = None,
) -> LoggingConfig:
    """Configure the root logger once at process startup.

    Without ``config`` the configuration is read from ``settings`` (or the
    process settings). Returns the configuration applied.
    """
    config = config or LoggingConfig.from_settings(settings or get_settings())

    if config.format == LogFormat.JSON:
        formatter: logging.Formatter = StructuredFormatter(
            service_name=config.service_name,
            include_caller=config.include_caller,
        )
    else:
        formatter = ConsoleFormatter()

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(config.level.value)

    for name in config.quiet_loggers:
        logging.getLogger(name).setLevel(logging.WARNING)
    set_default_threshold(config.slow_threshold_ms)
    return config


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
