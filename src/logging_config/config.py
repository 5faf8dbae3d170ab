"""Logging Configuration.

Level, output format and slow-operation threshold, read from ``Settings``
(``INSIGHT_LOG_LEVEL``, ``INSIGHT_LOG_FORMAT``, ``INSIGHT_LOG_SLOW_THRESHOLD_MS``).
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Tuple

from src.settings import Settings

logger = logging.getLogger(__name__)

QUIET_LOGGERS = ("asyncio", "httpx", "httpcore", "sqlalchemy.engine")


class LogLevel(str, Enum):
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class LogFormat(str, Enum):
    JSON = "json"
    CONSOLE = "console"


@dataclass
class LoggingConfig:
    """Structured logging configuration."""

    level: LogLevel = LogLevel.INFO
    format: LogFormat = LogFormat.JSON
    include_caller: bool = True
    slow_threshold_ms: float = 500.0
    service_name: str = "insight-ops"
    quiet_loggers: Tuple[str, ...] = QUIET_LOGGERS

    @classmethod
    def from_settings(cls, settings: Settings) -> "LoggingConfig":
        """Unset format means JSON in production and console elsewhere."""
        raw_level = settings.log_level.strip().upper()
        if raw_level in LogLevel.__members__:
            level = LogLevel(raw_level)
        else:
            if raw_level:
                logger.warning("Unknown log level %r, using INFO", settings.log_level)
            level = LogLevel.INFO

        raw_format = settings.log_format.strip().lower()
        if raw_format in (LogFormat.JSON.value, LogFormat.CONSOLE.value):
            log_format = LogFormat(raw_format)
        else:
            log_format = LogFormat.JSON if settings.is_production else LogFormat.CONSOLE

        threshold = settings.log_slow_threshold_ms
        return cls(
            level=level,
            format=log_format,
            slow_threshold_ms=threshold if threshold > 0 else cls.slow_threshold_ms,
        )


DEFAULT_LOGGING_CONFIG = LoggingConfig()
