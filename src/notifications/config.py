"""Configuration for alert notification delivery."""

import logging
import math
from dataclasses import dataclass, field
from enum import Enum
from typing import FrozenSet

from src.settings import Settings

logger = logging.getLogger(__name__)


class NotificationChannel(str, Enum):
    """Delivery channels."""
    WEBHOOK = "webhook"
    EMAIL = "email"
    TELEGRAM = "telegram"


DEFAULT_CHANNELS = (NotificationChannel.WEBHOOK,)

ALLOWED_WEBHOOK_SCHEMES: FrozenSet[str] = frozenset({"https", "http", "wss", "ws"})
LOCAL_HOSTS: FrozenSet[str] = frozenset({"localhost", "127.0.0.1", "::1"})

DEFAULT_TIMEOUT_MS = 10_000
DEFAULT_SMTP_PORT = 587
IMPLICIT_TLS_PORT = 465
TELEGRAM_API_BASE = "https://api.telegram.org"


def positive_or_default(value: float, default: float, name: str) -> float:
    """Return ``value`` when positive and finite, else ``default``.

    Zero means unset and falls back silently; other bad values log a warning.
    """
    try:
        number = float(value)
    except (TypeError, ValueError):
        logger.warning("Invalid %s=%r, using %s", name, value, default)
        return default
    if math.isfinite(number) and number > 0:
        return number
    if number != 0:
        logger.warning("Invalid %s=%r, using %s", name, value, default)
    return default


def parse_smtp_port(raw: str) -> int:
    """Parse the SMTP port, falling back to 587 outside [1, 65535]."""
    try:
        port = int(str(raw).strip())
    except ValueError:
        return DEFAULT_SMTP_PORT
    return port if 1 <= port <= 65535 else DEFAULT_SMTP_PORT


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded exponential backoff with jitter."""

    attempts: int = 3
    base_delay_ms: float = 500
    max_delay_ms: float = 5_000
    jitter: float = 0.2

    @classmethod
    def from_settings(cls, settings: Settings) -> "RetryPolicy":
        attempts = int(positive_or_default(
            settings.notification_retry_attempts, 3, "notification_retry_attempts",
        ))
        base = positive_or_default(
            settings.notification_retry_base_delay_ms, 500, "notification_retry_base_delay_ms",
        )
        cap = positive_or_default(
            settings.notification_retry_max_delay_ms, 5_000, "notification_retry_max_delay_ms",
        )
        return cls(attempts=attempts, base_delay_ms=base, max_delay_ms=max(base, cap))


@dataclass(frozen=True)
class NotificationConfig:
    """Channel credentials and delivery tuning, built once from Settings."""

    production: bool = False
    webhook_url: str = ""
    webhook_timeout_ms: float = DEFAULT_TIMEOUT_MS
    telegram_bot_token: str = ""
    telegram_chat_id: str = ""
    telegram_timeout_ms: float = DEFAULT_TIMEOUT_MS
    smtp_host: str = ""
    smtp_port_raw: str = ""
    smtp_user: str = ""
    smtp_pass: str = ""
    from_email: str = ""
    default_email: str = ""
    retry: RetryPolicy = field(default_factory=RetryPolicy)

    @classmethod
    def from_settings(cls, settings: Settings) -> "NotificationConfig":
        fallback = positive_or_default(
            settings.dependency_timeout_ms, DEFAULT_TIMEOUT_MS, "dependency_timeout_ms",
        )
        return cls(
            production=settings.is_production,
            webhook_url=settings.webhook_url.strip(),
            webhook_timeout_ms=positive_or_default(
                settings.webhook_timeout_ms, fallback, "webhook_timeout_ms",
            ),
            telegram_bot_token=settings.telegram_bot_token.strip(),
            telegram_chat_id=settings.telegram_chat_id.strip(),
            telegram_timeout_ms=positive_or_default(
                settings.telegram_timeout_ms, fallback, "telegram_timeout_ms",
            ),
            smtp_host=settings.smtp_host.strip(),
            smtp_port_raw=settings.smtp_port.strip(),
            smtp_user=settings.smtp_user.strip(),
            smtp_pass=settings.smtp_pass,
            from_email=settings.from_email.strip(),
            default_email=settings.default_email.strip(),
            retry=RetryPolicy.from_settings(settings),
        )

    @property
    def smtp_port(self) -> int:
        return parse_smtp_port(self.smtp_port_raw)

    @property
    def smtp_configured(self) -> bool:
        return all((
            self.smtp_host, self.smtp_port_raw, self.smtp_user, self.smtp_pass, self.from_email,
        ))

    @property
    def telegram_configured(self) -> bool:
        return bool(self.telegram_bot_token and self.telegram_chat_id)


DEFAULT_NOTIFICATION_CONFIG = NotificationConfig()
