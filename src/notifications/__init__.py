"""Alert notifications.

Multi-channel delivery for alert notices:
- Webhook (Discord/Slack-style JSON) with protocol checks
- Telegram Bot API
- Email over SMTP
- Bounded retry with exponential backoff and jitter
"""

from src.notifications.channels import (
    EmailChannel,
    SmtpTransport,
    TelegramChannel,
    WebhookChannel,
)
from src.notifications.config import (
    DEFAULT_CHANNELS,
    DEFAULT_NOTIFICATION_CONFIG,
    NotificationChannel,
    NotificationConfig,
    RetryPolicy,
)
from src.notifications.dispatcher import NotificationDispatcher
from src.notifications.models import (
    AlertNotice,
    ChannelResult,
    NotificationOptions,
    NotificationResult,
)
from src.notifications.retry import compute_delay_ms, deliver_with_retry, is_retryable_status

__all__ = [
    # Config
    "DEFAULT_CHANNELS",
    "DEFAULT_NOTIFICATION_CONFIG",
    "NotificationChannel",
    "NotificationConfig",
    "RetryPolicy",
    # Models
    "AlertNotice",
    "ChannelResult",
    "NotificationOptions",
    "NotificationResult",
    # Channels
    "EmailChannel",
    "SmtpTransport",
    "TelegramChannel",
    "WebhookChannel",
    # Delivery
    "NotificationDispatcher",
    "compute_delay_ms",
    "deliver_with_retry",
    "is_retryable_status",
]
