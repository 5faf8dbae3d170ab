"""Alert notification dispatcher.

``notify_alert`` fans a notice out to its channels concurrently and never
raises; each channel's failure is isolated in its ``ChannelResult``.
``schedule`` runs ``notify_alert`` as a tracked background task for
fire-and-forget callers, and ``drain`` waits for those tasks.
"""

import asyncio
import logging
import time
from typing import Dict, List, Optional, Set, Union

import httpx

from src.errors import DeliveryError
from src.logging_config import LogContext
from src.notifications.channels import (
    Channel,
    EmailChannel,
    SmtpTransport,
    TelegramChannel,
    TransportFactory,
    WebhookChannel,
)
from src.notifications.config import (
    DEFAULT_CHANNELS,
    NotificationChannel,
    NotificationConfig,
)
from src.notifications.models import (
    AlertNotice,
    ChannelResult,
    NotificationOptions,
    NotificationResult,
)
from src.notifications.retry import Sleep

logger = logging.getLogger(__name__)

TEST_NOTIFICATION_TITLE = "Test Notification"
TEST_NOTIFICATION_MESSAGE = (
    "This is a test notification from OracleMonitor. "
    "If you're seeing this, your notification system is working correctly!"
)


class NotificationDispatcher:
    """Delivers alert notices over webhook, email and telegram."""

    def __init__(
        self,
        config: Optional[NotificationConfig] = None,
        http_transport: Optional[httpx.AsyncBaseTransport] = None,
        smtp_factory: TransportFactory = SmtpTransport,
        sleep: Optional[Sleep] = None,
    ):
        self.config = config or NotificationConfig()
        self._channels: Dict[NotificationChannel, Channel] = {
            NotificationChannel.WEBHOOK: WebhookChannel(self.config, sleep, http_transport),
            NotificationChannel.TELEGRAM: TelegramChannel(self.config, sleep, http_transport),
            NotificationChannel.EMAIL: EmailChannel(self.config, sleep, smtp_factory),
        }
        self._pending: Set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        return len(self._pending)

    def channel(self, kind: NotificationChannel) -> Channel:
        return self._channels[kind]

    async def _deliver(
        self,
        kind: NotificationChannel,
        notice: AlertNotice,
        recipient: Optional[str],
    ) -> ChannelResult:
        with LogContext(extra={"channel": kind.value, "fingerprint": notice.fingerprint}):
            try:
                attempts = await self._channels[kind].send(notice, recipient)
            except DeliveryError as exc:
                attempts = exc.details.get("attempts", 0)
                logger.error(
                    "%s notification failed: %s", kind.value, exc.message,
                    extra={
                        "channel": kind.value,
                        "fingerprint": notice.fingerprint,
                        "attempt": attempts,
                        "status_code": exc.status_code,
                    },
                )
                return ChannelResult(kind, success=False, error=exc.message, attempts=attempts)
            except Exception as exc:
                logger.exception(
                    "%s notification crashed", kind.value,
                    extra={"channel": kind.value, "fingerprint": notice.fingerprint},
                )
                return ChannelResult(kind, success=False, error=f"{type(exc).__name__}: {exc}")
        if attempts == 0:
            return ChannelResult(kind, success=True, skipped=True)
        logger.debug(
            "%s notification sent", kind.value,
            extra={"channel": kind.value, "fingerprint": notice.fingerprint, "attempt": attempts},
        )
        return ChannelResult(kind, success=True, attempts=attempts)

    async def _deliver_to(
        self,
        target: Union[NotificationChannel, str],
        notice: AlertNotice,
        recipient: Optional[str],
    ) -> ChannelResult:
        if isinstance(target, NotificationChannel):
            return await self._deliver(target, notice, recipient)
        logger.error(
            "Unsupported notification channel %r", target,
            extra={"channel": target, "fingerprint": notice.fingerprint},
        )
        return ChannelResult(target, success=False, error=f"Unsupported channel: {target}")

    async def notify_alert(
        self,
        notice: AlertNotice,
        options: Optional[NotificationOptions] = None,
    ) -> NotificationResult:
        """Deliver ``notice`` to every requested channel.

        Channels default to webhook only. Duplicate channels are sent once;
        an unknown channel is reported as a failed result.
        An empty channel list succeeds without sending anything.
        """
        options = options or NotificationOptions()
        requested = DEFAULT_CHANNELS if options.channels is None else options.channels
        targets: List[Union[NotificationChannel, str]] = []
        for value in requested:
            try:
                target: Union[NotificationChannel, str] = NotificationChannel(value)
            except (TypeError, ValueError):
                target = str(value)
            if target not in targets:
                targets.append(target)

        started = time.perf_counter()
        results = await asyncio.gather(
            *(self._deliver_to(target, notice, options.recipient) for target in targets)
        )
        result = NotificationResult(channel_results=list(results))
        logger.info(
            "Notification for %s: success=%s channels=%s",
            notice.fingerprint, result.success, [r.channel_name for r in result.channel_results],
            extra={
                "fingerprint": notice.fingerprint,
                "duration_ms": round((time.perf_counter() - started) * 1000, 2),
            },
        )
        return result

    async def send_test_notification(
        self,
        channel: NotificationChannel,
        recipient: Optional[str] = None,
    ) -> NotificationResult:
        """Send a fixed info-level notice through one channel."""
        notice = AlertNotice(
            title=TEST_NOTIFICATION_TITLE,
            message=TEST_NOTIFICATION_MESSAGE,
            severity="info",
            fingerprint=f"test-{int(time.time() * 1000)}",
        )
        return await self.notify_alert(
            notice, NotificationOptions(channels=[channel], recipient=recipient),
        )

    def schedule(
        self,
        notice: AlertNotice,
        options: Optional[NotificationOptions] = None,
    ) -> asyncio.Task:
        """Start ``notify_alert`` in the background and return immediately.

        Must be called from a running event loop. The result is logged;
        nothing propagates back to the caller.
        """
        task = asyncio.get_running_loop().create_task(self.notify_alert(notice, options))
        self._pending.add(task)
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if task.cancelled():
            logger.warning("Background notification cancelled")
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Background notification failed: %s", exc, exc_info=exc)
            return
        result = task.result()
        if not result.success:
            failed = [r.channel_name for r in result.channel_results if not r.success]
            logger.error("Background notification had failed channels: %s", failed)

    async def drain(self) -> None:
        """Wait for every scheduled notification to finish."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
