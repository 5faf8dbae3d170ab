"""Delivery channels: webhook, telegram and email.

Each channel's ``send`` either returns the number of attempts made, returns
0 when the channel is not configured (an intentional skip), or raises
``DeliveryError``. The dispatcher turns those into ``ChannelResult``s.
"""

import asyncio
import logging
import smtplib
import threading
from abc import ABC, abstractmethod
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Any, Callable, Dict, Optional
from urllib.parse import urlsplit

import httpx

from src.errors import DeliveryError
from src.notifications.config import (
    ALLOWED_WEBHOOK_SCHEMES,
    IMPLICIT_TLS_PORT,
    LOCAL_HOSTS,
    TELEGRAM_API_BASE,
    NotificationChannel,
    NotificationConfig,
)
from src.notifications.formatting import (
    email_html,
    email_subject,
    email_text,
    telegram_text,
    webhook_payload,
)
from src.notifications.models import AlertNotice
from src.notifications.retry import Sleep, deliver_with_retry, is_retryable_status

logger = logging.getLogger(__name__)


class Channel(ABC):
    """One delivery channel."""

    kind: NotificationChannel

    def __init__(self, config: NotificationConfig, sleep: Optional[Sleep] = None):
        self.config = config
        self._sleep = sleep

    @abstractmethod
    async def send(self, notice: AlertNotice, recipient: Optional[str] = None) -> int:
        ...

    async def _retry(self, attempt: Callable, fingerprint: str) -> int:
        return await deliver_with_retry(
            attempt, self.config.retry, self.kind.value, fingerprint, sleep=self._sleep,
        )


class HttpChannel(Channel):
    """Channel that POSTs JSON with a per-request timeout."""

    def __init__(
        self,
        config: NotificationConfig,
        sleep: Optional[Sleep] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(config, sleep)
        self._transport = transport

    async def _post_json(self, url: str, body: Dict[str, Any], timeout_ms: float) -> None:
        """One attempt. Raises DeliveryError on non-2xx, timeout or transport error."""
        async with httpx.AsyncClient(transport=self._transport, timeout=None) as client:
            try:
                response = await asyncio.wait_for(
                    client.post(url, json=body), timeout=timeout_ms / 1000,
                )
            except asyncio.TimeoutError:
                raise DeliveryError(
                    f"{self.kind.value} request timed out after {timeout_ms:.0f}ms",
                    retryable=True,
                )
            except httpx.HTTPError as exc:
                raise DeliveryError(
                    f"{self.kind.value} transport error: {type(exc).__name__}: {exc}",
                    retryable=True,
                ) from exc
        if response.is_success:
            return
        raise DeliveryError(
            f"{self.kind.value} responded {response.status_code}: {response.text[:500]}",
            retryable=is_retryable_status(response.status_code),
            status_code=response.status_code,
        )


class WebhookChannel(HttpChannel):
    """POSTs ``{"content": ...}`` to the configured webhook URL."""

    kind = NotificationChannel.WEBHOOK

    def validate_url(self, url: str) -> None:
        """Reject URLs that must never be contacted. Raises a permanent DeliveryError."""
        try:
            parts = urlsplit(url)
            host = (parts.hostname or "").lower()
        except ValueError as exc:
            raise DeliveryError(f"Invalid webhook URL format: {exc}") from exc
        scheme = parts.scheme.lower()
        if not scheme or not parts.netloc:
            raise DeliveryError("Invalid webhook URL format")
        if scheme not in ALLOWED_WEBHOOK_SCHEMES:
            raise DeliveryError(f"Unsupported webhook URL protocol: {scheme}")
        if self.config.production and scheme != "https" and host not in LOCAL_HOSTS:
            raise DeliveryError("Webhook URL must use HTTPS in production")

    async def send(self, notice: AlertNotice, recipient: Optional[str] = None) -> int:
        url = self.config.webhook_url
        if not url:
            logger.debug(
                "Webhook notification not configured, skipping",
                extra={"channel": self.kind.value, "fingerprint": notice.fingerprint},
            )
            return 0
        self.validate_url(url)
        body = webhook_payload(notice)
        return await self._retry(
            lambda: self._post_json(url, body, self.config.webhook_timeout_ms),
            notice.fingerprint,
        )


class TelegramChannel(HttpChannel):
    """Sends through the Telegram Bot API ``sendMessage`` method."""

    kind = NotificationChannel.TELEGRAM

    async def send(self, notice: AlertNotice, recipient: Optional[str] = None) -> int:
        if not self.config.telegram_configured:
            logger.debug(
                "Telegram notification not configured, skipping",
                extra={"channel": self.kind.value, "fingerprint": notice.fingerprint},
            )
            return 0
        url = f"{TELEGRAM_API_BASE}/bot{self.config.telegram_bot_token}/sendMessage"
        body = {
            "chat_id": self.config.telegram_chat_id,
            "text": telegram_text(notice),
            "disable_web_page_preview": True,
        }
        return await self._retry(
            lambda: self._post_json(url, body, self.config.telegram_timeout_ms),
            notice.fingerprint,
        )


class SmtpTransport:
    """Blocking SMTP client; port 465 uses implicit TLS, others STARTTLS when offered."""

    def __init__(self, host: str, port: int, user: str, password: str, timeout: float = 10.0):
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.timeout = timeout

    @property
    def secure(self) -> bool:
        return self.port == IMPLICIT_TLS_PORT

    def send_message(self, message: MIMEMultipart) -> None:
        if self.secure:
            server = smtplib.SMTP_SSL(self.host, self.port, timeout=self.timeout)
        else:
            server = smtplib.SMTP(self.host, self.port, timeout=self.timeout)
        with server:
            if not self.secure:
                server.ehlo()
                if server.has_extn("starttls"):
                    server.starttls()
                    server.ehlo()
            server.login(self.user, self.password)
            server.send_message(message)


TransportFactory = Callable[[str, int, str, str], Any]


class EmailChannel(Channel):
    """Sends text + HTML email through one lazily built, cached transport.

    Retries cover the send step only; building the transport is not retried.
    """

    kind = NotificationChannel.EMAIL

    def __init__(
        self,
        config: NotificationConfig,
        sleep: Optional[Sleep] = None,
        transport_factory: TransportFactory = SmtpTransport,
    ):
        super().__init__(config, sleep)
        self._transport_factory = transport_factory
        self._transport: Optional[Any] = None
        self._transport_lock = threading.Lock()

    def _get_transport(self) -> Any:
        with self._transport_lock:
            if self._transport is None:
                cfg = self.config
                self._transport = self._transport_factory(
                    cfg.smtp_host, cfg.smtp_port, cfg.smtp_user, cfg.smtp_pass,
                )
            return self._transport

    def build_message(self, notice: AlertNotice, to_email: str) -> MIMEMultipart:
        message = MIMEMultipart("alternative")
        message["Subject"] = email_subject(notice)
        message["From"] = self.config.from_email
        message["To"] = to_email
        message.attach(MIMEText(email_text(notice), "plain", "utf-8"))
        message.attach(MIMEText(email_html(notice), "html", "utf-8"))
        return message

    async def send(self, notice: AlertNotice, recipient: Optional[str] = None) -> int:
        if not self.config.smtp_configured:
            logger.debug(
                "Email notification not configured, skipping",
                extra={"channel": self.kind.value, "fingerprint": notice.fingerprint},
            )
            return 0
        to_email = (recipient or "").strip() or self.config.default_email
        if not to_email:
            logger.debug(
                "No recipient email configured for notification, skipping",
                extra={"channel": self.kind.value, "fingerprint": notice.fingerprint},
            )
            return 0

        transport = self._get_transport()
        message = self.build_message(notice, to_email)

        async def attempt() -> None:
            try:
                await asyncio.to_thread(transport.send_message, message)
            except (smtplib.SMTPException, OSError) as exc:
                raise DeliveryError(
                    f"email send failed: {type(exc).__name__}: {exc}", retryable=True,
                ) from exc

        return await self._retry(attempt, notice.fingerprint)
