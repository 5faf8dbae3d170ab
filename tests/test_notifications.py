"""Tests for alert notification delivery."""

import asyncio
import functools
import json
import smtplib

import httpx
import pytest

from src.errors import DeliveryError
from src.notifications import (
    DEFAULT_CHANNELS,
    AlertNotice,
    NotificationChannel,
    NotificationConfig,
    NotificationDispatcher,
    NotificationOptions,
    RetryPolicy,
    compute_delay_ms,
    deliver_with_retry,
    is_retryable_status,
)
from src.notifications.config import parse_smtp_port, positive_or_default
from src.notifications.formatting import email_html, email_subject, telegram_text, webhook_payload

NOTICE = AlertNotice(
    title="Sync stale",
    message="No sync for 10m",
    severity="warning",
    fingerprint="rule_stale_sync:prod",
)

WEBHOOK = "https://hooks.example.com/T0/abc"


def smtp_config(**overrides):
    fields = dict(
        smtp_host="smtp.example.com",
        smtp_port_raw="587",
        smtp_user="bot",
        smtp_pass="secret",
        from_email="alerts@example.com",
    )
    fields.update(overrides)
    return NotificationConfig(**fields)


class TestNotificationConfig:
    """Tests for notification configuration."""

    def test_channels(self):
        assert NotificationChannel.WEBHOOK.value == "webhook"
        assert NotificationChannel.EMAIL.value == "email"
        assert NotificationChannel.TELEGRAM.value == "telegram"
        assert DEFAULT_CHANNELS == (NotificationChannel.WEBHOOK,)

    def test_positive_or_default(self):
        assert positive_or_default(250, 10, "x") == 250
        assert positive_or_default(0, 10, "x") == 10
        assert positive_or_default(-1, 10, "x") == 10
        assert positive_or_default(float("nan"), 10, "x") == 10
        assert positive_or_default("abc", 10, "x") == 10

    def test_smtp_port(self):
        assert parse_smtp_port("465") == 465
        assert parse_smtp_port("") == 587
        assert parse_smtp_port("70000") == 587

    def test_from_settings_timeouts_fall_back(self, settings_factory):
        config = NotificationConfig.from_settings(settings_factory(
            webhook_url=" https://x.test/hook ",
            dependency_timeout_ms=2500,
            telegram_timeout_ms=700,
        ))
        assert config.webhook_url == "https://x.test/hook"
        assert config.webhook_timeout_ms == 2500
        assert config.telegram_timeout_ms == 700
        assert config.production is False

    def test_from_settings_retry(self, settings_factory):
        config = NotificationConfig.from_settings(settings_factory(
            notification_retry_attempts=5,
            notification_retry_base_delay_ms=1000,
            notification_retry_max_delay_ms=200,
        ))
        assert config.retry.attempts == 5
        assert config.retry.max_delay_ms == 1000

    def test_configured_flags(self):
        assert smtp_config().smtp_configured
        assert not smtp_config(smtp_pass="").smtp_configured
        assert NotificationConfig(telegram_bot_token="t", telegram_chat_id="c").telegram_configured
        assert not NotificationConfig(telegram_bot_token="t").telegram_configured


class TestFormatting:
    def test_webhook_payload(self):
        assert webhook_payload(NOTICE) == {
            "content": "⚠️ **[WARNING] Sync stale**\nNo sync for 10m\nID: `rule_stale_sync:prod`",
        }

    def test_unknown_severity_uses_info_emoji(self):
        notice = AlertNotice(title="t", message="m", severity="debug", fingerprint="f")
        assert telegram_text(notice).startswith("ℹ️ [DEBUG] t")

    def test_email_html_escaped(self):
        notice = AlertNotice(title="<b>", message="a & b", severity="critical", fingerprint='"x"')
        html = email_html(notice)
        assert "&lt;b&gt;" in html
        assert "a &amp; b" in html
        assert "&quot;x&quot;" in html
        assert email_subject(notice) == "[CRITICAL] <b>"


class TestRetry:
    """Bounded exponential backoff."""

    def test_retryable_status(self):
        assert is_retryable_status(408)
        assert is_retryable_status(429)
        assert is_retryable_status(503)
        assert not is_retryable_status(400)
        assert not is_retryable_status(404)

    def test_compute_delay(self):
        policy = RetryPolicy(base_delay_ms=500, max_delay_ms=5000, jitter=0.2)
        no_jitter = lambda low, high: 1.0  # noqa: E731
        assert compute_delay_ms(1, policy, no_jitter) == 500
        assert compute_delay_ms(2, policy, no_jitter) == 1000
        assert compute_delay_ms(10, policy, no_jitter) == 5000
        assert compute_delay_ms(1, policy, lambda low, high: low) == 400

    @pytest.mark.asyncio
    async def test_retries_transient_until_success(self, sleep):
        calls = []

        async def send():
            calls.append(1)
            if len(calls) < 3:
                raise DeliveryError("boom", retryable=True)

        attempts = await deliver_with_retry(send, RetryPolicy(), "webhook", "fp", sleep=sleep)
        assert attempts == 3
        assert len(sleep.delays) == 2
        assert sleep.delays[0] <= sleep.delays[1]

    @pytest.mark.asyncio
    async def test_permanent_failure_not_retried(self, sleep):
        async def send():
            raise DeliveryError("bad request", retryable=False, status_code=400)

        with pytest.raises(DeliveryError) as exc_info:
            await deliver_with_retry(send, RetryPolicy(), "webhook", "fp", sleep=sleep)
        assert exc_info.value.details["attempts"] == 1
        assert sleep.delays == []

    @pytest.mark.asyncio
    async def test_exhausted_attempts_raise_last_error(self, sleep):
        async def send():
            raise DeliveryError("still down", retryable=True)

        with pytest.raises(DeliveryError) as exc_info:
            await deliver_with_retry(send, RetryPolicy(attempts=3), "webhook", "fp", sleep=sleep)
        assert exc_info.value.details["attempts"] == 3
        assert len(sleep.delays) == 2


class TestWebhook:
    """Webhook channel through the dispatcher."""

    @pytest.mark.asyncio
    async def test_unconfigured_webhook_is_skipped(self, http_transport, sleep):
        transport = http_transport()
        dispatcher = NotificationDispatcher(NotificationConfig(), http_transport=transport, sleep=sleep)
        result = await dispatcher.notify_alert(NOTICE)
        assert result.success is True
        assert result.channel_results[0].skipped is True
        assert transport.requests == []

    @pytest.mark.asyncio
    async def test_posts_content_payload(self, http_transport, sleep):
        transport = http_transport([204])
        dispatcher = NotificationDispatcher(
            NotificationConfig(webhook_url=WEBHOOK), http_transport=transport, sleep=sleep,
        )
        result = await dispatcher.notify_alert(NOTICE)
        assert result.success is True
        assert result.channel_results[0].attempts == 1
        request = transport.requests[0]
        assert str(request.url) == WEBHOOK
        assert json.loads(request.content) == webhook_payload(NOTICE)

    @pytest.mark.asyncio
    async def test_transient_status_retried(self, http_transport, sleep):
        transport = http_transport([503, 429, 200])
        dispatcher = NotificationDispatcher(
            NotificationConfig(webhook_url=WEBHOOK), http_transport=transport, sleep=sleep,
        )
        result = await dispatcher.notify_alert(NOTICE)
        assert result.success is True
        assert result.channel_results[0].attempts == 3
        assert len(transport.requests) == 3

    @pytest.mark.asyncio
    async def test_retries_exhausted_reported_not_raised(self, http_transport, sleep):
        transport = http_transport([500])
        dispatcher = NotificationDispatcher(
            NotificationConfig(webhook_url=WEBHOOK), http_transport=transport, sleep=sleep,
        )
        result = await dispatcher.notify_alert(NOTICE)
        assert result.success is False
        channel = result.channel_results[0]
        assert channel.attempts == 3
        assert "500" in channel.error

    @pytest.mark.asyncio
    async def test_client_error_not_retried(self, http_transport, sleep):
        transport = http_transport([404])
        dispatcher = NotificationDispatcher(
            NotificationConfig(webhook_url=WEBHOOK), http_transport=transport, sleep=sleep,
        )
        result = await dispatcher.notify_alert(NOTICE)
        assert result.success is False
        assert len(transport.requests) == 1
        assert sleep.delays == []

    @pytest.mark.asyncio
    async def test_transport_error_retried(self, http_transport, sleep):
        transport = http_transport([httpx.ConnectError("refused"), 200])
        dispatcher = NotificationDispatcher(
            NotificationConfig(webhook_url=WEBHOOK), http_transport=transport, sleep=sleep,
        )
        result = await dispatcher.notify_alert(NOTICE)
        assert result.success is True
        assert result.channel_results[0].attempts == 2

    @pytest.mark.asyncio
    async def test_timeout_is_retryable_failure(self, http_transport, sleep):
        async def slow(request):
            await asyncio.sleep(1)
            return httpx.Response(200)

        transport = http_transport(handler=slow)
        config = NotificationConfig(
            webhook_url=WEBHOOK, webhook_timeout_ms=20, retry=RetryPolicy(attempts=2),
        )
        dispatcher = NotificationDispatcher(config, http_transport=transport, sleep=sleep)
        result = await dispatcher.notify_alert(NOTICE)
        assert result.success is False
        assert result.channel_results[0].attempts == 2
        assert "timed out" in result.channel_results[0].error

    @pytest.mark.asyncio
    async def test_production_rejects_plain_http(self, http_transport, sleep):
        transport = http_transport()
        config = NotificationConfig(production=True, webhook_url="http://hooks.example.com/x")
        dispatcher = NotificationDispatcher(config, http_transport=transport, sleep=sleep)
        result = await dispatcher.notify_alert(NOTICE)
        assert result.success is False
        assert "HTTPS" in result.channel_results[0].error
        assert transport.requests == []

    @pytest.mark.asyncio
    async def test_production_allows_localhost(self, http_transport, sleep):
        transport = http_transport()
        config = NotificationConfig(production=True, webhook_url="http://localhost:9000/hook")
        dispatcher = NotificationDispatcher(config, http_transport=transport, sleep=sleep)
        assert (await dispatcher.notify_alert(NOTICE)).success is True
        assert len(transport.requests) == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize("url", ["ftp://example.com/x", "not a url"])
    async def test_bad_urls_rejected_without_requests(self, url, http_transport, sleep):
        transport = http_transport()
        dispatcher = NotificationDispatcher(
            NotificationConfig(webhook_url=url), http_transport=transport, sleep=sleep,
        )
        result = await dispatcher.notify_alert(NOTICE)
        assert result.success is False
        assert transport.requests == []


class TestTelegram:
    @pytest.mark.asyncio
    async def test_unconfigured_is_skipped(self, http_transport, sleep):
        transport = http_transport()
        dispatcher = NotificationDispatcher(NotificationConfig(), http_transport=transport, sleep=sleep)
        result = await dispatcher.notify_alert(
            NOTICE, NotificationOptions(channels=[NotificationChannel.TELEGRAM]),
        )
        assert result.channel_results[0].skipped is True
        assert transport.requests == []

    @pytest.mark.asyncio
    async def test_sends_to_configured_chat(self, http_transport, sleep):
        transport = http_transport()
        config = NotificationConfig(telegram_bot_token="123:abc", telegram_chat_id="-100")
        dispatcher = NotificationDispatcher(config, http_transport=transport, sleep=sleep)
        result = await dispatcher.notify_alert(
            NOTICE, NotificationOptions(channels=["telegram"], recipient="ignored"),
        )
        assert result.success is True
        request = transport.requests[0]
        assert str(request.url) == "https://api.telegram.org/bot123:abc/sendMessage"
        body = json.loads(request.content)
        assert body["chat_id"] == "-100"
        assert body["text"] == telegram_text(NOTICE)
        assert body["disable_web_page_preview"] is True


class TestEmail:
    @pytest.mark.asyncio
    async def test_unconfigured_is_skipped(self, fake_smtp, sleep):
        dispatcher = NotificationDispatcher(NotificationConfig(), smtp_factory=fake_smtp, sleep=sleep)
        result = await dispatcher.notify_alert(
            NOTICE, NotificationOptions(channels=[NotificationChannel.EMAIL], recipient="a@b.c"),
        )
        assert result.channel_results[0].skipped is True
        assert fake_smtp.instances == []

    @pytest.mark.asyncio
    async def test_no_recipient_is_skipped(self, fake_smtp, sleep):
        dispatcher = NotificationDispatcher(smtp_config(), smtp_factory=fake_smtp, sleep=sleep)
        result = await dispatcher.notify_alert(
            NOTICE, NotificationOptions(channels=[NotificationChannel.EMAIL]),
        )
        assert result.channel_results[0].skipped is True

    @pytest.mark.asyncio
    async def test_sends_multipart_message(self, fake_smtp, sleep):
        dispatcher = NotificationDispatcher(
            smtp_config(default_email="oncall@example.com"), smtp_factory=fake_smtp, sleep=sleep,
        )
        result = await dispatcher.notify_alert(
            NOTICE, NotificationOptions(channels=[NotificationChannel.EMAIL]),
        )
        assert result.success is True
        transport = fake_smtp.instances[0]
        assert (transport.host, transport.port) == ("smtp.example.com", 587)
        message = transport.sent[0]
        assert message["To"] == "oncall@example.com"
        assert message["From"] == "alerts@example.com"
        assert message["Subject"] == "[WARNING] Sync stale"
        assert [p.get_content_type() for p in message.get_payload()] == ["text/plain", "text/html"]

    @pytest.mark.asyncio
    async def test_transport_is_reused_and_failures_retried(self, fake_smtp, sleep):
        factory = functools.partial(fake_smtp, fail_times=1)
        dispatcher = NotificationDispatcher(smtp_config(), smtp_factory=factory, sleep=sleep)
        options = NotificationOptions(channels=[NotificationChannel.EMAIL], recipient="a@b.c")
        first = await dispatcher.notify_alert(NOTICE, options)
        second = await dispatcher.notify_alert(NOTICE, options)
        assert first.channel_results[0].attempts == 2
        assert second.channel_results[0].attempts == 1
        assert len(fake_smtp.instances) == 1
        assert len(fake_smtp.instances[0].sent) == 2

    @pytest.mark.asyncio
    async def test_smtp_errors_reported(self, fake_smtp, sleep):
        factory = functools.partial(
            fake_smtp, fail_times=10, error=smtplib.SMTPAuthenticationError(535, b"bad creds"),
        )
        dispatcher = NotificationDispatcher(smtp_config(), smtp_factory=factory, sleep=sleep)
        result = await dispatcher.notify_alert(
            NOTICE, NotificationOptions(channels=[NotificationChannel.EMAIL], recipient="a@b.c"),
        )
        assert result.success is False
        assert result.channel_results[0].attempts == 3
        assert "SMTPAuthenticationError" in result.channel_results[0].error


class TestDispatcher:
    """Fan-out, isolation and background scheduling."""

    @pytest.mark.asyncio
    async def test_empty_channel_list_sends_nothing(self, http_transport, sleep):
        transport = http_transport()
        dispatcher = NotificationDispatcher(
            NotificationConfig(webhook_url=WEBHOOK), http_transport=transport, sleep=sleep,
        )
        result = await dispatcher.notify_alert(NOTICE, NotificationOptions(channels=[]))
        assert result.success is True
        assert result.channel_results == []
        assert transport.requests == []

    @pytest.mark.asyncio
    async def test_duplicate_channels_sent_once(self, http_transport, sleep):
        transport = http_transport()
        dispatcher = NotificationDispatcher(
            NotificationConfig(webhook_url=WEBHOOK), http_transport=transport, sleep=sleep,
        )
        options = NotificationOptions(channels=["webhook", NotificationChannel.WEBHOOK])
        result = await dispatcher.notify_alert(NOTICE, options)
        assert len(result.channel_results) == 1
        assert len(transport.requests) == 1

    @pytest.mark.asyncio
    async def test_one_failing_channel_does_not_affect_others(self, http_transport, fake_smtp, sleep):
        transport = http_transport([400])
        config = smtp_config(webhook_url=WEBHOOK)
        dispatcher = NotificationDispatcher(
            config, http_transport=transport, smtp_factory=fake_smtp, sleep=sleep,
        )
        result = await dispatcher.notify_alert(
            NOTICE, NotificationOptions(channels=["webhook", "email"], recipient="a@b.c"),
        )
        by_channel = {r.channel: r for r in result.channel_results}
        assert by_channel[NotificationChannel.WEBHOOK].success is False
        assert by_channel[NotificationChannel.EMAIL].success is True
        assert result.success is False

    @pytest.mark.asyncio
    async def test_unknown_channel_reported_not_raised(self, http_transport, sleep):
        transport = http_transport()
        dispatcher = NotificationDispatcher(
            NotificationConfig(webhook_url=WEBHOOK), http_transport=transport, sleep=sleep,
        )
        result = await dispatcher.notify_alert(
            NOTICE, NotificationOptions(channels=["sms", "webhook"]),
        )
        assert result.success is False
        sms, webhook = result.channel_results
        assert sms.success is False
        assert sms.error == "Unsupported channel: sms"
        assert sms.to_dict()["channel"] == "sms"
        assert webhook.success is True
        assert len(transport.requests) == 1

    @pytest.mark.asyncio
    async def test_schedule_and_drain(self, http_transport, sleep):
        transport = http_transport([500])
        dispatcher = NotificationDispatcher(
            NotificationConfig(webhook_url=WEBHOOK), http_transport=transport, sleep=sleep,
        )
        task = dispatcher.schedule(NOTICE)
        assert dispatcher.pending == 1
        await dispatcher.drain()
        assert dispatcher.pending == 0
        assert task.result().success is False

    @pytest.mark.asyncio
    async def test_send_test_notification(self, http_transport, sleep):
        transport = http_transport()
        dispatcher = NotificationDispatcher(
            NotificationConfig(webhook_url=WEBHOOK), http_transport=transport, sleep=sleep,
        )
        result = await dispatcher.send_test_notification(NotificationChannel.WEBHOOK)
        assert result.success is True
        content = json.loads(transport.requests[0].content)["content"]
        assert "[INFO] Test Notification" in content
        assert "ID: `test-" in content
