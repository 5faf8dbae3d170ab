"""Message rendering shared by every channel."""

import html
from typing import Dict

from src.notifications.models import AlertNotice

SEVERITY_EMOJI: Dict[str, str] = {
    "critical": "🚨",
    "warning": "⚠️",
    "info": "ℹ️",
}


def severity_emoji(severity: str) -> str:
    return SEVERITY_EMOJI.get(severity, SEVERITY_EMOJI["info"])


def severity_tag(notice: AlertNotice) -> str:
    return f"[{notice.severity.upper()}]"


def webhook_payload(notice: AlertNotice) -> Dict[str, str]:
    """Discord/Slack-compatible ``content`` body."""
    content = (
        f"{severity_emoji(notice.severity)} **{severity_tag(notice)} {notice.title}**\n"
        f"{notice.message}\n"
        f"ID: `{notice.fingerprint}`"
    )
    return {"content": content}


def telegram_text(notice: AlertNotice) -> str:
    return (
        f"{severity_emoji(notice.severity)} {severity_tag(notice)} {notice.title}\n"
        f"{notice.message}\n"
        f"ID: {notice.fingerprint}"
    )


def email_subject(notice: AlertNotice) -> str:
    return f"{severity_tag(notice)} {notice.title}"


def email_text(notice: AlertNotice) -> str:
    return f"{notice.message}\n\nID: {notice.fingerprint}"


def email_html(notice: AlertNotice) -> str:
    subject = html.escape(email_subject(notice), quote=True)
    message = html.escape(notice.message, quote=True)
    fingerprint = html.escape(notice.fingerprint, quote=True)
    return (
        '<div style="font-family:ui-sans-serif,system-ui,-apple-system,Segoe UI,Roboto,'
        'Helvetica,Arial;line-height:1.5">\n'
        f'<div style="font-size:14px;margin-bottom:12px"><strong>{subject}</strong></div>\n'
        '<pre style="white-space:pre-wrap;background:#f6f7f9;padding:12px;border-radius:8px;'
        f'border:1px solid #eceef2;font-size:13px">{message}</pre>\n'
        f'<div style="font-size:12px;color:#6b7280;margin-top:10px">ID: <code>{fingerprint}</code></div>\n'
        "</div>"
    )
