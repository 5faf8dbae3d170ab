"""Data models for alert notifications."""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Union

from src.notifications.config import NotificationChannel


@dataclass(frozen=True)
class AlertNotice:
    """The part of an alert that gets delivered.

    ``severity`` is the plain value: ``info``, ``warning`` or ``critical``.
    """

    title: str
    message: str
    severity: str
    fingerprint: str


@dataclass
class NotificationOptions:
    """Per-delivery overrides.

    ``channels=None`` means the default (webhook only); an empty sequence
    means deliver nowhere.
    """

    channels: Optional[Sequence[NotificationChannel]] = None
    recipient: Optional[str] = None


@dataclass
class ChannelResult:
    """Outcome for one channel.

    ``channel`` is the raw requested value when it names no known channel.
    """

    channel: Union[NotificationChannel, str]
    success: bool
    error: Optional[str] = None
    attempts: int = 0
    skipped: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "channel": self.channel_name,
            "success": self.success,
            "error": self.error,
            "attempts": self.attempts,
            "skipped": self.skipped,
        }

    @property
    def channel_name(self) -> str:
        if isinstance(self.channel, NotificationChannel):
            return self.channel.value
        return str(self.channel)


@dataclass
class NotificationResult:
    """Overall outcome: successful only if every channel succeeded."""

    channel_results: List[ChannelResult] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return all(r.success for r in self.channel_results)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "channel_results": [r.to_dict() for r in self.channel_results],
        }
