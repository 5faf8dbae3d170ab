"""SLO targets and metric window bounds."""

import logging
from dataclasses import asdict, dataclass
from typing import Dict, Optional

from src.settings import Settings

logger = logging.getLogger(__name__)

DEFAULT_WINDOW_DAYS = 7
DEFAULT_SERIES_DAYS = 30
MAX_WINDOW_DAYS = 90

SLO_KEYS = (
    "lag_blocks",
    "sync_staleness_minutes",
    "alert_mtta_minutes",
    "alert_mttr_minutes",
    "incident_mttr_minutes",
    "open_alerts",
    "open_critical_alerts",
)


def clamp_days(value: Optional[int], default: int) -> int:
    """Clamp a day window to [1, 90]."""
    if value is None:
        return default
    return min(MAX_WINDOW_DAYS, max(1, int(value)))


@dataclass(frozen=True)
class SloTargets:
    """Upper bounds per SLO key; a current value above its target is a breach."""

    lag_blocks: float = 200
    sync_staleness_minutes: float = 30
    alert_mtta_minutes: float = 30
    alert_mttr_minutes: float = 240
    incident_mttr_minutes: float = 720
    open_alerts: float = 50
    open_critical_alerts: float = 3

    @classmethod
    def from_settings(cls, settings: Settings) -> "SloTargets":
        defaults = cls()
        values = {}
        for key in SLO_KEYS:
            raw = getattr(settings, f"slo_max_{key}")
            fallback = getattr(defaults, key)
            try:
                number = float(raw)
            except (TypeError, ValueError):
                number = float("nan")
            if number > 0 and number != float("inf"):
                values[key] = number
            else:
                logger.warning("Invalid SLO target slo_max_%s=%r, using %s", key, raw, fallback)
                values[key] = fallback
        return cls(**values)

    def as_dict(self) -> Dict[str, float]:
        return asdict(self)
