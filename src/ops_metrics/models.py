"""Derived ops metrics, SLO verdicts and daily series. Never stored."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from src.timeutil import to_iso


class SloStatusValue(str, Enum):
    MET = "met"
    DEGRADED = "degraded"
    BREACHED = "breached"


@dataclass
class SloBreach:
    key: str
    target: float
    actual: float

    def to_dict(self) -> Dict[str, Any]:
        return {"key": self.key, "target": self.target, "actual": self.actual}


@dataclass
class SloStatus:
    """Verdict over every SLO key: breached > degraded (missing data) > met."""

    status: SloStatusValue
    targets: Dict[str, float] = field(default_factory=dict)
    current: Dict[str, Optional[float]] = field(default_factory=dict)
    breaches: List[SloBreach] = field(default_factory=list)
    missing: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "targets": dict(self.targets),
            "current": dict(self.current),
            "breaches": [b.to_dict() for b in self.breaches],
            "missing": list(self.missing),
        }


@dataclass
class OpsMetrics:
    """Snapshot of alert, incident and sync health over a window."""

    window_days: int
    generated_at: datetime
    slo: SloStatus
    instance_id: Optional[str] = None
    alerts_open: int = 0
    alerts_acknowledged: int = 0
    alerts_resolved: int = 0
    alerts_open_critical: int = 0
    alert_mtta_minutes: Optional[float] = None
    alert_mtta_samples: int = 0
    alert_mttr_minutes: Optional[float] = None
    alert_mttr_samples: int = 0
    incidents_open: int = 0
    incidents_mitigating: int = 0
    incidents_resolved: int = 0
    incident_mttr_minutes: Optional[float] = None
    incident_mttr_samples: int = 0
    lag_blocks: Optional[float] = None
    sync_staleness_minutes: Optional[float] = None

    def slo_inputs(self) -> Dict[str, Optional[float]]:
        return {
            "lag_blocks": self.lag_blocks,
            "sync_staleness_minutes": self.sync_staleness_minutes,
            "alert_mtta_minutes": self.alert_mtta_minutes,
            "alert_mttr_minutes": self.alert_mttr_minutes,
            "incident_mttr_minutes": self.incident_mttr_minutes,
            "open_alerts": float(self.alerts_open),
            "open_critical_alerts": float(self.alerts_open_critical),
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "window_days": self.window_days,
            "instance_id": self.instance_id,
            "generated_at": to_iso(self.generated_at),
            "alerts": {
                "open": self.alerts_open,
                "acknowledged": self.alerts_acknowledged,
                "resolved": self.alerts_resolved,
                "open_critical": self.alerts_open_critical,
                "mtta_minutes": self.alert_mtta_minutes,
                "mtta_samples": self.alert_mtta_samples,
                "mttr_minutes": self.alert_mttr_minutes,
                "mttr_samples": self.alert_mttr_samples,
            },
            "incidents": {
                "open": self.incidents_open,
                "mitigating": self.incidents_mitigating,
                "resolved": self.incidents_resolved,
                "mttr_minutes": self.incident_mttr_minutes,
                "mttr_samples": self.incident_mttr_samples,
            },
            "sync": {
                "lag_blocks": self.lag_blocks,
                "staleness_minutes": self.sync_staleness_minutes,
            },
            "slo": self.slo.to_dict(),
        }


@dataclass
class SeriesPoint:
    """Counts for one UTC calendar day."""

    date: str
    alerts_created: int = 0
    alerts_resolved: int = 0
    incidents_created: int = 0
    incidents_resolved: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "date": self.date,
            "alerts_created": self.alerts_created,
            "alerts_resolved": self.alerts_resolved,
            "incidents_created": self.incidents_created,
            "incidents_resolved": self.incidents_resolved,
        }


@dataclass
class OpsMetricsSeries:
    series_days: int
    generated_at: datetime
    points: List[SeriesPoint] = field(default_factory=list)
    instance_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "series_days": self.series_days,
            "instance_id": self.instance_id,
            "generated_at": to_iso(self.generated_at),
            "points": [p.to_dict() for p in self.points],
        }
