"""Ops Metrics.

Alert and incident health, sync lag and SLO verdicts, computed on demand.
"""

from src.ops_metrics.config import (
    DEFAULT_SERIES_DAYS,
    DEFAULT_WINDOW_DAYS,
    MAX_WINDOW_DAYS,
    SLO_KEYS,
    SloTargets,
    clamp_days,
)
from src.ops_metrics.engine import OpsMetricsEngine
from src.ops_metrics.models import (
    OpsMetrics,
    OpsMetricsSeries,
    SeriesPoint,
    SloBreach,
    SloStatus,
    SloStatusValue,
)
from src.ops_metrics.slo import build_slo_status
from src.ops_metrics.sync_state import (
    SYNC_STATE_KEY,
    KeyValueSyncStateProvider,
    SyncState,
    SyncStateProvider,
    read_sync_state,
    sync_state_from_dict,
)

__all__ = [
    "DEFAULT_SERIES_DAYS",
    "DEFAULT_WINDOW_DAYS",
    "MAX_WINDOW_DAYS",
    "SLO_KEYS",
    "SloTargets",
    "clamp_days",
    "OpsMetricsEngine",
    "OpsMetrics",
    "OpsMetricsSeries",
    "SeriesPoint",
    "SloBreach",
    "SloStatus",
    "SloStatusValue",
    "build_slo_status",
    "SYNC_STATE_KEY",
    "KeyValueSyncStateProvider",
    "SyncState",
    "SyncStateProvider",
    "read_sync_state",
    "sync_state_from_dict",
]
