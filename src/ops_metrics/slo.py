"""SLO verdict from current values and targets."""

import math
from typing import Mapping, Optional

from src.ops_metrics.config import SLO_KEYS, SloTargets
from src.ops_metrics.models import SloBreach, SloStatus, SloStatusValue


def _measurable(value: Optional[float]) -> bool:
    if value is None or isinstance(value, bool):
        return False
    try:
        return math.isfinite(float(value))
    except (TypeError, ValueError):
        return False


def build_slo_status(
    current: Mapping[str, Optional[float]],
    targets: Optional[SloTargets] = None,
) -> SloStatus:
    """Compare every SLO key against its target.

    A key whose value is missing or non-finite counts as missing, never as
    healthy. Any breach makes the status ``breached``; otherwise any missing
    key makes it ``degraded``; otherwise ``met``.
    """
    targets = targets or SloTargets()
    target_map = targets.as_dict()
    breaches = []
    missing = []
    values = {}
    for key in SLO_KEYS:
        value = current.get(key)
        if not _measurable(value):
            missing.append(key)
            values[key] = None
            continue
        actual = float(value)
        values[key] = actual
        if actual > target_map[key]:
            breaches.append(SloBreach(key=key, target=target_map[key], actual=actual))

    if breaches:
        status = SloStatusValue.BREACHED
    elif missing:
        status = SloStatusValue.DEGRADED
    else:
        status = SloStatusValue.MET
    return SloStatus(
        status=status,
        targets=target_map,
        current=values,
        breaches=breaches,
        missing=missing,
    )
