"""Configuration for incident aggregation."""

from dataclasses import dataclass
from enum import Enum


class IncidentStatus(str, Enum):
    """Incident lifecycle status."""

    OPEN = "Open"
    MITIGATING = "Mitigating"
    RESOLVED = "Resolved"


INCIDENT_STATUS_RANK = {
    IncidentStatus.OPEN: 0,
    IncidentStatus.MITIGATING: 1,
    IncidentStatus.RESOLVED: 2,
}

INCIDENTS_KEY = "incidents/v1"
INCIDENTS_BLOB_VERSION = 1


@dataclass
class IncidentConfig:
    """Tunables for incident listing and correlation."""

    default_page_size: int = 50
    correlation_fetch_limit: int = 50
