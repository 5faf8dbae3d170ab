"""Incident aggregation: group related alerts under one lifecycle."""

from src.incidents.config import (
    INCIDENTS_KEY,
    IncidentConfig,
    IncidentStatus,
)
from src.incidents.models import Incident
from src.incidents.repository import IncidentBlob, IncidentRepository, repair_blob
from src.incidents.service import UNSET, IncidentService
from src.incidents.correlation import IncidentCorrelator, describe_breaches

__all__ = [
    "INCIDENTS_KEY",
    "IncidentConfig",
    "IncidentStatus",
    "Incident",
    "IncidentBlob",
    "IncidentRepository",
    "repair_blob",
    "UNSET",
    "IncidentService",
    "IncidentCorrelator",
    "describe_breaches",
]
