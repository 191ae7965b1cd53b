"""Data models for rate alerts."""

from ratealerts.models.subject import AlertKind, Subject
from ratealerts.models.alert import (
    Above,
    Alert,
    AlertCondition,
    AlertStatus,
    Below,
    above,
    below,
)
from ratealerts.models.rate import Provenance, RateSnapshot, TriggerEvent

__all__ = [
    "Above",
    "Alert",
    "AlertCondition",
    "AlertKind",
    "AlertStatus",
    "Below",
    "Provenance",
    "RateSnapshot",
    "Subject",
    "TriggerEvent",
    "above",
    "below",
]
