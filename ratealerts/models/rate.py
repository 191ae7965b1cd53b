"""Rate snapshot and trigger event data models."""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field

from ratealerts.models.alert import Alert
from ratealerts.models.subject import Subject


class Provenance(str, Enum):
    """Which data source produced a snapshot."""

    SCHEDULED_FETCH = "scheduled_fetch"
    FOREGROUND_POLL = "foreground_poll"
    STREAM = "stream"


class RateSnapshot(BaseModel):
    """A point-in-time quote for one subject. Never persisted."""

    subject: Subject = Field(..., description="Pair the rate is quoted for")
    rate: float = Field(..., ge=0, description="Quoted rate")
    timestamp: datetime = Field(..., description="Source timestamp of the quote")
    provenance: Provenance = Field(..., description="Data source tag")

    model_config = {"frozen": True}


class TriggerEvent(BaseModel):
    """Emitted once when an alert transitions from active to triggered."""

    alert_id: str = Field(..., description="ID of the triggered alert")
    alert: Alert = Field(..., description="Alert record as written by the transition")
    snapshot: RateSnapshot = Field(..., description="Snapshot that caused the trigger")
    rate: float = Field(..., description="Rate at trigger time")
    timestamp: datetime = Field(..., description="Trigger timestamp")

    model_config = {"frozen": True}
