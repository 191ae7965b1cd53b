"""Alert data model."""

import uuid
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, Field, model_validator

from ratealerts.models.subject import AlertKind, Subject


class Above(BaseModel):
    """Satisfied when the rate is at or above the threshold."""

    type: Literal["above"] = "above"
    threshold: float = Field(..., description="Trigger threshold")

    model_config = {"frozen": True}

    @property
    def display_name(self) -> str:
        return "Above"


class Below(BaseModel):
    """Satisfied when the rate is at or below the threshold."""

    type: Literal["below"] = "below"
    threshold: float = Field(..., description="Trigger threshold")

    model_config = {"frozen": True}

    @property
    def display_name(self) -> str:
        return "Below"


AlertCondition = Annotated[Union[Above, Below], Field(discriminator="type")]


def above(threshold: float) -> Above:
    """Build an ``above(threshold)`` condition."""
    return Above(threshold=threshold)


def below(threshold: float) -> Below:
    """Build a ``below(threshold)`` condition."""
    return Below(threshold=threshold)


class AlertStatus(str, Enum):
    """Lifecycle status of an alert."""

    ACTIVE = "active"
    TRIGGERED = "triggered"
    PAUSED = "paused"


def _new_alert_id() -> str:
    return uuid.uuid4().hex


class Alert(BaseModel):
    """A persisted user rule comparing a live rate against a threshold.

    Alerts are immutable; state changes produce a new record through
    ``model_copy`` and are written back through the alert store.
    """

    id: str = Field(default_factory=_new_alert_id, min_length=1, description="Opaque alert ID")
    kind: AlertKind = Field(default=AlertKind.CURRENCY, description="Currency or crypto alert")
    base_currency: str = Field(..., min_length=1, description="Base currency (or crypto symbol)")
    target_currency: str = Field(..., min_length=1, description="Target currency")
    condition: AlertCondition = Field(..., description="Above/below threshold condition")
    target_value: Decimal = Field(..., description="Exact target value for display")
    enabled: bool = Field(default=True, description="Whether the user enabled the alert")
    status: AlertStatus = Field(default=AlertStatus.ACTIVE, description="Lifecycle status")
    triggered_at: Optional[datetime] = Field(
        default=None, description="When the alert last triggered"
    )
    created_at: datetime = Field(
        default_factory=datetime.now, description="Alert creation timestamp"
    )
    auto_reset_after_hours: Optional[int] = Field(
        default=None, gt=0, description="Hours after which a triggered alert re-arms"
    )
    crypto_id: Optional[str] = Field(default=None, description="Crypto ID (e.g. 'bitcoin')")
    crypto_symbol: Optional[str] = Field(default=None, description="Crypto symbol (e.g. 'BTC')")

    model_config = {"frozen": True}

    @model_validator(mode="after")
    def _check_invariants(self) -> "Alert":
        if self.status == AlertStatus.TRIGGERED and self.triggered_at is None:
            raise ValueError("a triggered alert must carry triggered_at")
        if self.kind == AlertKind.CRYPTO and not self.crypto_symbol:
            raise ValueError("a crypto alert must carry crypto_symbol")
        return self

    @property
    def is_active(self) -> bool:
        return self.enabled and self.status == AlertStatus.ACTIVE

    @property
    def subject(self) -> Subject:
        if self.kind == AlertKind.CRYPTO:
            return Subject.crypto(self.crypto_symbol, self.target_currency)
        return Subject.currency(self.base_currency, self.target_currency)

    @property
    def pair_label(self) -> str:
        subject = self.subject
        return f"{subject.base} → {subject.quote}"

    def with_enabled(self, enabled: bool) -> "Alert":
        """Return a copy with ``enabled`` set, applying the pause rules.

        Disabling always pauses. Enabling a paused alert re-arms it; it
        never goes straight back to triggered.
        """
        if not enabled:
            return self.model_copy(update={"enabled": False, "status": AlertStatus.PAUSED})
        if self.status == AlertStatus.PAUSED:
            return self.model_copy(
                update={"enabled": True, "status": AlertStatus.ACTIVE, "triggered_at": None}
            )
        return self.model_copy(update={"enabled": True})
