"""Rate subject data model."""

from enum import Enum

from pydantic import BaseModel, Field


class AlertKind(str, Enum):
    """What an alert (and the rate it watches) is quoted for."""

    CURRENCY = "currency"
    CRYPTO = "crypto"


class Subject(BaseModel):
    """A directional pair a rate is quoted for.

    ``USD/ILS`` and ``ILS/USD`` are different subjects; neither implies
    the other.
    """

    kind: AlertKind = Field(..., description="Currency pair or crypto quote")
    base: str = Field(..., min_length=1, description="Base code (or crypto symbol)")
    quote: str = Field(..., min_length=1, description="Quote currency code")

    model_config = {"frozen": True}

    @classmethod
    def currency(cls, base: str, quote: str) -> "Subject":
        return cls(kind=AlertKind.CURRENCY, base=base.upper(), quote=quote.upper())

    @classmethod
    def crypto(cls, symbol: str, quote: str = "USD") -> "Subject":
        return cls(kind=AlertKind.CRYPTO, base=symbol.upper(), quote=quote.upper())

    @property
    def key(self) -> str:
        return f"{self.base}/{self.quote}"

    def __str__(self) -> str:
        return self.key
