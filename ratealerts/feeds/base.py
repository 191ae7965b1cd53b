"""Base interfaces for rate fetch and streaming collaborators."""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import AsyncIterator, Iterable

from pydantic import BaseModel, Field

from ratealerts.models import Provenance, RateSnapshot, Subject


class Quote(BaseModel):
    """A single price update received from a streaming feed."""

    subject: Subject = Field(..., description="Pair the price is quoted for")
    price: float = Field(..., ge=0, description="Last price")
    timestamp: datetime = Field(..., description="Event time reported by the feed")

    model_config = {"frozen": True}


class BaseRateFetcher(ABC):
    """Abstract base class for on-demand rate providers."""

    @abstractmethod
    async def fetch_rates(
        self,
        subjects: Iterable[Subject],
        provenance: Provenance,
    ) -> list[RateSnapshot]:
        """Fetch current rates.

        Subjects the provider does not cover are skipped.

        Args:
            subjects: Pairs to fetch.
            provenance: Tag stamped on every returned snapshot.

        Returns:
            One snapshot per subject fetched successfully.

        Raises:
            NetworkError: If nothing could be fetched.
        """
        pass

    def supports(self, subject: Subject) -> bool:
        """Whether this provider can quote the subject."""
        return True


class BaseQuoteConnection(ABC):
    """One open streaming connection."""

    @abstractmethod
    def ticks(self) -> AsyncIterator[Quote]:
        """Iterate over incoming quotes until the connection drops.

        Raises:
            NetworkError: When the connection fails.
        """
        pass

    @abstractmethod
    async def close(self) -> None:
        """Close the connection."""
        pass


class BaseQuoteStream(ABC):
    """Abstract base class for streaming quote feeds."""

    @abstractmethod
    async def connect(self, subjects: Iterable[Subject]) -> BaseQuoteConnection:
        """Open a connection subscribed to the given subjects.

        Raises:
            NetworkError: If the connection cannot be established.
        """
        pass

    def supports(self, subject: Subject) -> bool:
        """Whether this feed can stream the subject."""
        return True
