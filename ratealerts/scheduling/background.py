"""Background execution windows."""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Awaitable, Callable, Optional

from ratealerts.errors import BackgroundUnavailableError

logger = logging.getLogger(__name__)


class BackgroundStatus(str, Enum):
    """Whether the platform lets the app run in the background."""

    AVAILABLE = "available"
    DENIED = "denied"
    RESTRICTED = "restricted"
    UNKNOWN = "unknown"

    @property
    def description(self) -> str:
        return {
            BackgroundStatus.AVAILABLE: "Background refresh is available",
            BackgroundStatus.DENIED: "Background refresh is denied by the user",
            BackgroundStatus.RESTRICTED: "Background refresh is restricted by policy",
            BackgroundStatus.UNKNOWN: "Background refresh status is unknown",
        }[self]


@dataclass(frozen=True)
class ExecutionWindow:
    """A time-boxed background run granted by the platform."""

    budget_seconds: float
    granted_at: datetime = field(default_factory=datetime.now)


WindowHandler = Callable[[ExecutionWindow], Awaitable[bool]]


class BaseBackgroundExecutor(ABC):
    """Abstract base class for the platform's background scheduler."""

    @abstractmethod
    def status(self) -> BackgroundStatus:
        """Report whether background execution is allowed."""
        pass

    @abstractmethod
    def register(self, handler: WindowHandler) -> None:
        """Register the coroutine run whenever a window is granted."""
        pass

    @abstractmethod
    def submit(self, earliest_begin: datetime) -> None:
        """Request the next window, replacing any pending request.

        Args:
            earliest_begin: Do not grant the window before this time.

        Raises:
            BackgroundUnavailableError: If the request cannot be submitted.
        """
        pass

    @abstractmethod
    def cancel_pending(self) -> None:
        """Cancel any pending window request."""
        pass


class LocalBackgroundExecutor(BaseBackgroundExecutor):
    """Grants windows on the running asyncio event loop.

    Stands in for an OS background scheduler when the service runs as a
    long-lived process.
    """

    def __init__(
        self,
        budget_seconds: float = 30.0,
        status: BackgroundStatus = BackgroundStatus.AVAILABLE,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.budget_seconds = budget_seconds
        self._status = status
        self._clock = clock
        self._handler: Optional[WindowHandler] = None
        self._pending: Optional[asyncio.TimerHandle] = None
        self._running: set[asyncio.Task] = set()

    def status(self) -> BackgroundStatus:
        return self._status

    def register(self, handler: WindowHandler) -> None:
        self._handler = handler
        logger.info("Background refresh handler registered")

    @property
    def has_pending(self) -> bool:
        return self._pending is not None and not self._pending.cancelled()

    def submit(self, earliest_begin: datetime) -> None:
        if self._status != BackgroundStatus.AVAILABLE:
            raise BackgroundUnavailableError(self._status.description)
        if self._handler is None:
            raise BackgroundUnavailableError("no background handler registered")

        self.cancel_pending()
        delay = max(0.0, (earliest_begin - self._clock()).total_seconds())
        loop = asyncio.get_running_loop()
        self._pending = loop.call_later(delay, self._grant)

    def cancel_pending(self) -> None:
        if self._pending is not None:
            self._pending.cancel()
            self._pending = None

    def _grant(self) -> None:
        self._pending = None
        window = ExecutionWindow(budget_seconds=self.budget_seconds, granted_at=self._clock())
        task = asyncio.get_running_loop().create_task(self._handler(window))
        self._running.add(task)
        task.add_done_callback(self._running.discard)
