"""Live feed subscription manager.

Owns one logical streaming connection and forwards every tick into the
snapshot pipeline.

Usage:
    manager = LiveFeedSubscriptionManager(BinanceQuoteStream(), pipeline.process)
    manager.update_subscriptions(engine.active_subjects())
    manager.suspend()   # app goes to background, subscriptions are kept
    manager.resume()    # reconnects with the same subscriptions
    await manager.close()
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, Iterable, Optional

from ratealerts.errors import NetworkError
from ratealerts.feeds.base import BaseQuoteConnection, BaseQuoteStream, Quote
from ratealerts.models import Provenance, RateSnapshot, Subject

logger = logging.getLogger(__name__)


class FeedState(str, Enum):
    """Connection state of the live feed."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


@dataclass
class FeedStats:
    """Live feed statistics"""
    ticks_received: int = 0
    errors: int = 0
    reconnects: int = 0
    last_tick_time: Optional[datetime] = None
    connected_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ticks_received": self.ticks_received,
            "errors": self.errors,
            "reconnects": self.reconnects,
            "last_tick_time": self.last_tick_time.isoformat() if self.last_tick_time else None,
            "connected_at": self.connected_at.isoformat() if self.connected_at else None,
        }


class LiveFeedSubscriptionManager:
    """Connection lifecycle for the streaming quote feed.

    State machine: disconnected -> connecting -> connected -> disconnected,
    driven by subscription changes, app lifecycle signals and network
    errors. Network errors reconnect with exponential backoff and keep the
    subscription set. The reconnect loop is an asyncio task, so it is
    cancelled immediately when the set becomes empty or the feed is
    disabled.
    """

    def __init__(
        self,
        stream: BaseQuoteStream,
        handler: Callable[[RateSnapshot], Any],
        enabled: bool = True,
        backoff_initial: float = 1.0,
        backoff_max: float = 60.0,
    ):
        """Initialize the manager.

        Args:
            stream: Streaming collaborator.
            handler: Called with every stream snapshot, in a worker thread.
            enabled: Whether the user has the live feed switched on.
            backoff_initial: First reconnect delay in seconds.
            backoff_max: Upper bound for the reconnect delay.
        """
        self._stream = stream
        self._handler = handler
        self._enabled = enabled
        self._backoff_initial = backoff_initial
        self._backoff_max = backoff_max

        self._subscriptions: frozenset[Subject] = frozenset()
        self._suspended = False
        self._state = FeedState.DISCONNECTED
        self._task: Optional[asyncio.Task] = None
        self._stats = FeedStats()

    @property
    def state(self) -> FeedState:
        return self._state

    @property
    def subscriptions(self) -> frozenset[Subject]:
        return self._subscriptions

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def suspended(self) -> bool:
        return self._suspended

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def stats(self) -> FeedStats:
        return self._stats

    # ==================== Signals ====================

    def update_subscriptions(self, subjects: Iterable[Subject]) -> None:
        """Replace the subscription set.

        A changed non-empty set reconnects with the new set. An empty set
        stops the feed.
        """
        new = frozenset(s for s in subjects if self._stream.supports(s))
        changed = new != self._subscriptions
        self._subscriptions = new

        if not new:
            if self.is_running:
                logger.info("No subjects left to stream, disconnecting")
            self._stop()
            return

        if not self._enabled or self._suspended:
            return
        if changed or not self.is_running:
            self._start()

    def suspend(self) -> None:
        """Disconnect for a background transition, keeping subscriptions."""
        self._suspended = True
        if self.is_running:
            logger.info("Live feed suspended with %d subscriptions kept", len(self._subscriptions))
        self._stop()

    def resume(self) -> None:
        """Reconnect after a foreground transition if enabled and subscribed."""
        self._suspended = False
        if self._enabled and self._subscriptions and not self.is_running:
            logger.info("Live feed resuming")
            self._start()

    def set_enabled(self, enabled: bool) -> None:
        """Switch the feed on or off.

        Switching off disconnects and clears subscriptions; switching on
        reconnects when subscriptions exist.
        """
        if enabled == self._enabled:
            return
        self._enabled = enabled
        logger.info("Live feed preference changed to: %s", "enabled" if enabled else "disabled")
        if not enabled:
            self._subscriptions = frozenset()
            self._stop()
        elif self._subscriptions and not self._suspended:
            self._start()

    async def close(self) -> None:
        """Stop the feed and wait for the connection task to finish."""
        task = self._task
        self._stop()
        if task is not None:
            try:
                await task
            except asyncio.CancelledError:
                pass

    # ==================== Connection loop ====================

    def _start(self) -> None:
        self._stop()
        self._task = asyncio.create_task(self._run(self._subscriptions))

    def _stop(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None
        self._state = FeedState.DISCONNECTED

    def _set_state(self, state: FeedState) -> None:
        # A cancelled predecessor task must not overwrite the current state
        if asyncio.current_task() is self._task:
            self._state = state

    async def _run(self, subjects: frozenset[Subject]) -> None:
        delay = self._backoff_initial
        first_attempt = True
        try:
            while True:
                if not first_attempt:
                    self._stats.reconnects += 1
                    logger.info("Attempting live feed reconnection")
                first_attempt = False

                self._set_state(FeedState.CONNECTING)
                connection: Optional[BaseQuoteConnection] = None
                try:
                    connection = await self._stream.connect(subjects)
                    self._set_state(FeedState.CONNECTED)
                    self._stats.connected_at = datetime.now()
                    delay = self._backoff_initial

                    async for quote in connection.ticks():
                        await self._on_quote(quote)
                    logger.warning("Live feed closed by server")
                except NetworkError as e:
                    self._stats.errors += 1
                    logger.warning("Live feed error: %s", e)
                finally:
                    if connection is not None:
                        await connection.close()

                self._set_state(FeedState.DISCONNECTED)
                logger.info("Reconnecting live feed in %.1fs", delay)
                await asyncio.sleep(delay)
                delay = min(delay * 2, self._backoff_max)
        finally:
            self._set_state(FeedState.DISCONNECTED)

    async def _on_quote(self, quote: Quote) -> None:
        snapshot = RateSnapshot(
            subject=quote.subject,
            rate=quote.price,
            timestamp=quote.timestamp,
            provenance=Provenance.STREAM,
        )
        self._stats.ticks_received += 1
        self._stats.last_tick_time = quote.timestamp
        try:
            await asyncio.to_thread(self._handler, snapshot)
        except Exception:
            logger.exception("Error handling live tick for %s", quote.subject)
