"""Refresh scheduler.

Decides when rates are fetched and evaluated: on a timer while the app is
in the foreground, and in coarse platform-granted windows while it is in
the background.
"""

import asyncio
import logging
import threading
from datetime import datetime, timedelta
from typing import Callable, Optional

from ratealerts.engine.alert_engine import AlertEngine
from ratealerts.errors import BackgroundUnavailableError, NetworkError, RateAlertsError
from ratealerts.feeds.base import BaseRateFetcher
from ratealerts.models import Provenance, TriggerEvent
from ratealerts.pipeline import SnapshotPipeline
from ratealerts.scheduling.background import (
    BackgroundStatus,
    BaseBackgroundExecutor,
    ExecutionWindow,
)

logger = logging.getLogger(__name__)

# Shortest interval a platform grants for background app refresh
MINIMUM_BACKGROUND_INTERVAL = timedelta(minutes=15)


class RefreshScheduler:
    """Runs fetch-and-evaluate passes from the foreground timer and from
    background execution windows.

    Each pass fetches rates for the subjects of active alerts, feeds every
    snapshot through the pipeline in a worker thread, then re-arms expired
    triggered alerts.
    """

    def __init__(
        self,
        engine: AlertEngine,
        fetcher: BaseRateFetcher,
        pipeline: SnapshotPipeline,
        background: Optional[BaseBackgroundExecutor] = None,
        foreground_interval: float = 60.0,
        background_interval: timedelta = MINIMUM_BACKGROUND_INTERVAL,
        after_refresh: Optional[Callable[[], None]] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        """Initialize the scheduler.

        Args:
            engine: Alert engine (for active subjects and auto-reset).
            fetcher: Rate fetch collaborator.
            pipeline: Evaluate-then-dispatch step.
            background: Platform background scheduler, if any.
            foreground_interval: Seconds between foreground passes.
            background_interval: Earliest delay before the next window.
            after_refresh: Called on the event loop after every pass.
            clock: Source of "now".
        """
        self._engine = engine
        self._fetcher = fetcher
        self._pipeline = pipeline
        self._background = background
        self._foreground_interval = foreground_interval
        self._background_interval = max(background_interval, MINIMUM_BACKGROUND_INTERVAL)
        self._after_refresh = after_refresh
        self._clock = clock

        self._foreground_task: Optional[asyncio.Task] = None
        self._background_available = False

    @property
    def background_available(self) -> bool:
        """False when the scheduler has degraded to foreground-only."""
        return self._background_available

    @property
    def foreground_running(self) -> bool:
        return self._foreground_task is not None and not self._foreground_task.done()

    # ==================== Passes ====================

    async def refresh_once(
        self,
        provenance: Provenance,
        cancel: Optional[threading.Event] = None,
    ) -> list[TriggerEvent]:
        """Run one fetch-and-evaluate pass.

        A network failure skips evaluation for this cycle. If the pass is
        cancelled, alerts not yet evaluated wait for the next pass;
        transitions already committed stay.

        Args:
            provenance: Tag for the fetched snapshots.
            cancel: Set to stop evaluation between alerts.

        Returns:
            Trigger events produced by this pass.
        """
        cancel = cancel or threading.Event()
        events: list[TriggerEvent] = []
        try:
            subjects = self._engine.active_subjects()
            if subjects:
                try:
                    snapshots = await self._fetcher.fetch_rates(subjects, provenance)
                except NetworkError as e:
                    logger.warning("Rate fetch failed, skipping this cycle: %s", e)
                    snapshots = []

                for snapshot in snapshots:
                    if cancel.is_set():
                        break
                    events.extend(
                        await asyncio.to_thread(self._pipeline.process, snapshot, cancel)
                    )

            if not cancel.is_set():
                reset = await asyncio.to_thread(self._engine.auto_reset_expired)
                if reset:
                    self._pipeline.refresh_badge()
        except asyncio.CancelledError:
            cancel.set()
            raise

        logger.info(
            "%s pass complete: %d subjects, %d triggered",
            provenance.value,
            len(subjects),
            len(events),
        )
        if self._after_refresh is not None:
            self._after_refresh()
        return events

    # ==================== Foreground ====================

    def start_foreground(self) -> None:
        """Start the foreground refresh timer (first pass runs immediately)."""
        if self.foreground_running:
            return
        self._foreground_task = asyncio.create_task(self._foreground_loop())
        logger.info("Foreground refresh every %ss", self._foreground_interval)

    def stop_foreground(self) -> None:
        if self._foreground_task is not None:
            self._foreground_task.cancel()
            self._foreground_task = None
            logger.info("Foreground refresh stopped")

    async def _foreground_loop(self) -> None:
        while True:
            try:
                await self.refresh_once(Provenance.FOREGROUND_POLL)
            except Exception:
                logger.exception("Foreground refresh failed")
            await asyncio.sleep(self._foreground_interval)

    # ==================== Background ====================

    def register_background(self) -> None:
        """Register the window handler with the background collaborator."""
        if self._background is not None:
            self._background.register(self.run_background_window)

    def schedule_background_refresh(self) -> bool:
        """Request the next background window.

        Returns:
            True if a window was requested. False means the scheduler runs
            foreground-only until a later request succeeds.
        """
        if self._background is None:
            self._background_available = False
            return False

        status = self._background.status()
        if status != BackgroundStatus.AVAILABLE:
            logger.warning("Cannot schedule background refresh: %s", status.description)
            self._background_available = False
            return False

        earliest = self._clock() + self._background_interval
        try:
            self._background.submit(earliest)
        except BackgroundUnavailableError as e:
            logger.warning("Background refresh unavailable, running foreground-only: %s", e)
            self._background_available = False
            return False

        self._background_available = True
        logger.info("Background refresh scheduled (earliest: %s)", earliest.isoformat(timespec="seconds"))
        return True

    def cancel_background(self) -> None:
        if self._background is not None:
            self._background.cancel_pending()

    async def run_background_window(self, window: ExecutionWindow) -> bool:
        """Do one best-effort pass inside a granted background window.

        The next window is requested first, so a failed or expired pass
        never loses future background runs.

        Returns:
            True if the pass finished within the window.
        """
        logger.info("Background refresh started (budget %ss)", window.budget_seconds)
        self.schedule_background_refresh()

        cancel = threading.Event()
        try:
            events = await asyncio.wait_for(
                self.refresh_once(Provenance.SCHEDULED_FETCH, cancel),
                timeout=window.budget_seconds,
            )
        except asyncio.TimeoutError:
            cancel.set()
            logger.warning("Background refresh window expired, remaining alerts deferred")
            return False
        except RateAlertsError as e:
            logger.error("Background refresh failed: %s", e)
            return False
        except Exception:
            logger.exception("Background refresh failed")
            return False

        logger.info("Background refresh completed, triggered %d alerts", len(events))
        return True
