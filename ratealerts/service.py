"""Composition root.

Builds every service explicitly and owns their lifecycle. Nothing in the
package keeps process-wide state; tests and the CLI each construct their
own ``AlertService``.
"""

import asyncio
import logging
from datetime import timedelta
from pathlib import Path
from typing import Optional

from ratealerts.config import Settings, load_settings
from ratealerts.db.store import AlertStore
from ratealerts.engine.alert_engine import AlertEngine
from ratealerts.feeds.base import BaseQuoteStream, BaseRateFetcher
from ratealerts.feeds.binance_stream import BinanceQuoteStream
from ratealerts.feeds.live import LiveFeedSubscriptionManager
from ratealerts.feeds.rest import BinanceRestFetcher, CompositeFetcher, HexarateFetcher
from ratealerts.models import Alert, Provenance, TriggerEvent
from ratealerts.notifications.base import BaseNotifier
from ratealerts.notifications.console import ConsoleNotifier
from ratealerts.notifications.dispatcher import NotificationDispatcher
from ratealerts.pipeline import SnapshotPipeline
from ratealerts.scheduling.background import BaseBackgroundExecutor, LocalBackgroundExecutor
from ratealerts.scheduling.scheduler import RefreshScheduler

logger = logging.getLogger(__name__)


def build_fetcher(settings: Settings) -> CompositeFetcher:
    """Default fetch collaborator: Hexarate for fiat, Binance for crypto."""
    providers = settings.providers
    return CompositeFetcher([
        HexarateFetcher(providers.hexarate_url, timeout=providers.timeout_seconds),
        BinanceRestFetcher(providers.binance_url, timeout=providers.timeout_seconds),
    ])


class AlertService:
    """Wires store, engine, dispatcher, scheduler and live feed together.

    The ``enter_foreground`` / ``enter_background`` methods are the app
    lifecycle signals; they move work between the foreground timer, the
    live stream and background windows.
    """

    def __init__(
        self,
        settings: Settings,
        notifier: Optional[BaseNotifier] = None,
        fetcher: Optional[BaseRateFetcher] = None,
        stream: Optional[BaseQuoteStream] = None,
        background: Optional[BaseBackgroundExecutor] = None,
        store: Optional[AlertStore] = None,
        config_path: Optional[Path] = None,
    ):
        self.settings = settings
        self.config_path = config_path
        self.store = store or AlertStore(settings.storage.db_path)
        self.engine = AlertEngine(self.store)
        self.notifier = notifier or ConsoleNotifier(allowed=settings.notifications.enabled)
        self.dispatcher = NotificationDispatcher(self.notifier, self.engine)
        self.pipeline = SnapshotPipeline(self.engine, self.dispatcher)

        refresh = settings.refresh
        self.background = background or LocalBackgroundExecutor(
            budget_seconds=refresh.background_budget_seconds,
            status=refresh.background_status,
        )
        self.scheduler = RefreshScheduler(
            self.engine,
            fetcher or build_fetcher(settings),
            self.pipeline,
            background=self.background,
            foreground_interval=refresh.foreground_interval_seconds,
            background_interval=timedelta(minutes=refresh.background_interval_minutes),
            after_refresh=self._after_refresh,
        )

        stream_settings = settings.stream
        self.live_feed = LiveFeedSubscriptionManager(
            stream or BinanceQuoteStream(stream_settings.url),
            self.pipeline.process,
            enabled=stream_settings.enabled,
            backoff_initial=stream_settings.backoff_initial_seconds,
            backoff_max=stream_settings.backoff_max_seconds,
        )
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    # ==================== Alert management ====================

    def add_alert(self, alert: Alert) -> Alert:
        self.store.upsert(alert)
        logger.info("Alert created: %s %s %s", alert.pair_label,
                    alert.condition.display_name, alert.target_value)
        self.sync_subscriptions()
        return alert

    def delete_alert(self, alert_id: str) -> None:
        self.store.delete(alert_id)
        self.after_alert_change()

    def set_enabled(self, alert_id: str, enabled: bool) -> Alert:
        alert = self.engine.set_enabled(alert_id, enabled)
        self.after_alert_change()
        return alert

    def toggle_enabled(self, alert_id: str) -> Alert:
        alert = self.engine.toggle_enabled(alert_id)
        self.after_alert_change()
        return alert

    def reset_alert(self, alert_id: str) -> Alert:
        alert = self.engine.reset(alert_id)
        self.after_alert_change()
        return alert

    def after_alert_change(self) -> None:
        self.dispatcher.refresh_badge()
        self.sync_subscriptions()

    def sync_subscriptions(self) -> None:
        """Point the live feed at the subjects of the current active alerts."""
        if self._running and self.live_feed.enabled:
            self.live_feed.update_subscriptions(self.engine.active_subjects())

    def set_stream_enabled(self, enabled: bool) -> None:
        """Switch the live feed on or off and re-sync its subscriptions."""
        self.live_feed.set_enabled(enabled)
        self.sync_subscriptions()

    def _after_refresh(self) -> None:
        # Pick up `ratealerts stream on|off` from another process
        if self.config_path is not None and self.config_path.exists():
            self.set_stream_enabled(load_settings(self.config_path).stream.enabled)
        else:
            self.sync_subscriptions()

    async def check_now(self) -> list[TriggerEvent]:
        """Run a single foreground pass, as for a manual "check now"."""
        return await self.scheduler.refresh_once(Provenance.FOREGROUND_POLL)

    # ==================== Lifecycle ====================

    async def start(self) -> None:
        """Start in the foreground."""
        self._running = True
        self.scheduler.register_background()
        self.dispatcher.refresh_badge()
        self.enter_foreground()

    def enter_foreground(self) -> None:
        self.scheduler.cancel_background()
        self.scheduler.start_foreground()
        self.sync_subscriptions()
        self.live_feed.resume()

    def enter_background(self) -> None:
        self.scheduler.stop_foreground()
        self.live_feed.suspend()
        if not self.scheduler.schedule_background_refresh():
            logger.warning("Alerts will only be checked while in the foreground")

    async def stop(self) -> None:
        self._running = False
        self.scheduler.stop_foreground()
        self.scheduler.cancel_background()
        await self.live_feed.close()

    async def run_forever(self, background: bool = False) -> None:
        """Run until cancelled.

        Args:
            background: Start in background mode (windows only, no timer
                or stream).
        """
        await self.start()
        if background:
            self.enter_background()
        try:
            await asyncio.Event().wait()
        finally:
            await self.stop()
