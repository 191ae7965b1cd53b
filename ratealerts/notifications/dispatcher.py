"""Turns trigger events into notifications and badge updates."""

import logging
from typing import Iterable

from ratealerts.engine.alert_engine import AlertEngine
from ratealerts.errors import PermissionDeniedError
from ratealerts.models import TriggerEvent
from ratealerts.notifications.base import BaseNotifier

logger = logging.getLogger(__name__)

NOTIFICATION_TITLE = "Currency Rate Alert"


def format_notification_body(event: TriggerEvent) -> str:
    """Build the notification text for a trigger event.

    Example: ``USD → ILS crossed the value Above 3.7000. Current rate: 3.7150``
    """
    alert = event.alert
    return (
        f"{alert.pair_label} crossed the value {alert.condition.display_name} "
        f"{float(alert.target_value):.4f}. Current rate: {event.rate:.4f}"
    )


class NotificationDispatcher:
    """Delivers exactly one notification per trigger event.

    The badge is always recomputed from the alert store after a batch, even
    when notification delivery is not permitted.
    """

    def __init__(self, notifier: BaseNotifier, engine: AlertEngine):
        self._notifier = notifier
        self._engine = engine

    def dispatch(self, events: Iterable[TriggerEvent]) -> int:
        """Deliver notifications for a batch of events.

        Args:
            events: Trigger events from the engine.

        Returns:
            Number of notifications actually shown.
        """
        delivered = 0
        for event in events:
            try:
                self._notifier.show(NOTIFICATION_TITLE, format_notification_body(event))
                delivered += 1
                logger.info("Notification shown for alert %s", event.alert_id)
            except PermissionDeniedError as e:
                logger.warning(
                    "Notification for alert %s dropped: %s", event.alert_id, e
                )
        self.refresh_badge()
        return delivered

    def refresh_badge(self) -> int:
        """Recompute the badge from the store and push it to the notifier."""
        count = self._engine.badge_count()
        try:
            self._notifier.set_badge(count)
        except PermissionDeniedError as e:
            logger.warning("Badge update not permitted: %s", e)
        return count
