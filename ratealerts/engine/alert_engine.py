"""Alert state machine."""

import logging
import threading
from datetime import datetime
from typing import Callable, Optional

from ratealerts.db.store import AlertStore
from ratealerts.engine.conditions import is_satisfied
from ratealerts.errors import AlertNotFoundError
from ratealerts.models import (
    Alert,
    AlertStatus,
    RateSnapshot,
    Subject,
    TriggerEvent,
)

logger = logging.getLogger(__name__)


class AlertEngine:
    """Evaluates rate snapshots against alerts and drives status transitions.

    Transitions:
        active    -> triggered   satisfying snapshot (one TriggerEvent)
        triggered -> active      auto-reset expiry or manual reset
        any       -> paused      user disables
        paused    -> active      user enables

    Every read-decide-write on an alert runs under that alert's lock from
    the store, so concurrent snapshots for the same subject can fire an
    alert at most once. Different alerts never wait on each other.

    The engine never delivers notifications; callers hand the returned
    events to a dispatcher.
    """

    def __init__(
        self,
        store: AlertStore,
        clock: Callable[[], datetime] = datetime.now,
    ):
        """Initialize the engine.

        Args:
            store: Alert store; the only place alert state is mutated.
            clock: Source of "now" for event timestamps and auto-reset.
        """
        self._store = store
        self._clock = clock

    @property
    def store(self) -> AlertStore:
        return self._store

    def active_alerts(self) -> list[Alert]:
        return [alert for alert in self._store.get_all() if alert.is_active]

    def active_subjects(self) -> set[Subject]:
        """Subjects referenced by at least one active alert."""
        return {alert.subject for alert in self.active_alerts()}

    def evaluate(
        self,
        snapshot: RateSnapshot,
        cancel: Optional[threading.Event] = None,
    ) -> list[TriggerEvent]:
        """Evaluate one snapshot against every matching active alert.

        Args:
            snapshot: Fresh rate observation.
            cancel: When set, alerts not yet evaluated are left for the
                next pass. Transitions already made stay committed.

        Returns:
            Trigger events, one per alert that fired (possibly empty).
        """
        candidates = [
            alert.id
            for alert in self._store.get_all()
            if alert.is_active and alert.subject == snapshot.subject
        ]
        events: list[TriggerEvent] = []

        for index, alert_id in enumerate(candidates):
            if cancel is not None and cancel.is_set():
                logger.info(
                    "Evaluation of %s cancelled, %d alerts left for the next pass",
                    snapshot.subject,
                    len(candidates) - index,
                )
                break
            event = self._evaluate_alert(alert_id, snapshot)
            if event is not None:
                events.append(event)

        return events

    def _evaluate_alert(self, alert_id: str, snapshot: RateSnapshot) -> Optional[TriggerEvent]:
        with self._store.lock_for(alert_id):
            # Re-read under the lock; another source may have fired it already.
            alert = self._store.find(alert_id)
            if alert is None or not alert.is_active or alert.subject != snapshot.subject:
                return None

            if not is_satisfied(alert.condition, snapshot.rate):
                logger.debug(
                    "Alert %s not triggered: rate=%s condition=%s %s",
                    alert.pair_label,
                    snapshot.rate,
                    alert.condition.display_name,
                    alert.condition.threshold,
                )
                return None

            # Another process sharing the database may have fired it already
            try:
                updated = self._store.update_status(
                    alert_id,
                    AlertStatus.TRIGGERED,
                    triggered_at=snapshot.timestamp,
                    expected=AlertStatus.ACTIVE,
                )
            except AlertNotFoundError:
                logger.debug("Alert %s deleted during evaluation", alert_id)
                return None
        if updated is None:
            logger.debug("Alert %s no longer active, not firing", alert_id)
            return None

        logger.info(
            "Alert TRIGGERED: %s %s %s at %s (%s)",
            updated.pair_label,
            updated.condition.display_name,
            updated.target_value,
            snapshot.rate,
            snapshot.provenance.value,
        )
        return TriggerEvent(
            alert_id=alert_id,
            alert=updated,
            snapshot=snapshot,
            rate=snapshot.rate,
            timestamp=self._clock(),
        )

    def auto_reset_expired(self, now: Optional[datetime] = None) -> list[Alert]:
        """Re-arm triggered alerts whose auto-reset period has elapsed.

        Args:
            now: Reference time. Defaults to the engine clock.

        Returns:
            The alerts that were reset.
        """
        now = now or self._clock()
        reset: list[Alert] = []

        for alert in self._store.get_all():
            if alert.status != AlertStatus.TRIGGERED or alert.auto_reset_after_hours is None:
                continue
            with self._store.lock_for(alert.id):
                current = self._store.find(alert.id)
                if not self._reset_due(current, now):
                    continue
                try:
                    updated = self._store.update_status(
                        alert.id, AlertStatus.ACTIVE, expected=AlertStatus.TRIGGERED
                    )
                except AlertNotFoundError:
                    continue
            if updated is None:
                continue
            logger.info(
                "Auto-reset alert %s after %d hours",
                updated.pair_label,
                current.auto_reset_after_hours,
            )
            reset.append(updated)

        return reset

    @staticmethod
    def _reset_due(alert: Optional[Alert], now: datetime) -> bool:
        if alert is None or alert.status != AlertStatus.TRIGGERED:
            return False
        if alert.triggered_at is None or alert.auto_reset_after_hours is None:
            return False
        hours_since_trigger = (now - alert.triggered_at).total_seconds() / 3600
        return hours_since_trigger >= alert.auto_reset_after_hours

    def reset(self, alert_id: str) -> Alert:
        """Manually re-arm a triggered alert.

        Paused alerts stay paused; they re-arm when enabled.

        Raises:
            AlertNotFoundError: If no alert has this ID.
        """
        with self._store.lock_for(alert_id):
            alert = self._store.get(alert_id)
            if alert.status != AlertStatus.TRIGGERED:
                return alert
            updated = self._store.update_status(
                alert_id, AlertStatus.ACTIVE, expected=AlertStatus.TRIGGERED
            )
            if updated is None:
                return self._store.get(alert_id)
        logger.info("Alert %s reset", updated.pair_label)
        return updated

    def set_enabled(self, alert_id: str, enabled: bool) -> Alert:
        """Enable or disable an alert.

        Disabling pauses the alert; enabling a paused alert makes it
        active again (never triggered).

        Raises:
            AlertNotFoundError: If no alert has this ID.
        """
        return self._change_enabled(alert_id, lambda alert: enabled)

    def toggle_enabled(self, alert_id: str) -> Alert:
        return self._change_enabled(alert_id, lambda alert: not alert.enabled)

    def _change_enabled(self, alert_id: str, decide: Callable[[Alert], bool]) -> Alert:
        with self._store.lock_for(alert_id):
            alert = self._store.get(alert_id)
            enabled = decide(alert)
            updated = alert.with_enabled(enabled)
            if updated != alert:
                self._store.upsert(updated)
        logger.info(
            "Alert %s %s", updated.pair_label, "enabled" if enabled else "disabled"
        )
        return updated

    def badge_count(self) -> int:
        """Number of alerts currently triggered, recomputed from the store."""
        return self._store.count_by_status(AlertStatus.TRIGGERED)
