"""Evaluate-then-dispatch step shared by every rate source."""

import threading
from typing import Optional

from ratealerts.engine.alert_engine import AlertEngine
from ratealerts.models import RateSnapshot, TriggerEvent
from ratealerts.notifications.dispatcher import NotificationDispatcher


class SnapshotPipeline:
    """Feeds a snapshot through the engine and hands events to the dispatcher.

    Safe to call from several threads at once; the engine serializes
    transitions per alert.
    """

    def __init__(self, engine: AlertEngine, dispatcher: NotificationDispatcher):
        self._engine = engine
        self._dispatcher = dispatcher

    def process(
        self,
        snapshot: RateSnapshot,
        cancel: Optional[threading.Event] = None,
    ) -> list[TriggerEvent]:
        events = self._engine.evaluate(snapshot, cancel)
        if events:
            self._dispatcher.dispatch(events)
        return events

    def refresh_badge(self) -> int:
        return self._dispatcher.refresh_badge()
