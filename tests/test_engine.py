"""Property-based tests for the alert engine.

**Feature: rate-alerts**
"""

import tempfile
import threading
from datetime import datetime, timedelta
from pathlib import Path
from unittest.mock import patch

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from ratealerts.db.store import AlertStore
from ratealerts.engine.alert_engine import AlertEngine
from ratealerts.errors import AlertNotFoundError
from ratealerts.models import AlertKind, AlertStatus, Provenance, Subject
from tests.fakes import hold_write_lock, make_alert, make_snapshot

USD_ILS = Subject.currency("USD", "ILS")
rates = st.floats(min_value=0.01, max_value=100.0, allow_nan=False, allow_infinity=False)


class TestSingleFire:
    """
    **Feature: rate-alerts, Property: At Most One Trigger Per Activation**

    *For any* sequence of snapshots, an active alert produces exactly one
    trigger event, for the first satisfying snapshot, and none after that
    until it is re-armed.
    """

    @given(sequence=st.lists(rates, min_size=1, max_size=20), threshold=rates)
    @settings(max_examples=50, deadline=None)
    def test_fires_once_on_first_satisfying_rate(self, sequence: list[float], threshold: float):
        with tempfile.TemporaryDirectory() as tmpdir:
            engine = AlertEngine(AlertStore(Path(tmpdir) / "alerts.db"))
            alert = make_alert(value=repr(threshold))
            engine.store.upsert(alert)

            fired_at = []
            for index, rate in enumerate(sequence):
                events = engine.evaluate(make_snapshot(USD_ILS, rate))
                assert len(events) <= 1
                if events:
                    fired_at.append(index)

            expected = [i for i, rate in enumerate(sequence) if rate >= alert.condition.threshold]
            assert fired_at == expected[:1]
            status = engine.store.get(alert.id).status
            assert status == (AlertStatus.TRIGGERED if expected else AlertStatus.ACTIVE)

    def test_event_carries_alert_and_rate(self, engine: AlertEngine):
        alert = make_alert(value="3.7")
        engine.store.upsert(alert)
        at = datetime(2024, 3, 1, 10, 0)

        [event] = engine.evaluate(make_snapshot(USD_ILS, 3.75, timestamp=at))

        assert event.alert_id == alert.id
        assert event.rate == 3.75
        assert event.alert.status == AlertStatus.TRIGGERED
        assert event.alert.triggered_at == at
        assert event.snapshot.subject == USD_ILS


class TestSubjectMatching:
    """
    **Feature: rate-alerts, Property: Directional Matching**

    A snapshot only affects alerts whose subject matches exactly.
    """

    def test_reverse_pair_does_not_trigger(self, engine: AlertEngine):
        engine.store.upsert(make_alert("USD", "ILS", value="0.1"))
        assert engine.evaluate(make_snapshot(Subject.currency("ILS", "USD"), 100.0)) == []

    def test_crypto_and_currency_do_not_mix(self, engine: AlertEngine):
        engine.store.upsert(make_alert("BTC", "USD", value="10", kind=AlertKind.CRYPTO))
        assert engine.evaluate(make_snapshot(Subject.currency("BTC", "USD"), 50.0)) == []
        assert len(engine.evaluate(make_snapshot(Subject.crypto("BTC"), 50.0))) == 1

    def test_all_matching_alerts_fire(self, engine: AlertEngine):
        alerts = [make_alert(value="3.5"), make_alert(value="3.6"), make_alert(value="3.9")]
        for alert in alerts:
            engine.store.upsert(alert)

        events = engine.evaluate(make_snapshot(USD_ILS, 3.7))

        assert {e.alert_id for e in events} == {alerts[0].id, alerts[1].id}

    def test_active_subjects(self, engine: AlertEngine):
        engine.store.upsert(make_alert("USD", "ILS"))
        engine.store.upsert(make_alert("EUR", "USD"))
        paused = make_alert("GBP", "USD").with_enabled(False)
        engine.store.upsert(paused)

        assert engine.active_subjects() == {USD_ILS, Subject.currency("EUR", "USD")}


class TestPausedAlerts:
    """
    **Feature: rate-alerts, Property: Paused Alerts Never Fire**
    """

    def test_paused_alert_ignored(self, engine: AlertEngine):
        alert = make_alert(value="1")
        engine.store.upsert(alert)
        engine.set_enabled(alert.id, False)

        assert engine.evaluate(make_snapshot(USD_ILS, 5.0)) == []
        assert engine.store.get(alert.id).status == AlertStatus.PAUSED

    def test_enable_triggered_alert_after_pause_rearms(self, engine: AlertEngine):
        alert = make_alert(value="1")
        engine.store.upsert(alert)
        engine.evaluate(make_snapshot(USD_ILS, 5.0))
        engine.set_enabled(alert.id, False)

        enabled = engine.set_enabled(alert.id, True)

        assert enabled.status == AlertStatus.ACTIVE
        assert enabled.triggered_at is None
        assert len(engine.evaluate(make_snapshot(USD_ILS, 5.0))) == 1

    def test_toggle(self, engine: AlertEngine):
        alert = make_alert()
        engine.store.upsert(alert)
        assert engine.toggle_enabled(alert.id).status == AlertStatus.PAUSED
        assert engine.toggle_enabled(alert.id).status == AlertStatus.ACTIVE

    def test_missing_alert(self, engine: AlertEngine):
        with pytest.raises(AlertNotFoundError):
            engine.set_enabled("missing", True)
        with pytest.raises(AlertNotFoundError):
            engine.reset("missing")


class TestManualReset:
    """Manual reset re-arms triggered alerts only."""

    def test_reset_rearms(self, engine: AlertEngine):
        alert = make_alert(value="1")
        engine.store.upsert(alert)
        engine.evaluate(make_snapshot(USD_ILS, 2.0))

        reset = engine.reset(alert.id)

        assert reset.status == AlertStatus.ACTIVE
        assert reset.triggered_at is None
        assert len(engine.evaluate(make_snapshot(USD_ILS, 2.0))) == 1

    def test_reset_leaves_paused_alert_paused(self, engine: AlertEngine):
        alert = make_alert()
        engine.store.upsert(alert)
        engine.set_enabled(alert.id, False)
        assert engine.reset(alert.id).status == AlertStatus.PAUSED


class TestAutoReset:
    """
    **Feature: rate-alerts, Property: Auto-Reset Threshold**

    *For any* triggered alert with an auto-reset period, it re-arms once
    the elapsed time reaches the period and not before.
    """

    def _triggered(self, engine: AlertEngine, at: datetime, hours: int = 1):
        alert = make_alert(value="1", auto_reset_after_hours=hours)
        engine.store.upsert(alert)
        engine.evaluate(make_snapshot(USD_ILS, 2.0, timestamp=at))
        return alert

    def test_not_reset_before_period(self, engine: AlertEngine):
        at = datetime(2024, 1, 1, 12, 0)
        alert = self._triggered(engine, at)

        assert engine.auto_reset_expired(now=at + timedelta(minutes=59)) == []
        assert engine.store.get(alert.id).status == AlertStatus.TRIGGERED

    def test_reset_after_period(self, engine: AlertEngine):
        at = datetime(2024, 1, 1, 12, 0)
        alert = self._triggered(engine, at)

        [reset] = engine.auto_reset_expired(now=at + timedelta(minutes=61))

        assert reset.id == alert.id
        assert reset.status == AlertStatus.ACTIVE
        assert reset.triggered_at is None

    def test_reset_exactly_at_period(self, engine: AlertEngine):
        at = datetime(2024, 1, 1, 12, 0)
        self._triggered(engine, at, hours=2)
        assert len(engine.auto_reset_expired(now=at + timedelta(hours=2))) == 1

    @given(hours=st.integers(min_value=1, max_value=72), elapsed=st.integers(min_value=0, max_value=100 * 60))
    @settings(max_examples=50, deadline=None)
    def test_reset_iff_elapsed_reaches_period(self, hours: int, elapsed: int):
        with tempfile.TemporaryDirectory() as tmpdir:
            engine = AlertEngine(AlertStore(Path(tmpdir) / "alerts.db"))
            at = datetime(2024, 1, 1)
            self._triggered(engine, at, hours=hours)

            reset = engine.auto_reset_expired(now=at + timedelta(minutes=elapsed))

            assert bool(reset) == (elapsed >= hours * 60)

    def test_without_period_never_resets(self, engine: AlertEngine):
        alert = make_alert(value="1")
        engine.store.upsert(alert)
        engine.evaluate(make_snapshot(USD_ILS, 2.0, timestamp=datetime(2020, 1, 1)))
        assert engine.auto_reset_expired(now=datetime(2024, 1, 1)) == []

    def test_rearmed_alert_fires_again(self, engine: AlertEngine):
        at = datetime(2024, 1, 1, 12, 0)
        self._triggered(engine, at)
        engine.auto_reset_expired(now=at + timedelta(hours=2))
        assert len(engine.evaluate(make_snapshot(USD_ILS, 2.0))) == 1


class TestBadge:
    """
    **Feature: rate-alerts, Property: Badge Equals Triggered Count**
    """

    def test_badge_tracks_triggered_alerts(self, engine: AlertEngine):
        alerts = [make_alert(value="1"), make_alert(value="2"), make_alert(value="10")]
        for alert in alerts:
            engine.store.upsert(alert)
        assert engine.badge_count() == 0

        engine.evaluate(make_snapshot(USD_ILS, 5.0))
        assert engine.badge_count() == 2

        engine.reset(alerts[0].id)
        assert engine.badge_count() == 1


class TestConcurrentSources:
    """
    **Feature: rate-alerts, Property: Concurrent Snapshots Fire Once**

    *For any* set of snapshots for the same subject evaluated at the same
    time from different threads, each alert fires at most once in total.
    """

    def test_parallel_evaluations_fire_once(self, engine: AlertEngine):
        alert = make_alert(value="3.7")
        engine.store.upsert(alert)

        workers = 8
        barrier = threading.Barrier(workers)
        results: list[int] = []
        results_lock = threading.Lock()
        provenances = list(Provenance)

        def run(index: int) -> None:
            snapshot = make_snapshot(USD_ILS, 3.8, provenance=provenances[index % len(provenances)])
            barrier.wait()
            events = engine.evaluate(snapshot)
            with results_lock:
                results.append(len(events))

        threads = [threading.Thread(target=run, args=(i,)) for i in range(workers)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert sum(results) == 1
        assert engine.badge_count() == 1


class TestCancellation:
    """
    **Feature: rate-alerts, Property: Cancelled Evaluation Commits Prefix**

    Alerts evaluated before cancellation stay triggered; the rest stay
    active for the next pass.
    """

    def test_cancel_before_start(self, engine: AlertEngine):
        engine.store.upsert(make_alert(value="1"))
        cancel = threading.Event()
        cancel.set()
        assert engine.evaluate(make_snapshot(USD_ILS, 2.0), cancel) == []
        assert engine.badge_count() == 0

    def test_cancel_midway(self, engine: AlertEngine):
        alerts = [make_alert(value="1") for _ in range(3)]
        for alert in alerts:
            engine.store.upsert(alert)
        cancel = threading.Event()
        original = engine._evaluate_alert

        def evaluate_then_cancel(alert_id, snapshot):
            event = original(alert_id, snapshot)
            cancel.set()
            return event

        engine._evaluate_alert = evaluate_then_cancel
        events = engine.evaluate(make_snapshot(USD_ILS, 2.0), cancel)

        assert [e.alert_id for e in events] == [alerts[0].id]
        statuses = [engine.store.get(a.id).status for a in alerts]
        assert statuses == [AlertStatus.TRIGGERED, AlertStatus.ACTIVE, AlertStatus.ACTIVE]


class TestBadgeScenario:
    """Five persisted alerts, two of them triggered."""

    def test_badge_is_two(self, temp_store: AlertStore):
        for i in range(5):
            alert = make_alert(value=str(i + 1))
            temp_store.upsert(alert)
            if i in (1, 3):
                temp_store.update_status(
                    alert.id, AlertStatus.TRIGGERED, triggered_at=datetime.now(), expected=AlertStatus.ACTIVE
                )
        assert AlertEngine(temp_store).badge_count() == 2


class TestBlockedDatabase:
    """
    **Feature: rate-alerts, Property: Single Fire While The Database Is Busy**

    *For any* trigger whose write is blocked by another process, later
    snapshots do not fire the alert again.
    """

    def test_fires_once_while_writes_fail(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            db_path = Path(tmpdir) / "alerts.db"
            engine = AlertEngine(AlertStore(db_path, timeout=0.1))
            alert = make_alert(value="3.7")
            engine.store.upsert(alert)

            with hold_write_lock(db_path):
                first = engine.evaluate(make_snapshot(USD_ILS, 3.8))
                second = engine.evaluate(make_snapshot(USD_ILS, 3.9))

            third = engine.evaluate(make_snapshot(USD_ILS, 4.0))

            assert len(first) + len(second) + len(third) == 1
            assert AlertStore(db_path).get(alert.id).status == AlertStatus.TRIGGERED


class TestSharedDatabase:
    """
    **Feature: rate-alerts, Property: One Notification Across Processes**

    *For any* two engines on the same database, a satisfying snapshot
    fires the alert in only one of them.
    """

    def test_second_engine_does_not_refire(self, temp_store: AlertStore):
        first = AlertEngine(temp_store)
        other_store = AlertStore(temp_store.db_path)
        second = AlertEngine(other_store)
        alert = make_alert(value="3.7")
        temp_store.upsert(alert)
        snapshot = make_snapshot(USD_ILS, 3.8)

        stale = dict(other_store._refresh())
        assert len(first.evaluate(snapshot)) == 1
        with patch.object(other_store, "_refresh", return_value=stale):
            assert second.evaluate(snapshot) == []

        assert second.badge_count() == 1


class TestDeletedDuringEvaluation:
    """An alert deleted between candidate selection and evaluation."""

    def test_deleted_alert_is_skipped(self, engine: AlertEngine):
        alert = make_alert(value="3.7")
        engine.store.upsert(alert)
        original = engine._evaluate_alert

        def delete_then_evaluate(alert_id, snapshot):
            engine.store.delete(alert_id)
            return original(alert_id, snapshot)

        engine._evaluate_alert = delete_then_evaluate

        assert engine.evaluate(make_snapshot(USD_ILS, 3.8)) == []
        assert engine.store.get_all() == []

    def test_delete_waits_for_evaluation(self, engine: AlertEngine):
        alert = make_alert(value="3.7")
        engine.store.upsert(alert)
        errors = []

        def delete():
            try:
                engine.store.delete(alert.id)
            except AlertNotFoundError as e:
                errors.append(e)

        with engine.store.lock_for(alert.id):
            deleter = threading.Thread(target=delete)
            deleter.start()
            deleter.join(timeout=0.1)
            assert deleter.is_alive()

        deleter.join(timeout=2.0)
        assert not deleter.is_alive()
        assert errors == []
        assert engine.store.find(alert.id) is None
