"""Shared fixtures for the rate alert tests."""

import tempfile
from pathlib import Path

import pytest

from ratealerts.db.store import AlertStore
from ratealerts.engine.alert_engine import AlertEngine
from ratealerts.notifications.dispatcher import NotificationDispatcher
from ratealerts.pipeline import SnapshotPipeline
from tests.fakes import RecordingNotifier


@pytest.fixture
def temp_store():
    """Alert store on a temporary database."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield AlertStore(Path(tmpdir) / "alerts.db")


@pytest.fixture
def engine(temp_store: AlertStore) -> AlertEngine:
    return AlertEngine(temp_store)


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def pipeline(engine: AlertEngine, notifier: RecordingNotifier) -> SnapshotPipeline:
    return SnapshotPipeline(engine, NotificationDispatcher(notifier, engine))
