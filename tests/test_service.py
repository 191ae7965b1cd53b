"""Tests for the composed alert service and the CLI.

**Feature: rate-alerts**
"""

import tempfile
from pathlib import Path

import pytest
import toml
from click.testing import CliRunner

from ratealerts.cli.main import cli
from ratealerts.config import Settings, StorageSettings, load_settings, save_stream_enabled
from ratealerts.db.store import AlertStore
from ratealerts.models import AlertKind, AlertStatus, Provenance, Subject
from ratealerts.scheduling.background import BackgroundStatus
from ratealerts.service import AlertService
from tests.fakes import (
    FakeBackground,
    FakeFetcher,
    FakeStream,
    RecordingNotifier,
    make_alert,
    make_snapshot,
    wait_for,
)

USD_ILS = Subject.currency("USD", "ILS")
BTC = Subject.crypto("BTC")


@pytest.fixture
def settings():
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Settings(storage=StorageSettings(db_path=Path(tmpdir) / "alerts.db"))


def make_service(settings: Settings, rates=None, **kwargs) -> AlertService:
    kwargs.setdefault("notifier", RecordingNotifier())
    kwargs.setdefault("stream", FakeStream())
    kwargs.setdefault("background", FakeBackground())
    return AlertService(settings, fetcher=FakeFetcher(rates or {}), **kwargs)


class TestAlertService:
    """
    **Feature: rate-alerts, Property: End-To-End Trigger**

    Rates from any source reach the engine and produce one notification.
    """

    @pytest.mark.asyncio
    async def test_check_now(self, settings: Settings):
        service = make_service(settings, {USD_ILS: 3.8})
        alert = service.add_alert(make_alert(value="3.7"))

        events = await service.check_now()

        assert [e.alert_id for e in events] == [alert.id]
        assert len(service.notifier.shown) == 1
        assert service.store.get(alert.id).status == AlertStatus.TRIGGERED

    @pytest.mark.asyncio
    async def test_lifecycle_moves_work_between_sources(self, settings: Settings):
        stream, background = FakeStream(), FakeBackground()
        service = make_service(settings, stream=stream, background=background)
        service.add_alert(make_alert("BTC", "USD", value="100000", kind=AlertKind.CRYPTO))

        await service.start()
        await wait_for(lambda: stream.connections)
        assert service.scheduler.foreground_running
        assert background.handler is not None
        assert stream.connections[0].subjects == frozenset({BTC})

        service.enter_background()
        assert not service.scheduler.foreground_running
        assert service.live_feed.suspended
        assert len(background.submitted) == 1

        service.enter_foreground()
        assert service.scheduler.foreground_running
        assert background.cancelled >= 1
        await wait_for(lambda: len(stream.connections) == 2)

        await service.stop()
        assert not service.live_feed.is_running

    @pytest.mark.asyncio
    async def test_disabling_last_alert_disconnects_feed(self, settings: Settings):
        stream = FakeStream()
        service = make_service(settings, stream=stream)
        alert = service.add_alert(make_alert("BTC", "USD", value="100000", kind=AlertKind.CRYPTO))

        await service.start()
        await wait_for(lambda: service.live_feed.is_running)
        service.set_enabled(alert.id, False)

        assert not service.live_feed.is_running
        assert service.live_feed.subscriptions == frozenset()
        await service.stop()

    @pytest.mark.asyncio
    async def test_background_denied_keeps_foreground_only(self, settings: Settings):
        background = FakeBackground(status=BackgroundStatus.DENIED)
        service = make_service(settings, background=background)

        await service.start()
        service.enter_background()

        assert not service.scheduler.background_available
        assert background.submitted == []
        await service.stop()

    def test_badge_refreshed_after_reset(self, settings: Settings):
        service = make_service(settings)
        alert = service.add_alert(make_alert(value="1"))
        service.pipeline.process(make_snapshot(USD_ILS, 2.0, provenance=Provenance.STREAM))

        service.reset_alert(alert.id)

        assert service.notifier.badges[-1] == 0


class TestStreamSwitch:
    """
    **Feature: rate-alerts, Property: Stream Switch**

    Switching the live stream off disconnects it and clears its
    subscriptions; a running service picks the switch up from the config
    file after its next refresh.
    """

    @pytest.mark.asyncio
    async def test_switch_off_and_on(self, settings: Settings):
        stream = FakeStream()
        service = make_service(settings, stream=stream)
        service.add_alert(make_alert("BTC", "USD", value="100000", kind=AlertKind.CRYPTO))

        await service.start()
        await wait_for(lambda: service.live_feed.is_running)
        service.set_stream_enabled(False)

        assert not service.live_feed.is_running
        assert service.live_feed.subscriptions == frozenset()

        service.set_stream_enabled(True)
        await wait_for(lambda: service.live_feed.is_running)
        assert service.live_feed.subscriptions == frozenset({BTC})
        await service.stop()

    @pytest.mark.asyncio
    async def test_config_change_applied_after_refresh(self, settings: Settings):
        config_path = settings.storage.db_path.parent / "config.toml"
        service = make_service(settings, config_path=config_path)
        service.add_alert(make_alert("BTC", "USD", value="100000", kind=AlertKind.CRYPTO))

        await service.start()
        await wait_for(lambda: service.live_feed.is_running)
        save_stream_enabled(False, config_path)
        await service.check_now()

        assert not service.live_feed.enabled
        assert not service.live_feed.is_running
        await service.stop()


class TestCli:
    """Alert management commands."""

    @pytest.fixture
    def config_path(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "config.toml"
            path.write_text(toml.dumps({"storage": {"db_path": str(Path(tmpdir) / "alerts.db")}}))
            yield path

    def _store(self, config_path: Path) -> AlertStore:
        return AlertStore(config_path.parent / "alerts.db")

    def test_create_and_list(self, config_path: Path):
        runner = CliRunner()

        result = runner.invoke(cli, ["--config", str(config_path), "alert", "usd", "ils", "above", "3.70"])
        assert result.exit_code == 0, result.output
        assert "USD → ILS" in result.output

        result = runner.invoke(cli, ["--config", str(config_path), "crypto-alert", "btc", "below", "60000"])
        assert result.exit_code == 0, result.output

        alerts = self._store(config_path).get_all()
        assert [a.pair_label for a in alerts] == ["USD → ILS", "BTC → USD"]
        assert str(alerts[0].target_value) == "3.70"

        result = runner.invoke(cli, ["--config", str(config_path), "alerts"])
        assert result.exit_code == 0
        assert "Total: 2 alerts" in result.output

    def test_rejects_bad_value(self, config_path: Path):
        result = CliRunner().invoke(cli, ["--config", str(config_path), "alert", "USD", "ILS", "above", "0"])
        assert result.exit_code != 0
        assert self._store(config_path).get_all() == []

    def test_toggle_reset_remove(self, config_path: Path):
        store = self._store(config_path)
        alert = make_alert(value="1")
        store.upsert(alert)
        runner = CliRunner()
        base = ["--config", str(config_path)]

        assert runner.invoke(cli, base + ["toggle", alert.id]).exit_code == 0
        assert store.get(alert.id).status == AlertStatus.PAUSED

        assert runner.invoke(cli, base + ["toggle", alert.id]).exit_code == 0
        assert store.get(alert.id).status == AlertStatus.ACTIVE

        assert runner.invoke(cli, base + ["alerts", "--remove", alert.id]).exit_code == 0
        assert store.get_all() == []

        result = runner.invoke(cli, base + ["reset", alert.id])
        assert result.exit_code == 1

    def test_badge(self, config_path: Path):
        result = CliRunner().invoke(cli, ["--config", str(config_path), "badge"])
        assert result.exit_code == 0
        assert "0 triggered alerts" in result.output

    def test_stream_off_and_on(self, config_path: Path):
        runner = CliRunner()
        base = ["--config", str(config_path)]

        result = runner.invoke(cli, base + ["stream", "off"])
        assert result.exit_code == 0, result.output
        saved = toml.load(config_path)
        assert saved["stream"]["enabled"] is False
        assert saved["storage"]["db_path"] == str(config_path.parent / "alerts.db")
        assert not load_settings(config_path).stream.enabled

        assert runner.invoke(cli, base + ["stream", "ON"]).exit_code == 0
        assert load_settings(config_path).stream.enabled

    def test_stream_rejects_unknown_state(self, config_path: Path):
        result = CliRunner().invoke(cli, ["--config", str(config_path), "stream", "maybe"])
        assert result.exit_code != 0
        assert "stream" not in toml.load(config_path)
