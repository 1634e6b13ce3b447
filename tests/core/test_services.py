"""Tests for the service manager."""

import copy
from unittest import mock

import pytest

from screencap.core import services
from screencap.core.config import DEFAULT_CONFIG
from screencap.core.services import ServiceManager, ServiceState
from screencap.evidence import ocr


@pytest.fixture
def notify(monkeypatch):
    sender = mock.Mock(return_value=True)
    monkeypatch.setattr(services, "send_desktop_notification", sender)
    return sender


@pytest.fixture
def manager(monkeypatch, tmp_path, notify):
    """A manager on a tmp database whose services are replaced by mocks."""
    monkeypatch.setattr(services, "ensure_data_directories", lambda: {})
    monkeypatch.setattr(ocr.tiktoken, "get_encoding", lambda name: mock.Mock())

    manager = ServiceManager(
        db_path=tmp_path / "screencap.sqlite",
        config=copy.deepcopy(DEFAULT_CONFIG),
        api_key="sk-test",
    )
    for name in ("capture", "worker"):
        manager._starters[name] = mock.Mock(name=f"start_{name}")
        manager._stoppers[name] = mock.Mock(name=f"stop_{name}")
        manager._checks[name] = mock.Mock(name=f"check_{name}", return_value=True)
    yield manager
    manager._health_stop.set()


class TestWiring:
    def test_components_share_store_and_bus(self, manager):
        assert manager.merge_engine.store is manager.store
        assert manager.worker.store is manager.store
        assert manager.worker.queue is manager.queue
        assert manager.normalizer.notifications is manager.notifications
        assert manager.merge_engine.notifications is manager.notifications
        assert manager.gateway.is_configured()

    def test_status_before_start(self, manager):
        for check in manager._checks.values():
            check.return_value = False

        status = manager.get_status()

        assert status["healthy"]
        assert status["services"]["capture"]["state"] == ServiceState.STOPPED.value
        assert status["queue"]["queued"] == 0
        assert status["classifier_configured"]


class TestLifecycle:
    """Test starting, stopping and restarting services."""

    def test_start_all(self, manager, notify):
        results = manager.start_all()

        assert results == {"worker": True, "capture": True}
        manager._starters["capture"].assert_called_once()
        assert manager.get_status()["services"]["worker"]["state"] == "running"
        notify.assert_not_called()

    def test_worker_only(self, manager):
        results = manager.start_all(capture=False)

        assert results == {"worker": True}
        manager._starters["capture"].assert_not_called()

    def test_failed_start_is_reported(self, manager, notify):
        manager._starters["capture"].side_effect = RuntimeError("no display")

        results = manager.start_all()

        assert results["capture"] is False
        capture = manager.get_status()["services"]["capture"]
        assert capture["state"] == "failed"
        assert capture["last_error"] == "no display"
        notify.assert_called_once()

    def test_stop_all(self, manager):
        manager.start_all(notify=False)
        manager.stop_all()

        manager._stoppers["capture"].assert_called_once()
        manager._stoppers["worker"].assert_called_once()
        assert manager.get_status()["services"]["worker"]["state"] == "stopped"

    def test_restart_unknown_service(self, manager):
        assert manager.restart_service("printer") is False


class TestHealthCheck:
    def test_restarts_dead_service(self, manager):
        manager.start_all(notify=False)
        manager._checks["worker"].return_value = False

        manager.perform_health_check()

        assert manager._starters["worker"].call_count == 2
        assert manager._services["worker"].restart_count == 1

    def test_gives_up_after_max_restarts(self, manager, notify):
        manager.start_all(notify=False)
        manager._checks["capture"].return_value = False

        for _ in range(ServiceManager.MAX_RESTART_ATTEMPTS + 1):
            manager.perform_health_check()

        assert manager._services["capture"].state == ServiceState.FAILED
        assert notify.call_count == 1
