"""Tests for LifecycleWorker (background start/stop dispatch)."""

import threading
from unittest.mock import MagicMock

import pytest
from pytestqt.qtbot import QtBot

from easyftp.core.errors import AddressInUseError, EngineFailureError, ErrorKind
from easyftp.core.facade import ServerFacade
from easyftp.core.worker import LifecycleWorker
from easyftp.models.config import ServerConfig

pytestmark = pytest.mark.timeout(30)

CONFIG = ServerConfig(root_dir="/srv/ftp")


@pytest.fixture
def facade() -> MagicMock:
    return MagicMock(spec=ServerFacade)


@pytest.fixture
def worker(qtbot: QtBot, facade: MagicMock) -> LifecycleWorker:
    return LifecycleWorker(facade)


class TestLifecycleWorkerBasics:
    """Test dispatch and completion signals."""

    def test_initially_idle(self, worker: LifecycleWorker) -> None:
        """Test a new worker is not busy."""
        assert worker.is_busy is False
        assert worker.wait(0.1) is True

    def test_start_emits_started(self, qtbot: QtBot, worker: LifecycleWorker, facade: MagicMock) -> None:
        """Test a successful start reports the address."""
        facade.start_server.return_value = "ftp://192.0.2.10:2121"
        busy: list[bool] = []
        worker.busy_changed.connect(busy.append)

        with qtbot.waitSignal(worker.started, timeout=5000) as blocker:
            assert worker.request_start(CONFIG) is True

        assert blocker.args == ["ftp://192.0.2.10:2121"]
        qtbot.waitUntil(lambda: busy == [True, False], timeout=5000)
        facade.start_server.assert_called_once_with(CONFIG)

    def test_start_failure_emits_failed(self, qtbot: QtBot, worker: LifecycleWorker, facade: MagicMock) -> None:
        """Test control-plane errors are forwarded unchanged."""
        facade.start_server.side_effect = AddressInUseError

        with qtbot.waitSignal(worker.failed, timeout=5000) as blocker:
            worker.request_start(CONFIG)

        assert isinstance(blocker.args[0], AddressInUseError)

    def test_unexpected_error_becomes_engine_failure(
        self, qtbot: QtBot, worker: LifecycleWorker, facade: MagicMock
    ) -> None:
        """Test raw exceptions never reach the UI."""
        facade.stop_server.side_effect = RuntimeError("boom")

        with qtbot.waitSignal(worker.failed, timeout=5000) as blocker:
            worker.request_stop()

        error = blocker.args[0]
        assert isinstance(error, EngineFailureError)
        assert error.kind is ErrorKind.ENGINE_FAILURE

    def test_stop_emits_stopped(self, qtbot: QtBot, worker: LifecycleWorker, facade: MagicMock) -> None:
        """Test a completed stop is reported."""
        with qtbot.waitSignal(worker.stopped, timeout=5000):
            worker.request_stop()
        facade.stop_server.assert_called_once_with()

    def test_failed_start_does_not_emit_started(
        self, qtbot: QtBot, worker: LifecycleWorker, facade: MagicMock
    ) -> None:
        """Test only one completion signal fires per operation."""
        facade.start_server.side_effect = AddressInUseError

        with qtbot.assertNotEmitted(worker.started), qtbot.waitSignal(worker.failed, timeout=5000):
            worker.request_start(CONFIG)


class TestLifecycleWorkerBusy:
    """Test that only one operation runs at a time."""

    def test_second_request_rejected_while_busy(
        self, qtbot: QtBot, worker: LifecycleWorker, facade: MagicMock
    ) -> None:
        """Test requests made during an in-flight op are refused, not queued."""
        gate = threading.Event()
        entered = threading.Event()

        def slow_start(config: ServerConfig) -> str:
            entered.set()
            gate.wait(5)
            return "ftp://192.0.2.10:2121"

        facade.start_server.side_effect = slow_start
        assert worker.request_start(CONFIG) is True
        assert entered.wait(5)

        assert worker.is_busy is True
        assert worker.request_start(CONFIG) is False
        assert worker.request_stop() is False

        with qtbot.waitSignal(worker.started, timeout=5000):
            gate.set()
        assert worker.wait(5) is True
        assert worker.is_busy is False
        facade.start_server.assert_called_once()
        facade.stop_server.assert_not_called()

        # idle again: the next request is accepted
        with qtbot.waitSignal(worker.stopped, timeout=5000):
            assert worker.request_stop() is True
        facade.stop_server.assert_called_once()
