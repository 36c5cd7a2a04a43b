"""Background dispatch of blocking lifecycle operations for the UI.

``start`` may block on bind and ``stop`` for up to the grace period, so the
UI hands them to LifecycleWorker, which runs one operation at a time on a
background thread and reports completion via Qt signals (delivered to the
UI thread by Qt's queued connections).
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable

from PySide6.QtCore import QObject, Signal

from easyftp.core.errors import EasyFtpError, EngineFailureError
from easyftp.core.facade import ServerFacade
from easyftp.models.config import ServerConfig

logger = logging.getLogger(__name__)


class LifecycleWorker(QObject):
    """Runs start/stop requests off the UI thread, one at a time.

    A request made while another is in flight is rejected (the request
    method returns False) rather than queued.

    Example:
        worker = LifecycleWorker(facade)
        worker.started.connect(lambda address: print(f"Serving at {address}"))
        worker.failed.connect(lambda err: print(err.user_message))
        worker.request_start(config)
    """

    started = Signal(str)  # advertised address
    stopped = Signal()
    failed = Signal(object)  # EasyFtpError
    busy_changed = Signal(bool)

    def __init__(self, facade: ServerFacade, parent: QObject | None = None) -> None:
        """Initialize the worker.

        Args:
            facade: Facade the operations are delegated to.
            parent: Optional parent QObject.
        """
        super().__init__(parent)
        self._facade = facade
        self._lock = threading.Lock()
        self._thread: threading.Thread | None = None

    @property
    def is_busy(self) -> bool:
        """Return True while an operation is in flight."""
        with self._lock:
            return self._thread is not None

    def request_start(self, config: ServerConfig) -> bool:
        """Start the server in the background.

        Args:
            config: Configuration to start with.

        Returns:
            True if dispatched, False if another operation is in flight.
        """
        return self._dispatch("start", lambda: self._run_start(config))

    def request_stop(self) -> bool:
        """Stop the server in the background.

        Returns:
            True if dispatched, False if another operation is in flight.
        """
        return self._dispatch("stop", self._run_stop)

    def wait(self, timeout: float | None = None) -> bool:
        """Wait for the in-flight operation to finish.

        Args:
            timeout: Maximum seconds to wait, or None for no limit.

        Returns:
            True if no operation is in flight afterwards.
        """
        with self._lock:
            thread = self._thread
        if thread is not None:
            thread.join(timeout)
        return not self.is_busy

    def _dispatch(self, name: str, target: Callable[[], None]) -> bool:
        with self._lock:
            if self._thread is not None:
                logger.info("Rejected %s request: operation already in flight", name)
                return False
            self._thread = threading.Thread(
                target=self._run, args=(target,), name=f"lifecycle-{name}", daemon=True
            )
            thread = self._thread
        self.busy_changed.emit(True)
        thread.start()
        return True

    def _run(self, target: Callable[[], None]) -> None:
        try:
            target()
        finally:
            with self._lock:
                self._thread = None
            self.busy_changed.emit(False)

    def _run_start(self, config: ServerConfig) -> None:
        try:
            address = self._facade.start_server(config)
        except EasyFtpError as e:
            self.failed.emit(e)
        except Exception:
            logger.exception("Unexpected error while starting server")
            self.failed.emit(EngineFailureError())
        else:
            self.started.emit(address)

    def _run_stop(self) -> None:
        try:
            self._facade.stop_server()
        except EasyFtpError as e:
            self.failed.emit(e)
        except Exception:
            logger.exception("Unexpected error while stopping server")
            self.failed.emit(EngineFailureError())
        else:
            self.stopped.emit()
