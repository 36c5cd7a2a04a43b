"""Server lifecycle controller.

ServerController is the single owner of the embedded FTP server's run state.
It serializes start/stop, keeps status reads non-blocking, and watches the
engine so a dead listener is reported as STOPPED instead of a stale RUNNING.

Usage:
    from easyftp.core.controller import ServerController

    controller = ServerController()
    controller.state_changed.connect(on_state)
    address = controller.start(config)   # "ftp://192.168.1.20:2121"
    controller.stop()
"""

from __future__ import annotations

import logging
import os
import threading
from collections.abc import Callable
from pathlib import Path

from PySide6.QtCore import QObject, Signal

from easyftp.core.engine import FtpEngine
from easyftp.core.errors import (
    AlreadyRunningError,
    EasyFtpError,
    EngineFailureError,
    InvalidConfigError,
    NotFoundError,
)
from easyftp.core.network import discover_address
from easyftp.models.config import MAX_PORT, MIN_PORT, ServerConfig
from easyftp.models.server_state import ServerState

logger = logging.getLogger(__name__)

# Seconds in-flight transfers may take to finish before sessions are aborted
DEFAULT_GRACE_PERIOD_S = 5.0
# Longest a stop() waits for a concurrent start() to finish binding
OPERATION_LOCK_TIMEOUT_S = 15.0
# Shown when no advertisable interface exists
FALLBACK_HOST = "127.0.0.1"

EngineFactory = Callable[..., FtpEngine]


def validate_config(config: ServerConfig) -> None:
    """Check a configuration before any state is touched.

    Empty usernames or passwords are rejected: the server only offers the
    single configured account and never anonymous access.

    Args:
        config: Configuration to check.

    Raises:
        InvalidConfigError: With a user-facing reason.
    """
    if not config.root_dir.strip():
        msg = "Choose a root directory"
        raise InvalidConfigError(msg)

    root = Path(config.root_dir)
    if not root.is_dir():
        msg = f"Root directory does not exist: {config.root_dir}"
        raise InvalidConfigError(msg)
    if not os.access(root, os.R_OK | os.W_OK | os.X_OK):
        msg = f"Root directory is not readable and writable: {config.root_dir}"
        raise InvalidConfigError(msg)

    if not config.port_in_range:
        msg = f"Port must be {MIN_PORT}–{MAX_PORT}, got {config.port}"
        raise InvalidConfigError(msg)

    if not config.username.strip():
        msg = "Username must not be empty"
        raise InvalidConfigError(msg)
    if not config.password:
        msg = "Password must not be empty"
        raise InvalidConfigError(msg)


class ServerController(QObject):
    """State machine around one embedded FTP engine.

    States: STOPPED -> STARTING -> RUNNING -> STOPPING -> STOPPED.
    ``start`` and ``stop`` are serialized by an operation lock; ``start``
    never queues behind another lifecycle operation, it is rejected.
    ``is_running``/``current_address`` only take a short state lock.

    Signals:
        state_changed: Emitted with the new state value on every transition.
        error_occurred: Emitted with a message when the engine dies while
            running.
    """

    state_changed = Signal(str)
    error_occurred = Signal(str)

    def __init__(
        self,
        grace_period: float = DEFAULT_GRACE_PERIOD_S,
        engine_factory: EngineFactory = FtpEngine,
        address_resolver: Callable[[], str] = discover_address,
        parent: QObject | None = None,
    ) -> None:
        """Initialize the controller.

        Args:
            grace_period: Seconds stop() waits for in-flight transfers.
            engine_factory: Builds an engine for one run.
            address_resolver: Returns the host address to advertise.
            parent: Optional parent QObject.
        """
        super().__init__(parent)
        self._grace_period = grace_period
        self._engine_factory = engine_factory
        self._address_resolver = address_resolver

        self._op_lock = threading.Lock()
        self._state_lock = threading.Lock()
        self._state = ServerState.STOPPED
        self._engine: FtpEngine | None = None
        self._config: ServerConfig | None = None
        self._address = ""
        self._last_error: EasyFtpError | None = None
        self._run_id = 0

    @property
    def state(self) -> ServerState:
        """Return the current lifecycle state."""
        with self._state_lock:
            return self._state

    @property
    def running_config(self) -> ServerConfig | None:
        """Return the config captured by the running server, if any."""
        with self._state_lock:
            return self._config if self._state is ServerState.RUNNING else None

    @property
    def last_error(self) -> EasyFtpError | None:
        """Return the last failure detected while running, if any."""
        with self._state_lock:
            return self._last_error

    @property
    def grace_period(self) -> float:
        """Return the shutdown grace period in seconds."""
        return self._grace_period

    def is_running(self) -> bool:
        """Return True iff the server is RUNNING."""
        with self._state_lock:
            return self._state is ServerState.RUNNING

    def current_address(self) -> str:
        """Return ``ftp://host:port`` while running, else an empty string."""
        with self._state_lock:
            return self._address if self._state is ServerState.RUNNING else ""

    def start(self, config: ServerConfig) -> str:
        """Start the FTP server with the given configuration.

        Args:
            config: Validated configuration. It is captured as-is; later
                edits only apply to the next start.

        Returns:
            Advertised address, e.g. ``ftp://192.168.1.20:2121``.

        Raises:
            InvalidConfigError: If the config fails validation.
            AlreadyRunningError: If the server is not STOPPED or another
                lifecycle operation is in flight.
            AddressInUseError: If the port is taken.
            PermissionDeniedError: If the OS refuses the port.
            EngineFailureError: For any other engine failure.
        """
        validate_config(config)

        if not self._op_lock.acquire(blocking=False):
            logger.info("Start rejected: another lifecycle operation is in progress")
            raise AlreadyRunningError
        try:
            with self._state_lock:
                if self._state is not ServerState.STOPPED:
                    logger.info("Start rejected: server is %s", self._state.value)
                    raise AlreadyRunningError
                self._run_id += 1
                run_id = self._run_id
            self._set_state(ServerState.STARTING)

            logger.info("Starting FTP server on port %d, root %s", config.port, config.root_dir)
            try:
                engine = self._engine_factory(
                    config.root_dir,
                    config.username,
                    config.password,
                    on_failure=lambda message: self._on_engine_failure(run_id, message),
                )
                bound_port = engine.start(config.port)
            except EasyFtpError as e:
                logger.warning("FTP server failed to start: %s", e.user_message)
                self._set_state(ServerState.STOPPED)
                raise
            except Exception as e:
                logger.exception("FTP engine raised during start")
                self._set_state(ServerState.STOPPED)
                raise EngineFailureError from e

            address = self._format_address(bound_port)
            with self._state_lock:
                if self._state is not ServerState.STARTING:
                    # engine died between bind and here; _on_engine_failure already reset state
                    failure = self._last_error or EngineFailureError()
                    raise failure
                self._engine = engine
                self._config = config
                self._address = address
                self._last_error = None
            self._set_state(ServerState.RUNNING)
            logger.info("FTP server running at %s", address)
            return address
        finally:
            self._op_lock.release()

    def stop(self) -> None:
        """Stop the server; a no-op success when already stopped.

        Returns after the listening port is released and sessions are closed,
        waiting at most the grace period (plus a short force-close window).

        Raises:
            EngineFailureError: If a concurrent start did not finish within
                OPERATION_LOCK_TIMEOUT_S, or the engine could not close its
                listener. The state still ends STOPPED in the latter case.
        """
        if not self._op_lock.acquire(timeout=OPERATION_LOCK_TIMEOUT_S):
            msg = "Another server operation is still in progress"
            raise EngineFailureError(msg)
        try:
            with self._state_lock:
                if self._state is ServerState.STOPPED:
                    logger.debug("Stop requested while already stopped")
                    return
                engine = self._engine
            self._set_state(ServerState.STOPPING)

            logger.info("Stopping FTP server (grace period %.1fs)", self._grace_period)
            try:
                if engine is not None:
                    engine.stop(self._grace_period)
            finally:
                with self._state_lock:
                    self._engine = None
                    self._config = None
                    self._address = ""
                self._set_state(ServerState.STOPPED)
            logger.info("FTP server stopped")
        finally:
            self._op_lock.release()

    def _format_address(self, port: int) -> str:
        """Build the advertised ``ftp://`` address for a bound port."""
        try:
            host = self._address_resolver()
        except NotFoundError:
            logger.warning("No network interface found, advertising %s", FALLBACK_HOST)
            host = FALLBACK_HOST
        return f"ftp://{host}:{port}"

    def _on_engine_failure(self, run_id: int, message: str) -> None:
        """Engine callback (reactor thread) when the listener dies unexpectedly.

        Only takes the state lock, never the operation lock, so it cannot
        deadlock against a stop() waiting on the reactor.
        """
        with self._state_lock:
            if run_id != self._run_id or self._state not in (
                ServerState.STARTING,
                ServerState.RUNNING,
            ):
                return
            self._last_error = EngineFailureError(message)
            self._engine = None
            self._config = None
            self._address = ""
        logger.error("FTP engine failure: %s", message)
        self._set_state(ServerState.STOPPED)
        self.error_occurred.emit(message)

    def _set_state(self, state: ServerState) -> None:
        """Update state and emit state_changed if it changed."""
        with self._state_lock:
            if state is self._state:
                return
            previous = self._state
            self._state = state
        logger.debug("Server state %s -> %s", previous.value, state.value)
        self.state_changed.emit(state.value)
