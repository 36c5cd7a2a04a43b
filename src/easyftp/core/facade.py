"""The API surface the UI talks to.

ServerFacade validates raw input, delegates to ConfigStore,
AutoStartRegistrar and ServerController, and guarantees that every failure
leaving it is an EasyFtpError with a stable kind and a short message. It
holds no lifecycle state of its own.
"""

from __future__ import annotations

import logging

from easyftp.core.autostart import AutoStartRegistrar, create_registrar
from easyftp.core.config import ConfigStore
from easyftp.core.controller import ServerController, validate_config
from easyftp.core.errors import (
    EasyFtpError,
    EngineFailureError,
    InvalidConfigError,
    PermissionDeniedError,
    StorageFailureError,
)
from easyftp.models.config import MAX_PORT, MIN_PORT, ServerConfig, parse_port

logger = logging.getLogger(__name__)

PORT_RANGE_MESSAGE = f"Port must be a number between {MIN_PORT} and {MAX_PORT}"


class ServerFacade:
    """Stateless coordinator between the UI and the core services.

    Example:
        facade = ServerFacade()
        config = facade.build_config("/srv/ftp", "u", "p", "2121")
        address = facade.start_server(config)
        facade.stop_server()
    """

    def __init__(
        self,
        controller: ServerController | None = None,
        config_store: ConfigStore | None = None,
        registrar: AutoStartRegistrar | None = None,
    ) -> None:
        """Initialize the facade.

        Args:
            controller: Server lifecycle controller.
            config_store: Persistent configuration store.
            registrar: Platform autostart registrar.
        """
        self._controller = controller if controller is not None else ServerController()
        self._store = config_store if config_store is not None else ConfigStore()
        self._registrar = registrar if registrar is not None else create_registrar()

    @property
    def controller(self) -> ServerController:
        """Return the lifecycle controller (for signal wiring)."""
        return self._controller

    # -- Input ---------------------------------------------------------------

    @staticmethod
    def build_config(
        root_dir: str,
        username: str,
        password: str,
        port: str | int,
        auto_start: bool = False,
    ) -> ServerConfig:
        """Build a ServerConfig from raw form input.

        Only shape is checked here (non-empty root, numeric port in range);
        directory access and credentials are checked on start.

        Raises:
            InvalidConfigError: If the root is empty or the port is not a
                number in range.
        """
        if not root_dir.strip():
            msg = "Choose a root directory"
            raise InvalidConfigError(msg)
        try:
            port_number = parse_port(port)
        except ValueError as e:
            raise InvalidConfigError(PORT_RANGE_MESSAGE) from e
        if not MIN_PORT <= port_number <= MAX_PORT:
            raise InvalidConfigError(PORT_RANGE_MESSAGE)
        return ServerConfig(
            root_dir=root_dir.strip(),
            username=username,
            password=password,
            port=port_number,
            auto_start=auto_start,
        )

    # -- Server lifecycle ----------------------------------------------------

    def start_server(self, config: ServerConfig) -> str:
        """Start the server.

        Returns:
            Advertised address, e.g. ``ftp://192.168.1.20:2121``.

        Raises:
            EasyFtpError: InvalidConfig, AlreadyRunning, AddressInUse,
                PermissionDenied or EngineFailure.
        """
        validate_config(config)
        try:
            return self._controller.start(config)
        except EasyFtpError:
            raise
        except Exception as e:
            logger.exception("Unexpected error while starting the server")
            raise EngineFailureError from e

    def stop_server(self) -> None:
        """Stop the server; succeeds when it is already stopped.

        Raises:
            EngineFailureError: If shutdown could not be carried out.
        """
        try:
            self._controller.stop()
        except EasyFtpError:
            raise
        except Exception as e:
            logger.exception("Unexpected error while stopping the server")
            raise EngineFailureError from e

    def is_server_running(self) -> bool:
        """Return True if the server is running."""
        return self._controller.is_running()

    def get_server_address(self) -> str:
        """Return the advertised address, or empty when not running."""
        return self._controller.current_address()

    def last_server_error(self) -> EasyFtpError | None:
        """Return the last failure detected while the server was running."""
        return self._controller.last_error

    # -- Configuration -------------------------------------------------------

    def get_default_config(self) -> ServerConfig:
        """Return the documented default configuration."""
        return self._store.default_config()

    def load_config(self) -> ServerConfig:
        """Load the persisted configuration (defaults on any problem)."""
        return self._store.load()

    def save_config(self, config: ServerConfig) -> None:
        """Persist the configuration.

        A running server is not affected; changes apply on the next start.
        Only the port is checked; an empty root is a valid saved state.

        Raises:
            InvalidConfigError: If the port is out of range.
            StorageFailureError: If the file cannot be written.
        """
        if not config.port_in_range:
            raise InvalidConfigError(PORT_RANGE_MESSAGE)
        self._store.save(config)

    # -- Autostart -----------------------------------------------------------

    def set_auto_start(self, enabled: bool) -> None:
        """Register or remove the OS login item and persist the flag.

        The OS registration is applied first. If it fails nothing is
        persisted. If persisting then fails, the registration is reverted so
        config and OS state never disagree.

        Raises:
            PermissionDeniedError: If the OS refuses the change.
            StorageFailureError: If the flag cannot be saved.
        """
        previous_os_state = self.check_auto_start()
        try:
            self._registrar.set_enabled(enabled)
        except EasyFtpError:
            raise
        except OSError as e:
            logger.exception("Autostart registration failed")
            raise PermissionDeniedError from e

        config = self._store.load()
        try:
            self._store.save(config.with_auto_start(enabled))
        except StorageFailureError:
            logger.warning("Saving autostart flag failed, reverting OS registration")
            try:
                self._registrar.set_enabled(previous_os_state)
            except (EasyFtpError, OSError):
                logger.exception("Could not revert autostart registration")
            raise
        logger.info("Autostart %s", "enabled" if enabled else "disabled")

    def check_auto_start(self) -> bool:
        """Return whether the OS currently has the app registered.

        Read failures are logged and reported as not registered.
        """
        try:
            return self._registrar.is_enabled()
        except (EasyFtpError, OSError) as e:
            logger.warning("Could not read autostart state: %s", e)
            return False
