"""Main application window: configuration form and server controls.

Layout:
+--------------------------------------+
| Root directory [..............][...] |
| Username       [..............]      |
| Password       [..............]      |
| Port           [.....]               |
| [x] Launch at login                  |
|                                      |
| (*) Running   ftp://192.168.1.20:2121|
|                           [ Start ]  |
+--------------------------------------+

The window talks to the core only through ServerFacade (synchronous,
cheap calls) and LifecycleWorker (start/stop off the UI thread).
"""

import logging

from PySide6.QtCore import Qt, Slot
from PySide6.QtGui import QCloseEvent, QIntValidator
from PySide6.QtWidgets import (
    QCheckBox,
    QFileDialog,
    QFormLayout,
    QHBoxLayout,
    QLabel,
    QLineEdit,
    QMainWindow,
    QPushButton,
    QVBoxLayout,
    QWidget,
)

from easyftp.core.errors import EasyFtpError
from easyftp.core.facade import ServerFacade
from easyftp.core.worker import LifecycleWorker
from easyftp.models.config import MAX_PORT, MIN_PORT, ServerConfig
from easyftp.models.server_state import ServerState
from easyftp.ui.tokens import colors, sizing, spacing

logger = logging.getLogger(__name__)

STATUS_MESSAGE_TIMEOUT_MS = 5000

_STATE_LABELS = {
    ServerState.STOPPED.value: "Stopped",
    ServerState.STARTING.value: "Starting...",
    ServerState.RUNNING.value: "Running",
    ServerState.STOPPING.value: "Stopping...",
}


class MainWindow(QMainWindow):
    """Configuration form with start/stop control.

    Form fields are locked while the server runs, since a running server
    keeps the configuration it was started with.

    Example:
        facade = ServerFacade()
        worker = LifecycleWorker(facade)
        window = MainWindow(facade, worker)
        window.show()
    """

    def __init__(self, facade: ServerFacade, worker: LifecycleWorker) -> None:
        """Initialize the main window.

        Args:
            facade: Core API used for config and autostart.
            worker: Background dispatcher for start/stop.
        """
        super().__init__()
        self._facade = facade
        self._worker = worker
        self._hide_to_tray = False
        self._state = ServerState.STOPPED.value

        self._setup_ui()
        self._connect_signals()
        self.load_form(self._facade.load_config())
        self._set_autostart_checked(self._facade.check_auto_start())
        self._on_state_changed(self._facade.controller.state.value)

    def _setup_ui(self) -> None:
        """Set up the user interface."""
        self.setWindowTitle("Easy FTP Server")
        self.setMinimumSize(sizing.window_min_width, sizing.window_min_height)

        central_widget = QWidget()
        self.setCentralWidget(central_widget)
        main_layout = QVBoxLayout(central_widget)
        main_layout.setContentsMargins(spacing.lg, spacing.lg, spacing.lg, spacing.lg)
        main_layout.setSpacing(spacing.md)

        form = QFormLayout()
        form.setSpacing(spacing.md)

        self._root_edit = QLineEdit()
        self._root_edit.setPlaceholderText("Folder to share")
        self._browse_btn = QPushButton("Browse...")
        root_row = QHBoxLayout()
        root_row.setSpacing(spacing.sm)
        root_row.addWidget(self._root_edit, 1)
        root_row.addWidget(self._browse_btn)
        form.addRow("Root directory", root_row)

        self._username_edit = QLineEdit()
        form.addRow("Username", self._username_edit)

        self._password_edit = QLineEdit()
        self._password_edit.setEchoMode(QLineEdit.EchoMode.Password)
        form.addRow("Password", self._password_edit)

        self._port_edit = QLineEdit()
        self._port_edit.setValidator(QIntValidator(MIN_PORT, MAX_PORT, self))
        self._port_edit.setMaximumWidth(sizing.port_field_width)
        form.addRow("Port", self._port_edit)

        main_layout.addLayout(form)

        self._autostart_check = QCheckBox("Launch at login and start the server")
        main_layout.addWidget(self._autostart_check)
        main_layout.addStretch(1)

        status_row = QHBoxLayout()
        self._state_label = QLabel()
        self._address_label = QLabel()
        self._address_label.setTextInteractionFlags(Qt.TextInteractionFlag.TextSelectableByMouse)
        self._toggle_btn = QPushButton("Start")
        self._toggle_btn.setDefault(True)
        status_row.addWidget(self._state_label)
        status_row.addWidget(self._address_label, 1)
        status_row.addWidget(self._toggle_btn)
        main_layout.addLayout(status_row)

    def _connect_signals(self) -> None:
        """Connect widget, worker and controller signals."""
        self._browse_btn.clicked.connect(self._on_browse)
        self._toggle_btn.clicked.connect(self._on_toggle)
        self._autostart_check.toggled.connect(self._on_autostart_toggled)

        self._worker.started.connect(self._on_started)
        self._worker.stopped.connect(self._on_stopped)
        self._worker.failed.connect(self._on_failed)
        self._worker.busy_changed.connect(self._on_busy_changed)

        controller = self._facade.controller
        controller.state_changed.connect(self._on_state_changed)
        controller.error_occurred.connect(self._on_engine_error)

    # -- Form ----------------------------------------------------------------

    def load_form(self, config: ServerConfig) -> None:
        """Fill the form from a configuration.

        Args:
            config: Configuration to display.
        """
        self._root_edit.setText(config.root_dir)
        self._username_edit.setText(config.username)
        self._password_edit.setText(config.password)
        self._port_edit.setText(str(config.port))

    def form_config(self) -> ServerConfig:
        """Build a configuration from the current form input.

        Raises:
            InvalidConfigError: If the root or port field is unusable.
        """
        return self._facade.build_config(
            self._root_edit.text(),
            self._username_edit.text(),
            self._password_edit.text(),
            self._port_edit.text(),
            auto_start=self._autostart_check.isChecked(),
        )

    def _set_form_enabled(self, enabled: bool) -> None:
        for widget in (
            self._root_edit,
            self._browse_btn,
            self._username_edit,
            self._password_edit,
            self._port_edit,
        ):
            widget.setEnabled(enabled)

    def _set_autostart_checked(self, checked: bool) -> None:
        self._autostart_check.blockSignals(True)
        try:
            self._autostart_check.setChecked(checked)
        finally:
            self._autostart_check.blockSignals(False)

    # -- Actions -------------------------------------------------------------

    @Slot()
    def _on_browse(self) -> None:
        directory = QFileDialog.getExistingDirectory(
            self, "Choose root directory", self._root_edit.text()
        )
        if directory:
            self._root_edit.setText(directory)

    @Slot()
    def _on_toggle(self) -> None:
        if self._state == ServerState.RUNNING.value:
            self.request_stop()
        else:
            self.request_start()

    def request_start(self) -> None:
        """Validate the form, persist it and start the server in the background."""
        try:
            config = self.form_config()
        except EasyFtpError as e:
            self.show_error(e.user_message)
            return

        try:
            self._facade.save_config(config)
        except EasyFtpError as e:
            # still start; the user sees that settings were not kept
            logger.warning("Starting with unsaved configuration: %s", e.user_message)
            self.show_message(e.user_message)

        if not self._worker.request_start(config):
            self.show_message("Another server operation is in progress")

    def request_stop(self) -> None:
        """Stop the server in the background."""
        if not self._worker.request_stop():
            self.show_message("Another server operation is in progress")

    @Slot(bool)
    def _on_autostart_toggled(self, checked: bool) -> None:
        try:
            self._facade.set_auto_start(checked)
        except EasyFtpError as e:
            self._set_autostart_checked(not checked)
            self.show_error(e.user_message)
            return
        self.show_message("Launch at login enabled" if checked else "Launch at login disabled")

    # -- Worker / controller notifications -----------------------------------

    @Slot(str)
    def _on_started(self, address: str) -> None:
        self._address_label.setText(address)
        self.show_message(f"Serving at {address}")

    @Slot()
    def _on_stopped(self) -> None:
        self._address_label.clear()
        self.show_message("Server stopped")

    @Slot(object)
    def _on_failed(self, error: object) -> None:
        message = error.user_message if isinstance(error, EasyFtpError) else str(error)
        self.show_error(message)

    @Slot(str)
    def _on_engine_error(self, message: str) -> None:
        self._address_label.clear()
        self.show_error(message)

    @Slot(bool)
    def _on_busy_changed(self, busy: bool) -> None:
        self._toggle_btn.setEnabled(not busy)

    @Slot(str)
    def _on_state_changed(self, state: str) -> None:
        self._state = state
        running = state == ServerState.RUNNING.value
        self._set_form_enabled(state == ServerState.STOPPED.value)
        self._toggle_btn.setText("Stop" if running else "Start")
        self._toggle_btn.setEnabled(state in (ServerState.STOPPED.value, ServerState.RUNNING.value))
        self._state_label.setText(_STATE_LABELS.get(state, state))
        self._state_label.setStyleSheet(f"color: {colors.for_state(state)}; font-weight: bold;")
        if running:
            self._address_label.setText(self._facade.get_server_address())
        elif state == ServerState.STOPPED.value:
            self._address_label.clear()

    # -- Status output -------------------------------------------------------

    @property
    def address_text(self) -> str:
        """Return the address currently shown."""
        return self._address_label.text()

    @property
    def state_text(self) -> str:
        """Return the state label text."""
        return self._state_label.text()

    def show_message(self, message: str) -> None:
        """Show a transient status bar message."""
        self.statusBar().setStyleSheet("")
        self.statusBar().showMessage(message, STATUS_MESSAGE_TIMEOUT_MS)

    def show_error(self, message: str) -> None:
        """Show an error in the status bar until the next message."""
        logger.info("Showing error: %s", message)
        self.statusBar().setStyleSheet(f"color: {colors.error};")
        self.statusBar().showMessage(message)

    # -- Window behaviour ----------------------------------------------------

    def set_hide_to_tray(self, enabled: bool) -> None:
        """Enable or disable hide-to-tray on close.

        When enabled, closing the window hides it to tray instead of quitting.

        Args:
            enabled: Whether to hide on close.
        """
        self._hide_to_tray = enabled

    def closeEvent(self, event: QCloseEvent) -> None:  # noqa: N802
        """Hide to tray if enabled, otherwise close.

        Args:
            event: The close event.
        """
        if self._hide_to_tray:
            event.ignore()
            self.hide()
        else:
            super().closeEvent(event)

    def toggle_visibility(self) -> None:
        """Toggle window visibility."""
        if self.isVisible():
            self.hide()
        else:
            self.bring_to_front()

    def bring_to_front(self) -> None:
        """Show, raise and focus the window."""
        self.show()
        self.raise_()
        self.activateWindow()
