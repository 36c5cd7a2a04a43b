"""System tray icon with show window, server status and quit.

Usage:
    from easyftp.ui.system_tray import SystemTrayManager

    tray = SystemTrayManager(window, controller)
    if tray.available:
        tray.show()
"""

from __future__ import annotations

import contextlib
import logging
from typing import cast

from PySide6.QtCore import QObject
from PySide6.QtGui import QAction, QBrush, QColor, QIcon, QPainter, QPen
from PySide6.QtWidgets import QApplication, QMenu, QStyle, QSystemTrayIcon

from easyftp.core.controller import ServerController
from easyftp.models.server_state import ServerState
from easyftp.ui.main_window import MainWindow
from easyftp.ui.tokens import colors, sizing

logger = logging.getLogger(__name__)

APP_TITLE = "Easy FTP Server"


class SystemTrayManager(QObject):
    """Manages the system tray icon and its context menu.

    Features:
    - Show main window (menu or double-click)
    - Status dot and tooltip following the server state
    - Quit action

    Example:
        tray = SystemTrayManager(window, controller)
        tray.show()
    """

    def __init__(
        self,
        window: MainWindow,
        controller: ServerController,
        icon: QIcon | None = None,
    ) -> None:
        """Initialize the system tray manager.

        Args:
            window: The main application window.
            controller: Controller whose state the icon reflects.
            icon: Optional icon for the tray. Falls back to the app icon.
        """
        super().__init__()
        self._window = window
        self._controller = controller
        self._state = controller.state.value

        if icon is None:
            raw_app = QApplication.instance()
            icon = cast(QApplication, raw_app).windowIcon() if raw_app is not None else QIcon()
            if icon.isNull():
                icon = window.style().standardIcon(QStyle.StandardPixmap.SP_DriveNetIcon)
        self._base_icon = icon

        self._tray = QSystemTrayIcon(self._build_status_icon())
        self._tray.activated.connect(self._on_activated)

        self._menu = QMenu()
        show_action = QAction("Show main window", self._menu)
        show_action.triggered.connect(self._window.bring_to_front)
        self._menu.addAction(show_action)
        self._menu.addSeparator()
        quit_action = QAction("Quit", self._menu)
        quit_action.triggered.connect(self._on_quit)
        self._menu.addAction(quit_action)
        self._tray.setContextMenu(self._menu)

        self._controller.state_changed.connect(self._on_state_changed)
        self._update_tooltip()

    @property
    def available(self) -> bool:
        """Return True if system tray is available on this platform."""
        return QSystemTrayIcon.isSystemTrayAvailable()

    @property
    def tooltip(self) -> str:
        """Return the current tray tooltip."""
        return self._tray.toolTip()

    def show(self) -> None:
        """Show the tray icon."""
        if self.available:
            self._tray.show()
            logger.info("System tray icon shown")
        else:
            logger.warning("System tray not available on this platform")

    def hide(self) -> None:
        """Hide the tray icon."""
        self._tray.hide()

    def _build_status_icon(self) -> QIcon:
        """Build the tray icon with a status dot at the bottom-right."""
        size = sizing.tray_icon
        pixmap = self._base_icon.pixmap(size, size)
        if pixmap.isNull():
            return self._base_icon

        painter = QPainter(pixmap)
        try:
            painter.setRenderHint(QPainter.RenderHint.Antialiasing)
            radius = sizing.status_dot_radius
            offset = size - radius * 2 - 2
            painter.setPen(QPen(QColor("white"), 2))
            painter.setBrush(QBrush(QColor(colors.for_state(self._state))))
            painter.drawEllipse(offset, offset, radius * 2, radius * 2)
        finally:
            painter.end()
        return QIcon(pixmap)

    def _update_tooltip(self) -> None:
        address = self._controller.current_address()
        if self._state == ServerState.RUNNING.value and address:
            self._tray.setToolTip(f"{APP_TITLE} - {address}")
        else:
            self._tray.setToolTip(f"{APP_TITLE} - {self._state}")

    def _on_state_changed(self, state: str) -> None:
        self._state = state
        self._tray.setIcon(self._build_status_icon())
        self._update_tooltip()

    def _on_activated(self, reason: QSystemTrayIcon.ActivationReason) -> None:
        """Toggle the window on double-click.

        Args:
            reason: The activation reason.
        """
        if reason == QSystemTrayIcon.ActivationReason.DoubleClick:
            self._window.toggle_visibility()

    def cleanup(self) -> None:
        """Disconnect signals and hide the icon before quitting."""
        with contextlib.suppress(RuntimeError):
            self._controller.state_changed.disconnect(self._on_state_changed)
        self._tray.hide()
        self._menu.clear()

    def _on_quit(self) -> None:
        """Quit the application; the server is stopped on the way out."""
        self.cleanup()
        app = QApplication.instance()
        if app:
            app.quit()
