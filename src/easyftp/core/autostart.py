"""Registration of the application as an OS login item.

One capability (enable / disable / is_enabled) with a variant per platform:
- Windows: value under HKCU\\Software\\Microsoft\\Windows\\CurrentVersion\\Run
- macOS: ~/Library/LaunchAgents/<label>.plist with RunAtLoad
- Linux/BSD: $XDG_CONFIG_HOME/autostart/easyftp.desktop

``is_enabled()`` always reads the OS source of truth, so entries added or
removed outside the app are reflected immediately.

Usage:
    from easyftp.core.autostart import create_registrar

    registrar = create_registrar()
    registrar.enable()
    assert registrar.is_enabled()
"""

from __future__ import annotations

import configparser
import logging
import os
import platform
import plistlib
import subprocess
import sys
from abc import ABC, abstractmethod
from pathlib import Path

from PySide6.QtCore import QSettings

from easyftp.core.errors import PermissionDeniedError

logger = logging.getLogger(__name__)

APP_ID = "easyftp"
APP_DISPLAY_NAME = "Easy FTP Server"
MINIMIZED_FLAG = "--minimized"

WINDOWS_RUN_KEY = "HKEY_CURRENT_USER\\Software\\Microsoft\\Windows\\CurrentVersion\\Run"
WINDOWS_RUN_VALUE = "EasyFTPServer"
# Shortcuts created by earlier releases in the Startup folder
_LEGACY_STARTUP_ENTRIES = ("EasyFTPServer.lnk", "EasyFTPServer.bat")

MAC_AGENT_LABEL = "com.easyftp.EasyFTP"


def launch_command() -> list[str]:
    """Return the command line that starts the app hidden in the tray.

    When running from a PyInstaller bundle the frozen executable is used,
    otherwise the current interpreter runs the package as a module.
    """
    if getattr(sys, "frozen", False):
        return [str(Path(sys.executable).resolve()), MINIMIZED_FLAG]
    return [str(Path(sys.executable).resolve()), "-m", APP_ID, MINIMIZED_FLAG]


def _denied(action: str, exc: OSError | None = None) -> PermissionDeniedError:
    """Build the error raised when the OS refuses an autostart change."""
    if exc is not None:
        logger.error("Could not %s autostart entry: %s", action, exc)
    else:
        logger.error("Could not %s autostart entry", action)
    return PermissionDeniedError(f"Could not {action} the autostart entry")


class AutoStartRegistrar(ABC):
    """Capability interface for OS login-item registration.

    ``enable()`` is idempotent and ``disable()`` on an absent entry is a
    no-op. OS failures raise PermissionDeniedError.
    """

    def __init__(self, command: list[str] | None = None) -> None:
        """Initialize the registrar.

        Args:
            command: Command line to register. Defaults to launch_command().
        """
        self._command = command if command is not None else launch_command()

    @property
    def command(self) -> list[str]:
        """Return the registered command line."""
        return list(self._command)

    @abstractmethod
    def enable(self) -> None:
        """Register the application to launch at login."""

    @abstractmethod
    def disable(self) -> None:
        """Remove the login registration."""

    @abstractmethod
    def is_enabled(self) -> bool:
        """Return True if the OS currently has the app registered."""

    def set_enabled(self, enabled: bool) -> None:
        """Enable or disable in one call."""
        if enabled:
            self.enable()
        else:
            self.disable()


class WindowsRegistrar(AutoStartRegistrar):
    """Autostart through the per-user ``Run`` registry key.

    QSettings in native format maps directly onto the registry, so no
    win32 bindings are needed.
    """

    def __init__(self, command: list[str] | None = None, run_key: str = WINDOWS_RUN_KEY) -> None:
        super().__init__(command)
        self._run_key = run_key

    def _settings(self) -> QSettings:
        return QSettings(self._run_key, QSettings.Format.NativeFormat)

    def enable(self) -> None:
        settings = self._settings()
        settings.setValue(WINDOWS_RUN_VALUE, subprocess.list2cmdline(self._command))
        settings.sync()
        if settings.status() != QSettings.Status.NoError:
            raise _denied("create")
        logger.info("Registered autostart value %s", WINDOWS_RUN_VALUE)

    def disable(self) -> None:
        settings = self._settings()
        settings.remove(WINDOWS_RUN_VALUE)
        settings.sync()
        if settings.status() != QSettings.Status.NoError:
            raise _denied("remove")
        self._remove_legacy_shortcuts()
        logger.info("Removed autostart value %s", WINDOWS_RUN_VALUE)

    def is_enabled(self) -> bool:
        return self._settings().contains(WINDOWS_RUN_VALUE)

    @staticmethod
    def _remove_legacy_shortcuts() -> None:
        """Delete Startup-folder shortcuts left by earlier releases."""
        appdata = os.environ.get("APPDATA")
        if not appdata:
            return
        startup = Path(appdata) / "Microsoft" / "Windows" / "Start Menu" / "Programs" / "Startup"
        for name in _LEGACY_STARTUP_ENTRIES:
            try:
                (startup / name).unlink(missing_ok=True)
            except OSError as e:
                logger.warning("Could not remove legacy startup entry %s: %s", name, e)


class MacLaunchAgentRegistrar(AutoStartRegistrar):
    """Autostart through a per-user LaunchAgent plist."""

    def __init__(
        self,
        command: list[str] | None = None,
        home: Path | None = None,
        label: str = MAC_AGENT_LABEL,
    ) -> None:
        super().__init__(command)
        self._label = label
        base = home if home is not None else Path.home()
        self._path = base / "Library" / "LaunchAgents" / f"{label}.plist"

    @property
    def path(self) -> Path:
        """Return the LaunchAgent plist path."""
        return self._path

    def enable(self) -> None:
        agent = {
            "Label": self._label,
            "ProgramArguments": self._command,
            "RunAtLoad": True,
            "ProcessType": "Interactive",
        }
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._path.write_bytes(plistlib.dumps(agent))
        except OSError as e:
            raise _denied("create", e) from e
        logger.info("Wrote LaunchAgent %s", self._path)

    def disable(self) -> None:
        try:
            self._path.unlink(missing_ok=True)
        except OSError as e:
            raise _denied("remove", e) from e
        logger.info("Removed LaunchAgent %s", self._path)

    def is_enabled(self) -> bool:
        try:
            agent = plistlib.loads(self._path.read_bytes())
        except FileNotFoundError:
            return False
        except (OSError, plistlib.InvalidFileException, ValueError) as e:
            logger.warning("Unreadable LaunchAgent %s: %s", self._path, e)
            return False
        return isinstance(agent, dict) and bool(agent.get("RunAtLoad", False))


def _quote_exec_arg(arg: str) -> str:
    """Quote one argument for a desktop entry ``Exec`` line."""
    reserved = set(' \t\n"\'\\><~|&;$*?#()`')
    if arg and not any(ch in reserved for ch in arg):
        return arg
    escaped = "".join("\\" + ch if ch in '"`$\\' else ch for ch in arg)
    return f'"{escaped}"'


class XdgAutostartRegistrar(AutoStartRegistrar):
    """Autostart through an XDG ``.desktop`` entry.

    Desktop environments treat ``Hidden=true`` as a deleted entry, so an
    entry hidden by the user counts as disabled.
    """

    def __init__(self, command: list[str] | None = None, config_home: Path | None = None) -> None:
        super().__init__(command)
        if config_home is None:
            xdg = os.environ.get("XDG_CONFIG_HOME")
            config_home = Path(xdg) if xdg else Path.home() / ".config"
        self._path = config_home / "autostart" / f"{APP_ID}.desktop"

    @property
    def path(self) -> Path:
        """Return the desktop entry path."""
        return self._path

    def enable(self) -> None:
        exec_line = " ".join(_quote_exec_arg(arg) for arg in self._command)
        content = (
            "[Desktop Entry]\n"
            "Type=Application\n"
            f"Name={APP_DISPLAY_NAME}\n"
            f"Exec={exec_line}\n"
            "Terminal=false\n"
            "X-GNOME-Autostart-enabled=true\n"
        )
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._path.write_text(content, encoding="utf-8")
        except OSError as e:
            raise _denied("create", e) from e
        logger.info("Wrote autostart entry %s", self._path)

    def disable(self) -> None:
        try:
            self._path.unlink(missing_ok=True)
        except OSError as e:
            raise _denied("remove", e) from e
        logger.info("Removed autostart entry %s", self._path)

    def is_enabled(self) -> bool:
        parser = configparser.ConfigParser(interpolation=None, strict=False)
        parser.optionxform = str  # type: ignore[assignment,method-assign]
        try:
            with self._path.open(encoding="utf-8") as f:
                parser.read_file(f)
        except FileNotFoundError:
            return False
        except (OSError, configparser.Error) as e:
            logger.warning("Unreadable autostart entry %s: %s", self._path, e)
            return False

        if not parser.has_section("Desktop Entry"):
            return False
        entry = parser["Desktop Entry"]
        if entry.get("Hidden", "false").strip().lower() == "true":
            return False
        return entry.get("X-GNOME-Autostart-enabled", "true").strip().lower() != "false"


def create_registrar(command: list[str] | None = None) -> AutoStartRegistrar:
    """Return the registrar for the running platform.

    Args:
        command: Optional command line override.

    Returns:
        Platform-specific AutoStartRegistrar.
    """
    system = platform.system().lower()
    if system == "windows":
        return WindowsRegistrar(command)
    if system == "darwin":
        return MacLaunchAgentRegistrar(command)
    return XdgAutostartRegistrar(command)
