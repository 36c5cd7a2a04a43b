"""Configuration store persisting ServerConfig as JSON.

The file lives in the user-scoped application-data directory reported by
QStandardPaths:
- Windows: %APPDATA%\\EasyFTP\\EasyFTP\\config.json
- macOS: ~/Library/Application Support/EasyFTP/config.json
- Linux: ~/.local/share/EasyFTP/config.json

Writes go through QSaveFile, which writes a temporary file and renames it
over the target on commit, so a crash mid-write leaves the previous file
intact.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path

from PySide6.QtCore import QIODevice, QSaveFile, QStandardPaths

from easyftp.core.errors import StorageFailureError
from easyftp.models.config import ServerConfig

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "config.json"
_FALLBACK_DIRNAME = ".easyftp"


def default_config_dir() -> Path:
    """Return the user-scoped application-data directory.

    Falls back to ``~/.easyftp`` if Qt cannot resolve a writable location.
    """
    location = QStandardPaths.writableLocation(QStandardPaths.StandardLocation.AppDataLocation)
    if location:
        return Path(location)
    return Path.home() / _FALLBACK_DIRNAME


class ConfigStore:
    """Loads and atomically saves the server configuration.

    Configuration is soft state: ``load()`` never fails, it degrades to
    defaults when the file is missing or unreadable. ``save()`` reports I/O
    failures to the caller.

    Example:
        store = ConfigStore()
        config = store.load()
        store.save(config.with_auto_start(True))
    """

    def __init__(self, config_dir: Path | str | None = None) -> None:
        """Initialize the store.

        Args:
            config_dir: Directory holding the config file. Defaults to the
                platform application-data location.
        """
        self._dir = Path(config_dir) if config_dir is not None else default_config_dir()
        self._path = self._dir / CONFIG_FILENAME

    @property
    def path(self) -> Path:
        """Return the full path of the config file."""
        return self._path

    @staticmethod
    def default_config() -> ServerConfig:
        """Return the configuration used when nothing is persisted."""
        return ServerConfig.default()

    def load(self) -> ServerConfig:
        """Read the persisted configuration.

        Returns:
            The stored ServerConfig, or defaults if the file is missing,
            unreadable or corrupt.
        """
        try:
            raw = self._path.read_text(encoding="utf-8")
        except FileNotFoundError:
            logger.info("No config file at %s, using defaults", self._path)
            return self.default_config()
        except OSError as e:
            logger.warning("Could not read config file %s: %s", self._path, e)
            return self.default_config()

        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            logger.warning("Corrupt config file %s (%s), using defaults", self._path, e)
            return self.default_config()

        if not isinstance(data, dict):
            logger.warning("Config file %s does not hold an object, using defaults", self._path)
            return self.default_config()

        try:
            return ServerConfig.from_dict(data)
        except ValueError as e:
            logger.warning("Invalid config values in %s (%s), using defaults", self._path, e)
            return self.default_config()

    def save(self, config: ServerConfig) -> None:
        """Persist the configuration atomically.

        Args:
            config: Configuration to store.

        Raises:
            StorageFailureError: If the directory or file cannot be written.
        """
        payload = json.dumps(config.to_dict(), indent=4, ensure_ascii=False).encode("utf-8")

        try:
            self._dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            logger.error("Could not create config directory %s: %s", self._dir, e)
            raise StorageFailureError from e

        save_file = QSaveFile(str(self._path))
        if not save_file.open(QIODevice.OpenModeFlag.WriteOnly):
            logger.error("Could not open %s for writing: %s", self._path, save_file.errorString())
            raise StorageFailureError

        if save_file.write(payload) != len(payload):
            logger.error("Short write to %s: %s", self._path, save_file.errorString())
            save_file.cancelWriting()
            save_file.commit()
            raise StorageFailureError

        if not save_file.commit():
            logger.error("Could not commit %s: %s", self._path, save_file.errorString())
            raise StorageFailureError

        logger.debug("Saved config to %s", self._path)
