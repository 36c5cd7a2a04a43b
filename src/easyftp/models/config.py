"""Server configuration model and its persisted JSON shape."""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any

DEFAULT_PORT = 2121
DEFAULT_USERNAME = "admin"
DEFAULT_PASSWORD = "123456"
MIN_PORT = 1
MAX_PORT = 65535

# Persisted field names (stable across versions, shared with older config files)
_FIELD_ROOT_DIR = "RootDir"
_FIELD_USERNAME = "Username"
_FIELD_PASSWORD = "Password"
_FIELD_PORT = "Port"
_FIELD_AUTO_START = "AutoStart"


@dataclass(frozen=True, slots=True)
class ServerConfig:
    """Configuration for one run of the FTP server.

    Instances are immutable: a running server keeps the exact config it was
    started with, and edits in the UI produce a new instance that only takes
    effect on the next start.

    Attributes:
        root_dir: Directory exposed as the FTP root.
        username: Login name for the single FTP account.
        password: Password for the single FTP account.
        port: TCP port to listen on (1-65535).
        auto_start: Whether the app launches at login and starts the server.
    """

    root_dir: str = ""
    username: str = DEFAULT_USERNAME
    password: str = DEFAULT_PASSWORD
    port: int = DEFAULT_PORT
    auto_start: bool = False

    @classmethod
    def default(cls) -> ServerConfig:
        """Return the documented default configuration."""
        return cls()

    @property
    def port_in_range(self) -> bool:
        """Return True if the port is a valid TCP port number."""
        return MIN_PORT <= self.port <= MAX_PORT

    def with_auto_start(self, enabled: bool) -> ServerConfig:
        """Return a copy with a different auto_start flag."""
        return replace(self, auto_start=enabled)

    def to_dict(self) -> dict[str, Any]:
        """Convert to the persisted JSON mapping."""
        return {
            _FIELD_ROOT_DIR: self.root_dir,
            _FIELD_USERNAME: self.username,
            _FIELD_PASSWORD: self.password,
            _FIELD_PORT: self.port,
            _FIELD_AUTO_START: self.auto_start,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ServerConfig:
        """Build a config from a persisted JSON mapping.

        Missing keys fall back to defaults and unknown keys are ignored, so
        files written by older or newer versions stay loadable. ``Port`` may
        be an int or a numeric string.

        Args:
            data: Mapping loaded from the config file.

        Returns:
            ServerConfig instance.

        Raises:
            ValueError: If a present field has an unusable type or value.
        """
        defaults = cls.default()
        root_dir = data.get(_FIELD_ROOT_DIR, defaults.root_dir)
        username = data.get(_FIELD_USERNAME, defaults.username)
        password = data.get(_FIELD_PASSWORD, defaults.password)
        auto_start = data.get(_FIELD_AUTO_START, defaults.auto_start)

        for name, value in (
            (_FIELD_ROOT_DIR, root_dir),
            (_FIELD_USERNAME, username),
            (_FIELD_PASSWORD, password),
        ):
            if not isinstance(value, str):
                msg = f"{name} must be a string, got {type(value).__name__}"
                raise ValueError(msg)
        if not isinstance(auto_start, bool):
            msg = f"{_FIELD_AUTO_START} must be a boolean, got {type(auto_start).__name__}"
            raise ValueError(msg)

        return cls(
            root_dir=root_dir,
            username=username,
            password=password,
            port=parse_port(data.get(_FIELD_PORT, defaults.port)),
            auto_start=auto_start,
        )


def parse_port(value: object) -> int:
    """Parse a port given as int or numeric text.

    Args:
        value: Raw port value (int, or str such as ``"2121"``).

    Returns:
        Port number. Range is not checked here.

    Raises:
        ValueError: If the value is not an integer or numeric string.
    """
    if isinstance(value, bool):
        msg = f"Port must be a number, got {value!r}"
        raise ValueError(msg)
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    msg = f"Port must be a number, got {value!r}"
    raise ValueError(msg)
