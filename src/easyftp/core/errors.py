"""Error taxonomy for the server control plane.

Every failure the UI can see is an ``EasyFtpError`` carrying a stable
``ErrorKind`` and a short user-facing message. Internal details (errno,
engine exceptions) are logged, not shown.
"""

from __future__ import annotations

import errno
from enum import Enum


class ErrorKind(str, Enum):
    """Stable classification of control-plane failures."""

    INVALID_CONFIG = "invalid_config"
    ALREADY_RUNNING = "already_running"
    NOT_RUNNING = "not_running"
    ADDRESS_IN_USE = "address_in_use"
    PERMISSION_DENIED = "permission_denied"
    ENGINE_FAILURE = "engine_failure"
    STORAGE_FAILURE = "storage_failure"
    NOT_FOUND = "not_found"


class EasyFtpError(Exception):
    """Base class for all control-plane errors.

    Attributes:
        kind: Stable error classification.
        user_message: Short message suitable for display.
    """

    kind: ErrorKind = ErrorKind.ENGINE_FAILURE
    default_message = "The FTP server failed"

    def __init__(self, user_message: str | None = None) -> None:
        self.user_message = user_message or self.default_message
        super().__init__(self.user_message)


class InvalidConfigError(EasyFtpError):
    """Configuration failed validation (directory, port, credentials)."""

    kind = ErrorKind.INVALID_CONFIG
    default_message = "Invalid configuration"


class AlreadyRunningError(EasyFtpError):
    """Start requested while the server is not stopped."""

    kind = ErrorKind.ALREADY_RUNNING
    default_message = "The FTP server is already running"


class NotRunningError(EasyFtpError):
    """Reserved for a strict stop mode; plain stop on a stopped server succeeds."""

    kind = ErrorKind.NOT_RUNNING
    default_message = "The FTP server is not running"


class AddressInUseError(EasyFtpError):
    """The configured port is already bound by another listener."""

    kind = ErrorKind.ADDRESS_IN_USE
    default_message = "The port is already in use"


class PermissionDeniedError(EasyFtpError):
    """The OS refused an operation (privileged port, autostart entry)."""

    kind = ErrorKind.PERMISSION_DENIED
    default_message = "Permission denied"


class EngineFailureError(EasyFtpError):
    """The FTP engine crashed or refused to start for an opaque reason."""

    kind = ErrorKind.ENGINE_FAILURE
    default_message = "The FTP server failed"


class StorageFailureError(EasyFtpError):
    """Reading or writing the configuration file failed."""

    kind = ErrorKind.STORAGE_FAILURE
    default_message = "Could not save the configuration"


class NotFoundError(EasyFtpError):
    """No qualifying network interface was found."""

    kind = ErrorKind.NOT_FOUND
    default_message = "No network address found"


def error_from_os_error(exc: OSError, port: int | None = None) -> EasyFtpError:
    """Map an OS-level bind/listen error to the matching control-plane error.

    Args:
        exc: The OSError raised by the socket layer.
        port: Port involved, used in the message.

    Returns:
        An EasyFtpError subclass instance (not raised).
    """
    where = f" (port {port})" if port is not None else ""
    if exc.errno in (errno.EADDRINUSE, getattr(errno, "WSAEADDRINUSE", -1)):
        return AddressInUseError(f"The port is already in use{where}")
    if exc.errno in (errno.EACCES, errno.EPERM, getattr(errno, "WSAEACCES", -1)):
        return PermissionDeniedError(f"Permission denied{where}")
    return EngineFailureError(f"The FTP server could not listen{where}: {exc.strerror or exc}")
