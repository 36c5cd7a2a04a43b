"""Lifecycle states of the embedded FTP server."""

from enum import Enum


class ServerState(str, Enum):
    """Lifecycle state owned by the ServerController.

    Transitions:
        STOPPED -> STARTING -> RUNNING -> STOPPING -> STOPPED
        STARTING -> STOPPED (bind or validation failure)
        RUNNING -> STOPPED (engine failure)
    """

    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"

    @property
    def is_busy(self) -> bool:
        """Return True while a lifecycle transition is in progress."""
        return self in (ServerState.STARTING, ServerState.STOPPING)
