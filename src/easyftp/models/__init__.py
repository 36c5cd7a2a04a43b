"""Data models for the server configuration and lifecycle state."""

from easyftp.models.config import DEFAULT_PORT, ServerConfig
from easyftp.models.server_state import ServerState

__all__ = ["DEFAULT_PORT", "ServerConfig", "ServerState"]
