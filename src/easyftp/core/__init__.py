"""Core server control plane.

This package owns the FTP server lifecycle and everything around it, with
no widgets involved.

Classes:
    ConfigStore: JSON persistence of ServerConfig.
    ServerController: Lifecycle state machine around the FTP engine.
    ServerFacade: The API the UI calls.
    LifecycleWorker: Runs start/stop off the UI thread.
"""

from easyftp.core.config import ConfigStore
from easyftp.core.controller import ServerController
from easyftp.core.facade import ServerFacade
from easyftp.core.worker import LifecycleWorker

__all__ = ["ConfigStore", "LifecycleWorker", "ServerController", "ServerFacade"]
