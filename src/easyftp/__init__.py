"""Easy FTP Server - desktop control panel for an embedded FTP server."""

__version__ = "0.1.0"
