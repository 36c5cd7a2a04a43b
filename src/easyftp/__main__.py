"""Main entry point for the Easy FTP Server application."""

import argparse
import logging
import sys
from pathlib import Path

from PySide6.QtWidgets import QApplication
from twisted.python import log

from easyftp import __version__
from easyftp.core.autostart import MINIMIZED_FLAG
from easyftp.core.config import default_config_dir
from easyftp.core.engine import shutdown_reactor
from easyftp.core.errors import EasyFtpError
from easyftp.core.facade import ServerFacade
from easyftp.core.worker import LifecycleWorker
from easyftp.ui.main_window import MainWindow
from easyftp.ui.system_tray import SystemTrayManager

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
LOG_FILENAME = "easyftp.log"
# Longest the exit path waits for an in-flight start/stop
EXIT_WAIT_S = 15.0

logger = logging.getLogger(__name__)


def setup_logging(debug: bool, log_dir: Path) -> None:
    """Log to stderr and to ``easyftp.log`` in the app-data directory.

    Args:
        debug: Log at DEBUG instead of INFO.
        log_dir: Directory for the log file.
    """
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    file_error: OSError | None = None
    try:
        log_dir.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_dir / LOG_FILENAME, encoding="utf-8"))
    except OSError as e:
        file_error = e
    logging.basicConfig(level=logging.DEBUG if debug else logging.INFO, format=LOG_FORMAT, handlers=handlers)
    # route twisted's own log events (FTP sessions, reactor errors) into stdlib logging
    log.PythonLoggingObserver(loggerName="twisted").start()
    logging.getLogger("twisted").setLevel(logging.DEBUG if debug else logging.WARNING)
    if file_error is not None:
        logger.warning("Could not open log file in %s: %s", log_dir, file_error)


def parse_args(argv: list[str]) -> argparse.Namespace:
    """Parse command line arguments (without the program name)."""
    parser = argparse.ArgumentParser(
        prog="easyftp",
        description="Easy FTP Server - share a folder over FTP",
    )
    parser.add_argument(
        MINIMIZED_FLAG, action="store_true", help="start hidden in the system tray",
    )
    parser.add_argument(
        "--debug", action="store_true", help="verbose logging",
    )
    parser.add_argument(
        "--version", action="version", version=f"%(prog)s {__version__}",
    )
    return parser.parse_args(argv)


def main() -> int:
    """Run the Easy FTP Server application.

    Returns:
        Exit code (0 for success).
    """
    # Set app metadata before creating QApplication (required for macOS)
    QApplication.setApplicationName("EasyFTP")
    QApplication.setApplicationDisplayName("Easy FTP Server")
    QApplication.setOrganizationName("EasyFTP")
    QApplication.setOrganizationDomain("easyftp.local")
    QApplication.setApplicationVersion(__version__)

    app = QApplication(sys.argv)
    parsed = parse_args(app.arguments()[1:])

    setup_logging(parsed.debug, default_config_dir())
    logger.info("Easy FTP Server %s starting", __version__)

    facade = ServerFacade()
    worker = LifecycleWorker(facade)
    window = MainWindow(facade, worker)

    tray = SystemTrayManager(window, facade.controller)
    if tray.available:
        tray.show()
        window.set_hide_to_tray(True)
        app.setQuitOnLastWindowClosed(False)

    # A login launch with AutoStart set serves immediately from the tray
    config = facade.load_config()
    start_hidden = parsed.minimized
    if config.auto_start:
        logger.info("AutoStart is set, starting the FTP server")
        window.request_start()
        start_hidden = True

    if start_hidden and tray.available:
        logger.info("Starting hidden in the system tray")
    else:
        window.show()

    exit_code = app.exec()

    # Cleanup
    if not worker.wait(EXIT_WAIT_S):
        logger.warning("Lifecycle operation still running at exit")
    try:
        facade.stop_server()
    except EasyFtpError as e:
        logger.error("Could not stop the FTP server cleanly: %s", e.user_message)
    shutdown_reactor()
    logger.info("Easy FTP Server exited")

    return exit_code


if __name__ == "__main__":
    sys.exit(main())
