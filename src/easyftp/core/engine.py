"""FTP engine adapter around Twisted's FTP server.

Twisted's reactor cannot be restarted once stopped, so it runs in one daemon
thread for the whole process and every engine call is marshalled onto it.
An ``FtpEngine`` instance represents a single server run: it captures the
root directory and credentials at construction, listens once and is
discarded after ``stop()``.

Usage:
    engine = FtpEngine("/srv/ftp", "user", "secret", on_failure=print)
    port = engine.start(2121)
    ...
    engine.stop(grace_period=5.0)
"""

from __future__ import annotations

import hmac
import logging
import queue
import threading
import time
from collections.abc import Callable
from typing import Any

from twisted.cred.checkers import ICredentialsChecker
from twisted.cred.credentials import IUsernamePassword
from twisted.cred.error import UnauthorizedLogin
from twisted.cred.portal import Portal
from twisted.internet import defer, reactor, tcp
from twisted.internet.error import CannotListenError
from twisted.protocols.ftp import BaseFTPRealm, FTPFactory
from twisted.protocols.policies import ProtocolWrapper
from twisted.python.failure import Failure
from twisted.python.filepath import FilePath
from zope.interface import implementer

from easyftp.core.errors import EngineFailureError, error_from_os_error

logger = logging.getLogger(__name__)

WELCOME_MESSAGE = "Easy FTP Server ready"
REACTOR_START_TIMEOUT_S = 5.0
CALL_TIMEOUT_S = 5.0
FORCE_CLOSE_TIMEOUT_S = 1.0
DRAIN_POLL_INTERVAL_S = 0.05
LISTEN_BACKLOG = 50

_reactor_lock = threading.Lock()
_reactor_thread: threading.Thread | None = None


def _run_reactor() -> None:
    """Reactor thread entry point."""
    try:
        reactor.run(installSignalHandlers=False)  # type: ignore[attr-defined]
    except Exception:
        logger.exception("Reactor thread crashed")
    finally:
        logger.info("Reactor thread exited")


def ensure_reactor_running(timeout: float = REACTOR_START_TIMEOUT_S) -> None:
    """Start the shared reactor thread if it is not running yet.

    Raises:
        EngineFailureError: If the reactor already ran and stopped (it cannot
            be restarted), or does not come up within ``timeout``.
    """
    global _reactor_thread  # noqa: PLW0603

    with _reactor_lock:
        if reactor.running:  # type: ignore[attr-defined]
            return
        if _reactor_thread is not None:
            msg = "The network engine has shut down"
            raise EngineFailureError(msg)

        started = threading.Event()
        reactor.callWhenRunning(started.set)  # type: ignore[attr-defined]
        _reactor_thread = threading.Thread(target=_run_reactor, name="ftp-reactor", daemon=True)
        _reactor_thread.start()

    if not started.wait(timeout):
        msg = "The network engine did not start"
        raise EngineFailureError(msg)
    logger.debug("Reactor thread running")


def shutdown_reactor(timeout: float = CALL_TIMEOUT_S) -> None:
    """Stop the shared reactor thread (application exit only)."""
    if reactor.running:  # type: ignore[attr-defined]
        reactor.callFromThread(reactor.stop)  # type: ignore[attr-defined]
    if _reactor_thread is not None:
        _reactor_thread.join(timeout)


def call_in_reactor(fn: Callable[..., Any], *args: Any, timeout: float = CALL_TIMEOUT_S) -> Any:
    """Run ``fn`` on the reactor thread and wait for its (deferred) result.

    Unlike ``blockingCallFromThread`` this never waits forever: a dead or
    wedged reactor turns into an EngineFailureError after ``timeout``.

    Raises:
        EngineFailureError: If the reactor is not running or times out.
        Exception: Whatever ``fn`` raised, re-raised in the caller's thread.
    """
    if not reactor.running:  # type: ignore[attr-defined]
        msg = "The network engine is not running"
        raise EngineFailureError(msg)

    results: queue.Queue[object] = queue.Queue()

    def _invoke() -> None:
        d = defer.maybeDeferred(fn, *args)
        d.addBoth(results.put)

    reactor.callFromThread(_invoke)  # type: ignore[attr-defined]
    try:
        result = results.get(timeout=timeout)
    except queue.Empty:
        msg = "The network engine did not respond"
        raise EngineFailureError(msg) from None
    if isinstance(result, Failure):
        result.raiseException()
    return result


@implementer(ICredentialsChecker)
class SingleUserChecker:
    """Credentials checker accepting exactly one username/password pair."""

    credentialInterfaces = (IUsernamePassword,)

    def __init__(self, username: str, password: str) -> None:
        self._username = username.encode("utf-8")
        self._password = password.encode("utf-8")

    @staticmethod
    def _as_bytes(value: object) -> bytes:
        if isinstance(value, bytes):
            return value
        return str(value).encode("utf-8")

    def requestAvatarId(self, credentials: Any) -> defer.Deferred[Any]:  # noqa: N802
        username = self._as_bytes(credentials.username)
        password = self._as_bytes(credentials.password)
        # compare both fields so timing does not reveal which one was wrong
        user_ok = hmac.compare_digest(username, self._username)
        pass_ok = hmac.compare_digest(password, self._password)
        if user_ok and pass_ok:
            return defer.succeed(credentials.username)
        logger.info("Rejected FTP login for %r", credentials.username)
        return defer.fail(UnauthorizedLogin("Invalid username or password"))


class RootRealm(BaseFTPRealm):
    """Realm mapping every authenticated user to the configured root."""

    def __init__(self, root_dir: str) -> None:
        super().__init__(root_dir)
        self._root = FilePath(root_dir)

    def getHomeDirectory(self, avatarId: object) -> FilePath[str]:  # noqa: N802, N803
        return self._root


class SessionTrackingFactory(FTPFactory):
    """FTPFactory that remembers live sessions so shutdown can drain them."""

    welcomeMessage = WELCOME_MESSAGE
    allowAnonymous = False

    def __init__(self, portal: Portal) -> None:
        super().__init__(portal)
        self.sessions: set[ProtocolWrapper] = set()

    def buildProtocol(self, addr: Any) -> ProtocolWrapper | None:  # noqa: N802
        protocol = super().buildProtocol(addr)
        if protocol is not None:
            self.sessions.add(protocol)
            logger.info("FTP client connected from %s", getattr(addr, "host", addr))
        return protocol

    def unregisterProtocol(self, p: ProtocolWrapper) -> None:  # noqa: N802
        self.sessions.discard(p)
        super().unregisterProtocol(p)


def _is_transferring(session: ProtocolWrapper) -> bool:
    """Return True if the session has an open data connection."""
    ftp = getattr(session, "wrappedProtocol", None)
    return getattr(ftp, "dtpInstance", None) is not None


class _MonitoredPort(tcp.Port):
    """Listening port that reports when its socket goes away."""

    def __init__(
        self,
        port: int,
        factory: FTPFactory,
        interface: str,
        on_lost: Callable[[Failure], None],
    ) -> None:
        super().__init__(port, factory, backlog=LISTEN_BACKLOG, interface=interface, reactor=reactor)
        self._on_lost = on_lost

    def connectionLost(self, reason: Failure) -> None:  # noqa: N802
        try:
            super().connectionLost(reason)
        finally:
            self._on_lost(reason)


class FtpEngine:
    """One run of the Twisted FTP server.

    Root directory and credentials are captured at construction. ``start``
    binds the listener, ``stop`` releases it and drains sessions.

    Args:
        root_dir: Directory served as the FTP root.
        username: The single accepted login name.
        password: The single accepted password.
        on_failure: Called (from the reactor thread) with a message if the
            listener disappears without ``stop()`` having been requested.
    """

    def __init__(
        self,
        root_dir: str,
        username: str,
        password: str,
        on_failure: Callable[[str], None] | None = None,
    ) -> None:
        portal = Portal(RootRealm(root_dir), [SingleUserChecker(username, password)])
        self._factory = SessionTrackingFactory(portal)
        self._root_dir = root_dir
        self._on_failure = on_failure
        self._port: _MonitoredPort | None = None
        self._stopping = False
        self._listening = threading.Event()

    @property
    def is_listening(self) -> bool:
        """Return True while the listening socket is open."""
        return self._listening.is_set()

    @property
    def session_count(self) -> int:
        """Return the number of connected FTP sessions."""
        return len(self._factory.sessions)

    def start(self, port: int, interface: str = "") -> int:
        """Bind the listener and start accepting clients.

        Args:
            port: TCP port to bind.
            interface: Local address to bind, empty for all IPv4 interfaces.

        Returns:
            The port actually bound.

        Raises:
            AddressInUseError: If the port is taken.
            PermissionDeniedError: If the OS refuses the port.
            EngineFailureError: For any other engine failure.
        """
        if self._port is not None:
            msg = "Engine instance already started"
            raise EngineFailureError(msg)

        ensure_reactor_running()

        def _listen() -> int:
            listener = _MonitoredPort(port, self._factory, interface, self._on_port_lost)
            listener.startListening()
            self._port = listener
            self._listening.set()
            return int(listener.getHost().port)

        try:
            bound = int(call_in_reactor(_listen))
        except CannotListenError as e:
            socket_error = e.socketError
            if isinstance(socket_error, OSError):
                raise error_from_os_error(socket_error, port) from e
            msg = f"The FTP server could not listen (port {port})"
            raise EngineFailureError(msg) from e

        logger.info("FTP engine listening on %s:%d, root %s", interface or "*", bound, self._root_dir)
        return bound

    def stop(self, grace_period: float) -> None:
        """Release the listener and shut sessions down within a bounded time.

        Order: close the listening socket (the port is free when this
        returns), close idle sessions, wait up to ``grace_period`` for
        sessions with a running transfer, then abort whatever is left.

        Args:
            grace_period: Seconds to wait for in-flight transfers.

        Raises:
            EngineFailureError: If the listener could not be closed, in
                which case the port may still be bound.
        """
        listener = self._port
        if listener is None:
            return
        self._stopping = True

        if not reactor.running:  # type: ignore[attr-defined]
            logger.warning("Reactor not running, nothing to stop")
            self._listening.clear()
            return

        try:
            call_in_reactor(listener.stopListening)
        except EngineFailureError:
            logger.exception("Failed to close FTP listener")
            self._listening.clear()
            raise
        self._listening.clear()

        deadline = time.monotonic() + max(0.0, grace_period)
        remaining = self._close_sessions(abort=False)
        while remaining and time.monotonic() < deadline:
            time.sleep(DRAIN_POLL_INTERVAL_S)
            remaining = self._close_sessions(abort=False)

        if remaining:
            logger.warning("Grace period over, force-closing %d FTP session(s)", remaining)
            self._close_sessions(abort=True)
            force_deadline = time.monotonic() + FORCE_CLOSE_TIMEOUT_S
            while self._factory.sessions and time.monotonic() < force_deadline:
                time.sleep(DRAIN_POLL_INTERVAL_S)

        logger.info("FTP engine stopped")

    def _close_sessions(self, abort: bool) -> int:
        """Close sessions on the reactor thread.

        Args:
            abort: If True abort every session, otherwise only idle ones.

        Returns:
            Number of sessions still connected (including ones closing).
        """

        def _close() -> int:
            for session in list(self._factory.sessions):
                transport = session.transport
                if transport is None:
                    continue
                if abort:
                    transport.abortConnection()
                elif not _is_transferring(session):
                    transport.loseConnection()
            return len(self._factory.sessions)

        try:
            return int(call_in_reactor(_close))
        except EngineFailureError:
            logger.exception("Failed to close FTP sessions")
            return 0

    def _on_port_lost(self, reason: Failure) -> None:
        """Reactor-thread callback when the listening socket closes."""
        self._listening.clear()
        if self._stopping:
            return
        logger.error("FTP listener closed unexpectedly: %s", reason.getErrorMessage())
        if self._on_failure is not None:
            self._on_failure("The FTP server stopped unexpectedly")
