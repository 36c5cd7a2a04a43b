"""Tests for the Twisted FTP engine adapter (real sockets on 127.0.0.1)."""

import ftplib
import socket
import threading
import time
from collections.abc import Callable, Generator
from io import BytesIO
from pathlib import Path
from unittest.mock import patch

import pytest

from easyftp.core.engine import FtpEngine, SingleUserChecker, call_in_reactor, ensure_reactor_running
from easyftp.core.errors import AddressInUseError, EngineFailureError

TEST_USERNAME = "tester"
TEST_PASSWORD = "s3cret"

pytestmark = pytest.mark.timeout(30)


def _connect(port: int) -> ftplib.FTP:
    ftp = ftplib.FTP()
    ftp.connect("127.0.0.1", port, timeout=5)
    return ftp


def _port_is_free(port: int) -> bool:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        try:
            s.bind(("127.0.0.1", port))
        except OSError:
            return False
    return True


class _ChunkedSource:
    """File-like upload source handing out fixed chunks with a delay.

    With a gate, reads after the first two block until the gate is set.
    """

    def __init__(self, chunk: bytes, count: int, delay: float, gate: threading.Event | None = None) -> None:
        self._chunk = chunk
        self._count = count
        self._delay = delay
        self._gate = gate
        self.reads = 0

    @property
    def chunk_size(self) -> int:
        return len(self._chunk)

    def read(self, size: int = -1) -> bytes:
        if self.reads >= self._count:
            return b""
        if self.reads > 0:
            time.sleep(self._delay)
        if self._gate is not None and self.reads >= 2:
            self._gate.wait(10)
        self.reads += 1
        return self._chunk


def _upload_in_thread(
    ftp: ftplib.FTP, name: str, source: _ChunkedSource
) -> tuple[threading.Thread, dict[str, object]]:
    outcome: dict[str, object] = {}

    def run() -> None:
        try:
            outcome["reply"] = ftp.storbinary(f"STOR {name}", source, blocksize=source.chunk_size)
        except (OSError, EOFError, ftplib.Error) as e:
            outcome["error"] = e

    thread = threading.Thread(target=run, daemon=True)
    thread.start()
    return thread, outcome


def _wait_for(predicate: Callable[[], bool], timeout: float = 5.0) -> bool:
    deadline = time.monotonic() + timeout
    while not predicate() and time.monotonic() < deadline:
        time.sleep(0.01)
    return predicate()


@pytest.fixture
def engine(ftp_root: Path) -> Generator[FtpEngine, None, None]:
    """Return an engine for ftp_root, stopped after the test."""
    eng = FtpEngine(str(ftp_root), TEST_USERNAME, TEST_PASSWORD)
    yield eng
    eng.stop(grace_period=0.5)


class TestReactor:
    """Test the shared reactor thread."""

    def test_call_in_reactor_returns_value(self) -> None:
        """Test results come back to the calling thread."""
        ensure_reactor_running()
        assert call_in_reactor(threading.current_thread).name == "ftp-reactor"

    def test_call_in_reactor_reraises(self) -> None:
        """Test exceptions from the reactor thread are re-raised."""
        ensure_reactor_running()

        def boom() -> None:
            msg = "boom"
            raise ValueError(msg)

        with pytest.raises(ValueError, match="boom"):
            call_in_reactor(boom)


class TestSingleUserChecker:
    """Test credential checking."""

    def test_accepts_matching_pair(self) -> None:
        """Test the configured pair logs in."""
        checker = SingleUserChecker("user", "pw")
        creds = type("Creds", (), {"username": b"user", "password": b"pw"})()
        results: list[object] = []
        checker.requestAvatarId(creds).addCallback(results.append)
        assert results == [b"user"]

    @pytest.mark.parametrize(("username", "password"), [(b"user", b"bad"), (b"other", b"pw"), (b"", b"")])
    def test_rejects_other_pairs(self, username: bytes, password: bytes) -> None:
        """Test any mismatch is rejected."""
        checker = SingleUserChecker("user", "pw")
        creds = type("Creds", (), {"username": username, "password": password})()
        failures: list[object] = []
        checker.requestAvatarId(creds).addErrback(failures.append)
        assert len(failures) == 1


class TestFtpEngineServing:
    """Test serving the configured root to the configured user."""

    def test_login_and_list(self, engine: FtpEngine, free_port: int) -> None:
        """Test a client can log in and sees the root contents."""
        bound = engine.start(free_port, interface="127.0.0.1")
        assert bound == free_port
        assert engine.is_listening

        ftp = _connect(bound)
        try:
            ftp.login(TEST_USERNAME, TEST_PASSWORD)
            assert "hello.txt" in ftp.nlst()
            chunks: list[bytes] = []
            ftp.retrbinary("RETR hello.txt", chunks.append)
            assert b"".join(chunks) == b"hello over ftp\n"
        finally:
            ftp.close()

    def test_upload_lands_in_root(self, engine: FtpEngine, free_port: int, ftp_root: Path) -> None:
        """Test STOR writes into the served directory."""
        engine.start(free_port, interface="127.0.0.1")
        ftp = _connect(free_port)
        try:
            ftp.login(TEST_USERNAME, TEST_PASSWORD)
            ftp.storbinary("STOR upload.bin", BytesIO(b"\x00\x01\x02"))
        finally:
            ftp.close()
        uploaded = ftp_root / "upload.bin"
        deadline = time.monotonic() + 2
        while uploaded.stat().st_size < 3 and time.monotonic() < deadline:
            time.sleep(0.01)
        assert uploaded.read_bytes() == b"\x00\x01\x02"

    def test_wrong_password_rejected(self, engine: FtpEngine, free_port: int) -> None:
        """Test a bad password gets a 530."""
        engine.start(free_port, interface="127.0.0.1")
        ftp = _connect(free_port)
        try:
            with pytest.raises(ftplib.error_perm):
                ftp.login(TEST_USERNAME, "wrong")
        finally:
            ftp.close()

    def test_anonymous_rejected(self, engine: FtpEngine, free_port: int) -> None:
        """Test anonymous login is never offered."""
        engine.start(free_port, interface="127.0.0.1")
        ftp = _connect(free_port)
        try:
            with pytest.raises(ftplib.error_perm):
                ftp.login()
        finally:
            ftp.close()

    def test_welcome_banner(self, engine: FtpEngine, free_port: int) -> None:
        """Test the greeting line."""
        engine.start(free_port, interface="127.0.0.1")
        ftp = _connect(free_port)
        try:
            assert ftp.getwelcome().startswith("220")
        finally:
            ftp.close()


class TestFtpEngineLifecycle:
    """Test bind errors and shutdown."""

    def test_port_in_use(self, engine: FtpEngine) -> None:
        """Test an occupied port maps to AddressInUse."""
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as blocker:
            blocker.bind(("127.0.0.1", 0))
            blocker.listen(1)
            port = blocker.getsockname()[1]
            with pytest.raises(AddressInUseError):
                engine.start(port, interface="127.0.0.1")
        assert not engine.is_listening

    def test_start_twice_rejected(self, engine: FtpEngine, free_port: int) -> None:
        """Test an engine instance binds only once."""
        engine.start(free_port, interface="127.0.0.1")
        with pytest.raises(EngineFailureError):
            engine.start(free_port, interface="127.0.0.1")

    def test_stop_releases_port(self, ftp_root: Path, free_port: int) -> None:
        """Test the port can be bound again right after stop."""
        engine = FtpEngine(str(ftp_root), TEST_USERNAME, TEST_PASSWORD)
        engine.start(free_port, interface="127.0.0.1")
        engine.stop(grace_period=0.5)
        assert not engine.is_listening
        assert _port_is_free(free_port)

    def test_stop_closes_idle_sessions(self, ftp_root: Path, free_port: int) -> None:
        """Test idle logged-in clients are disconnected quickly."""
        engine = FtpEngine(str(ftp_root), TEST_USERNAME, TEST_PASSWORD)
        engine.start(free_port, interface="127.0.0.1")
        ftp = _connect(free_port)
        ftp.login(TEST_USERNAME, TEST_PASSWORD)
        deadline = time.monotonic() + 2
        while engine.session_count == 0 and time.monotonic() < deadline:
            time.sleep(0.01)
        assert engine.session_count == 1

        started = time.monotonic()
        engine.stop(grace_period=5.0)
        assert time.monotonic() - started < 2.0
        assert engine.session_count == 0
        with pytest.raises((EOFError, OSError, ftplib.Error)):
            ftp.voidcmd("NOOP")
        ftp.close()

    def test_stop_lets_transfer_finish_within_grace(self, ftp_root: Path, free_port: int) -> None:
        """Test an upload that completes inside the grace period is kept whole."""
        engine = FtpEngine(str(ftp_root), TEST_USERNAME, TEST_PASSWORD)
        engine.start(free_port, interface="127.0.0.1")
        ftp = _connect(free_port)
        try:
            ftp.login(TEST_USERNAME, TEST_PASSWORD)
            source = _ChunkedSource(b"x" * 1000, count=10, delay=0.08)
            thread, outcome = _upload_in_thread(ftp, "slow.bin", source)
            assert _wait_for(lambda: source.reads >= 2)

            started = time.monotonic()
            engine.stop(grace_period=5.0)
            elapsed = time.monotonic() - started
            thread.join(10)
        finally:
            ftp.close()

        assert "error" not in outcome
        assert str(outcome["reply"]).startswith("226")
        assert elapsed < 5.0
        assert engine.session_count == 0
        uploaded = ftp_root / "slow.bin"
        assert _wait_for(lambda: uploaded.stat().st_size == 10000)
        assert uploaded.read_bytes() == b"x" * 10000

    def test_stop_aborts_transfer_after_grace(self, ftp_root: Path, free_port: int) -> None:
        """Test an upload still running when the grace period ends is cut off."""
        engine = FtpEngine(str(ftp_root), TEST_USERNAME, TEST_PASSWORD)
        engine.start(free_port, interface="127.0.0.1")
        gate = threading.Event()
        ftp = _connect(free_port)
        try:
            ftp.login(TEST_USERNAME, TEST_PASSWORD)
            source = _ChunkedSource(b"y" * 1000, count=50, delay=0.01, gate=gate)
            thread, outcome = _upload_in_thread(ftp, "stuck.bin", source)
            assert _wait_for(lambda: source.reads >= 2)

            started = time.monotonic()
            engine.stop(grace_period=1.0)
            elapsed = time.monotonic() - started
            assert 0.9 <= elapsed < 3.5
            assert engine.session_count == 0
        finally:
            gate.set()
            thread.join(10)
            ftp.close()

        assert "reply" not in outcome

    def test_listener_close_timeout_raises(self, ftp_root: Path, free_port: int) -> None:
        """Test stop() reports a listener the reactor could not close."""
        engine = FtpEngine(str(ftp_root), TEST_USERNAME, TEST_PASSWORD)
        engine.start(free_port, interface="127.0.0.1")
        listener = engine._port
        assert listener is not None

        with (
            patch(
                "easyftp.core.engine.call_in_reactor",
                side_effect=EngineFailureError("The network engine did not respond"),
            ),
            pytest.raises(EngineFailureError),
        ):
            engine.stop(grace_period=0.1)
        assert not engine.is_listening

        call_in_reactor(listener.stopListening)
        assert _port_is_free(free_port)

    def test_stop_unstarted_is_noop(self, ftp_root: Path) -> None:
        """Test stopping an engine that never listened."""
        FtpEngine(str(ftp_root), TEST_USERNAME, TEST_PASSWORD).stop(grace_period=0.1)

    def test_unexpected_listener_loss_reported(self, ftp_root: Path, free_port: int) -> None:
        """Test on_failure fires when the listener dies without stop()."""
        failures: list[str] = []
        reported = threading.Event()

        def on_failure(message: str) -> None:
            failures.append(message)
            reported.set()

        engine = FtpEngine(str(ftp_root), TEST_USERNAME, TEST_PASSWORD, on_failure=on_failure)
        engine.start(free_port, interface="127.0.0.1")
        # simulate the listening socket going away underneath the engine
        call_in_reactor(engine._port.loseConnection)
        assert reported.wait(5)
        assert failures
        assert not engine.is_listening
        engine.stop(grace_period=0.1)

    def test_requested_stop_not_reported(self, ftp_root: Path, free_port: int) -> None:
        """Test a normal stop does not call on_failure."""
        failures: list[str] = []
        engine = FtpEngine(str(ftp_root), TEST_USERNAME, TEST_PASSWORD, on_failure=failures.append)
        engine.start(free_port, interface="127.0.0.1")
        engine.stop(grace_period=0.1)
        time.sleep(0.1)
        assert failures == []
