"""Test fixtures for easyftp tests."""

import os
import socket
from pathlib import Path

import pytest

# Widgets need a platform plugin; offscreen works on headless CI
os.environ.setdefault("QT_QPA_PLATFORM", "offscreen")

from easyftp.models.config import ServerConfig  # noqa: E402

TEST_USERNAME = "tester"
TEST_PASSWORD = "s3cret"


@pytest.fixture
def free_port() -> int:
    """Return a TCP port that was free a moment ago on 127.0.0.1."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return int(s.getsockname()[1])


@pytest.fixture
def ftp_root(tmp_path: Path) -> Path:
    """Return a served root directory holding one small file."""
    root = tmp_path / "ftp-root"
    root.mkdir()
    (root / "hello.txt").write_text("hello over ftp\n", encoding="utf-8")
    return root


@pytest.fixture
def server_config(ftp_root: Path, free_port: int) -> ServerConfig:
    """Return a valid configuration serving ftp_root on free_port."""
    return ServerConfig(
        root_dir=str(ftp_root),
        username=TEST_USERNAME,
        password=TEST_PASSWORD,
        port=free_port,
    )
