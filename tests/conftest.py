"""
pytest configuration and fixtures.
"""

import io
import socket
import time
from typing import Callable, Generator
import pytest

# Add src to path for imports
import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from chatty import ChatConfig, ConnectionManager
from chatty.console import Console


class BufferConsole(Console):
    """Console that writes into memory so tests can read what the user saw."""

    def __init__(self):
        super().__init__(stdout=io.StringIO(), stderr=io.StringIO())

    @property
    def output(self) -> str:
        return self.stdout.getvalue()

    @property
    def errors(self) -> str:
        return self.stderr.getvalue()


def _wait_until(predicate: Callable[[], bool], timeout: float = 5.0, interval: float = 0.02) -> bool:
    """Poll predicate until it is true or the timeout expires."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


@pytest.fixture
def wait_until() -> Callable[..., bool]:
    """Polling helper for things handler threads do eventually."""
    return _wait_until


@pytest.fixture
def console() -> BufferConsole:
    return BufferConsole()


@pytest.fixture
def config() -> ChatConfig:
    """Default test configuration."""
    return ChatConfig(
        host="127.0.0.1",
        port=0,  # Let OS pick a free port
        dial_timeout=2.0,
        accept_poll_interval=0.1,
    )


@pytest.fixture
def free_port() -> int:
    """Get a free port for testing."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(('127.0.0.1', 0))
        return s.getsockname()[1]


@pytest.fixture
def sock_pair() -> Generator[tuple[socket.socket, socket.socket], None, None]:
    """A connected pair of sockets, closed after the test."""
    a, b = socket.socketpair()
    yield a, b
    a.close()
    b.close()


def _started_manager(config: ChatConfig, console: BufferConsole) -> ConnectionManager:
    manager = ConnectionManager(config, console)
    manager.start()
    return manager


@pytest.fixture
def manager(config: ChatConfig, console: BufferConsole) -> Generator[ConnectionManager, None, None]:
    """A started manager listening on a free loopback port."""
    mgr = _started_manager(config, console)
    yield mgr
    mgr.exit()


@pytest.fixture
def peer_console() -> BufferConsole:
    return BufferConsole()


@pytest.fixture
def peer(peer_console: BufferConsole) -> Generator[ConnectionManager, None, None]:
    """A second, independent manager to talk to."""
    mgr = _started_manager(
        ChatConfig(host="127.0.0.1", port=0, dial_timeout=2.0, accept_poll_interval=0.1),
        peer_console,
    )
    yield mgr
    mgr.exit()


@pytest.fixture
def clients() -> Generator[list, None, None]:
    """Collects raw client sockets opened by a test and closes them afterwards."""
    opened: list = []
    yield opened
    for sock in opened:
        sock.close()
