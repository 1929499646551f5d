"""
pytest configuration and fixtures.
"""

import socket
import threading
from typing import Generator, Tuple
import pytest

# Add src to path for imports
import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from tokenserver import TokenServer, ServerConfig


@pytest.fixture
def config() -> ServerConfig:
    """Default test server configuration."""
    return ServerConfig(
        host="127.0.0.1",
        port=0,  # Let OS pick a free port
        backlog=64,
        log_level="WARNING",
    )


def recv_exact(sock: socket.socket, size: int) -> bytes:
    """Read exactly size bytes (or fewer if the peer closes)."""
    data = b""
    while len(data) < size:
        chunk = sock.recv(size - len(data))
        if not chunk:
            break
        data += chunk
    return data


class TestClient:
    """Line-at-a-time client for the token protocol."""

    __test__ = False  # Not a test class

    def __init__(self, sock: socket.socket):
        self.sock = sock

    @classmethod
    def connect(cls, address: Tuple[str, int], timeout: float = 5.0) -> "TestClient":
        return cls(socket.create_connection(address, timeout=timeout))

    def exchange(self, message: bytes, expected_size: int) -> bytes:
        """Send one message and read a reply of expected_size bytes."""
        self.sock.sendall(message)
        return recv_exact(self.sock, expected_size)

    def at_eof(self) -> bool:
        """True once the server has closed its side."""
        return self.sock.recv(64) == b""

    def close(self):
        self.sock.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()
        return False


@pytest.fixture
def socket_pair() -> Generator[Tuple[socket.socket, TestClient], None, None]:
    """A connected (server-side socket, client) pair, no listener needed."""
    server_side, client_side = socket.socketpair()
    client_side.settimeout(5.0)
    client = TestClient(client_side)

    yield server_side, client

    for s in (server_side, client_side):
        try:
            s.close()
        except OSError:
            pass


class RunningServer:
    """Test server helper that runs in a background thread."""

    __test__ = False

    def __init__(self, server: TokenServer):
        self.server = server
        self._thread: threading.Thread = None

    @property
    def address(self) -> Tuple[str, int]:
        return self.server.address

    def start(self):
        """Start server in background thread."""
        self._thread = threading.Thread(target=self.server.run, daemon=True)
        self._thread.start()

        if not self.server.wait_until_listening(timeout=5.0):
            raise RuntimeError("Server failed to start")

    def stop(self):
        """Stop the server."""
        self.server.shutdown()

        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=5.0)

    def client(self) -> TestClient:
        return TestClient.connect(self.address)


@pytest.fixture
def running_server(config: ServerConfig) -> Generator[RunningServer, None, None]:
    """A token server listening on an ephemeral port."""
    srv = RunningServer(TokenServer(config))
    srv.start()

    yield srv

    srv.stop()
