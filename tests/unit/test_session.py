"""
Unit tests for the per-connection session state machine.
"""

import threading
import time

import pytest

from tokenserver.config import ServerConfig
from tokenserver.core.connection import Connection, ConnectionState
from tokenserver.core.session import Session, run
from tokenserver.protocol import SessionState


class FakeSocket:
    """
    Scripted stand-in for a client socket.

    Each recv() pops the next item: bytes are returned (cut to the
    requested size), exceptions are raised. Once the script runs out,
    recv() returns b"" like a closed peer.
    """

    def __init__(self, incoming, send_error: Exception = None):
        self.incoming = list(incoming)
        self.sent = []
        self.send_error = send_error
        self.closed = False

    def setblocking(self, flag):
        pass

    def settimeout(self, timeout):
        pass

    def recv(self, size):
        if not self.incoming:
            return b""
        item = self.incoming.pop(0)
        if isinstance(item, Exception):
            raise item
        return item[:size]

    def sendall(self, data):
        if self.send_error is not None:
            raise self.send_error
        self.sent.append(data)

    def shutdown(self, how):
        pass

    def close(self):
        self.closed = True


def make_connection(sock, buffer_size: int = 16) -> Connection:
    return Connection(socket=sock, address=("127.0.0.1", 50000), buffer_size=buffer_size)


def start_session(server_side, config: ServerConfig = None) -> threading.Thread:
    conn = make_connection(server_side, buffer_size=(config or ServerConfig()).buffer_size)
    thread = threading.Thread(target=run, args=(conn, config or ServerConfig()), daemon=True)
    thread.start()
    return thread


class TestSessionOverSocketPair:
    """Full conversations over a real socketpair."""

    def test_scenario(self, socket_pair):
        """Test hello, negotiate, unknown token and bye in one session."""
        server_side, client = socket_pair
        thread = start_session(server_side)

        assert client.exchange(b"hello", 6) == b"hello\x00"
        assert client.exchange(b"negotiate", 14) == b"negotiate back"
        assert client.exchange(b"foo", 22) == b"message not recognised"
        assert client.exchange(b"bye", 3) == b"bye"
        assert client.at_eof()

        thread.join(timeout=5.0)
        assert not thread.is_alive()

    def test_invalid_start_repeats(self, socket_pair):
        """Test that the handshake can be retried any number of times."""
        server_side, client = socket_pair
        start_session(server_side)

        for message in (b"bye", b"negotiate", b"HELLO", b"\r\n"):
            assert client.exchange(message, 14) == b"invalid start\x00"

        assert client.exchange(b"hello\r\n", 6) == b"hello\x00"

    def test_hello_while_active(self, socket_pair):
        """Test that hello after the handshake is answered without a NUL."""
        server_side, client = socket_pair
        start_session(server_side)

        client.exchange(b"hello", 6)
        for _ in range(3):
            assert client.exchange(b"hello", 5) == b"hello"

    def test_bye_before_handshake_does_not_close(self, socket_pair):
        server_side, client = socket_pair
        thread = start_session(server_side)

        assert client.exchange(b"bye", 14) == b"invalid start\x00"
        assert thread.is_alive()

    def test_trailing_crlf(self, socket_pair):
        """Test that telnet-style line endings are ignored."""
        server_side, client = socket_pair
        thread = start_session(server_side)

        assert client.exchange(b"hello\r\n", 6) == b"hello\x00"
        assert client.exchange(b"negotiate \t\r\n", 14) == b"negotiate back"
        assert client.exchange(b"bye\r\n", 3) == b"bye"
        assert client.at_eof()
        thread.join(timeout=5.0)

    def test_client_writing_after_bye_cannot_hold_session(self, socket_pair):
        """Test that the session closes even if the client keeps sending after bye."""
        server_side, client = socket_pair
        thread = start_session(server_side)

        client.exchange(b"hello", 6)
        assert client.exchange(b"bye", 3) == b"bye"

        for _ in range(30):
            if not thread.is_alive():
                break
            try:
                client.sock.send(b"x")
            except OSError:
                break
            time.sleep(0.1)

        thread.join(timeout=2.0)
        assert not thread.is_alive()


class TestSessionWithFakeSocket:
    """Edge cases that are hard to produce on a real socket."""

    def test_receive_error_in_handshake(self):
        """Test that a failed read is reported and the handshake still works."""
        sock = FakeSocket([ConnectionResetError("reset"), b"hello", b"bye"])
        session = Session(make_connection(sock), ServerConfig())

        session.run()

        assert sock.sent == [b"recieve error\x00", b"hello\x00", b"bye"]
        assert session.state is SessionState.TERMINATED
        assert sock.closed

    def test_receive_error_while_active(self):
        """Test that a failed read does not end an active session."""
        sock = FakeSocket([
            b"hello",
            OSError("boom"),
            OSError("boom"),
            b"negotiate",
            b"bye",
        ])
        session = Session(make_connection(sock), ServerConfig())

        session.run()

        assert sock.sent == [
            b"hello\x00",
            b"recieve error\x00",
            b"recieve error\x00",
            b"negotiate back",
            b"bye",
        ]
        assert session.state is SessionState.TERMINATED

    def test_max_receive_errors(self):
        """Test that the optional bound drops the session."""
        sock = FakeSocket([b"hello"] + [OSError("boom")] * 5)
        session = Session(make_connection(sock), ServerConfig(max_receive_errors=3))

        session.run()

        assert sock.sent == [b"hello\x00"] + [b"recieve error\x00"] * 3
        assert session.state is SessionState.ACTIVE
        assert sock.closed

    def test_max_receive_errors_counts_consecutive(self):
        """Test that a good read resets the error count."""
        sock = FakeSocket([
            OSError("boom"),
            b"hello",
            OSError("boom"),
            b"negotiate",
            OSError("boom"),
            b"bye",
        ])
        session = Session(make_connection(sock), ServerConfig(max_receive_errors=2))

        session.run()

        assert session.state is SessionState.TERMINATED
        assert sock.sent[-1] == b"bye"

    def test_empty_read_is_empty_token(self):
        """Test that zero bytes is processed as an empty token."""
        sock = FakeSocket([b"", b"hello", b"", b"bye"])
        session = Session(make_connection(sock), ServerConfig())

        session.run()

        assert sock.sent == [
            b"invalid start\x00",
            b"hello\x00",
            b"message not recognised",
            b"bye",
        ]

    def test_token_truncated_to_buffer_size(self):
        """Test that bytes past buffer_size are not part of the token."""
        sock = FakeSocket([b"hello", OSError("stop")])
        config = ServerConfig(buffer_size=4, max_receive_errors=1)
        session = Session(make_connection(sock, buffer_size=4), config)

        session.run()

        assert sock.sent == [b"invalid start\x00", b"recieve error\x00"]

    def test_nul_terminated_client_tokens(self):
        sock = FakeSocket([b"hello\x00", b"negotiate\x00", b"bye\x00"])
        session = Session(make_connection(sock), ServerConfig())

        session.run()

        assert sock.sent == [b"hello\x00", b"negotiate back", b"bye"]

    def test_send_failure_ends_session(self):
        """Test that an unusable connection ends the session and is closed."""
        sock = FakeSocket([b"hello"], send_error=BrokenPipeError("gone"))
        conn = make_connection(sock)
        session = Session(conn, ServerConfig())

        session.run()

        assert session.state is SessionState.AWAITING_HANDSHAKE
        assert sock.closed
        assert conn.state is ConnectionState.CLOSED

    def test_unexpected_error_is_contained(self, caplog):
        """Test that nothing escapes run() and the connection still closes."""
        sock = FakeSocket([RuntimeError("bug")])
        session = Session(make_connection(sock), ServerConfig())

        session.run()

        assert sock.closed
        assert "Session error" in caplog.text
