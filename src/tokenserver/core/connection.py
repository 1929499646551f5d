"""
=============================================================================
CONNECTION MANAGEMENT
=============================================================================

Wraps one accepted client socket. A Connection is created by the listener,
handed to exactly one session, and closed by that session. Nobody else
ever touches it.

=============================================================================
ONE READ, ONE TOKEN
=============================================================================

TCP is a byte stream and does not preserve message boundaries. This
protocol ignores that on purpose: every recv() is treated as one whole
token, no matter how the bytes were split on the way.

    Client sends "negotiate\\r\\n"

    buffer_size = 16:   recv() → b"negotiate\\r\\n"       → "negotiate"
    buffer_size = 4:    recv() → b"nego"               → "nego"
                        recv() → b"tiat"               → "tiat"
                        ...

There is no accumulation between reads and no delimiter scanning. Clients
wait for each reply before sending the next token, which keeps reads
aligned in practice.

=============================================================================
CONNECTION STATE
=============================================================================

    OPEN ──► READING ──► WRITING ──┐
              ▲                    │
              └────────────────────┘
                        │
                        ▼
                     CLOSING ──► CLOSED

=============================================================================
"""

import socket
import time
import logging
from enum import Enum
from dataclasses import dataclass, field
import uuid


logger = logging.getLogger(__name__)

# Upper bound on reading leftovers from the client during close()
DRAIN_TIMEOUT = 0.5


class ReceiveError(ConnectionError):
    """A read on the client socket failed."""


class ConnectionState(Enum):
    """
    Connection lifecycle states.

    Tracked for logging; the protocol state lives in the session.
    """
    OPEN = "open"            # Just accepted
    READING = "reading"      # Blocked in recv()
    WRITING = "writing"      # Sending a reply
    CLOSING = "closing"      # Shutdown sequence in progress
    CLOSED = "closed"        # Socket released


@dataclass
class Connection:
    """
    Represents a client connection.

    Attributes:
        socket: The client socket.
        address: Client's (ip, port) tuple.
        id: Short connection identifier (for logging).
        state: Current connection state.
        created_at: Timestamp when connection was accepted.
        last_activity: Timestamp of last read or write.
        messages_handled: Number of chunks received.
        buffer_size: Maximum bytes per read.
    """

    socket: socket.socket
    address: tuple

    id: str = field(default_factory=lambda: str(uuid.uuid4())[:8])
    state: ConnectionState = ConnectionState.OPEN
    created_at: float = field(default_factory=time.time)
    last_activity: float = field(default_factory=time.time)
    messages_handled: int = 0

    buffer_size: int = 16

    def __post_init__(self):
        # Sessions have no timeout: a silent client holds its session.
        self.socket.setblocking(True)

    # =========================================================================
    # PROPERTIES
    # =========================================================================

    @property
    def client_ip(self) -> str:
        """Get the client IP address."""
        return self.address[0]

    @property
    def client_port(self) -> int:
        """Get the client port."""
        return self.address[1]

    @property
    def age(self) -> float:
        """Get connection age in seconds."""
        return time.time() - self.created_at

    @property
    def is_closed(self) -> bool:
        return self.state == ConnectionState.CLOSED

    # =========================================================================
    # READING
    # =========================================================================

    def receive(self) -> bytes:
        """
        Read one chunk of at most buffer_size bytes.

        Returns:
            The bytes read. Empty bytes when the peer has closed its side;
            that is not an error here.

        Raises:
            ReceiveError: If the read fails.
        """
        self.state = ConnectionState.READING
        try:
            data = self.socket.recv(self.buffer_size)
        except OSError as e:
            raise ReceiveError(f"recv failed: {e}") from e

        self.messages_handled += 1
        self.last_activity = time.time()
        return data

    # =========================================================================
    # WRITING
    # =========================================================================

    def send(self, data: bytes) -> bool:
        """
        Send data to the client.

        Uses sendall() so the whole reply goes out or the call fails.

        Returns:
            True if send succeeded, False if the connection is unusable.
        """
        self.state = ConnectionState.WRITING
        try:
            self.socket.sendall(data)
            self.last_activity = time.time()
            return True
        except OSError as e:
            logger.warning(f"[{self.id}] Send failed: {e}")
            return False

    # =========================================================================
    # CLOSING
    # =========================================================================

    def close(self):
        """
        Close the connection gracefully.

        1. shutdown(SHUT_WR): send FIN, the client sees end-of-stream
        2. Drain what the client already sent, DRAIN_TIMEOUT in total
        3. close(): release the file descriptor

        Safe to call more than once.
        """
        if self.state == ConnectionState.CLOSED:
            return

        last_state = self.state
        self.state = ConnectionState.CLOSING

        try:
            self.socket.shutdown(socket.SHUT_WR)
        except OSError:
            pass  # Peer already gone

        deadline = time.monotonic() + DRAIN_TIMEOUT
        try:
            while True:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    break
                self.socket.settimeout(remaining)
                if not self.socket.recv(1024):
                    break
        except OSError:
            pass  # socket.timeout is an OSError too

        try:
            self.socket.close()
        except OSError:
            pass

        self.state = ConnectionState.CLOSED
        logger.debug(
            f"[{self.id}] Connection closed while {last_state.name} after "
            f"{self.messages_handled} messages ({self.age:.2f}s)"
        )

    # =========================================================================
    # CONTEXT MANAGER
    # =========================================================================

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Ensure the connection is closed."""
        self.close()
        return False
