"""
=============================================================================
LOW-LEVEL TCP SOCKET SERVER
=============================================================================

Owns the listening socket: bind, listen, then accept connections forever
and hand each one off. It never reads or writes protocol bytes itself.

SOCKET LIFECYCLE (Server Side):
────────────────────────────────

    1. socket()    Create an IPv4 TCP socket
    2. bind()      Reserve host:port            → BindError on failure
    3. listen()    Start the OS accept queue    → ListenError on failure
    4. accept()    Wait for the next client     → logged on failure,
                                                  loop keeps going
    5. close()     Only when the process shuts down

                    ┌───────────────────────┐
                    │   Listening Socket    │ ◄── Created once at startup
                    └───────────┬───────────┘     Never sends/receives data
                                │
        ┌───────────────────────┼───────────────────────┐
        ▼                       ▼                       ▼
    ┌───────────┐         ┌───────────┐         ┌───────────┐
    │ Session 1 │         │ Session 2 │         │ Session 3 │
    └───────────┘         └───────────┘         └───────────┘
    Each accept() creates a new socket, owned by exactly one session

=============================================================================
SIGNAL HANDLING
=============================================================================

SIGINT (Ctrl+C) and SIGTERM stop the accept loop and close the listening
socket. Live sessions are not waited for: they run in daemon threads and
go away with the process.

Python only allows signal handlers in the main thread, so when the server
is started from another thread (tests, embedding) handlers are skipped and
shutdown() has to be called directly.

=============================================================================
"""

import socket
import signal
import logging
import threading
from typing import Optional, Callable, Tuple

from ..config import ServerConfig
from .connection import Connection


logger = logging.getLogger(__name__)

# accept() wakes up this often to check whether shutdown() was called
ACCEPT_POLL_INTERVAL = 1.0


class ServerError(Exception):
    """Base class for fatal listener errors."""


class BindError(ServerError):
    """The address/port could not be bound."""


class ListenError(ServerError):
    """The bound socket could not be put into listening mode."""


class SocketServer:
    """
    Low-level TCP socket server.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                      SocketServer Internals                          │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │    start(handler)                                                    │
    │        ├──► _create_socket()   SO_REUSEADDR, TCP_NODELAY             │
    │        ├──► _bind_and_listen() BindError / ListenError               │
    │        ├──► _setup_signals()   SIGTERM/SIGINT (main thread only)     │
    │        └──► _accept_loop()     accept → Connection → handler(conn)   │
    │                                                                      │
    │    shutdown()        Stop the accept loop                            │
    │    _cleanup()        Restore signals, close listening socket         │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

    The handler must not block: it is expected to hand the connection to
    its own thread and return so the loop can accept again.

    Usage:
        def handle_connection(conn: Connection):
            threading.Thread(target=..., args=(conn,)).start()

        server = SocketServer(config)
        server.start(handle_connection)  # Blocks until shutdown
    """

    def __init__(self, config: ServerConfig):
        self.config = config

        self._socket: Optional[socket.socket] = None
        self._running = False
        self._bound_address: Optional[Tuple[str, int]] = None

        # Set once the socket is listening, cleared on shutdown
        self._listening = threading.Event()

        self._original_handlers: dict = {}

    @property
    def is_running(self) -> bool:
        """Check if server is running."""
        return self._running

    @property
    def address(self) -> Tuple[str, int]:
        """
        The server's bound address (IP, port).

        With port 0 in the config this is the port the OS picked, once
        the socket is bound.
        """
        if self._bound_address is not None:
            return self._bound_address
        return (self.config.host, self.config.port)

    def _create_socket(self) -> socket.socket:
        """Create and configure the listening socket."""
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)

        # Restart without waiting out TIME_WAIT
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)

        # Replies are a handful of bytes; send them right away
        sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)

        sock.settimeout(ACCEPT_POLL_INTERVAL)
        return sock

    def _bind_and_listen(self, sock: socket.socket):
        host, port = self.config.host, self.config.port

        try:
            sock.bind((host, port))
        except OSError as e:
            logger.error(f"Failed to bind to {host}:{port}: {e}")
            raise BindError(f"cannot bind {host}:{port}: {e}") from e

        try:
            sock.listen(self.config.backlog)
        except OSError as e:
            logger.error(f"Failed to listen on {host}:{port}: {e}")
            raise ListenError(f"cannot listen on {host}:{port}: {e}") from e

        self._bound_address = sock.getsockname()[:2]

    def _setup_signals(self):
        """Install SIGTERM/SIGINT handlers that call shutdown()."""
        if threading.current_thread() is not threading.main_thread():
            logger.debug("Not in main thread, skipping signal handlers")
            return

        def shutdown_handler(signum, frame):
            signal_name = signal.Signals(signum).name
            logger.info(f"Received {signal_name}, initiating shutdown...")
            self.shutdown()

        self._original_handlers[signal.SIGTERM] = signal.signal(signal.SIGTERM, shutdown_handler)
        self._original_handlers[signal.SIGINT] = signal.signal(signal.SIGINT, shutdown_handler)

    def _restore_signals(self):
        """Restore original signal handlers."""
        for sig, handler in self._original_handlers.items():
            signal.signal(sig, handler)
        self._original_handlers.clear()

    def start(self, connection_handler: Callable[[Connection], None]):
        """
        Bind, listen and accept connections.

        This method BLOCKS until shutdown() is called.

        Args:
            connection_handler: Called with each new Connection. Takes
                               ownership of it.

        Raises:
            BindError: If the address cannot be bound.
            ListenError: If the socket cannot listen.
        """
        self._socket = self._create_socket()

        try:
            self._bind_and_listen(self._socket)
        except ServerError:
            self._socket.close()
            self._socket = None
            raise

        self._running = True
        self._setup_signals()

        host, port = self.address
        logger.info(f"Server listening on {host}:{port} (backlog {self.config.backlog})")
        self._listening.set()

        try:
            self._accept_loop(connection_handler)
        finally:
            self._cleanup()

    def _accept_loop(self, connection_handler: Callable[[Connection], None]):
        """
        Accept connections until shutdown.

        A failed accept() is logged and skipped; it never stops the
        server. The 1-second timeout is not a failure, it just lets the
        loop notice shutdown().
        """
        logger.debug("Waiting for new connections ...")

        while self._running:
            try:
                client_socket, client_address = self._socket.accept()
            except socket.timeout:
                continue
            except OSError as e:
                if not self._running:
                    break
                logger.error(f"Accept error: {e}")
                continue

            logger.debug(f"Accepted connection from {client_address[0]}:{client_address[1]}")

            conn = Connection(
                socket=client_socket,
                address=client_address,
                buffer_size=self.config.buffer_size,
            )
            connection_handler(conn)

    def shutdown(self):
        """
        Stop accepting connections.

        Safe to call from a signal handler or another thread, and more
        than once.
        """
        logger.info("Shutting down socket server...")
        self._running = False

    def _cleanup(self):
        self._restore_signals()

        if self._socket:
            try:
                self._socket.close()
            except OSError:
                pass
            self._socket = None

        self._listening.clear()
        logger.info("Socket server stopped")

    def wait_until_listening(self, timeout: Optional[float] = None) -> bool:
        """
        Wait until the socket is bound and listening.

        Returns:
            True if listening, False if timeout.
        """
        return self._listening.wait(timeout)
