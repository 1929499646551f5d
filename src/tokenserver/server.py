"""
=============================================================================
TOKEN SERVER
=============================================================================

Glues the pieces together: configuration, logging, the listener and one
session thread per connection.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                                                                      │
    │   TokenServer.run()                                                  │
    │       │                                                              │
    │       ├──► config.validate()                                         │
    │       ├──► _setup_logging()                                          │
    │       └──► SocketServer.start(self._handle_connection)  (blocks)     │
    │                    │                                                 │
    │                    └──► for each accepted Connection:                │
    │                            Thread(session.run, conn).start()         │
    │                            back to accept() immediately              │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

No thread pool: a pool would queue or reject connections once full, and
accepted connections here are never turned away. Threads are daemons so a
session stuck on a silent client does not keep the process alive after
the listener stops.

=============================================================================
"""

import logging
import threading
from typing import Optional, Tuple

from .config import ServerConfig
from .core import SocketServer, Connection
from .core import session


logger = logging.getLogger(__name__)


class TokenServer:
    """
    The token protocol server.

    Usage:
        server = TokenServer(ServerConfig(port=8080))
        server.run()  # Blocks until SIGINT/SIGTERM or shutdown()
    """

    def __init__(self, config: Optional[ServerConfig] = None):
        self.config = config or ServerConfig()
        self.config.validate()  # Fail-fast on invalid config

        self._socket_server = SocketServer(self.config)
        self._sessions_started = 0

    @property
    def address(self) -> Tuple[str, int]:
        """Bound (host, port); meaningful once listening."""
        return self._socket_server.address

    @property
    def is_running(self) -> bool:
        return self._socket_server.is_running

    @property
    def sessions_started(self) -> int:
        """Number of sessions spawned so far (accept-loop thread only)."""
        return self._sessions_started

    def run(self):
        """
        Start the server (blocking).

        Raises:
            BindError: If the address cannot be bound.
            ListenError: If the socket cannot listen.
        """
        self._setup_logging()
        logger.info(f"Starting token server on {self.config.host}:{self.config.port}")

        try:
            self._socket_server.start(self._handle_connection)
        except KeyboardInterrupt:
            logger.info("Received keyboard interrupt")

        logger.info("Server stopped")

    def wait_until_listening(self, timeout: Optional[float] = None) -> bool:
        return self._socket_server.wait_until_listening(timeout)

    def shutdown(self):
        """Stop accepting connections. Live sessions are left to finish."""
        self._socket_server.shutdown()

    def _setup_logging(self):
        """Configure logging based on config."""
        level = getattr(logging, self.config.log_level.upper(), logging.INFO)

        logging.basicConfig(
            level=level,
            format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

        logging.getLogger("tokenserver").setLevel(level)

    def _handle_connection(self, conn: Connection):
        """
        Start a session thread for a new connection.

        Called by SocketServer on the accept-loop thread; must return
        right away.
        """
        thread = threading.Thread(
            target=session.run,
            args=(conn, self.config),
            name=f"session-{conn.id}",
            daemon=True,
        )
        thread.start()
        self._sessions_started += 1
        logger.debug(f"[{conn.id}] Session thread started ({self._sessions_started} total)")


def serve(config: Optional[ServerConfig] = None):
    """
    Run a token server until it is shut down.

    Raises:
        BindError, ListenError: On startup failure.
    """
    TokenServer(config).run()
