"""
=============================================================================
SERVER CONFIGURATION
=============================================================================

Centralized configuration for the token server.

All settings live in one frozen dataclass, built once at startup and
passed by value to the listener and to every session. Nothing changes it
afterwards.

=============================================================================
CONFIGURATION SOURCES
=============================================================================

    Priority (highest to lowest):

    1. Command-line arguments
       └── python -m tokenserver --port 9000

    2. Environment variables
       └── TOKEN_PORT=9000 python -m tokenserver

    3. Defaults below

=============================================================================
"""

import os
from dataclasses import dataclass
from typing import Optional


LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass(frozen=True)
class ServerConfig:
    """
    Configuration for the token server.

    =========================================================================
    CONFIGURATION GROUPS
    =========================================================================

    NETWORK SETTINGS
    - host, port, backlog, buffer_size

    SESSION SETTINGS
    - max_receive_errors

    LOGGING
    - log_level

    =========================================================================
    """

    # ─────────────────────────────────────────────────────────────────────
    # NETWORK SETTINGS
    # ─────────────────────────────────────────────────────────────────────

    host: str = "127.0.0.1"
    """IP address to bind to."""

    port: int = 8080
    """
    Port to listen on.
    0 asks the OS for a free ephemeral port (handy in tests).
    """

    backlog: int = 10
    """
    Maximum number of connections the OS queues before we accept them.
    Accepted connections are never limited.
    """

    buffer_size: int = 16
    """
    Bytes read per receive. One read is one token: anything longer is
    cut off, so a token plus its line ending must fit in here.
    """

    # ─────────────────────────────────────────────────────────────────────
    # SESSION SETTINGS
    # ─────────────────────────────────────────────────────────────────────

    max_receive_errors: Optional[int] = None
    """
    End a session after this many consecutive failed reads.
    None = never, the session keeps answering "recieve error".
    """

    # ─────────────────────────────────────────────────────────────────────
    # LOGGING
    # ─────────────────────────────────────────────────────────────────────

    log_level: str = "INFO"
    """Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)."""

    @classmethod
    def from_env(cls) -> "ServerConfig":
        """
        Create configuration from environment variables.

        =====================================================================
        ENVIRONMENT VARIABLES
        =====================================================================

        TOKEN_HOST                Bind address (default: 127.0.0.1)
        TOKEN_PORT                Port (default: 8080)
        TOKEN_BACKLOG             Pending-connection backlog (default: 10)
        TOKEN_BUFFER_SIZE         Bytes per read (default: 16)
        TOKEN_MAX_RECEIVE_ERRORS  Consecutive read failures before a
                                  session is dropped (default: unset)
        TOKEN_LOG_LEVEL           Logging level (default: INFO)

        =====================================================================
        """
        max_errors = os.getenv("TOKEN_MAX_RECEIVE_ERRORS")
        return cls(
            host=os.getenv("TOKEN_HOST", "127.0.0.1"),
            port=int(os.getenv("TOKEN_PORT", "8080")),
            backlog=int(os.getenv("TOKEN_BACKLOG", "10")),
            buffer_size=int(os.getenv("TOKEN_BUFFER_SIZE", "16")),
            max_receive_errors=int(max_errors) if max_errors else None,
            log_level=os.getenv("TOKEN_LOG_LEVEL", "INFO"),
        )

    def validate(self) -> None:
        """
        Validate configuration values.

        Called before the listener starts so a bad value fails at startup,
        not on the first connection.
        """
        if not 0 <= self.port <= 65535:
            raise ValueError(f"Invalid port: {self.port}. Must be 0-65535.")

        if self.backlog < 1:
            raise ValueError(f"backlog must be >= 1, got {self.backlog}")

        if self.buffer_size < 1:
            raise ValueError(f"buffer_size must be >= 1, got {self.buffer_size}")

        if self.max_receive_errors is not None and self.max_receive_errors < 1:
            raise ValueError(f"max_receive_errors must be >= 1 or None")

        if self.log_level.upper() not in LOG_LEVELS:
            raise ValueError(f"Unknown log level: {self.log_level}")
