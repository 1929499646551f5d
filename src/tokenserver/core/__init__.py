"""
=============================================================================
CORE NETWORKING COMPONENTS
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │                                                                      │
    │   SocketServer          Connection             Session               │
    │   ────────────          ──────────             ───────               │
    │   bind / listen   ──►   one client socket ──►  protocol state        │
    │   accept loop           read / send / close    machine, one thread   │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

CONCURRENCY MODEL
─────────────────
One thread per accepted connection. The accept loop never waits for a
session, sessions never share state, and there is no cap on how many run
at once; only the OS backlog limits connections not yet accepted.

=============================================================================
IMPORTS AND EXPORTS
=============================================================================
"""

from .socket_server import SocketServer, ServerError, BindError, ListenError
from .connection import Connection, ConnectionState, ReceiveError
from .session import Session

__all__ = [
    "SocketServer",     # Listening socket and accept loop
    "ServerError",      # Base for fatal startup errors
    "BindError",        # bind() failed
    "ListenError",      # listen() failed
    "Connection",       # Wrapper for client socket - handles I/O
    "ConnectionState",  # Enum for connection lifecycle states
    "ReceiveError",     # recv() failed on a client socket
    "Session",          # Per-connection protocol state machine
]
