"""
=============================================================================
TOKENSERVER - Concurrent TCP Server for a Tiny Handshake Protocol
=============================================================================

A client connects, opens with "hello", exchanges a few fixed command
tokens and ends with "bye". Each connection gets its own thread; the
accept loop never waits on any of them.

=============================================================================
PACKAGE STRUCTURE
=============================================================================

    tokenserver/
    ├── __init__.py          # This file - package exports
    ├── __main__.py          # CLI entry point (python -m tokenserver)
    ├── server.py            # TokenServer + serve()
    ├── config.py            # ServerConfig dataclass
    ├── protocol.py          # Token table, trimming, wire replies
    └── core/
        ├── socket_server.py # Bind / listen / accept loop
        ├── connection.py    # Client socket wrapper
        └── session.py       # Per-connection state machine

=============================================================================
QUICK START
=============================================================================

    from tokenserver import ServerConfig, serve

    serve(ServerConfig(host="127.0.0.1", port=8080))

    $ nc 127.0.0.1 8080
    hello
    hello
    negotiate
    negotiate back
    bye
    bye

=============================================================================
"""

__version__ = "1.0.0"

from .server import TokenServer, serve
from .config import ServerConfig
from .core import BindError, ListenError, ServerError

__all__ = [
    "TokenServer",
    "serve",
    "ServerConfig",
    "ServerError",
    "BindError",
    "ListenError",
    "__version__",
]
