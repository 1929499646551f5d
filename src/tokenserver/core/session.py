"""
=============================================================================
CONNECTION SESSION
=============================================================================

Drives one Connection through the token protocol, one receive → reply
cycle per loop iteration, until the client says "bye".

    ┌─────────────────────────────────────────────────────────────────┐
    │                       Session.run() Flow                         │
    ├─────────────────────────────────────────────────────────────────┤
    │                                                                  │
    │   state = AWAITING_HANDSHAKE                                     │
    │                                                                  │
    │   while state != TERMINATED:                                     │
    │       │                                                          │
    │       ├──► receive()  ── fails ──► send "recieve error"          │
    │       │       │                    stay in the same phase        │
    │       │       ▼                                                  │
    │       ├──► trim_token()                                          │
    │       ├──► respond(state, token)                                 │
    │       ├──► send(reply)  ── fails ──► connection unusable, stop   │
    │       └──► state = reply.state                                   │
    │                                                                  │
    │   close connection                                               │
    │                                                                  │
    └─────────────────────────────────────────────────────────────────┘

Every session runs in its own thread and owns its Connection and its
state outright. Nothing here is shared with the listener or with other
sessions, so nothing here is locked.

A failed read never ends a session on its own. The client gets
"recieve error" and the loop goes on, forever if need be. Set
ServerConfig.max_receive_errors to cap consecutive failures instead.

=============================================================================
"""

import logging

from ..config import ServerConfig
from ..protocol import SessionState, Reply, trim_token, respond, receive_error_reply
from .connection import Connection, ReceiveError


logger = logging.getLogger(__name__)


class Session:
    """
    The protocol state machine for one connection.

    Usage:
        Session(conn, config).run()   # blocks until "bye"; closes conn
    """

    def __init__(self, connection: Connection, config: ServerConfig):
        self.connection = connection
        self.config = config
        self.state = SessionState.AWAITING_HANDSHAKE
        self.consecutive_receive_errors = 0

    @property
    def id(self) -> str:
        return self.connection.id

    def run(self):
        """
        Run the session to completion and close the connection.

        Never raises: failures are answered on the connection or logged.
        """
        conn = self.connection
        logger.debug(f"[{self.id}] Session started for {conn.client_ip}:{conn.client_port}")

        with conn:
            try:
                while self.state is not SessionState.TERMINATED:
                    if not self._step():
                        break
            except Exception as e:
                logger.exception(f"[{self.id}] Session error: {e}")

        logger.debug(f"[{self.id}] Session ended in state {self.state.name}")

    def _step(self) -> bool:
        """
        One receive → reply cycle.

        Returns:
            False when the session must stop before reaching TERMINATED.
        """
        try:
            data = self.connection.receive()
        except ReceiveError as e:
            return self._on_receive_error(e)

        self.consecutive_receive_errors = 0

        token = trim_token(data)
        reply = respond(self.state, token)
        logger.debug(f"[{self.id}] {self.state.name} {token!r} -> {reply.token!r}")

        if not self._send(reply):
            return False

        if self.state is SessionState.AWAITING_HANDSHAKE and reply.state is SessionState.ACTIVE:
            logger.info(f"[{self.id}] Handshake complete with {self.connection.client_ip}")
        elif reply.terminates:
            logger.info(f"[{self.id}] Client said bye, closing connection")

        self.state = reply.state
        return True

    def _on_receive_error(self, error: ReceiveError) -> bool:
        self.consecutive_receive_errors += 1
        logger.warning(f"[{self.id}] Receive error in {self.state.name}: {error}")

        if not self._send(receive_error_reply(self.state)):
            return False

        limit = self.config.max_receive_errors
        if limit is not None and self.consecutive_receive_errors >= limit:
            logger.warning(
                f"[{self.id}] {self.consecutive_receive_errors} consecutive receive "
                f"errors, dropping session"
            )
            return False

        return True

    def _send(self, reply: Reply) -> bool:
        if self.connection.send(reply.to_bytes()):
            return True
        logger.info(f"[{self.id}] Connection unusable, ending session in {self.state.name}")
        return False


def run(connection: Connection, config: ServerConfig):
    """Run a session for connection; returns once it has been closed."""
    Session(connection, config).run()
