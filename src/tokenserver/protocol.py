"""
=============================================================================
TOKEN PROTOCOL
=============================================================================

The whole conversation a client can have with the server fits in one
table. Everything here is pure: bytes or strings in, a Reply out. No
sockets, no logging, no state kept between calls.

=============================================================================
THE TWO PHASES
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │                      SESSION STATE MACHINE                          │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │            anything else                                             │
    │            → "invalid start"                                         │
    │               ┌────┐                                                 │
    │               │    ▼                                                 │
    │   ┌────────────────────┐  "hello"   ┌──────────┐  "bye"  ┌────────┐ │
    │   │ AWAITING_HANDSHAKE │──────────► │  ACTIVE  │───────► │ TERMIN │ │
    │   └────────────────────┘  "hello"   └──────────┘  "bye"  │ -ATED  │ │
    │                                       │    ▲             └────────┘ │
    │                                       └────┘                         │
    │                       "hello" → "hello"                              │
    │                       "negotiate" → "negotiate back"                 │
    │                       anything else → "message not recognised"       │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
WIRE FORMAT
=============================================================================

Replies are raw bytes with no framing. Handshake-phase replies and the
receive-error reply carry a trailing NUL byte; active-phase replies do
not. Existing clients count on those exact byte lengths:

    AWAITING_HANDSHAKE  "hello"          → b"hello\\x00"          (6 bytes)
    AWAITING_HANDSHAKE  "xyz"            → b"invalid start\\x00"  (14 bytes)
    ACTIVE              "negotiate"      → b"negotiate back"     (14 bytes)
    any phase           <recv failure>   → b"recieve error\\x00"  (14 bytes)

"recieve" is misspelled on purpose: it is part of the wire protocol.

=============================================================================
"""

from enum import Enum
from dataclasses import dataclass


# Tokens a client may send
MESSAGE_HELLO = "hello"
MESSAGE_NEGOTIATE = "negotiate"
MESSAGE_BYE = "bye"

# Tokens the server replies with
RESPONSE_HELLO = "hello"
RESPONSE_NEGOTIATE = "negotiate back"
RESPONSE_BYE = "bye"
RESPONSE_INVALID_START = "invalid start"
RESPONSE_INVALID_MESSAGE = "message not recognised"
RESPONSE_RECEIVE_ERROR = "recieve error"

_ACTIVE_RESPONSES = {
    MESSAGE_HELLO: RESPONSE_HELLO,
    MESSAGE_BYE: RESPONSE_BYE,
    MESSAGE_NEGOTIATE: RESPONSE_NEGOTIATE,
}


class SessionState(Enum):
    """Where a session is in its lifetime."""
    AWAITING_HANDSHAKE = "awaiting_handshake"
    ACTIVE = "active"
    TERMINATED = "terminated"


@dataclass(frozen=True)
class Reply:
    """
    The server's answer to one received chunk.

    Attributes:
        token: Reply text.
        state: Session state after this reply is sent.
        nul_terminated: Append a NUL byte on the wire.
    """
    token: str
    state: SessionState
    nul_terminated: bool = False

    @property
    def terminates(self) -> bool:
        return self.state is SessionState.TERMINATED

    def to_bytes(self) -> bytes:
        """Serialize to the exact bytes written to the socket."""
        data = self.token.encode("ascii")
        if self.nul_terminated:
            data += b"\x00"
        return data


def trim_token(data: bytes) -> str:
    """
    Turn one received chunk into a token.

    Trailing whitespace (space, tab, CR, LF, VT, FF) is stripped, so
    telnet and netcat line endings don't matter. The token then ends at
    the first NUL byte, which lets clients send NUL-terminated strings.

    Examples:
        >>> trim_token(b"bye\\r\\n")
        'bye'
        >>> trim_token(b"hello\\x00")
        'hello'
    """
    token = data.rstrip().partition(b"\x00")[0]
    return token.decode("utf-8", errors="replace")


def check_message(token: str) -> str:
    """Map an active-phase token to its reply text."""
    return _ACTIVE_RESPONSES.get(token, RESPONSE_INVALID_MESSAGE)


def respond(state: SessionState, token: str) -> Reply:
    """
    Apply the protocol table to one token.

    Args:
        state: Current session state.
        token: Trimmed token (see trim_token).

    Returns:
        The reply to send and the state to move to.

    Raises:
        ValueError: If the session is already terminated.
    """
    if state is SessionState.AWAITING_HANDSHAKE:
        if token == MESSAGE_HELLO:
            return Reply(RESPONSE_HELLO, SessionState.ACTIVE, nul_terminated=True)
        return Reply(RESPONSE_INVALID_START, state, nul_terminated=True)

    if state is SessionState.ACTIVE:
        next_state = SessionState.TERMINATED if token == MESSAGE_BYE else state
        return Reply(check_message(token), next_state)

    raise ValueError(f"No replies in state {state.name}")


def receive_error_reply(state: SessionState) -> Reply:
    """Reply sent when a read fails; the session stays where it was."""
    return Reply(RESPONSE_RECEIVE_ERROR, state, nul_terminated=True)
