"""Shared constants for the models layer.

Defines the enumerations used across model and service modules. Placing
them here keeps the models layer free of circular imports.

See Also:
    [nostrsearch.models.relay][]: Uses
        [ConnectionState][nostrsearch.models.constants.ConnectionState] on
        every registry entry.
    [nostrsearch.services.session][]: Drives the
        [SessionState][nostrsearch.models.constants.SessionState] machine.
"""

from __future__ import annotations

from enum import IntEnum, StrEnum


class ConnectionState(StrEnum):
    """Connection state of a relay endpoint as last reported by the transport.

    Attributes:
        CONNECTING: A connection attempt is in progress (initial state).
        CONNECTED: The WebSocket is open and a subscription can be served.
        DISCONNECTED: The connection was closed normally.
        ERROR: The last connection attempt or subscription failed.
    """

    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    ERROR = "error"


class SortMode(StrEnum):
    """Secondary ordering applied inside a trust tier.

    Attributes:
        RECENT: Newest ``created_at`` first.
        OLDEST: Oldest ``created_at`` first.
    """

    RECENT = "recent"
    OLDEST = "oldest"


class SessionState(StrEnum):
    """States of the search session machine.

    ```text
    IDLE -> DISPATCHING -> STREAMING -> COMPLETED | CANCELLED | TIMED_OUT
                      \\-> NO_CONNECTIVITY
    ```

    A terminal state is kept until the next
    [start()][nostrsearch.services.session.SearchSession.start] (or
    [reset()][nostrsearch.services.session.SearchSession.reset]), which
    takes the machine back through ``IDLE``.

    Attributes:
        IDLE: No search has run since the last reset.
        DISPATCHING: Subscriptions are open, no item has arrived yet.
        STREAMING: At least one item of the live generation has arrived.
        COMPLETED: Quorum of endpoints reached end-of-stream and authors
            were resolved.
        CANCELLED: Stopped explicitly or superseded by a newer search.
        TIMED_OUT: The wall-clock deadline elapsed first.
        NO_CONNECTIVITY: No endpoint could serve the query.
    """

    IDLE = "idle"
    DISPATCHING = "dispatching"
    STREAMING = "streaming"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    TIMED_OUT = "timed_out"
    NO_CONNECTIVITY = "no_connectivity"

    @property
    def is_live(self) -> bool:
        """Whether a fan-out is currently in flight."""
        return self in (SessionState.DISPATCHING, SessionState.STREAMING)

    @property
    def is_terminal(self) -> bool:
        """Whether this state ends a search generation."""
        return self in _TERMINAL_STATES


_TERMINAL_STATES = frozenset(
    {
        SessionState.COMPLETED,
        SessionState.CANCELLED,
        SessionState.TIMED_OUT,
        SessionState.NO_CONNECTIVITY,
    }
)


class EventKind(IntEnum):
    """Nostr event kinds the search engine reads.

    Attributes:
        SET_METADATA: Kind 0 -- user profile metadata (NIP-01).
        TEXT_NOTE: Kind 1 -- short text note, the default search target.
        CONTACTS: Kind 3 -- follow list (NIP-02).
        RELAY_LIST: Kind 10002 -- relay list metadata (NIP-65).
    """

    SET_METADATA = 0
    TEXT_NOTE = 1
    CONTACTS = 3
    RELAY_LIST = 10_002


EVENT_KIND_MAX = 65_535
