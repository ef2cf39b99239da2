"""
Relay endpoint model and URL normalization.

Relay URLs reach the engine from configuration defaults, user relay lists
(kind 10002) and transport callbacks, often with cosmetic differences such
as an upper-case scheme or a trailing slash. Everything is funnelled through
[normalize_relay_url()][nostrsearch.models.relay.normalize_relay_url] so the
registry can key endpoints by a single canonical string.
"""

from __future__ import annotations

from dataclasses import dataclass, replace

from rfc3986 import uri_reference
from rfc3986.exceptions import UnpermittedComponentError, ValidationError
from rfc3986.validators import Validator

from ._validation import validate_instance, validate_str_not_empty
from .constants import ConnectionState


def normalize_relay_url(raw: str) -> str:
    """Return the canonical form of a WebSocket relay URL.

    Normalization follows RFC 3986 (lower-case scheme and host,
    percent-encoding normalized), then collapses duplicate slashes in the
    path and strips trailing slashes so that ``wss://relay.example.com/``
    and ``WSS://relay.example.com`` map to the same key.

    Args:
        raw: Raw URL string.

    Returns:
        The normalized URL, e.g. ``"wss://relay.example.com"``.

    Raises:
        ValueError: If the URL is empty, contains null bytes, uses a scheme
            other than ``ws``/``wss``, has no host, or carries a query
            string or fragment.

    Examples:
        ```python
        normalize_relay_url("WSS://Relay.Example.com//")   # 'wss://relay.example.com'
        normalize_relay_url("wss://relay.example.com/nostr/")
        # 'wss://relay.example.com/nostr'
        ```
    """
    validate_str_not_empty(raw, "relay url")

    uri = uri_reference(raw.strip()).normalize()
    validator = (
        Validator()
        .require_presence_of("scheme", "host")
        .allow_schemes("ws", "wss")
        .check_validity_of("scheme", "host", "port", "path")
    )
    try:
        validator.validate(uri)
    except UnpermittedComponentError:
        raise ValueError(f"Invalid scheme in {raw!r}: must be ws or wss") from None
    except ValidationError as e:
        raise ValueError(f"Invalid relay URL {raw!r}: {e}") from None

    if uri.query:
        raise ValueError(f"Relay URL must not contain a query string: ?{uri.query}")
    if uri.fragment:
        raise ValueError(f"Relay URL must not contain a fragment: #{uri.fragment}")

    path = uri.path or ""
    while "//" in path:
        path = path.replace("//", "/")
    path = path.rstrip("/")

    host = uri.host
    if uri.port:
        host = f"{host}:{uri.port}"
    return f"{uri.scheme}://{host}{path}"


@dataclass(frozen=True, slots=True)
class RelayEndpoint:
    """Immutable registry entry for one relay.

    The registry never mutates an entry in place; connection-state
    callbacks swap in a copy produced by
    [with_state()][nostrsearch.models.relay.RelayEndpoint.with_state].

    Attributes:
        url: Normalized relay URL (unique within a registry).
        connection_state: Last reported
            [ConnectionState][nostrsearch.models.constants.ConnectionState].
        is_user_preferred: ``True`` when the entry comes from the user's
            own relay list rather than the fallback defaults.

    Raises:
        ValueError: If ``url`` is not already in normalized form.
    """

    url: str
    connection_state: ConnectionState = ConnectionState.CONNECTING
    is_user_preferred: bool = False

    def __post_init__(self) -> None:
        validate_instance(self.connection_state, ConnectionState, "connection_state")
        if normalize_relay_url(self.url) != self.url:
            raise ValueError(f"RelayEndpoint url must be normalized: {self.url!r}")

    @classmethod
    def from_raw(cls, raw_url: str, *, is_user_preferred: bool = False) -> RelayEndpoint:
        """Build a fresh ``CONNECTING`` endpoint from an unnormalized URL."""
        return cls(normalize_relay_url(raw_url), is_user_preferred=is_user_preferred)

    @property
    def is_connected(self) -> bool:
        """Whether the endpoint currently reports an open connection."""
        return self.connection_state == ConnectionState.CONNECTED

    def with_state(self, state: ConnectionState) -> RelayEndpoint:
        """Return a copy of this endpoint carrying *state*."""
        return replace(self, connection_state=state)
