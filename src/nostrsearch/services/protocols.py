"""Collaborator interfaces consumed by the search services.

The engine does not implement relay transport, signing or metadata storage
itself. It talks to these structural protocols;
[NostrTransport][nostrsearch.utils.transport.NostrTransport] and
[KeysSigner][nostrsearch.utils.keys.KeysSigner] are the nostr-sdk backed
implementations, and the test suite provides in-memory ones.
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Callable, Sequence
from typing import Any, Protocol, runtime_checkable

from nostr_sdk import NostrSdkError

from nostrsearch.core.exceptions import ConnectivityError
from nostrsearch.models import ConnectionState, Item, SearchFilter


ConnectionListener = Callable[[str, ConnectionState], None]

# Failures a collaborator may raise for one relay or one lookup. They degrade
# a search and never escape it.
TRANSPORT_ERRORS: tuple[type[Exception], ...] = (
    OSError,
    TimeoutError,
    ValueError,
    NostrSdkError,
    ConnectivityError,
)


@runtime_checkable
class Signer(Protocol):
    """Supplies the identity of the current user."""

    async def get_public_key(self) -> str:
        """Return the current user's public key as hex."""
        ...


class Subscription(Protocol):
    """One open query against one relay.

    Iterating yields matching items; iteration ends when the relay signals
    end-of-stored-events. ``close()`` tears the subscription down at any
    time and must be idempotent.
    """

    def __aiter__(self) -> AsyncIterator[Item]: ...

    async def close(self) -> None: ...


class RelayTransport(Protocol):
    """Opens search subscriptions against a named relay."""

    async def subscribe(self, url: str, search_filter: SearchFilter) -> Subscription:
        """Open a subscription.

        Raises:
            OSError: If the relay cannot be reached.
            TimeoutError: If the connection attempt times out.
        """
        ...


class RecordLookup(Protocol):
    """Fetches the most recent record of a kind published by an author."""

    async def fetch_latest(self, author: str, kind: int, relays: Sequence[str]) -> Item | None: ...


class MetadataLookup(Protocol):
    """Fetches the kind-0 metadata of an author."""

    async def fetch_metadata(self, key: str, relays: Sequence[str]) -> dict[str, Any] | None:
        """Return the parsed metadata object, or ``None`` if the author has none.

        Raises:
            OSError: If no relay could be queried.
            ValueError: If the metadata content is not a JSON object.
        """
        ...


class SearchTransport(RelayTransport, RecordLookup, MetadataLookup, Protocol):
    """A single collaborator providing subscriptions and both lookups."""
