"""Pure frozen dataclasses with zero I/O for relays, items, queries and profiles.

The models layer is the foundation of the diamond DAG. It has no
dependencies on any other nostrsearch package. Every model uses
``@dataclass(frozen=True, slots=True)`` and validates in ``__post_init__``
so invalid instances never escape the constructor.

Attributes:
    RelayEndpoint: Registry entry keyed by a normalized relay URL.
    Item: A search hit (Nostr event fields used for ranking and display).
    SearchQuery: Caller-facing query (text, sort mode, self scope).
    SearchFilter: Relay-facing NIP-01/NIP-50 filter.
    ProfileRecord: Resolved author metadata or the negative marker.
    RankedSnapshot: Live ranked view of one search generation.
    SearchResult: Final settle of a search generation.
"""

from .constants import EVENT_KIND_MAX, ConnectionState, EventKind, SessionState, SortMode
from .item import Item
from .profile import ProfileRecord
from .query import SearchFilter, SearchQuery
from .relay import RelayEndpoint, normalize_relay_url
from .results import RankedSnapshot, SearchResult


__all__ = [
    "EVENT_KIND_MAX",
    "ConnectionState",
    "EventKind",
    "Item",
    "ProfileRecord",
    "RankedSnapshot",
    "RelayEndpoint",
    "SearchFilter",
    "SearchQuery",
    "SearchResult",
    "SessionState",
    "SortMode",
    "normalize_relay_url",
]
