"""Search query and relay filter models.

[SearchQuery][nostrsearch.models.query.SearchQuery] is what a caller asks
for; [SearchFilter][nostrsearch.models.query.SearchFilter] is what is sent
to each relay (NIP-01 filter with the NIP-50 ``search`` field).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from ._validation import validate_instance, validate_str_no_null, validate_str_not_empty
from .constants import EVENT_KIND_MAX, EventKind, SortMode


@dataclass(frozen=True, slots=True)
class SearchQuery:
    """Immutable full-text query.

    Attributes:
        text: Search text, stripped of surrounding whitespace.
        sort_mode: Ordering inside a trust tier.
        scope_to_self: Restrict results to the current user's own items.

    Raises:
        ValueError: If ``text`` is blank or contains null bytes.
    """

    text: str
    sort_mode: SortMode = SortMode.RECENT
    scope_to_self: bool = False

    def __post_init__(self) -> None:
        validate_str_no_null(self.text, "text")
        object.__setattr__(self, "text", self.text.strip())
        validate_str_not_empty(self.text, "text")
        object.__setattr__(self, "sort_mode", SortMode(self.sort_mode))
        validate_instance(self.scope_to_self, bool, "scope_to_self")


@dataclass(frozen=True, slots=True)
class SearchFilter:
    """Wire-level query sent to every relay.

    Attributes:
        search: NIP-50 search text.
        kinds: Event kinds to match.
        limit: Maximum number of events each relay should return.
        authors: Optional author keys restricting the match.
    """

    search: str
    kinds: tuple[int, ...] = (EventKind.TEXT_NOTE,)
    limit: int = 100
    authors: tuple[str, ...] | None = None

    def __post_init__(self) -> None:
        validate_str_not_empty(self.search, "search")
        object.__setattr__(self, "kinds", tuple(self.kinds))
        for kind in self.kinds:
            if not 0 <= kind <= EVENT_KIND_MAX:
                raise ValueError(f"Event kind {kind} out of valid range (0-{EVENT_KIND_MAX})")
        if self.limit < 1:
            raise ValueError("limit must be positive")
        if self.authors is not None:
            object.__setattr__(self, "authors", tuple(self.authors))

    @classmethod
    def for_query(
        cls,
        query: SearchQuery,
        *,
        kinds: tuple[int, ...] = (EventKind.TEXT_NOTE,),
        limit: int = 100,
        self_key: str | None = None,
    ) -> SearchFilter:
        """Build the relay filter for *query*.

        When ``query.scope_to_self`` is set, ``self_key`` restricts the
        filter to the current user's own items.

        Raises:
            ValueError: If the query is scoped to self but no key is given.
        """
        authors: tuple[str, ...] | None = None
        if query.scope_to_self:
            if not self_key:
                raise ValueError("scope_to_self requires the current user's key")
            authors = (self_key,)
        return cls(search=query.text, kinds=kinds, limit=limit, authors=authors)

    def to_dict(self) -> dict[str, Any]:
        """Return the JSON filter object as sent in a ``REQ`` message."""
        data: dict[str, Any] = {
            "kinds": [int(k) for k in self.kinds],
            "search": self.search,
            "limit": self.limit,
        }
        if self.authors is not None:
            data["authors"] = list(self.authors)
        return data
