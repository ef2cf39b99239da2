"""Deduplication and web-of-trust ranking of streamed search hits.

Items are ranked by an ordered key:

1. **tier** -- ``0`` authored by the current user, ``1`` authored by a
   followed key, ``2`` everyone else;
2. **recency** -- ``created_at`` descending (``RECENT``) or ascending
   (``OLDEST``);
3. **arrival** -- first-ingested first, so live updates never reorder
   equal items.

The ranked list is kept sorted incrementally with ``bisect``; the displayed
snapshot is capped at ``max_results`` while the dedup table keeps every
unique id.

Note:
    ``ingest()`` never awaits, so calls from the session's consumer task
    are serialized by the event loop.

See Also:
    [SearchSession][nostrsearch.services.session.SearchSession]: The only
        writer of the aggregator.
    [ContactGraph][nostrsearch.services.contacts.ContactGraph]: Supplies
        the followed tier.
"""

from __future__ import annotations

import bisect
from itertools import count
from typing import TYPE_CHECKING

from nostrsearch.models import Item, RankedSnapshot, SortMode


if TYPE_CHECKING:
    from collections.abc import Container


DEFAULT_MAX_RESULTS = 420

TIER_SELF = 0
TIER_FOLLOWED = 1
TIER_OTHER = 2

_RankKey = tuple[int, int, int]


class ResultAggregator:
    """Working set of one search generation.

    Args:
        max_results: Display cap applied by
            [snapshot()][nostrsearch.services.aggregator.ResultAggregator.snapshot].
    """

    def __init__(self, *, max_results: int = DEFAULT_MAX_RESULTS) -> None:
        if max_results < 1:
            raise ValueError("max_results must be positive")
        self._max_results = max_results
        self._generation = 0
        self._self_key: str | None = None
        self._follows: Container[str] = frozenset()
        self._sort_mode = SortMode.RECENT
        self._seen: dict[str, Item] = {}
        self._ranked: list[tuple[_RankKey, Item]] = []
        self._arrival = count()
        self._sealed = False

    def __len__(self) -> int:
        return len(self._seen)

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def sort_mode(self) -> SortMode:
        return self._sort_mode

    @property
    def max_results(self) -> int:
        return self._max_results

    @property
    def is_sealed(self) -> bool:
        """``True`` once the generation has settled; ingests are dropped."""
        return self._sealed

    def reset(
        self,
        generation: int,
        *,
        self_key: str | None = None,
        follows: Container[str] = frozenset(),
        sort_mode: SortMode = SortMode.RECENT,
    ) -> None:
        """Discard the working set and start accepting *generation*."""
        self._generation = generation
        self._self_key = self_key
        self._follows = follows
        self._sort_mode = SortMode(sort_mode)
        self._seen = {}
        self._ranked = []
        self._arrival = count()
        self._sealed = False

    def seal(self) -> None:
        """Stop accepting items for the current generation."""
        self._sealed = True

    def tier(self, item: Item) -> int:
        """Return the trust tier of *item*."""
        if self._self_key is not None and item.author_key == self._self_key:
            return TIER_SELF
        if item.author_key in self._follows:
            return TIER_FOLLOWED
        return TIER_OTHER

    def _rank_key(self, item: Item) -> _RankKey:
        recency = -item.created_at if self._sort_mode == SortMode.RECENT else item.created_at
        return (self.tier(item), recency, next(self._arrival))

    def ingest(self, item: Item, generation: int) -> bool:
        """Add *item* to the working set.

        Stale generations, a sealed set and already-seen ids are ignored
        (first-seen wins).

        Returns:
            ``True`` if the item was added.
        """
        if generation != self._generation or self._sealed:
            return False
        if item.id in self._seen:
            return False
        self._seen[item.id] = item
        bisect.insort(self._ranked, (self._rank_key(item), item), key=lambda entry: entry[0])
        return True

    def ranked(self) -> list[Item]:
        """Every unique item in rank order, uncapped."""
        return [item for _, item in self._ranked]

    def authors(self) -> list[str]:
        """Distinct author keys of the displayed items, in rank order."""
        return list(dict.fromkeys(item.author_key for _, item in self._ranked[: self._max_results]))

    def snapshot(self) -> RankedSnapshot:
        """Return the capped, ranked view of the current generation."""
        return RankedSnapshot(
            generation=self._generation,
            items=tuple(item for _, item in self._ranked[: self._max_results]),
            total=len(self._seen),
        )
