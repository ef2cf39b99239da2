"""Snapshots and final results emitted by a search session."""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import TYPE_CHECKING

from .constants import SessionState


if TYPE_CHECKING:
    from collections.abc import Mapping

    from .item import Item
    from .profile import ProfileRecord
    from .query import SearchQuery


@dataclass(frozen=True, slots=True)
class RankedSnapshot:
    """Point-in-time ranked view of one search generation.

    Attributes:
        generation: Generation the snapshot belongs to.
        items: Ranked items, truncated to the display cap.
        total: Number of unique items in the dedup table (may exceed
            ``len(items)``).
    """

    generation: int
    items: tuple[Item, ...] = ()
    total: int = 0

    def __len__(self) -> int:
        return len(self.items)


@dataclass(frozen=True, slots=True)
class SearchResult:
    """Final settle of a search generation.

    Attributes:
        generation: Generation that produced the result.
        query: The query as started, or ``None`` for a blank query.
        outcome: Terminal [SessionState][nostrsearch.models.constants.SessionState].
        items: Ranked items (display-capped).
        total: Unique items seen before the cap.
        profiles: Author profiles resolved by the post-pass (empty unless
            the outcome is ``COMPLETED``).
        failed_relays: URLs whose subscription failed.
        duration: Wall-clock seconds from start to settle.
    """

    generation: int
    query: SearchQuery | None
    outcome: SessionState
    items: tuple[Item, ...] = ()
    total: int = 0
    profiles: Mapping[str, ProfileRecord] = field(default_factory=dict)
    failed_relays: tuple[str, ...] = ()
    duration: float = 0.0

    def __post_init__(self) -> None:
        if not self.outcome.is_terminal:
            raise ValueError(f"outcome must be a terminal state, got {self.outcome}")
        object.__setattr__(self, "profiles", MappingProxyType(dict(self.profiles)))

    @property
    def is_no_connectivity(self) -> bool:
        """Whether no relay could serve the query (distinct from an empty result)."""
        return self.outcome == SessionState.NO_CONNECTIVITY
