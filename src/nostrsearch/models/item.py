"""
Immutable search hit extracted from a Nostr event.

An [Item][nostrsearch.models.item.Item] carries only the fields the engine
ranks and displays. Signature verification is out of scope, so conversion
from ``nostr_sdk.Event`` is a plain field copy.

See Also:
    [nostrsearch.services.aggregator][]: Deduplicates and ranks items.
    [nostrsearch.utils.transport][]: Produces items from relay subscriptions.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from ._validation import (
    freeze_tags,
    validate_str_no_null,
    validate_str_not_empty,
    validate_timestamp,
)
from .constants import EVENT_KIND_MAX, EventKind


if TYPE_CHECKING:
    from nostr_sdk import Event as NostrEvent


@dataclass(frozen=True, slots=True)
class Item:
    """A discovered content unit.

    Identity is ``id``: two items with the same id delivered by different
    relays are the same logical item.

    Attributes:
        id: Hex event id.
        author_key: Hex public key of the author.
        created_at: Unix timestamp in seconds.
        content: Event content.
        tags: Ordered tag arrays, frozen into nested tuples.
        kind: Event kind (text notes by default).

    Raises:
        TypeError: If a field has the wrong type.
        ValueError: If ``id`` or ``author_key`` is empty, a string contains
            null bytes, or ``created_at``/``kind`` is out of range.

    Examples:
        ```python
        item = Item(id="ab" * 32, author_key="cd" * 32, created_at=1700000000,
                    content="hello", tags=[["t", "nostr"]])
        item.tag_values("t")   # ('nostr',)
        ```
    """

    id: str
    author_key: str
    created_at: int
    content: str = ""
    tags: tuple[tuple[str, ...], ...] = ()
    kind: int = EventKind.TEXT_NOTE

    def __post_init__(self) -> None:
        validate_str_not_empty(self.id, "id")
        validate_str_not_empty(self.author_key, "author_key")
        validate_timestamp(self.created_at, "created_at")
        validate_str_no_null(self.content, "content")
        validate_timestamp(self.kind, "kind")
        if self.kind > EVENT_KIND_MAX:
            raise ValueError(f"kind {self.kind} out of range (0-{EVENT_KIND_MAX})")
        object.__setattr__(self, "tags", freeze_tags(self.tags, "tags"))

    @classmethod
    def from_nostr_event(cls, event: NostrEvent) -> Item:
        """Copy the ranked and displayed fields out of a ``nostr_sdk.Event``."""
        return cls(
            id=event.id().to_hex(),
            author_key=event.author().to_hex(),
            created_at=event.created_at().as_secs(),
            content=event.content(),
            tags=[list(tag.as_vec()) for tag in event.tags().to_vec()],
            kind=event.kind().as_u16(),
        )

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Item:
        """Build an item from a NIP-01 JSON event object (``pubkey`` is the author)."""
        return cls(
            id=data["id"],
            author_key=data["pubkey"],
            created_at=data["created_at"],
            content=data.get("content", ""),
            tags=data.get("tags", []),
            kind=data.get("kind", EventKind.TEXT_NOTE),
        )

    def tag_values(self, name: str) -> tuple[str, ...]:
        """Return the first value of every tag named *name*, skipping empty ones."""
        return tuple(tag[1] for tag in self.tags if len(tag) > 1 and tag[0] == name and tag[1])
