"""The logged-in user's follow set (NIP-02 contact list).

Loaded once per login from the most recent kind-3 record authored by the
user; the followed keys are the values of its ``p`` tags. A missing record
or a failed lookup leaves the set empty. The set only feeds the ranking
tiers and is never revalidated during a login.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from nostrsearch.core.logger import Logger
from nostrsearch.models import EventKind, Item

from .protocols import TRANSPORT_ERRORS


if TYPE_CHECKING:
    from collections.abc import Sequence

    from .protocols import RecordLookup


def extract_follows(record: Item) -> frozenset[str]:
    """Return the keys referenced by the ``p`` tags of a contact list."""
    return frozenset(record.tag_values("p"))


class ContactGraph:
    """Set of author keys followed by the current user."""

    def __init__(self) -> None:
        self._owner: str | None = None
        self._follows: frozenset[str] = frozenset()
        self._loaded = False
        self._epoch = 0
        self._logger = Logger("contact_graph")

    def __contains__(self, key: object) -> bool:
        return key in self._follows

    def __len__(self) -> int:
        return len(self._follows)

    @property
    def owner(self) -> str | None:
        """Key of the user the set was loaded for."""
        return self._owner

    @property
    def follows(self) -> frozenset[str]:
        return self._follows

    @property
    def is_loaded(self) -> bool:
        return self._loaded

    async def load(self, lookup: RecordLookup, user_key: str, relays: Sequence[str]) -> int:
        """Load the follow set of *user_key*.

        A second call for the same user is a no-op once a lookup succeeded; a
        call for another user replaces the set. Lookup failures leave an
        empty set that the next call retries.

        Returns:
            Number of followed keys.
        """
        if self._loaded and self._owner == user_key:
            return len(self._follows)

        self._owner = user_key
        self._follows = frozenset()
        self._loaded = False
        self._epoch += 1
        epoch = self._epoch
        try:
            record = await lookup.fetch_latest(user_key, EventKind.CONTACTS, relays)
        except TRANSPORT_ERRORS as e:
            self._logger.warning("contacts_fetch_failed", error=str(e), error_type=type(e).__name__)
            return 0

        if epoch != self._epoch:
            # cleared or reloaded for another user while the lookup was out
            return 0
        self._loaded = True
        if record is None:
            self._logger.info("contacts_not_found", user=user_key)
            return 0

        self._follows = extract_follows(record)
        self._logger.info("contacts_loaded", user=user_key, follows=len(self._follows))
        return len(self._follows)

    def clear(self) -> None:
        """Forget the follow set (logout)."""
        self._epoch += 1
        self._owner = None
        self._follows = frozenset()
        self._loaded = False
