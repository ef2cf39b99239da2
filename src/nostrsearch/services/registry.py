"""Relay registry: the set of relays a search fans out to.

The registry starts from a fixed fallback set and, once a user logs in, may
be replaced wholesale by the relays listed in their most recent kind-10002
relay list (NIP-65). Entries are keyed by normalized URL, so cosmetic
variants (``wss://relay.example.com/`` vs ``wss://relay.example.com``)
always resolve to one entry.

Connection-state callbacks from the transport update entries in place. New
URLs reported by the transport are appended only while the registry holds
the defaults; a curated preferred list is never grown by incidental
discovery.

See Also:
    [RelayEndpoint][nostrsearch.models.relay.RelayEndpoint]: Immutable
        entry type.
    [SearchSession][nostrsearch.services.session.SearchSession]: Reads
        ``active_endpoints()`` at fan-out time.

Examples:
    ```python
    registry = RelayRegistry()
    registry.bootstrap_defaults(["wss://relay.damus.io", "wss://relay.nostr.band/"])
    registry.update_connection_state("wss://relay.damus.io/", ConnectionState.CONNECTED)
    [e.url for e in registry.active_endpoints()]
    # ['wss://relay.damus.io', 'wss://relay.nostr.band']
    ```
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from nostrsearch.core.exceptions import ProtocolError
from nostrsearch.core.logger import Logger
from nostrsearch.models import ConnectionState, EventKind, Item, RelayEndpoint, normalize_relay_url

from .protocols import TRANSPORT_ERRORS


if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping

    from .protocols import RecordLookup


def parse_relay_list(record: Item) -> tuple[list[str], list[str]]:
    """Extract normalized relay URLs from the ``r`` tags of a kind-10002 record.

    Duplicates (after normalization) are dropped, keeping the first
    occurrence.

    Returns:
        ``(urls, rejected)`` where ``rejected`` holds the raw values that
        failed normalization.

    Raises:
        ProtocolError: If *record* is not a relay list.
    """
    if record.kind != EventKind.RELAY_LIST:
        raise ProtocolError(f"expected kind {EventKind.RELAY_LIST}, got {record.kind}")
    urls: list[str] = []
    rejected: list[str] = []
    for raw in record.tag_values("r"):
        try:
            url = normalize_relay_url(raw)
        except ValueError:
            rejected.append(raw)
            continue
        if url not in urls:
            urls.append(url)
    return urls, rejected


class RelayRegistry:
    """Ordered, URL-unique set of relay endpoints with connection state.

    Attributes are read through properties; all mutation goes through the
    four registry operations so the uniqueness invariant holds.
    """

    def __init__(self) -> None:
        self._endpoints: dict[str, RelayEndpoint] = {}
        self._defaults: tuple[str, ...] = ()
        self._preferred = False
        self._preferred_source: Item | None = None
        self._logger = Logger("relay_registry")

    def __len__(self) -> int:
        return len(self._endpoints)

    def __contains__(self, url: object) -> bool:
        if not isinstance(url, str):
            return False
        try:
            return normalize_relay_url(url) in self._endpoints
        except ValueError:
            return False

    @property
    def is_using_preferred(self) -> bool:
        """``True`` while the active set is the user's own relay list."""
        return self._preferred

    @property
    def preferred_source(self) -> Item | None:
        """The kind-10002 record the preferred set was built from, if any."""
        return self._preferred_source

    @property
    def default_urls(self) -> tuple[str, ...]:
        return self._defaults

    # -------------------------------------------------------------------------
    # Registry operations
    # -------------------------------------------------------------------------

    def bootstrap_defaults(self, urls: Iterable[str]) -> None:
        """Seed the registry with the fallback set.

        Every entry starts ``CONNECTING`` with ``is_user_preferred=False``;
        any previous content (including a preferred list) is discarded.

        Raises:
            ValueError: If a default URL is invalid.
        """
        endpoints: dict[str, RelayEndpoint] = {}
        for raw in urls:
            endpoint = RelayEndpoint.from_raw(raw)
            endpoints.setdefault(endpoint.url, endpoint)
        self._endpoints = endpoints
        self._defaults = tuple(endpoints)
        self._preferred = False
        self._preferred_source = None
        self._logger.debug("defaults_bootstrapped", relays=len(endpoints))

    def replace_with_preferred(self, urls: Iterable[str]) -> bool:
        """Swap the active set for the user's preferred relays.

        Connection state is carried over for URLs already present. Invalid
        URLs are skipped with a warning.

        Returns:
            ``True`` if the set was replaced, ``False`` if no usable URL was
            supplied and the default set is active.
        """
        replacement: dict[str, RelayEndpoint] = {}
        for raw in urls:
            try:
                url = normalize_relay_url(raw)
            except ValueError as e:
                self._logger.warning("preferred_relay_invalid", url=raw, error=str(e))
                continue
            if url in replacement:
                continue
            existing = self._endpoints.get(url)
            state = existing.connection_state if existing else ConnectionState.CONNECTING
            replacement[url] = RelayEndpoint(url, connection_state=state, is_user_preferred=True)

        if not replacement:
            self._fall_back()
            self._logger.info("preferred_relays_empty", fallback=len(self._endpoints))
            return False

        self._endpoints = replacement
        self._preferred = True
        self._logger.info("preferred_relays_applied", relays=len(replacement))
        return True

    def update_connection_state(self, url: str, state: ConnectionState) -> bool:
        """Record a connection-state change reported by the transport.

        Unknown URLs are appended while the registry holds the defaults and
        ignored in preferred mode.

        Returns:
            ``True`` if an entry was updated or added.
        """
        try:
            normalized = normalize_relay_url(url)
        except ValueError:
            self._logger.debug("connection_state_ignored", url=url, reason="invalid_url")
            return False

        existing = self._endpoints.get(normalized)
        if existing is not None:
            if existing.connection_state != state:
                self._endpoints[normalized] = existing.with_state(state)
            return True
        if self._preferred:
            return False
        self._endpoints[normalized] = RelayEndpoint(normalized, connection_state=state)
        return True

    def active_endpoints(self) -> tuple[RelayEndpoint, ...]:
        """Return the current endpoints in insertion order."""
        return tuple(self._endpoints.values())

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def get(self, url: str) -> RelayEndpoint | None:
        """Return the entry for *url* (any spelling), or ``None``."""
        try:
            return self._endpoints.get(normalize_relay_url(url))
        except ValueError:
            return None

    def urls(self) -> list[str]:
        return list(self._endpoints)

    def statuses(self) -> Mapping[str, ConnectionState]:
        """Return ``{url: connection_state}`` for every endpoint."""
        return {url: e.connection_state for url, e in self._endpoints.items()}

    def reset(self) -> None:
        """Return to the fallback set (logout)."""
        self.bootstrap_defaults(self._defaults)

    async def load_preferred(self, lookup: RecordLookup, user_key: str) -> bool:
        """Fetch the user's relay list and apply it.

        Any failure (lookup error, missing or malformed record, no usable
        URL) falls back to the default set and is logged; nothing is raised.

        Returns:
            ``True`` if the preferred list was applied.
        """
        try:
            record = await lookup.fetch_latest(user_key, EventKind.RELAY_LIST, self.urls())
        except TRANSPORT_ERRORS as e:
            self._logger.warning("relay_list_fetch_failed", error=str(e), error_type=type(e).__name__)
            self._fall_back()
            return False

        if record is None:
            self._logger.info("relay_list_not_found", user=user_key)
            self._fall_back()
            return False

        try:
            urls, rejected = parse_relay_list(record)
        except ProtocolError as e:
            self._logger.warning("relay_list_malformed", error=str(e))
            self._fall_back()
            return False

        if rejected:
            self._logger.warning("relay_list_entries_skipped", count=len(rejected))
        applied = self.replace_with_preferred(urls)
        if applied:
            self._preferred_source = record
        return applied

    def _fall_back(self) -> None:
        """Restore the fallback set, keeping known connection states."""
        if self._preferred:
            self._endpoints = {
                url: RelayEndpoint(
                    url,
                    connection_state=(
                        self._endpoints[url].connection_state
                        if url in self._endpoints
                        else ConnectionState.CONNECTING
                    ),
                )
                for url in self._defaults
            }
        self._preferred = False
        self._preferred_source = None
