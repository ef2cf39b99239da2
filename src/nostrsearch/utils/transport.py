"""nostr-sdk backed relay transport.

[NostrTransport][nostrsearch.utils.transport.NostrTransport] implements the
three collaborator protocols the search services consume:

* ``subscribe()`` -- one dedicated client per relay, streaming matching
  events until end-of-stored-events, torn down with ``close()``.
* ``fetch_latest()`` -- most recent record of a kind by an author (follow
  lists, relay lists), served by a shared lookup client.
* ``fetch_metadata()`` -- kind-0 profile metadata parsed from JSON.

Connection-state changes are reported to an optional listener so the
relay registry can track ``CONNECTING``/``CONNECTED``/``ERROR``.

Note:
    Tor relays (``.onion``) are reached through the SOCKS5 proxy given in
    ``proxy_url``; without one they are reported as ``ERROR``.

Examples:
    ```python
    transport = NostrTransport(connect_timeout=10.0)
    sub = await transport.subscribe("wss://relay.nostr.band", SearchFilter(search="nostr"))
    async for item in sub:
        print(item.id, item.content[:40])
    await sub.close()
    await transport.aclose()
    ```
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import socket
from datetime import timedelta
from ipaddress import AddressValueError, IPv4Address, IPv6Address
from typing import TYPE_CHECKING, Any, Self
from urllib.parse import urlparse

from nostr_sdk import (
    Client,
    ClientBuilder,
    ClientOptions,
    Connection,
    ConnectionMode,
    ConnectionTarget,
    Filter,
    Kind,
    PublicKey,
    RelayUrl,
)

from nostrsearch.models import ConnectionState, EventKind, Item, SearchFilter


if TYPE_CHECKING:
    from collections.abc import Callable, Sequence
    from types import TracebackType


DEFAULT_CONNECT_TIMEOUT = 10.0
DEFAULT_STREAM_TIMEOUT = 30.0
DEFAULT_LOOKUP_TIMEOUT = 5.0
_LATEST_RECORD_LIMIT = 10

logger = logging.getLogger(__name__)

# Silence nostr-sdk UniFFI callback stack traces (failures are handled here)
logging.getLogger("nostr_sdk").setLevel(logging.CRITICAL)


def build_filter(search_filter: SearchFilter) -> Filter:
    """Convert a [SearchFilter][nostrsearch.models.query.SearchFilter] to ``nostr_sdk.Filter``."""
    f = Filter().kinds([Kind(k) for k in search_filter.kinds]).limit(search_filter.limit)
    f = f.search(search_filter.search)
    if search_filter.authors is not None:
        f = f.authors([PublicKey.parse(a) for a in search_filter.authors])
    return f


async def _resolve_proxy_host(host: str) -> str:
    """nostr-sdk requires a numeric proxy address; resolve hostnames off-loop."""
    bare = host.strip("[]")
    try:
        IPv4Address(bare)
        return bare
    except (AddressValueError, ValueError):
        pass
    try:
        IPv6Address(bare)
        return bare
    except (AddressValueError, ValueError):
        return await asyncio.to_thread(socket.gethostbyname, bare)


async def create_client(proxy_url: str | None = None) -> Client:
    """Create a read-only nostr-sdk client, optionally routed through SOCKS5.

    Args:
        proxy_url: SOCKS5 proxy URL for ``.onion`` relays
            (e.g. ``socks5://127.0.0.1:9050``).
    """
    builder = ClientBuilder()
    if proxy_url is not None:
        parsed = urlparse(proxy_url)
        proxy_host = await _resolve_proxy_host(parsed.hostname or "127.0.0.1")
        proxy_mode = ConnectionMode.PROXY(proxy_host, parsed.port or 9050)
        conn = Connection().mode(proxy_mode).target(ConnectionTarget.ONION)
        builder = builder.opts(ClientOptions().connection(conn))
    return builder.build()


def _is_onion(url: str) -> bool:
    host = urlparse(url).hostname or ""
    return host.endswith(".onion")


class NostrSubscription:
    """A streaming query against a single relay.

    Yields [Item][nostrsearch.models.item.Item] objects until the stream
    ends (end-of-stored-events or stream timeout). Events that cannot be
    converted are skipped.
    """

    def __init__(
        self,
        url: str,
        client: Client,
        stream: Any,
        on_close: Callable[[str], None] | None = None,
    ) -> None:
        self._url = url
        self._client = client
        self._stream = stream
        self._on_close = on_close
        self._closed = False

    @property
    def url(self) -> str:
        return self._url

    def __aiter__(self) -> Self:
        return self

    async def __anext__(self) -> Item:
        while not self._closed:
            event = await self._stream.next()
            if event is None:
                raise StopAsyncIteration
            try:
                return Item.from_nostr_event(event)
            except (ValueError, TypeError) as e:
                logger.debug("event_skipped relay=%s error=%s", self._url, e)
        raise StopAsyncIteration

    async def close(self) -> None:
        """Shut the relay client down. Idempotent."""
        if self._closed:
            return
        self._closed = True
        # nostr-sdk shutdown can raise arbitrary FFI errors during teardown
        with contextlib.suppress(Exception):
            await self._client.shutdown()
        if self._on_close is not None:
            self._on_close(self._url)


class NostrTransport:
    """Relay transport, record lookup and metadata lookup over nostr-sdk.

    Args:
        connect_timeout: Seconds to wait for a relay connection.
        stream_timeout: Upper bound on the lifetime of one subscription
            stream; the search session usually closes it earlier.
        lookup_timeout: Seconds to wait for a lookup query.
        proxy_url: SOCKS5 proxy used for ``.onion`` relays.
        listener: Callback receiving ``(url, ConnectionState)`` updates.
    """

    def __init__(
        self,
        *,
        connect_timeout: float = DEFAULT_CONNECT_TIMEOUT,
        stream_timeout: float = DEFAULT_STREAM_TIMEOUT,
        lookup_timeout: float = DEFAULT_LOOKUP_TIMEOUT,
        proxy_url: str | None = None,
        listener: Callable[[str, ConnectionState], None] | None = None,
    ) -> None:
        self._connect_timeout = connect_timeout
        self._stream_timeout = stream_timeout
        self._lookup_timeout = lookup_timeout
        self._proxy_url = proxy_url
        self._listener = listener
        self._lookup_client: Client | None = None
        self._lookup_relays: set[str] = set()
        self._lookup_lock = asyncio.Lock()

    def set_listener(self, listener: Callable[[str, ConnectionState], None] | None) -> None:
        """Install (or remove) the connection-state listener."""
        self._listener = listener

    def _notify(self, url: str, state: ConnectionState) -> None:
        if self._listener is not None:
            self._listener(url, state)

    async def _new_client(self, url: str) -> Client:
        if _is_onion(url):
            if self._proxy_url is None:
                raise ValueError(f"proxy_url required for tor relay: {url}")
            return await create_client(self._proxy_url)
        return await create_client()

    # -------------------------------------------------------------------------
    # Subscriptions
    # -------------------------------------------------------------------------

    async def subscribe(self, url: str, search_filter: SearchFilter) -> NostrSubscription:
        """Connect to *url* and start streaming events matching *search_filter*.

        Raises:
            OSError: If the relay refuses the connection.
            TimeoutError: If the connection times out.
            ValueError: If a tor relay is requested without a proxy.
        """
        self._notify(url, ConnectionState.CONNECTING)
        try:
            client = await self._new_client(url)
        except ValueError:
            self._notify(url, ConnectionState.ERROR)
            raise
        relay_url = RelayUrl.parse(url)
        try:
            await client.add_relay(relay_url)
            output = await client.try_connect(timedelta(seconds=self._connect_timeout))
            if relay_url not in output.success:
                reason = output.failed.get(relay_url, "unknown error")
                raise OSError(f"Connection failed: {url} ({reason})")
            self._notify(url, ConnectionState.CONNECTED)
            stream = await client.stream_events(
                build_filter(search_filter), timedelta(seconds=self._stream_timeout)
            )
        except BaseException:
            with contextlib.suppress(Exception):
                await client.shutdown()
            self._notify(url, ConnectionState.ERROR)
            raise

        logger.debug("subscription_opened relay=%s search=%s", url, search_filter.search)
        return NostrSubscription(
            url, client, stream, on_close=lambda u: self._notify(u, ConnectionState.DISCONNECTED)
        )

    # -------------------------------------------------------------------------
    # Lookups
    # -------------------------------------------------------------------------

    async def _lookup_client_for(self, relays: Sequence[str]) -> Client:
        async with self._lookup_lock:
            if self._lookup_client is None:
                self._lookup_client = await create_client(self._proxy_url)
            client = self._lookup_client
            new_relays = [r for r in relays if r not in self._lookup_relays]
            for url in new_relays:
                await client.add_relay(RelayUrl.parse(url))
                self._lookup_relays.add(url)
            if new_relays:
                await client.try_connect(timedelta(seconds=self._connect_timeout))
            return client

    async def fetch_latest(self, author: str, kind: int, relays: Sequence[str]) -> Item | None:
        """Return the newest event of *kind* authored by *author*, or ``None``.

        Raises:
            ValueError: If no relays were given.
            TimeoutError: If the lookup times out.
        """
        if not relays:
            raise ValueError("no relays available for lookup")
        client = await self._lookup_client_for(relays)
        f = Filter().author(PublicKey.parse(author)).kind(Kind(kind)).limit(_LATEST_RECORD_LIMIT)
        events = await client.fetch_events(f, timedelta(seconds=self._lookup_timeout))

        latest: Item | None = None
        for evt in events.to_vec():
            try:
                item = Item.from_nostr_event(evt)
            except (ValueError, TypeError):
                continue
            if item.author_key != author:
                continue
            if latest is None or item.created_at > latest.created_at:
                latest = item
        return latest

    async def fetch_metadata(self, key: str, relays: Sequence[str]) -> dict[str, Any] | None:
        """Return the kind-0 metadata object of *key*, or ``None`` if absent.

        Raises:
            ValueError: If the metadata content is not a JSON object.
        """
        record = await self.fetch_latest(key, EventKind.SET_METADATA, relays)
        if record is None:
            return None
        try:
            data = json.loads(record.content)
        except json.JSONDecodeError as e:
            raise ValueError(f"metadata of {key} is not valid JSON") from e
        if not isinstance(data, dict):
            raise ValueError(f"metadata of {key} is not a JSON object")
        return data

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def aclose(self) -> None:
        """Shut down the shared lookup client. Idempotent."""
        client, self._lookup_client = self._lookup_client, None
        self._lookup_relays.clear()
        if client is not None:
            with contextlib.suppress(Exception):
                await client.shutdown()

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(
        self,
        _exc_type: type[BaseException] | None,
        _exc_val: BaseException | None,
        _exc_tb: TracebackType | None,
    ) -> None:
        await self.aclose()
