"""Search engine facade: the handle a UI or the CLI talks to.

[SearchEngine][nostrsearch.services.engine.SearchEngine] owns one
[RelayRegistry][nostrsearch.services.registry.RelayRegistry], one
[ContactGraph][nostrsearch.services.contacts.ContactGraph], one
[ProfileCache][nostrsearch.services.profiles.ProfileCache] and one
[SearchSession][nostrsearch.services.session.SearchSession]. There is no
global state: construct an engine, optionally ``login()``, search, and
``logout()``/``aclose()`` when done.

Lifecycle:
    1. ``create()`` / ``from_yaml()`` -- registry seeded with the defaults.
    2. ``login(signer)`` -- resolve the user's key, apply their kind-10002
       relay list, load their kind-3 follow set.
    3. ``start_search()`` / ``stop_search()`` -- any number of times; a new
       search supersedes the one in flight.
    4. ``logout()`` -- stop, clear contacts and profiles, back to defaults.

Examples:
    ```python
    async with await SearchEngine.create(signer=PublicKeySigner(npub)) as engine:
        result = await engine.start_search("nostr", on_snapshot=print)
        for item in result.items:
            profile = result.profiles.get(item.author_key)
            print(profile.best_name if profile else item.author_key[:8], item.content)
    ```
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Self

from nostrsearch.core.exceptions import NotAuthenticatedError
from nostrsearch.core.logger import Logger
from nostrsearch.core.metrics import SearchMetrics
from nostrsearch.core.yaml import load_yaml
from nostrsearch.models import (
    ConnectionState,
    Item,
    ProfileRecord,
    SearchQuery,
    SearchResult,
    SessionState,
    SortMode,
)
from nostrsearch.utils.transport import NostrTransport

from .configs import EngineConfig
from .contacts import ContactGraph
from .profiles import ProfileCache
from .registry import RelayRegistry
from .session import SearchSession


if TYPE_CHECKING:
    from collections.abc import Callable, Iterable, Mapping
    from pathlib import Path
    from types import TracebackType

    from nostrsearch.models import RankedSnapshot

    from .protocols import SearchTransport, Signer


class SearchEngine:
    """Explicitly constructed search service.

    Args:
        transport: Subscriptions plus follow-list, relay-list and metadata
            lookups. Defaults to a
            [NostrTransport][nostrsearch.utils.transport.NostrTransport]
            built from ``config.transport``.
        config: Engine configuration (defaults for every section).
        endpoints: Fallback relay URLs overriding ``config.relays.default_urls``.
    """

    def __init__(
        self,
        transport: SearchTransport | None = None,
        *,
        config: EngineConfig | None = None,
        endpoints: Iterable[str] | None = None,
    ) -> None:
        self._config = config if config is not None else EngineConfig()
        self._logger = Logger("search_engine")
        self._metrics = SearchMetrics(self._config.metrics.enabled)

        if transport is None:
            tc = self._config.transport
            transport = NostrTransport(
                connect_timeout=tc.connect_timeout,
                stream_timeout=tc.stream_timeout,
                lookup_timeout=tc.lookup_timeout,
                proxy_url=tc.proxy_url,
            )
        self._transport = transport

        self._registry = RelayRegistry()
        self._registry.bootstrap_defaults(
            endpoints if endpoints is not None else self._config.relays.default_urls
        )
        set_listener = getattr(transport, "set_listener", None)
        if callable(set_listener):
            set_listener(self._on_connection_state)

        self._contacts = ContactGraph()
        pc = self._config.profiles
        self._profiles = ProfileCache(
            transport,
            self._registry.urls,
            capacity=pc.capacity,
            concurrency=pc.concurrency,
            fetch_timeout=pc.fetch_timeout,
            metrics=self._metrics,
        )
        sc = self._config.search
        self._session = SearchSession(
            self._registry,
            transport,
            self._profiles,
            self._contacts,
            timeout=sc.timeout,
            quorum=sc.quorum,
            limit=sc.limit,
            kinds=sc.kinds,
            max_results=sc.max_results,
            metrics=self._metrics,
        )
        self._user_key: str | None = None

    # -------------------------------------------------------------------------
    # Factory Methods
    # -------------------------------------------------------------------------

    @classmethod
    async def create(
        cls,
        signer: Signer | None = None,
        endpoints: Iterable[str] | None = None,
        *,
        transport: SearchTransport | None = None,
        config: EngineConfig | None = None,
    ) -> Self:
        """Build an engine and log *signer* in.

        When *signer* is omitted, the key loaded by ``config.keys`` (the
        ``PRIVATE_KEY`` environment variable) is used if present; otherwise
        the engine stays anonymous.
        """
        engine = cls(transport, config=config, endpoints=endpoints)
        if signer is None:
            signer = engine.config.keys.signer()
        if signer is not None:
            await engine.login(signer)
        return engine

    @classmethod
    def from_yaml(cls, config_path: str | Path, **kwargs: Any) -> Self:
        """Create an engine from a YAML configuration file.

        Raises:
            FileNotFoundError: If the file does not exist.
            ConfigurationError: If the file is not a YAML mapping.
            pydantic.ValidationError: If a value is out of range.
        """
        return cls.from_dict(load_yaml(config_path), **kwargs)

    @classmethod
    def from_dict(cls, data: dict[str, Any], **kwargs: Any) -> Self:
        """Create an engine from a configuration dictionary."""
        return cls(config=EngineConfig.model_validate(data), **kwargs)

    # -------------------------------------------------------------------------
    # Observers
    # -------------------------------------------------------------------------

    @property
    def config(self) -> EngineConfig:
        return self._config

    @property
    def registry(self) -> RelayRegistry:
        return self._registry

    @property
    def session(self) -> SearchSession:
        return self._session

    @property
    def profiles(self) -> ProfileCache:
        return self._profiles

    @property
    def contacts(self) -> ContactGraph:
        return self._contacts

    @property
    def user_key(self) -> str | None:
        return self._user_key

    @property
    def is_logged_in(self) -> bool:
        return self._user_key is not None

    @property
    def is_searching(self) -> bool:
        return self._session.is_searching

    @property
    def search_state(self) -> SessionState:
        return self._session.state

    @property
    def relay_statuses(self) -> Mapping[str, ConnectionState]:
        return self._registry.statuses()

    @property
    def current_ranked_results(self) -> tuple[Item, ...]:
        return self._session.snapshot().items

    @property
    def is_using_preferred_relays(self) -> bool:
        return self._registry.is_using_preferred

    # -------------------------------------------------------------------------
    # Authentication
    # -------------------------------------------------------------------------

    async def login(self, signer: Signer) -> str:
        """Log the signer's user in and load their relays and contacts.

        Lookup failures degrade to the default relays and an empty follow
        set; they are logged, not raised.

        Returns:
            The user's hex public key.
        """
        user_key = await signer.get_public_key()
        if self._user_key is not None and self._user_key != user_key:
            await self.logout()
        self._user_key = user_key

        if self._config.relays.load_preferred:
            await self._registry.load_preferred(self._transport, user_key)
        await self._contacts.load(self._transport, user_key, self._registry.urls())

        self._logger.info(
            "logged_in",
            user=user_key,
            preferred_relays=self._registry.is_using_preferred,
            relays=len(self._registry),
            follows=len(self._contacts),
        )
        return user_key

    async def logout(self) -> None:
        """Forget the user: stop searching, clear caches, restore defaults."""
        self._session.reset()
        self._contacts.clear()
        self._profiles.clear()
        self._registry.reset()
        if self._user_key is not None:
            self._logger.info("logged_out", user=self._user_key)
        self._user_key = None

    # -------------------------------------------------------------------------
    # Search
    # -------------------------------------------------------------------------

    async def start_search(
        self,
        text: str,
        sort_mode: SortMode | str = SortMode.RECENT,
        scope_to_self: bool = False,
        on_snapshot: Callable[[RankedSnapshot], Any] | None = None,
    ) -> SearchResult:
        """Run a search and return its settled result.

        Blank *text* stops any running search, clears the results and
        returns an empty ``COMPLETED`` result without touching the network.

        Raises:
            NotAuthenticatedError: If *scope_to_self* is set while logged out.
        """
        if not text.strip():
            self._session.reset()
            return SearchResult(
                generation=self._session.generation,
                query=None,
                outcome=SessionState.COMPLETED,
            )
        if scope_to_self and self._user_key is None:
            raise NotAuthenticatedError("scope_to_self requires a logged-in user")

        query = SearchQuery(text, sort_mode=SortMode(sort_mode), scope_to_self=scope_to_self)
        return await self._session.start(query, self_key=self._user_key, on_snapshot=on_snapshot)

    def stop_search(self) -> SearchResult | None:
        """Cancel the running search; see
        [SearchSession.stop()][nostrsearch.services.session.SearchSession.stop].
        """
        return self._session.stop()

    async def get_profile(self, key: str) -> ProfileRecord | None:
        """Return the profile of *key*, or ``None`` when it has none."""
        record = await self._profiles.get(key)
        return record if record.found else None

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def _on_connection_state(self, url: str, state: ConnectionState) -> None:
        self._registry.update_connection_state(url, state)

    async def aclose(self) -> None:
        """Stop searching and release the transport."""
        self._session.stop()
        self._profiles.clear()
        aclose = getattr(self._transport, "aclose", None)
        if callable(aclose):
            await aclose()

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(
        self,
        _exc_type: type[BaseException] | None,
        _exc_val: BaseException | None,
        _exc_tb: TracebackType | None,
    ) -> None:
        await self.aclose()
