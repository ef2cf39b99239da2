"""
Pytest configuration and shared fixtures for nostrsearch tests.

Provides:
- In-memory relay transport (subscriptions, latest-record and metadata lookups)
- Signer stub and item factories
- Wired registry, contacts, profile cache, session and engine fixtures
"""

from __future__ import annotations

import asyncio
import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Any

import pytest

from nostrsearch.models import ConnectionState, EventKind, Item, SearchFilter, normalize_relay_url
from nostrsearch.services import (
    ContactGraph,
    EngineConfig,
    ProfileCache,
    RelayRegistry,
    SearchEngine,
    SearchSession,
)


SELF_KEY = "a" * 64
FOLLOWED_KEY = "b" * 64
OTHER_KEY = "c" * 64

RELAY_A = "wss://relay-a.example.com"
RELAY_B = "wss://relay-b.example.com"
RELAY_C = "wss://relay-c.example.com"


# ============================================================================
# Logging Configuration
# ============================================================================


@pytest.fixture(scope="session", autouse=True)
def setup_logging() -> None:
    """Configure logging for tests."""
    logging.basicConfig(level=logging.DEBUG)


# ============================================================================
# Factories
# ============================================================================


def make_item(
    n: int,
    *,
    author: str = OTHER_KEY,
    created_at: int = 1_700_000_000,
    content: str = "",
    tags: list[list[str]] | None = None,
    kind: int = EventKind.TEXT_NOTE,
) -> Item:
    """Build an item whose id is ``n`` rendered as 64 hex chars."""
    return Item(
        id=f"{n:064x}",
        author_key=author,
        created_at=created_at,
        content=content or f"note {n}",
        tags=tags or [],
        kind=kind,
    )


def make_contacts(owner: str, follows: list[str]) -> Item:
    return make_item(
        900, author=owner, kind=EventKind.CONTACTS, tags=[["p", key] for key in follows]
    )


def make_relay_list(owner: str, urls: list[str]) -> Item:
    return make_item(
        901, author=owner, kind=EventKind.RELAY_LIST, tags=[["r", url] for url in urls]
    )


class StubSigner:
    """Signer returning a fixed key."""

    def __init__(self, key: str = SELF_KEY) -> None:
        self.key = key
        self.calls = 0

    async def get_public_key(self) -> str:
        self.calls += 1
        return self.key


# ============================================================================
# In-memory transport
# ============================================================================


@dataclass
class RelayScript:
    """Scripted behaviour of one relay."""

    items: list[Item] = field(default_factory=list)
    eose: bool = True
    delay: float = 0.0
    error: Exception | None = None
    fail_after: Exception | None = None
    close_gate: asyncio.Event | None = None


class FakeSubscription:
    """Subscription replaying a script; hangs after the last item without EOSE."""

    def __init__(self, url: str, script: RelayScript) -> None:
        self.url = url
        self._script = script
        self._closed = asyncio.Event()
        self.close_calls = 0

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def __aiter__(self) -> Any:
        return self._iterate()

    async def _iterate(self) -> Any:
        for item in self._script.items:
            if self._script.delay:
                await asyncio.sleep(self._script.delay)
            if self.closed:
                return
            yield item
        if self._script.fail_after is not None:
            raise self._script.fail_after
        if not self._script.eose:
            await self._closed.wait()

    async def close(self) -> None:
        self.close_calls += 1
        self._closed.set()
        if self._script.close_gate is not None:
            await self._script.close_gate.wait()


class FakeTransport:
    """In-memory implementation of the subscription and lookup protocols."""

    def __init__(self) -> None:
        self.scripts: dict[str, RelayScript] = {}
        self.records: dict[tuple[str, int], Item | Exception] = {}
        self.metadata: dict[str, dict[str, Any] | Exception | None] = {}
        self.metadata_calls: Counter[str] = Counter()
        self.metadata_gate: asyncio.Event | None = None
        self.lookup_relays: list[list[str]] = []
        self.subscriptions: list[FakeSubscription] = []
        self.filters: list[tuple[str, SearchFilter]] = []
        self.listener: Any = None

    def script(self, url: str, items: list[Item] | None = None, **kwargs: Any) -> RelayScript:
        script = RelayScript(items=list(items or []), **kwargs)
        self.scripts[normalize_relay_url(url)] = script
        return script

    def set_listener(self, listener: Any) -> None:
        self.listener = listener

    def _notify(self, url: str, state: ConnectionState) -> None:
        if self.listener is not None:
            self.listener(url, state)

    async def subscribe(self, url: str, search_filter: SearchFilter) -> FakeSubscription:
        self.filters.append((url, search_filter))
        script = self.scripts.get(url, RelayScript())
        self._notify(url, ConnectionState.CONNECTING)
        await asyncio.sleep(0)
        if script.error is not None:
            self._notify(url, ConnectionState.ERROR)
            raise script.error
        self._notify(url, ConnectionState.CONNECTED)
        sub = FakeSubscription(url, script)
        self.subscriptions.append(sub)
        return sub

    async def fetch_latest(self, author: str, kind: int, relays: list[str]) -> Item | None:
        self.lookup_relays.append(list(relays))
        await asyncio.sleep(0)
        record = self.records.get((author, kind))
        if isinstance(record, Exception):
            raise record
        return record

    async def fetch_metadata(self, key: str, relays: list[str]) -> dict[str, Any] | None:
        self.metadata_calls[key] += 1
        if self.metadata_gate is not None:
            await self.metadata_gate.wait()
        await asyncio.sleep(0)
        value = self.metadata.get(key)
        if isinstance(value, Exception):
            raise value
        return value


# ============================================================================
# Component Fixtures
# ============================================================================


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def registry() -> RelayRegistry:
    registry = RelayRegistry()
    registry.bootstrap_defaults([RELAY_A, RELAY_B])
    return registry


@pytest.fixture
def contacts() -> ContactGraph:
    return ContactGraph()


@pytest.fixture
def profiles(transport: FakeTransport, registry: RelayRegistry) -> ProfileCache:
    return ProfileCache(transport, registry.urls, capacity=100, concurrency=4, fetch_timeout=1.0)


@pytest.fixture
def session(
    registry: RelayRegistry,
    transport: FakeTransport,
    profiles: ProfileCache,
    contacts: ContactGraph,
) -> SearchSession:
    return SearchSession(registry, transport, profiles, contacts, timeout=2.0)


@pytest.fixture
def engine_config() -> EngineConfig:
    return EngineConfig.model_validate(
        {
            "relays": {"default_urls": [RELAY_A, RELAY_B]},
            "search": {"timeout": 2.0},
            "profiles": {"fetch_timeout": 1.0},
        }
    )


@pytest.fixture
def engine(transport: FakeTransport, engine_config: EngineConfig) -> SearchEngine:
    return SearchEngine(transport, config=engine_config)
