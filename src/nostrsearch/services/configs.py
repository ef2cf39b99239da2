"""Configuration models for the search engine.

Every section has defaults, so partial YAML overrides are enough (e.g.
setting only ``search.timeout: 5`` keeps every other value).

See Also:
    [SearchEngine][nostrsearch.services.engine.SearchEngine]: Consumes
        [EngineConfig][nostrsearch.services.configs.EngineConfig] through
        ``from_yaml()`` / ``from_dict()``.

Examples:
    ```yaml
    relays:
      default_urls:
        - wss://relay.damus.io
        - wss://relay.nostr.band
    search:
      timeout: 10
      quorum: 0.8
    profiles:
      concurrency: 20
      capacity: 10000
    metrics:
      enabled: true
      port: 8000
    ```
"""

from __future__ import annotations

from pydantic import BaseModel, Field, field_validator

from nostrsearch.core.metrics import MetricsConfig
from nostrsearch.models import EVENT_KIND_MAX, EventKind, normalize_relay_url
from nostrsearch.utils.keys import KeysConfig


DEFAULT_RELAYS: tuple[str, ...] = (
    "wss://relay.nostr.band",
    "wss://relay.nostrcheck.me",
    "wss://relay.noswhere.com",
    "wss://bnc.netsec.vip",
    "wss://relay.snort.social",
    "wss://relay.damus.io",
    "wss://relay.primal.net",
)


# =============================================================================
# Section Models
# =============================================================================


class RelaysConfig(BaseModel):
    """Fallback relay set and preferred-list discovery.

    See Also:
        [RelayRegistry][nostrsearch.services.registry.RelayRegistry]:
            Seeded with ``default_urls``.
    """

    default_urls: list[str] = Field(
        default_factory=lambda: list(DEFAULT_RELAYS),
        min_length=1,
        description="Fallback relays used when the user has no relay list",
    )
    load_preferred: bool = Field(
        default=True,
        description="Replace the defaults with the user's kind-10002 relay list on login",
    )

    @field_validator("default_urls")
    @classmethod
    def _normalize_urls(cls, v: list[str]) -> list[str]:
        urls: list[str] = []
        for raw in v:
            url = normalize_relay_url(raw)
            if url not in urls:
                urls.append(url)
        return urls


class SearchConfig(BaseModel):
    """Query shape and session limits.

    See Also:
        [SearchSession][nostrsearch.services.session.SearchSession]:
            Applies ``timeout``, ``quorum`` and ``limit``.
        [ResultAggregator][nostrsearch.services.aggregator.ResultAggregator]:
            Applies ``max_results``.
    """

    timeout: float = Field(
        default=10.0, gt=0.0, le=300.0, description="Absolute deadline per search (seconds)"
    )
    limit: int = Field(default=100, ge=1, le=5000, description="Per-relay result limit")
    kinds: list[int] = Field(
        default_factory=lambda: [int(EventKind.TEXT_NOTE)],
        min_length=1,
        description="Event kinds to search",
    )
    quorum: float = Field(
        default=1.0,
        gt=0.0,
        le=1.0,
        description="Fraction of relays that must finish for natural completion",
    )
    max_results: int = Field(
        default=420, ge=1, le=10_000, description="Display cap on ranked results"
    )

    @field_validator("kinds")
    @classmethod
    def _validate_kinds(cls, v: list[int]) -> list[int]:
        for kind in v:
            if not 0 <= kind <= EVENT_KIND_MAX:
                raise ValueError(f"Event kind {kind} out of valid range (0-{EVENT_KIND_MAX})")
        return v


class ProfileCacheConfig(BaseModel):
    """Profile resolution limits.

    See Also:
        [ProfileCache][nostrsearch.services.profiles.ProfileCache]
    """

    concurrency: int = Field(default=20, ge=1, le=200, description="Parallel metadata fetches")
    capacity: int = Field(default=10_000, ge=1, description="Maximum cached profiles (LRU)")
    fetch_timeout: float = Field(
        default=5.0, gt=0.0, le=60.0, description="Per-profile fetch timeout (seconds)"
    )


class TransportConfig(BaseModel):
    """nostr-sdk transport settings.

    See Also:
        [NostrTransport][nostrsearch.utils.transport.NostrTransport]
    """

    connect_timeout: float = Field(default=10.0, gt=0.0, le=120.0)
    stream_timeout: float = Field(default=30.0, gt=0.0, le=600.0)
    lookup_timeout: float = Field(default=5.0, gt=0.0, le=120.0)
    proxy_url: str | None = Field(
        default=None, description="SOCKS5 proxy for .onion relays (e.g. socks5://127.0.0.1:9050)"
    )


# =============================================================================
# Engine Configuration
# =============================================================================


class EngineConfig(BaseModel):
    """Top-level configuration of a
    [SearchEngine][nostrsearch.services.engine.SearchEngine].
    """

    relays: RelaysConfig = Field(default_factory=RelaysConfig)
    search: SearchConfig = Field(default_factory=SearchConfig)
    profiles: ProfileCacheConfig = Field(default_factory=ProfileCacheConfig)
    transport: TransportConfig = Field(default_factory=TransportConfig)
    metrics: MetricsConfig = Field(default_factory=MetricsConfig)
    keys: KeysConfig = Field(default_factory=KeysConfig)
