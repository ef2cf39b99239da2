"""Search orchestration: registry, contacts, profiles, ranking and sessions.

Services are the top layer of the diamond DAG, depending on
[nostrsearch.core][nostrsearch.core], [nostrsearch.utils][nostrsearch.utils]
and [nostrsearch.models][nostrsearch.models].

```text
SearchEngine
  └── SearchSession ── ResultAggregator ── ContactGraph
        ├── RelayRegistry
        └── ProfileCache
```

Attributes:
    RelayRegistry: Normalized relay set with connection state; defaults or
        the user's preferred list.
    ContactGraph: Follow set of the logged-in user (ranking input).
    ProfileCache: LRU cache of author profiles with request coalescing.
    ResultAggregator: Dedup and web-of-trust ranking of one generation.
    SearchSession: Generation-based fan-out state machine.
    SearchEngine: Facade wiring everything to a transport and a config.
"""

from .aggregator import ResultAggregator
from .configs import (
    DEFAULT_RELAYS,
    EngineConfig,
    ProfileCacheConfig,
    RelaysConfig,
    SearchConfig,
    TransportConfig,
)
from .contacts import ContactGraph
from .engine import SearchEngine
from .profiles import ProfileCache
from .protocols import (
    MetadataLookup,
    RecordLookup,
    RelayTransport,
    SearchTransport,
    Signer,
    Subscription,
)
from .registry import RelayRegistry
from .session import SearchSession


__all__ = [
    "DEFAULT_RELAYS",
    "ContactGraph",
    "EngineConfig",
    "MetadataLookup",
    "ProfileCache",
    "ProfileCacheConfig",
    "RecordLookup",
    "RelayRegistry",
    "RelayTransport",
    "RelaysConfig",
    "ResultAggregator",
    "SearchConfig",
    "SearchEngine",
    "SearchSession",
    "SearchTransport",
    "Signer",
    "Subscription",
    "TransportConfig",
]
