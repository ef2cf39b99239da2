r"""nostrsearch -- Web-of-trust full-text search over Nostr relays.

A query is fanned out concurrently to a set of relays (NIP-50 ``search``),
the streamed events are deduplicated and ranked (self, then followed
accounts, then everyone else; recency inside a tier) and their authors are
resolved through a bounded profile cache.

Architecture follows a **diamond DAG** dependency structure where imports
flow strictly downward:

```text
              services         Registry, contacts, profiles, ranking, sessions
             /        \
          core        utils    Logging/metrics/config  |  nostr-sdk transport, keys
             \        /
              models           Pure frozen dataclasses (zero I/O)
```

Note:
    For lightweight usage, import directly from subpackages::

        from nostrsearch.models import Item
        from nostrsearch.services import SearchEngine

    Top-level imports (``from nostrsearch import SearchEngine``) use lazy
    loading and resolve on first access.
"""

import importlib
from importlib.metadata import version as _get_version


__version__ = _get_version("nostrsearch")

__all__ = [
    "ContactGraph",
    "EngineConfig",
    "Item",
    "Logger",
    "NostrTransport",
    "ProfileCache",
    "ProfileRecord",
    "RelayEndpoint",
    "RelayRegistry",
    "ResultAggregator",
    "SearchEngine",
    "SearchQuery",
    "SearchResult",
    "SearchSession",
    "SessionState",
    "SortMode",
]

_LAZY_IMPORTS: dict[str, tuple[str, str]] = {
    "Logger": ("nostrsearch.core", "Logger"),
    "Item": ("nostrsearch.models", "Item"),
    "ProfileRecord": ("nostrsearch.models", "ProfileRecord"),
    "RelayEndpoint": ("nostrsearch.models", "RelayEndpoint"),
    "SearchQuery": ("nostrsearch.models", "SearchQuery"),
    "SearchResult": ("nostrsearch.models", "SearchResult"),
    "SessionState": ("nostrsearch.models", "SessionState"),
    "SortMode": ("nostrsearch.models", "SortMode"),
    "NostrTransport": ("nostrsearch.utils.transport", "NostrTransport"),
    "ContactGraph": ("nostrsearch.services", "ContactGraph"),
    "EngineConfig": ("nostrsearch.services", "EngineConfig"),
    "ProfileCache": ("nostrsearch.services", "ProfileCache"),
    "RelayRegistry": ("nostrsearch.services", "RelayRegistry"),
    "ResultAggregator": ("nostrsearch.services", "ResultAggregator"),
    "SearchEngine": ("nostrsearch.services", "SearchEngine"),
    "SearchSession": ("nostrsearch.services", "SearchSession"),
}


def __getattr__(name: str) -> object:
    if name in _LAZY_IMPORTS:
        module_path, attr_name = _LAZY_IMPORTS[name]
        module = importlib.import_module(module_path)
        value = getattr(module, attr_name)
        globals()[name] = value  # Cache for subsequent access
        return value
    raise AttributeError(f"module 'nostrsearch' has no attribute {name!r}")


def __dir__() -> list[str]:
    return __all__
