"""nostrsearch exception hierarchy.

Typed exceptions let the engine tell per-endpoint transport failures (which
degrade a search) apart from caller mistakes (which must surface), while
``asyncio.CancelledError`` always propagates untouched.

Exception hierarchy:

```text
NostrSearchError (base -- never raised directly)
├── ConfigurationError        -- config validation, missing keys, bad YAML
├── ConnectivityError         -- no relay available for a lookup
├── ProtocolError             -- malformed relay payloads (relay lists, metadata)
└── SessionError              -- invalid use of the search engine
    └── NotAuthenticatedError -- operation needs a logged-in user
```

Note:
    Total loss of connectivity is not an exception: it is reported as the
    ``NO_CONNECTIVITY`` outcome of a
    [SearchResult][nostrsearch.models.results.SearchResult].
"""

from __future__ import annotations


class NostrSearchError(Exception):
    """Base exception for all nostrsearch errors.

    Never raised directly -- always use a specific subclass.
    """


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


class ConfigurationError(NostrSearchError):
    """Invalid or missing configuration (YAML, env vars, CLI flags)."""


# ---------------------------------------------------------------------------
# Connectivity
# ---------------------------------------------------------------------------


class ConnectivityError(NostrSearchError):
    """No relay is available to serve a lookup.

    Transports themselves raise ``OSError``/``TimeoutError``; the search
    session catches those per endpoint and carries on with the remaining
    relays.
    """


# ---------------------------------------------------------------------------
# Protocol
# ---------------------------------------------------------------------------


class ProtocolError(NostrSearchError):
    """A relay returned a payload that does not match the expected shape.

    Examples are a relay list without usable ``r`` tags or kind-0 content
    that is not a JSON object.
    """


# ---------------------------------------------------------------------------
# Session
# ---------------------------------------------------------------------------


class SessionError(NostrSearchError):
    """The engine was used in a way its current state does not allow."""


class NotAuthenticatedError(SessionError):
    """The operation requires a logged-in user (e.g. a self-scoped search)."""
