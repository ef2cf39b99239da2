"""Nostr key management and nostr-sdk relay transport.

The utils layer sits in the middle of the diamond DAG, depending only on
[nostrsearch.models][nostrsearch.models]. It provides the concrete
collaborators the [nostrsearch.services][nostrsearch.services] layer talks
to through its protocols.

Attributes:
    keys: Nostr key loading from environment variables (nsec1 bech32 or
        hex) with Pydantic validation, plus the signer implementations that
        tell the engine who the current user is.
    transport: Relay subscriptions, latest-record lookup and kind-0
        metadata lookup on top of nostr-sdk. ``.onion`` relays require
        ``proxy_url``.

Note:
    The utils layer has **zero** imports from ``nostrsearch.core`` or
    ``nostrsearch.services``. Failures are raised as built-in ``OSError``,
    ``TimeoutError`` and ``ValueError``.

Examples:
    ```python
    from nostrsearch.utils.keys import KeysConfig, PublicKeySigner
    from nostrsearch.utils.transport import NostrTransport
    ```
"""
