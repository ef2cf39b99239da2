"""Nostr key loading and signer implementations.

The engine only needs to know *who* the current user is (see
[Signer][nostrsearch.services.protocols.Signer]); it never signs anything.
[KeysSigner][nostrsearch.utils.keys.KeysSigner] derives the identity from a
private key loaded from the environment, and
[PublicKeySigner][nostrsearch.utils.keys.PublicKeySigner] accepts a bare
public key for read-only logins.

Warning:
    Private keys must never be stored in configuration files or logged.
    Use the ``PRIVATE_KEY`` environment variable (nsec1 or 64-char hex).

Examples:
    ```python
    import os

    os.environ["PRIVATE_KEY"] = "nsec1..."  # pragma: allowlist secret
    signer = KeysSigner(load_keys_from_env("PRIVATE_KEY"))
    await signer.get_public_key()   # 'hex...'

    viewer = PublicKeySigner("npub1...")
    ```
"""

from __future__ import annotations

import os
from typing import Any

from nostr_sdk import Keys, PublicKey
from pydantic import BaseModel, Field, model_validator


ENV_PRIVATE_KEY = "PRIVATE_KEY"  # pragma: allowlist secret  # Default env var name


def load_keys_from_env(env_var: str) -> Keys:
    """Load Nostr keys from an environment variable.

    Args:
        env_var: Name of the environment variable holding the private key.

    Returns:
        A ``nostr_sdk.Keys`` instance.

    Raises:
        ValueError: If the variable is unset or empty.
        nostr_sdk.NostrSdkError: If the key is malformed.
    """
    value = os.getenv(env_var)
    if not value:
        raise ValueError(f"{env_var} environment variable is not set")
    return Keys.parse(value)


class KeysSigner:
    """[Signer][nostrsearch.services.protocols.Signer] backed by ``nostr_sdk.Keys``."""

    __slots__ = ("_keys",)

    def __init__(self, keys: Keys) -> None:
        self._keys = keys

    async def get_public_key(self) -> str:
        return self._keys.public_key().to_hex()


class PublicKeySigner:
    """Read-only identity from an ``npub1...`` or hex public key.

    Raises:
        nostr_sdk.NostrSdkError: If the key cannot be parsed.
    """

    __slots__ = ("_public_key",)

    def __init__(self, public_key: str) -> None:
        self._public_key = PublicKey.parse(public_key)

    async def get_public_key(self) -> str:
        return self._public_key.to_hex()


class KeysConfig(BaseModel):
    """Pydantic model that loads Nostr keys from an environment variable.

    Keys are optional: anonymous searches run without a user. When the
    variable named by ``keys_env`` is set the ``keys`` field is populated
    during validation; when it is unset and ``required`` is True validation
    fails.

    Attributes:
        keys_env: Environment variable name for the private key.
        required: Fail validation when the variable is unset.
        keys: Loaded ``nostr_sdk.Keys`` or ``None``.

    Warning:
        Do not serialize this model; ``keys`` holds a live private key.
    """

    model_config = {"arbitrary_types_allowed": True}

    keys_env: str = Field(
        default=ENV_PRIVATE_KEY,
        min_length=1,
        description="Environment variable name for private key",
    )
    required: bool = Field(default=False, description="Fail when the key is missing")
    keys: Keys | None = Field(default=None, exclude=True)

    @model_validator(mode="before")
    @classmethod
    def _load_keys_from_env(cls, data: Any) -> Any:
        """Populate ``keys`` from the environment when it is not given."""
        if not isinstance(data, dict) or data.get("keys") is not None:
            return data
        env_var = data.get("keys_env", ENV_PRIVATE_KEY)
        if os.getenv(env_var):
            data = {**data, "keys": load_keys_from_env(env_var)}
        elif data.get("required", False):
            raise ValueError(f"{env_var} environment variable is required")
        return data

    def signer(self) -> KeysSigner | None:
        """Return a signer for the loaded keys, or ``None`` if none were loaded."""
        return KeysSigner(self.keys) if self.keys is not None else None
