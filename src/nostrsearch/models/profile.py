"""
Author profile record resolved from kind-0 metadata.

A [ProfileRecord][nostrsearch.models.profile.ProfileRecord] with
``found=False`` is the negative marker cached after a failed or empty
lookup: absence of profile data is a normal, displayable state.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from time import time
from typing import Any

from ._validation import validate_str_not_empty


def _optional_str(data: dict[str, Any], key: str) -> str | None:
    value = data.get(key)
    if not isinstance(value, str):
        return None
    value = value.replace("\x00", "").strip()
    return value or None


@dataclass(frozen=True, slots=True)
class ProfileRecord:
    """Immutable author metadata.

    Attributes:
        key: Hex public key the record belongs to.
        display_name: ``display_name`` field of the metadata, if any.
        name: ``name`` field of the metadata, if any.
        picture: Avatar URL, if any.
        verified_identifier: NIP-05 identifier (``nip05`` field), if any.
        fetched_at: Unix timestamp of the lookup.
        found: ``False`` for the negative marker.
    """

    key: str
    display_name: str | None = None
    name: str | None = None
    picture: str | None = None
    verified_identifier: str | None = None
    fetched_at: float = field(default_factory=time)
    found: bool = True

    def __post_init__(self) -> None:
        validate_str_not_empty(self.key, "key")

    @classmethod
    def missing(cls, key: str) -> ProfileRecord:
        """Build the negative marker for *key*."""
        return cls(key=key, found=False)

    @classmethod
    def from_metadata(cls, key: str, data: dict[str, Any]) -> ProfileRecord:
        """Parse the JSON content of a kind-0 event.

        Non-string or blank fields are treated as absent. Both the
        ``display_name`` and legacy ``displayName`` spellings are accepted.
        """
        return cls(
            key=key,
            display_name=_optional_str(data, "display_name") or _optional_str(data, "displayName"),
            name=_optional_str(data, "name"),
            picture=_optional_str(data, "picture"),
            verified_identifier=_optional_str(data, "nip05"),
        )

    @property
    def best_name(self) -> str | None:
        """Display name, falling back to ``name``."""
        return self.display_name or self.name
