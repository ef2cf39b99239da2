"""Shared validation helpers for frozen dataclass models.

Private module, not part of the public API. Used by ``__post_init__``
methods in sibling model modules to enforce runtime type constraints and
null-byte safety before an instance escapes its constructor.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any


def validate_instance(value: Any, expected: type, name: str) -> None:
    """Raise ``TypeError`` if *value* is not an instance of *expected*."""
    if not isinstance(value, expected):
        article = "an" if expected.__name__[0] in "AEIOUaeiou" else "a"
        raise TypeError(f"{name} must be {article} {expected.__name__}, got {type(value).__name__}")


def validate_timestamp(value: Any, name: str) -> None:
    """Raise if *value* is not a non-negative ``int`` (``bool`` excluded)."""
    if isinstance(value, bool) or not isinstance(value, int):
        raise TypeError(f"{name} must be an int, got {type(value).__name__}")
    if value < 0:
        raise ValueError(f"{name} must be non-negative")


def validate_str_no_null(value: Any, name: str) -> None:
    """Raise if *value* is not a ``str`` or contains null bytes."""
    if not isinstance(value, str):
        raise TypeError(f"{name} must be a str, got {type(value).__name__}")
    if "\x00" in value:
        raise ValueError(f"{name} contains null bytes")


def validate_str_not_empty(value: Any, name: str) -> None:
    """Raise if *value* is not a non-empty ``str`` without null bytes."""
    validate_str_no_null(value, name)
    if not value:
        raise ValueError(f"{name} must not be empty")


def freeze_tags(tags: Any, name: str) -> tuple[tuple[str, ...], ...]:
    """Convert a sequence of string sequences into nested tuples.

    Raises:
        TypeError: If *tags* or any tag is not a sequence of ``str``.
    """
    if isinstance(tags, str) or not isinstance(tags, Sequence):
        raise TypeError(f"{name} must be a sequence of string sequences")
    frozen: list[tuple[str, ...]] = []
    for tag in tags:
        if isinstance(tag, str) or not isinstance(tag, Sequence):
            raise TypeError(f"{name} entries must be sequences, got {type(tag).__name__}")
        for value in tag:
            validate_str_no_null(value, name)
        frozen.append(tuple(tag))
    return tuple(frozen)
