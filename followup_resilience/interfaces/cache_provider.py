"""Abstract base class for cache providers.

Defines the contract for the key-value cache that network-calling components
consult before (and populate after) a call to the mail server or the language
model.  Keys are opaque caller-chosen strings: the cache has no idea whether a
key names a conversation id, a prompt hash or anything else, which lets one
implementation serve unrelated callers.

Unlike a network-backed store, the in-memory provider is synchronous: capacity
limits are enforced inside ``set`` itself, with no suspension point between
the check and the insert.
"""

from __future__ import annotations

import re
from abc import ABC, abstractmethod
from typing import Any


class ICacheProvider(ABC):
    """Contract for key-value cache services."""

    @abstractmethod
    def get(self, key: str) -> Any | None:
        """Return the value stored under *key*, or ``None`` if missing/expired."""

    @abstractmethod
    def set(self, key: str, value: Any, ttl: float | None = None) -> None:
        """Store *value* under *key*.

        Parameters
        ----------
        key:
            The cache key.
        value:
            The value to store.
        ttl:
            Time-to-live in seconds.  ``None`` uses the provider default.
        """

    @abstractmethod
    def has(self, key: str) -> bool:
        """Return ``True`` if *key* is present and not expired."""

    @abstractmethod
    def invalidate(self, key: str) -> bool:
        """Remove *key*.  Returns ``True`` if an entry was removed."""

    @abstractmethod
    def bulk_invalidate(self, pattern: str | re.Pattern[str]) -> int:
        """Remove every key matching the regex *pattern*; return the count."""

    @abstractmethod
    def clear(self) -> None:
        """Remove every entry."""
