"""Abstract interfaces for swappable collaborators.

Components that need a cache depend on :class:`ICacheProvider` rather than on
:class:`~followup_resilience.providers.cache.BoundedCache` directly, so a
shared (e.g. Redis-backed) store can be dropped in without touching the
callers.
"""

from followup_resilience.interfaces.cache_provider import ICacheProvider

__all__ = ["ICacheProvider"]
