"""Cache providers.

BoundedCache keeps lookups from repeated network calls (conversation
metadata, language-model verdicts for an unchanged thread) in process memory,
bounded by entry count and estimated byte size, with LRU/LFU/FIFO eviction
and a periodic TTL sweep.  It is not shared across processes.
"""

from followup_resilience.providers.cache.bounded_cache import (
    BoundedCache,
    compute_fingerprint,
    estimate_size,
)

__all__ = ["BoundedCache", "compute_fingerprint", "estimate_size"]
