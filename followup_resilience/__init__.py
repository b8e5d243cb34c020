"""followup-resilience: retry, circuit breaking, bounded caching and batch
execution for the follow-up detection add-in's network calls."""

__version__ = "0.1.0"
