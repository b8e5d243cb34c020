"""Concrete implementations of the interfaces in ``followup_resilience.interfaces``."""
