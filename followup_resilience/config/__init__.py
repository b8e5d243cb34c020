"""Configuration module -- exports Settings and load_config."""

from followup_resilience.config.loader import load_config
from followup_resilience.config.settings import Settings

__all__ = ["Settings", "load_config"]
