"""YAML configuration loader with environment variable overrides.

# ─── CONFIGURATION HIERARCHY ──────────────────────────────────────────
#
# Configuration is loaded in layers (later layers override earlier):
#
#   1. Field defaults      -- declared on Settings
#   2. config/config.yaml  -- static defaults checked into the repo
#   3. .env file           -- local developer overrides (not committed)
#   4. Environment vars    -- set at deploy time
#
# The YAML file groups keys by component:
#
#   retry:           {max_attempts: 5, base_delay_ms: 500}
#   circuit_breaker: {failure_threshold: 3}
#   cache:           {eviction_policy: lfu}
#   logging:         {level: DEBUG}
#
# _flatten() turns that into Settings field names (logging.level ->
# log_level, app.env -> app_env, everything else keeps its key).
# ──────────────────────────────────────────────────────────────────────
"""

from pathlib import Path
from typing import Any

import structlog
import yaml
from pydantic import ValidationError

from followup_resilience.config.settings import Settings
from followup_resilience.utils.errors import ConfigurationError

logger = structlog.get_logger(logger_name=__name__)

_RENAMED_KEYS = {
    ("app", "env"): "app_env",
    ("logging", "level"): "log_level",
}


def load_config(path: str = "config/config.yaml") -> Settings:
    """Load YAML config and overlay environment-based Settings.

    Environment variables (via Settings) override YAML values where keys overlap.
    A missing file is not an error.

    Args:
        path: Path to the YAML configuration file.

    Returns:
        Fully resolved, validated Settings.

    Raises:
        ConfigurationError: The YAML is malformed or a value fails validation.
    """
    config_path = Path(path)
    if config_path.exists():
        try:
            with open(config_path) as f:
                yaml_config = yaml.safe_load(f) or {}
        except yaml.YAMLError as exc:
            raise ConfigurationError(f"Cannot parse {config_path}: {exc}") from exc
        if not isinstance(yaml_config, dict):
            raise ConfigurationError(f"{config_path} must contain a mapping at top level")
    else:
        yaml_config = {}

    flat = _flatten(yaml_config)
    unknown = sorted(set(flat) - set(Settings.model_fields))
    if unknown:
        logger.warning("config_unknown_keys", path=str(config_path), keys=unknown)

    try:
        env_settings = Settings()
        # Only fields actually provided by the environment or .env win over YAML.
        env_overrides = {name: getattr(env_settings, name) for name in env_settings.model_fields_set}
        return Settings.model_validate({**flat, **env_overrides})
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid configuration: {exc}") from exc


def _flatten(config: dict[str, Any]) -> dict[str, Any]:
    """Collapse component sections into Settings field names."""
    flat: dict[str, Any] = {}
    for section, value in config.items():
        if not isinstance(value, dict):
            flat[section] = value
            continue
        for key, item in value.items():
            flat[_RENAMED_KEYS.get((section, key), key)] = item
    return flat
