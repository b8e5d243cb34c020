"""Structured logging for the resilience components.

Every record carries ``service`` and ``app_env`` so lines emitted by the
retry executor, breakers and batch jobs can be told apart from the host
add-in's own output.  Rendering follows the deployment environment: JSON in
``production``, a coloured console renderer everywhere else.  The environment
comes from :class:`~followup_resilience.config.settings.Settings` (YAML
``app.env`` overlaid by ``APP_ENV``), never from a second read of the process
environment.

Standard-library ``logging`` can be bridged through the same processor chain.
The bridge owns one handler on the root logger and replaces only that handler
on reconfiguration, leaving handlers installed by the host application alone.
"""

from __future__ import annotations

import logging
import sys
from typing import TYPE_CHECKING, Any

import structlog

from followup_resilience.utils.errors import ConfigurationError

if TYPE_CHECKING:
    from followup_resilience.config.settings import Settings

SERVICE_NAME = "followup-resilience"

_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

# Marks the root handler installed by the stdlib bridge.
_BRIDGE_ATTR = "_followup_resilience_bridge"


def _static_fields(**fields: Any) -> structlog.types.Processor:
    def add_fields(_logger: Any, _method: str, event_dict: dict[str, Any]) -> dict[str, Any]:
        for key, value in fields.items():
            event_dict.setdefault(key, value)
        return event_dict

    return add_fields


def configure_logging(
    log_level: str = "INFO",
    app_env: str = "development",
    *,
    json_output: bool | None = None,
    bridge_stdlib: bool = True,
) -> structlog.BoundLogger:
    """Configure structlog for *app_env*.

    Args:
        log_level: One of DEBUG, INFO, WARNING, ERROR, CRITICAL (any case).
        app_env: Deployment environment; ``"production"`` selects JSON output.
        json_output: Overrides the renderer choice made from *app_env*.
        bridge_stdlib: Route stdlib ``logging`` records through the same chain.

    Returns:
        A configured structlog BoundLogger.

    Raises:
        ConfigurationError: If *log_level* is not a known level name.
    """
    level = log_level.upper()
    if level not in _LEVELS:
        raise ConfigurationError(f"Unknown log level {log_level!r}; expected one of {_LEVELS}")
    use_json = app_env == "production" if json_output is None else json_output

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        _static_fields(service=SERVICE_NAME, app_env=app_env),
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        structlog.processors.TimeStamper(fmt="iso"),
    ]

    if use_json:
        renderer: structlog.types.Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=True)

    structlog.configure(
        processors=[*shared_processors, renderer],
        wrapper_class=structlog.make_filtering_bound_logger(logging.getLevelName(level)),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    if bridge_stdlib:
        _install_stdlib_bridge(shared_processors, renderer, level)

    return structlog.get_logger()


def configure_logging_from_settings(app_settings: Settings) -> structlog.BoundLogger:
    """Configure logging from the loaded settings' ``log_level`` and ``app_env``."""
    return configure_logging(log_level=app_settings.log_level, app_env=app_settings.app_env)


def get_logger(name: str) -> structlog.BoundLogger:
    """Get a named structlog logger, configuring defaults on first use."""
    if not structlog.is_configured():
        configure_logging()

    return structlog.get_logger(logger_name=name)


def _install_stdlib_bridge(
    shared_processors: list[structlog.types.Processor],
    renderer: structlog.types.Processor,
    level: str,
) -> None:
    formatter = structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            *shared_processors,
            renderer,
        ],
    )
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)
    setattr(handler, _BRIDGE_ATTR, True)

    root_logger = logging.getLogger()
    for existing in list(root_logger.handlers):
        if getattr(existing, _BRIDGE_ATTR, False):
            root_logger.removeHandler(existing)
    root_logger.addHandler(handler)
    root_logger.setLevel(level)
