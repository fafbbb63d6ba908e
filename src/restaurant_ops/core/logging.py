"""Structured logging setup.

configure_structlog() is called once by get_agent_service() when the
global service is first built; processes that build their own
AgentService call it themselves at startup. Production renders JSON,
every other environment renders console output.
"""

from __future__ import annotations

import logging

import structlog

from src.restaurant_ops.config import Environment, Settings, get_settings

SERVICE_NAME = "restaurant-ops"

_configured = False


def _add_service_name(logger: object, method_name: str, event_dict: dict) -> dict:
    event_dict.setdefault("service", SERVICE_NAME)
    return event_dict


def configure_structlog(settings: Settings | None = None, force: bool = False) -> bool:
    """Configure structlog and the stdlib root level from settings.

    Returns True when configuration was applied, False when it had already
    been applied and ``force`` is not set.
    """
    global _configured
    if _configured and not force:
        return False

    settings = settings or get_settings()
    level = logging.getLevelName(settings.LOG_LEVEL.upper())
    if not isinstance(level, int):
        level = logging.INFO
    logging.basicConfig(format="%(message)s", level=level)

    processors: list = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        _add_service_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]
    if settings.ENVIRONMENT == Environment.production:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=False))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
    _configured = True
    return True
