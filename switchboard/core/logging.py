from __future__ import annotations

import logging
from typing import Any

import structlog

_PACKAGE = "switchboard"


def configure_logging(level: str = "INFO", *, json_logs: bool = True) -> None:
    """Route structlog through stdlib logging with one renderer for the service.

    ``json_logs=False`` switches to the console renderer for local runs.
    """
    logging.basicConfig(
        format="%(message)s",
        level=getattr(logging, level.upper(), logging.INFO),
    )

    renderer: Any = structlog.processors.JSONRenderer() if json_logs else structlog.dev.ConsoleRenderer()
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def component_for(name: str | None) -> str | None:
    """``switchboard.bridge.session`` -> ``bridge``; None outside the package."""
    if not name:
        return None
    parts = name.split(".")
    if parts[0] != _PACKAGE or len(parts) < 2:
        return None
    return parts[1]


def get_logger(
    *,
    name: str | None = None,
    component: str | None = None,
    **kwargs: Any,
) -> structlog.stdlib.BoundLogger:
    logger = structlog.get_logger(name)
    component = component or component_for(name)
    if component:
        kwargs = {"component": component, **kwargs}
    if kwargs:
        return logger.bind(**kwargs)
    return logger
