"""structlog setup shared by the runtime and the CLI."""

import structlog

from studio.config import settings

_NAME_TO_LEVEL = {
    "debug": 10,
    "info": 20,
    "warning": 30,
    "warn": 30,
    "error": 40,
    "critical": 50,
}


def level_for(name: str) -> int:
    return _NAME_TO_LEVEL.get(name.lower(), 20)


def configure_logging(level: str | None = None) -> None:
    """Configure structlog for JSON output filtered at the given level name."""
    structlog.configure(
        processors=[
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            level_for(level or settings.studio_log_level)
        ),
    )
