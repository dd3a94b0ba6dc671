"""structlog configuration for the CLI."""

from __future__ import annotations

import logging
import sys
from typing import Any

import structlog

LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")

_GREEN = "\x1b[32m"


def resolve_level(level: int | str) -> int:
    """Map a ``--log-level`` value to a logging level number."""
    if isinstance(level, int):
        return level
    name = level.upper()
    if name not in LEVELS:
        msg = f"Unknown log level {level!r}; expected one of {', '.join(LEVELS)}"
        raise ValueError(msg)
    return logging.getLevelNamesMapping()[name]


def mark_success(_logger: Any, _method: str, event_dict: dict[str, Any]) -> Any:
    """Show events logged with ``status="success"`` at a SUCCESS level."""
    if event_dict.get("status") == "success":
        event_dict["level"] = "success"
    return event_dict


def configure_logging(level: int | str = logging.INFO, *, json: bool = False) -> None:
    """Configure the structlog/standard logging bridge.

    Console rendering is the default and prints SUCCESS lines in green;
    ``json=True`` emits one JSON object per line for CI logs. An unknown
    level raises ValueError before anything is configured.
    """
    numeric = resolve_level(level)
    processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
    ]
    if json:
        processors.append(structlog.processors.format_exc_info)
        processors.append(structlog.processors.JSONRenderer())
    else:
        level_styles = structlog.dev.ConsoleRenderer.get_default_level_styles()
        level_styles["success"] = _GREEN
        processors.append(mark_success)
        processors.append(structlog.dev.ConsoleRenderer(level_styles=level_styles))

    structlog.configure(
        processors=processors,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
    logging.basicConfig(level=numeric, format="%(message)s", stream=sys.stderr)
