"""Process-wide structlog/stdlib logging, initialized once at startup."""

from __future__ import annotations

import logging
import sys
from typing import Any, TextIO

import structlog

from .config import Settings

_LOGGING_CONFIGURED = False


def configure_logging(settings: Settings, *, stream: TextIO | None = None, force: bool = False) -> None:
    """Initialize structlog and stdlib logging formatting.

    Everything goes to ``stream`` (stderr by default); stdout belongs to the
    stdio transport.
    """
    global _LOGGING_CONFIGURED
    if _LOGGING_CONFIGURED and not force:
        return
    sink = stream or sys.stderr
    level = getattr(logging, settings.log_level.upper(), logging.INFO)

    processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.add_log_level,
        structlog.processors.format_exc_info,
    ]
    if settings.log_json_enabled:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.processors.KeyValueRenderer(key_order=["event", "level", "timestamp"]))
    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.PrintLoggerFactory(file=sink),
        cache_logger_on_first_use=True,
    )

    for handler in logging.root.handlers[:]:
        logging.root.removeHandler(handler)
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sink,
    )
    # Routine stateless-session chatter from the MCP library.
    logging.getLogger("mcp.server.streamable_http").setLevel(logging.WARNING)
    logging.getLogger("mcp.server.lowlevel.server").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)

    _LOGGING_CONFIGURED = True
