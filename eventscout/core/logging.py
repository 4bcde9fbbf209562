"""Logging for the EventScout MCP server.

Everything goes to stderr; stdout carries MCP messages only. Each record
gets the id of the MCP tool call it belongs to.
"""

import logging
import os
import sys
from contextvars import ContextVar

request_id_ctx: ContextVar[str | None] = ContextVar("request_id", default=None)

# One line per provider call and page fetch otherwise
CHATTY_LOGGERS = ("httpx", "httpcore", "voyageai")


class RequestIdFilter(logging.Filter):
    """Adds ``request_id`` to every record."""

    def filter(self, record):
        request_id = request_id_ctx.get()
        record.request_id = f"[{request_id}] " if request_id else ""
        return True


def configure_logging() -> logging.Logger:
    """Send logs to stderr with request ids and return the package logger."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] [%(name)s] %(request_id)s%(message)s",
        handlers=[logging.StreamHandler(sys.stderr)],
    )
    for handler in logging.root.handlers:
        handler.addFilter(RequestIdFilter())
    for name in CHATTY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logger = logging.getLogger("eventscout")
    if os.getenv("EVENTSCOUT_DEBUG", "").lower() in ("true", "1", "yes"):
        logger.setLevel(logging.DEBUG)
        logger.debug("Debug mode enabled")
    return logger


logger = configure_logging()
