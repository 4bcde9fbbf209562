"""Core functionality for the EventScout MCP server.

The application context lives in ``eventscout.core.context`` and is imported
from there directly; it depends on config and services, which in turn depend
on this package.
"""

from .constants import (
    LLM_TEMPERATURE_DETERMINISTIC,
    MAX_RETRIES_DEFAULT,
    PRIORITY_WEIGHTS,
    REGEX_FALLBACK_CONFIDENCE,
)
from .decorators import track_request
from .exceptions import EventScoutError, MCPToolError
from .logging import configure_logging, logger, request_id_ctx

__all__ = [
    # Core
    "EventScoutError",
    "MCPToolError",
    "configure_logging",
    "logger",
    "request_id_ctx",
    "track_request",
    # Constants - most commonly used
    "LLM_TEMPERATURE_DETERMINISTIC",
    "MAX_RETRIES_DEFAULT",
    "PRIORITY_WEIGHTS",
    "REGEX_FALLBACK_CONFIDENCE",
]
