"""MCP tool wrapper for event search.

This module provides the MCP tool entry points for event search and pipeline
status.
"""

import json
import logging
from datetime import date
from typing import Any

from pydantic import ValidationError

from eventscout.config.store import PrecisionWeights
from eventscout.core import MCPToolError
from eventscout.core.context import require_app_context
from eventscout.core.exceptions import ConfigurationError
from eventscout.services.event_models import CallerProfile, SearchRequest
from eventscout.utils.integration_helpers import get_health_status

# Per Pydantic AI docs: Reuse Agent instances to benefit from connection pooling
from .factory import get_event_search_service

logger = logging.getLogger(__name__)


def build_search_request(
    topic: str,
    date_from: str,
    date_to: str,
    region: str | None = None,
    locale: str | None = None,
    caller_profile: dict[str, Any] | None = None,
    precision_weights: dict[str, float] | None = None,
) -> SearchRequest:
    """Validate tool arguments into a SearchRequest.

    Raises:
        MCPToolError: If any argument is invalid
    """
    try:
        return SearchRequest(
            topic=topic,
            region=region,
            date_from=date.fromisoformat(date_from),
            date_to=date.fromisoformat(date_to),
            locale=locale,
            caller_profile=CallerProfile(**(caller_profile or {})),
            precision_weights=PrecisionWeights(**precision_weights) if precision_weights else None,
        )
    except ValidationError as e:
        msg = f"Invalid search request: {e}"
        raise MCPToolError(msg) from e
    except (ValueError, TypeError) as e:
        msg = f"Invalid search request: {e}"
        raise MCPToolError(msg) from e


async def search_events_impl(
    topic: str,
    date_from: str,
    date_to: str,
    region: str | None = None,
    locale: str | None = None,
    caller_profile: dict[str, Any] | None = None,
    precision_weights: dict[str, float] | None = None,
    budget_seconds: float | None = None,
) -> str:
    """Execute an event search and return the JSON result.

    This is the main entry point called by the MCP tool.

    Args:
        topic: Topic to search events for
        date_from: Window start (YYYY-MM-DD)
        date_to: Window end (YYYY-MM-DD)
        region: Country code or name
        locale: Language code for queries
        caller_profile: Industry/ICP terms, preferred cities, excluded hosts
        precision_weights: Per-axis strictness on a 0-10 scale
        budget_seconds: Override the wall-clock budget

    Returns:
        JSON string with the EventSearchResult

    Raises:
        MCPToolError: If the request is invalid or the service is unavailable
    """
    request = build_search_request(
        topic,
        date_from,
        date_to,
        region=region,
        locale=locale,
        caller_profile=caller_profile,
        precision_weights=precision_weights,
    )

    try:
        # Get singleton service instance (connection pooling optimization)
        service = get_event_search_service()
        result = await service.search(request, budget_seconds=budget_seconds)
        return result.to_json()

    except ConfigurationError as e:
        logger.error("Event search is not configured: %s", e)
        raise MCPToolError(f"Event search unavailable: {e}") from e
    except Exception as e:
        logger.exception("Event search implementation failed")
        raise MCPToolError(f"Event search failed: {e}") from e


async def pipeline_status_impl() -> str:
    """Report provider health, cache statistics and configuration version.

    Raises:
        MCPToolError: If the application context is not initialized
    """
    try:
        context = require_app_context()
    except ConfigurationError as e:
        raise MCPToolError(str(e)) from e

    snapshot = context.config_store.snapshot()
    status = get_health_status(
        context.guards.get_states(),
        context.provider_stats.snapshot(),
    )
    status["cache"] = context.cache.get_stats()
    status["config_version"] = snapshot.version
    status["templates"] = sorted(snapshot.templates)
    return json.dumps(status, indent=2, default=str)


async def reload_config_impl() -> str:
    """Reload templates and thresholds from the configured file.

    Raises:
        MCPToolError: If the file is invalid; the previous snapshot stays in service
    """
    try:
        context = require_app_context()
        snapshot = context.config_store.reload()
    except ConfigurationError as e:
        raise MCPToolError(f"Config reload failed: {e}") from e
    return json.dumps(
        {"success": True, "version": snapshot.version, "templates": sorted(snapshot.templates)},
        indent=2,
    )
