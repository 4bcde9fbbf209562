"""
Event search tools for MCP server.

This module contains the event search MCP tools:
- search_events: Discover, extract and validate events for a topic and window
- pipeline_status: Provider circuits, cache statistics and config version
- reload_config: Swap in a freshly loaded template/threshold snapshot
"""

import logging
from typing import TYPE_CHECKING, Any

from fastmcp import Context

if TYPE_CHECKING:
    from fastmcp import FastMCP

from eventscout.core import MCPToolError, track_request
from eventscout.core.exceptions import ConfigurationError
from eventscout.services.event_search import (
    pipeline_status_impl,
    reload_config_impl,
    search_events_impl,
)

logger = logging.getLogger(__name__)


def register_search_tools(mcp: "FastMCP") -> None:
    """
    Register event search MCP tools.

    Args:
        mcp: FastMCP instance to register tools with
    """

    @mcp.tool()
    @track_request("search_events")
    async def search_events(
        _ctx: Context,
        topic: str,
        date_from: str,
        date_to: str,
        *,
        region: str | None = None,
        locale: str | None = None,
        caller_profile: dict[str, Any] | None = None,
        precision_weights: dict[str, float] | None = None,
        budget_seconds: float | None = None,
    ) -> str:
        """
        Find upcoming events (conferences, summits, meetups) with speakers.

        Runs the full pipeline:
        1. Builds localized query variants from the topic template
        2. Searches the provider chain with fallback (Firecrawl, Google CSE, SearXNG, seeds)
        3. Filters aggregators and reranks candidates semantically
        4. Scores candidates with one batched LLM call (heuristic fallback)
        5. Fetches pages and sub-pages, extracts title, date, location, speakers
        6. Accepts events through the quality gate, widening the window once if sparse

        Args:
            ctx: The MCP context for execution
            topic: Topic or template key, e.g. 'fintech' or 'data privacy'
            date_from: Window start, YYYY-MM-DD
            date_to: Window end, YYYY-MM-DD
            region: Country code or name, e.g. 'DE' or 'Germany'
            locale: Query language (en, de, fr, ...); defaults to the region's
            caller_profile: industry_terms, icp_terms, preferred_cities, excluded_hosts
            precision_weights: 0-10 strictness per axis (industry_specificity,
                cross_topic_suppression, geographic_strictness,
                quality_strictness, event_type_specificity)
            budget_seconds: Wall-clock budget override

        Returns:
            JSON with events, metadata (counters, window, flags, providers) and stage logs.
        """
        try:
            return await search_events_impl(
                topic,
                date_from,
                date_to,
                region=region,
                locale=locale,
                caller_profile=caller_profile,
                precision_weights=precision_weights,
                budget_seconds=budget_seconds,
            )
        except MCPToolError:
            raise
        except Exception as e:
            logger.exception("Unexpected error in search_events tool")
            msg = f"Event search failed: {e!s}"
            raise MCPToolError(msg) from e

    @mcp.tool()
    @track_request("pipeline_status")
    async def pipeline_status(_ctx: Context) -> str:
        """
        Report provider health: circuit states, token buckets, call counters
        and cache statistics.

        Returns:
            JSON health report.
        """
        return await pipeline_status_impl()

    @mcp.tool()
    @track_request("reload_config")
    async def reload_config(_ctx: Context) -> str:
        """
        Reload topic templates and thresholds from TEMPLATES_PATH.

        Requests already running keep the snapshot they started with.

        Returns:
            JSON with the new configuration version.
        """
        try:
            return await reload_config_impl()
        except ConfigurationError as e:
            msg = f"Config reload failed: {e!s}"
            raise MCPToolError(msg) from e
