"""
Main entry point for the EventScout MCP server.
"""

import asyncio
import sys
import traceback

from fastmcp import FastMCP

from eventscout.config import get_settings
from eventscout.core import logger
from eventscout.core.context import (
    cleanup_global_context,
    eventscout_lifespan,
    initialize_global_context,
)
from eventscout.services.event_search.factory import reset_event_search_service
from eventscout.tools import register_tools

# Get settings instance
settings = get_settings()

# Initialize FastMCP server
try:
    logger.info("Initializing FastMCP server...")
    host = settings.host
    port = settings.port
    logger.info("Host: %s, Port: %s", host, port)

    mcp = FastMCP("EventScout MCP Server", lifespan=eventscout_lifespan)
    logger.info("FastMCP server initialized successfully")

except Exception as e:
    logger.error("Failed to initialize FastMCP server: %s", e)
    logger.error("Traceback: %s", traceback.format_exc())
    sys.exit(1)


# Register all MCP tools
register_tools(mcp)


async def main() -> None:
    """
    Main async function to run the MCP server.
    """
    try:
        logger.info("Main function started")

        # Initialize global context ONCE at startup (not per-request)
        logger.info("Initializing global application context...")
        await initialize_global_context()
        logger.info("✓ Global context initialized")

        transport = settings.transport.lower()
        logger.info("Transport mode: %s", transport)

        # Flush output before starting server
        sys.stdout.flush()
        sys.stderr.flush()

        # Normalize transport names to FastMCP Transport literals
        transport_map = {
            "http": "streamable-http",
            "streamable-http": "streamable-http",
            "sse": "sse",
            "stdio": "stdio",
        }
        fastmcp_transport = transport_map.get(transport, "stdio")

        if fastmcp_transport in ("streamable-http", "sse"):
            logger.info("Setting up %s server on %s:%s...", fastmcp_transport, host, port)
            await mcp.run_async(
                transport=fastmcp_transport,  # type: ignore[arg-type]
                host=host,
                port=int(port),
            )
        else:
            logger.info("Setting up stdio server...")
            await mcp.run_async(transport="stdio")

    except Exception as e:
        logger.error("Error in main function: %s", e)
        logger.error("Traceback: %s", traceback.format_exc())
        raise
    finally:
        logger.info("Shutting down - cleaning up global context...")
        reset_event_search_service()
        await cleanup_global_context()


def run() -> None:
    """Console script entry point."""
    try:
        logger.info("Starting main function...")
        asyncio.run(main())
    except Exception as e:
        logger.error("Error in main: %s", e)
        logger.error("Traceback: %s", traceback.format_exc())


if __name__ == "__main__":
    run()
