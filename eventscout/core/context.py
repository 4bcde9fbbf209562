"""Application context and lifecycle management for the EventScout MCP server."""

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Optional

import httpx
from crawl4ai import BrowserConfig
from fastmcp import FastMCP
from supabase import Client, create_client

from eventscout.config import ConfigStore, get_settings
from eventscout.core.exceptions import CacheUnavailable, ConfigurationError
from eventscout.utils.integration_helpers import (
    CacheManager,
    GuardRegistry,
    ProviderStats,
    build_cache_manager,
)

from .logging import logger

# Get settings instance
settings = get_settings()

# Global context storage
_app_context: Optional["EventScoutContext"] = None
_context_lock = None  # Will be initialized in async context


@dataclass
class EventScoutContext:
    """Process-wide state shared by every search request."""

    config_store: ConfigStore
    cache: CacheManager
    guards: GuardRegistry
    provider_stats: ProviderStats
    http_client: httpx.AsyncClient
    # Shared config for creating crawlers per-request
    browser_config: BrowserConfig
    # Seed table client when Supabase is configured
    supabase_client: Client | None = None


def set_app_context(context: "EventScoutContext | None") -> None:
    """Store the application context globally."""
    global _app_context
    _app_context = context


def get_app_context() -> Optional["EventScoutContext"]:
    """Get the stored application context."""
    return _app_context


def build_browser_config() -> BrowserConfig:
    """Browser configuration for per-request crawler instances."""
    return BrowserConfig(
        headless=True,
        verbose=False,
        # Resource optimization flags to prevent memory leaks
        extra_args=[
            "--disable-extensions",
            "--disable-sync",
            "--disable-background-timer-throttling",
            "--disable-backgrounding-occluded-windows",
            "--disable-renderer-backgrounding",
        ],
    )


async def initialize_global_context() -> EventScoutContext:
    """Initialize the global application context once.

    This should be called at application startup, not per-request.

    Returns:
        EventScoutContext: The initialized context

    Raises:
        ConfigurationError: If the template file is invalid
    """
    global _app_context, _context_lock

    # Initialize lock if needed
    if _context_lock is None:
        _context_lock = asyncio.Lock()

    async with _context_lock:
        # Return existing context if already initialized
        if _app_context is not None:
            logger.info("Using existing application context (singleton)")
            return _app_context

        logger.info("Initializing global application context (first time)...")

        config_store = ConfigStore(settings.templates_path)
        snapshot = config_store.snapshot()
        logger.info(
            "✓ Configuration loaded (%d templates, version %d)",
            len(snapshot.templates),
            snapshot.version,
        )

        browser_config = build_browser_config()
        logger.info(
            "✓ BrowserConfig created for per-request crawler instances (headless=%s, browser_type=%s)",
            browser_config.headless,
            browser_config.browser_type,
        )

        cache = build_cache_manager(settings)

        guards = GuardRegistry(
            failure_threshold=settings.provider_failure_threshold,
            cooldown=settings.provider_cooldown_seconds,
            rate=settings.provider_rate_per_second,
            capacity=settings.provider_burst,
        )

        http_client = httpx.AsyncClient(
            timeout=httpx.Timeout(settings.provider_timeout),
            follow_redirects=True,
        )

        supabase_client = None
        if settings.has_supabase_config():
            try:
                supabase_client = create_client(settings.supabase_url, settings.supabase_service_key)
                logger.info("✓ Supabase client initialized (seed table=%s)", settings.seed_table)
            except Exception as e:
                logger.error("Failed to create Supabase client, seed table disabled: %s", e)
                supabase_client = None

        context = EventScoutContext(
            config_store=config_store,
            cache=cache,
            guards=guards,
            provider_stats=ProviderStats(),
            http_client=http_client,
            browser_config=browser_config,
            supabase_client=supabase_client,
        )

        _app_context = context
        logger.info("✓ Global application context initialized successfully")
        return context


async def cleanup_global_context() -> None:
    """Clean up the global application context.

    This should be called at application shutdown.
    """
    global _app_context

    if _app_context is None:
        logger.info("No global context to clean up")
        return

    logger.info("Starting cleanup of global application context...")

    # No crawler to close - crawlers are created per-request with context managers

    try:
        await _app_context.http_client.aclose()
        logger.info("✓ HTTP client closed")
    except httpx.HTTPError as e:
        logger.error("HTTP error closing client: %s", e, exc_info=True)

    try:
        await _app_context.cache.close()
        logger.info("✓ Cache tiers closed")
    except CacheUnavailable as e:
        logger.error("Cache error during shutdown: %s", e, exc_info=True)

    _app_context = None
    logger.info("✓ Global application context cleanup completed")


def require_app_context() -> EventScoutContext:
    """Get the context or fail when the server was not started properly.

    Raises:
        ConfigurationError: If the context has not been initialized
    """
    if _app_context is None:
        msg = "Application context is not initialized"
        raise ConfigurationError(msg)
    return _app_context


@asynccontextmanager
async def eventscout_lifespan(_server: FastMCP) -> AsyncIterator[EventScoutContext]:
    """
    Lifespan context manager for FastMCP.

    NOTE: FastMCP HTTP mode calls this on EVERY request, not once at startup.
    Therefore, we use a singleton pattern to ensure only one context exists.

    Args:
        _server: The FastMCP server instance (required by FastMCP interface)

    Yields:
        EventScoutContext: The singleton context
    """
    context = await initialize_global_context()

    try:
        yield context
    finally:
        # Cleanup happens at application shutdown via cleanup_global_context()
        pass
