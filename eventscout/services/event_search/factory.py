"""Factory for the event search service singleton.

This module wires stage components to the process-wide context, separated to
avoid circular imports with mcp_wrapper.
"""

import logging

from eventscout.config import get_settings
from eventscout.core.context import EventScoutContext, require_app_context

from .config import EventSearchConfig
from .discovery import DiscoveryEngine
from .extractor import ExtractionEngine
from .fetcher import ContentFetcher, Crawl4AIFetcher, HttpxFetcher
from .llm import PydanticAILLMClient
from .orchestrator import EventSearchService
from .prioritizer import PrioritizationEngine
from .providers import build_providers
from .rerank import RerankGate, VoyageReranker

logger = logging.getLogger(__name__)
settings = get_settings()

# Singleton instance
_service_instance: EventSearchService | None = None


def build_event_search_service(context: EventScoutContext) -> EventSearchService:
    """Create an EventSearchService on top of an application context.

    Args:
        context: Initialized application context

    Returns:
        Service with every stage component wired to the shared cache and guards
    """
    config = EventSearchConfig()
    llm = PydanticAILLMClient(config) if config.llm_enabled else None

    reranker = None
    if settings.voyage_api_key:
        reranker = VoyageReranker(settings.voyage_api_key, settings.rerank_model)
    else:
        logger.info("VOYAGE_API_KEY not set, rerank uses raw provider scores")

    fetcher: ContentFetcher
    if settings.use_crawl4ai_fetcher:
        fetcher = Crawl4AIFetcher(context.browser_config)
    else:
        fetcher = HttpxFetcher(context.http_client, settings.searxng_user_agent)

    providers = build_providers(
        settings,
        context.http_client,
        supabase_client=context.supabase_client,
    )

    return EventSearchService(
        config=config,
        config_store=context.config_store,
        discovery=DiscoveryEngine(
            config,
            providers,
            context.guards,
            context.provider_stats,
            context.cache,
        ),
        reranker=RerankGate(
            reranker,
            context.guards,
            context.provider_stats,
            context.cache,
            timeout=config.provider_timeout,
            score_cache_ttl=config.score_cache_ttl,
        ),
        prioritizer=PrioritizationEngine(config, llm, context.cache),
        extractor=ExtractionEngine(config, fetcher, llm, context.cache),
        stats=context.provider_stats,
    )


def get_event_search_service() -> EventSearchService:
    """Get singleton instance of EventSearchService.

    Returns:
        Singleton EventSearchService with cached agents and providers.

    Raises:
        ConfigurationError: If the application context is not initialized
    """
    global _service_instance
    if _service_instance is None:
        _service_instance = build_event_search_service(require_app_context())
    return _service_instance


def reset_event_search_service() -> None:
    """Drop the singleton (used at shutdown and in tests)."""
    global _service_instance
    _service_instance = None
