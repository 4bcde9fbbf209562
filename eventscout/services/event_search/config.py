"""Configuration and model initialization for event search.

This module handles:
- OpenAI model setup for pydantic-ai agents
- Model settings (temperature, timeout)
- Service configuration parameters copied from Settings
"""

import logging

from pydantic_ai.models.openai import OpenAIModel
from pydantic_ai.settings import ModelSettings

from eventscout.config import get_settings

logger = logging.getLogger(__name__)
settings = get_settings()


class EventSearchConfig:
    """Configuration container for event search models and parameters."""

    def __init__(self) -> None:
        """Initialize the OpenAI model and configuration parameters."""
        # API key is read from OPENAI_API_KEY by the OpenAI provider
        self.openai_model = OpenAIModel(
            model_name=settings.model_choice,
        )

        self.base_model_settings = ModelSettings(
            temperature=settings.llm_temperature,
            timeout=settings.llm_timeout,
        )

        # LLM
        self.model_name = settings.model_choice
        self.temperature = settings.llm_temperature
        self.llm_enabled = bool(settings.openai_api_key)
        self.llm_timeout = settings.llm_timeout
        self.reasoning_overhead_tokens = settings.llm_reasoning_overhead_tokens

        # Providers
        self.provider_chain = settings.get_provider_chain()
        self.provider_timeout = settings.provider_timeout

        # Fetching
        self.fetch_timeout = settings.fetch_timeout
        self.subpage_timeout = settings.subpage_timeout

        # Concurrency
        self.discovery_concurrency = settings.discovery_concurrency
        self.discovery_min_concurrency = settings.discovery_min_concurrency
        self.discovery_max_concurrency = settings.discovery_max_concurrency
        self.extraction_concurrency = settings.extraction_concurrency
        self.memory_pressure_percent = settings.memory_pressure_percent

        # Caching
        self.query_cache_ttl = settings.query_cache_ttl
        self.extraction_cache_ttl = settings.extraction_cache_ttl
        self.score_cache_ttl = settings.score_cache_ttl

        # Budget
        self.pipeline_budget_seconds = settings.pipeline_budget_seconds

        logger.info(
            "Initialized event search configuration with model=%s, providers=%s, budget=%.0fs",
            self.model_name,
            ",".join(self.provider_chain),
            self.pipeline_budget_seconds,
        )
