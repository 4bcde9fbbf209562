"""Configuration settings for the EventScout MCP server using Pydantic Settings.

This module provides type-safe configuration management with automatic validation
and environment variable loading. Topic templates and quality thresholds live in
the ConfigStore (see store.py); this module only covers process-level settings.
"""

import logging
from typing import Any

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

KNOWN_PROVIDERS = ("firecrawl", "google_cse", "searxng", "seed")


class Settings(BaseSettings):
    """Central configuration management with Pydantic validation.

    All settings are loaded from environment variables with automatic type conversion
    and validation. Default values are provided for non-critical settings.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",  # Ignore extra env vars
        validate_default=True,
    )

    # ========================================
    # Debug Settings
    # ========================================
    debug: bool = Field(
        default=False,
        alias="EVENTSCOUT_DEBUG",
        description="Enable debug mode with verbose logging",
    )

    # ========================================
    # API Keys
    # ========================================
    openai_api_key: str | None = Field(
        default=None,
        description="OpenAI API key for prioritization and extraction",
    )

    firecrawl_api_key: str | None = Field(
        default=None,
        description="Firecrawl API key for the primary search provider",
    )

    google_cse_key: str | None = Field(
        default=None,
        description="Google Custom Search API key",
    )

    google_cse_cx: str | None = Field(
        default=None,
        description="Google Custom Search engine id",
    )

    voyage_api_key: str | None = Field(
        default=None,
        description="Voyage AI API key for semantic reranking",
    )

    # ========================================
    # Server Settings
    # ========================================
    host: str = Field(
        default="0.0.0.0",
        description="Server host address",
    )

    port: int = Field(
        default=8052,
        ge=1024,
        le=65535,
        description="Server port number",
    )

    transport: str = Field(
        default="http",
        description="Transport mode (http, sse or stdio)",
    )

    # ========================================
    # Search Provider Settings
    # ========================================
    searxng_url: str | None = Field(
        default=None,
        description="SearXNG instance URL used as a fallback provider",
    )

    searxng_user_agent: str = Field(
        default="EventScout-MCP-Server/1.0",
        description="User agent for provider and fetch requests",
    )

    provider_chain: str = Field(
        default="firecrawl,google_cse,searxng,seed",
        description="Comma-separated provider order for discovery",
    )

    provider_failure_threshold: int = Field(
        default=3,
        ge=1,
        le=50,
        description="Consecutive failures before a provider circuit opens",
    )

    provider_cooldown_seconds: float = Field(
        default=60.0,
        ge=1.0,
        le=3600.0,
        description="Seconds an open circuit waits before a half-open probe",
    )

    provider_rate_per_second: float = Field(
        default=5.0,
        gt=0.0,
        le=100.0,
        description="Token bucket refill rate per provider",
    )

    provider_burst: int = Field(
        default=10,
        ge=1,
        le=200,
        description="Token bucket capacity per provider",
    )

    # ========================================
    # Cache Settings
    # ========================================
    redis_url: str | None = Field(
        default=None,
        description="Redis URL for the shared cache tier",
    )

    supabase_url: str | None = Field(
        default=None,
        description="Supabase project URL for the durable cache tier and seed lists",
    )

    supabase_service_key: str | None = Field(
        default=None,
        description="Supabase service key",
    )

    cache_table: str = Field(
        default="event_search_cache",
        description="Supabase table backing the durable cache tier",
    )

    seed_table: str = Field(
        default="event_seed_urls",
        description="Supabase table holding curated seed URLs per topic",
    )

    memory_cache_size: int = Field(
        default=2000,
        ge=10,
        le=100000,
        description="Maximum entries held in the in-process cache tier",
    )

    query_cache_ttl: int = Field(
        default=12 * 3600,
        ge=60,
        description="TTL in seconds for provider query results",
    )

    extraction_cache_ttl: int = Field(
        default=24 * 3600,
        ge=60,
        description="TTL in seconds for extracted event records",
    )

    score_cache_ttl: int = Field(
        default=7 * 24 * 3600,
        ge=60,
        description="TTL in seconds for rerank and prioritization scores",
    )

    # ========================================
    # LLM Settings
    # ========================================
    model_choice: str = Field(
        default="gpt-4o-mini",
        description="LLM model for prioritization and extraction",
    )

    llm_temperature: float = Field(
        default=0.1,
        ge=0.0,
        le=2.0,
        description="LLM temperature for structured extraction",
    )

    llm_reasoning_overhead_tokens: int = Field(
        default=1024,
        ge=0,
        le=32000,
        description="Extra output tokens reserved for model reasoning",
    )

    rerank_model: str = Field(
        default="rerank-2",
        description="Voyage AI rerank model",
    )

    # ========================================
    # Timeouts (seconds)
    # ========================================
    provider_timeout: float = Field(
        default=6.0,
        gt=0.0,
        le=60.0,
        description="Timeout for a single search provider call",
    )

    llm_timeout: float = Field(
        default=15.0,
        ge=12.0,
        le=120.0,
        description="Timeout for a single LLM call (never below 12s)",
    )

    fetch_timeout: float = Field(
        default=10.0,
        gt=0.0,
        le=120.0,
        description="Timeout for fetching an event main page",
    )

    subpage_timeout: float = Field(
        default=8.0,
        gt=0.0,
        le=120.0,
        description="Timeout for fetching an event sub-page",
    )

    pipeline_budget_seconds: float = Field(
        default=90.0,
        ge=5.0,
        le=900.0,
        description="Wall-clock budget for one search request",
    )

    # ========================================
    # Concurrency Settings
    # ========================================
    discovery_concurrency: int = Field(
        default=12,
        ge=1,
        le=64,
        description="Initial discovery concurrency",
    )

    discovery_min_concurrency: int = Field(
        default=2,
        ge=1,
        le=64,
        description="Lower bound for adaptive discovery concurrency",
    )

    discovery_max_concurrency: int = Field(
        default=16,
        ge=1,
        le=128,
        description="Upper bound for adaptive discovery concurrency",
    )

    extraction_concurrency: int = Field(
        default=4,
        ge=1,
        le=32,
        description="Concurrent extraction workers",
    )

    memory_pressure_percent: float = Field(
        default=80.0,
        ge=10.0,
        le=99.0,
        description="Memory usage that makes discovery shrink its concurrency",
    )

    use_crawl4ai_fetcher: bool = Field(
        default=True,
        description="Fetch event pages with a headless browser instead of plain HTTP",
    )

    # ========================================
    # Template Settings
    # ========================================
    templates_path: str | None = Field(
        default=None,
        description="Optional JSON file with topic templates and thresholds",
    )

    # ========================================
    # Validators
    # ========================================
    @field_validator("provider_chain")
    @classmethod
    def validate_provider_chain(cls, v: str) -> str:
        """Ensure every provider in the chain is known."""
        names = [p.strip().lower() for p in v.split(",") if p.strip()]
        unknown = [p for p in names if p not in KNOWN_PROVIDERS]
        if unknown:
            msg = f"Unknown providers in chain: {', '.join(unknown)}"
            raise ValueError(msg)
        if not names:
            msg = "Provider chain cannot be empty"
            raise ValueError(msg)
        return ",".join(names)

    @field_validator("discovery_max_concurrency")
    @classmethod
    def validate_max_concurrency(cls, v: int, info: Any) -> int:
        """Keep the concurrency bounds ordered."""
        low = info.data.get("discovery_min_concurrency", 1)
        if v < low:
            msg = "discovery_max_concurrency must be >= discovery_min_concurrency"
            raise ValueError(msg)
        return v

    # ========================================
    # Helper Methods
    # ========================================
    def get_provider_chain(self) -> list[str]:
        """Get the provider chain as a list."""
        return [p for p in self.provider_chain.split(",") if p]

    def has_supabase_config(self) -> bool:
        """Check if Supabase environment variables are configured."""
        return bool(self.supabase_url and self.supabase_service_key)

    def has_google_cse_config(self) -> bool:
        """Check if both Google CSE credentials are configured."""
        return bool(self.google_cse_key and self.google_cse_cx)


# Singleton pattern with proper typing
_settings_instance: Settings | None = None


def get_settings() -> Settings:
    """Get cached settings instance (singleton pattern)."""
    global _settings_instance
    if _settings_instance is None:
        _settings_instance = Settings()
        logger.info("Settings initialized from environment")
        logger.debug("Provider chain: %s", _settings_instance.provider_chain)
        if not _settings_instance.openai_api_key:
            logger.warning(
                "OPENAI_API_KEY is missing. Extraction will use the regex fallback.",
            )
    return _settings_instance


def reset_settings() -> None:
    """Reset settings instance (useful for testing)."""
    global _settings_instance
    _settings_instance = None
