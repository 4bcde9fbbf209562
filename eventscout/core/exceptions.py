"""Custom exceptions for the EventScout MCP server."""

from enum import Enum


class MCPToolError(Exception):
    """Custom exception for MCP tool errors that should be returned as JSON-RPC errors."""

    def __init__(self, message: str, code: int = -32000):
        self.message = message
        self.code = code
        super().__init__(message)


# ========================================
# Base Exceptions
# ========================================


class EventScoutError(Exception):
    """Base exception for all EventScout errors."""


# ========================================
# Provider Exceptions
# ========================================


class ProviderErrorKind(str, Enum):
    """Classification of a failed provider call."""

    TIMEOUT = "timeout"
    RATE_LIMITED = "rate_limited"
    HTTP_ERROR = "http_error"
    MALFORMED_RESPONSE = "malformed_response"


class ProviderError(EventScoutError):
    """A search or rerank provider call failed."""

    def __init__(
        self,
        provider: str,
        kind: ProviderErrorKind,
        message: str = "",
        retry_after: float | None = None,
    ):
        self.provider = provider
        self.kind = kind
        self.retry_after = retry_after
        super().__init__(message or f"{provider} failed: {kind.value}")


class ProviderTimeout(ProviderError):
    """Provider did not answer within its timeout."""

    def __init__(self, provider: str, message: str = ""):
        super().__init__(provider, ProviderErrorKind.TIMEOUT, message)


class QuotaExceeded(ProviderError):
    """Provider rejected the call because of rate limits or quota."""

    def __init__(self, provider: str, message: str = "", retry_after: float | None = None):
        super().__init__(provider, ProviderErrorKind.RATE_LIMITED, message, retry_after)


class CircuitOpenError(EventScoutError):
    """Provider guard refused the call (open circuit or empty bucket)."""

    def __init__(self, provider: str, reason: str = "circuit open"):
        self.provider = provider
        self.reason = reason
        super().__init__(f"{provider} unavailable: {reason}")


# ========================================
# Network Exceptions
# ========================================


class FetchError(EventScoutError):
    """HTTP fetch of an event page failed."""

    def __init__(self, url: str, message: str = ""):
        self.url = url
        super().__init__(message or f"Failed to fetch {url}")


# ========================================
# LLM Exceptions
# ========================================


class LLMError(EventScoutError):
    """LLM API call failed."""


class LLMTimeout(LLMError):
    """LLM call exceeded its timeout."""


class LLMTruncated(LLMError):
    """LLM output was cut off by the output token limit."""


class LLMMalformedOutput(LLMError):
    """LLM output did not validate against the requested schema."""


# ========================================
# Pipeline Exceptions
# ========================================


class QualityBelowThreshold(EventScoutError):
    """Extracted event did not pass the quality gate."""

    def __init__(self, url: str, quality: float, reason: str):
        self.url = url
        self.quality = quality
        self.reason = reason
        super().__init__(f"{url} rejected ({reason}, quality={quality:.2f})")


class CacheUnavailable(EventScoutError):
    """A cache tier could not be reached."""

    def __init__(self, tier: str, message: str = ""):
        self.tier = tier
        super().__init__(message or f"Cache tier '{tier}' unavailable")


# ========================================
# Validation Exceptions
# ========================================


class ConfigurationError(EventScoutError):
    """Configuration validation failed."""


class TemplateNotFoundError(ConfigurationError):
    """No topic template matches the requested topic."""
