"""Configuration for the EventScout MCP server."""

from .settings import Settings, get_settings, reset_settings
from .store import (
    ConfigSnapshot,
    ConfigStore,
    NegativeTerm,
    PrecisionWeights,
    ProviderToggles,
    QualityWeights,
    Thresholds,
    TopicTemplate,
)

__all__ = [
    "ConfigSnapshot",
    "ConfigStore",
    "NegativeTerm",
    "PrecisionWeights",
    "ProviderToggles",
    "QualityWeights",
    "Settings",
    "Thresholds",
    "TopicTemplate",
    "get_settings",
    "reset_settings",
]
