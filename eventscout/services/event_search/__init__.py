"""Event search service - modular implementation.

This package implements the event discovery and extraction pipeline:
- config: Model initialization and configuration parameters
- query_builder: Query variants from topic templates and precision weights
- providers / discovery: Provider chain with fallback, cache and guards
- rerank: Aggregator filter and Voyage AI semantic rerank
- prioritizer: Batched LLM scoring with heuristic fallback
- fetcher / chunking / speakers / extractor: Page fetching and structured extraction
- quality / expansion: Quality gate and single window expansion
- assembler / orchestrator: Result assembly and pipeline orchestration
"""

from .config import EventSearchConfig
from .discovery import DiscoveryEngine
from .extractor import ExtractionEngine
from .factory import get_event_search_service
from .mcp_wrapper import pipeline_status_impl, reload_config_impl, search_events_impl
from .orchestrator import EventSearchService
from .prioritizer import PrioritizationEngine
from .quality import QualityGate
from .query_builder import QueryBuilder
from .rerank import RerankGate

__all__ = [
    "DiscoveryEngine",
    "EventSearchConfig",
    "EventSearchService",
    "ExtractionEngine",
    "PrioritizationEngine",
    "QualityGate",
    "QueryBuilder",
    "RerankGate",
    "get_event_search_service",
    "pipeline_status_impl",
    "reload_config_impl",
    "search_events_impl",
]
