"""Versioned topic templates, precision weights and quality thresholds.

The ConfigStore hands every request an immutable ConfigSnapshot. Reloading
swaps the snapshot atomically, so a request that already took a snapshot keeps
seeing the values it started with.
"""

import json
import logging
import math
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from eventscout.core.exceptions import ConfigurationError, TemplateNotFoundError

from .templates import (
    AGGREGATOR_DOMAINS,
    BUILTIN_TEMPLATES,
    GENERIC_TEMPLATE_KEY,
    TEMPLATE_SCHEMA_VERSION,
)

logger = logging.getLogger(__name__)


class NegativeTerm(BaseModel):
    """A term to exclude from queries, weighted by how noisy it is."""

    model_config = ConfigDict(frozen=True)

    term: str = Field(min_length=1)
    weight: float = Field(default=5.0, ge=0.0, le=10.0)


class TopicTemplate(BaseModel):
    """Search vocabulary for one topic."""

    model_config = ConfigDict(frozen=True)

    key: str = Field(min_length=1)
    name: str = Field(min_length=1)
    version: int = Field(default=TEMPLATE_SCHEMA_VERSION, ge=1)
    base_terms: list[str] = Field(min_length=1)
    industry_terms: list[str] = Field(default_factory=list)
    icp_terms: list[str] = Field(default_factory=list)
    negative_terms: list[NegativeTerm] = Field(default_factory=list)
    localized_terms: dict[str, list[str]] = Field(default_factory=dict)

    @field_validator("version")
    @classmethod
    def validate_version(cls, v: int) -> int:
        """Reject templates written for a newer schema."""
        if v > TEMPLATE_SCHEMA_VERSION:
            msg = f"Template version {v} is newer than supported {TEMPLATE_SCHEMA_VERSION}"
            raise ValueError(msg)
        return v

    @field_validator("base_terms", "industry_terms", "icp_terms")
    @classmethod
    def strip_terms(cls, v: list[str]) -> list[str]:
        """Drop blank terms and surrounding whitespace."""
        return [t.strip() for t in v if t and t.strip()]

    @field_validator("base_terms")
    @classmethod
    def validate_base_terms(cls, v: list[str]) -> list[str]:
        """Require at least one non-blank base term once blanks are dropped."""
        if not v:
            raise ValueError("base_terms must contain at least one non-blank term")
        return v


class PrecisionWeights(BaseModel):
    """Per-axis strictness on a 0-10 scale. Higher narrows that axis."""

    model_config = ConfigDict(frozen=True)

    industry_specificity: float = Field(default=5.0, ge=0.0, le=10.0)
    cross_topic_suppression: float = Field(default=5.0, ge=0.0, le=10.0)
    geographic_strictness: float = Field(default=5.0, ge=0.0, le=10.0)
    quality_strictness: float = Field(default=5.0, ge=0.0, le=10.0)
    event_type_specificity: float = Field(default=5.0, ge=0.0, le=10.0)

    @field_validator("*")
    @classmethod
    def validate_finite(cls, v: float) -> float:
        """Validate weight is finite (not NaN or infinity)."""
        if math.isnan(v) or math.isinf(v):
            msg = "Precision weight must be a finite number"
            raise ValueError(msg)
        return v


class QualityWeights(BaseModel):
    """Contribution of each quality signal. The score is capped at 1."""

    model_config = ConfigDict(frozen=True)

    date_in_range: float = Field(default=0.30, ge=0.0, le=1.0)
    country_match: float = Field(default=0.20, ge=0.0, le=1.0)
    venue_or_city: float = Field(default=0.15, ge=0.0, le=1.0)
    speaker_subpage: float = Field(default=0.15, ge=0.0, le=1.0)
    speaker_count: float = Field(default=0.20, ge=0.0, le=1.0)


class Thresholds(BaseModel):
    """Numeric cutoffs used across the pipeline."""

    model_config = ConfigDict(frozen=True)

    # Quality gate
    min_solid_hits: int = Field(default=3, ge=1, le=50)
    high_quality_threshold: float = Field(default=0.40, ge=0.0, le=1.0)
    low_quality_threshold: float = Field(default=0.30, ge=0.0, le=1.0)
    min_speakers: int = Field(default=2, ge=0, le=20)
    quality_weights: QualityWeights = Field(default_factory=QualityWeights)
    min_date_tolerance_days: int = Field(default=30, ge=0)
    max_date_tolerance_days: int = Field(default=60, ge=0)

    # Early termination
    early_stop_accepted: int = Field(default=8, ge=1)
    early_stop_quality: float = Field(default=0.8, ge=0.0, le=1.0)

    # Window expansion
    expand_step_days: int = Field(default=7, ge=1, le=90)
    max_window_span_days: int = Field(default=60, ge=1, le=730)

    # Discovery and rerank
    max_query_variants: int = Field(default=20, ge=1, le=50)
    max_candidates: int = Field(default=50, ge=1, le=500)
    rerank_top_k: int = Field(default=12, ge=1, le=100)
    rerank_min_candidates: int = Field(default=6, ge=0, le=100)
    rerank_max_input: int = Field(default=40, ge=1, le=1000)
    tld_bonus: float = Field(default=0.08, ge=0.0, le=1.0)
    speaker_path_bonus: float = Field(default=0.05, ge=0.0, le=1.0)

    # Extraction
    extraction_top_k: int = Field(default=10, ge=1, le=100)
    max_subpages: int = Field(default=2, ge=0, le=10)
    max_chunks_per_call: int = Field(default=6, ge=1, le=50)
    chunk_size: int = Field(default=4000, ge=200)
    chunk_overlap: int = Field(default=200, ge=0)
    core_field_confidence: float = Field(default=0.7, ge=0.0, le=1.0)

    @field_validator("low_quality_threshold")
    @classmethod
    def validate_low_threshold(cls, v: float, info: Any) -> float:
        """Low threshold must not exceed the high threshold."""
        high = info.data.get("high_quality_threshold", 1.0)
        if v > high:
            msg = "low_quality_threshold must be <= high_quality_threshold"
            raise ValueError(msg)
        return v


class ProviderToggles(BaseModel):
    """Enable or disable individual search providers."""

    model_config = ConfigDict(frozen=True)

    firecrawl: bool = True
    google_cse: bool = True
    searxng: bool = True
    seed: bool = True

    def is_enabled(self, provider: str) -> bool:
        """Check whether a provider id is switched on."""
        return bool(getattr(self, provider, False))


class ConfigSnapshot(BaseModel):
    """Immutable configuration view handed to one pipeline run."""

    model_config = ConfigDict(frozen=True)

    version: int = 1
    templates: dict[str, TopicTemplate]
    thresholds: Thresholds = Field(default_factory=Thresholds)
    default_weights: PrecisionWeights = Field(default_factory=PrecisionWeights)
    providers: ProviderToggles = Field(default_factory=ProviderToggles)
    aggregator_domains: list[str] = Field(default_factory=lambda: list(AGGREGATOR_DOMAINS))
    seed_urls: dict[str, list[str]] = Field(default_factory=dict)

    def template_for(self, topic: str) -> TopicTemplate:
        """Look up the template for a topic.

        Args:
            topic: Topic key or display name (case-insensitive)

        Returns:
            Matching topic template

        Raises:
            TemplateNotFoundError: If no template matches the topic
        """
        needle = topic.strip().lower()
        if needle in self.templates:
            return self.templates[needle]
        for template in self.templates.values():
            if template.name.lower() == needle:
                return template
        msg = f"No template configured for topic '{topic}'"
        raise TemplateNotFoundError(msg)

    def generic_template(self) -> TopicTemplate:
        """Get the generic fallback template."""
        return self.templates[GENERIC_TEMPLATE_KEY]


def _builtin_templates() -> dict[str, TopicTemplate]:
    return {
        key: TopicTemplate(key=key, **data) for key, data in BUILTIN_TEMPLATES.items()
    }


class ConfigStore:
    """Loads, validates and serves configuration snapshots."""

    def __init__(self, path: str | Path | None = None) -> None:
        """Initialize the store and load the first snapshot.

        Args:
            path: Optional JSON file with overrides for templates and thresholds
        """
        self.path = Path(path) if path else None
        self._snapshot = self._load()

    def snapshot(self) -> ConfigSnapshot:
        """Get the current immutable snapshot."""
        return self._snapshot

    def reload(self) -> ConfigSnapshot:
        """Re-read the config file and swap the snapshot.

        A failed reload keeps the previous snapshot in service.

        Returns:
            The snapshot now in service

        Raises:
            ConfigurationError: If the file is invalid
        """
        new_snapshot = self._load()
        previous = self._snapshot.version
        self._snapshot = new_snapshot.model_copy(update={"version": previous + 1})
        logger.info("Configuration reloaded (version %d)", self._snapshot.version)
        return self._snapshot

    def _load(self) -> ConfigSnapshot:
        templates = _builtin_templates()
        overrides: dict[str, Any] = {}

        if self.path is not None:
            try:
                raw = json.loads(self.path.read_text(encoding="utf-8"))
            except FileNotFoundError as e:
                msg = f"Config file not found: {self.path}"
                raise ConfigurationError(msg) from e
            except json.JSONDecodeError as e:
                msg = f"Config file {self.path} is not valid JSON: {e}"
                raise ConfigurationError(msg) from e
            overrides = dict(raw)

        try:
            for key, data in overrides.pop("templates", {}).items():
                templates[key.lower()] = TopicTemplate(key=key.lower(), **data)
            snapshot = ConfigSnapshot(templates=templates, **overrides)
        except ValidationError as e:
            msg = f"Invalid configuration: {e}"
            raise ConfigurationError(msg) from e
        except TypeError as e:
            msg = f"Invalid configuration structure: {e}"
            raise ConfigurationError(msg) from e

        if GENERIC_TEMPLATE_KEY not in snapshot.templates:
            msg = f"Configuration must keep the '{GENERIC_TEMPLATE_KEY}' template"
            raise ConfigurationError(msg)

        logger.debug(
            "Loaded %d topic templates from %s",
            len(snapshot.templates),
            self.path or "built-in defaults",
        )
        return snapshot
