"""Pydantic models for the event search pipeline.

This module contains all type-safe data structures that flow between pipeline
stages, the structured-output schemas requested from the LLM, and the result
returned to callers.
"""

import math
from datetime import UTC, date, datetime, timedelta
from enum import Enum
from typing import Any

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)

from eventscout.config.store import PrecisionWeights
from eventscout.core.constants import MAX_TOPIC_LENGTH


def _check_finite(v: float) -> float:
    if math.isnan(v):
        msg = "Score cannot be NaN (Not a Number)"
        raise ValueError(msg)
    if math.isinf(v):
        msg = "Score cannot be infinity"
        raise ValueError(msg)
    return v


def parse_iso_date(value: str | None) -> date | None:
    """Parse the date part of an ISO string, returning None when invalid."""
    if not value:
        return None
    try:
        return date.fromisoformat(value.strip()[:10])
    except ValueError:
        return None


class SearchStatus(str, Enum):
    """Status of a pipeline run."""

    COMPLETE = "complete"
    PARTIAL = "partial"
    NO_CANDIDATES = "no_candidates"
    ERROR = "error"


class PassType(str, Enum):
    """Which pass of the pipeline produced a record."""

    INITIAL = "initial"
    EXPANDED = "expanded"


class ExtractionMethod(str, Enum):
    """How an event record was produced."""

    LLM = "llm"
    REGEX = "regex"
    CACHE = "cache"


class EventStatus(str, Enum):
    """Lifecycle of an extracted event."""

    DRAFT = "draft"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


class DateWindowStatus(str, Enum):
    """Relation of an event date to the quality window."""

    IN_WINDOW = "in_window"
    WITHIN_TOLERANCE = "within_tolerance"
    OUT_OF_RANGE = "out_of_range"
    NO_DATE = "no_date"


# ========================================
# Request side
# ========================================


class QualityWindow(BaseModel):
    """Date range an event must fall into. Never mutated; expansion builds a new one."""

    model_config = ConfigDict(frozen=True)

    date_from: date
    date_to: date

    @model_validator(mode="after")
    def validate_order(self) -> "QualityWindow":
        """Ensure the window is non-empty."""
        if self.date_from > self.date_to:
            msg = "date_from must be on or before date_to"
            raise ValueError(msg)
        return self

    @property
    def span_days(self) -> int:
        """Number of days between the window bounds."""
        return (self.date_to - self.date_from).days

    def contains(self, day: date) -> bool:
        """Check whether a date falls inside the window (inclusive)."""
        return self.date_from <= day <= self.date_to

    def distance_days(self, day: date) -> int:
        """Days between a date and the nearest window bound (0 when inside)."""
        if day < self.date_from:
            return (self.date_from - day).days
        if day > self.date_to:
            return (day - self.date_to).days
        return 0

    def expanded(self, step_days: int, max_span_days: int) -> "QualityWindow":
        """Build a wider window that pushes date_to out, capped at max_span_days.

        Args:
            step_days: Days to add to the end of the window
            max_span_days: Hard cap on the total window span

        Returns:
            New window; the current one is left untouched
        """
        limit = self.date_from + timedelta(days=max_span_days)
        new_to = min(self.date_to + timedelta(days=step_days), limit)
        new_to = max(new_to, self.date_to)
        return QualityWindow(date_from=self.date_from, date_to=new_to)

    def years(self) -> list[int]:
        """Calendar years touched by the window."""
        return list(range(self.date_from.year, self.date_to.year + 1))


class CallerProfile(BaseModel):
    """Terms and preferences of the caller, placed ahead of template terms."""

    model_config = ConfigDict(frozen=True)

    industry_terms: list[str] = Field(default_factory=list)
    icp_terms: list[str] = Field(default_factory=list)
    preferred_cities: list[str] = Field(default_factory=list)
    excluded_hosts: list[str] = Field(default_factory=list)

    @field_validator("industry_terms", "icp_terms", "preferred_cities", "excluded_hosts")
    @classmethod
    def strip_terms(cls, v: list[str]) -> list[str]:
        """Drop blank entries."""
        return [t.strip() for t in v if t and t.strip()]


class SearchRequest(BaseModel):
    """Structured search request. Immutable once validated."""

    model_config = ConfigDict(frozen=True)

    topic: str = Field(min_length=1, max_length=MAX_TOPIC_LENGTH)
    region: str | None = Field(default=None, description="Country code or name")
    date_from: date
    date_to: date
    locale: str | None = Field(default=None, description="Language code (en, de, fr)")
    caller_profile: CallerProfile = Field(default_factory=CallerProfile)
    precision_weights: PrecisionWeights | None = None

    @field_validator("topic")
    @classmethod
    def validate_topic(cls, v: str) -> str:
        """Ensure topic is not just whitespace."""
        if not v.strip():
            msg = "Topic cannot be empty"
            raise ValueError(msg)
        return v.strip()

    @model_validator(mode="after")
    def validate_dates(self) -> "SearchRequest":
        """Ensure date_from <= date_to."""
        if self.date_from > self.date_to:
            msg = "date_from must be on or before date_to"
            raise ValueError(msg)
        return self

    @property
    def window(self) -> QualityWindow:
        """The requested quality window."""
        return QualityWindow(date_from=self.date_from, date_to=self.date_to)


class QueryVariant(BaseModel):
    """One search query. List position is its priority."""

    model_config = ConfigDict(frozen=True)

    query: str = Field(min_length=1)
    tag: str = Field(description="Which axis produced the variant (combined, event_type, geo, ...)")
    priority: int = Field(default=0, ge=0, description="0 is tried first")


# ========================================
# Pipeline side
# ========================================


class SearchHit(BaseModel):
    """Raw result returned by a search provider."""

    url: str
    title: str = ""
    snippet: str = ""
    score: float = 0.0

    @field_validator("score")
    @classmethod
    def validate_score(cls, v: float) -> float:
        """Validate score is finite (not NaN or infinity)."""
        return _check_finite(v)


class Candidate(BaseModel):
    """A discovered URL that may describe an event."""

    url: str = Field(description="Canonical URL, the dedup key within a request")
    host: str
    discovered_via: str
    raw_score: float = 0.0
    title: str = ""
    snippet: str = ""
    query_tag: str = ""
    discovery_order: int = Field(ge=0)
    is_aggregator: bool = False
    rerank_score: float | None = None
    priority_score: float | None = None
    extraction_order: int | None = Field(default=None, description="Position in the extraction queue")

    @field_validator("raw_score")
    @classmethod
    def validate_score(cls, v: float) -> float:
        """Validate score is finite (not NaN or infinity)."""
        return _check_finite(v)


class FetchedPage(BaseModel):
    """Text and outgoing links of a fetched page."""

    url: str
    content: str = ""
    html: str = ""
    links: list[str] = Field(default_factory=list)
    status_code: int | None = None


class Speaker(BaseModel):
    """A person speaking at an event."""

    name: str = Field(min_length=1)
    role: str | None = None
    org: str | None = None
    url: str | None = None

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        """Collapse inner whitespace."""
        return " ".join(v.split())


class Provenance(BaseModel):
    """Where an event record came from."""

    provider: str
    query_tag: str = ""
    pass_type: PassType = PassType.INITIAL
    extraction_method: ExtractionMethod = ExtractionMethod.LLM
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    window_used: QualityWindow


class ExtractedEvent(BaseModel):
    """Structured event record produced by extraction and scored by the quality gate."""

    title: str
    date_iso: str | None = None
    end_date_iso: str | None = None
    location: str | None = None
    venue: str | None = None
    city: str | None = None
    country: str | None = None
    speakers: list[Speaker] = Field(default_factory=list)
    source_url: str
    host: str = ""
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    quality_score: float = Field(default=0.0, ge=0.0, le=1.0)
    date_status: DateWindowStatus | None = None
    has_speaker_subpage: bool = False
    status: EventStatus = EventStatus.DRAFT
    rejection_reason: str | None = None
    discovery_order: int = 0
    text_sample: str = Field(default="", description="Page text used by the quality gate")
    provenance: Provenance

    @field_validator("confidence", "quality_score")
    @classmethod
    def validate_score(cls, v: float) -> float:
        """Validate score is finite (not NaN or infinity)."""
        return _check_finite(v)

    @property
    def start_date(self) -> date | None:
        """Parsed start date."""
        return parse_iso_date(self.date_iso)


class CandidateMeta(BaseModel):
    """Flattened view of an extracted event, the quality gate's only input."""

    url: str
    host: str
    title: str = ""
    date_iso: str | None = None
    venue: str | None = None
    city: str | None = None
    country: str | None = None
    speaker_count: int = 0
    has_speaker_subpage: bool = False
    is_official_domain: bool = False
    text_sample: str = ""


# ========================================
# LLM structured output schemas
# ========================================


class CandidateScore(BaseModel):
    """LLM judgement of one search result."""

    index: int = Field(ge=0, description="Index of the candidate in the prompt list")
    is_event: bool = Field(description="Page describes one specific event")
    has_agenda: bool = Field(default=False, description="Page shows or links an agenda/programme")
    has_speakers: bool = Field(default=False, description="Page shows or links speakers")
    is_recent: bool = Field(default=False, description="Event takes place in the requested window")
    is_relevant: bool = Field(default=False, description="Event matches the topic")
    is_country_relevant: bool = Field(default=False, description="Event takes place in the region")


class CandidateScoreList(BaseModel):
    """Batch of candidate judgements."""

    scores: list[CandidateScore] = Field(default_factory=list)


class EventExtraction(BaseModel):
    """Structured fields requested from the LLM for one event."""

    title: str | None = None
    title_confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    date_iso: str | None = Field(default=None, description="Start date YYYY-MM-DD")
    end_date_iso: str | None = Field(default=None, description="End date YYYY-MM-DD")
    date_confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    location: str | None = None
    venue: str | None = None
    city: str | None = None
    country: str | None = None
    location_confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    speakers: list[Speaker] = Field(default_factory=list)

    @field_validator("title_confidence", "date_confidence", "location_confidence")
    @classmethod
    def validate_confidence(cls, v: float) -> float:
        """Validate confidence is finite (not NaN or infinity)."""
        return _check_finite(v)

    @field_validator("date_iso", "end_date_iso")
    @classmethod
    def normalize_date(cls, v: str | None) -> str | None:
        """Keep only well-formed ISO dates."""
        parsed = parse_iso_date(v)
        return parsed.isoformat() if parsed else None

    @property
    def has_location(self) -> bool:
        """Any location field is present."""
        return bool(self.location or self.venue or self.city)


# ========================================
# Result side
# ========================================


class StageLog(BaseModel):
    """Structured log entry for one pipeline stage."""

    stage: str
    pass_type: PassType = PassType.INITIAL
    duration_ms: float = 0.0
    input_count: int = 0
    output_count: int = 0
    detail: dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))


class ResultMetadata(BaseModel):
    """Counters and flags describing a pipeline run."""

    discovered: int = 0
    prioritized: int = 0
    extracted: int = 0
    accepted: int = 0
    low_confidence: bool = False
    window_used: QualityWindow | None = None
    partial: bool = False
    expanded: bool = False
    providers: dict[str, Any] = Field(default_factory=dict)


class EventSearchResult(BaseModel):
    """Complete result of an event search request."""

    success: bool
    status: SearchStatus
    events: list[ExtractedEvent] = Field(default_factory=list)
    metadata: ResultMetadata = Field(default_factory=ResultMetadata)
    logs: list[StageLog] = Field(default_factory=list)
    error: str | None = None

    def to_json(self) -> str:
        """Serialize for callers, without the page text kept for gating."""
        return self.model_dump_json(exclude={"events": {"__all__": {"text_sample"}}})
