"""Utility functions for the EventScout MCP server."""

from .text import (
    PageClassification,
    PageType,
    classify_page,
    extract_dates,
    has_hard_reject_text,
    is_blog_or_news,
    is_listing_page,
)
from .url import (
    canonicalize_url,
    extract_host,
    extract_links,
    has_country_tld,
    has_speaker_path,
    is_aggregator_host,
    select_subpages,
    to_absolute_url,
)

__all__ = [
    # Text heuristics
    "PageClassification",
    "PageType",
    "classify_page",
    "extract_dates",
    "has_hard_reject_text",
    "is_blog_or_news",
    "is_listing_page",
    # URL helpers
    "canonicalize_url",
    "extract_host",
    "extract_links",
    "has_country_tld",
    "has_speaker_path",
    "is_aggregator_host",
    "select_subpages",
    "to_absolute_url",
]
