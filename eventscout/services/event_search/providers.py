"""Search providers used by discovery.

Every provider implements ``SearchProvider``: ``search`` returns raw hits or
raises ``ProviderError`` with a classified kind, so the discovery chain can
decide whether to open a circuit or simply move on to the next provider.

Providers:
- firecrawl: Firecrawl v2 search API (primary)
- google_cse: Google Custom Search JSON API
- searxng: self-hosted SearXNG JSON API
- seed: curated seed URLs from configuration or a Supabase table
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

import httpx
from pydantic import ValidationError
from supabase import Client

from eventscout.config.templates import COUNTRY_DATA, resolve_country
from eventscout.core.constants import (
    LOW_VALUE_HOST_HINTS,
    MAX_RESULTS_PER_PROVIDER,
    RATE_LIMIT_STATUS_CODES,
)
from eventscout.core.exceptions import ProviderError, ProviderErrorKind, QuotaExceeded
from eventscout.services.event_models import QualityWindow, QueryVariant, SearchHit
from eventscout.utils.text import tokenize
from eventscout.utils.url import extract_host

logger = logging.getLogger(__name__)

FIRECRAWL_SEARCH_URL = "https://api.firecrawl.dev/v2/search"
GOOGLE_CSE_URL = "https://www.googleapis.com/customsearch/v1"


@dataclass(frozen=True)
class SearchOptions:
    """Per-request options passed to every provider call."""

    region: str | None = None
    locale: str = "en"
    limit: int = MAX_RESULTS_PER_PROVIDER
    window: QualityWindow | None = None
    topic: str = ""
    seed_urls: dict[str, list[str]] = field(default_factory=dict)


def _parse_retry_after(value: str | None) -> float | None:
    if not value:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        # HTTP-date form is not worth parsing; the breaker cooldown applies
        return None


def _is_low_value(url: str) -> bool:
    host = extract_host(url)
    return not host or any(hint in host for hint in LOW_VALUE_HOST_HINTS)


class SearchProvider(ABC):
    """A search backend that turns a query variant into raw hits."""

    name: str = ""

    async def search(self, variant: QueryVariant, options: SearchOptions) -> list[SearchHit]:
        """Run one search.

        Args:
            variant: Query variant to run
            options: Region, locale and result limit

        Returns:
            Hits in provider rank order, social and low-value hosts removed

        Raises:
            QuotaExceeded: When the provider answers with a rate limit
            ProviderError: With a classified kind for any other failure
        """
        try:
            hits = await self._search(variant, options)
        except ProviderError:
            raise
        except asyncio.CancelledError:
            raise
        except Exception as e:
            kind = self.classify_error(e)
            retry_after = None
            if isinstance(e, httpx.HTTPStatusError):
                retry_after = _parse_retry_after(e.response.headers.get("Retry-After"))
            if kind == ProviderErrorKind.RATE_LIMITED:
                raise QuotaExceeded(
                    self.name,
                    f"{self.name} rate limit or quota exhausted: {e}",
                    retry_after=retry_after,
                ) from e
            raise ProviderError(
                self.name,
                kind,
                f"{self.name} search failed ({kind.value}): {type(e).__name__}: {e}",
                retry_after=retry_after,
            ) from e

        filtered = [hit for hit in hits if not _is_low_value(hit.url)]
        if len(filtered) < len(hits):
            logger.debug("%s: dropped %d low-value hits", self.name, len(hits) - len(filtered))
        return filtered[: options.limit]

    @abstractmethod
    async def _search(self, variant: QueryVariant, options: SearchOptions) -> list[SearchHit]:
        """Provider-specific call. May raise any transport or parsing error."""

    def classify_error(self, exc: BaseException) -> ProviderErrorKind:
        """Map an exception raised by the provider call onto a failure kind.

        Args:
            exc: Exception raised while calling the provider

        Returns:
            Failure kind used by the circuit breaker
        """
        if isinstance(exc, httpx.TimeoutException | TimeoutError):
            return ProviderErrorKind.TIMEOUT
        if isinstance(exc, httpx.HTTPStatusError):
            if exc.response.status_code in RATE_LIMIT_STATUS_CODES:
                return ProviderErrorKind.RATE_LIMITED
            return ProviderErrorKind.HTTP_ERROR
        if isinstance(exc, httpx.RequestError):
            return ProviderErrorKind.HTTP_ERROR
        if isinstance(exc, ValueError | KeyError | TypeError | ValidationError):
            return ProviderErrorKind.MALFORMED_RESPONSE
        return ProviderErrorKind.HTTP_ERROR

    def is_configured(self) -> bool:
        """Whether the provider has the credentials it needs."""
        return True


class FirecrawlProvider(SearchProvider):
    """Firecrawl v2 search."""

    name = "firecrawl"

    def __init__(self, api_key: str | None, client: httpx.AsyncClient, timeout: float = 6.0):
        self.api_key = api_key
        self.client = client
        self.timeout = timeout

    def is_configured(self) -> bool:
        return bool(self.api_key)

    async def _search(self, variant: QueryVariant, options: SearchOptions) -> list[SearchHit]:
        payload: dict[str, Any] = {
            "query": variant.query,
            "limit": options.limit,
        }
        country = resolve_country(options.region)
        if country:
            payload["country"] = country
            payload["location"] = COUNTRY_DATA[country]["names"]["en"]

        response = await self.client.post(
            FIRECRAWL_SEARCH_URL,
            json=payload,
            headers={"Authorization": f"Bearer {self.api_key}"},
            timeout=self.timeout,
        )
        response.raise_for_status()
        body = response.json()

        data = body.get("data") or {}
        items = data.get("web", []) if isinstance(data, dict) else data
        return [
            SearchHit(
                url=item["url"],
                title=item.get("title") or "",
                snippet=item.get("description") or "",
                score=1.0 - rank / max(len(items), 1),
            )
            for rank, item in enumerate(items)
            if item.get("url")
        ]


class GoogleCSEProvider(SearchProvider):
    """Google Custom Search JSON API."""

    name = "google_cse"

    def __init__(
        self,
        api_key: str | None,
        cx: str | None,
        client: httpx.AsyncClient,
        timeout: float = 6.0,
    ):
        self.api_key = api_key
        self.cx = cx
        self.client = client
        self.timeout = timeout

    def is_configured(self) -> bool:
        return bool(self.api_key and self.cx)

    async def _search(self, variant: QueryVariant, options: SearchOptions) -> list[SearchHit]:
        params: dict[str, Any] = {
            "q": variant.query,
            "key": self.api_key,
            "cx": self.cx,
            "num": min(options.limit, 10),
            "safe": "off",
            "hl": options.locale,
            "lr": f"lang_{options.locale}",
        }
        country = resolve_country(options.region)
        if country:
            params["gl"] = country.lower()
            params["cr"] = f"country{country}"

        response = await self.client.get(GOOGLE_CSE_URL, params=params, timeout=self.timeout)
        response.raise_for_status()
        items = response.json().get("items", [])
        return [
            SearchHit(
                url=item["link"],
                title=item.get("title") or "",
                snippet=item.get("snippet") or "",
                score=1.0 - rank / max(len(items), 1),
            )
            for rank, item in enumerate(items)
            if item.get("link")
        ]


class SearXNGProvider(SearchProvider):
    """SearXNG metasearch through its JSON output format."""

    name = "searxng"

    def __init__(
        self,
        base_url: str | None,
        client: httpx.AsyncClient,
        user_agent: str = "EventScout-MCP-Server/1.0",
        timeout: float = 6.0,
    ):
        self.base_url = base_url.rstrip("/") if base_url else None
        self.client = client
        self.user_agent = user_agent
        self.timeout = timeout

    def is_configured(self) -> bool:
        return bool(self.base_url)

    async def _search(self, variant: QueryVariant, options: SearchOptions) -> list[SearchHit]:
        params = {
            "q": variant.query,
            "format": "json",
            "language": options.locale,
            "safesearch": "0",
        }
        response = await self.client.get(
            f"{self.base_url}/search",
            params=params,
            headers={"User-Agent": self.user_agent, "Accept": "application/json"},
            timeout=self.timeout,
        )
        response.raise_for_status()
        results = response.json().get("results", [])
        hits = []
        for result in results:
            url = result.get("url")
            if not url:
                continue
            hits.append(
                SearchHit(
                    url=url,
                    title=result.get("title") or "",
                    snippet=result.get("content") or "",
                    score=float(result.get("score") or 0.0),
                ),
            )
        return hits


class SeedListProvider(SearchProvider):
    """Curated seed URLs, the last resort of the chain.

    Seeds come from the configuration snapshot (passed in the options) and,
    when Supabase is configured, from a table with ``topic``, ``url``,
    ``title`` and ``region`` columns. Seeds are matched to a variant by token
    overlap.
    """

    name = "seed"

    def __init__(
        self,
        seeds: dict[str, list[str]] | None = None,
        client: Client | None = None,
        table: str = "event_seed_urls",
    ):
        self.seeds = seeds or {}
        self.client = client
        self.table = table

    async def _search(self, variant: QueryVariant, options: SearchOptions) -> list[SearchHit]:
        rows: list[dict[str, Any]] = [
            {"topic": topic, "url": url, "title": ""}
            for topic, urls in {**self.seeds, **options.seed_urls}.items()
            for url in urls
        ]
        if self.client is not None:
            rows.extend(await self._load_table_rows(options))

        query_tokens = tokenize(variant.query) | tokenize(options.topic)
        scored: list[tuple[float, dict[str, Any]]] = []
        for row in rows:
            row_tokens = tokenize(row.get("topic", "")) | tokenize(row.get("title", ""))
            overlap = len(query_tokens & row_tokens)
            if overlap:
                scored.append((overlap / max(len(row_tokens), 1), row))

        scored.sort(key=lambda item: -item[0])
        return [
            SearchHit(url=row["url"], title=row.get("title") or "", score=min(score, 1.0))
            for score, row in scored
        ]

    async def _load_table_rows(self, options: SearchOptions) -> list[dict[str, Any]]:
        query = self.client.table(self.table).select("topic,url,title,region")
        country = resolve_country(options.region)
        if country:
            query = query.eq("region", country)

        loop = asyncio.get_running_loop()
        result = await loop.run_in_executor(None, query.execute)
        return [row for row in (result.data or []) if row.get("url")]


def build_providers(
    settings: Any,
    http_client: httpx.AsyncClient,
    seeds: dict[str, list[str]] | None = None,
    supabase_client: Client | None = None,
) -> dict[str, SearchProvider]:
    """Create every known provider keyed by provider id.

    Args:
        settings: Application settings
        http_client: Shared HTTP client
        seeds: Seed URLs from the configuration snapshot
        supabase_client: Optional Supabase client for the seed table

    Returns:
        Providers keyed by id; unconfigured ones report ``is_configured() == False``
    """
    timeout = settings.provider_timeout
    return {
        "firecrawl": FirecrawlProvider(settings.firecrawl_api_key, http_client, timeout),
        "google_cse": GoogleCSEProvider(
            settings.google_cse_key,
            settings.google_cse_cx,
            http_client,
            timeout,
        ),
        "searxng": SearXNGProvider(
            settings.searxng_url,
            http_client,
            settings.searxng_user_agent,
            timeout,
        ),
        "seed": SeedListProvider(seeds, supabase_client, settings.seed_table),
    }
