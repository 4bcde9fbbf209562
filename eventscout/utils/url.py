"""URL helpers for candidate deduplication and sub-page resolution."""

import logging
import re
from urllib.parse import parse_qsl, urlencode, urljoin, urlparse, urlunparse

from eventscout.core.constants import SUBPAGE_EXCLUDE_KEYWORDS, SUBPAGE_PATH_KEYWORDS

logger = logging.getLogger(__name__)

TRACKING_PARAMS = {"gclid", "fbclid", "mc_cid", "mc_eid", "ref", "_hsenc", "_hsmi"}

REJECTED_HREF_PREFIXES = ("#", "javascript:", "mailto:", "tel:", "data:")

LANGUAGE_SEGMENT = re.compile(r"^/(de|en|fr|es|it|nl|pl|pt)(?:/|$)", re.IGNORECASE)

BASE_HREF_PATTERN = re.compile(r"<base\s+[^>]*href=[\"']([^\"']+)[\"'][^>]*>", re.IGNORECASE)

HREF_PATTERN = re.compile(r"<a\s+[^>]*href=[\"']([^\"']+)[\"']", re.IGNORECASE)


def canonicalize_url(url: str) -> str:
    """Normalize a URL so equivalent links compare equal.

    Lowercases scheme and host, drops ``www.``, fragments, tracking parameters
    and trailing slashes, and sorts the query string.

    Args:
        url: URL to normalize

    Returns:
        Canonical form of the URL, or the stripped input if it cannot be parsed
    """
    raw = url.strip()
    if not raw:
        return raw
    if "://" not in raw:
        raw = f"https://{raw}"

    parsed = urlparse(raw)
    if not parsed.netloc:
        return url.strip()

    host = parsed.netloc.lower()
    if host.startswith("www."):
        host = host[4:]
    if host.endswith(":443") and parsed.scheme == "https":
        host = host[:-4]
    if host.endswith(":80") and parsed.scheme == "http":
        host = host[:-3]

    path = parsed.path or ""
    while path.endswith("/"):
        path = path[:-1]

    query_items = [
        (k, v)
        for k, v in parse_qsl(parsed.query, keep_blank_values=True)
        if not k.lower().startswith("utm_") and k.lower() not in TRACKING_PARAMS
    ]
    query = urlencode(sorted(query_items))

    return urlunparse((parsed.scheme.lower() or "https", host, path, "", query, ""))


def extract_host(url: str) -> str:
    """Extract the lowercase hostname without a ``www.`` prefix."""
    try:
        host = urlparse(url if "://" in url else f"https://{url}").hostname or ""
    except ValueError:
        return ""
    host = host.lower()
    return host[4:] if host.startswith("www.") else host


def is_aggregator_host(host: str, aggregator_domains: list[str]) -> bool:
    """Check whether a host belongs to a listing/aggregator site (subdomains included)."""
    host = host.lower()
    return any(host == d or host.endswith(f".{d}") for d in aggregator_domains)


def has_country_tld(host: str, tld: str | None) -> bool:
    """Check whether the host ends in the given country TLD (e.g. ``.de``)."""
    if not tld:
        return False
    return host.lower().endswith(tld.lower())


def has_speaker_path(url: str) -> bool:
    """Check whether the URL path points at speaker, agenda or programme content."""
    path = urlparse(url).path.lower()
    return any(keyword in path for keyword in SUBPAGE_PATH_KEYWORDS)


def extract_base_href(html: str) -> str | None:
    """Extract ``<base href>`` from HTML content if present."""
    match = BASE_HREF_PATTERN.search(html or "")
    return match.group(1) if match else None


def to_absolute_url(href: str | None, base_url: str, base_href: str | None = None) -> str | None:
    """Convert a link found on a page into an absolute URL.

    Honors ``<base href>`` and keeps a leading language segment (``/de/``) of the
    base page on root-relative links.

    Args:
        href: Raw href attribute
        base_url: URL of the page the link was found on
        base_href: Optional ``<base href>`` of that page

    Returns:
        Absolute URL, or None for fragments and non-HTTP schemes
    """
    if not href:
        return None
    href = href.strip()
    if not href or href.lower().startswith(REJECTED_HREF_PREFIXES):
        return None

    if href.startswith(("http://", "https://")):
        return href

    effective_base = urljoin(base_url, base_href) if base_href else base_url
    parsed_base = urlparse(effective_base)
    if not parsed_base.scheme or not parsed_base.netloc:
        logger.debug("Cannot resolve %s against %s", href, effective_base)
        return None

    if href.startswith("//"):
        return f"{parsed_base.scheme}:{href}"

    if href.startswith("/"):
        match = LANGUAGE_SEGMENT.match(parsed_base.path)
        if match and not href.lower().startswith(f"/{match.group(1).lower()}"):
            return f"{parsed_base.scheme}://{parsed_base.netloc}/{match.group(1)}{href}"
        return f"{parsed_base.scheme}://{parsed_base.netloc}{href}"

    return urljoin(effective_base, href)


def extract_links(html: str, base_url: str) -> list[str]:
    """Extract absolute links from raw HTML, in document order, without duplicates."""
    base_href = extract_base_href(html)
    seen: set[str] = set()
    links = []
    for href in HREF_PATTERN.findall(html or ""):
        absolute = to_absolute_url(href, base_url, base_href)
        if absolute and absolute not in seen:
            seen.add(absolute)
            links.append(absolute)
    return links


def score_subpage_url(url: str) -> int:
    """Rank a same-host link by how likely it holds speakers or agenda.

    Returns:
        0 for excluded or irrelevant links, higher is better
    """
    path = urlparse(url).path.lower()
    if any(keyword in path for keyword in SUBPAGE_EXCLUDE_KEYWORDS):
        return 0
    for rank, keyword in enumerate(SUBPAGE_PATH_KEYWORDS):
        if re.search(rf"(^|[/_\-.]){keyword}", path):
            return len(SUBPAGE_PATH_KEYWORDS) - rank
    return 0


def select_subpages(page_url: str, links: list[str], limit: int) -> list[str]:
    """Pick the best same-host sub-pages of an event page.

    Args:
        page_url: URL of the main event page
        links: Absolute links found on it
        limit: Maximum number of sub-pages

    Returns:
        Up to ``limit`` canonical URLs, best first
    """
    if limit <= 0:
        return []
    host = extract_host(page_url)
    main = canonicalize_url(page_url)
    scored: dict[str, int] = {}
    for link in links:
        if extract_host(link) != host:
            continue
        canonical = canonicalize_url(link)
        if canonical == main or canonical in scored:
            continue
        score = score_subpage_url(canonical)
        if score > 0:
            scored[canonical] = score
    ranked = sorted(scored.items(), key=lambda item: -item[1])
    return [url for url, _ in ranked[:limit]]
