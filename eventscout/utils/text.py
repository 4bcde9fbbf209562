"""Text heuristics: page-type classification, hard-reject patterns and date parsing."""

import calendar
import re
from dataclasses import dataclass
from datetime import date
from enum import Enum
from urllib.parse import urlparse


class PageType(str, Enum):
    """Coarse classification of a fetched page."""

    EVENT = "event"
    LIST = "list"
    LEGAL = "legal"
    BLOG = "blog"
    STATIC = "static"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class PageClassification:
    """Result of classify_page."""

    page_type: PageType
    is_event: bool
    confidence: float
    reason: str


NEGATIVE_KEYWORDS = [
    "terms",
    "bedingungen",
    "agb",
    "privacy",
    "datenschutz",
    "impressum",
    "cookie",
    "disclaimer",
    "imprint",
    "jobs",
    "careers",
    "press",
    "news",
    "blog",
    "article",
    "category",
    "archive",
    "author",
    "about",
    "contact",
    "kontakt",
    "all-events",
    "event-list",
    "event-calendar",
    "upcoming-events",
    "past-events",
    "search-results",
]

POSITIVE_KEYWORDS = [
    "agenda",
    "programm",
    "programme",
    "schedule",
    "zeitplan",
    "tickets",
    "registration",
    "anmeldung",
    "venue",
    "veranstaltungsort",
    "veranstaltung",
    "konferenz",
    "conference",
    "summit",
    "seminar",
    "workshop",
    "symposium",
    "congress",
    "kongress",
    "tagung",
    "referenten",
    "sprecher",
    "speakers",
    "presenters",
    "faculty",
    "keynote",
    "sessions",
]

# Matched against the title and the top of the page body
HARD_REJECT_PATTERNS = [
    re.compile(r"\b404\b"),
    re.compile(r"\bpage not found\b", re.IGNORECASE),
    re.compile(r"\bseite nicht gefunden\b", re.IGNORECASE),
    re.compile(r"\bterms\s+(?:and|&)\s+conditions\b", re.IGNORECASE),
    re.compile(r"\bterms\s+of\s+(?:use|service)\b", re.IGNORECASE),
    re.compile(r"\bprivacy\s+(?:policy|notice|statement)\b", re.IGNORECASE),
    re.compile(r"\bcookie\s+policy\b", re.IGNORECASE),
    re.compile(r"\bdatenschutzerkl(?:ä|ae)rung\b", re.IGNORECASE),
    re.compile(r"\ballgemeine\s+gesch(?:ä|ae)ftsbedingungen\b", re.IGNORECASE),
    re.compile(r"^\s*(?:impressum|imprint|agb|legal notice)\b", re.IGNORECASE),
]

HARD_REJECT_BODY_CHARS = 600

LISTING_PATH = re.compile(r"/(events?|veranstaltungen|calendar|kalender|termine)(/|$)")
SPECIFIC_EVENT_ID = re.compile(r"(/\d+/|/[a-z]+-\d+|/[a-z0-9]+(?:-[a-z0-9]+){2,})")
LISTING_TITLE = re.compile(
    r"\b(upcoming events|all events|event calendar|events calendar|"
    r"veranstaltungskalender|alle veranstaltungen|terminkalender|"
    r"conferences? in \d{4}|top \d+ (?:conferences|events))\b",
    re.IGNORECASE,
)
BLOG_PATH = re.compile(r"/(blog|news|article|articles|post|posts|press|presse|magazin)(/|$)")

SCHEMA_EVENT = re.compile(r"schema\.org/(?:\w+)?event|\"@type\"\s*:\s*\"\w*event\"", re.IGNORECASE)

MONTHS = {
    "january": 1,
    "januar": 1,
    "janvier": 1,
    "february": 2,
    "februar": 2,
    "février": 2,
    "march": 3,
    "märz": 3,
    "maerz": 3,
    "mars": 3,
    "april": 4,
    "avril": 4,
    "may": 5,
    "mai": 5,
    "june": 6,
    "juni": 6,
    "juin": 6,
    "july": 7,
    "juli": 7,
    "juillet": 7,
    "august": 8,
    "août": 8,
    "september": 9,
    "septembre": 9,
    "october": 10,
    "oktober": 10,
    "octobre": 10,
    "november": 11,
    "novembre": 11,
    "december": 12,
    "dezember": 12,
    "décembre": 12,
}

_MONTH_NAMES = "|".join(sorted(MONTHS, key=len, reverse=True))
ISO_DATE = re.compile(r"\b(\d{4})-(\d{2})-(\d{2})\b")
DOTTED_DATE = re.compile(r"\b(\d{1,2})\.\s?(\d{1,2})\.\s?(\d{4})\b")
DAY_MONTH_YEAR = re.compile(rf"\b(\d{{1,2}})\.?\s+({_MONTH_NAMES})\s+(\d{{4}})\b", re.IGNORECASE)
MONTH_DAY_YEAR = re.compile(rf"\b({_MONTH_NAMES})\s+(\d{{1,2}})(?:st|nd|rd|th)?,?\s+(\d{{4}})\b", re.IGNORECASE)


def has_hard_reject_text(title: str, body: str) -> str | None:
    """Look for legal, terms or 404 markers in a title or the top of a body.

    Returns:
        The matched text, or None when the page is clean
    """
    head = (body or "")[:HARD_REJECT_BODY_CHARS]
    for text in (title or "", head):
        for pattern in HARD_REJECT_PATTERNS:
            match = pattern.search(text)
            if match:
                return match.group(0).strip()
    return None


def is_listing_page(url: str, title: str = "") -> bool:
    """Detect directory and calendar pages that list many events."""
    path = urlparse(url).path.lower()
    if LISTING_PATH.search(path) and not SPECIFIC_EVENT_ID.search(path):
        return True
    return bool(LISTING_TITLE.search(title or ""))


def is_blog_or_news(url: str) -> bool:
    """Detect article pages by their path."""
    return bool(BLOG_PATH.search(urlparse(url).path.lower()))


def classify_page(url: str, title: str = "", content: str = "") -> PageClassification:
    """Classify a page as event, listing, legal, blog or static.

    Scores negative and positive keywords by where they occur (URL weighs
    most, then title, then the first 5000 characters of content).

    Args:
        url: Page URL
        title: Page title
        content: Page text

    Returns:
        Classification with a confidence in [0, 0.95]
    """
    url_lower = url.lower()
    title_lower = (title or "").lower()
    content_lower = (content or "")[:5000].lower()

    score = 0
    reasons: list[str] = []

    for keyword in NEGATIVE_KEYWORDS:
        if keyword in url_lower:
            score -= 10
            reasons.append(f"url:-{keyword}")
        elif keyword in title_lower:
            score -= 7
            reasons.append(f"title:-{keyword}")
        elif 0 <= content_lower.find(keyword) < 1000:
            score -= 3

    for keyword in POSITIVE_KEYWORDS:
        if keyword in url_lower:
            score += 8
            reasons.append(f"url:+{keyword}")
        elif keyword in title_lower:
            score += 6
            reasons.append(f"title:+{keyword}")
        elif keyword in content_lower:
            score += 2

    if SCHEMA_EVENT.search(content_lower):
        score += 15
        reasons.append("schema.org/Event")

    combined = f"{title_lower} {content_lower}"
    if extract_dates(combined):
        score += 5
        reasons.append("date")

    if is_listing_page(url, title):
        score -= 5
        reasons.append("listing")

    is_event = score > 5
    confidence = min(abs(score) / 20, 0.95)
    page_type = PageType.EVENT if is_event else _fallback_type(url_lower, title_lower)
    return PageClassification(
        page_type=page_type,
        is_event=is_event,
        confidence=confidence,
        reason="; ".join(reasons[:3]) or "no clear signals",
    )


def _fallback_type(url: str, title: str) -> PageType:
    combined = f"{url} {title}"
    if re.search(r"(terms|privacy|legal|impressum|agb|datenschutz|cookie)", combined):
        return PageType.LEGAL
    if re.search(r"(blog|news|article|/post)", combined):
        return PageType.BLOG
    if is_listing_page(url, title):
        return PageType.LIST
    if re.search(r"(about|contact|kontakt|team|careers|jobs)", combined):
        return PageType.STATIC
    return PageType.UNKNOWN


def extract_dates(text: str) -> list[date]:
    """Find calendar dates in free text, in order of appearance.

    Understands ISO dates, ``dd.mm.yyyy`` and English/German/French month names.
    Impossible dates are skipped.
    """
    found: list[tuple[int, date]] = []

    def _add(pos: int, year: int, month: int, day: int) -> None:
        if year >= 1 and 1 <= month <= 12 and 1 <= day <= calendar.monthrange(year, month)[1]:
            found.append((pos, date(year, month, day)))

    for m in ISO_DATE.finditer(text):
        _add(m.start(), int(m.group(1)), int(m.group(2)), int(m.group(3)))
    for m in DOTTED_DATE.finditer(text):
        _add(m.start(), int(m.group(3)), int(m.group(2)), int(m.group(1)))
    for m in DAY_MONTH_YEAR.finditer(text):
        _add(m.start(), int(m.group(3)), MONTHS[m.group(2).lower()], int(m.group(1)))
    for m in MONTH_DAY_YEAR.finditer(text):
        _add(m.start(), int(m.group(3)), MONTHS[m.group(1).lower()], int(m.group(2)))

    found.sort(key=lambda item: item[0])
    seen: set[date] = set()
    ordered = []
    for _, d in found:
        if d not in seen:
            seen.add(d)
            ordered.append(d)
    return ordered


def tokenize(text: str) -> set[str]:
    """Lowercase word tokens of at least three characters."""
    return {t for t in re.findall(r"[\wäöüß]+", (text or "").lower()) if len(t) >= 3}
