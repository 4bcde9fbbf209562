"""Built-in topic templates, localized vocabulary and country data.

Term lists are ordered by confidence: the first entries are the most specific
and survive the narrowing applied by high precision weights.
"""

from typing import Any

TEMPLATE_SCHEMA_VERSION = 1

GENERIC_TEMPLATE_KEY = "general"

BUILTIN_TEMPLATES: dict[str, dict[str, Any]] = {
    "legal-compliance": {
        "name": "Legal & Compliance",
        "version": TEMPLATE_SCHEMA_VERSION,
        "base_terms": [
            "compliance",
            "legal tech",
            "e-discovery",
            "data protection",
            "GDPR",
            "regulatory",
            "governance",
            "risk management",
            "whistleblowing",
            "internal investigations",
            "legal",
            "audit",
        ],
        "industry_terms": [
            "compliance management",
            "investigations",
            "regtech",
            "sanctions",
            "legal operations",
            "anti-corruption",
            "AML",
            "financial crime",
            "privacy",
            "cybersecurity",
            "ESG",
            "litigation",
        ],
        "icp_terms": [
            "general counsel",
            "chief compliance officer",
            "investigations lead",
            "compliance manager",
            "legal counsel",
        ],
        "negative_terms": [
            {"term": "reddit", "weight": 10},
            {"term": "forum", "weight": 8},
            {"term": "legal advice", "weight": 7},
            {"term": "mumsnet", "weight": 6},
            {"term": "jobs", "weight": 4},
            {"term": "course", "weight": 3},
        ],
        "localized_terms": {
            "de": ["Datenschutz", "Compliance", "Hinweisgeberschutz", "Geldwäsche", "Recht"],
            "fr": ["conformité", "protection des données", "juridique"],
        },
    },
    "fintech": {
        "name": "FinTech",
        "version": TEMPLATE_SCHEMA_VERSION,
        "base_terms": [
            "fintech",
            "digital banking",
            "payments",
            "financial technology",
            "blockchain",
            "cryptocurrency",
        ],
        "industry_terms": [
            "regtech",
            "insurtech",
            "wealthtech",
            "open banking",
            "lending",
            "trading",
        ],
        "icp_terms": [
            "chief technology officer",
            "head of digital",
            "product manager",
            "risk manager",
        ],
        "negative_terms": [
            {"term": "reddit", "weight": 10},
            {"term": "casino", "weight": 9},
            {"term": "gambling", "weight": 9},
            {"term": "forum", "weight": 7},
        ],
        "localized_terms": {
            "de": ["Finanztechnologie", "Zahlungsverkehr", "Digitales Banking"],
        },
    },
    "healthcare": {
        "name": "Healthcare Technology",
        "version": TEMPLATE_SCHEMA_VERSION,
        "base_terms": [
            "digital health",
            "healthtech",
            "medical technology",
            "healthcare innovation",
            "telemedicine",
        ],
        "industry_terms": [
            "healthcare data",
            "medical devices",
            "clinical informatics",
            "patient care",
        ],
        "icp_terms": [
            "chief medical officer",
            "healthcare IT director",
            "head of digital health",
        ],
        "negative_terms": [
            {"term": "medical advice", "weight": 9},
            {"term": "reddit", "weight": 8},
            {"term": "forum", "weight": 6},
        ],
        "localized_terms": {
            "de": ["Digitale Gesundheit", "Medizintechnik"],
        },
    },
    GENERIC_TEMPLATE_KEY: {
        "name": "General Business",
        "version": TEMPLATE_SCHEMA_VERSION,
        "base_terms": [
            "business event",
            "professional development",
            "networking",
            "leadership",
            "innovation",
        ],
        "industry_terms": ["strategy", "management"],
        "icp_terms": ["executive", "director", "business leader"],
        "negative_terms": [
            {"term": "reddit", "weight": 8},
            {"term": "forum", "weight": 6},
            {"term": "personal blog", "weight": 4},
        ],
        "localized_terms": {},
    },
}

# Ordered most to least specific
EVENT_TYPE_SYNONYMS: dict[str, list[str]] = {
    "en": ["conference", "summit", "forum", "symposium", "congress", "workshop", "seminar", "trade show"],
    "de": ["Konferenz", "Kongress", "Tagung", "Fachkonferenz", "Symposium", "Forum", "Workshop", "Seminar"],
    "fr": ["conférence", "congrès", "sommet", "colloque", "forum", "salon", "atelier", "séminaire"],
}

UPCOMING_TOKENS: dict[str, str] = {
    "en": "upcoming",
    "de": "kommende",
    "fr": "prochain",
}

COUNTRY_DATA: dict[str, dict[str, Any]] = {
    "DE": {
        "locale": "de",
        "tld": ".de",
        "names": {"en": "Germany", "de": "Deutschland", "fr": "Allemagne"},
        "cities": ["Berlin", "München", "Frankfurt", "Hamburg", "Köln", "Stuttgart", "Düsseldorf", "Leipzig"],
    },
    "AT": {
        "locale": "de",
        "tld": ".at",
        "names": {"en": "Austria", "de": "Österreich", "fr": "Autriche"},
        "cities": ["Wien", "Graz", "Linz", "Salzburg", "Innsbruck"],
    },
    "CH": {
        "locale": "de",
        "tld": ".ch",
        "names": {"en": "Switzerland", "de": "Schweiz", "fr": "Suisse"},
        "cities": ["Zürich", "Genf", "Basel", "Bern", "Lausanne"],
    },
    "FR": {
        "locale": "fr",
        "tld": ".fr",
        "names": {"en": "France", "de": "Frankreich", "fr": "France"},
        "cities": ["Paris", "Lyon", "Marseille", "Lille", "Toulouse", "Bordeaux"],
    },
    "GB": {
        "locale": "en",
        "tld": ".uk",
        "names": {"en": "United Kingdom", "de": "Großbritannien", "fr": "Royaume-Uni"},
        "cities": ["London", "Manchester", "Birmingham", "Edinburgh", "Glasgow"],
    },
    "US": {
        "locale": "en",
        "tld": ".us",
        "names": {"en": "United States", "de": "USA", "fr": "États-Unis"},
        "cities": ["New York", "San Francisco", "Chicago", "Boston", "Washington"],
    },
    "NL": {
        "locale": "en",
        "tld": ".nl",
        "names": {"en": "Netherlands", "de": "Niederlande", "fr": "Pays-Bas"},
        "cities": ["Amsterdam", "Rotterdam", "Utrecht", "The Hague", "Eindhoven"],
    },
    "IT": {
        "locale": "en",
        "tld": ".it",
        "names": {"en": "Italy", "de": "Italien", "fr": "Italie"},
        "cities": ["Milano", "Roma", "Torino", "Bologna", "Firenze"],
    },
    "ES": {
        "locale": "en",
        "tld": ".es",
        "names": {"en": "Spain", "de": "Spanien", "fr": "Espagne"},
        "cities": ["Madrid", "Barcelona", "Valencia", "Sevilla", "Bilbao"],
    },
}

COUNTRY_ALIASES: dict[str, str] = {
    "GERMANY": "DE",
    "DEUTSCHLAND": "DE",
    "AUSTRIA": "AT",
    "OSTERREICH": "AT",
    "SWITZERLAND": "CH",
    "SCHWEIZ": "CH",
    "FRANCE": "FR",
    "UK": "GB",
    "UNITEDKINGDOM": "GB",
    "GREATBRITAIN": "GB",
    "ENGLAND": "GB",
    "USA": "US",
    "UNITEDSTATES": "US",
    "NETHERLANDS": "NL",
    "HOLLAND": "NL",
    "ITALY": "IT",
    "ITALIA": "IT",
    "SPAIN": "ES",
    "ESPANA": "ES",
}

# Listing and aggregator hosts, subdomains included
AGGREGATOR_DOMAINS: list[str] = [
    "10times.com",
    "allevents.in",
    "conference-service.com",
    "conference2go.com",
    "conferencealert.com",
    "conferenceindex.org",
    "conferenceseries.com",
    "cvent.com",
    "eventbrite.com",
    "eventbrite.de",
    "eventora.com",
    "eventsworld.com",
    "globalriskcommunity.com",
    "internationalconferencealerts.com",
    "learn.microsoft.com",
    "linkedin.com",
    "meetup.com",
    "vendelux.com",
    "waset.org",
    "xing.com",
]


def resolve_country(raw: str | None) -> str | None:
    """Resolve a region string to an ISO-3166 alpha-2 code.

    Args:
        raw: Region as given by the caller ("DE", "Germany", "Deutschland")

    Returns:
        Two-letter country code, or None when the region is unknown
    """
    if not raw:
        return None
    upper = raw.strip().upper()
    if upper in COUNTRY_DATA:
        return upper
    key = "".join(ch for ch in upper if ch.isalpha())
    key = key.replace("Ö", "O").replace("Ñ", "N")
    if key in COUNTRY_DATA:
        return key
    return COUNTRY_ALIASES.get(key)
