"""Query variant generation.

Turns a search request plus its topic template into an ordered, deduplicated
list of query variants. Each precision axis narrows its own term list: at
weight 0 every term is used, at weight 10 only the most specific fifth.
Cross-topic suppression works the other way and adds more ``-term``
exclusions as its weight rises.
"""

import logging
import math
import re

from eventscout.config.store import ConfigSnapshot, PrecisionWeights, TopicTemplate
from eventscout.config.templates import (
    COUNTRY_DATA,
    EVENT_TYPE_SYNONYMS,
    UPCOMING_TOKENS,
    resolve_country,
)
from eventscout.services.event_models import QueryVariant, SearchRequest

logger = logging.getLogger(__name__)

DEFAULT_LOCALE = "en"


def _axis_take(terms: list[str], weight: float) -> list[str]:
    """Keep the leading share of a confidence-ordered list for an axis weight."""
    if not terms:
        return []
    share = 1.0 - 0.08 * weight
    keep = max(1, math.ceil(len(terms) * share))
    return terms[:keep]


def _quote(term: str) -> str:
    term = term.strip()
    return f'"{term}"' if " " in term and not term.startswith('"') else term


def _or_group(terms: list[str]) -> str:
    quoted = [_quote(t) for t in terms if t.strip()]
    if not quoted:
        return ""
    if len(quoted) == 1:
        return quoted[0]
    return "(" + " OR ".join(quoted) + ")"


def _unique(terms: list[str]) -> list[str]:
    seen: set[str] = set()
    out = []
    for term in terms:
        key = term.strip().lower()
        if key and key not in seen:
            seen.add(key)
            out.append(term.strip())
    return out


def _join(*parts: str) -> str:
    return re.sub(r"\s+", " ", " ".join(p for p in parts if p)).strip()


def resolve_locale(request: SearchRequest) -> str:
    """Pick the query language: explicit locale, then the region's, then English."""
    if request.locale and request.locale.lower()[:2] in EVENT_TYPE_SYNONYMS:
        return request.locale.lower()[:2]
    country = resolve_country(request.region)
    if country:
        locale = COUNTRY_DATA[country]["locale"]
        if locale in EVENT_TYPE_SYNONYMS:
            return locale
    return DEFAULT_LOCALE


class QueryBuilder:
    """Builds prioritized query variants for one request."""

    def __init__(self, max_variants: int = 20) -> None:
        """Initialize the builder.

        Args:
            max_variants: Upper bound on the number of variants returned
        """
        self.max_variants = max_variants

    def build(
        self,
        request: SearchRequest,
        snapshot: ConfigSnapshot,
        template: TopicTemplate | None = None,
    ) -> list[QueryVariant]:
        """Generate query variants in priority order.

        Args:
            request: Validated search request
            snapshot: Configuration snapshot for this run
            template: Template to use instead of looking up the request topic

        Returns:
            At most ``max_variants`` variants, unique ignoring case and spacing

        Raises:
            TemplateNotFoundError: If no template matches and none was given
        """
        if template is None:
            template = snapshot.template_for(request.topic)
        weights = request.precision_weights or snapshot.default_weights
        locale = resolve_locale(request)
        country = resolve_country(request.region)

        topic_terms = _axis_take(self._topic_terms(request, template), weights.industry_specificity)
        industry_terms = _axis_take(
            _unique(list(request.caller_profile.industry_terms) + template.industry_terms),
            weights.industry_specificity,
        )
        icp_terms = _axis_take(
            _unique(list(request.caller_profile.icp_terms) + template.icp_terms),
            weights.industry_specificity,
        )
        event_types = _axis_take(
            EVENT_TYPE_SYNONYMS.get(locale, EVENT_TYPE_SYNONYMS[DEFAULT_LOCALE]),
            weights.event_type_specificity,
        )
        geo_names, cities = self._geo_terms(request, country, locale, weights)
        years = [str(y) for y in request.window.years()]
        exclusions = self._exclusions(template, weights)

        core = _quote(topic_terms[0])
        primary_type = event_types[0]
        country_name = geo_names[0] if geo_names else ""
        year_token = years[0]

        candidates: list[QueryVariant] = [
            QueryVariant(
                query=_join(
                    _or_group(topic_terms),
                    _or_group(event_types),
                    _or_group(geo_names),
                    _or_group(years),
                    exclusions,
                ),
                tag="combined",
            ),
        ]

        for event_type in event_types:
            candidates.append(
                QueryVariant(
                    query=_join(core, event_type, country_name, year_token, exclusions),
                    tag=f"event_type:{event_type.lower()}",
                ),
            )

        if locale != DEFAULT_LOCALE:
            localized = _axis_take(
                template.localized_terms.get(locale, []) or topic_terms,
                weights.industry_specificity,
            )
            candidates.append(
                QueryVariant(
                    query=_join(_or_group(localized), _or_group(event_types[:3]), country_name, exclusions),
                    tag=f"locale:{locale}",
                ),
            )

        for city in cities:
            candidates.append(
                QueryVariant(
                    query=_join(core, primary_type, city, year_token, exclusions),
                    tag=f"geo:{city.lower()}",
                ),
            )

        for term in industry_terms:
            candidates.append(
                QueryVariant(
                    query=_join(_quote(term), primary_type, country_name, year_token, exclusions),
                    tag=f"industry:{term.lower()}",
                ),
            )

        for term in icp_terms:
            candidates.append(
                QueryVariant(
                    query=_join(_quote(term), core, primary_type, country_name, exclusions),
                    tag=f"icp:{term.lower()}",
                ),
            )

        upcoming = UPCOMING_TOKENS.get(locale, UPCOMING_TOKENS[DEFAULT_LOCALE])
        candidates.append(
            QueryVariant(
                query=_join(upcoming, core, primary_type, country_name, _or_group(years), exclusions),
                tag="temporal",
            ),
        )

        variants = self._dedupe(candidates)[: self.max_variants]
        logger.info(
            "Built %d query variants for topic=%s region=%s locale=%s",
            len(variants),
            request.topic,
            request.region,
            locale,
        )
        return variants

    def _topic_terms(self, request: SearchRequest, template: TopicTemplate) -> list[str]:
        terms = list(request.caller_profile.industry_terms[:1])
        topic = request.topic.strip()
        if topic.lower() not in (template.key, template.name.lower()):
            terms.insert(0, topic)
        return _unique(terms + template.base_terms)

    def _geo_terms(
        self,
        request: SearchRequest,
        country: str | None,
        locale: str,
        weights: PrecisionWeights,
    ) -> tuple[list[str], list[str]]:
        """Localized country names and the cities to search in, caller cities first."""
        preferred = list(request.caller_profile.preferred_cities)
        if not country:
            names = [request.region.strip()] if request.region else []
            return names, _axis_take(_unique(preferred), weights.geographic_strictness)

        data = COUNTRY_DATA[country]
        names = _unique([data["names"].get(locale, data["names"]["en"]), data["names"]["en"]])
        cities = _unique(preferred + data["cities"])
        return names, _axis_take(cities, weights.geographic_strictness)

    def _exclusions(self, template: TopicTemplate, weights: PrecisionWeights) -> str:
        ranked = sorted(template.negative_terms, key=lambda n: -n.weight)
        count = round(len(ranked) * weights.cross_topic_suppression / 10)
        return " ".join(f"-{_quote(n.term)}" for n in ranked[:count])

    def _dedupe(self, variants: list[QueryVariant]) -> list[QueryVariant]:
        seen: set[str] = set()
        unique = []
        for variant in variants:
            key = " ".join(variant.query.lower().split())
            if key and key not in seen:
                seen.add(key)
                unique.append(variant.model_copy(update={"priority": len(unique)}))
        return unique
