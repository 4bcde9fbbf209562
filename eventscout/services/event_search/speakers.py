"""Deterministic person validation for extracted speakers.

LLM extraction regularly returns session titles, organizations and button
labels as "speakers". These rules, tuned for German and English conference
pages, keep only names that look like people.
"""

import logging
import re
from dataclasses import dataclass, field

from eventscout.services.event_models import Speaker

logger = logging.getLogger(__name__)

HONORIFICS = re.compile(
    r"\b(Dr\.?|Prof\.?|RA|Rechtsanw(?:ä|ae)lt(?:in)?|LL\.M\.?|LLM|MBA|PhD|Ph\.D\.|M\.Sc\.|B\.Sc\.)(?=\s|$|,)",
    re.IGNORECASE,
)

NON_PERSON_TERMS = re.compile(
    r"\b(Summit|Forum|Panel|Track|Keynote|Workshop|Session|Privacy|Compliance|Risk|Week|"
    r"Faculty|Operations|Practices?|User|National|Symposium|Lawyers?|Conference|Konferenz|"
    r"Tagung|Seminar|Day|Resource|Center|Centre|Library|Portal|Hub|Network|Instructor|"
    r"Trainer|Teacher|Committee|Board|Team|Group|Department|Association|Institute|"
    r"Foundation|Council|Society|Partner|Discovery|eDiscovery|Litigation|Investigation|"
    r"Audit|Governance|Regulation|Technology|Management|Solution|Service|Program|Project|"
    r"Strategy|Initiative)\b",
    re.IGNORECASE,
)

ACTION_VERBS = re.compile(
    r"^(Negotiating|Managing|Implementing|Understanding|Navigating|Leading|Building|"
    r"Developing|Creating|Exploring|Establishing|Designing|Conducting|Planning|Organizing|"
    r"Facilitating|Moderating|Presenting|Discussing|Analyzing|Reviewing|Examining|"
    r"Assessing|Evaluating)\b",
    re.IGNORECASE,
)

ORG_SUFFIX = re.compile(
    r"(?:\b(?:GmbH|AG|SE|KG|UG|LLC|LLP|PLC|Limited)\b|\b(?:Inc|Corp|Ltd)\b\.?|"
    r"\bS\.?p\.?A\b\.?|\bS\.A\.|\be\.V\.)",
    re.IGNORECASE,
)

UI_ELEMENTS = re.compile(
    r"\b(Reserve|Register|Book|Ticket|Sign\s*Up|Learn\s*More|Read\s*More|View\s*More|"
    r"Click\s*Here|Download|Subscribe|Join|Enroll|Contact|Submit|Apply|Now|Today|Share|Save)\b",
    re.IGNORECASE,
)

# 2-4 capitalized tokens with optional name particles
NAME_PATTERN = re.compile(
    r"^[A-ZÄÖÜ][a-zäöüß\-']+"
    r"(?:\s+(?:von|van|de|da|di|del|der|den|la|le|zu|zur))?"
    r"(?:\s+[A-ZÄÖÜ][a-zäöüß\-']+){1,3}$",
)

GIVEN_NAMES = frozenset(
    name.lower()
    for name in (
        # German
        "Anna", "Anne", "Anja", "Andrea", "Benjamin", "Bernd", "Christian", "Christina",
        "Christoph", "Claudia", "Daniel", "David", "Denis", "Dirk", "Elena", "Elisabeth",
        "Felix", "Frank", "Hannah", "Hans", "Heike", "Hendrik", "Jan", "Jana", "Jens",
        "Jonas", "Julia", "Jürgen", "Kai", "Katja", "Klaus", "Lena", "Lisa", "Lukas",
        "Manfred", "Maria", "Marion", "Markus", "Martin", "Matthias", "Michael", "Monika",
        "Nicole", "Nina", "Oliver", "Patrick", "Paul", "Peter", "Petra", "Ralf", "Robert",
        "Sabine", "Sandra", "Sarah", "Sebastian", "Silke", "Stefan", "Stefanie", "Susanne",
        "Sven", "Thomas", "Thorsten", "Tobias", "Udo", "Ulrich", "Ulrike", "Uwe", "Werner",
        "Wolfgang",
        # English
        "Alexander", "Alexandra", "Alice", "Andrew", "Angela", "Anthony", "Barbara", "Brian",
        "Carol", "Charles", "Christopher", "Daniela", "Deborah", "Donald", "Dorothy", "Edward",
        "Elizabeth", "Emily", "Emma", "Eric", "George", "Helen", "James", "Jason", "Jennifer",
        "Jessica", "John", "Jonathan", "Joseph", "Joshua", "Karen", "Kathy", "Kenneth", "Kevin",
        "Laura", "Linda", "Margaret", "Mark", "Mary", "Matthew", "Melissa", "Michelle", "Nancy",
        "Patricia", "Rachel", "Rebecca", "Richard", "Ronald", "Ruth", "Samantha", "Scott",
        "Sharon", "Sophia", "Stephen", "Steven", "Susan", "Timothy", "William",
    )
)

SPEAKER_SECTION_PATTERNS = [
    re.compile(r"\b(speakers?|referent(?:en|innen)?|sprecher|faculty|presenters?|panelists?|moderator|keynote)\b", re.IGNORECASE),
    re.compile(r"\b(about\s+(?:the\s+)?speakers?|über\s+(?:die\s+)?referenten?)\b", re.IGNORECASE),
    re.compile(
        r"\b(meet\s+(?:the\s+)?(?:speakers?|team)|lernen\s+sie\s+(?:die\s+)?referenten?\s+kennen)\b",
        re.IGNORECASE,
    ),
]


@dataclass(frozen=True)
class PersonCheck:
    """Outcome of person validation."""

    ok: bool
    reasons: list[str] = field(default_factory=list)


def is_likely_person(name: str, role: str | None = None, org: str | None = None) -> PersonCheck:
    """Decide whether an extracted speaker name belongs to a person.

    Hard rejects come first (UI labels, session titles, organizations, overly
    long strings, single words without an honorific). A name then passes if
    it has the shape of a person's name or contains a common given name.

    Args:
        name: Extracted speaker name
        role: Optional job title
        org: Optional organization

    Returns:
        PersonCheck with the decision and the reasons behind it
    """
    n = (name or "").strip()
    if len(n) < 4:
        return PersonCheck(False, ["empty_or_short"])
    if UI_ELEMENTS.search(n):
        return PersonCheck(False, ["ui_element"])
    if ACTION_VERBS.search(n):
        return PersonCheck(False, ["action_verb_phrase"])
    if NON_PERSON_TERMS.search(n):
        return PersonCheck(False, ["non_person_keyword"])
    if ORG_SUFFIX.search(n):
        return PersonCheck(False, ["org_suffix_in_name"])

    words = n.split()
    if len(words) > 4 or len(n) > 50:
        return PersonCheck(False, ["name_too_long"])
    has_honorific = bool(HONORIFICS.search(n))
    if len(words) < 2 and not has_honorific:
        return PersonCheck(False, ["single_word_name"])

    reasons = []
    name_like = bool(NAME_PATTERN.match(n)) or has_honorific
    if not name_like:
        reasons.append("fails_name_shape")

    tokens = {w.strip(".,").lower() for w in words}
    has_given = bool(tokens & GIVEN_NAMES)
    if name_like and not has_given:
        reasons.append("no_common_given_name")

    if org and ORG_SUFFIX.search(org):
        reasons.append("org_field_has_org_suffix")

    return PersonCheck(name_like or has_given, reasons or ["passed"])


def filter_speakers(raw: list[Speaker]) -> list[Speaker]:
    """Keep speakers that look like people, deduplicated by lowercase name."""
    seen: set[str] = set()
    kept: list[Speaker] = []
    for speaker in raw:
        key = speaker.name.lower().strip()
        if not key or key in seen:
            continue
        check = is_likely_person(speaker.name, speaker.role, speaker.org)
        if check.ok:
            seen.add(key)
            kept.append(speaker)
        else:
            logger.debug("Filtered speaker %r (%s)", speaker.name, ", ".join(check.reasons))
    return kept


def is_speaker_section(text: str) -> bool:
    """Check whether a heading or line introduces speaker content."""
    return any(pattern.search(text or "") for pattern in SPEAKER_SECTION_PATTERNS)
