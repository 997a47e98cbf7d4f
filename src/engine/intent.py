"""
Intent classifier -- turns a raw question into a structured, immutable Intent.

Pure and deterministic: no network calls, case-insensitive rule tables
evaluated in a fixed order.  Each field is decided independently; within a
field the first matching rule wins.

Gender precedence: when both male and female terms appear, male wins.
"""
from __future__ import annotations

import re
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from src.engine.errors import InvalidInput
from src.core.logging import get_logger

logger = get_logger(__name__)


class QueryType(str, Enum):
    COUNT = "count"
    DATA_LIST = "data"
    ANALYSIS = "analysis"


class Complexity(str, Enum):
    SIMPLE = "simple"
    MODERATE = "moderate"
    COMPLEX = "complex"


class IntentFilters(BaseModel):
    """Demographic filters extracted from the question."""

    model_config = ConfigDict(frozen=True)

    gender: str | None = Field(None, description="'M' or 'F'")
    race: str | None = Field(None, description="Lower-case race term, e.g. 'white'")
    year: str | None = Field(None, description="Four-digit birth year")

    def items(self) -> list[tuple[str, str]]:
        """Declared filters in a fixed order (gender, race, year)."""
        return [(k, v) for k, v in (("gender", self.gender), ("race", self.race), ("year", self.year)) if v]

    def __bool__(self) -> bool:
        return bool(self.items())


class Intent(BaseModel):
    """Structured classification of one question.  Built once, never mutated."""

    model_config = ConfigDict(frozen=True)

    query_type: QueryType
    keywords: tuple[str, ...] = ()
    filters: IntentFilters = Field(default_factory=IntentFilters)
    complexity: Complexity = Complexity.SIMPLE
    is_general_query: bool = False
    is_exact_phrase: bool = False

    @property
    def has_condition_and_year(self) -> bool:
        return bool(self.keywords) and self.filters.year is not None


# ── Rule tables ──────────────────────────────────────────

# (query type, phrases that must start the question, phrases anywhere in it);
# both match whole words only
_QUERY_TYPE_RULES: list[tuple[QueryType, tuple[str, ...], tuple[str, ...]]] = [
    (
        QueryType.COUNT,
        ("how many", "count", "number of", "what is the number"),
        ("how many", "count", "number of", "most common", "distribution", "breakdown"),
    ),
    (
        QueryType.ANALYSIS,
        (),
        ("analyze", "analyse", "trend", "trends", "pattern", "patterns", "compare"),
    ),
]

# Clinical condition vocabulary; a term is only ever taken from the text itself
CONDITION_TERMS: tuple[str, ...] = (
    "diabetes",
    "hypertension",
    "otitis",
    "asthma",
    "heart disease",
    "cardiac",
    "cancer",
    "arthritis",
    "sinusitis",
    "bronchitis",
    "pharyngitis",
    "pneumonia",
    "obesity",
    "anemia",
    "hyperlipidemia",
)

_GENDER_RULES: list[tuple[str, re.Pattern[str]]] = [
    ("M", re.compile(r"\b(?:male|males|men|man)\b")),
    ("F", re.compile(r"\b(?:female|females|women|woman)\b")),
]

RACE_TERMS: tuple[str, ...] = ("white", "black", "asian", "hispanic", "native", "hawaiian")

_YEAR_RE = re.compile(r"\b(?:19|20)\d{2}\b")

_GENERAL_PREFIXES: tuple[str, ...] = ("list", "show", "get", "display", "find", "give")
_GENERAL_PHRASES: tuple[str, ...] = ("born in",)

_EXACT_PHRASES: tuple[str, ...] = (
    "list the patient",
    "show me patient",
    "patients born in",
    "who were born in",
)


def _term_re(term: str) -> re.Pattern[str]:
    return re.compile(rf"\b{re.escape(term)}\b")


def _phrases_re(phrases: tuple[str, ...], *, anchored: bool = False) -> re.Pattern[str] | None:
    if not phrases:
        return None
    body = "|".join(re.escape(p) for p in phrases)
    return re.compile(rf"^(?:{body})\b" if anchored else rf"\b(?:{body})\b")


_QUERY_TYPE_RES = [
    (qtype, _phrases_re(prefixes, anchored=True), _phrases_re(phrases))
    for qtype, prefixes, phrases in _QUERY_TYPE_RULES
]

_CONDITION_RES = [(t, _term_re(t)) for t in CONDITION_TERMS]
_RACE_RES = [(t, _term_re(t)) for t in RACE_TERMS]


# ── Field extractors ─────────────────────────────────────

def _query_type(q: str) -> QueryType:
    for qtype, *patterns in _QUERY_TYPE_RES:
        if any(p is not None and p.search(q) for p in patterns):
            return qtype
    return QueryType.DATA_LIST


def _keywords(q: str) -> tuple[str, ...]:
    return tuple(term for term, pattern in _CONDITION_RES if pattern.search(q))


def _gender(q: str) -> str | None:
    for code, pattern in _GENDER_RULES:
        if pattern.search(q):
            return code
    return None


def _race(q: str) -> str | None:
    for term, pattern in _RACE_RES:
        if pattern.search(q):
            return term
    return None


def _year(q: str) -> str | None:
    m = _YEAR_RE.search(q)
    return m.group(0) if m else None


def _complexity(keywords: tuple[str, ...], filters: IntentFilters) -> Complexity:
    if keywords and filters:
        return Complexity.COMPLEX
    if keywords or filters:
        return Complexity.MODERATE
    return Complexity.SIMPLE


# ── Public API ───────────────────────────────────────────

def classify_intent(question: str | None) -> Intent:
    """Classify *question* into an Intent.

    Raises
    ------
    InvalidInput
        If *question* is None, not a string, or blank.
    """
    if not isinstance(question, str) or not question.strip():
        raise InvalidInput("Question is empty -- please type a question about the medical data.")

    q = " ".join(question.lower().split())

    keywords = _keywords(q)
    filters = IntentFilters(gender=_gender(q), race=_race(q), year=_year(q))

    intent = Intent(
        query_type=_query_type(q),
        keywords=keywords,
        filters=filters,
        complexity=_complexity(keywords, filters),
        is_general_query=(
            (q.startswith(_GENERAL_PREFIXES) or any(p in q for p in _GENERAL_PHRASES))
            and not keywords
        ),
        is_exact_phrase=any(p in q for p in _EXACT_PHRASES),
    )
    logger.info("Intent -> %s", intent.model_dump_json())
    return intent


def describe_population(intent: Intent) -> str:
    """Noun phrase for the patients an intent selects, e.g. 'female patients born in 1990'."""
    f = intent.filters
    phrase = "patients"
    if f.gender == "M":
        phrase = "male patients"
    elif f.gender == "F":
        phrase = "female patients"
    if intent.keywords:
        phrase += f" with {', '.join(intent.keywords)}"
    if f.race:
        phrase += f" with race '{f.race}'"
    if f.year:
        phrase += f" born in {f.year}"
    return phrase


def describe_plan(intent: Intent) -> str:
    """One-sentence 'thought' shown before the answer."""
    population = describe_population(intent)
    if intent.query_type is QueryType.COUNT:
        return (
            "To answer this counting question, I need to query the MedGraph database "
            f"for statistics about {population}."
        )
    if intent.query_type is QueryType.DATA_LIST:
        if intent.has_condition_and_year:
            return (
                f"This question asks for {population}. "
                "I'll query the database using an optimized staged pattern."
            )
        if intent.keywords or intent.filters:
            return f"This question requires retrieving {population} from the database."
        return "This question requires retrieving specific patient records from the MedGraph database."
    return (
        "This question requires analyzing data patterns in the MedGraph database "
        "to identify trends and relationships."
    )
