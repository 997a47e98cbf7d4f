"""
Pattern matcher -- ready-made AQL for well-known question shapes.

Recognised shapes (checked in order):
  a) condition + birth year  -> staged join: conditions, then encounters,
     then patients, demographic filters applied last
  b) count over a demographic attribute ("distribution", "most common", "by")
  c) simple count with demographic filters only
  d) general patient listing without a condition -> direct filtered scan

Anything else returns None and the caller falls through to the model-driven
refinement loop.  The same builders supply the staged query used in timeout
directives and the fixed default query at the end of the synthesis fallback
chain, plus the count and broadened variants used in prompt directives.
"""
from __future__ import annotations

import json
import re

from src.catalog.schema_provider import load_schema
from src.core.config import get_settings
from src.engine.intent import Intent, IntentFilters, QueryType
from src.core.logging import get_logger

logger = get_logger(__name__)

_DISTRIBUTION_PHRASES = ("distribution", "breakdown", "most common", " by ")

# (attribute, property, trigger words) -- first trigger found wins
_GROUP_ATTRIBUTES: list[tuple[str, str, tuple[str, ...]]] = [
    ("gender", "GENDER", ("gender", "sex")),
    ("race", "RACE", ("race", "races")),
    ("ethnicity", "ETHNICITY", ("ethnicity", "ethnicities")),
]

_LIMIT_RE = re.compile(
    r"\b(?:list|show|get|display|find|give me|top|first)\s+(\d{1,4})\b|\b(\d{1,4})\s+patients\b"
)


def _lit(value: str) -> str:
    """AQL string literal."""
    return json.dumps(value)


def _patient_filters(var: str, filters: IntentFilters) -> list[str]:
    lines: list[str] = []
    if filters.gender:
        lines.append(f"FILTER {var}.GENDER == {_lit(filters.gender)}")
    if filters.race:
        lines.append(f"FILTER CONTAINS(LOWER({var}.RACE), {_lit(filters.race.lower())})")
    if filters.year:
        lines.append(f"FILTER CONTAINS(SUBSTRING({var}.BIRTHDATE, 0, 4), {_lit(filters.year)})")
    return lines


def requested_limit(question: str) -> int:
    """Row limit asked for in the question ('list 10 patients'), capped at the list limit."""
    cap = get_settings().list_row_limit
    m = _LIMIT_RE.search(question.lower())
    if not m:
        return cap
    n = int(m.group(1) or m.group(2))
    return max(1, min(n, cap))


# ── Query builders ───────────────────────────────────────

def direct_patient_scan(filters: IntentFilters, limit: int | None = None) -> str:
    """Filter patient nodes directly; no joins."""
    schema = load_schema()
    limit = limit or get_settings().list_row_limit
    lines = [
        f"FOR node IN {schema.node_collection}",
        "  FILTER node.type == 'patient'",
    ]
    if not filters.gender:
        lines.append("  FILTER node.GENDER == 'M' OR node.GENDER == 'F'")
    lines.extend(f"  {f}" for f in _patient_filters("node", filters))
    lines += [
        "  SORT node.BIRTHDATE DESC",
        f"  LIMIT {limit}",
        "  RETURN { id: node.ID, gender: node.GENDER, birthdate: node.BIRTHDATE, race: node.RACE }",
    ]
    return "\n".join(lines)


def count_query(filters: IntentFilters) -> str:
    schema = load_schema()
    lines = [
        "RETURN LENGTH(",
        f"  FOR node IN {schema.node_collection}",
        "    FILTER node.type == 'patient'",
    ]
    lines.extend(f"    {f}" for f in _patient_filters("node", filters))
    lines += ["    RETURN 1", ")"]
    return "\n".join(lines)


def distribution_query(attribute: str, filters: IntentFilters) -> str:
    """Group patients by *attribute*; gender yields a {male, female} object."""
    schema = load_schema()
    extra = " ".join(_patient_filters("node", filters))
    extra = f" {extra}" if extra else ""
    if attribute == "gender":
        def side(code: str) -> str:
            return (
                f"LENGTH(FOR node IN {schema.node_collection} "
                f"FILTER node.type == 'patient' AND node.GENDER == '{code}'{extra} RETURN 1)"
            )
        return f"RETURN {{\n  male: {side('M')},\n  female: {side('F')}\n}}"

    prop = next(p for name, p, _ in _GROUP_ATTRIBUTES if name == attribute)
    lines = [
        f"FOR node IN {schema.node_collection}",
        "  FILTER node.type == 'patient'",
    ]
    lines.extend(f"  {f}" for f in _patient_filters("node", filters))
    lines += [
        f"  COLLECT {attribute} = node.{prop} WITH COUNT INTO total",
        "  SORT total DESC",
        f"  RETURN {{ {attribute}: {attribute}, count: total }}",
    ]
    return "\n".join(lines)


def staged_condition_query(
    keyword: str,
    filters: IntentFilters,
    *,
    count: bool = False,
    limit: int | None = None,
) -> str:
    """Staged join: resolve conditions first, then encounters, then patients.

    The condition set is the most selective entity class, so it is materialised
    first; demographic filters run only on the patients reached from it.
    """
    schema = load_schema()
    nodes, edges = schema.node_collection, schema.edge_collection
    limit = limit or get_settings().list_row_limit

    header = [
        f"LET entity = {_lit(keyword)}",
        "LET matching_conditions = (",
        f"  FOR doc IN {nodes}",
        '    FILTER doc.type == "condition"',
        '    FILTER LOWER(doc.DESCRIPTION) LIKE CONCAT("%", LOWER(entity), "%")',
        "    LIMIT 10000",
        "    RETURN doc",
        ")",
    ]
    body = [
        "FOR condition IN matching_conditions",
        "  LET encounter_edges = (",
        f"    FOR enc_edge IN {edges}",
        "      FILTER enc_edge._to == condition._id",
        "      FILTER enc_edge.relationship_type == 'ENCOUNTER_CONDITION'",
        "      LIMIT 2",
        "      RETURN enc_edge",
        "  )",
        "  FILTER LENGTH(encounter_edges) > 0",
        "  LET encounter = DOCUMENT(encounter_edges[0]._from)",
        "  LET patient_edges = (",
        f"    FOR pat_edge IN {edges}",
        "      FILTER pat_edge._to == encounter._id",
        "      FILTER pat_edge.relationship_type == 'PATIENT_ENCOUNTER'",
        "      LIMIT 1",
        "      RETURN pat_edge",
        "  )",
        "  FILTER LENGTH(patient_edges) > 0",
        "  LET patient = DOCUMENT(patient_edges[0]._from)",
        "  FILTER patient.type == 'patient'",
    ]
    body.extend(f"  {f}" for f in _patient_filters("patient", filters))

    if count:
        body += ["  COLLECT patient_id = patient.ID", "  RETURN patient_id"]
        return "\n".join(header + ["RETURN LENGTH("] + [f"  {ln}" for ln in body] + [")"])

    body += [
        f"  LIMIT {limit}",
        "  RETURN DISTINCT {",
        "    id: patient.ID,",
        "    gender: patient.GENDER,",
        "    birthdate: patient.BIRTHDATE,",
        "    race: patient.RACE,",
        "    condition: condition.DESCRIPTION",
        "  }",
    ]
    return "\n".join(header + body)


def intent_count_query(intent: Intent) -> str:
    """Count of the population *intent* describes, condition keyword included."""
    if intent.keywords:
        return staged_condition_query(intent.keywords[0], intent.filters, count=True)
    return count_query(intent.filters)


def broadened_query(intent: Intent) -> str:
    """*intent* with its condition dropped; demographic filters and the answer form stay."""
    if intent.query_type is QueryType.COUNT:
        return count_query(intent.filters)
    return direct_patient_scan(intent.filters)


# ── Shape recognition ────────────────────────────────────

def distribution_attribute(question: str) -> str | None:
    """Attribute a distribution-style question groups by, if any."""
    q = f" {question.lower()} "
    if not any(p in q for p in _DISTRIBUTION_PHRASES):
        return None
    for name, _prop, triggers in _GROUP_ATTRIBUTES:
        if any(re.search(rf"\b{t}\b", q) for t in triggers):
            return name
    return None


def _asks_distribution(question: str) -> bool:
    q = f" {question.lower()} "
    return any(p in q for p in _DISTRIBUTION_PHRASES)


def match_pattern(intent: Intent, question: str) -> str | None:
    """Return a ready-to-run query for a recognised question shape, else None."""
    query: str | None = None
    shape = "none"

    if intent.query_type is QueryType.ANALYSIS:
        pass
    elif intent.has_condition_and_year:
        query = staged_condition_query(
            intent.keywords[0],
            intent.filters,
            count=intent.query_type is QueryType.COUNT,
            limit=requested_limit(question),
        )
        shape = "condition+year"
    elif intent.keywords:
        pass
    elif intent.query_type is QueryType.COUNT:
        attribute = distribution_attribute(question)
        if attribute:
            query = distribution_query(attribute, intent.filters)
            shape = f"distribution:{attribute}"
        elif not _asks_distribution(question):
            query = count_query(intent.filters)
            shape = "simple-count"
    elif intent.is_general_query:
        query = direct_patient_scan(intent.filters, limit=requested_limit(question))
        shape = "direct-scan"

    logger.info("Pattern matcher -> %s", shape)
    return query


def default_query(intent: Intent) -> str:
    """Fixed last-resort query used when neither the model nor a pattern produced one.

    Condition keywords and demographic filters are always carried over, so a
    fallback answer counts or lists the population that was asked about.
    """
    if intent.query_type is QueryType.COUNT:
        if intent.keywords or intent.filters:
            return intent_count_query(intent)
        return distribution_query("gender", IntentFilters())
    if intent.keywords:
        return staged_condition_query(intent.keywords[0], intent.filters)
    return direct_patient_scan(intent.filters)
