"""
Prompt builder -- assembles the text sent to the generation service.

First attempt:
  role line, question, schema + numbered examples, at most one guidance
  block (priority: count > general query > exact phrase > complex), rules.

Later attempts:
  previous query, failure reason, "attempt i out of N", schema, then any
  directives that apply (count shape, staged join after a timeout,
  broadening after repeated empty results), rules.
"""
from __future__ import annotations

from textwrap import indent
from typing import TYPE_CHECKING

from src.catalog.schema_provider import (
    EXAMPLE_COUNT,
    EXAMPLE_DEMOGRAPHIC_LIST,
    EXAMPLE_GENDER_DISTRIBUTION,
    EXAMPLE_GROUP_COUNT,
    EXAMPLE_STAGED,
    EXAMPLE_YEAR_LIST,
    schema_prompt_text,
)
from src.engine.intent import Complexity, Intent, IntentFilters, QueryType
from src.engine.patterns import broadened_query, intent_count_query, staged_condition_query
from src.engine.results import RecordList, Unknown
from src.core.logging import get_logger

if TYPE_CHECKING:
    from src.engine.refinement import AttemptRecord

logger = get_logger(__name__)

ROLE_LINE = (
    "You're a database expert. Transform this question into a proper AQL query "
    "for an ArangoDB medical database:"
)
RETRY_ROLE_LINE = (
    "You're a database expert. The following AQL query didn't produce the expected results:"
)

FIRST_TRAILER = "AQL QUERY:"
RETRY_TRAILER = "IMPROVED AQL QUERY:"

# Markers tests and logs can look for
COUNT_DIRECTIVE_MARKER = "CRITICAL ERROR"
STAGED_DIRECTIVE_MARKER = "TIMEOUT"
ESCALATION_DIRECTIVE_MARKER = "BROADEN THE QUERY"

RULES: tuple[str, ...] = (
    "Provide ONLY the working AQL query, nothing else",
    "All node types (patient, condition, etc.) are lowercase",
    "All properties (GENDER, RACE, etc.) are UPPERCASE",
    "For gender, use 'M' and 'F', not 'Male' and 'Female'",
    "When listing patients without a gender filter, include: FILTER node.GENDER == 'M' OR node.GENDER == 'F'",
    "Return properties with their original case (birthdate: node.BIRTHDATE)",
    "Don't use terms like \"white\" as gender values, they are race values",
    "For year specific queries (like birth year), use CONTAINS or LIKE on BIRTHDATE",
    "For condition queries, always use LOWER() with CONTAINS() or LIKE for case-insensitive matching",
    "When traversing relationships, use the edge collection MedGraph_node_to_MedGraph_node",
    f"For queries involving conditions and patients, use the optimized staged pattern from example #{EXAMPLE_STAGED}",
    "Break down complex queries into stages using LET statements for better performance",
    "For conditions AND birth years, resolve the conditions first and apply the year filter last",
    f"For distribution analytics, use COLLECT with COUNT as shown in example #{EXAMPLE_GROUP_COUNT}",
    "If the question asks for patients born in a year WITHOUT mentioning conditions, "
    f"query patients directly (example #{EXAMPLE_YEAR_LIST})",
    "For \"how many\" questions, return COUNT or LENGTH, not a list of records",
)


def _rules_block() -> str:
    lines = ["IMPORTANT RULES:"]
    lines.extend(f"{i}. {rule}" for i, rule in enumerate(RULES, start=1))
    return "\n".join(lines)


def _filters_text(filters: IntentFilters) -> str:
    return ", ".join(f"{k}={v}" for k, v in filters.items()) or "none"


# ── First-attempt guidance ───────────────────────────────

def _count_guidance(intent: Intent) -> str:
    example = intent_count_query(intent)
    return "\n".join([
        "IMPORTANT CONTEXT:",
        "- This is a COUNT question - you must return a COUNT, not a list of records",
        "- Use LENGTH() or COUNT() so the query returns a single number or an object with count properties",
        f"- For breakdowns by gender see example #{EXAMPLE_GENDER_DISTRIBUTION}; "
        f"by race or other attributes see example #{EXAMPLE_GROUP_COUNT}",
        f"- A correct count query for this question looks like (example #{EXAMPLE_COUNT}):",
        indent(example, "    "),
        "- DO NOT just return a list of nodes or IDs for count queries",
    ])


def _general_guidance(intent: Intent) -> str:
    year = intent.filters.year
    born = f" born in {year}" if year else ""
    return "\n".join([
        "IMPORTANT CONTEXT:",
        "- This is a general question about patients, not about a specific condition",
        f"- The user is asking for patient information{born}",
        "- Use a SIMPLE direct query that just filters patients; DO NOT join with conditions",
        f"- A query like example #{EXAMPLE_DEMOGRAPHIC_LIST} or #{EXAMPLE_YEAR_LIST} works best here",
    ])


def _exact_phrase_guidance(intent: Intent) -> str:
    return "\n".join([
        "IMPORTANT CONTEXT:",
        f"- This is a specific question about patients born in {intent.filters.year}",
        "- The user DOES NOT appear to be looking for patients with specific conditions",
        f"- Use a SIMPLE direct query that filters patients by birth year (example #{EXAMPLE_YEAR_LIST})",
    ])


def _complex_guidance(intent: Intent) -> str:
    return "\n".join([
        "ADDITIONAL CONTEXT:",
        f"- This appears to be a {intent.query_type.value} query",
        f"- It involves these medical terms: {', '.join(intent.keywords) or 'none'}",
        f"- It includes these filters: {_filters_text(intent.filters)}",
        f"- For complex queries with multiple filters, use the optimized staged pattern from example #{EXAMPLE_STAGED}",
    ])


def select_guidance(intent: Intent) -> str | None:
    """At most one guidance block, by priority count > general > exact phrase > complex."""
    if intent.query_type is QueryType.COUNT:
        return _count_guidance(intent)
    if intent.is_general_query:
        return _general_guidance(intent)
    if intent.is_exact_phrase and intent.filters.year and not intent.keywords:
        return _exact_phrase_guidance(intent)
    if intent.complexity is Complexity.COMPLEX:
        return _complex_guidance(intent)
    return None


# ── Retry directives ─────────────────────────────────────

def _count_directive(intent: Intent) -> str:
    return "\n".join([
        f"{COUNT_DIRECTIVE_MARKER}: The previous query returned a list of records, but this is a counting question.",
        "The query must return a single number or an object with count properties.",
        "Use a query like:",
        indent(intent_count_query(intent), "    "),
        "DO NOT just return a list of nodes or IDs - that would be incorrect for a count query.",
    ])


def _staged_directive(intent: Intent) -> str:
    keyword = intent.keywords[0] if intent.keywords else "condition"
    staged = staged_condition_query(
        keyword,
        intent.filters,
        count=intent.query_type is QueryType.COUNT,
    )
    return "\n".join([
        f"{STAGED_DIRECTIVE_MARKER}: The previous query took too long and was stopped.",
        "Do NOT repeat a naive multi-level traversal. Use the staged pattern instead:",
        "1. Resolve the matching condition nodes first with a LET sub-query",
        "2. Follow ENCOUNTER_CONDITION edges to the encounter",
        "3. Follow PATIENT_ENCOUNTER edges to the patient",
        "4. Apply the year and other demographic filters LAST",
        f"For this question (see example #{EXAMPLE_STAGED}):",
        indent(staged, "    "),
    ])


def _escalation_directive(intent: Intent) -> str:
    terms = ", ".join(intent.keywords) or "the requested condition"
    kept = _filters_text(intent.filters)
    return "\n".join([
        f"{ESCALATION_DIRECTIVE_MARKER}: Several queries in a row found no results. "
        f"There might not be any {terms} patients matching every filter.",
        f"Drop the condition filter ({terms}) and keep the other filters ({kept}),",
        "so we can tell 'no such data' apart from 'wrong query'. For example:",
        indent(broadened_query(intent), "    "),
    ])


def _needs_count_directive(intent: Intent, last_attempt: AttemptRecord | None) -> bool:
    if intent.query_type is not QueryType.COUNT or last_attempt is None:
        return False
    return isinstance(last_attempt.shape, (RecordList, Unknown))


# ── Public API ───────────────────────────────────────────

def build_prompt(
    intent: Intent,
    question: str,
    attempt: int,
    *,
    last_attempt: AttemptRecord | None = None,
    reason: str | None = None,
    escalate: bool = False,
    max_attempts: int = 8,
) -> str:
    """Build the prompt for attempt number *attempt* (1-based)."""
    schema = schema_prompt_text()

    if attempt <= 1 or last_attempt is None:
        parts = [ROLE_LINE, f"Question: {question}", schema]
        guidance = select_guidance(intent)
        if guidance:
            parts.append(guidance)
        parts += [_rules_block(), FIRST_TRAILER]
        logger.debug("Built first-attempt prompt (%d parts)", len(parts))
        return "\n\n".join(parts)

    parts = [
        RETRY_ROLE_LINE,
        f"QUERY:\n{last_attempt.query_text}",
        f"ORIGINAL QUESTION: {question}",
        f"ERROR/ISSUE: {reason or 'The result did not answer the question.'}",
        f"This is attempt {attempt} out of {max_attempts}. "
        "Please generate an improved AQL query that will correctly answer the question.",
        schema,
    ]
    directives: list[str] = []
    if _needs_count_directive(intent, last_attempt):
        parts.append(_count_directive(intent))
        directives.append("count")
    if last_attempt.timed_out:
        parts.append(_staged_directive(intent))
        directives.append("staged")
    if escalate:
        parts.append(_escalation_directive(intent))
        directives.append("escalate")
    parts += [_rules_block(), RETRY_TRAILER]

    logger.info("Built retry prompt attempt=%d directives=%s", attempt, directives or "none")
    return "\n\n".join(parts)
