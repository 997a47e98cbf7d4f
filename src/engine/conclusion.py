"""
Conclusion synthesizer -- turns the final ResultShape into a sentence.

Deterministic for aggregate shapes (no model call):
  Scalar              -> "There are N <population> in the database."
  BinaryDistribution  -> both counts with percentages summing to 100
  CategoryCountList   -> top category plus a breakdown; percentages use
                         largest-remainder rounding so they sum to 100.0
  Empty               -> "no matching data" sentence naming the criteria

RecordList / Unknown get one model call with a bounded sample of the rows and
a structured JSON reply {isValid, conclusion, improvedQuery, explanation}.
Any failure there falls back to a plain "returned N results" sentence.
"""
from __future__ import annotations

import json
import math
import re
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from src.core.utils import call_with_timeout
from src.engine.intent import Intent, QueryType, describe_population
from src.engine.results import (
    BinaryDistribution,
    CategoryCountList,
    Empty,
    RecordList,
    ResultShape,
    Scalar,
    Unknown,
)
from src.engine.synthesizer import Generate, clean_query
from src.core.logging import get_logger

logger = get_logger(__name__)

_SAMPLE_THRESHOLD = 10
_SAMPLE_EDGE = 3


@dataclass
class Conclusion:
    text: str
    explanation: str = ""
    is_valid: bool = True
    improved_query: str | None = None
    source: str = "deterministic"  # deterministic | model | fallback


class ResultAnalysis(BaseModel):
    """Structured reply expected from the model for record-list results."""

    model_config = ConfigDict(populate_by_name=True)

    is_valid: bool = Field(True, alias="isValid")
    conclusion: str = ""
    improved_query: str | None = Field(None, alias="improvedQuery")
    explanation: str = ""


# ── Number formatting ────────────────────────────────────

def _fmt(value: float | int) -> str:
    if isinstance(value, float) and not value.is_integer():
        return f"{value:,.2f}"
    return f"{int(value):,}"


def percentages(counts: list[float | int]) -> list[float]:
    """Percent shares to one decimal, summing to exactly 100.0 (largest remainder)."""
    total = sum(counts)
    if total <= 0:
        return [0.0 for _ in counts]
    exact = [c * 1000 / total for c in counts]
    units = [math.floor(x) for x in exact]
    short = 1000 - sum(units)
    by_remainder = sorted(range(len(counts)), key=lambda i: exact[i] - units[i], reverse=True)
    for i in by_remainder[:short]:
        units[i] += 1
    return [u / 10 for u in units]


# ── Deterministic conclusions ────────────────────────────

def _scalar(shape: Scalar, intent: Intent) -> Conclusion:
    population = describe_population(intent)
    if intent.query_type is QueryType.COUNT:
        return Conclusion(
            text=f"There are {_fmt(shape.value)} {population} in the database.",
            explanation=f"The query correctly returned a count of {population}.",
        )
    return Conclusion(
        text=f"The result is {_fmt(shape.value)}.",
        explanation="The query returned a single numeric value.",
    )


def _binary_label(label: str) -> str:
    return {
        "m": "male patients",
        "male": "male patients",
        "f": "female patients",
        "female": "female patients",
    }.get(label, f"{label} patients")


def _binary(shape: BinaryDistribution, intent: Intent) -> Conclusion:
    total = shape.a + shape.b
    if total <= 0:
        return Conclusion(
            text=f"There are no {describe_population(intent)} in the database.",
            explanation="Both counts in the distribution are zero.",
        )
    first = round(shape.a * 100 / total, 1)
    second = round(100 - first, 1)
    la, lb = (_binary_label(label) for label in shape.labels)
    return Conclusion(
        text=(
            f"There are {_fmt(shape.a)} {la} ({first}%) and "
            f"{_fmt(shape.b)} {lb} ({second}%)."
        ),
        explanation=f"The query returned a two-way distribution over {_fmt(total)} patients.",
    )


def _category_list(shape: CategoryCountList, intent: Intent) -> Conclusion:
    items = sorted(shape.items, key=lambda item: item.count, reverse=True)
    shares = percentages([item.count for item in items])
    top, top_share = items[0], shares[0]
    breakdown = ", ".join(
        f"{item.category}: {_fmt(item.count)} ({share}%)" for item, share in zip(items, shares)
    )
    population = describe_population(intent)
    return Conclusion(
        text=(
            f"The most common {shape.field} among {population} is '{top.category}' with "
            f"{_fmt(top.count)} patients ({top_share}%). Breakdown: {breakdown}."
        ),
        explanation=f"The query grouped {population} by {shape.field} into {len(items)} categories.",
    )


def _empty(intent: Intent) -> Conclusion:
    f = intent.filters
    message = "The query returned no results. "
    if intent.keywords and f.year:
        message += (
            f"There appear to be no patients with {', '.join(intent.keywords)} "
            f"born in {f.year} in the database."
        )
    elif f.year:
        message += f"There appear to be no patients born in {f.year} in the database."
    elif intent.keywords:
        message += f"There appear to be no patients with {', '.join(intent.keywords)} matching your criteria."
    elif f:
        message += f"There appear to be no {describe_population(intent)} in the database."
    else:
        message += "There may not be any data matching your criteria."
    return Conclusion(text=message, explanation="No matching data was found.")


# ── Model-assisted conclusions ───────────────────────────

def sample_rows(rows: list[Any]) -> list[Any]:
    """First 3 + '...' + last 3 rows for large result sets, else all rows."""
    if len(rows) > _SAMPLE_THRESHOLD:
        return rows[:_SAMPLE_EDGE] + ["..."] + rows[-_SAMPLE_EDGE:]
    return list(rows)


def analysis_prompt(question: str, query: str, rows: list[Any], intent: Intent) -> str:
    filters = ", ".join(f"{k}={v}" for k, v in intent.filters.items()) or "none"
    formatted = json.dumps(sample_rows(rows), indent=2, default=str)
    return f"""You are a medical database expert. Analyze these query results to determine if they correctly answer the user's question.

USER QUERY: "{question}"

EXECUTED AQL QUERY:
{query}

QUERY RESULTS ({len(rows)} total results):
{formatted}

QUERY INTENT ANALYSIS:
- Query type: {intent.query_type.value}
- Keywords: {', '.join(intent.keywords) or 'none'}
- Filters: {filters}
- General query: {'yes' if intent.is_general_query else 'no'}

Analyze if the results correctly answer the user's question. Pay attention to:
1. For "how many" questions, results should be a count (single number), not a list of records
2. Results should match all filters (year, gender, race, etc.) mentioned in the query
3. For condition queries, verify the results include condition information

Respond in this structured format:
{{
  "isValid": true/false,
  "conclusion": "Natural language conclusion about the results that directly answers the user's question",
  "improvedQuery": "If the current query is wrong, provide a corrected AQL query, otherwise leave empty",
  "explanation": "Explain why the results are valid or invalid, and how they answer the original question"
}}
"""


_JSON_FENCE_RE = re.compile(r"```json\s*(.*?)```", re.DOTALL | re.IGNORECASE)
_ANY_FENCE_RE = re.compile(r"```(.*?)```", re.DOTALL)


def extract_json_object(text: str) -> str:
    """Best-effort JSON object text: ```json block, then any fenced object, then first '{' to last '}'."""
    m = _JSON_FENCE_RE.search(text)
    if m:
        return m.group(1).strip()
    for block in _ANY_FENCE_RE.findall(text):
        block = block.strip()
        if block.startswith("{") and block.endswith("}"):
            return block
    start, end = text.find("{"), text.rfind("}")
    if start != -1 and end > start:
        return text[start:end + 1]
    return text


def parse_analysis(text: str) -> ResultAnalysis | None:
    try:
        return ResultAnalysis.model_validate(json.loads(extract_json_object(text)))
    except (json.JSONDecodeError, ValidationError, TypeError) as exc:
        logger.warning("Could not parse result analysis: %s", exc)
        return None


def _fallback(rows: list[Any]) -> Conclusion:
    text = f"The query returned {len(rows)} results." if rows else "No results found for your query."
    return Conclusion(
        text=text,
        explanation="Unable to analyze results in detail.",
        is_valid=bool(rows),
        source="fallback",
    )


def _model_assisted(
    rows: list[Any],
    intent: Intent,
    question: str,
    query: str,
    generate: Generate | None,
    timeout: float | None,
) -> Conclusion:
    if generate is None:
        return _fallback(rows)
    prompt = analysis_prompt(question, query, rows, intent)
    try:
        if timeout is not None:
            reply = call_with_timeout(generate, prompt, timeout=timeout)
        else:
            reply = generate(prompt)
    except Exception as exc:
        logger.warning("Result analysis call failed: %s", exc)
        return _fallback(rows)

    analysis = parse_analysis(reply or "")
    if analysis is None or not analysis.conclusion:
        return _fallback(rows)

    improved = clean_query(analysis.improved_query) if analysis.improved_query else ""
    return Conclusion(
        text=analysis.conclusion,
        explanation=analysis.explanation,
        is_valid=analysis.is_valid,
        improved_query=improved or None,
        source="model",
    )


# ── Public API ───────────────────────────────────────────

def conclude(
    shape: ResultShape,
    intent: Intent,
    *,
    question: str = "",
    query: str = "",
    generate: Generate | None = None,
    timeout: float | None = None,
    broadened: bool = False,
) -> Conclusion:
    """Produce the natural-language conclusion for the final result.

    A *broadened* result was fetched without the condition filter, so the
    condition keywords are left out of the population it describes.
    """
    if broadened:
        intent = intent.model_copy(update={"keywords": ()})
    if isinstance(shape, Scalar):
        return _scalar(shape, intent)
    if isinstance(shape, BinaryDistribution):
        return _binary(shape, intent)
    if isinstance(shape, CategoryCountList):
        return _category_list(shape, intent)
    if isinstance(shape, Empty):
        return _empty(intent)
    if isinstance(shape, RecordList):
        return _model_assisted(list(shape.records), intent, question, query, generate, timeout)
    if isinstance(shape, Unknown):
        raw = shape.raw if isinstance(shape.raw, list) else [shape.raw]
        return _model_assisted(raw, intent, question, query, generate, timeout)
    raise TypeError(f"Unsupported result shape: {type(shape).__name__}")
