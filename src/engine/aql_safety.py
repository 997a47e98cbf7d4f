"""
Deterministic AQL safety checks (non-LLM).

Final gate before any query string reaches ArangoDB.  Operates purely on the
query text.

Checks performed:
  1. Query must be non-empty and start with FOR / LET / RETURN / WITH
  2. No data-modification operations (INSERT, UPDATE, REPLACE, REMOVE, UPSERT)
  3. No multi-statement input (';' followed by more text)
  4. No prose left over from the model (e.g. "Here is the query")

String literals are blanked before keyword checks, so a filter such as
LIKE '%insert%' is not mistaken for a write.
"""
from __future__ import annotations

import re

from src.core.logging import get_logger

logger = get_logger(__name__)

# ── Compiled patterns ────────────────────────────────────

_STRING_LITERAL = re.compile(r"'(?:\\.|[^'\\])*'|\"(?:\\.|[^\"\\])*\"")

_WRITE_KW = re.compile(r"\b(INSERT|UPDATE|REPLACE|REMOVE|UPSERT|TRUNCATE|DROP)\b", re.IGNORECASE)

_START_KW = re.compile(r"^\s*(FOR|LET|RETURN|WITH)\b", re.IGNORECASE)

_MULTI_STMT = re.compile(r";\s*\S")

_PROSE = re.compile(r"^\s*(here is|here's|the following|this query|sure|certainly)\b", re.IGNORECASE)


def _blank_strings(query: str) -> str:
    return _STRING_LITERAL.sub("''", query)


def check_aql_safety(query: str) -> list[str]:
    """Return a list of safety violations (empty list = safe)."""
    errors: list[str] = []
    stripped = (query or "").strip()

    if not stripped:
        return ["Query is empty."]

    # ── 1. Read-only entry point ─────────────────────
    if _PROSE.search(stripped):
        errors.append("Query text starts with prose; provide ONLY the AQL query.")
    elif not _START_KW.search(stripped):
        errors.append("AQL query must start with FOR, LET, RETURN or WITH.")

    code = _blank_strings(stripped)

    # ── 2. No writes ─────────────────────────────────
    m = _WRITE_KW.search(code)
    if m:
        errors.append(f"Data-modification keyword detected: '{m.group(1).upper()}'.")

    # ── 3. No multi-statement ────────────────────────
    if _MULTI_STMT.search(code):
        errors.append("Multiple statements are not allowed (found ';' followed by more text).")

    if errors:
        logger.warning("AQL safety violations: %s", errors)
    return errors
