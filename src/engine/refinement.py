"""
Refinement loop -- synthesize, execute, validate, repair.

States per attempt:
  TryPattern  -> attempt 1 only, when the pattern matcher recognises the shape
  Synthesize  -> prompt -> model, falling back to (broadened query) -> pattern
                 query -> default query, so every attempt has a query string
  Gate        -> read-only AQL check; a violation is an execution error
  Execute     -> bounded by min(attempt timeout, request deadline remaining)
  Validate    -> classify rows once, judge the shape against the intent
  Escalate    -> after N consecutive empty/invalid results on a condition+year
                 intent, the next prompt asks to drop the condition filter

Terminates on the first accepted result, when attempts run out, or when the
request deadline expires.  Without an accepted result the last usable shaped
result is returned as degraded; if there is none, or the final attempt's
execution failed, ExhaustedAttempts is raised.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable

from src.core.config import get_settings
from src.core.utils import Deadline, call_with_timeout, timer
from src.engine.aql_safety import check_aql_safety
from src.engine.errors import (
    ExhaustedAttempts,
    ModelInvocationError,
    QueryExecutionError,
    QueryTimeoutError,
)
from src.engine.intent import Intent, QueryType
from src.engine.patterns import broadened_query, default_query, match_pattern
from src.engine.prompts import build_prompt
from src.engine.results import (
    AGGREGATE_SHAPES,
    Empty,
    ResultShape,
    ValidationVerdict,
    classify_rows,
    shape_name,
    validate_shape,
)
from src.engine.synthesizer import Generate, synthesize
from src.core.logging import get_logger

logger = get_logger(__name__)

Execute = Callable[[str, float], Any]


class Outcome(str, Enum):
    SUCCESS = "success"
    EXECUTION_ERROR = "execution_error"
    TIMEOUT = "timeout"


@dataclass
class AttemptRecord:
    """One synthesize-execute-validate cycle."""

    index: int
    query_text: str
    source: str  # pattern | model | fallback | improved
    outcome: Outcome
    shape: ResultShape | None = None
    rows: Any = None
    verdict: ValidationVerdict | None = None
    error: str | None = None
    elapsed_ms: int = 0
    broadened: bool = False

    @property
    def timed_out(self) -> bool:
        return self.outcome is Outcome.TIMEOUT

    @property
    def accepted(self) -> bool:
        return self.verdict is not None and self.verdict.is_valid

    @property
    def reason(self) -> str:
        if self.verdict is not None:
            return self.verdict.reason
        return self.error or ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "index": self.index,
            "query": self.query_text,
            "source": self.source,
            "outcome": self.outcome.value,
            "shape": shape_name(self.shape) if self.shape is not None else None,
            "isValid": self.accepted,
            "reason": self.reason,
            "elapsedMs": self.elapsed_ms,
            "broadened": self.broadened,
        }


@dataclass
class LoopOutcome:
    attempts: list[AttemptRecord]
    final: AttemptRecord
    is_valid: bool
    stop_reason: str  # accepted | exhausted | deadline

    @property
    def degraded(self) -> bool:
        return not self.is_valid

    @property
    def broadened(self) -> bool:
        return self.final.broadened


# ── Helpers ──────────────────────────────────────────────

def _synthesize_with_fallback(
    prompt: str,
    generate: Generate,
    fallbacks: list[str],
    timeout: float,
) -> tuple[str, str]:
    """Model first, then each fallback query in order.  Returns (query, source)."""
    try:
        return synthesize(prompt, generate, timeout=timeout), "model"
    except ModelInvocationError as exc:
        logger.warning("Model synthesis failed (%s) -- using fallback query", exc)
    for query in fallbacks:
        if query:
            return query, "fallback"
    raise RuntimeError("fallback chain must end with a default query")


def _usable_for(intent: Intent, attempt: AttemptRecord) -> bool:
    """Can *attempt* stand in as a degraded answer for *intent*?"""
    if attempt.outcome is not Outcome.SUCCESS:
        return False
    if intent.query_type is QueryType.COUNT:
        return isinstance(attempt.shape, AGGREGATE_SHAPES + (Empty,))
    return True


def execute_attempt(
    index: int,
    query: str,
    source: str,
    intent: Intent,
    execute: Execute,
    timeout: float,
    *,
    accept_empty: bool = False,
    broadened: bool = False,
) -> AttemptRecord:
    """Gate, execute and validate one query; never raises for store failures."""
    violations = check_aql_safety(query)
    if violations:
        return AttemptRecord(
            index=index,
            query_text=query,
            source=source,
            outcome=Outcome.EXECUTION_ERROR,
            error="Query rejected before execution: " + " ".join(violations),
            broadened=broadened,
        )

    with timer() as t:
        try:
            rows = call_with_timeout(execute, query, timeout, timeout=timeout)
        except (TimeoutError, QueryTimeoutError) as exc:
            outcome, rows, error = Outcome.TIMEOUT, None, (
                f"The query timed out after {timeout:.0f}s ({exc}). "
                "It is probably too complex; use the staged pattern."
            )
        except QueryExecutionError as exc:
            outcome, rows, error = Outcome.EXECUTION_ERROR, None, f"Query execution error: {exc}"
        except Exception as exc:
            logger.warning("Unexpected store failure on attempt %d: %s", index, exc)
            outcome, rows, error = Outcome.EXECUTION_ERROR, None, f"Query execution error: {exc}"
        else:
            outcome, error = Outcome.SUCCESS, None

    record = AttemptRecord(
        index=index,
        query_text=query,
        source=source,
        outcome=outcome,
        rows=rows,
        error=error,
        elapsed_ms=t["elapsed_ms"],
        broadened=broadened,
    )
    if outcome is Outcome.SUCCESS:
        record.shape = classify_rows(rows)
        record.verdict = validate_shape(
            record.shape, intent, accept_empty=accept_empty, broadened=broadened
        )
    return record


# ── Loop ─────────────────────────────────────────────────

def run_refinement(
    question: str,
    intent: Intent,
    *,
    generate: Generate,
    execute: Execute,
    max_attempts: int | None = None,
    attempt_timeout: float | None = None,
    escalation_threshold: int | None = None,
    deadline: Deadline | None = None,
    use_patterns: bool = True,
) -> LoopOutcome:
    """Drive attempts until one validates, attempts run out, or the deadline passes.

    Raises
    ------
    ExhaustedAttempts
        If no usable result was produced or the final execution failed.
    """
    settings = get_settings()
    max_attempts = max_attempts or settings.max_attempts
    attempt_timeout = attempt_timeout or settings.attempt_timeout_s
    threshold = escalation_threshold or settings.escalation_threshold
    deadline = deadline or Deadline(settings.request_deadline_s)

    pattern_query = match_pattern(intent, question) if use_patterns else None
    attempts: list[AttemptRecord] = []
    consecutive_misses = 0
    escalated = False
    stop_reason = "exhausted"

    while len(attempts) < max_attempts:
        if deadline.expired:
            stop_reason = "deadline"
            break
        index = len(attempts) + 1
        last = attempts[-1] if attempts else None
        escalate = intent.has_condition_and_year and not escalated and consecutive_misses >= threshold

        if index == 1 and pattern_query:
            query, source = pattern_query, "pattern"
        else:
            prompt = build_prompt(
                intent,
                question,
                index,
                last_attempt=last,
                reason=last.reason if last else None,
                escalate=escalate,
                max_attempts=max_attempts,
            )
            fallbacks = [pattern_query, default_query(intent)]
            if escalate:
                fallbacks.insert(0, broadened_query(intent))
            query, source = _synthesize_with_fallback(
                prompt, generate, fallbacks, deadline.clamp(attempt_timeout)
            )

        timeout = deadline.clamp(attempt_timeout)
        if timeout <= 0:
            stop_reason = "deadline"
            break

        if escalate:
            escalated = True
        if intent.has_condition_and_year:
            accept_empty = escalated
        else:
            accept_empty = consecutive_misses >= threshold

        record = execute_attempt(
            index, query, source, intent, execute, timeout,
            accept_empty=accept_empty,
            broadened=escalate,
        )
        attempts.append(record)
        logger.info(
            "Attempt %d/%d source=%s outcome=%s shape=%s valid=%s (%d ms)",
            index, max_attempts, source, record.outcome.value,
            shape_name(record.shape) if record.shape is not None else "-",
            record.accepted, record.elapsed_ms,
        )

        if record.accepted:
            return LoopOutcome(attempts=attempts, final=record, is_valid=True, stop_reason="accepted")

        if record.outcome is Outcome.SUCCESS:
            consecutive_misses += 1

    logger.warning("Refinement stopped without a valid result (%s) after %d attempts", stop_reason, len(attempts))

    usable = [a for a in attempts if _usable_for(intent, a)]
    if not usable or attempts[-1].outcome is Outcome.EXECUTION_ERROR:
        raise ExhaustedAttempts(
            f"No valid result after {len(attempts)} attempts ({stop_reason}).",
            attempts=attempts,
        )
    return LoopOutcome(attempts=attempts, final=usable[-1], is_valid=False, stop_reason=stop_reason)
