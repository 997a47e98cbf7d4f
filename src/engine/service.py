"""
Engine service -- orchestrates classify -> refine -> conclude -> (improve).

Single request entry point.  Every engine failure ends in a defined terminal
result instead of an exception:
  - blank question            -> error="invalid_input"
  - attempts exhausted        -> error="exhausted", "please rephrase" message
  - no valid result but rows  -> degraded answer with a caveat
  - broadened result          -> answer plus a note that the condition was dropped

When the conclusion step proposes an improved query and attempts remain, it
is executed once more and substituted only if it validates.
"""
from __future__ import annotations

import time
from typing import Any

from src.core.config import get_settings
from src.core.utils import Deadline
from src.db.executor import execute_aql
from src.engine.conclusion import Conclusion, conclude
from src.engine.errors import EngineError, ExhaustedAttempts, InvalidInput
from src.engine.intent import Intent, classify_intent, describe_plan
from src.engine.llm_client import call_llm
from src.engine.refinement import AttemptRecord, Execute, execute_attempt, run_refinement
from src.engine.results import ResultShape, shape_name
from src.engine.synthesizer import Generate, clean_query
from src.core.logging import get_logger

logger = get_logger(__name__)


EXHAUSTED_MESSAGE = (
    "I couldn't find a reliable answer to that question after {n} attempts. "
    "Please try rephrasing it, for example by naming the condition, gender, race or birth year you mean."
)
DEGRADED_NOTE = (
    "Note: this result could not be fully verified against your question "
    "after {n} attempts, so treat it with caution."
)
BROADENED_NOTE = (
    "No records matched every criterion, so the condition filter was dropped; "
    "the results show patients matching the remaining filters."
)
IMPROVED_REJECTED_NOTE = (
    "A suggested improved query did not validate, so the original result is shown."
)


class EngineResult:
    def __init__(
        self,
        question: str,
        intent: Intent | None,
        thought: str,
        final_query: str,
        final_shape: ResultShape | None,
        rows: Any,
        attempts: list[AttemptRecord],
        conclusion: str,
        explanation: str = "",
        is_valid: bool = False,
        degraded: bool = False,
        broadened: bool = False,
        latency_ms: int = 0,
        error: str | None = None,
    ):
        self.question = question
        self.intent = intent
        self.thought = thought
        self.final_query = final_query
        self.final_shape = final_shape
        self.rows = rows
        self.attempts = attempts
        self.conclusion = conclusion
        self.explanation = explanation
        self.is_valid = is_valid
        self.degraded = degraded
        self.broadened = broadened
        self.latency_ms = latency_ms
        self.error = error

    @property
    def attempt_history(self) -> list[str]:
        return [a.query_text for a in self.attempts]

    @property
    def attempt_count(self) -> int:
        return len(self.attempts)

    @property
    def shape_name(self) -> str | None:
        return shape_name(self.final_shape) if self.final_shape is not None else None

    @property
    def action(self) -> str:
        if self.intent is None:
            return "respond_to_user"
        return f"execute_{self.intent.query_type.value}_query"

    @property
    def success(self) -> bool:
        return self.error is None


def _rows_list(rows: Any) -> list[Any]:
    if rows is None:
        return []
    return rows if isinstance(rows, list) else [rows]


def _join(*parts: str) -> str:
    return " ".join(p for p in parts if p)


def _try_improved(
    conclusion: Conclusion,
    current: AttemptRecord,
    attempts: list[AttemptRecord],
    intent: Intent,
    execute: Execute,
    deadline: Deadline,
) -> AttemptRecord | None:
    """Run the model's improved query once; None when it is not attempted."""
    settings = get_settings()
    improved = clean_query(conclusion.improved_query)
    if not improved or improved == current.query_text:
        return None
    if len(attempts) >= settings.max_attempts or deadline.expired:
        logger.info("Improved query suggested but no attempts/time remain")
        return None
    timeout = deadline.clamp(settings.attempt_timeout_s)
    record = execute_attempt(len(attempts) + 1, improved, "improved", intent, execute, timeout)
    attempts.append(record)
    logger.info("Improved query attempt -> outcome=%s valid=%s", record.outcome.value, record.accepted)
    return record


def answer(
    question: str | None,
    *,
    generate: Generate | None = None,
    execute: Execute | None = None,
    use_patterns: bool = True,
) -> EngineResult:
    """End-to-end: question -> validated, human-readable answer.

    Parameters
    ----------
    question : str
        Free-text question about the medical dataset.
    generate : callable, optional
        ``generate(prompt) -> str``; defaults to the configured LLM provider.
    execute : callable, optional
        ``execute(query, timeout_s) -> rows``; defaults to ArangoDB.
    use_patterns : bool
        Disable to force every attempt through the model.
    """
    t0 = time.perf_counter()
    settings = get_settings()
    generate = generate or call_llm
    execute = execute or execute_aql

    def latency() -> int:
        return int((time.perf_counter() - t0) * 1000)

    try:
        intent = classify_intent(question)
    except InvalidInput as exc:
        return EngineResult(
            question=question or "", intent=None, thought="", final_query="", final_shape=None,
            rows=[], attempts=[], conclusion=str(exc), latency_ms=latency(), error="invalid_input",
        )

    logger.info("Engine.answer | question=%s | type=%s", question, intent.query_type.value)
    thought = describe_plan(intent)
    deadline = Deadline(settings.request_deadline_s)

    try:
        outcome = run_refinement(
            question,
            intent,
            generate=generate,
            execute=execute,
            deadline=deadline,
            use_patterns=use_patterns,
        )
    except ExhaustedAttempts as exc:
        logger.warning("Engine exhausted attempts for question=%s", question)
        last = exc.attempts[-1] if exc.attempts else None
        return EngineResult(
            question=question, intent=intent, thought=thought,
            final_query=last.query_text if last else "", final_shape=None, rows=[],
            attempts=exc.attempts,
            conclusion=EXHAUSTED_MESSAGE.format(n=len(exc.attempts)),
            explanation=last.reason if last else str(exc),
            degraded=True, latency_ms=latency(), error="exhausted",
        )
    except EngineError as exc:
        logger.exception("Engine failed")
        return EngineResult(
            question=question, intent=intent, thought=thought, final_query="", final_shape=None,
            rows=[], attempts=[], conclusion=EXHAUSTED_MESSAGE.format(n=0),
            explanation=str(exc), degraded=True, latency_ms=latency(), error="engine_error",
        )

    attempts = list(outcome.attempts)
    final = outcome.final
    is_valid = outcome.is_valid
    conclusion_timeout = deadline.clamp(settings.attempt_timeout_s)
    conclusion = conclude(
        final.shape, intent, question=question, query=final.query_text,
        generate=generate, timeout=conclusion_timeout, broadened=final.broadened,
    )

    notes: list[str] = []
    if conclusion.improved_query:
        improved = _try_improved(conclusion, final, attempts, intent, execute, deadline)
        if improved is not None and improved.accepted:
            final, is_valid = improved, True
            conclusion = conclude(
                final.shape, intent, question=question, query=final.query_text,
                generate=generate, timeout=deadline.clamp(settings.attempt_timeout_s),
                broadened=final.broadened,
            )
        elif improved is not None:
            notes.append(IMPROVED_REJECTED_NOTE)

    if not is_valid:
        notes.append(DEGRADED_NOTE.format(n=len(attempts)))
    if final.broadened:
        notes.append(BROADENED_NOTE)

    result = EngineResult(
        question=question,
        intent=intent,
        thought=thought,
        final_query=final.query_text,
        final_shape=final.shape,
        rows=_rows_list(final.rows),
        attempts=attempts,
        conclusion=_join(conclusion.text, *notes),
        explanation=_join(conclusion.explanation, final.reason if not is_valid else ""),
        is_valid=is_valid,
        degraded=not is_valid,
        broadened=final.broadened,
        latency_ms=latency(),
    )
    logger.info(
        "Engine.answer done | attempts=%d shape=%s valid=%s (%d ms)",
        result.attempt_count, result.shape_name, result.is_valid, result.latency_ms,
    )
    return result
