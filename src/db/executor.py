"""
AQL executor.

All engine-generated queries run through `execute_aql`, which:
  1. Passes ``max_runtime`` so the server kills runaway queries itself
  2. Drains the cursor into a plain list
  3. Maps server-side failures onto the engine's error taxonomy:
       query killed / max runtime exceeded -> QueryTimeoutError
       anything else                       -> QueryExecutionError
"""
from __future__ import annotations

from typing import Any

from arango.exceptions import AQLQueryExecuteError, ArangoError

from src.core.config import get_settings
from src.db.connection import get_database
from src.engine.errors import QueryExecutionError, QueryTimeoutError
from src.core.logging import get_logger

logger = get_logger(__name__)

# ArangoDB error numbers for a query stopped by the server
_KILLED_ERROR_CODES = {1500}

_BATCH_SIZE = 1000


def _is_timeout(exc: AQLQueryExecuteError) -> bool:
    if exc.error_code in _KILLED_ERROR_CODES:
        return True
    message = (exc.error_message or str(exc)).lower()
    return "killed" in message or "max_runtime" in message or "timeout" in message


def execute_aql(query: str, timeout_s: float | None = None) -> list[Any]:
    """Execute an AQL query and return every result row.

    Raises
    ------
    QueryTimeoutError
        If the server stops the query for exceeding its runtime budget.
    QueryExecutionError
        If the query fails for any other reason.
    """
    timeout_s = timeout_s or get_settings().attempt_timeout_s
    logger.info("Executing AQL (%d chars)  max_runtime=%.1fs", len(query), timeout_s)

    try:
        cursor = get_database().aql.execute(
            query,
            max_runtime=timeout_s,
            batch_size=_BATCH_SIZE,
        )
        rows = list(cursor)
    except AQLQueryExecuteError as exc:
        if _is_timeout(exc):
            raise QueryTimeoutError(f"Query exceeded {timeout_s:.0f}s and was stopped") from exc
        raise QueryExecutionError(exc.error_message or str(exc)) from exc
    except ArangoError as exc:
        raise QueryExecutionError(str(exc)) from exc

    logger.info("Returned %d rows", len(rows))
    return rows
