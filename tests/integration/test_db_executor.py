"""
Integration tests -- AQL executor against a live ArangoDB.

These tests require a running ArangoDB instance with the MedGraph
collections loaded.  They are automatically skipped when the database is
unreachable.
"""
from __future__ import annotations

import pytest

# ── Guard: skip all tests if DB is unreachable ───────────
try:
    from src.db.connection import ping

    DB_AVAILABLE = ping()
except Exception:
    DB_AVAILABLE = False

pytestmark = pytest.mark.skipif(not DB_AVAILABLE, reason="ArangoDB not reachable")

from src.db.executor import execute_aql
from src.engine.errors import QueryExecutionError, QueryTimeoutError
from src.engine.intent import IntentFilters
from src.engine.patterns import count_query, direct_patient_scan, distribution_query, staged_condition_query


# ── Basic connectivity ───────────────────────────────────

def test_simple_return():
    assert execute_aql("RETURN 1") == [1]


def test_multiple_rows():
    assert execute_aql("FOR n IN 1..3 RETURN n") == [1, 2, 3]


# ── Error mapping ────────────────────────────────────────

def test_syntax_error_maps_to_execution_error():
    with pytest.raises(QueryExecutionError):
        execute_aql("FOR x IN RETURN")


def test_runtime_limit_maps_to_timeout():
    with pytest.raises(QueryTimeoutError):
        execute_aql("RETURN SLEEP(5)", timeout_s=0.5)


# ── Queries against MedGraph ─────────────────────────────

def test_patient_count_is_scalar():
    rows = execute_aql(count_query(IntentFilters()))
    assert len(rows) == 1
    assert rows[0] > 0


def test_gender_distribution_shape():
    rows = execute_aql(distribution_query("gender", IntentFilters()))
    assert set(rows[0]) == {"male", "female"}


def test_direct_scan_respects_limit():
    rows = execute_aql(direct_patient_scan(IntentFilters(gender="F"), limit=5))
    assert len(rows) <= 5
    assert all(r["gender"] == "F" for r in rows)


def test_staged_query_runs():
    rows = execute_aql(staged_condition_query("diabetes", IntentFilters(), limit=3))
    assert isinstance(rows, list)
    assert len(rows) <= 3
