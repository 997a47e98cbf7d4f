"""
Unit tests -- AQL executor error mapping with a stand-in database handle.
"""
import pytest
from arango.exceptions import AQLQueryExecuteError

from src.db import executor
from src.engine.errors import QueryExecutionError, QueryTimeoutError


def _server_error(code, message):
    exc = AQLQueryExecuteError.__new__(AQLQueryExecuteError)
    exc.error_code = code
    exc.error_message = message
    return exc


class _FakeAQL:
    def __init__(self, rows=None, error=None):
        self.rows = rows or []
        self.error = error
        self.calls = []

    def execute(self, query, **kwargs):
        self.calls.append((query, kwargs))
        if self.error is not None:
            raise self.error
        return iter(self.rows)


class _FakeDB:
    def __init__(self, aql):
        self.aql = aql


def _patch(monkeypatch, aql):
    monkeypatch.setattr(executor, "get_database", lambda: _FakeDB(aql))


def test_rows_are_drained(monkeypatch):
    aql = _FakeAQL(rows=[{"a": 1}, {"a": 2}])
    _patch(monkeypatch, aql)
    assert executor.execute_aql("FOR x IN c RETURN x", timeout_s=5) == [{"a": 1}, {"a": 2}]


def test_max_runtime_passed(monkeypatch):
    aql = _FakeAQL(rows=[1])
    _patch(monkeypatch, aql)
    executor.execute_aql("RETURN 1", timeout_s=12.5)
    _query, kwargs = aql.calls[0]
    assert kwargs["max_runtime"] == 12.5


def test_default_timeout_from_settings(monkeypatch):
    aql = _FakeAQL(rows=[1])
    _patch(monkeypatch, aql)
    executor.execute_aql("RETURN 1")
    assert aql.calls[0][1]["max_runtime"] == 40.0


def test_killed_query_maps_to_timeout(monkeypatch):
    _patch(monkeypatch, _FakeAQL(error=_server_error(1500, "query killed")))
    with pytest.raises(QueryTimeoutError):
        executor.execute_aql("RETURN 1", timeout_s=1)


def test_max_runtime_message_maps_to_timeout(monkeypatch):
    _patch(monkeypatch, _FakeAQL(error=_server_error(0, "query exceeded max_runtime")))
    with pytest.raises(QueryTimeoutError):
        executor.execute_aql("RETURN 1", timeout_s=1)


def test_syntax_error_maps_to_execution_error(monkeypatch):
    _patch(monkeypatch, _FakeAQL(error=_server_error(1501, "syntax error, unexpected RETURN")))
    with pytest.raises(QueryExecutionError, match="syntax error") as err:
        executor.execute_aql("FOR x IN RETURN", timeout_s=1)
    assert not isinstance(err.value, QueryTimeoutError)
