"""
Unit tests -- query synthesizer: cleaning model output and failure mapping.
"""
import time

import pytest

from src.engine.errors import ModelInvocationError
from src.engine.synthesizer import clean_query, synthesize

_Q = "FOR node IN MedGraph_node FILTER node.type == 'patient' RETURN node.ID"

_WRAPPED = [
    _Q,
    f"```aql\n{_Q}\n```",
    f"```sql\n{_Q}\n```",
    f"```\n{_Q}\n```",
    f"AQL: {_Q}",
    f"SQL: {_Q}",
    f"aql\n{_Q}",
    f"Query: {_Q}",
    f"AQL QUERY: {_Q}",
    f"`{_Q}`",
    f"Here is the query:\n```aql\n{_Q}\n```\nIt lists patient ids.",
    f"  \n```AQL\nAQL: {_Q}\n```  ",
]


@pytest.mark.parametrize("raw", _WRAPPED)
def test_clean_extracts_query(raw):
    assert clean_query(raw) == _Q


@pytest.mark.parametrize("raw", _WRAPPED + ["```aql\n```", "", "``` unterminated FOR x IN y RETURN x"])
def test_clean_is_idempotent(raw):
    once = clean_query(raw)
    assert clean_query(once) == once


def test_clean_handles_none():
    assert clean_query(None) == ""


def test_synthesize_returns_clean_query():
    assert synthesize("prompt", lambda p: f"```aql\n{_Q}\n```") == _Q


def test_synthesize_empty_output_raises():
    with pytest.raises(ModelInvocationError, match="no usable"):
        synthesize("prompt", lambda p: "```\n```")


def test_synthesize_wraps_provider_errors():
    def boom(prompt):
        raise RuntimeError("service down")

    with pytest.raises(ModelInvocationError, match="service down"):
        synthesize("prompt", boom)


def test_synthesize_timeout():
    def slow(prompt):
        time.sleep(0.5)
        return _Q

    with pytest.raises(ModelInvocationError, match="timed out"):
        synthesize("prompt", slow, timeout=0.05)
