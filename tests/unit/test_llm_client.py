"""
Unit tests -- LLM client: mock mode + dispatch.
"""
import pytest
from src.engine.llm_client import call_llm
from src.engine.synthesizer import clean_query


def test_mock_returns_string():
    result = call_llm("Hello world", provider="mock")
    assert isinstance(result, str)


def test_mock_returns_fenced_aql():
    result = call_llm("How many patients?", provider="mock")
    assert result.startswith("```aql")
    assert clean_query(result).startswith("RETURN LENGTH(")


def test_unknown_provider_raises():
    with pytest.raises(NotImplementedError, match="not supported"):
        call_llm("hi", provider="banana")


def test_openai_missing_key_raises():
    """Should raise RuntimeError when key is empty."""
    with pytest.raises(RuntimeError, match="openai_api_key"):
        call_llm("hi", provider="openai")


def test_anthropic_missing_key_raises():
    """Should raise RuntimeError when key is empty."""
    with pytest.raises(RuntimeError, match="anthropic_api_key"):
        call_llm("hi", provider="anthropic")


def test_together_missing_key_raises():
    with pytest.raises(RuntimeError, match="together_api_key"):
        call_llm("hi", provider="together")


def test_default_provider_is_mock():
    """Settings default to mock -- this should work without any keys."""
    result = call_llm("test")
    assert "MedGraph_node" in result
