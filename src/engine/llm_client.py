"""
LLM client abstraction -- provider-agnostic text generation.

Supported providers:
  mock      -- deterministic canned output (for tests / offline dev)
  openai    -- OpenAI Chat Completions (gpt-4o-mini default)
  anthropic -- Anthropic Messages (claude-3-haiku default)
  together  -- Together AI through its OpenAI-compatible endpoint

Configuration (keys, model names, temperature, max tokens) is read from
Settings (env / .env).
"""
from __future__ import annotations

from typing import Any

from src.core.config import get_settings
from src.core.logging import get_logger

logger = get_logger(__name__)

_SYSTEM_PROMPT = (
    "You are an expert in ArangoDB AQL and medical data analysis. "
    "Answer with exactly what the user asks for and nothing else."
)

_TOGETHER_BASE_URL = "https://api.together.xyz/v1"


def _call_mock(prompt: str) -> str:
    """Offline stand-in: a fixed patient count query."""
    logger.info("LLM mock mode -- returning canned query")
    return (
        "```aql\n"
        "RETURN LENGTH(FOR node IN MedGraph_node FILTER node.type == 'patient' RETURN 1)\n"
        "```"
    )


def _openai_compatible(prompt: str, *, api_key: str, model: str, base_url: str | None = None) -> str:
    try:
        import openai  # type: ignore[import-untyped]
    except ImportError as exc:
        raise RuntimeError(
            "The 'openai' package is not installed.  "
            "Run: pip install openai"
        ) from exc

    settings = get_settings()
    client = openai.OpenAI(api_key=api_key, base_url=base_url) if base_url else openai.OpenAI(api_key=api_key)
    response = client.chat.completions.create(
        model=model,
        messages=[
            {"role": "system", "content": _SYSTEM_PROMPT},
            {"role": "user", "content": prompt},
        ],
        temperature=settings.llm_temperature,
        max_tokens=settings.llm_max_tokens,
    )
    return response.choices[0].message.content or ""


def _call_openai(prompt: str) -> str:
    """Call OpenAI Chat Completions API."""
    settings = get_settings()
    if not settings.openai_api_key:
        raise RuntimeError(
            "openai_api_key is not set.  "
            "Set OPENAI_API_KEY in your .env file or environment."
        )
    text = _openai_compatible(prompt, api_key=settings.openai_api_key, model=settings.openai_model)
    logger.info("OpenAI response (%d chars)", len(text))
    return text


def _call_together(prompt: str) -> str:
    """Call Together AI (OpenAI-compatible chat endpoint)."""
    settings = get_settings()
    if not settings.together_api_key:
        raise RuntimeError(
            "together_api_key is not set.  "
            "Set TOGETHER_API_KEY in your .env file or environment."
        )
    text = _openai_compatible(
        prompt,
        api_key=settings.together_api_key,
        model=settings.together_model,
        base_url=_TOGETHER_BASE_URL,
    )
    logger.info("Together response (%d chars)", len(text))
    return text


def _call_anthropic(prompt: str) -> str:
    """Call Anthropic Messages API."""
    settings = get_settings()
    if not settings.anthropic_api_key:
        raise RuntimeError(
            "anthropic_api_key is not set.  "
            "Set ANTHROPIC_API_KEY in your .env file or environment."
        )

    try:
        import anthropic  # type: ignore[import-untyped]
    except ImportError as exc:
        raise RuntimeError(
            "The 'anthropic' package is not installed.  "
            "Run: pip install anthropic"
        ) from exc

    client = anthropic.Anthropic(api_key=settings.anthropic_api_key)
    response = client.messages.create(
        model=settings.anthropic_model,
        max_tokens=settings.llm_max_tokens,
        temperature=settings.llm_temperature,
        system=_SYSTEM_PROMPT,
        messages=[{"role": "user", "content": prompt}],
    )
    text = response.content[0].text if response.content else ""
    logger.info("Anthropic response (%d chars)", len(text))
    return text


_PROVIDERS: dict[str, Any] = {
    "mock": _call_mock,
    "openai": _call_openai,
    "anthropic": _call_anthropic,
    "together": _call_together,
}


def call_llm(prompt: str, provider: str | None = None) -> str:
    """Send *prompt* to the configured (or overridden) LLM provider.

    Parameters
    ----------
    prompt : str
        The full prompt text.
    provider : str, optional
        Override the provider from settings.  One of: mock, openai, anthropic, together.
    """
    if provider is None:
        provider = get_settings().llm_provider.lower()

    fn = _PROVIDERS.get(provider)
    if fn is None:
        raise NotImplementedError(
            f"LLM provider '{provider}' is not supported.  "
            f"Choose from: {', '.join(_PROVIDERS)}"
        )

    logger.info("Calling LLM provider=%s  prompt_len=%d", provider, len(prompt))
    return fn(prompt)
