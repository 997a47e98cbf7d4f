"""
Query synthesizer -- one generation call, one cleaned query string.

``clean_query`` is total and idempotent: it never raises, and cleaning an
already-clean string returns it unchanged.
"""
from __future__ import annotations

import re
from typing import Callable

from src.core.utils import call_with_timeout
from src.engine.errors import ModelInvocationError
from src.core.logging import get_logger

logger = get_logger(__name__)

Generate = Callable[[str], str]

_FENCE_RE = re.compile(r"```(.*?)(?:```|\Z)", re.DOTALL)
_LANG_TAG_RE = re.compile(r"^(?:aql|sql|json)\s*$", re.IGNORECASE)
_PREFIX_RE = re.compile(r"^(?:aql\s*query\s*:|query\s*:|aql\s*:|sql\s*:|aql\b|sql\b)\s*", re.IGNORECASE)


def _extract_fenced(text: str) -> str:
    """Body of the first fenced block, language tag removed."""
    m = _FENCE_RE.search(text)
    if not m:
        return text
    body = m.group(1).strip("\n")
    lines = body.split("\n")
    if lines and _LANG_TAG_RE.match(lines[0].strip()):
        lines = lines[1:]
    return "\n".join(lines)


def _strip_once(text: str) -> str:
    text = text.replace("```", "").strip()
    text = _PREFIX_RE.sub("", text, count=1)
    return text.strip("`").strip()


def clean_query(text: str | None) -> str:
    """Pull an executable query out of free-form model output."""
    if not text:
        return ""
    query = _extract_fenced(text) if "```" in text else text
    previous = None
    while previous != query:
        previous = query
        query = _strip_once(query)
    return query


def synthesize(prompt: str, generate: Generate, timeout: float | None = None) -> str:
    """Call *generate* once and return the cleaned query.

    Raises
    ------
    ModelInvocationError
        On any generation failure, a timeout, or output that cleans to nothing.
    """
    try:
        if timeout is not None:
            raw = call_with_timeout(generate, prompt, timeout=timeout)
        else:
            raw = generate(prompt)
    except TimeoutError as exc:
        raise ModelInvocationError(f"Generation timed out: {exc}") from exc
    except Exception as exc:
        raise ModelInvocationError(f"Generation failed: {exc}") from exc

    query = clean_query(raw if isinstance(raw, str) else "")
    if not query:
        raise ModelInvocationError("Generation returned no usable query text.")
    logger.info("Synthesized query (%d chars)", len(query))
    return query
