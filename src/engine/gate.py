"""
Intent gate -- decides whether a message is a database question at all.

Keyword rules first, model fallback only for ambiguous input:
  1. blank input                        -> off_topic, not processed
  2. greeting phrase in < 5 words       -> greeting (0.95)
  3. chatbot inquiry, no data keywords  -> off_topic (0.9)
  4. >= 2 medical data keywords         -> medical_query (0.8 + 0.04 per keyword, max 5)
  5. otherwise ask the model for one of greeting / medical_query / off_topic

Phrases are matched on word boundaries so "hi" does not fire inside "this".
"""
from __future__ import annotations

import re
from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field

from src.core.utils import call_with_timeout
from src.engine.synthesizer import Generate
from src.core.logging import get_logger

logger = get_logger(__name__)

_GATE_TIMEOUT_S = 15.0


class GateIntent(str, Enum):
    GREETING = "greeting"
    MEDICAL_QUERY = "medical_query"
    OFF_TOPIC = "off_topic"


class GateDecision(BaseModel):
    intent: GateIntent
    confidence: float = Field(..., ge=0.0, le=1.0)
    message: str = ""
    should_process: bool = False


MEDICAL_DATA_KEYWORDS: tuple[str, ...] = (
    "patient", "patients", "gender", "male", "female", "birth", "birthdate",
    "born", "race", "ethnicity", "condition", "conditions", "medication",
    "medications", "procedure", "procedures", "observation", "observations",
    "allergy", "allergies", "careplan", "immunization", "immunizations",
    "encounter", "encounters", "data", "database", "medical", "healthcare",
    "health", "record", "records", "diagnose", "diagnosis", "diagnosed",
    "treatment", "treatments", "white", "age", "old", "young", "count",
    "statistics", "list", "show", "find", "search", "display", "query",
    "medgraph", "diabetes", "hypertension", "asthma",
)

GREETING_PHRASES: tuple[str, ...] = (
    "hello", "hi", "hey", "greetings", "good morning", "good afternoon",
    "good evening", "how are you", "how's it going", "what's up",
)

CHATBOT_INQUIRIES: tuple[str, ...] = (
    "what is your name", "who are you", "what can you do", "help me",
    "tell me about yourself", "what do you know", "who made you",
    "how do you work", "tell me a joke", "tell me a story",
)

EMPTY_MESSAGE = "Please type a question or query."
ASSISTANT_MESSAGE = (
    "I'm a medical database assistant. I can help you query patient data, conditions, "
    "medications, and other medical information. Please ask me a question about the medical database."
)
OFF_TOPIC_MESSAGE = (
    "I'm here to help with queries related to the medical database. Please ask me about "
    "patient data, conditions, medications, or other medical information."
)
ERROR_MESSAGE = (
    "I encountered an error processing your query. Please try asking about the medical database."
)


def _phrase_re(phrases: tuple[str, ...], plural: bool = False) -> re.Pattern[str]:
    alternatives = "|".join(re.escape(p) for p in sorted(phrases, key=len, reverse=True))
    suffix = "s?" if plural else ""
    return re.compile(rf"(?<![\w'])(?:{alternatives}){suffix}(?![\w'])")


_GREETING_RE = _phrase_re(GREETING_PHRASES)
_INQUIRY_RE = _phrase_re(CHATBOT_INQUIRIES)
_KEYWORD_RES = [(kw, _phrase_re((kw,), plural=True)) for kw in MEDICAL_DATA_KEYWORDS]


def greeting_message(hour: int | None = None) -> str:
    hour = datetime.now().hour if hour is None else hour
    if hour < 12:
        greeting = "Good morning! "
    elif hour < 18:
        greeting = "Good afternoon! "
    else:
        greeting = "Good evening! "
    return greeting + "I'm your medical database assistant. How can I help you with patient data today?"


def medical_keyword_count(text: str) -> int:
    q = text.lower()
    return sum(1 for _kw, pattern in _KEYWORD_RES if pattern.search(q))


def gate_prompt(question: str) -> str:
    return f"""Determine the intent of the following user query to a medical database system.

USER QUERY: "{question}"

Possible intents:
1. greeting - User is simply greeting the system
2. medical_query - User is asking about medical data, patients, conditions, etc.
3. off_topic - User is asking something unrelated to medical data

IMPORTANT:
- The system is ONLY for querying a medical database with patient records, conditions, medications, etc.
- Any query about seeing data, statistics, or information about patients, conditions, demographics, etc. is a medical_query.
- If uncertain, categorize as off_topic.

Respond with ONLY ONE of these three options: "greeting", "medical_query", or "off_topic"
"""


def _from_model(question: str, generate: Generate) -> GateDecision:
    try:
        reply = call_with_timeout(generate, gate_prompt(question), timeout=_GATE_TIMEOUT_S)
    except Exception as exc:
        logger.warning("Gate model call failed: %s", exc)
        return GateDecision(intent=GateIntent.OFF_TOPIC, confidence=0.5, message=ERROR_MESSAGE)

    label = (reply or "").strip().lower()
    if "greeting" in label:
        return GateDecision(intent=GateIntent.GREETING, confidence=0.85, message=greeting_message())
    if "medical_query" in label:
        return GateDecision(intent=GateIntent.MEDICAL_QUERY, confidence=0.8, should_process=True)
    return GateDecision(intent=GateIntent.OFF_TOPIC, confidence=0.75, message=OFF_TOPIC_MESSAGE)


def detect_intent(question: str | None, generate: Generate | None = None) -> GateDecision:
    """Classify a chat message before it reaches the query engine."""
    if not isinstance(question, str) or not question.strip():
        return GateDecision(intent=GateIntent.OFF_TOPIC, confidence=1.0, message=EMPTY_MESSAGE)

    q = question.lower()

    if _GREETING_RE.search(q) and len(q.split()) < 5:
        decision = GateDecision(intent=GateIntent.GREETING, confidence=0.95, message=greeting_message())
    elif _INQUIRY_RE.search(q) and medical_keyword_count(q) == 0:
        decision = GateDecision(intent=GateIntent.OFF_TOPIC, confidence=0.9, message=ASSISTANT_MESSAGE)
    else:
        hits = medical_keyword_count(q)
        if hits >= 2:
            decision = GateDecision(
                intent=GateIntent.MEDICAL_QUERY,
                confidence=round(0.8 + min(hits, 5) * 0.04, 2),
                should_process=True,
            )
        elif generate is None:
            decision = GateDecision(intent=GateIntent.OFF_TOPIC, confidence=0.75, message=OFF_TOPIC_MESSAGE)
        else:
            decision = _from_model(question, generate)

    logger.info("Gate -> %s (%.2f)", decision.intent.value, decision.confidence)
    return decision
