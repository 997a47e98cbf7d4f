"""
Unit tests -- intent gate: keyword rules and model fallback.
"""
from src.engine.gate import (
    ASSISTANT_MESSAGE,
    EMPTY_MESSAGE,
    ERROR_MESSAGE,
    OFF_TOPIC_MESSAGE,
    GateIntent,
    detect_intent,
    gate_prompt,
    greeting_message,
    medical_keyword_count,
)


def _model(reply):
    calls = []

    def generate(prompt):
        calls.append(prompt)
        return reply

    generate.calls = calls
    return generate


# ── Rules ────────────────────────────────────────────────

def test_blank_input():
    for q in ("", "   ", None):
        d = detect_intent(q)
        assert d.intent is GateIntent.OFF_TOPIC
        assert d.confidence == 1.0
        assert d.message == EMPTY_MESSAGE
        assert d.should_process is False


def test_short_greeting():
    d = detect_intent("Hello there!")
    assert d.intent is GateIntent.GREETING
    assert d.confidence == 0.95
    assert "medical database assistant" in d.message
    assert not d.should_process


def test_long_message_with_greeting_is_not_a_greeting():
    d = detect_intent("hi, how many female patients were born in 1990?")
    assert d.intent is GateIntent.MEDICAL_QUERY
    assert d.should_process


def test_greeting_word_inside_other_word_does_not_fire():
    # "this" contains "hi"; "they" contains "hey"
    d = detect_intent("this they")
    assert d.intent is not GateIntent.GREETING


def test_chatbot_inquiry_without_data_terms():
    d = detect_intent("What is your name?")
    assert d.intent is GateIntent.OFF_TOPIC
    assert d.confidence == 0.9
    assert d.message == ASSISTANT_MESSAGE


def test_medical_keywords_scale_confidence():
    two = detect_intent("asthma diagnosis")
    assert two.intent is GateIntent.MEDICAL_QUERY
    assert two.confidence == 0.88
    many = detect_intent("list female patients with diabetes born in 1990 by race")
    assert many.confidence == 1.0


def test_keyword_count_plural_forms():
    assert medical_keyword_count("Condition and medication") == 2
    assert medical_keyword_count("any allergies?") == 1
    assert medical_keyword_count("the weather today") == 0


# ── Model fallback ───────────────────────────────────────

def test_ambiguous_without_model_is_off_topic():
    d = detect_intent("What about Paris?")
    assert d.intent is GateIntent.OFF_TOPIC
    assert d.confidence == 0.75
    assert d.message == OFF_TOPIC_MESSAGE


def test_model_says_medical_query():
    generate = _model("medical_query")
    d = detect_intent("anything about sinusitis?", generate=generate)
    assert d.intent is GateIntent.MEDICAL_QUERY
    assert d.confidence == 0.8
    assert d.should_process
    assert "anything about sinusitis?" in generate.calls[0]


def test_model_says_greeting():
    d = detect_intent("yo what is going on today", generate=_model("Greeting"))
    assert d.intent is GateIntent.GREETING
    assert d.confidence == 0.85


def test_model_unexpected_reply_is_off_topic():
    d = detect_intent("What about Paris?", generate=_model("no idea"))
    assert d.intent is GateIntent.OFF_TOPIC
    assert d.confidence == 0.75


def test_model_failure_degrades():
    def broken(prompt):
        raise RuntimeError("provider down")

    d = detect_intent("What about Paris?", generate=broken)
    assert d.intent is GateIntent.OFF_TOPIC
    assert d.confidence == 0.5
    assert d.message == ERROR_MESSAGE


def test_model_not_called_when_rules_decide():
    generate = _model("off_topic")
    detect_intent("show me patients with asthma", generate=generate)
    assert generate.calls == []


# ── Helpers ──────────────────────────────────────────────

def test_greeting_by_time_of_day():
    assert greeting_message(9).startswith("Good morning!")
    assert greeting_message(14).startswith("Good afternoon!")
    assert greeting_message(20).startswith("Good evening!")


def test_gate_prompt_lists_labels():
    p = gate_prompt("how are things")
    for label in ("greeting", "medical_query", "off_topic"):
        assert label in p
