"""
Unit tests -- intent classifier: rule tables, precedence, immutability.
"""
import pytest
from pydantic import ValidationError

from src.engine.errors import InvalidInput
from src.engine.intent import (
    Complexity,
    QueryType,
    classify_intent,
    describe_plan,
    describe_population,
)


# ── Query type ──────────────────────────────────────────

@pytest.mark.parametrize("question,expected", [
    ("How many patients are female?", QueryType.COUNT),
    ("Count the patients with asthma", QueryType.COUNT),
    ("What is the distribution of patients by race?", QueryType.COUNT),
    ("Which race is most common among patients?", QueryType.COUNT),
    ("Analyze trends in hypertension diagnoses", QueryType.ANALYSIS),
    ("Compare male and female patients", QueryType.ANALYSIS),
    ("List 10 patients with their birthdates and genders", QueryType.DATA_LIST),
    ("Patients with diabetes born in 1964", QueryType.DATA_LIST),
])
def test_query_type(question, expected):
    assert classify_intent(question).query_type is expected


@pytest.mark.parametrize("question", [
    "Show encounters for patients born in 1990",
    "List patients by country of birth",
    "Show the account of each patient",
])
def test_count_inside_longer_word_is_not_a_count(question):
    assert classify_intent(question).query_type is QueryType.DATA_LIST


def test_scenario_female_count():
    intent = classify_intent("How many patients are female?")
    assert intent.query_type is QueryType.COUNT
    assert intent.filters.gender == "F"
    assert intent.keywords == ()
    assert intent.complexity is Complexity.MODERATE


def test_scenario_general_listing():
    intent = classify_intent("List 10 patients with their birthdates and genders")
    assert intent.query_type is QueryType.DATA_LIST
    assert intent.is_general_query is True
    assert not intent.filters
    assert intent.complexity is Complexity.SIMPLE


def test_condition_and_year():
    intent = classify_intent("Patients with diabetes born in 1964")
    assert intent.keywords == ("diabetes",)
    assert intent.filters.year == "1964"
    assert intent.has_condition_and_year
    assert intent.complexity is Complexity.COMPLEX
    assert intent.is_general_query is False


# ── Filters ─────────────────────────────────────────────

def test_female_does_not_match_male():
    assert classify_intent("Show female patients").filters.gender == "F"


def test_male_wins_when_both_present():
    assert classify_intent("Show women and men born in 1980").filters.gender == "M"


def test_race_filter():
    assert classify_intent("List white patients").filters.race == "white"


def test_first_year_wins():
    assert classify_intent("Patients born in 1990 or 2001").filters.year == "1990"


def test_no_year_outside_range():
    assert classify_intent("List 1800 patients").filters.year is None


# ── Keywords ────────────────────────────────────────────

def test_keywords_only_when_explicit():
    assert classify_intent("Patients with sugar problems").keywords == ()


def test_multiple_keywords_in_vocabulary_order():
    intent = classify_intent("Patients with asthma and diabetes")
    assert intent.keywords == ("diabetes", "asthma")


def test_general_query_requires_no_keyword():
    assert classify_intent("List patients with asthma").is_general_query is False


def test_exact_phrase():
    intent = classify_intent("Show patients who were born in 1997")
    assert intent.is_exact_phrase is True
    assert intent.is_general_query is True


# ── Input errors / immutability ─────────────────────────

@pytest.mark.parametrize("question", [None, "", "   ", 42])
def test_invalid_input(question):
    with pytest.raises(InvalidInput):
        classify_intent(question)


def test_intent_is_frozen():
    intent = classify_intent("How many patients are female?")
    with pytest.raises(ValidationError):
        intent.query_type = QueryType.DATA_LIST


# ── Descriptions ────────────────────────────────────────

def test_describe_population():
    assert describe_population(classify_intent("How many patients are female?")) == "female patients"
    assert describe_population(classify_intent("Count male patients with diabetes born in 1990")) == (
        "male patients with diabetes born in 1990"
    )


def test_describe_plan_mentions_staged_pattern():
    thought = describe_plan(classify_intent("Patients with diabetes born in 1964"))
    assert "staged" in thought
