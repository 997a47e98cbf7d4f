"""
Unit tests -- result validator: shape classification and verdicts.
"""
import pytest

from src.engine.intent import Intent, IntentFilters, QueryType, classify_intent
from src.engine.results import (
    BinaryDistribution,
    CategoryCountList,
    Empty,
    RecordList,
    Scalar,
    Unknown,
    classify_rows,
    validate_shape,
)


# ── Classification ──────────────────────────────────────

@pytest.mark.parametrize("rows,expected", [
    ([], Empty),
    (None, Empty),
    ([42], Scalar),
    ([{"count": 7}], Scalar),
    ([{"male": 10, "female": 12}], BinaryDistribution),
    ([{"M": 3, "F": 4}], BinaryDistribution),
    ([{"race": "white", "count": 10}, {"race": "black", "count": 5}], CategoryCountList),
    ([{"race": "white", "count": 10}], CategoryCountList),
    ([{"id": "p1", "gender": "F"}], RecordList),
    ([{"id": "p1"}, {"id": "p2", "gender": "M"}], RecordList),
    (["a", "b", "c"], RecordList),
    ([[1, 2]], Unknown),
    ([{"a": 1}, "b"], Unknown),
])
def test_classify(rows, expected):
    assert isinstance(classify_rows(rows), expected)


def test_binary_keeps_order():
    shape = classify_rows([{"female": 12, "male": 10}])
    assert shape.labels == ("male", "female")
    assert (shape.a, shape.b) == (10, 12)


def test_category_items():
    shape = classify_rows([{"gender": "M", "total": 3}, {"gender": "F", "total": 4}])
    assert shape.field == "gender"
    assert [(i.category, i.count) for i in shape.items] == [("M", 3), ("F", 4)]


def test_primitive_list_wrapped():
    shape = classify_rows(["p1", "p2"])
    assert shape.records == ({"value": "p1"}, {"value": "p2"})


def test_single_object_without_count_field_is_records():
    shape = classify_rows([{"avg_age": 45.2, "max_age": 90}])
    assert isinstance(shape, RecordList)
    assert len(shape) == 1


# ── Count intents ───────────────────────────────────────

_COUNT = Intent(query_type=QueryType.COUNT)


def test_count_rejects_record_list():
    shape = RecordList(records=tuple({"id": i} for i in range(20)))
    verdict = validate_shape(shape, _COUNT)
    assert verdict.is_valid is False
    assert "list of 20 records" in verdict.reason


def test_count_rejects_unknown():
    assert validate_shape(Unknown(raw=[[1]]), _COUNT).is_valid is False


@pytest.mark.parametrize("shape", [
    Scalar(5),
    BinaryDistribution(labels=("male", "female"), a=1, b=2),
    classify_rows([{"race": "white", "count": 1}, {"race": "asian", "count": 2}]),
])
def test_count_accepts_aggregates(shape):
    assert validate_shape(shape, _COUNT).is_valid is True


# ── Filters ─────────────────────────────────────────────

_FEMALE = Intent(query_type=QueryType.DATA_LIST, filters=IntentFilters(gender="F"))


def test_gender_must_match_every_record():
    shape = classify_rows([{"id": 1, "gender": "F"}, {"id": 2, "gender": "M"}])
    verdict = validate_shape(shape, _FEMALE)
    assert verdict.is_valid is False
    assert "gender" in verdict.reason


def test_gender_accepts_word_values():
    shape = classify_rows([{"id": 1, "GENDER": "female"}, {"id": 2, "gender": "F"}])
    assert validate_shape(shape, _FEMALE).is_valid is True


def test_gender_missing_field_rejected():
    shape = classify_rows([{"id": 1}, {"id": 2}])
    assert validate_shape(shape, _FEMALE).is_valid is False


def test_year_present_and_not_contradicted():
    intent = Intent(query_type=QueryType.DATA_LIST, filters=IntentFilters(year="1964"))
    ok = classify_rows([{"birthdate": "1964-02-01"}, {"birthdate": "1964-11-30"}])
    bad = classify_rows([{"birthdate": "1964-02-01"}, {"birthdate": "1970-11-30"}])
    missing = classify_rows([{"id": 1}, {"id": 2}])
    assert validate_shape(ok, intent).is_valid is True
    assert validate_shape(bad, intent).is_valid is False
    verdict = validate_shape(missing, intent)
    assert verdict.is_valid is False
    assert "1964" in verdict.reason


def test_race_substring_match():
    intent = Intent(query_type=QueryType.DATA_LIST, filters=IntentFilters(race="white"))
    shape = classify_rows([{"id": 1, "race": "White"}, {"id": 2, "race": "white"}])
    assert validate_shape(shape, intent).is_valid is True


def test_category_list_must_include_filter_value():
    intent = Intent(query_type=QueryType.COUNT, filters=IntentFilters(race="asian"))
    shape = classify_rows([{"race": "white", "count": 1}, {"race": "black", "count": 2}])
    assert validate_shape(shape, intent).is_valid is False


# ── Keywords ────────────────────────────────────────────

_DIABETES = classify_intent("Patients with diabetes born in 1964")


def test_keyword_must_appear_in_condition_field():
    shape = classify_rows([{"id": 1, "birthdate": "1964-01-01", "condition": "Diabetes mellitus type 2"}])
    assert validate_shape(shape, _DIABETES).is_valid is True


def test_keyword_missing_rejected():
    shape = classify_rows([{"id": 1, "birthdate": "1964-01-01", "condition": "Asthma"}])
    verdict = validate_shape(shape, _DIABETES)
    assert verdict.is_valid is False
    assert "diabetes" in verdict.reason


def test_broadened_skips_keyword_check():
    shape = classify_rows([{"id": 1, "birthdate": "1964-01-01"}])
    assert validate_shape(shape, _DIABETES, broadened=True).is_valid is True


# ── Empty ───────────────────────────────────────────────

def test_empty_invalid_by_default():
    verdict = validate_shape(Empty(), _FEMALE)
    assert verdict.is_valid is False
    assert "No results" in verdict.reason


def test_empty_accepted_when_strategies_spent():
    assert validate_shape(Empty(), _FEMALE, accept_empty=True).is_valid is True


def test_scalar_skips_filter_checks():
    assert validate_shape(Scalar(3), _FEMALE).is_valid is True
