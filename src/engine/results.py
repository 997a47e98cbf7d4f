"""
Result validator -- classifies executed rows into a closed ResultShape and
judges whether that shape answers the question's Intent.

Classification is structural and happens exactly once per execution.  Every
consumer downstream (the refinement loop, the conclusion synthesizer)
dispatches on the shape's type and never goes back to the raw rows.

Validation rules, in order:
  1. Empty is invalid unless the caller has run out of escalation strategies.
  2. A COUNT intent never accepts a multi-record list or an unrecognised shape.
  3. Declared filters must be observable in the result:
       gender -> every record carries the requested gender
       race / year -> at least one record shows it, none contradicts it
  4. Declared condition keywords must each appear in a condition-like field
     of at least one record (skipped for deliberately broadened queries).
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Union

from src.engine.intent import Intent, QueryType
from src.core.logging import get_logger

logger = get_logger(__name__)


# ── Shapes ───────────────────────────────────────────────

@dataclass(frozen=True)
class Scalar:
    value: float | int


@dataclass(frozen=True)
class BinaryDistribution:
    labels: tuple[str, str]
    a: float | int
    b: float | int


@dataclass(frozen=True)
class CategoryCount:
    category: str
    count: float | int


@dataclass(frozen=True)
class CategoryCountList:
    field: str
    items: tuple[CategoryCount, ...]


@dataclass(frozen=True)
class RecordList:
    records: tuple[dict[str, Any], ...]

    def __len__(self) -> int:
        return len(self.records)


@dataclass(frozen=True)
class Empty:
    pass


@dataclass(frozen=True)
class Unknown:
    raw: Any = None


ResultShape = Union[Scalar, BinaryDistribution, CategoryCountList, RecordList, Empty, Unknown]

AGGREGATE_SHAPES = (Scalar, BinaryDistribution, CategoryCountList)


@dataclass(frozen=True)
class ValidationVerdict:
    is_valid: bool
    reason: str = ""


# ── Field vocabularies ───────────────────────────────────

_BINARY_PAIRS: list[tuple[str, str]] = [
    ("male", "female"),
    ("m", "f"),
    ("alive", "deceased"),
    ("living", "deceased"),
]

_COUNT_FIELDS = ("count", "total", "n", "value", "patients", "num_patients", "patient_count")

_GENDER_FIELDS = ("gender", "sex")
_RACE_FIELDS = ("race",)
_YEAR_FIELDS = ("birthdate", "birth_date", "dob", "birth_year", "year")
_CONDITION_FIELDS = ("condition", "description", "conditions", "reasondescription", "condition_description")

_GENDER_ALIASES = {"m": "M", "male": "M", "f": "F", "female": "F"}


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _lower_keys(record: dict[str, Any]) -> dict[str, Any]:
    return {str(k).lower(): v for k, v in record.items()}


def _first_field(record: dict[str, Any], names: tuple[str, ...]) -> tuple[bool, Any]:
    lowered = _lower_keys(record)
    for name in names:
        if name in lowered:
            return True, lowered[name]
    return False, None


# ── Classification ───────────────────────────────────────

def _classify_single_object(obj: dict[str, Any]) -> ResultShape | None:
    numeric = {str(k).lower(): v for k, v in obj.items() if _is_number(v)}
    if len(numeric) == 2 and len(obj) == 2:
        keys = set(numeric)
        for a, b in _BINARY_PAIRS:
            if keys == {a, b}:
                return BinaryDistribution(labels=(a, b), a=numeric[a], b=numeric[b])
    if len(obj) == 1 and len(numeric) == 1:
        return Scalar(value=next(iter(numeric.values())))
    return None


def _as_category_count(obj: dict[str, Any]) -> tuple[str, str, Any] | None:
    """(label field, label, count) when *obj* looks like one {category, count} row."""
    if len(obj) != 2:
        return None
    lowered = _lower_keys(obj)
    count_key = next((k for k in _COUNT_FIELDS if k in lowered and _is_number(lowered[k])), None)
    if count_key is None:
        return None
    label_key = next(k for k in lowered if k != count_key)
    label = lowered[label_key]
    if isinstance(label, (dict, list)):
        return None
    return label_key, "unknown" if label is None else str(label), lowered[count_key]


def classify_rows(rows: Any) -> ResultShape:
    """Assign the single ResultShape for one execution's raw rows."""
    if rows is None:
        return Empty()
    if not isinstance(rows, list):
        rows = [rows]
    if not rows:
        return Empty()

    if len(rows) == 1:
        only = rows[0]
        if _is_number(only):
            return Scalar(value=only)
        if isinstance(only, dict):
            shape = _classify_single_object(only)
            if shape is not None:
                return shape

    if all(isinstance(r, dict) for r in rows):
        pairs = [_as_category_count(r) for r in rows]
        if all(p is not None for p in pairs) and len({p[0] for p in pairs}) == 1:
            return CategoryCountList(
                field=pairs[0][0],
                items=tuple(CategoryCount(category=p[1], count=p[2]) for p in pairs),
            )
        return RecordList(records=tuple(rows))

    if len(rows) > 1 and all(r is None or isinstance(r, (str, int, float, bool)) for r in rows):
        return RecordList(records=tuple({"value": r} for r in rows))

    return Unknown(raw=rows)


def shape_name(shape: ResultShape) -> str:
    return type(shape).__name__


# ── Validation ───────────────────────────────────────────

def _normalise_gender(value: Any) -> str | None:
    if value is None:
        return None
    return _GENDER_ALIASES.get(str(value).strip().lower(), str(value).strip().upper())


def _check_gender(records: tuple[dict[str, Any], ...], gender: str) -> str | None:
    for rec in records:
        present, value = _first_field(rec, _GENDER_FIELDS)
        if not present or _normalise_gender(value) != gender:
            label = "male" if gender == "M" else "female"
            return f"Results don't apply the gender filter: every record must be {label} (GENDER == '{gender}')."
    return None


def _check_some_none_contradict(
    records: tuple[dict[str, Any], ...],
    names: tuple[str, ...],
    matches,
    missing_reason: str,
) -> str | None:
    seen = False
    for rec in records:
        present, value = _first_field(rec, names)
        if not present or value is None:
            continue
        if not matches(value):
            return missing_reason
        seen = True
    return None if seen else missing_reason


def _check_record_filters(shape: RecordList, intent: Intent) -> str | None:
    f = intent.filters
    if f.gender:
        reason = _check_gender(shape.records, f.gender)
        if reason:
            return reason
    if f.race:
        race = f.race.lower()
        reason = _check_some_none_contradict(
            shape.records, _RACE_FIELDS,
            lambda v: race in str(v).lower(),
            f"Results don't contain the requested race '{f.race}'.",
        )
        if reason:
            return reason
    if f.year:
        year = f.year
        reason = _check_some_none_contradict(
            shape.records, _YEAR_FIELDS,
            lambda v: year in str(v),
            f"Results don't contain the requested year {year}.",
        )
        if reason:
            return reason
    return None


def _check_keywords(shape: RecordList, intent: Intent) -> str | None:
    for keyword in intent.keywords:
        kw = keyword.lower()
        found = False
        for rec in shape.records:
            present, value = _first_field(rec, _CONDITION_FIELDS)
            if present and isinstance(value, (str, list)) and kw in str(value).lower():
                found = True
                break
        if not found:
            return f"Results don't properly match the medical term '{keyword}' (no condition field mentions it)."
    return None


def _check_category_filters(shape: CategoryCountList, intent: Intent) -> str | None:
    f = intent.filters
    categories = [item.category.lower() for item in shape.items]
    if shape.field in _GENDER_FIELDS and f.gender:
        if not any(_normalise_gender(c) == f.gender for c in categories):
            return f"Results don't include the requested gender '{f.gender}'."
    if shape.field in _RACE_FIELDS and f.race:
        if not any(f.race.lower() in c for c in categories):
            return f"Results don't include the requested race '{f.race}'."
    return None


def validate_shape(
    shape: ResultShape,
    intent: Intent,
    *,
    accept_empty: bool = False,
    broadened: bool = False,
) -> ValidationVerdict:
    """Judge whether *shape* plausibly answers *intent*.

    Parameters
    ----------
    accept_empty : bool
        True once the caller has exhausted escalation; an Empty result is then
        the answer ("no matching data") rather than a failure.
    broadened : bool
        True when the query deliberately dropped the condition filter, so the
        keyword rule is not applied.
    """
    if isinstance(shape, Empty):
        if accept_empty:
            return ValidationVerdict(True, "No matching data after all strategies were tried.")
        return ValidationVerdict(False, "No results found. There might not be any patients matching these criteria.")

    if intent.query_type is QueryType.COUNT:
        if isinstance(shape, RecordList) and len(shape) > 1:
            return ValidationVerdict(
                False,
                f"The query returned a list of {len(shape)} records, but a counting question needs "
                "a single number (RETURN LENGTH(...)) or a grouped count.",
            )
        if isinstance(shape, Unknown):
            return ValidationVerdict(False, "The result is not a count; return a single number or grouped counts.")

    if isinstance(shape, RecordList):
        reason = _check_record_filters(shape, intent)
        if reason is None and not broadened:
            reason = _check_keywords(shape, intent)
        if reason:
            return ValidationVerdict(False, reason)

    if isinstance(shape, CategoryCountList):
        reason = _check_category_filters(shape, intent)
        if reason:
            return ValidationVerdict(False, reason)

    return ValidationVerdict(True, f"{shape_name(shape)} result matches the question.")
