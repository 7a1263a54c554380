"""
Trigger statements as a small tagged expression tree.

Stored statements are JSON objects. ``parse_statement`` turns them into a
tree of ``Comparison`` / ``AllOf`` / ``AnyOf`` / ``Not`` nodes and rejects
anything else with ``MalformedStatement``. Accepted forms::

    {"field": "value", "op": ">=", "threshold": 100}
    {"all": [<statement>, ...]}
    {"any": [<statement>, ...]}
    {"not": <statement>}

plus the two shorthands used by existing trigger definitions::

    {"waterLevel": 8.2}                           # value >= 8.2
    {"probability": 40, "maxLeadTimeDays": 3}     # 2 yr RP, lead day 1..3, value >= 40
"""

from __future__ import annotations

import operator
from dataclasses import dataclass
from typing import Any, Callable, Dict, Tuple, Union

from ..errors import FieldMismatch, MalformedStatement
from ..ingest.types import Reading

OPERATORS: Dict[str, Callable[[Any, Any], bool]] = {
    ">": operator.gt,
    ">=": operator.ge,
    "<": operator.lt,
    "<=": operator.le,
    "==": operator.eq,
    "!=": operator.ne,
}

ORDERING_OPS = frozenset({">", ">=", "<", "<="})

READING_FIELDS = ("value", "series_id", "source", "basin")

_MISSING = object()


@dataclass(frozen=True)
class Comparison:
    field: str
    op: str
    threshold: Any

    def evaluate(self, reading: Reading) -> bool:
        actual = resolve_field(reading, self.field)
        if not _comparable(actual, self.threshold, self.op):
            raise FieldMismatch(
                f"cannot compare {self.field}={actual!r} {self.op} {self.threshold!r}"
            )
        return OPERATORS[self.op](actual, self.threshold)


@dataclass(frozen=True)
class AllOf:
    children: Tuple["Statement", ...]

    def evaluate(self, reading: Reading) -> bool:
        return all(child.evaluate(reading) for child in self.children)


@dataclass(frozen=True)
class AnyOf:
    children: Tuple["Statement", ...]

    def evaluate(self, reading: Reading) -> bool:
        return any(child.evaluate(reading) for child in self.children)


@dataclass(frozen=True)
class Not:
    child: "Statement"

    def evaluate(self, reading: Reading) -> bool:
        return not self.child.evaluate(reading)


Statement = Union[Comparison, AllOf, AnyOf, Not]


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _is_scalar(value: Any) -> bool:
    return _is_number(value) or isinstance(value, (str, bool))


def _comparable(left: Any, right: Any, op: str) -> bool:
    """Both numbers or both strings; equality also accepts two bools."""
    if _is_number(left) and _is_number(right):
        return True
    if isinstance(left, str) and isinstance(right, str):
        return True
    return op not in ORDERING_OPS and isinstance(left, bool) and isinstance(right, bool)


def resolve_field(reading: Reading, name: str) -> Any:
    """Look ``name`` up on the reading, then in its metadata."""
    if name in READING_FIELDS:
        value = getattr(reading, name)
        if name == "source":
            return value.value
        return value

    value = reading.metadata.get(name, _MISSING) if reading.metadata else _MISSING
    if value is _MISSING:
        raise FieldMismatch(f"reading {reading.source.value}/{reading.series_id} has no field {name!r}")
    return value


def parse_statement(raw: Any) -> Statement:
    """Validate a stored statement and build its expression tree."""
    if not isinstance(raw, dict) or not raw:
        raise MalformedStatement(f"statement must be a non-empty object, got {raw!r}")

    if "all" in raw or "any" in raw:
        key = "all" if "all" in raw else "any"
        _only_keys(raw, {key})
        items = raw[key]
        if not isinstance(items, list) or not items:
            raise MalformedStatement(f"'{key}' needs a non-empty list")
        children = tuple(parse_statement(item) for item in items)
        return AllOf(children) if key == "all" else AnyOf(children)

    if "not" in raw:
        _only_keys(raw, {"not"})
        return Not(parse_statement(raw["not"]))

    if "field" in raw:
        _only_keys(raw, {"field", "op", "threshold"})
        field, op = raw.get("field"), raw.get("op")
        if not isinstance(field, str) or not field:
            raise MalformedStatement("'field' must be a non-empty string")
        if op not in OPERATORS:
            raise MalformedStatement(f"unknown operator {op!r}")
        if "threshold" not in raw:
            raise MalformedStatement("comparison needs a 'threshold'")
        threshold = raw["threshold"]
        if not _is_scalar(threshold):
            raise MalformedStatement(f"threshold {threshold!r} must be a number, string or boolean")
        if op in ORDERING_OPS and isinstance(threshold, bool):
            raise MalformedStatement(f"threshold {threshold!r} cannot be ordered")
        return Comparison(field, op, threshold)

    if "waterLevel" in raw:
        _only_keys(raw, {"waterLevel"})
        return Comparison("value", ">=", _number(raw, "waterLevel"))

    if "probability" in raw:
        _only_keys(raw, {"probability", "maxLeadTimeDays"})
        probability = _number(raw, "probability")
        lead_days = _number(raw, "maxLeadTimeDays")
        return AllOf((
            Comparison("series_id", "==", "rp2"),
            Comparison("lead_day", ">=", 1),
            Comparison("lead_day", "<=", lead_days),
            Comparison("value", ">=", probability),
        ))

    raise MalformedStatement(f"unrecognized statement keys {sorted(raw)}")


def _only_keys(raw: Dict[str, Any], allowed: set) -> None:
    extra = set(raw) - allowed
    if extra:
        raise MalformedStatement(f"unexpected keys {sorted(extra)}")


def _number(raw: Dict[str, Any], key: str) -> float:
    value = raw.get(key)
    if isinstance(value, str):
        try:
            return float(value)
        except ValueError:
            raise MalformedStatement(f"'{key}' must be numeric, got {value!r}")
    if not _is_number(value):
        raise MalformedStatement(f"'{key}' must be numeric, got {value!r}")
    return value

