"""
Typed comparators for where() shapes.

A leaf of a where() shape may be a mapping of comparator names to expected
values, e.g. ``{"age": {"gte": 18, "lt": 65}}``. The comparators available
depend on the kind of the field value at test time.

Invariants:
    - A comparator applied to None never matches
    - Comparators are pure: (expected, actual) -> bool
    - A comparator not defined for the value's kind raises QueryError
"""

from __future__ import annotations

import datetime
from enum import Enum
from numbers import Real
from typing import Any, Callable, Dict, Optional

from .errors import QueryError

Comparator = Callable[[Any, Any], bool]


class ValueKind(str, Enum):
    """Kinds of field values that carry comparators."""

    STRING = "string"
    NUMBER = "number"
    DATE = "date"
    BOOLEAN = "boolean"

    @classmethod
    def of(cls, value: Any) -> Optional[ValueKind]:
        """Infer the kind of a field value, or None if it has no comparators."""
        # bool is a subclass of int
        if isinstance(value, bool):
            return cls.BOOLEAN
        if isinstance(value, str):
            return cls.STRING
        if isinstance(value, Real):
            return cls.NUMBER
        if isinstance(value, (datetime.date, datetime.datetime)):
            return cls.DATE
        return None


def _between(expected: Any, actual: Any) -> bool:
    low, high = expected
    return low <= actual <= high


STRING_COMPARATORS: Dict[str, Comparator] = {
    "equals": lambda expected, actual: expected == actual,
    "not_equals": lambda expected, actual: expected != actual,
    "contains": lambda expected, actual: expected in actual,
    "not_contains": lambda expected, actual: expected not in actual,
    "in": lambda expected, actual: actual in expected,
    "not_in": lambda expected, actual: actual not in expected,
}

NUMBER_COMPARATORS: Dict[str, Comparator] = {
    "equals": lambda expected, actual: expected == actual,
    "not_equals": lambda expected, actual: expected != actual,
    "gt": lambda expected, actual: actual > expected,
    "gte": lambda expected, actual: actual >= expected,
    "lt": lambda expected, actual: actual < expected,
    "lte": lambda expected, actual: actual <= expected,
    "between": _between,
    "not_between": lambda expected, actual: not _between(expected, actual),
    "in": lambda expected, actual: actual in expected,
    "not_in": lambda expected, actual: actual not in expected,
}

DATE_COMPARATORS: Dict[str, Comparator] = {
    "equals": lambda expected, actual: expected == actual,
    "not_equals": lambda expected, actual: expected != actual,
    "gt": lambda expected, actual: actual > expected,
    "gte": lambda expected, actual: actual >= expected,
    "lt": lambda expected, actual: actual < expected,
    "lte": lambda expected, actual: actual <= expected,
}

BOOLEAN_COMPARATORS: Dict[str, Comparator] = {
    "equals": lambda expected, actual: expected == actual,
    "not_equals": lambda expected, actual: expected != actual,
}

COMPARATORS_BY_KIND: Dict[ValueKind, Dict[str, Comparator]] = {
    ValueKind.STRING: STRING_COMPARATORS,
    ValueKind.NUMBER: NUMBER_COMPARATORS,
    ValueKind.DATE: DATE_COMPARATORS,
    ValueKind.BOOLEAN: BOOLEAN_COMPARATORS,
}

COMPARATOR_NAMES = frozenset(
    name for comparators in COMPARATORS_BY_KIND.values() for name in comparators
)


def is_comparator_spec(value: Any) -> bool:
    """Whether a mapping consists only of comparator names."""
    return bool(value) and all(
        isinstance(key, str) and key in COMPARATOR_NAMES for key in value
    )


def compare(name: str, expected: Any, actual: Any) -> bool:
    """Apply a named comparator to a field value.

    Args:
        name: Comparator name, e.g. "gte"
        expected: Value given in the where() shape
        actual: Field value of the tested record

    Returns:
        Whether the field value satisfies the comparator

    Raises:
        QueryError: If the comparator is not defined for the value's kind
    """
    if actual is None:
        return False

    kind = ValueKind.of(actual)
    if kind is None:
        raise QueryError(
            f"Comparator '{name}' cannot be applied to a value of type {type(actual).__name__}",
            details={"comparator": name},
        )

    comparator = COMPARATORS_BY_KIND[kind].get(name)
    if comparator is None:
        available = ", ".join(COMPARATORS_BY_KIND[kind])
        raise QueryError(
            f"Comparator '{name}' is not supported for {kind.value} fields (available: {available})",
            details={"comparator": name, "kind": kind.value},
        )
    return comparator(expected, actual)
