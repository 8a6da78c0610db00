"""
Composable record predicates.

A Query holds an optional base predicate and a chain of AND/OR combinators.
``where(shape)`` compiles a nested mapping into a tree of match nodes:

- ShapeNode: recurse into a mapping value by key
- ValueNode: strict equality against a primitive (or list)
- IdentityNode: the same stored record, across updates
- PredicateNode: call a function with the field value
- ComparatorNode: dispatch to the typed comparator library

A ShapeNode aimed at a list (e.g. a ``many`` relation) matches when at least
one element matches. Relation fields are matched against the resolved
related records, since records materialize them on read.

Invariants:
    - Queries are immutable; where/and_/or_ return new queries
    - test() is pure: no storage access, no mutation
    - An empty Query() and where({}) match every record
    - Combinators fold left in declaration order

Example:
    >>> q = Query()
    >>> q.where({"id": 1}).or_({"id": 3}).test({"id": 3})
    True
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Callable, Optional, Sequence, Tuple, Union

from .comparators import compare, is_comparator_spec
from .errors import UnknownFieldError
from .record import Record
from .schema import suggest_fields

Predicate = Callable[[Any], bool]

AND = "and"
OR = "or"


class Node:
    """A compiled where() node."""

    def matches(self, value: Any) -> bool:
        raise NotImplementedError


@dataclass(frozen=True)
class ValueNode(Node):
    expected: Any

    def matches(self, value: Any) -> bool:
        # True == 1 in Python; keep booleans distinct from numbers
        if isinstance(self.expected, bool) or isinstance(value, bool):
            return type(self.expected) is type(value) and self.expected == value
        return self.expected == value


@dataclass(frozen=True)
class PredicateNode(Node):
    func: Predicate

    def matches(self, value: Any) -> bool:
        return bool(self.func(value))


@dataclass(frozen=True)
class ComparatorNode(Node):
    comparators: Tuple[Tuple[str, Any], ...]

    def matches(self, value: Any) -> bool:
        return all(compare(name, expected, value) for name, expected in self.comparators)


@dataclass(frozen=True)
class ShapeNode(Node):
    fields: Tuple[Tuple[str, Node], ...]

    def matches(self, value: Any) -> bool:
        if not isinstance(value, Mapping):
            return False
        for key, node in self.fields:
            if key not in value:
                return False
            actual = value[key]
            if isinstance(node, ShapeNode) and isinstance(actual, (list, tuple)):
                if not any(node.matches(item) for item in actual):
                    return False
            elif not node.matches(actual):
                return False
        return True


@dataclass(frozen=True)
class IdentityNode(Node):
    """Match a record by owning collection and key.

    A list value (a ``many`` relation) matches when any element does.
    """

    collection: Any
    key: str

    def matches(self, value: Any) -> bool:
        if isinstance(value, (list, tuple)):
            return any(self._is_target(item) for item in value)
        return self._is_target(value)

    def _is_target(self, value: Any) -> bool:
        return isinstance(value, Record) and value.collection is self.collection and value.key == self.key


def compile_shape(shape: Mapping) -> ShapeNode:
    """Compile a where() mapping into a ShapeNode tree."""
    return ShapeNode(tuple((key, _compile_leaf(value)) for key, value in shape.items()))


def _compile_leaf(value: Any) -> Node:
    if isinstance(value, Query):
        return PredicateNode(value.test)
    # Records are mappings but match by identity, not by value
    if isinstance(value, Record):
        return IdentityNode(value.collection, value.key)
    if isinstance(value, Mapping):
        if is_comparator_spec(value):
            return ComparatorNode(tuple(value.items()))
        return compile_shape(value)
    if callable(value) and not isinstance(value, type):
        return PredicateNode(value)
    return ValueNode(value)


def _match_all(record: Any) -> bool:
    return True


def _all_of(predicates: Sequence[Predicate]) -> Predicate:
    def test(record: Any) -> bool:
        return all(predicate(record) for predicate in predicates)

    return test


def _any_of(predicates: Sequence[Predicate]) -> Predicate:
    def test(record: Any) -> bool:
        return any(predicate(record) for predicate in predicates)

    return test


Condition = Union["Query", Mapping, Predicate]


class Query:
    """Composable predicate over records.

    Args:
        predicate: Optional base predicate function
        fields: Known top-level field names; unknown where() keys raise
        type_name: Name used in UnknownFieldError messages
    """

    def __init__(
        self,
        predicate: Optional[Predicate] = None,
        *,
        fields: Optional[Sequence[str]] = None,
        type_name: str = "Record",
    ) -> None:
        self._predicate = predicate
        self._combinators: Tuple[Tuple[str, Predicate], ...] = ()
        self._fields = tuple(fields) if fields is not None else None
        self._type_name = type_name
        self._compiled: Optional[Predicate] = predicate

    @property
    def fields(self) -> Optional[Tuple[str, ...]]:
        return self._fields

    @property
    def empty(self) -> bool:
        """Whether this query has no predicate and matches everything."""
        return self._compiled is None

    def where(self, shape: Union[Mapping, Predicate]) -> Query:
        """Narrow the query to records matching a shape or predicate.

        Raises:
            UnknownFieldError: If a top-level shape key is not a known field
        """
        return self._derive(AND, self._normalize(shape))

    def and_(self, *conditions: Condition) -> Query:
        """Require every condition in addition to the current predicate."""
        predicates = [p for p in (self._normalize(c) for c in conditions) if p is not None]
        if not predicates:
            return self
        return self._derive(AND, predicates[0] if len(predicates) == 1 else _all_of(predicates))

    def or_(self, *conditions: Condition) -> Query:
        """Match the current predicate or any of the conditions.

        An empty condition (``{}`` or ``Query()``) matches every record, so
        the result does too.
        """
        normalized = [self._normalize(c) for c in conditions]
        if not normalized:
            return self
        if any(p is None for p in normalized):
            return self._derive(OR, _match_all)
        predicates = [p for p in normalized if p is not None]
        return self._derive(OR, predicates[0] if len(predicates) == 1 else _any_of(predicates))

    def test(self, record: Any) -> bool:
        if self._compiled is None:
            return True
        return bool(self._compiled(record))

    __call__ = test

    def _derive(self, op: str, predicate: Optional[Predicate]) -> Query:
        if predicate is None:
            return self
        query = Query(self._predicate, fields=self._fields, type_name=self._type_name)
        query._combinators = self._combinators + ((op, predicate),)
        query._compiled = query._fold()
        return query

    def _fold(self) -> Optional[Predicate]:
        compiled = self._predicate
        for op, predicate in self._combinators:
            # a query without a predicate is neutral as the left operand
            if compiled is None:
                compiled = predicate
            elif op == AND:
                compiled = _all_of((compiled, predicate))
            else:
                compiled = _any_of((compiled, predicate))
        return compiled

    def _normalize(self, condition: Condition) -> Optional[Predicate]:
        if isinstance(condition, Query):
            return condition._compiled
        if isinstance(condition, Mapping) and not isinstance(condition, Record):
            if not condition:
                return None
            self._check_fields(condition)
            return compile_shape(condition).matches
        if callable(condition):
            return condition
        raise TypeError(
            f"Expected a Query, a mapping or a predicate function, got {type(condition).__name__}"
        )

    def _check_fields(self, shape: Mapping) -> None:
        if self._fields is None:
            return
        known = list(self._fields)
        for key in shape:
            if key not in self._fields:
                raise UnknownFieldError(str(key), self._type_name, suggest_fields(str(key), known))

    def __repr__(self) -> str:
        ops = ", ".join(op for op, _ in self._combinators)
        return f"Query(type={self._type_name!r}, combinators=[{ops}])"
