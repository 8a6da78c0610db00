"""
Stored records.

A Record is the read-only mapping a collection hands out. It holds:

- key: internal identity (uuid4 hex), stable across updates
- collection: the owning collection
- data: the schema output with relation paths blanked
- relations: one RelationSlot per relation path, storing target keys

Relation paths are materialized on every read, so a record always reflects
the current state of the records it references: a ``one`` relation yields
the target Record (or None), a ``many`` relation yields a fresh list of the
targets that still exist.

Invariants:
    - Records are never mutated through the mapping interface
    - Nested plain containers are copied on read
    - Two records are equal only if they share a key and a value;
      a record equals any other mapping with the same items
    - Successive versions of a record share one relations table
"""

from __future__ import annotations

import copy
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any, Dict, Iterator, List, Optional, Tuple

from .errors import RelationError, RelationErrorCode

if TYPE_CHECKING:
    from .collection import Collection
    from .relation import RelationSlot

Path = Tuple[str, ...]

MISSING = object()


class Record(Mapping):
    """A stored, schema-validated entity owned by a Collection."""

    __slots__ = ("_key", "_collection", "_data", "_relations", "_embedded")

    def __init__(
        self,
        key: str,
        collection: Collection,
        data: Dict[str, Any],
        relations: Optional[Dict[Path, RelationSlot]] = None,
        embedded: Optional[Dict[Path, List[Record]]] = None,
    ) -> None:
        self._key = key
        self._collection = collection
        self._data = data
        self._relations: Dict[Path, RelationSlot] = relations if relations is not None else {}
        # records found at paths that were not relations when this record was created
        self._embedded: Dict[Path, List[Record]] = embedded or {}

    @property
    def key(self) -> str:
        return self._key

    @property
    def collection(self) -> Collection:
        return self._collection

    def __getitem__(self, name: str) -> Any:
        path = (name,)
        if path in self._relations:
            return self._relations[path].resolve()
        value = self._data.get(name, MISSING)
        if value is MISSING:
            if self._has_nested_relations(path):
                return self._materialize(path, {})
            raise KeyError(name)
        return self._materialize(path, value)

    def __iter__(self) -> Iterator[str]:
        yield from self._data
        seen = set(self._data)
        for path in self._relations:
            if path[0] not in seen:
                seen.add(path[0])
                yield path[0]

    def __len__(self) -> int:
        return sum(1 for _ in self)

    def __contains__(self, name: object) -> bool:
        if name in self._data:
            return True
        return any(path[0] == name for path in self._relations)

    def __setitem__(self, name: str, value: Any) -> None:
        if any(path[0] == name for path in self._relations):
            raise RelationError(
                f'Failed to set "{name}" on a {self._collection.name} record: '
                "relational properties can only be changed through update()",
                code=RelationErrorCode.UNEXPECTED_SET_EXPRESSION,
                path=(name,),
                owner=self._collection.name,
                owner_key=self._key,
            )
        raise TypeError("Record does not support item assignment; use Collection.update()")

    def __delitem__(self, name: str) -> None:
        raise TypeError("Record does not support item deletion; use Collection.update()")

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Record):
            if self is other:
                return True
            return (
                self._collection is other._collection
                and self._key == other._key
                and self._data == other._data
                and self.relation_keys() == other.relation_keys()
            )
        return super().__eq__(other)

    def __ne__(self, other: object) -> bool:
        result = self.__eq__(other)
        if result is NotImplemented:
            return result
        return not result

    def __hash__(self) -> int:
        return hash((id(self._collection), self._key))

    def __repr__(self) -> str:
        return f"Record({self._collection.name!r}, key={self._key[:8]!r}, {self.to_dict(depth=0)!r})"

    def relation_keys(self) -> Dict[Path, Tuple[str, ...]]:
        """Target keys per relation path."""
        return {path: tuple(slot.keys) for path, slot in self._relations.items()}

    def to_dict(self, depth: int = 1) -> Dict[str, Any]:
        """Return a plain snapshot of this record.

        Args:
            depth: Number of relation hops to expand. Relation fields past
                this depth hold the relation default (None or []).
        """
        return {name: self._snapshot((name,), self._data.get(name), depth) for name in self}

    def _has_nested_relations(self, path: Path) -> bool:
        size = len(path)
        return any(len(p) > size and p[:size] == path for p in self._relations)

    def _child_names(self, path: Path, value: Mapping) -> List[str]:
        names = list(value)
        size = len(path)
        for p in self._relations:
            if len(p) > size and p[:size] == path and p[size] not in names:
                names.append(p[size])
        return names

    def _materialize(self, path: Path, value: Any) -> Any:
        slot = self._relations.get(path)
        if slot is not None:
            return slot.resolve()
        if self._has_nested_relations(path):
            if not isinstance(value, Mapping):
                value = {}
            return {
                name: self._materialize(path + (name,), value.get(name))
                for name in self._child_names(path, value)
            }
        return copy.deepcopy(value)

    def _snapshot(self, path: Path, value: Any, depth: int) -> Any:
        slot = self._relations.get(path)
        if slot is not None:
            if depth <= 0:
                return slot.descriptor.default()
            resolved = slot.resolve()
            if isinstance(resolved, list):
                return [record.to_dict(depth - 1) for record in resolved]
            if isinstance(resolved, Record):
                return resolved.to_dict(depth - 1)
            return resolved
        if self._has_nested_relations(path):
            if not isinstance(value, Mapping):
                value = {}
            return {
                name: self._snapshot(path + (name,), value.get(name), depth)
                for name in self._child_names(path, value)
            }
        return copy.deepcopy(value)


def get_at_path(value: Any, path: Path, default: Any = None) -> Any:
    """Read a nested value by path, returning default when a segment is missing."""
    for segment in path:
        if isinstance(value, Mapping) and segment in value:
            value = value[segment]
        elif isinstance(value, list) and isinstance(segment, int) and -len(value) <= segment < len(value):
            value = value[segment]
        else:
            return default
    return value


def set_at_path(target: Dict[str, Any], path: Path, value: Any) -> None:
    """Write a nested value by path, creating intermediate dicts."""
    for segment in path[:-1]:
        child = target.get(segment)
        if not isinstance(child, dict):
            child = {}
            target[segment] = child
        target = child
    target[path[-1]] = value


def delete_at_path(target: Dict[str, Any], path: Path) -> None:
    for segment in path[:-1]:
        child = target.get(segment)
        if not isinstance(child, dict):
            return
        target = child
    target.pop(path[-1], None)
