"""
In-memory collection of schema-validated records.

A Collection owns an ordered record set (insertion order), validates writes
through its schema, keeps relation integrity across collections and
publishes lifecycle hooks.

Write path (create):
    1. Sanitize input: records at relation paths become key links plus a
       one-level snapshot for validation
    2. Validate through the schema (may suspend if the schema is async)
    3. Check relation integrity (live targets, uniqueness)
    4. Append, link inverse relations, fire "create"

Update path:
    1. Take the write lock and build a draft from the stored record: a deep
       copy where relation values are mutable copies of the related records
    2. Run the updater (or merge a partial mapping) against the draft
    3. Diff draft vs original per path; classify relation relinks and
       edits of related records
    4. Re-validate the whole draft; on failure nothing is committed
    5. Replace the record, relink, release the lock
    6. Fire "update" once per changed path
    7. Forward edits of related records to their own collections

Invariants:
    - Storage is only mutated by create/update/delete/clear
    - Writes are serialized per collection by an asyncio.Lock; reads and
      deletes never suspend
    - Overlapping updates of one record apply in order, each seeing the
      result of the one before
    - Records keep their key across updates
    - A unique relation target has at most one owner
    - Batch operations commit per record (no batch rollback)

How to change safely:
    - Keep every storage mutation inside the lock or in a synchronous method
    - Emit hooks after the storage change they describe (delete: before)
    - Never hand out self._records itself

Example:
    >>> users = Collection(User)
    >>> user = await users.create({"id": 1, "name": "John"})
    >>> users.find_first(lambda q: q.where({"name": "John"})) == user
    True
"""

from __future__ import annotations

import asyncio
import copy
import inspect
import itertools
import logging
import uuid
from collections.abc import Mapping
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, Union

from .config import StoreSettings, get_settings
from .errors import (
    BatchOperationError,
    DefinitionError,
    DefinitionErrorCode,
    OperationError,
    OperationErrorCode,
    RelationError,
    RelationErrorCode,
    StrictQueryError,
    ValidationError,
)
from .hooks import CreateEvent, DeleteEvent, HooksEmitter, UpdateEvent
from .query import Query
from .record import MISSING, Path, Record, delete_at_path, get_at_path, set_at_path
from .registry import CollectionRegistry
from .relation import (
    RelationBuilder,
    RelationDescriptor,
    RelationSlot,
    check_unique,
    flatten_relations,
    link_inverse,
    sever,
    unlink_inverse,
)
from .schema import Schema, as_schema, parse_value, schema_field_names, schema_name
from .sort import sort_records

logger = logging.getLogger(__name__)

_collection_ids = itertools.count(1)

Predicate = Union[Query, Callable[[Query], Query], Mapping, Record, None]
Updater = Callable[[Dict[str, Any], Record], Any]


class _ForeignDraft(dict):
    """Mutable copy of a related record inside an update draft."""

    __slots__ = ("record", "baseline")

    def __init__(self, record: Record) -> None:
        super().__init__(record.to_dict(depth=0))
        self.record = record
        self.baseline = copy.deepcopy(dict(self))


class _UpdatePlan:
    """Changes found by diffing an update draft against its record."""

    def __init__(self) -> None:
        # (path, is_relation) in discovery order
        self.changes: List[Tuple[Path, bool]] = []
        self.relinks: Dict[Path, Tuple[List[str], bool]] = {}
        self.forwards: List[Tuple[Record, List[Tuple[Path, Any]]]] = []


def _same(left: Any, right: Any) -> bool:
    if left is right:
        return True
    if isinstance(left, bool) != isinstance(right, bool):
        return False
    return left == right


def _ordered_keys(*mappings: Any) -> List[Any]:
    keys: Dict[Any, None] = {}
    for mapping in mappings:
        if isinstance(mapping, Mapping):
            keys.update(dict.fromkeys(mapping))
    return list(keys)


def _plain_copy(value: Any) -> Any:
    """Copy draft or input values into plain data for validation."""
    if isinstance(value, Record):
        return value.to_dict(depth=0)
    if isinstance(value, Mapping):
        return {key: _plain_copy(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_plain_copy(item) for item in value]
    return copy.deepcopy(value)


def _copy_input(value: Any) -> Any:
    """Copy partial update data, keeping records as references."""
    if isinstance(value, Record):
        return value
    if isinstance(value, Mapping):
        return {key: _copy_input(item) for key, item in value.items()}
    if isinstance(value, list):
        return [_copy_input(item) for item in value]
    return copy.deepcopy(value)


def _merge(draft: Dict[str, Any], data: Mapping) -> None:
    for key, value in data.items():
        current = draft.get(key)
        if isinstance(value, Mapping) and not isinstance(value, Record) and isinstance(current, dict):
            _merge(current, value)
        else:
            draft[key] = _copy_input(value)


def _plain_changes(base: Mapping, current: Mapping, path: Path = ()) -> List[Tuple[Path, Any]]:
    changes: List[Tuple[Path, Any]] = []
    for key in _ordered_keys(base, current):
        before = base.get(key, MISSING)
        after = current.get(key, MISSING)
        if isinstance(before, dict) and isinstance(after, dict) and not isinstance(after, _ForeignDraft):
            changes.extend(_plain_changes(before, after, path + (key,)))
        elif not _same(before, after):
            changes.append((path + (key,), after))
    return changes


def _blank(data: Dict[str, Any], path: Path) -> None:
    """Set a relation path to None where its parent exists."""
    target: Any = data
    for segment in path[:-1]:
        target = target.get(segment) if isinstance(target, dict) else None
        if target is None:
            return
    if isinstance(target, dict):
        target[path[-1]] = None


class Collection:
    """Typed in-memory table for one entity kind.

    Args:
        schema: pydantic-compatible type, TypeAdapter, or an object with
            parse(value) -> ParseResult (sync or async)
        name: Collection name; defaults to the schema's name
        registry: Registry to join, enabling relation targets by name.
            None (the default) joins no registry, not even the global one
        settings: Store settings; defaults to get_settings()
    """

    def __init__(
        self,
        schema: Any,
        *,
        name: Optional[str] = None,
        registry: Optional[CollectionRegistry] = None,
        settings: Optional[StoreSettings] = None,
    ) -> None:
        self._id = next(_collection_ids)
        self._schema: Schema = as_schema(schema)
        self._name = name or schema_name(self._schema) or f"collection_{self._id}"
        self._settings = settings or get_settings()
        self._registry = registry

        self._records: List[Record] = []
        self._by_key: Dict[str, Record] = {}
        self._lock = asyncio.Lock()

        self._relations: Dict[Path, RelationDescriptor] = {}
        self._relation_prefixes: set[Path] = set()
        self._relations_defined = False
        # (owner collection, path, descriptor) for relations that target this collection
        self._inbound: List[Tuple[Collection, Path, RelationDescriptor]] = []

        self.hooks = HooksEmitter(max_listeners=self._settings.max_listeners, owner=self._name)

        if registry is not None:
            registry.register(self)

    @property
    def name(self) -> str:
        return self._name

    @property
    def schema(self) -> Schema:
        return self._schema

    @property
    def registry(self) -> Optional[CollectionRegistry]:
        return self._registry

    @property
    def relations(self) -> Dict[Path, RelationDescriptor]:
        return dict(self._relations)

    @property
    def field_names(self) -> Optional[List[str]]:
        """Top-level field names: schema fields plus relation names."""
        names = schema_field_names(self._schema)
        if names is None:
            return None
        names = list(names)
        for path in self._relations:
            if path[0] not in names:
                names.append(path[0])
        return names

    def __repr__(self) -> str:
        return f"Collection({self._name!r}, records={len(self._records)})"

    # Relations

    def define_relations(self, builder: Callable[[RelationBuilder], Mapping]) -> None:
        """Declare relation fields.

        Args:
            builder: Function receiving a RelationBuilder and returning a
                (possibly nested) mapping of field names to one()/many()

        Raises:
            DefinitionError: If relations were already defined, or a
                relation names an unknown field or collection
        """
        if self._relations_defined:
            raise DefinitionError(
                f"Failed to define relations on {self._name}: relations are already defined",
                code=DefinitionErrorCode.RELATIONS_ALREADY_DEFINED,
            )

        relations = builder(RelationBuilder(self))
        if not isinstance(relations, Mapping):
            raise DefinitionError(
                f"Failed to define relations on {self._name}: builder must return a mapping",
                code=DefinitionErrorCode.INVALID_RELATION,
            )
        flat = flatten_relations(relations)

        known = schema_field_names(self._schema)
        if known is not None:
            for path in flat:
                if path[0] not in known:
                    raise DefinitionError(
                        f'Failed to define relations on {self._name}: unknown field "{path[0]}"',
                        code=DefinitionErrorCode.INVALID_RELATION,
                        details={"path": ".".join(path), "fields": known},
                    )

        self._relations_defined = True
        self._relations = flat
        self._relation_prefixes = {path[:i] for path in flat for i in range(len(path))}
        for path, descriptor in flat.items():
            for target in descriptor.targets:
                target._inbound.append((self, path, descriptor))

        for record in self._records:
            self._attach_relations(record)

        logger.debug(
            f"Defined {len(flat)} relations on {self._name}",
            extra={"collection": self._name, "relations": [".".join(p) for p in flat]},
        )

    def _attach_relations(self, record: Record) -> None:
        """Initialize relation slots of a record created before define_relations()."""
        for path, descriptor in self._relations.items():
            embedded = record._embedded.pop(path, [])
            keys = [r.key for r in embedded if descriptor.accepts(r)]
            if not descriptor.is_many:
                keys = keys[:1]
            record._relations[path] = RelationSlot(descriptor, keys)
            _blank(record._data, path)
            for key in keys:
                link_inverse(self, record.key, path, descriptor, key)

    def _lookup(self, key: str) -> Optional[Record]:
        return self._by_key.get(key)

    # Create

    async def create(self, initial_values: Optional[Mapping] = None) -> Record:
        """Validate and store a new record.

        Args:
            initial_values: Input for the schema; records may be given at
                relation paths

        Returns:
            The stored record

        Raises:
            ValidationError: If the schema rejects the input
            RelationError: If a relation value is invalid or a unique
                target is already claimed
            OperationError: If the schema output is not a mapping
        """
        values = initial_values if initial_values is not None else {}
        if not isinstance(values, Mapping):
            raise OperationError(
                f"Failed to create a record in {self._name}: expected a mapping, got {type(values).__name__}",
                code=OperationErrorCode.INVALID_INITIAL_VALUES,
            )

        links: Dict[Path, Tuple[List[Record], bool]] = {}
        embedded: Dict[Path, List[Record]] = {}
        candidate = self._sanitize(values, (), links, embedded)

        async with self._lock:
            result = await parse_value(self._schema, candidate)
            if not result.ok:
                self._reject(result.issues, "create")
            output = result.output
            if not isinstance(output, Mapping):
                raise OperationError(
                    f"Failed to create a record in {self._name}: schema output must be a mapping, "
                    f"got {type(output).__name__}",
                    code=OperationErrorCode.INVALID_INITIAL_VALUES,
                )

            key = uuid.uuid4().hex
            slots: Dict[Path, RelationSlot] = {}
            for path, descriptor in self._relations.items():
                targets, is_null = links.get(path, ([], False))
                self._ensure_live(path, descriptor, targets, "create")
                target_keys = [target.key for target in targets]
                check_unique(
                    self, path, descriptor, target_keys, key, RelationErrorCode.FORBIDDEN_UNIQUE_CREATE
                )
                slots[path] = RelationSlot(descriptor, list(dict.fromkeys(target_keys)), is_null)

            data = _plain_copy(output)
            for path in self._relations:
                _blank(data, path)

            record = Record(key, self, data, slots, embedded)
            self._records.append(record)
            self._by_key[key] = record
            for path, slot in slots.items():
                for target_key in slot.keys:
                    link_inverse(self, key, path, slot.descriptor, target_key)

        logger.debug(f"Created record in {self._name}", extra={"collection": self._name, "key": key})
        await self.hooks.emit_async(CreateEvent(record=record, initial_values=values))
        return record

    async def create_many(self, count: int, factory: Callable[[int], Any]) -> List[Record]:
        """Create count records from factory(index), in index order.

        Each record commits on its own. If one fails, the records created
        before it stay in the collection.

        Raises:
            BatchOperationError: Wrapping the first failure
        """
        created: List[Record] = []
        for index in range(count):
            try:
                values = factory(index)
                if inspect.isawaitable(values):
                    values = await values
                created.append(await self.create(values))
            except Exception as e:
                logger.warning(
                    f"create_many on {self._name} failed at index {index}",
                    extra={"collection": self._name, "index": index, "committed": len(created)},
                )
                raise BatchOperationError("create_many", index, created, e) from e
        return created

    def _sanitize(
        self,
        value: Any,
        path: Path,
        links: Dict[Path, Tuple[List[Record], bool]],
        embedded: Dict[Path, List[Record]],
    ) -> Any:
        descriptor = self._relations.get(path)
        if descriptor is not None:
            return self._sanitize_relation(path, descriptor, value, links)
        if isinstance(value, Record):
            embedded[path] = [value]
            return value.to_dict(depth=0)
        if isinstance(value, Mapping):
            return {
                key: self._sanitize(item, path + (key,), links, embedded)
                for key, item in value.items()
            }
        if isinstance(value, (list, tuple)):
            records = [item for item in value if isinstance(item, Record)]
            if records:
                embedded[path] = records
            return [
                item.to_dict(depth=0)
                if isinstance(item, Record)
                else self._sanitize(item, path + (index,), links, embedded)
                for index, item in enumerate(value)
            ]
        return copy.deepcopy(value)

    def _sanitize_relation(
        self,
        path: Path,
        descriptor: RelationDescriptor,
        value: Any,
        links: Dict[Path, Tuple[List[Record], bool]],
    ) -> Any:
        if value is None:
            self._ensure_nullable(path, descriptor, "create")
            links[path] = ([], True)
            return None
        if descriptor.is_many:
            if not isinstance(value, (list, tuple)):
                raise self._invalid_foreign(path, descriptor, value, "create")
            items = list(value)
        else:
            items = [value]
        for item in items:
            if not isinstance(item, Record) or not descriptor.accepts(item):
                raise self._invalid_foreign(path, descriptor, item, "create")
        links[path] = (items, False)
        snapshots = [item.to_dict(depth=0) for item in items]
        return snapshots if descriptor.is_many else snapshots[0]

    def _ensure_nullable(self, path: Path, descriptor: RelationDescriptor, operation: str) -> None:
        if descriptor.nullable:
            return
        raise RelationError(
            f'Failed to {operation} a record in "{self._name}": relational property '
            f'"{".".join(path)}" is not nullable',
            code=RelationErrorCode.NULL_NOT_ALLOWED,
            path=path,
            owner=self._name,
            targets=descriptor.target_names,
        )

    def _invalid_foreign(
        self, path: Path, descriptor: RelationDescriptor, value: Any, operation: str
    ) -> RelationError:
        kind = f"a record of {value.collection.name}" if isinstance(value, Record) else type(value).__name__
        return RelationError(
            f'Failed to {operation} a record in "{self._name}": relational property '
            f'"{".".join(path)}" expects records of {", ".join(descriptor.target_names)}, got {kind}',
            code=RelationErrorCode.INVALID_FOREIGN_RECORD,
            path=path,
            owner=self._name,
            targets=descriptor.target_names,
        )

    def _ensure_live(
        self, path: Path, descriptor: RelationDescriptor, targets: Sequence[Record], operation: str
    ) -> None:
        for target in targets:
            if not descriptor.accepts(target):
                raise self._invalid_foreign(path, descriptor, target, operation)

    def _reject(self, issues: Any, operation: str) -> None:
        issues = tuple(issues or ())
        logger.warning(
            f"Schema rejected {operation} on {self._name}",
            extra={"collection": self._name, "issues": [str(issue) for issue in issues]},
        )
        raise ValidationError(
            f"Failed to {operation} a record in {self._name}: "
            + "; ".join(str(issue) for issue in issues),
            issues=issues,
            collection=self._name,
        )

    # Read

    def query(self) -> Query:
        """Start a query that knows this collection's fields."""
        fields = self.field_names if self._settings.strict_where_fields else None
        return Query(fields=fields, type_name=self._name)

    def _resolve_predicate(self, predicate: Predicate) -> Query:
        if predicate is None:
            return self.query()
        if isinstance(predicate, Query):
            return predicate
        if isinstance(predicate, Record):
            key = predicate.key
            return Query(lambda record: isinstance(record, Record) and record.key == key)
        if isinstance(predicate, Mapping):
            return self.query().where(predicate)
        if callable(predicate):
            query = predicate(self.query())
            if not isinstance(query, Query):
                raise TypeError(f"Query builder must return a Query, got {type(query).__name__}")
            return query
        raise TypeError(f"Expected a Query, builder, mapping or record, got {type(predicate).__name__}")

    def _first(self, predicate: Predicate) -> Optional[Record]:
        if isinstance(predicate, Record) and predicate.collection is self:
            return self._by_key.get(predicate.key)
        query = self._resolve_predicate(predicate)
        for record in list(self._records):
            if query.test(record):
                return record
        return None

    def _matches(self, predicate: Predicate) -> List[Record]:
        query = self._resolve_predicate(predicate)
        return [record for record in list(self._records) if query.test(record)]

    def find_first(self, predicate: Predicate = None, *, strict: bool = False) -> Optional[Record]:
        """Return the first record matching the predicate in storage order.

        Raises:
            StrictQueryError: If strict and nothing matches
        """
        record = self._first(predicate)
        if record is None and strict:
            raise StrictQueryError("find_first")
        return record

    def find_many(
        self,
        predicate: Predicate = None,
        *,
        order_by: Optional[Mapping] = None,
        cursor: Union[Record, str, None] = None,
        take: Optional[int] = None,
        skip: Optional[int] = None,
        strict: bool = False,
    ) -> List[Record]:
        """Return records matching the predicate.

        Args:
            predicate: Query, builder, mapping or None for all records
            order_by: Nested mapping of "asc"/"desc"
            cursor: Record (or key) to resume after; a deleted cursor yields []
            take: Maximum results; negative walks backward from the cursor
                (or the end), nearest first
            skip: Matches to skip after the cursor
            strict: Raise instead of returning []

        Raises:
            StrictQueryError: If strict and nothing matches
            ValueError: If take or skip is malformed
        """
        query = self._resolve_predicate(predicate)
        if take is not None and (not isinstance(take, int) or isinstance(take, bool)):
            raise ValueError(f"take must be an integer, got {take!r}")
        if skip is not None and (not isinstance(skip, int) or isinstance(skip, bool) or skip < 0):
            raise ValueError(f"skip must be a non-negative integer, got {skip!r}")

        ordered = sort_records(self._records, order_by) if order_by else list(self._records)
        results = self._paginate(ordered, query, cursor, take, skip or 0)
        if not results and strict:
            raise StrictQueryError("find_many", many=True)
        return results

    def _paginate(
        self,
        ordered: List[Record],
        query: Query,
        cursor: Union[Record, str, None],
        take: Optional[int],
        skip: int,
    ) -> List[Record]:
        if take == 0:
            return []

        position: Optional[int] = None
        if cursor is not None:
            cursor_key = cursor.key if isinstance(cursor, Record) else cursor
            position = next((i for i, r in enumerate(ordered) if r.key == cursor_key), None)
            if position is None:
                return []

        if take is not None and take < 0:
            start = position - 1 if position is not None else len(ordered) - 1
            indexes = range(start, -1, -1)
        else:
            start = position + 1 if position is not None else 0
            indexes = range(start, len(ordered))
        limit = abs(take) if take is not None else None

        results: List[Record] = []
        skipped = 0
        for index in indexes:
            record = ordered[index]
            if not query.test(record):
                continue
            if skipped < skip:
                skipped += 1
                continue
            results.append(record)
            if limit is not None and len(results) >= limit:
                break
        return results

    def count(self, predicate: Predicate = None) -> int:
        if predicate is None:
            return len(self._records)
        return len(self._matches(predicate))

    def all(self) -> List[Record]:
        """Return every record in storage order."""
        return list(self._records)

    # Update

    async def update(
        self,
        predicate: Predicate,
        *,
        data: Union[Mapping, Updater],
        strict: bool = False,
    ) -> Optional[Record]:
        """Update the first record matching the predicate.

        Args:
            predicate: Query, builder, mapping or the record itself
            data: Partial mapping deep-merged into the record, or an
                updater called as updater(draft, record) that mutates the
                draft in place (may be async)
            strict: Raise instead of returning None

        Returns:
            The updated record

        Raises:
            StrictQueryError: If strict and nothing matches
            ValidationError: If the schema rejects the draft
            RelationError: If a relation change violates integrity
        """
        record = self._first(predicate)
        if record is None:
            if strict:
                raise StrictQueryError("update")
            return None
        return await self._update_record(record, data)

    async def update_many(
        self,
        predicate: Predicate,
        *,
        data: Union[Mapping, Updater],
        order_by: Optional[Mapping] = None,
        strict: bool = False,
    ) -> List[Record]:
        """Update every record matching the predicate.

        Each record commits on its own. If one fails, the records updated
        before it keep their new values.

        Raises:
            StrictQueryError: If strict and nothing matches
            BatchOperationError: Wrapping the first failure
        """
        matches = self._matches(predicate)
        if not matches:
            if strict:
                raise StrictQueryError("update_many", many=True)
            return []

        updated: List[Record] = []
        for index, record in enumerate(matches):
            current = self._by_key.get(record.key)
            if current is None:
                continue
            try:
                updated.append(await self._update_record(current, data))
            except Exception as e:
                logger.warning(
                    f"update_many on {self._name} failed at index {index}",
                    extra={"collection": self._name, "index": index, "committed": len(updated)},
                )
                raise BatchOperationError("update_many", index, updated, e) from e

        return sort_records(updated, order_by) if order_by else updated

    def _make_draft(self, record: Record) -> Dict[str, Any]:
        draft = copy.deepcopy(record._data)
        for path, slot in record._relations.items():
            resolved = slot.resolve()
            if isinstance(resolved, list):
                value: Any = [_ForeignDraft(target) for target in resolved]
            elif isinstance(resolved, Record):
                value = _ForeignDraft(resolved)
            else:
                value = None
            set_at_path(draft, path, value)
        return draft

    def _diff(self, record: Record, base: Any, current: Any, path: Path, plan: _UpdatePlan) -> None:
        if path in self._relations:
            self._diff_relation(record, current, path, plan)
            return
        if path in self._relation_prefixes:
            base_map = base if isinstance(base, Mapping) else {}
            current_map = current if isinstance(current, Mapping) else {}
            names = _ordered_keys(base_map, current_map)
            names += [p[len(path)] for p in self._relations if p[: len(path)] == path and p[len(path)] not in names]
            for name in dict.fromkeys(names):
                self._diff(
                    record,
                    base_map.get(name, MISSING),
                    current_map.get(name, MISSING),
                    path + (name,),
                    plan,
                )
            return
        if isinstance(base, dict) and isinstance(current, dict) and not isinstance(current, _ForeignDraft):
            for name in _ordered_keys(base, current):
                self._diff(record, base.get(name, MISSING), current.get(name, MISSING), path + (name,), plan)
            return
        if isinstance(base, list) and isinstance(current, list) and len(base) == len(current):
            for index, (before, after) in enumerate(zip(base, current)):
                self._diff(record, before, after, path + (index,), plan)
            return
        if not _same(base, current):
            plan.changes.append((path, False))

    def _diff_relation(self, record: Record, value: Any, path: Path, plan: _UpdatePlan) -> None:
        slot = record._relations[path]
        descriptor = slot.descriptor
        if value is MISSING:
            keys: List[str] = []
            is_null = False
        elif value is None:
            # unset and null relations both read as None
            if slot.resolve() is None:
                return
            self._ensure_nullable(path, descriptor, "update")
            keys, is_null = [], True
        elif descriptor.is_many:
            if not isinstance(value, (list, tuple)):
                raise self._invalid_foreign(path, descriptor, value, "update")
            keys = [self._foreign_key(path, descriptor, item, plan) for item in value]
            is_null = False
        else:
            keys = [self._foreign_key(path, descriptor, value, plan)]
            is_null = False

        keys = list(dict.fromkeys(keys))
        if keys != slot.keys or is_null != slot.is_null:
            plan.relinks[path] = (keys, is_null)
            plan.changes.append((path, True))

    def _foreign_key(
        self, path: Path, descriptor: RelationDescriptor, value: Any, plan: _UpdatePlan
    ) -> str:
        if isinstance(value, _ForeignDraft):
            target = value.record
            changes = _plain_changes(value.baseline, value)
            if changes:
                plan.forwards.append((target, changes))
        elif isinstance(value, Record):
            target = value
        else:
            raise self._invalid_foreign(path, descriptor, value, "update")
        if not descriptor.accepts(target):
            raise self._invalid_foreign(path, descriptor, target, "update")
        return target.key

    async def _update_record(self, record: Record, data: Union[Mapping, Updater]) -> Record:
        """Apply one update under the write lock.

        The draft is built from the stored record once the lock is held, so
        overlapping updates of one record run one after the other. The
        updater runs inside the lock and must not write to this collection.
        Edits of related records are forwarded after the lock is released.
        """
        if not callable(data) and not isinstance(data, Mapping):
            raise TypeError(f"update data must be a mapping or a function, got {type(data).__name__}")

        plan = _UpdatePlan()
        async with self._lock:
            record = self._current(record)
            draft = self._make_draft(record)
            base = copy.deepcopy(record._data)
            if callable(data):
                result = data(draft, record)
                if inspect.isawaitable(result):
                    await result
            else:
                _merge(draft, data)

            self._diff(record, base, draft, (), plan)

            prev_record = record
            next_record = record
            if plan.changes:
                self._ensure_current(record)
                result = await parse_value(self._schema, _plain_copy(draft))
                if not result.ok:
                    self._reject(result.issues, "update")
                output = result.output
                if not isinstance(output, Mapping):
                    raise OperationError(
                        f"Failed to update a record in {self._name}: schema output must be a mapping",
                        code=OperationErrorCode.INVALID_INITIAL_VALUES,
                    )
                # deletes are synchronous and may land during the awaits above
                self._ensure_current(record)

                for path, (keys, _) in plan.relinks.items():
                    descriptor = self._relations[path]
                    for key in keys:
                        if descriptor.find(key) is None:
                            raise RelationError(
                                f'Failed to update a record in "{self._name}": relational property '
                                f'"{".".join(path)}" references a deleted record',
                                code=RelationErrorCode.INVALID_FOREIGN_RECORD,
                                path=path,
                                owner=self._name,
                                owner_key=record.key,
                                targets=descriptor.target_names,
                            )
                    check_unique(
                        self, path, descriptor, keys, record.key, RelationErrorCode.FORBIDDEN_UNIQUE_UPDATE
                    )

                prev_record = Record(
                    record.key,
                    self,
                    record._data,
                    {path: slot.copy() for path, slot in record._relations.items()},
                )
                data_out = _plain_copy(output)
                for path in self._relations:
                    _blank(data_out, path)
                next_record = Record(record.key, self, data_out, record._relations, record._embedded)

                for path, (keys, is_null) in plan.relinks.items():
                    slot = record._relations[path]
                    previous = list(slot.keys)
                    slot.replace(keys, is_null)
                    for key in previous:
                        if key not in slot.keys:
                            unlink_inverse(self, record.key, path, slot.descriptor, key)
                    for key in slot.keys:
                        if key not in previous:
                            link_inverse(self, record.key, path, slot.descriptor, key)

                index = next(i for i, r in enumerate(self._records) if r is record)
                self._records[index] = next_record
                self._by_key[record.key] = next_record

        if plan.changes:
            logger.debug(
                f"Updated record in {self._name}",
                extra={"collection": self._name, "key": record.key, "paths": [p for p, _ in plan.changes]},
            )
            for path, _ in plan.changes:
                await self.hooks.emit_async(
                    UpdateEvent(
                        prev_record=prev_record,
                        next_record=next_record,
                        path=path,
                        prev_value=get_at_path(prev_record, path),
                        next_value=get_at_path(next_record, path),
                    )
                )

        for target, changes in plan.forwards:
            await target.collection._forward_update(target.key, changes)

        return next_record

    async def _forward_update(self, key: str, changes: List[Tuple[Path, Any]]) -> None:
        """Apply edits made to this collection's record through another record's draft."""
        record = self._by_key.get(key)
        if record is None:
            return

        def apply(draft: Dict[str, Any], _record: Record) -> None:
            for path, value in changes:
                if value is MISSING:
                    delete_at_path(draft, path)
                else:
                    set_at_path(draft, path, value)

        await self._update_record(record, apply)

    def _current(self, record: Record) -> Record:
        current = self._by_key.get(record.key)
        if current is None:
            raise self._concurrent_update(record)
        return current

    def _ensure_current(self, record: Record) -> None:
        if self._by_key.get(record.key) is not record:
            raise self._concurrent_update(record)

    def _concurrent_update(self, record: Record) -> OperationError:
        return OperationError(
            f"Failed to update a record in {self._name}: the record was deleted "
            "while the update was in progress",
            code=OperationErrorCode.CONCURRENT_UPDATE,
            details={"key": record.key},
        )

    # Delete

    def delete(self, predicate: Predicate, *, strict: bool = False) -> Optional[Record]:
        """Delete the first record matching the predicate.

        Returns:
            The deleted record, or None if nothing matched or a delete
            listener prevented the deletion

        Raises:
            StrictQueryError: If strict and nothing matches
        """
        record = self._first(predicate)
        if record is None:
            if strict:
                raise StrictQueryError("delete")
            return None
        return record if self._delete_record(record) else None

    def delete_many(
        self,
        predicate: Predicate,
        *,
        order_by: Optional[Mapping] = None,
        strict: bool = False,
    ) -> List[Record]:
        """Delete every record matching the predicate.

        Records are removed in order_by order, or in reverse storage order
        without it. Each removal fires its own "delete" event.

        Returns:
            Removed records, in order_by order or storage order

        Raises:
            StrictQueryError: If strict and nothing matches
        """
        matches = self._matches(predicate)
        if not matches:
            if strict:
                raise StrictQueryError("delete_many", many=True)
            return []

        removal = sort_records(matches, order_by) if order_by else list(reversed(matches))
        removed = [record for record in removal if self._delete_record(record)]
        if order_by:
            return removed
        removed_keys = {record.key for record in removed}
        return [record for record in matches if record.key in removed_keys]

    def _delete_record(self, record: Record) -> bool:
        current = self._by_key.get(record.key)
        if current is None:
            return False
        if not self.hooks.emit(DeleteEvent(deleted_record=current)):
            logger.debug(
                f"Delete prevented in {self._name}", extra={"collection": self._name, "key": current.key}
            )
            return False
        # a listener may have deleted it already
        if self._by_key.get(current.key) is not current:
            return False

        self._records = [r for r in self._records if r is not current]
        del self._by_key[current.key]
        cascade = sever(self, current.key)
        logger.debug(f"Deleted record from {self._name}", extra={"collection": self._name, "key": current.key})

        for owner_collection, owner in cascade:
            owner_collection._delete_record(owner)
        return True

    def clear(self) -> None:
        """Remove every record without firing "delete" events.

        References to the cleared records are severed in other collections;
        cascading deletes do not run.
        """
        records = self._records
        self._records = []
        self._by_key = {}
        for record in records:
            sever(self, record.key)
        logger.debug(f"Cleared {len(records)} records from {self._name}", extra={"collection": self._name})
