"""
Relations between collections.

A relation is declared once per collection with define_relations():

    posts.define_relations(lambda r: {
        "author": r.one(users, unique=True),
        "attachments": r.many([images, videos], nullable=True),
    })

Each relation path holds a RelationDescriptor. Each record holds one
RelationSlot per path: the ordered list of target keys plus an explicit-null
flag. Slots store keys, never records, so cyclic relations (post -> author ->
posts) cost nothing until read.

Inverse relations:
    When owner O links target F through relation R, every relation declared
    on F's collection that targets O's collection with the same role gets
    O's key (many: appended, one: only if empty). A relation is never its own
    inverse, so self-referential relations stay one-directional.

Invariants:
    - A unique relation target is referenced by at most one owner
    - Deleting a target removes its key from every holder
    - Targets are resolved at definition time; unknown names raise
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, Iterator, List, Optional, Sequence, Tuple, Union

from .errors import DefinitionError, DefinitionErrorCode, RelationError, RelationErrorCode
from .record import Path, Record

if TYPE_CHECKING:
    from .collection import Collection

logger = logging.getLogger(__name__)


class Cardinality(str, Enum):
    ONE = "one"
    MANY = "many"


class OnDelete(str, Enum):
    """What happens to owners when a target record is deleted."""

    # remove the reference, keep the owner
    DETACH = "detach"
    # delete the owner as well
    CASCADE = "cascade"


@dataclass(frozen=True, eq=False)
class RelationDescriptor:
    """Declaration of a relation field.

    Attributes:
        cardinality: one or many
        targets: Collections the field may reference; more than one makes
            the relation polymorphic
        nullable: Whether None may be stored explicitly
        unique: Whether a target may be referenced by at most one owner
        role: Pairs the relation with its inverse on the target collection
        on_delete: Effect of deleting a target on its owners
    """

    cardinality: Cardinality
    targets: Tuple[Collection, ...]
    nullable: bool = False
    unique: bool = False
    role: Optional[str] = None
    on_delete: OnDelete = OnDelete.DETACH

    def __post_init__(self) -> None:
        if not self.targets:
            raise DefinitionError(
                "A relation must have at least one target collection",
                code=DefinitionErrorCode.INVALID_RELATION,
            )

    @property
    def is_many(self) -> bool:
        return self.cardinality == Cardinality.MANY

    @property
    def target_names(self) -> List[str]:
        return [target.name for target in self.targets]

    def default(self) -> Any:
        return [] if self.is_many else None

    def accepts(self, record: Record) -> bool:
        """Whether a record is a live record of one of the targets."""
        return any(
            record.collection is target and target._lookup(record.key) is not None
            for target in self.targets
        )

    def find(self, key: str) -> Optional[Record]:
        for target in self.targets:
            record = target._lookup(key)
            if record is not None:
                return record
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "cardinality": self.cardinality.value,
            "targets": self.target_names,
            "nullable": self.nullable,
            "unique": self.unique,
            "role": self.role,
            "on_delete": self.on_delete.value,
        }


@dataclass
class RelationSlot:
    """Per-record relation state: target keys in link order."""

    descriptor: RelationDescriptor
    keys: List[str] = field(default_factory=list)
    is_null: bool = False

    def resolve(self) -> Any:
        if self.descriptor.is_many:
            if self.is_null:
                return None
            records = (self.descriptor.find(key) for key in self.keys)
            return [record for record in records if record is not None]
        for key in self.keys:
            record = self.descriptor.find(key)
            if record is not None:
                return record
        return None

    def add(self, key: str) -> bool:
        if key in self.keys:
            return False
        self.keys.append(key)
        self.is_null = False
        return True

    def discard(self, key: str) -> bool:
        if key not in self.keys:
            return False
        self.keys.remove(key)
        return True

    def replace(self, keys: Sequence[str], is_null: bool = False) -> None:
        self.keys = list(dict.fromkeys(keys))
        self.is_null = is_null

    def copy(self) -> RelationSlot:
        return RelationSlot(self.descriptor, list(self.keys), self.is_null)


Target = Union["Collection", str]


class RelationBuilder:
    """Factory passed to define_relations() builders.

    Targets may be given as collections or as names registered in the
    owner's CollectionRegistry.
    """

    def __init__(self, owner: Collection) -> None:
        self._owner = owner

    def one(
        self,
        target: Union[Target, Sequence[Target]],
        *,
        nullable: bool = False,
        unique: bool = False,
        role: Optional[str] = None,
        on_delete: Union[OnDelete, str] = OnDelete.DETACH,
    ) -> RelationDescriptor:
        return RelationDescriptor(
            Cardinality.ONE,
            self._resolve(target),
            nullable=nullable,
            unique=unique,
            role=role,
            on_delete=OnDelete(on_delete),
        )

    def many(
        self,
        target: Union[Target, Sequence[Target]],
        *,
        nullable: bool = False,
        unique: bool = False,
        role: Optional[str] = None,
        on_delete: Union[OnDelete, str] = OnDelete.DETACH,
    ) -> RelationDescriptor:
        return RelationDescriptor(
            Cardinality.MANY,
            self._resolve(target),
            nullable=nullable,
            unique=unique,
            role=role,
            on_delete=OnDelete(on_delete),
        )

    def _resolve(self, target: Union[Target, Sequence[Target]]) -> Tuple[Collection, ...]:
        from .collection import Collection

        items = list(target) if isinstance(target, (list, tuple)) else [target]
        resolved: List[Collection] = []
        for item in items:
            if isinstance(item, str):
                registry = self._owner.registry
                found = registry.get(item) if registry is not None else None
                if found is None:
                    known = registry.names() if registry is not None else []
                    raise DefinitionError(
                        f"Failed to define relations on {self._owner.name}: "
                        f"unknown collection '{item}' (known: {', '.join(known) or 'none'})",
                        code=DefinitionErrorCode.UNKNOWN_COLLECTION,
                        details={"collection": item},
                    )
                item = found
            if not isinstance(item, Collection):
                raise DefinitionError(
                    f"Relation targets must be collections, got {type(item).__name__}",
                    code=DefinitionErrorCode.INVALID_RELATION,
                )
            resolved.append(item)
        return tuple(resolved)


def flatten_relations(relations: Mapping, prefix: Path = ()) -> Dict[Path, RelationDescriptor]:
    """Flatten a nested relations mapping into path -> descriptor."""
    flat: Dict[Path, RelationDescriptor] = {}
    for key, value in relations.items():
        path = prefix + (key,)
        if isinstance(value, RelationDescriptor):
            flat[path] = value
        elif isinstance(value, Mapping):
            flat.update(flatten_relations(value, path))
        else:
            raise DefinitionError(
                f'Invalid relation at "{".".join(path)}": expected one() or many(), '
                f"got {type(value).__name__}",
                code=DefinitionErrorCode.INVALID_RELATION,
                details={"path": ".".join(path)},
            )
    return flat


def find_claim(
    owner_collection: Collection,
    path: Path,
    target_key: str,
    exclude_key: Optional[str] = None,
) -> Optional[Record]:
    """Find another owner already referencing target_key at path."""
    for record in owner_collection._records:
        if record.key == exclude_key:
            continue
        slot = record._relations.get(path)
        if slot is not None and target_key in slot.keys:
            return record
    return None


def check_unique(
    owner_collection: Collection,
    path: Path,
    descriptor: RelationDescriptor,
    target_keys: Sequence[str],
    owner_key: str,
    code: RelationErrorCode,
) -> None:
    """Reject target keys already claimed by a different owner.

    Raises:
        RelationError: If any target is referenced by another owner
    """
    if not descriptor.unique:
        return
    verb = "create" if code == RelationErrorCode.FORBIDDEN_UNIQUE_CREATE else "update"
    for target_key in target_keys:
        claimant = find_claim(owner_collection, path, target_key, exclude_key=owner_key)
        if claimant is None:
            continue
        target = descriptor.find(target_key)
        target_name = target.collection.name if target is not None else "/".join(descriptor.target_names)
        logger.warning(
            f"Unique relation violation at {owner_collection.name}.{'.'.join(path)}",
            extra={"owner_key": claimant.key, "target_key": target_key},
        )
        raise RelationError(
            f'Failed to {verb} a unique relation at "{".".join(path)}": the foreign record '
            f'in "{target_name}" is already associated with another owner '
            f'(owner key "{claimant.key}" in "{owner_collection.name}")',
            code=code,
            path=path,
            owner=owner_collection.name,
            owner_key=claimant.key,
            targets=[target_name],
        )


def inverse_relations(
    owner_collection: Collection,
    path: Path,
    descriptor: RelationDescriptor,
    target_collection: Collection,
) -> Iterator[Tuple[Path, RelationDescriptor]]:
    for inverse_path, inverse in target_collection.relations.items():
        if target_collection is owner_collection and inverse_path == path:
            continue
        if inverse.role != descriptor.role:
            continue
        if any(t is owner_collection for t in inverse.targets):
            yield inverse_path, inverse


def link_inverse(
    owner_collection: Collection,
    owner_key: str,
    path: Path,
    descriptor: RelationDescriptor,
    target_key: str,
) -> None:
    target = descriptor.find(target_key)
    if target is None:
        return
    for inverse_path, inverse in inverse_relations(owner_collection, path, descriptor, target.collection):
        slot = target._relations.get(inverse_path)
        if slot is None:
            continue
        if inverse.is_many:
            slot.add(owner_key)
        elif not slot.keys:
            slot.replace([owner_key])
        logger.debug(
            f"Linked inverse {target.collection.name}.{'.'.join(inverse_path)}",
            extra={"owner_key": owner_key, "target_key": target_key},
        )


def unlink_inverse(
    owner_collection: Collection,
    owner_key: str,
    path: Path,
    descriptor: RelationDescriptor,
    target_key: str,
) -> None:
    target = descriptor.find(target_key)
    if target is None:
        return
    for inverse_path, _ in inverse_relations(owner_collection, path, descriptor, target.collection):
        slot = target._relations.get(inverse_path)
        if slot is not None:
            slot.discard(owner_key)


def sever(collection: Collection, key: str) -> List[Tuple[Collection, Record]]:
    """Remove a deleted record's key from every relation that references it.

    Returns:
        Owners whose relation asks for cascading deletion
    """
    cascade: List[Tuple[Collection, Record]] = []
    for owner_collection, path, descriptor in collection._inbound:
        for owner in owner_collection._records:
            slot = owner._relations.get(path)
            if slot is None or not slot.discard(key):
                continue
            logger.debug(
                f"Severed {owner_collection.name}.{'.'.join(path)} from {collection.name}",
                extra={"owner_key": owner.key, "target_key": key},
            )
            if descriptor.on_delete == OnDelete.CASCADE:
                cascade.append((owner_collection, owner))
    return cascade
