"""
entdb-memory - In-memory entity store for tests.

This package models relational entity data without a backend, for use as a
test double:
- Collections of schema-validated records (pydantic models or any parser)
- Composable queries with typed comparators
- one/many relations with nullable, unique, polymorphic and inverse support
- Cursor pagination and deterministic sorting
- create/update/delete lifecycle hooks

Example:
    >>> from pydantic import BaseModel
    >>> from entdb_memory import Collection
    >>>
    >>> class User(BaseModel):
    ...     id: int
    ...     name: str
    >>>
    >>> users = Collection(User, name="users")
    >>> await users.create({"id": 1, "name": "John"})
    >>> users.find_many(lambda q: q.where({"name": "John"}))

Invariants:
    - Records change only through Collection operations
    - Relation fields always read the current related records
    - Writes are validated before they are committed

Version: 1.0.0
"""

__version__ = "1.0.0"

from .collection import Collection
from .config import StoreSettings, get_settings, setup_logging
from .errors import (
    BatchOperationError,
    DefinitionError,
    DefinitionErrorCode,
    MemoryStoreError,
    OperationError,
    OperationErrorCode,
    QueryError,
    RelationError,
    RelationErrorCode,
    StrictQueryError,
    UnknownFieldError,
    ValidationError,
)
from .hooks import CreateEvent, DeleteEvent, HookEvent, HooksEmitter, UpdateEvent
from .query import Query
from .record import Record
from .registry import (
    CollectionRegistry,
    DuplicateRegistrationError,
    RegistryFrozenError,
    get_registry,
    reset_registry,
)
from .relation import Cardinality, OnDelete, RelationBuilder, RelationDescriptor
from .schema import Issue, ParseResult, PydanticSchema, Schema, as_schema

__all__ = [
    # Version
    "__version__",
    # Collections
    "Collection",
    "Record",
    "Query",
    # Relations
    "Cardinality",
    "OnDelete",
    "RelationBuilder",
    "RelationDescriptor",
    # Schema
    "Schema",
    "PydanticSchema",
    "ParseResult",
    "Issue",
    "as_schema",
    # Hooks
    "HooksEmitter",
    "HookEvent",
    "CreateEvent",
    "UpdateEvent",
    "DeleteEvent",
    # Registry
    "CollectionRegistry",
    "get_registry",
    "reset_registry",
    "RegistryFrozenError",
    "DuplicateRegistrationError",
    # Config
    "StoreSettings",
    "get_settings",
    "setup_logging",
    # Errors
    "MemoryStoreError",
    "OperationError",
    "OperationErrorCode",
    "ValidationError",
    "StrictQueryError",
    "BatchOperationError",
    "RelationError",
    "RelationErrorCode",
    "DefinitionError",
    "DefinitionErrorCode",
    "QueryError",
    "UnknownFieldError",
]
