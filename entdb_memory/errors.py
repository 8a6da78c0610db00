"""
Error types for the in-memory entity store.

This module defines all exception types raised by the store:
- MemoryStoreError: Base exception
- OperationError: A collection operation could not complete
- ValidationError: Schema rejected the input or an update draft
- StrictQueryError: Strict-mode operation matched no records
- BatchOperationError: A multi-record operation failed part way
- RelationError: Relation integrity violation
- DefinitionError: Programming error in collection or relation setup
- QueryError / UnknownFieldError: Malformed query shapes

Invariants:
    - All errors inherit from MemoryStoreError
    - Every error has a machine-readable code
    - Errors include context for debugging in ``details``
"""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Sequence

if TYPE_CHECKING:
    from .schema import Issue


class OperationErrorCode(str, Enum):
    """Codes carried by OperationError."""

    UNEXPECTED_ERROR = "UNEXPECTED_ERROR"
    INVALID_INITIAL_VALUES = "INVALID_INITIAL_VALUES"
    STRICT_QUERY_WITHOUT_RESULTS = "STRICT_QUERY_WITHOUT_RESULTS"
    CONCURRENT_UPDATE = "CONCURRENT_UPDATE"


class RelationErrorCode(str, Enum):
    """Codes carried by RelationError."""

    INVALID_FOREIGN_RECORD = "INVALID_FOREIGN_RECORD"
    FORBIDDEN_UNIQUE_CREATE = "FORBIDDEN_UNIQUE_CREATE"
    FORBIDDEN_UNIQUE_UPDATE = "FORBIDDEN_UNIQUE_UPDATE"
    UNEXPECTED_SET_EXPRESSION = "UNEXPECTED_SET_EXPRESSION"
    NULL_NOT_ALLOWED = "NULL_NOT_ALLOWED"


class DefinitionErrorCode(str, Enum):
    """Codes carried by DefinitionError."""

    RELATIONS_ALREADY_DEFINED = "RELATIONS_ALREADY_DEFINED"
    UNKNOWN_COLLECTION = "UNKNOWN_COLLECTION"
    INVALID_RELATION = "INVALID_RELATION"
    INVALID_SCHEMA = "INVALID_SCHEMA"


class MemoryStoreError(Exception):
    """Base exception for all store errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or "MEMORY_STORE_ERROR"
        self.details = details or {}


class OperationError(MemoryStoreError):
    """A collection operation could not complete.

    Raised when:
    - Schema output is not a mapping
    - A stored record changed while an update was in flight
    """

    def __init__(
        self,
        message: str,
        code: OperationErrorCode = OperationErrorCode.UNEXPECTED_ERROR,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, code=code.value, details=details)


class ValidationError(OperationError):
    """Schema validation failed.

    Raised when:
    - create() input does not satisfy the schema
    - An update draft no longer satisfies the schema

    The stored record set is unchanged when this is raised.
    """

    def __init__(
        self,
        message: str,
        issues: Sequence[Issue] = (),
        collection: Optional[str] = None,
    ) -> None:
        super().__init__(
            message,
            code=OperationErrorCode.INVALID_INITIAL_VALUES,
            details={
                "collection": collection,
                "issues": [issue.message for issue in issues],
            },
        )
        self.issues = tuple(issues)
        self.collection = collection


class StrictQueryError(OperationError):
    """A strict-mode operation matched no records."""

    def __init__(self, operation: str, many: bool = False) -> None:
        if many:
            msg = f'Failed to execute "{operation}" on collection: no records found matching the query'
        else:
            msg = f'Failed to execute "{operation}" on collection: no record found matching the query'
        super().__init__(
            msg,
            code=OperationErrorCode.STRICT_QUERY_WITHOUT_RESULTS,
            details={"operation": operation},
        )
        self.operation = operation


class BatchOperationError(OperationError):
    """A multi-record operation failed on one of its records.

    Records processed before the failing one stay committed.

    Attributes:
        operation: Name of the batch operation
        index: Position of the failing record within the batch
        committed: Records committed before the failure
    """

    def __init__(
        self,
        operation: str,
        index: int,
        committed: List[Any],
        cause: BaseException,
    ) -> None:
        super().__init__(
            f'Failed to execute "{operation}" on collection: record at index {index} failed: {cause}',
            code=OperationErrorCode.UNEXPECTED_ERROR,
            details={"operation": operation, "index": index, "committed": len(committed)},
        )
        self.operation = operation
        self.index = index
        self.committed = committed


class RelationError(MemoryStoreError):
    """Relation integrity violation.

    Raised when:
    - A relation field references something that is not a record of its targets
    - A unique relation target is already claimed by another owner
    - A non-nullable relation is set to None
    - A relation field is assigned directly on a stored record
    """

    def __init__(
        self,
        message: str,
        code: RelationErrorCode,
        path: Sequence[str] = (),
        owner: Optional[str] = None,
        owner_key: Optional[str] = None,
        targets: Sequence[str] = (),
    ) -> None:
        super().__init__(
            message,
            code=code.value,
            details={
                "path": ".".join(path),
                "owner": owner,
                "owner_key": owner_key,
                "targets": list(targets),
            },
        )
        self.path = tuple(path)
        self.owner = owner
        self.owner_key = owner_key
        self.targets = tuple(targets)


class DefinitionError(MemoryStoreError):
    """Programming error in collection or relation setup.

    Raised when:
    - define_relations() is called twice
    - A relation names an unknown collection or field
    - A schema object does not satisfy the schema protocol
    """

    def __init__(
        self,
        message: str,
        code: DefinitionErrorCode,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, code=code.value, details=details)


class QueryError(MemoryStoreError):
    """Malformed query shape or sort order."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message, code="QUERY_ERROR", details=details)


class UnknownFieldError(QueryError):
    """Unknown field in a where() shape.

    Includes suggestions for similar field names.

    Attributes:
        field_name: The unknown field
        type_name: The collection being queried
        suggestions: Similar field names
    """

    def __init__(
        self,
        field_name: str,
        type_name: str,
        suggestions: Optional[List[str]] = None,
    ) -> None:
        suggestions = suggestions or []
        msg = f"Unknown field '{field_name}' in type '{type_name}'"
        if suggestions:
            msg += f". Did you mean: {', '.join(suggestions)}?"

        super().__init__(
            msg,
            details={
                "field_name": field_name,
                "type_name": type_name,
                "suggestions": suggestions,
            },
        )
        self.code = "UNKNOWN_FIELD"
        self.field_name = field_name
        self.type_name = type_name
        self.suggestions = suggestions
