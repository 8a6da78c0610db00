"""
Schema adapters for collections.

A collection delegates validation to a schema object exposing
``parse(value)``, which returns a ParseResult either directly or as an
awaitable. Collections treat ``output`` as the canonical record shape and
``issues`` as the failure detail surfaced in ValidationError.

Any type pydantic can validate (BaseModel, dataclass, TypedDict) is adapted
through PydanticSchema, which dumps the validated value back to a plain dict
so stored records are always mappings.

Invariants:
    - parse() never raises for invalid input; it reports issues
    - Output of PydanticSchema is a plain dict for model-like types
    - field_names() is None when the schema cannot enumerate its fields

Example:
    >>> from pydantic import BaseModel
    >>> class User(BaseModel):
    ...     id: int
    >>> schema = as_schema(User)
    >>> schema.parse({"id": "1"}).output
    {'id': 1}
"""

from __future__ import annotations

import dataclasses
import inspect
from dataclasses import dataclass
from difflib import get_close_matches
from typing import Any, Awaitable, List, Optional, Protocol, Tuple, Union, runtime_checkable

from pydantic import BaseModel, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from .errors import DefinitionError, DefinitionErrorCode


@dataclass(frozen=True)
class Issue:
    """A single validation problem reported by a schema.

    Attributes:
        message: Human-readable description
        path: Location of the offending value
        code: Validator-specific error type
    """

    message: str
    path: Tuple[Any, ...] = ()
    code: Optional[str] = None

    def __str__(self) -> str:
        if not self.path:
            return self.message
        return f"{'.'.join(str(p) for p in self.path)}: {self.message}"


@dataclass(frozen=True)
class ParseResult:
    """Outcome of Schema.parse(): output on success, issues on failure."""

    output: Any = None
    issues: Optional[Tuple[Issue, ...]] = None

    @property
    def ok(self) -> bool:
        return not self.issues


@runtime_checkable
class Schema(Protocol):
    """Validator contract consumed by Collection."""

    def parse(self, value: Any) -> Union[ParseResult, Awaitable[ParseResult]]:
        ...


class PydanticSchema:
    """Schema backed by a pydantic TypeAdapter.

    The adapter is built lazily so models with forward references can be
    declared in any order before the first record is created.
    """

    def __init__(self, type_: Any) -> None:
        if isinstance(type_, TypeAdapter):
            self._adapter: Optional[TypeAdapter] = type_
            self._type = getattr(type_, "_type", None)
        else:
            self._adapter = None
            self._type = type_

    @property
    def name(self) -> str:
        return getattr(self._type, "__name__", "Record")

    @property
    def adapter(self) -> TypeAdapter:
        if self._adapter is None:
            self._adapter = TypeAdapter(self._type)
        return self._adapter

    def parse(self, value: Any) -> ParseResult:
        try:
            validated = self.adapter.validate_python(value)
        except PydanticValidationError as e:
            issues = tuple(
                Issue(message=err["msg"], path=tuple(err["loc"]), code=err["type"])
                for err in e.errors()
            )
            return ParseResult(issues=issues)
        return ParseResult(output=self.adapter.dump_python(validated))

    def field_names(self) -> Optional[List[str]]:
        """Top-level field names, when the wrapped type declares them."""
        type_ = self._type
        if isinstance(type_, type) and issubclass(type_, BaseModel):
            return list(type_.model_fields)
        if dataclasses.is_dataclass(type_):
            return [f.name for f in dataclasses.fields(type_)]
        annotations = getattr(type_, "__annotations__", None)
        if isinstance(annotations, dict) and hasattr(type_, "__total__"):
            return list(annotations)
        return None


def as_schema(schema: Any) -> Schema:
    """Coerce a model type, TypeAdapter or schema object into a Schema.

    Raises:
        DefinitionError: If the object cannot validate records
    """
    if isinstance(schema, (type, TypeAdapter)):
        return PydanticSchema(schema)
    if callable(getattr(schema, "parse", None)):
        return schema
    raise DefinitionError(
        f"Expected a pydantic-compatible type or an object with parse(), got {type(schema).__name__}",
        code=DefinitionErrorCode.INVALID_SCHEMA,
    )


async def parse_value(schema: Schema, value: Any) -> ParseResult:
    """Run schema.parse(), awaiting it when the schema is asynchronous."""
    result = schema.parse(value)
    if inspect.isawaitable(result):
        result = await result
    return result


def schema_name(schema: Any) -> Optional[str]:
    name = getattr(schema, "name", None)
    return name if isinstance(name, str) else None


def schema_field_names(schema: Any) -> Optional[List[str]]:
    field_names = getattr(schema, "field_names", None)
    if callable(field_names):
        return field_names()
    return None


def suggest_fields(partial: str, known: List[str], limit: int = 3) -> List[str]:
    """Suggest field names based on partial input.

    Args:
        partial: Field name that was not found
        known: Valid field names
        limit: Maximum suggestions

    Returns:
        List of suggested field names
    """
    matches = get_close_matches(partial, known, n=limit)
    prefix_matches = [n for n in known if n.lower().startswith(partial.lower())]
    return list(dict.fromkeys(matches + prefix_matches))[:limit]
