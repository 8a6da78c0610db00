"""
Unit tests for schema adapters.

Tests cover:
- PydanticSchema output and issues
- Field name discovery
- Schema coercion
"""

from dataclasses import dataclass
from typing import Optional

from typing_extensions import TypedDict

import pytest
from pydantic import BaseModel, TypeAdapter

from entdb_memory.errors import DefinitionError
from entdb_memory.schema import (
    Issue,
    ParseResult,
    PydanticSchema,
    as_schema,
    suggest_fields,
)


class User(BaseModel):
    id: int
    name: Optional[str] = None


@dataclass
class Point:
    x: int
    y: int


class Tag(TypedDict):
    label: str


class TestPydanticSchema:
    """Tests for PydanticSchema."""

    def test_parse_model_to_dict(self):
        """Validated models are dumped to plain dicts."""
        result = PydanticSchema(User).parse({"id": "1"})

        assert result.ok
        assert result.output == {"id": 1, "name": None}
        assert isinstance(result.output, dict)

    def test_parse_reports_issues(self):
        """pydantic errors become issues with paths."""
        result = PydanticSchema(User).parse({"id": "abc"})

        assert not result.ok
        assert result.output is None
        assert result.issues[0].path == ("id",)
        assert "id" in str(result.issues[0])

    def test_dataclass(self):
        result = PydanticSchema(Point).parse({"x": 1, "y": 2})

        assert result.output == {"x": 1, "y": 2}

    def test_typed_dict(self):
        result = PydanticSchema(Tag).parse({"label": "a"})

        assert result.output == {"label": "a"}

    def test_field_names(self):
        """Field names come from the model declaration."""
        assert PydanticSchema(User).field_names() == ["id", "name"]
        assert PydanticSchema(Point).field_names() == ["x", "y"]
        assert PydanticSchema(Tag).field_names() == ["label"]
        assert PydanticSchema(int).field_names() is None

    def test_name(self):
        assert PydanticSchema(User).name == "User"

    def test_type_adapter(self):
        """An existing TypeAdapter is used as is."""
        schema = PydanticSchema(TypeAdapter(User))

        assert schema.parse({"id": 2}).output == {"id": 2, "name": None}


class TestAsSchema:
    """Tests for as_schema coercion."""

    def test_types_are_wrapped(self):
        assert isinstance(as_schema(User), PydanticSchema)

    def test_parse_objects_pass_through(self):
        class Custom:
            def parse(self, value):
                return ParseResult(output=value)

        custom = Custom()
        assert as_schema(custom) is custom

    def test_invalid_schema(self):
        with pytest.raises(DefinitionError, match="Expected a pydantic-compatible type"):
            as_schema(42)


class TestIssue:
    """Tests for Issue formatting."""

    def test_str_with_path(self):
        assert str(Issue("Field required", ("address", "city"))) == "address.city: Field required"

    def test_str_without_path(self):
        assert str(Issue("Invalid input")) == "Invalid input"


class TestSuggestFields:
    """Tests for suggest_fields."""

    def test_close_matches(self):
        assert "email" in suggest_fields("emial", ["id", "email", "name"])

    def test_prefix_matches(self):
        assert "first_name" in suggest_fields("first", ["first_name", "last_name"])

    def test_limit(self):
        assert len(suggest_fields("a", ["a1", "a2", "a3", "a4"], limit=2)) == 2
