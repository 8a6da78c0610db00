"""
Unit tests for Collection.create / create_many.

Tests cover:
- Schema validation and defaults
- Derived values from schema transforms
- Async schemas and write serialization
- Batch creation order and partial failure
- Record read-only behavior
"""

import asyncio
from typing import Optional

import pytest
from pydantic import BaseModel, model_validator

from entdb_memory import Collection, Issue, ParseResult
from entdb_memory.errors import BatchOperationError, OperationError, ValidationError


class User(BaseModel):
    id: int
    name: Optional[str] = None


class Person(BaseModel):
    first_name: str
    last_name: str
    email: Optional[str] = None

    @model_validator(mode="after")
    def derive_email(self):
        self.email = f"{self.first_name}.{self.last_name}@example.com".lower()
        return self


class Address(BaseModel):
    city: str


class Customer(BaseModel):
    id: int
    address: Address


class AsyncUserSchema:
    """Schema with an asynchronous parse()."""

    name = "async_users"

    async def parse(self, value):
        await asyncio.sleep(0)
        if "id" not in value:
            return ParseResult(issues=(Issue("Field required", ("id",)),))
        return ParseResult(output=dict(value))


class TestCreate:
    """Tests for Collection.create."""

    @pytest.fixture
    def users(self):
        return Collection(User, name="users")

    @pytest.mark.asyncio
    async def test_create_returns_stored_record(self, users):
        """Created record is validated and stored."""
        user = await users.create({"id": 1, "name": "John"})

        assert user == {"id": 1, "name": "John"}
        assert users.all() == [user]
        assert users.count() == 1

    @pytest.mark.asyncio
    async def test_create_applies_defaults_and_coercion(self, users):
        """Schema output is the canonical record."""
        user = await users.create({"id": "1"})

        assert user == {"id": 1, "name": None}

    @pytest.mark.asyncio
    async def test_create_rejects_invalid_input(self, users):
        """Validation errors carry issues and store nothing."""
        with pytest.raises(ValidationError) as exc_info:
            await users.create({"name": "John"})

        assert exc_info.value.code == "INVALID_INITIAL_VALUES"
        assert exc_info.value.issues[0].path == ("id",)
        assert users.count() == 0

    @pytest.mark.asyncio
    async def test_create_rejects_non_mapping(self, users):
        with pytest.raises(OperationError, match="expected a mapping"):
            await users.create(["id", 1])

    @pytest.mark.asyncio
    async def test_derived_values_visible_on_create(self):
        """Transforms of the schema show in the returned record."""
        people = Collection(Person)

        person = await people.create({"first_name": "John", "last_name": "Doe"})

        assert person["email"] == "john.doe@example.com"
        assert people.find_first()["email"] == "john.doe@example.com"

    @pytest.mark.asyncio
    async def test_records_have_distinct_identity(self, users):
        """Structurally identical records are distinct records."""
        first = await users.create({"id": 1})
        second = await users.create({"id": 1})

        assert first.key != second.key
        assert first != second
        assert users.count() == 2

    @pytest.mark.asyncio
    async def test_record_is_read_only(self, users):
        """Records cannot be mutated in place."""
        user = await users.create({"id": 1, "name": "John"})

        with pytest.raises(TypeError):
            user["name"] = "Kate"
        with pytest.raises(TypeError):
            del user["name"]

    @pytest.mark.asyncio
    async def test_nested_values_are_copied_on_read(self):
        """Mutating a nested value read from a record leaves storage intact."""
        customers = Collection(Customer)
        customer = await customers.create({"id": 1, "address": {"city": "London"}})

        customer["address"]["city"] = "Paris"

        assert customers.find_first()["address"] == {"city": "London"}

    @pytest.mark.asyncio
    async def test_to_dict(self, users):
        user = await users.create({"id": 1, "name": "John"})

        snapshot = user.to_dict()

        assert snapshot == {"id": 1, "name": "John"}
        assert type(snapshot) is dict


class TestAsyncSchema:
    """Tests for asynchronous schemas."""

    @pytest.mark.asyncio
    async def test_async_schema(self):
        users = Collection(AsyncUserSchema())

        user = await users.create({"id": 1})

        assert users.name == "async_users"
        assert user == {"id": 1}

    @pytest.mark.asyncio
    async def test_async_schema_issues(self):
        users = Collection(AsyncUserSchema())

        with pytest.raises(ValidationError, match="id: Field required"):
            await users.create({})

    @pytest.mark.asyncio
    async def test_concurrent_creates_keep_call_order(self):
        """Writes suspended on validation are serialized in call order."""
        users = Collection(AsyncUserSchema())

        await asyncio.gather(*(users.create({"id": i}) for i in range(5)))

        assert [u["id"] for u in users.all()] == [0, 1, 2, 3, 4]

    @pytest.mark.asyncio
    async def test_reads_do_not_see_pending_writes(self):
        """Reads during a suspended create see only committed records."""
        gate = asyncio.Event()

        class GatedSchema:
            async def parse(self, value):
                await gate.wait()
                return ParseResult(output=dict(value))

        users = Collection(GatedSchema(), name="gated")
        task = asyncio.create_task(users.create({"id": 1}))
        await asyncio.sleep(0)

        assert users.find_many() == []

        gate.set()
        await task
        assert users.count() == 1


class TestCreateMany:
    """Tests for Collection.create_many."""

    @pytest.fixture
    def users(self):
        return Collection(User, name="users")

    @pytest.mark.asyncio
    async def test_create_many_preserves_order(self, users):
        """Records are stored in factory index order."""
        created = await users.create_many(5, lambda index: {"id": index + 1})

        assert [u["id"] for u in created] == [1, 2, 3, 4, 5]
        assert [u["id"] for u in users.all()] == [1, 2, 3, 4, 5]

    @pytest.mark.asyncio
    async def test_create_many_async_factory(self, users):
        async def factory(index):
            return {"id": index}

        created = await users.create_many(2, factory)

        assert [u["id"] for u in created] == [0, 1]

    @pytest.mark.asyncio
    async def test_create_many_keeps_prior_records_on_failure(self, users):
        """A failing record does not roll back earlier ones."""

        def factory(index):
            return {"id": "invalid"} if index == 2 else {"id": index}

        with pytest.raises(BatchOperationError) as exc_info:
            await users.create_many(4, factory)

        error = exc_info.value
        assert error.index == 2
        assert [u["id"] for u in error.committed] == [0, 1]
        assert isinstance(error.__cause__, ValidationError)
        assert [u["id"] for u in users.all()] == [0, 1]


class TestClear:
    """Tests for Collection.clear."""

    @pytest.mark.asyncio
    async def test_clear_is_idempotent(self):
        users = Collection(User)
        users.clear()
        assert users.all() == []

        await users.create_many(3, lambda index: {"id": index})
        users.clear()
        users.clear()

        assert users.all() == []
        assert users.count() == 0

    @pytest.mark.asyncio
    async def test_clear_does_not_emit_delete(self):
        users = Collection(User)
        await users.create({"id": 1})
        events = []
        users.hooks.on("delete", events.append)

        users.clear()

        assert events == []
