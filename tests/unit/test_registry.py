"""
Unit tests for the collection registry.

Tests cover:
- Collection registration
- Registry freezing
- Duplicate detection
- Relation graph export
"""

import json
from typing import Optional

import pytest
from pydantic import BaseModel

from entdb_memory import Collection
from entdb_memory.registry import (
    CollectionRegistry,
    DuplicateRegistrationError,
    RegistryFrozenError,
    get_registry,
    reset_registry,
)


class User(BaseModel):
    id: int
    name: Optional[str] = None


class Post(BaseModel):
    id: int
    author: Optional[dict] = None


class TestCollectionRegistry:
    """Tests for CollectionRegistry."""

    def test_collection_joins_registry(self):
        """Collections constructed with a registry are registered."""
        registry = CollectionRegistry()
        users = Collection(User, name="users", registry=registry)

        assert registry.get("users") is users
        assert "users" in registry
        assert len(registry) == 1
        assert list(registry) == [users]

    def test_register_same_collection_twice(self):
        """Registering a collection again is a no-op."""
        registry = CollectionRegistry()
        users = Collection(User, name="users", registry=registry)

        registry.register(users)

        assert registry.names() == ["users"]

    def test_duplicate_name_raises(self):
        """Two collections cannot share a name."""
        registry = CollectionRegistry()
        Collection(User, name="users", registry=registry)

        with pytest.raises(DuplicateRegistrationError, match="name 'users' already registered"):
            Collection(User, name="users", registry=registry)

    def test_unknown_name(self):
        registry = CollectionRegistry()

        assert registry.get("users") is None


class TestRegistryFreezing:
    """Tests for registry freezing."""

    def test_freeze_prevents_registration(self):
        """Frozen registry rejects new collections."""
        registry = CollectionRegistry()
        Collection(User, name="users", registry=registry)

        registry.freeze()

        assert registry.frozen
        with pytest.raises(RegistryFrozenError, match="registry is frozen"):
            Collection(Post, name="posts", registry=registry)

    def test_frozen_registry_still_resolves(self):
        registry = CollectionRegistry()
        users = Collection(User, name="users", registry=registry)
        posts = Collection(Post, name="posts", registry=registry)
        registry.freeze()

        posts.define_relations(lambda r: {"author": r.one("users")})

        assert posts.relations[("author",)].targets == (users,)


class TestRegistryExport:
    """Tests for to_dict / to_json."""

    def test_to_dict(self):
        registry = CollectionRegistry()
        Collection(User, name="users", registry=registry)
        posts = Collection(Post, name="posts", registry=registry)
        posts.define_relations(lambda r: {"author": r.one("users", unique=True)})

        exported = registry.to_dict()

        assert exported["collections"][0] == {"name": "users", "fields": ["id", "name"], "relations": {}}
        assert exported["collections"][1]["relations"] == {
            "author": {
                "cardinality": "one",
                "targets": ["users"],
                "nullable": False,
                "unique": True,
                "role": None,
                "on_delete": "detach",
            }
        }

    def test_to_json(self):
        registry = CollectionRegistry()
        Collection(User, name="users", registry=registry)

        assert json.loads(registry.to_json())["collections"][0]["name"] == "users"


class TestGlobalRegistry:
    """Tests for the process-wide registry."""

    def test_get_registry_is_shared(self):
        reset_registry()
        try:
            assert get_registry() is get_registry()
        finally:
            reset_registry()

    def test_reset_registry(self):
        reset_registry()
        try:
            registry = get_registry()
            Collection(User, name="users", registry=registry)

            reset_registry()

            assert get_registry() is not registry
            assert len(get_registry()) == 0
        finally:
            reset_registry()

    def test_global_registry_is_opt_in(self):
        """Only collections given the global registry join it."""
        reset_registry()
        try:
            standalone = Collection(User, name="users")
            joined = Collection(User, name="members", registry=get_registry())

            assert standalone.registry is None
            assert "users" not in get_registry()
            assert get_registry().get("members") is joined
        finally:
            reset_registry()
