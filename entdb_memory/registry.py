"""
Collection registry.

The registry maps collection names to collections so relations can name
their targets (``one("users")``) and tooling can inspect the relation graph.
A collection joins a registry only when constructed with ``registry=...``.
The global registry from get_registry() is opt-in: pass it explicitly to
share names process-wide.

The registry may be frozen once setup is complete to prevent further
registrations.

Example:
    >>> registry = CollectionRegistry()
    >>> users = Collection(User, name="users", registry=registry)
    >>> registry.get("users") is users
    True
"""

from __future__ import annotations

import json
import threading
from collections.abc import Iterator
from typing import TYPE_CHECKING

from .errors import MemoryStoreError

if TYPE_CHECKING:
    from .collection import Collection

# Global registry
_global_registry: CollectionRegistry | None = None
_registry_lock = threading.Lock()


class RegistryFrozenError(MemoryStoreError):
    """Registry is frozen and cannot be modified."""

    pass


class DuplicateRegistrationError(MemoryStoreError):
    """A collection with this name is already registered."""

    pass


class CollectionRegistry:
    """Name-to-collection lookup.

    Example:
        >>> registry = CollectionRegistry()
        >>> registry.register(users)
        >>> registry.freeze()
    """

    def __init__(self) -> None:
        """Initialize empty registry."""
        self._collections: dict[str, Collection] = {}
        self._frozen = False
        self._lock = threading.Lock()

    @property
    def frozen(self) -> bool:
        """Whether registry is frozen."""
        return self._frozen

    def register(self, collection: Collection) -> None:
        """Register a collection under its name.

        Args:
            collection: Collection to register

        Raises:
            RegistryFrozenError: If registry is frozen
            DuplicateRegistrationError: If the name is already taken
        """
        with self._lock:
            if self._frozen:
                raise RegistryFrozenError("Cannot register: registry is frozen")

            existing = self._collections.get(collection.name)
            if existing is not None and existing is not collection:
                raise DuplicateRegistrationError(
                    f"name '{collection.name}' already registered"
                )

            self._collections[collection.name] = collection

    def get(self, name: str) -> Collection | None:
        """Look up a collection by name."""
        return self._collections.get(name)

    def names(self) -> list[str]:
        return list(self._collections)

    def __contains__(self, name: object) -> bool:
        return name in self._collections

    def __iter__(self) -> Iterator[Collection]:
        return iter(list(self._collections.values()))

    def __len__(self) -> int:
        return len(self._collections)

    def freeze(self) -> None:
        """Freeze the registry, preventing further registrations."""
        with self._lock:
            self._frozen = True

    def to_dict(self) -> dict:
        """Describe registered collections and their relations."""
        return {
            "collections": [
                {
                    "name": collection.name,
                    "fields": collection.field_names,
                    "relations": {
                        ".".join(path): descriptor.to_dict()
                        for path, descriptor in collection.relations.items()
                    },
                }
                for collection in self._collections.values()
            ]
        }

    def to_json(self, indent: int | None = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent)


def get_registry() -> CollectionRegistry:
    """Get the global collection registry.

    Collections are not added to it automatically; construct them with
    ``registry=get_registry()`` to join.
    """
    global _global_registry
    with _registry_lock:
        if _global_registry is None:
            _global_registry = CollectionRegistry()
        return _global_registry


def reset_registry() -> None:
    """Reset the global registry (for testing only)."""
    global _global_registry
    with _registry_lock:
        _global_registry = None
