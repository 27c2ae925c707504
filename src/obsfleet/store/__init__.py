"""Declarative object store access."""

from obsfleet.store.base import ObjectStore, WatchEvent, new_object
from obsfleet.store.errors import AlreadyExistsError, ConflictError, NotFoundError, StoreError
from obsfleet.store.kubectl import KubectlStore
from obsfleet.store.memory import InMemoryStore

__all__ = [
    "AlreadyExistsError",
    "ConflictError",
    "InMemoryStore",
    "KubectlStore",
    "NotFoundError",
    "ObjectStore",
    "StoreError",
    "WatchEvent",
    "new_object",
]
