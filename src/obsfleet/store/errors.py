"""Object store error kinds."""

from __future__ import annotations


class StoreError(Exception):
    """A store request failed; the caller should retry the whole pass."""

    def __init__(self, message: str, *, kind: str = "", name: str = "", namespace: str | None = None) -> None:
        super().__init__(message)
        self.kind = kind
        self.name = name
        self.namespace = namespace


class NotFoundError(StoreError):
    pass


class AlreadyExistsError(StoreError):
    pass


class ConflictError(StoreError):
    """The object's resourceVersion no longer matches the stored one."""
