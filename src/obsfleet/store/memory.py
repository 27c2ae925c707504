"""In-process store with resourceVersion conflicts, finalizers and watch fan-out."""

from __future__ import annotations

import copy
from datetime import datetime, timezone
from typing import Callable

from obsfleet.store.base import WatchEvent, labels_match, meta, name_of, namespace_of
from obsfleet.store.errors import AlreadyExistsError, ConflictError, NotFoundError, StoreError
from obsfleet.store.kinds import kind_info


_Key = tuple[str, str, str]


class InMemoryStore:
    """
    Always-consistent store used by tests and dry runs.

    Every write is appended to ``writes`` as ``(verb, kind, namespace, name)``
    so a caller can assert that a converged pass issued none.
    """

    def __init__(self, objects: list[dict] | None = None) -> None:
        self._objects: dict[_Key, dict] = {}
        self._version = 0
        self._watchers: list[Callable[[WatchEvent], None]] = []
        self._failures: dict[tuple[str, str, str | None, str | None], Exception] = {}
        self.writes: list[tuple[str, str, str, str]] = []
        for obj in objects or []:
            self.seed(obj)

    # --- test hooks -----------------------------------------------------

    def seed(self, obj: dict) -> dict:
        """Insert an object without recording a write or notifying watchers."""
        stored = copy.deepcopy(obj)
        stored.setdefault("metadata", {})["resourceVersion"] = self._next_version()
        self._objects[self._key_of(stored)] = stored
        return copy.deepcopy(stored)

    def inject_failure(
        self,
        verb: str,
        kind: str,
        name: str | None = None,
        namespace: str | None = None,
        error: Exception | None = None,
    ) -> None:
        self._failures[(verb, kind, name, namespace)] = error or StoreError(
            f"injected {verb} failure", kind=kind, name=name or "", namespace=namespace
        )

    def clear_failures(self) -> None:
        self._failures.clear()

    def reset_writes(self) -> None:
        self.writes.clear()

    def subscribe(self, callback: Callable[[WatchEvent], None]) -> None:
        self._watchers.append(callback)

    # --- store protocol -------------------------------------------------

    def get(self, kind: str, name: str, namespace: str | None = None) -> dict:
        self._maybe_fail("get", kind, name, namespace)
        key = self._key(kind, name, namespace)
        stored = self._objects.get(key)
        if stored is None:
            raise NotFoundError(f'{kind} "{name}" not found', kind=kind, name=name, namespace=namespace)
        return copy.deepcopy(stored)

    def list(self, kind: str, namespace: str | None = None, labels: dict[str, str] | None = None) -> list[dict]:
        self._maybe_fail("list", kind, None, namespace)
        items = []
        for (item_kind, item_ns, _), stored in sorted(self._objects.items()):
            if item_kind != kind:
                continue
            if namespace is not None and item_ns != namespace:
                continue
            if not labels_match(stored, labels):
                continue
            items.append(copy.deepcopy(stored))
        return items

    def create(self, obj: dict) -> dict:
        kind, name, namespace = self._identity(obj)
        self._maybe_fail("create", kind, name, namespace)
        key = self._key(kind, name, namespace)
        if key in self._objects:
            raise AlreadyExistsError(f'{kind} "{name}" already exists', kind=kind, name=name, namespace=namespace)
        stored = copy.deepcopy(obj)
        metadata = stored.setdefault("metadata", {})
        metadata["resourceVersion"] = self._next_version()
        metadata.pop("deletionTimestamp", None)
        self._objects[key] = stored
        self._record("create", kind, namespace, name)
        self._notify(WatchEvent("ADDED", kind, None, copy.deepcopy(stored)))
        return copy.deepcopy(stored)

    def update(self, obj: dict) -> dict:
        return self._replace(obj, verb="update")

    def update_status(self, obj: dict) -> dict:
        return self._replace(obj, verb="update_status")

    def delete(self, kind: str, name: str, namespace: str | None = None) -> None:
        self._maybe_fail("delete", kind, name, namespace)
        key = self._key(kind, name, namespace)
        stored = self._objects.get(key)
        if stored is None:
            raise NotFoundError(f'{kind} "{name}" not found', kind=kind, name=name, namespace=namespace)
        self._record("delete", kind, namespace or "", name)
        if meta(stored).get("finalizers"):
            if meta(stored).get("deletionTimestamp"):
                return
            old = copy.deepcopy(stored)
            stored["metadata"]["deletionTimestamp"] = datetime.now(timezone.utc).isoformat()
            stored["metadata"]["resourceVersion"] = self._next_version()
            self._notify(WatchEvent("MODIFIED", kind, old, copy.deepcopy(stored)))
            return
        del self._objects[key]
        self._notify(WatchEvent("DELETED", kind, stored, None))

    # --- internals ------------------------------------------------------

    def _replace(self, obj: dict, *, verb: str) -> dict:
        kind, name, namespace = self._identity(obj)
        self._maybe_fail(verb, kind, name, namespace)
        key = self._key(kind, name, namespace)
        current = self._objects.get(key)
        if current is None:
            raise NotFoundError(f'{kind} "{name}" not found', kind=kind, name=name, namespace=namespace)
        expected = meta(obj).get("resourceVersion")
        if expected and expected != meta(current).get("resourceVersion"):
            raise ConflictError(
                f'Operation cannot be fulfilled on {kind} "{name}": the object has been modified',
                kind=kind,
                name=name,
                namespace=namespace,
            )

        if verb == "update_status":
            updated = copy.deepcopy(current)
            updated["status"] = copy.deepcopy(obj.get("status"))
        else:
            updated = copy.deepcopy(obj)
            if "status" in current:
                updated["status"] = copy.deepcopy(current["status"])
            else:
                updated.pop("status", None)
            if meta(current).get("deletionTimestamp"):
                updated["metadata"]["deletionTimestamp"] = current["metadata"]["deletionTimestamp"]
        updated["metadata"]["resourceVersion"] = self._next_version()
        self._record(verb, kind, namespace, name)

        if meta(updated).get("deletionTimestamp") and not meta(updated).get("finalizers"):
            del self._objects[key]
            self._notify(WatchEvent("DELETED", kind, current, None))
            return copy.deepcopy(updated)

        self._objects[key] = updated
        self._notify(WatchEvent("MODIFIED", kind, copy.deepcopy(current), copy.deepcopy(updated)))
        return copy.deepcopy(updated)

    def _identity(self, obj: dict) -> tuple[str, str, str]:
        kind = obj.get("kind")
        name = name_of(obj)
        if not isinstance(kind, str) or not kind or not name:
            raise ValueError("object must carry kind and metadata.name")
        return kind, name, namespace_of(obj)

    def _key(self, kind: str, name: str, namespace: str | None) -> _Key:
        if not kind_info(kind).namespaced:
            namespace = ""
        return (kind, namespace or "", name)

    def _key_of(self, obj: dict) -> _Key:
        kind, name, namespace = self._identity(obj)
        return self._key(kind, name, namespace)

    def _next_version(self) -> str:
        self._version += 1
        return str(self._version)

    def _record(self, verb: str, kind: str, namespace: str, name: str) -> None:
        self.writes.append((verb, kind, namespace, name))

    def _maybe_fail(self, verb: str, kind: str, name: str | None, namespace: str | None) -> None:
        for candidate in (
            (verb, kind, name, namespace),
            (verb, kind, name, None),
            (verb, kind, None, namespace),
            (verb, kind, None, None),
        ):
            error = self._failures.get(candidate)
            if error is not None:
                raise error

    def _notify(self, event: WatchEvent) -> None:
        for callback in list(self._watchers):
            callback(event)
