"""Store protocol and helpers shared by every backend."""

from __future__ import annotations

import base64
import binascii
from dataclasses import dataclass
from typing import Protocol

from obsfleet.store.kinds import api_version


class ObjectStore(Protocol):
    def get(self, kind: str, name: str, namespace: str | None = None) -> dict: ...

    def list(self, kind: str, namespace: str | None = None, labels: dict[str, str] | None = None) -> list[dict]: ...

    def create(self, obj: dict) -> dict: ...

    def update(self, obj: dict) -> dict: ...

    def update_status(self, obj: dict) -> dict: ...

    def delete(self, kind: str, name: str, namespace: str | None = None) -> None: ...


@dataclass
class WatchEvent:
    type: str  # "ADDED" | "MODIFIED" | "DELETED"
    kind: str
    old: dict | None
    new: dict | None

    @property
    def object(self) -> dict:
        obj = self.new if self.new is not None else self.old
        return obj or {}


def new_object(
    kind: str,
    name: str,
    namespace: str | None = None,
    *,
    labels: dict[str, str] | None = None,
    **fields: object,
) -> dict:
    metadata: dict = {"name": name}
    if namespace:
        metadata["namespace"] = namespace
    if labels:
        metadata["labels"] = dict(labels)
    obj: dict = {"apiVersion": api_version(kind), "kind": kind, "metadata": metadata}
    obj.update(fields)
    return obj


def meta(obj: dict) -> dict:
    metadata = obj.get("metadata")
    return metadata if isinstance(metadata, dict) else {}


def name_of(obj: dict) -> str:
    name = meta(obj).get("name")
    return name if isinstance(name, str) else ""


def namespace_of(obj: dict) -> str:
    namespace = meta(obj).get("namespace")
    return namespace if isinstance(namespace, str) else ""


def labels_of(obj: dict) -> dict[str, str]:
    labels = meta(obj).get("labels")
    return labels if isinstance(labels, dict) else {}


def resource_version(obj: dict | None) -> str | None:
    if not obj:
        return None
    value = meta(obj).get("resourceVersion")
    return value if isinstance(value, str) else None


def labels_match(obj: dict, selector: dict[str, str] | None) -> bool:
    if not selector:
        return True
    labels = labels_of(obj)
    return all(labels.get(key) == value for key, value in selector.items())


def encode_data(values: dict[str, bytes]) -> dict[str, str]:
    """Secret ``data`` values are stored base64-encoded, as the API server does."""
    return {key: base64.b64encode(value).decode("ascii") for key, value in sorted(values.items())}


def decode_data(obj: dict) -> dict[str, bytes]:
    data = obj.get("data")
    if not isinstance(data, dict):
        return {}
    decoded: dict[str, bytes] = {}
    for key, value in data.items():
        if not isinstance(key, str) or not isinstance(value, str):
            continue
        try:
            decoded[key] = base64.b64decode(value, validate=True)
        except (binascii.Error, ValueError):
            continue
    return decoded


def owner_reference(owner: dict) -> dict:
    return {
        "apiVersion": owner.get("apiVersion", ""),
        "kind": owner.get("kind", ""),
        "name": name_of(owner),
        "uid": meta(owner).get("uid", ""),
        "controller": True,
        "blockOwnerDeletion": True,
    }
