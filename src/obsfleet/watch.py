"""
Event filtering and the work queue feeding the reconciler.

Every watched kind maps onto a single fleet key; predicates are plain
functions of ``(old, new)`` so they can be tested without a store. On a
create event ``old`` is None, on a delete event ``new`` is None.
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass
from typing import Callable

import structlog

from obsfleet.config import (
    ADDON_NAME,
    ALLOWLIST_CUSTOM_CONFIGMAP_NAME,
    OWNER_LABEL_KEY,
    OWNER_LABEL_VALUE,
    SERVER_CA_CERTS,
    Settings,
)
from obsfleet.store.base import WatchEvent, labels_of, name_of, namespace_of, resource_version

logger = structlog.get_logger("obsfleet.watch")

Predicate = Callable[[dict | None, dict | None], bool]


def _current(old: dict | None, new: dict | None) -> dict:
    return new if new is not None else (old or {})


def always(old: dict | None, new: dict | None) -> bool:
    return True


def never(old: dict | None, new: dict | None) -> bool:
    return False


def resource_version_changed(old: dict | None, new: dict | None) -> bool:
    return resource_version(old) != resource_version(new)


def named(name: str, namespace: str | None = None) -> Predicate:
    def predicate(old: dict | None, new: dict | None) -> bool:
        obj = _current(old, new)
        if name_of(obj) != name:
            return False
        return namespace is None or namespace_of(obj) == namespace

    return predicate


def owned_by(label: str = OWNER_LABEL_KEY, value: str = OWNER_LABEL_VALUE) -> Predicate:
    def predicate(old: dict | None, new: dict | None) -> bool:
        return labels_of(_current(old, new)).get(label) == value

    return predicate


def all_of(*predicates: Predicate) -> Predicate:
    def predicate(old: dict | None, new: dict | None) -> bool:
        return all(p(old, new) for p in predicates)

    return predicate


@dataclass(frozen=True)
class WatchRule:
    kind: str
    on_create: Predicate = always
    on_update: Predicate = resource_version_changed
    on_delete: Predicate = always

    def matches(self, event: WatchEvent) -> bool:
        if event.kind != self.kind:
            return False
        if event.type == "ADDED":
            return self.on_create(None, event.new)
        if event.type == "MODIFIED":
            return self.on_update(event.old, event.new)
        if event.type == "DELETED":
            return self.on_delete(event.old, None)
        return False


class WorkQueue:
    """FIFO of keys; adding a key that is already waiting is a no-op."""

    def __init__(self) -> None:
        self._items: deque[str] = deque()
        self._queued: set[str] = set()

    def add(self, key: str) -> bool:
        if key in self._queued:
            return False
        self._items.append(key)
        self._queued.add(key)
        return True

    def pop(self) -> str | None:
        if not self._items:
            return None
        key = self._items.popleft()
        self._queued.discard(key)
        return key

    def __len__(self) -> int:
        return len(self._items)


class Dispatcher:
    def __init__(self, queue: WorkQueue, key: str) -> None:
        self.queue = queue
        self.key = key
        self._rules: list[WatchRule] = []

    def watch(self, rule: WatchRule) -> "Dispatcher":
        self._rules.append(rule)
        return self

    def handle(self, event: WatchEvent) -> bool:
        """Enqueue the fleet key when any rule for the event's kind accepts it."""
        for rule in self._rules:
            if rule.matches(event):
                added = self.queue.add(self.key)
                logger.debug(
                    "event_accepted",
                    kind=event.kind,
                    type=event.type,
                    name=name_of(event.object),
                    namespace=namespace_of(event.object),
                    enqueued=added,
                )
                return True
        return False


def fleet_key(settings: Settings) -> str:
    return f"{settings.namespace}/{settings.placement_name}"


def default_rules(settings: Settings) -> list[WatchRule]:
    placement = named(settings.placement_name, settings.namespace)
    allowlist = named(ALLOWLIST_CUSTOM_CONFIGMAP_NAME, settings.namespace)
    server_ca = named(SERVER_CA_CERTS, settings.namespace)
    addon = all_of(named(ADDON_NAME), owned_by())
    return [
        WatchRule(
            "PlacementRule",
            on_create=placement,
            on_update=all_of(placement, resource_version_changed),
            on_delete=placement,
        ),
        WatchRule("ObservabilityAddon", on_create=never, on_update=addon, on_delete=addon),
        WatchRule("MultiClusterObservability"),
        WatchRule(
            "ConfigMap",
            on_create=allowlist,
            on_update=all_of(allowlist, resource_version_changed),
            on_delete=allowlist,
        ),
        WatchRule(
            "Secret",
            on_create=server_ca,
            on_update=all_of(server_ca, resource_version_changed),
            on_delete=never,
        ),
        WatchRule(
            "ManifestWork",
            on_create=never,
            on_update=all_of(owned_by(), resource_version_changed),
            on_delete=owned_by(),
        ),
    ]


def new_dispatcher(settings: Settings, queue: WorkQueue) -> Dispatcher:
    dispatcher = Dispatcher(queue, fleet_key(settings))
    for rule in default_rules(settings):
        dispatcher.watch(rule)
    return dispatcher
