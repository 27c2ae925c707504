from obsfleet.config import OWNER_LABELS
from obsfleet.store.base import WatchEvent, new_object
from obsfleet.watch import (
    Dispatcher,
    WatchRule,
    WorkQueue,
    all_of,
    default_rules,
    fleet_key,
    named,
    never,
    new_dispatcher,
    owned_by,
    resource_version_changed,
)


def _with_rv(obj: dict, rv: str) -> dict:
    obj["metadata"]["resourceVersion"] = rv
    return obj


def test_predicates_are_pure_functions_of_old_and_new() -> None:
    old = _with_rv(new_object("ConfigMap", "cm", "ns"), "1")
    same = _with_rv(new_object("ConfigMap", "cm", "ns"), "1")
    newer = _with_rv(new_object("ConfigMap", "cm", "ns"), "2")

    assert resource_version_changed(old, newer)
    assert not resource_version_changed(old, same)
    assert named("cm", "ns")(None, newer)
    assert named("cm")(old, None)
    assert not named("cm", "other")(None, newer)
    assert not owned_by()(None, newer)
    assert owned_by()(None, new_object("ConfigMap", "cm", "ns", labels=OWNER_LABELS))
    assert all_of(named("cm"), resource_version_changed)(old, newer)
    assert not all_of(named("cm"), resource_version_changed)(old, same)
    assert not never(old, newer)


def test_work_queue_coalesces() -> None:
    queue = WorkQueue()
    assert queue.add("k")
    assert not queue.add("k")
    assert len(queue) == 1
    assert queue.pop() == "k"
    assert queue.pop() is None
    assert queue.add("k")


def test_dispatcher_enqueues_fixed_key_once() -> None:
    queue = WorkQueue()
    dispatcher = Dispatcher(queue, "hub/observability").watch(WatchRule("ConfigMap", on_delete=never))
    cm = _with_rv(new_object("ConfigMap", "anything", "ns"), "1")

    assert dispatcher.handle(WatchEvent("ADDED", "ConfigMap", None, cm))
    assert dispatcher.handle(WatchEvent("MODIFIED", "ConfigMap", cm, _with_rv(dict(cm, metadata=dict(cm["metadata"])), "2")))
    assert not dispatcher.handle(WatchEvent("DELETED", "ConfigMap", cm, None))
    assert not dispatcher.handle(WatchEvent("ADDED", "Secret", None, new_object("Secret", "s", "ns")))
    assert len(queue) == 1
    assert queue.pop() == "hub/observability"


def test_default_rules(settings) -> None:
    queue = WorkQueue()
    dispatcher = new_dispatcher(settings, queue)
    assert dispatcher.key == fleet_key(settings) == "obs-hub/observability"
    assert {rule.kind for rule in default_rules(settings)} == {
        "PlacementRule",
        "ObservabilityAddon",
        "MultiClusterObservability",
        "ConfigMap",
        "Secret",
        "ManifestWork",
    }

    def accepted(event: WatchEvent) -> bool:
        result = dispatcher.handle(event)
        queue.pop()
        return result

    placement = _with_rv(new_object("PlacementRule", "observability", "obs-hub"), "1")
    other_placement = new_object("PlacementRule", "other", "obs-hub")
    assert accepted(WatchEvent("ADDED", "PlacementRule", None, placement))
    assert not accepted(WatchEvent("ADDED", "PlacementRule", None, other_placement))
    assert not accepted(WatchEvent("MODIFIED", "PlacementRule", placement, placement))

    addon = new_object("ObservabilityAddon", "observability-addon", "c1", labels=OWNER_LABELS)
    assert not accepted(WatchEvent("ADDED", "ObservabilityAddon", None, addon))
    assert accepted(WatchEvent("MODIFIED", "ObservabilityAddon", addon, addon))
    assert accepted(WatchEvent("DELETED", "ObservabilityAddon", addon, None))

    custom = new_object("ConfigMap", "observability-metrics-custom-allowlist", "obs-hub")
    assert accepted(WatchEvent("ADDED", "ConfigMap", None, custom))
    assert not accepted(WatchEvent("ADDED", "ConfigMap", None, new_object("ConfigMap", "x", "obs-hub")))

    ca = new_object("Secret", "observability-server-ca-certs", "obs-hub")
    assert accepted(WatchEvent("ADDED", "Secret", None, ca))
    assert not accepted(WatchEvent("DELETED", "Secret", ca, None))

    work = _with_rv(new_object("ManifestWork", "c1-observability", "c1", labels=OWNER_LABELS), "3")
    assert not accepted(WatchEvent("ADDED", "ManifestWork", None, work))
    assert accepted(WatchEvent("DELETED", "ManifestWork", work, None))


def test_store_events_feed_the_queue(store, settings) -> None:
    queue = WorkQueue()
    store.subscribe(new_dispatcher(settings, queue).handle)

    store.create(new_object("ConfigMap", "unrelated", "obs-hub"))
    assert len(queue) == 0

    store.create(new_object("ConfigMap", "observability-metrics-custom-allowlist", "obs-hub"))
    store.create(new_object("MultiClusterObservability", "observability"))
    assert len(queue) == 1
