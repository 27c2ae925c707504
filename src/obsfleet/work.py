"""
Convergence of per-member bundles.

One pass creates or updates the bundle of every target member, removes the
addon record of members that dropped out of the placement, deletes bundles
that break the ``<namespace>-observability`` naming rule, tears down members
that are no longer targeted, and finally removes addon records left without
a bundle. Member failures are collected and raised together once every
member has been attempted; nothing already applied is rolled back.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field

import structlog

from obsfleet.bundle import AddonSpec, DesiredBundle, HubInputs, build_bundle
from obsfleet.config import (
    ACTIVATION_NAME,
    ADDON_NAME,
    OWNER_LABELS,
    RESOURCE_ROLE_BINDING_NAME,
    ROLE_BINDING_NAME,
    Settings,
    work_name,
)
from obsfleet.errors import ConvergenceError
from obsfleet.placement import MemberTarget
from obsfleet.store.base import ObjectStore, labels_of, meta, name_of, namespace_of
from obsfleet.store.errors import NotFoundError, StoreError

logger = structlog.get_logger("obsfleet.work")

# Top-level fields compared per kind to decide whether an update is needed.
_COMPARED_FIELDS = {
    "ObservabilityAddon": ("spec",),
    "RoleBinding": ("roleRef", "subjects"),
    "ManifestWork": ("spec",),
    "ManagedClusterAddOn": ("spec",),
}


@dataclass
class PassReport:
    created: list[str] = field(default_factory=list)
    updated: list[str] = field(default_factory=list)
    deleted: list[str] = field(default_factory=list)
    failed_creates: list[str] = field(default_factory=list)
    failed_deletes: list[str] = field(default_factory=list)

    @property
    def writes(self) -> int:
        return len(self.created) + len(self.updated) + len(self.deleted)

    def to_dict(self) -> dict:
        return {
            "schema": "convergence_pass.v0",
            "created": sorted(self.created),
            "updated": sorted(self.updated),
            "deleted": sorted(self.deleted),
            "failed_creates": sorted(self.failed_creates),
            "failed_deletes": sorted(self.failed_deletes),
        }


def _ref(kind: str, namespace: str, name: str) -> str:
    return f"{kind} {namespace}/{name}" if namespace else f"{kind} {name}"


class ConvergenceEngine:
    def __init__(self, store: ObjectStore, settings: Settings) -> None:
        self.store = store
        self.settings = settings

    # --- single object primitives ---------------------------------------

    def _upsert(self, desired: dict, report: PassReport) -> None:
        kind = desired["kind"]
        name = name_of(desired)
        namespace = namespace_of(desired)
        try:
            current = self.store.get(kind, name, namespace)
        except NotFoundError:
            self.store.create(desired)
            report.created.append(_ref(kind, namespace, name))
            return

        if meta(current).get("deletionTimestamp"):
            raise StoreError(f"{_ref(kind, namespace, name)} is being deleted", kind=kind, name=name, namespace=namespace)

        fields = _COMPARED_FIELDS[kind]
        wanted_labels = labels_of(desired)
        current_labels = labels_of(current)
        same_fields = all(current.get(f) == desired.get(f) for f in fields)
        same_labels = all(current_labels.get(k) == v for k, v in wanted_labels.items())
        if same_fields and same_labels:
            return

        merged = copy.deepcopy(current)
        for f in fields:
            merged[f] = copy.deepcopy(desired.get(f))
        merged["metadata"]["labels"] = {**current_labels, **wanted_labels}
        self.store.update(merged)
        report.updated.append(_ref(kind, namespace, name))

    def _delete(self, kind: str, name: str, namespace: str, report: PassReport) -> None:
        try:
            self.store.delete(kind, name, namespace)
        except NotFoundError:
            return
        report.deleted.append(_ref(kind, namespace, name))

    # --- per member -----------------------------------------------------

    def apply_bundle(self, bundle: DesiredBundle, report: PassReport) -> None:
        self._upsert(bundle.addon, report)
        for binding in bundle.role_bindings:
            self._upsert(binding, report)
        self._upsert(bundle.work, report)
        self._upsert(bundle.activation, report)

    def delete_addon(self, namespace: str, report: PassReport) -> None:
        self._delete("ObservabilityAddon", ADDON_NAME, namespace, report)

    def delete_stale_addon(self, namespace: str, report: PassReport) -> None:
        """Drop finalizers first: with no bundle left, nothing on the member will release them."""
        try:
            addon = self.store.get("ObservabilityAddon", ADDON_NAME, namespace)
        except NotFoundError:
            return
        if meta(addon).get("finalizers"):
            addon["metadata"]["finalizers"] = []
            try:
                self.store.update(addon)
            except NotFoundError:
                return
            report.updated.append(_ref("ObservabilityAddon", namespace, ADDON_NAME))
        self._delete("ObservabilityAddon", ADDON_NAME, namespace, report)

    def teardown_member(self, namespace: str, report: PassReport) -> None:
        self._delete("ManagedClusterAddOn", ACTIVATION_NAME, namespace, report)
        for binding_name in (ROLE_BINDING_NAME, RESOURCE_ROLE_BINDING_NAME):
            self._delete("RoleBinding", binding_name, namespace, report)
        self._delete("ManifestWork", work_name(namespace), namespace, report)

    # --- whole pass -----------------------------------------------------

    def converge(
        self,
        targets: list[MemberTarget],
        spec: AddonSpec,
        hub: HubInputs | None,
    ) -> PassReport:
        """
        Run one convergence pass over ``targets``.

        ``hub`` may only be omitted when ``targets`` is empty (delete-all).
        Raises ConvergenceError after cleanup when any member failed.
        """
        report = PassReport()
        target_namespaces = {t.namespace for t in targets}

        existing_addons = self.store.list("ObservabilityAddon", labels=OWNER_LABELS)

        if targets and hub is None:
            raise ValueError("hub inputs are required when there are targets")
        for target in targets:
            logger.info("member_converging", cluster=target.name, namespace=target.namespace)
            bundle = build_bundle(target, spec, hub, self.settings)  # type: ignore[arg-type]
            try:
                self.apply_bundle(bundle, report)
            except StoreError:
                logger.exception("member_converge_failed", cluster=target.name, namespace=target.namespace)
                report.failed_creates.append(target.namespace)

        for addon in existing_addons:
            namespace = namespace_of(addon)
            if namespace in target_namespaces:
                continue
            logger.info("addon_deleting", namespace=namespace)
            try:
                self.delete_addon(namespace, report)
            except StoreError:
                logger.exception("addon_delete_failed", namespace=namespace)
                report.failed_deletes.append(namespace)

        self.cleanup(target_namespaces, report)

        if report.failed_creates or report.failed_deletes:
            raise ConvergenceError(report.failed_creates, report.failed_deletes, report=report)
        return report

    def cleanup(self, target_namespaces: set[str], report: PassReport) -> None:
        """Remove misnamed bundles, untargeted members and stale addon records."""
        works = self.store.list("ManifestWork", labels=OWNER_LABELS)
        remaining: set[str] = set()
        for work in works:
            name = name_of(work)
            namespace = namespace_of(work)
            if name != work_name(namespace):
                logger.info("invalid_work_deleting", name=name, namespace=namespace)
                self._delete("ManifestWork", name, namespace, report)
            if namespace not in target_namespaces:
                logger.info("member_tearing_down", namespace=namespace)
                self.teardown_member(namespace, report)
            elif name == work_name(namespace):
                remaining.add(namespace)

        for addon in self.store.list("ObservabilityAddon", labels=OWNER_LABELS):
            namespace = namespace_of(addon)
            if namespace in remaining:
                continue
            if namespace in report.failed_deletes:
                # Failed earlier in this pass.
                continue
            logger.info("stale_addon_deleting", namespace=namespace)
            self.delete_stale_addon(namespace, report)
