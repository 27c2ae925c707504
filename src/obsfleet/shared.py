"""Cluster-scoped resources shared by every member: the roles and the add-on registration."""

from __future__ import annotations

from dataclasses import dataclass

import structlog

from obsfleet.config import CLUSTER_ROLE_NAME, OWNER_LABELS, REGISTRATION_NAME, RESOURCE_ROLE_NAME
from obsfleet.store.base import ObjectStore, meta, new_object
from obsfleet.store.errors import AlreadyExistsError, NotFoundError

logger = structlog.get_logger("obsfleet.shared")


@dataclass
class ReconcileContext:
    """What the store says about the shared resources at the start of a pass."""

    roles_created: bool = False
    registration_created: bool = False


def desired_cluster_roles() -> list[dict]:
    return [
        new_object(
            "ClusterRole",
            CLUSTER_ROLE_NAME,
            labels=OWNER_LABELS,
            rules=[
                {
                    "apiGroups": ["work.open-cluster-management.io"],
                    "resources": ["manifestworks"],
                    "verbs": ["get", "list", "watch"],
                },
                {
                    "apiGroups": ["addon.open-cluster-management.io"],
                    "resources": ["managedclusteraddons", "managedclusteraddons/status"],
                    "verbs": ["get", "list", "watch", "update", "patch"],
                },
            ],
        ),
        new_object(
            "ClusterRole",
            RESOURCE_ROLE_NAME,
            labels=OWNER_LABELS,
            rules=[
                {
                    "apiGroups": ["observability.open-cluster-management.io"],
                    "resources": ["observabilityaddons", "observabilityaddons/status"],
                    "verbs": ["get", "list", "watch", "update", "patch"],
                },
            ],
        ),
    ]


def desired_registration() -> dict:
    return new_object(
        "ClusterManagementAddOn",
        REGISTRATION_NAME,
        labels=OWNER_LABELS,
        spec={
            "addOnMeta": {
                "displayName": "Observability Controller",
                "description": "Manages Observability components.",
            },
            "addOnConfiguration": {
                "crdName": "observabilityaddons.observability.open-cluster-management.io",
            },
        },
    )


class SharedResources:
    def __init__(self, store: ObjectStore) -> None:
        self.store = store

    def _present(self, kind: str, name: str) -> bool:
        try:
            obj = self.store.get(kind, name)
        except NotFoundError:
            return False
        if meta(obj).get("deletionTimestamp"):
            # Still terminating; recreating now would race the pending delete.
            logger.info("shared_resource_terminating", kind=kind, name=name)
        return True

    def load_context(self) -> ReconcileContext:
        roles = all(self._present("ClusterRole", role["metadata"]["name"]) for role in desired_cluster_roles())
        return ReconcileContext(
            roles_created=roles,
            registration_created=self._present("ClusterManagementAddOn", REGISTRATION_NAME),
        )

    def _create(self, obj: dict) -> None:
        try:
            self.store.create(obj)
            logger.info("shared_resource_created", kind=obj["kind"], name=obj["metadata"]["name"])
        except AlreadyExistsError:
            logger.debug("shared_resource_exists", kind=obj["kind"], name=obj["metadata"]["name"])

    def _delete(self, kind: str, name: str) -> None:
        try:
            self.store.delete(kind, name)
            logger.info("shared_resource_deleted", kind=kind, name=name)
        except NotFoundError:
            return

    def ensure_created(self, ctx: ReconcileContext) -> None:
        if not ctx.roles_created:
            for role in desired_cluster_roles():
                self._create(role)
            ctx.roles_created = True
        if not ctx.registration_created:
            self._create(desired_registration())
            ctx.registration_created = True

    def ensure_deleted(self, ctx: ReconcileContext) -> None:
        """Tear down both; any failure propagates before either flag is reset."""
        for role in desired_cluster_roles():
            self._delete("ClusterRole", role["metadata"]["name"])
        self._delete("ClusterManagementAddOn", REGISTRATION_NAME)
        ctx.roles_created = False
        ctx.registration_created = False
