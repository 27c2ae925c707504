"""API group, plural resource and scope for every kind the controller touches."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class KindInfo:
    kind: str
    api_version: str
    resource: str
    namespaced: bool = True


_KINDS = [
    KindInfo("Secret", "v1", "secrets"),
    KindInfo("ConfigMap", "v1", "configmaps"),
    KindInfo("ClusterRole", "rbac.authorization.k8s.io/v1", "clusterroles", namespaced=False),
    KindInfo("RoleBinding", "rbac.authorization.k8s.io/v1", "rolebindings"),
    KindInfo("Route", "route.openshift.io/v1", "routes.route.openshift.io"),
    KindInfo("ManifestWork", "work.open-cluster-management.io/v1", "manifestworks.work.open-cluster-management.io"),
    KindInfo(
        "ObservabilityAddon",
        "observability.open-cluster-management.io/v1beta1",
        "observabilityaddons.observability.open-cluster-management.io",
    ),
    KindInfo(
        "MultiClusterObservability",
        "observability.open-cluster-management.io/v1beta2",
        "multiclusterobservabilities.observability.open-cluster-management.io",
        namespaced=False,
    ),
    KindInfo("PlacementRule", "apps.open-cluster-management.io/v1", "placementrules.apps.open-cluster-management.io"),
    KindInfo(
        "ManagedClusterAddOn",
        "addon.open-cluster-management.io/v1alpha1",
        "managedclusteraddons.addon.open-cluster-management.io",
    ),
    KindInfo(
        "ClusterManagementAddOn",
        "addon.open-cluster-management.io/v1alpha1",
        "clustermanagementaddons.addon.open-cluster-management.io",
        namespaced=False,
    ),
]

KINDS: dict[str, KindInfo] = {info.kind: info for info in _KINDS}


def kind_info(kind: str) -> KindInfo:
    try:
        return KINDS[kind]
    except KeyError:
        raise ValueError(f"Unknown kind: {kind}") from None


def api_version(kind: str) -> str:
    return kind_info(kind).api_version
