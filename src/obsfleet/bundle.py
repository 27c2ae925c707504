"""Render the declarative object set deployed for one member cluster."""

from __future__ import annotations

import copy
from dataclasses import dataclass

import yaml

from obsfleet.config import (
    ACTIVATION_NAME,
    ADDON_NAME,
    ALLOWLIST_CONFIGMAP_NAME,
    ALLOWLIST_CUSTOM_CONFIGMAP_NAME,
    ALLOWLIST_KEY,
    CLUSTER_ROLE_NAME,
    ENDPOINT_OPERATOR_NAME,
    HUB_INFO_SECRET_NAME,
    MANAGED_CLUSTER_CERTS_NAME,
    OWNER_LABELS,
    REGISTRATION_NAME,
    RESOURCE_ROLE_BINDING_NAME,
    RESOURCE_ROLE_NAME,
    ROLE_BINDING_NAME,
    Settings,
    work_name,
)
from obsfleet.errors import InvalidInputError
from obsfleet.placement import MemberTarget
from obsfleet.store.base import encode_data, new_object


DEFAULT_INTERVAL = 30


@dataclass(frozen=True)
class AddonSpec:
    enable_metrics: bool = True
    interval: int = DEFAULT_INTERVAL

    @classmethod
    def from_mco(cls, mco: dict | None) -> "AddonSpec":
        spec = (mco or {}).get("spec")
        addon = spec.get("observabilityAddonSpec") if isinstance(spec, dict) else None
        if not isinstance(addon, dict):
            return cls()
        enable = addon.get("enableMetrics")
        interval = addon.get("interval")
        return cls(
            enable_metrics=enable if isinstance(enable, bool) else True,
            interval=interval if isinstance(interval, int) and not isinstance(interval, bool) and interval > 0
            else DEFAULT_INTERVAL,
        )

    def to_dict(self) -> dict:
        return {"enableMetrics": self.enable_metrics, "interval": self.interval}


@dataclass
class DesiredBundle:
    target: MemberTarget
    role_bindings: list[dict]
    addon: dict
    work: dict
    activation: dict

    @property
    def manifests(self) -> list[dict]:
        return self.work["spec"]["workload"]["manifests"]


@dataclass
class HubInputs:
    """Hub-side objects that every member's bundle embeds."""

    hub_ca: bytes
    hub_endpoint: str
    pull_secret: dict | None = None
    allowlist: str = ""


def _load_allowlist(text: str | None, source: str) -> tuple[list[str], dict[str, str]]:
    if not text:
        return [], {}
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise InvalidInputError("ConfigMap", source, f"{ALLOWLIST_KEY} is not valid YAML: {exc}") from exc
    if not isinstance(data, dict):
        return [], {}
    names = [n for n in data.get("names") or [] if isinstance(n, str)]
    raw_renames = data.get("renames") or {}
    renames = {
        str(k): str(v) for k, v in raw_renames.items() if isinstance(k, str) and isinstance(v, str)
    } if isinstance(raw_renames, dict) else {}
    return names, renames


def merge_allowlist(default_yaml: str | None, custom_yaml: str | None = None) -> str:
    """Union the metric names, let custom renames override the defaults."""
    names, renames = _load_allowlist(default_yaml, ALLOWLIST_CONFIGMAP_NAME)
    custom_names, custom_renames = _load_allowlist(custom_yaml, ALLOWLIST_CUSTOM_CONFIGMAP_NAME)
    seen = set(names)
    for name in custom_names:
        if name not in seen:
            seen.add(name)
            names.append(name)
    renames.update(custom_renames)
    return yaml.safe_dump({"names": names, "renames": renames}, default_flow_style=False, sort_keys=True)


def addon_group(cluster_name: str) -> str:
    return f"system:open-cluster-management:cluster:{cluster_name}:addon:{REGISTRATION_NAME}"


def build_role_bindings(target: MemberTarget) -> list[dict]:
    bindings = []
    for binding_name, role_name in (
        (ROLE_BINDING_NAME, CLUSTER_ROLE_NAME),
        (RESOURCE_ROLE_BINDING_NAME, RESOURCE_ROLE_NAME),
    ):
        bindings.append(
            new_object(
                "RoleBinding",
                binding_name,
                target.namespace,
                labels=OWNER_LABELS,
                roleRef={
                    "apiGroup": "rbac.authorization.k8s.io",
                    "kind": "ClusterRole",
                    "name": role_name,
                },
                subjects=[
                    {
                        "apiGroup": "rbac.authorization.k8s.io",
                        "kind": "Group",
                        "name": addon_group(target.name),
                    }
                ],
            )
        )
    return bindings


def build_addon(namespace: str, spec: AddonSpec) -> dict:
    return new_object("ObservabilityAddon", ADDON_NAME, namespace, labels=OWNER_LABELS, spec=spec.to_dict())


def build_activation(namespace: str, settings: Settings) -> dict:
    return new_object(
        "ManagedClusterAddOn",
        ACTIVATION_NAME,
        namespace,
        labels=OWNER_LABELS,
        spec={"installNamespace": settings.spoke_namespace},
    )


def _hub_info(target: MemberTarget, hub_endpoint: str) -> str:
    return yaml.safe_dump(
        {"cluster-name": target.name, "endpoint": hub_endpoint},
        default_flow_style=False,
        sort_keys=True,
    )


def _endpoint_operator(settings: Settings, pull_secret_name: str | None) -> dict:
    pod_spec: dict = {
        "serviceAccountName": ENDPOINT_OPERATOR_NAME + "-sa",
        "containers": [
            {
                "name": ENDPOINT_OPERATOR_NAME,
                "image": settings.endpoint_image,
                "env": [
                    {"name": "HUB_NAMESPACE", "valueFrom": {"fieldRef": {"fieldPath": "metadata.namespace"}}},
                ],
            }
        ],
    }
    if pull_secret_name:
        pod_spec["imagePullSecrets"] = [{"name": pull_secret_name}]
    return {
        "apiVersion": "apps/v1",
        "kind": "Deployment",
        "metadata": {"name": ENDPOINT_OPERATOR_NAME, "namespace": settings.spoke_namespace},
        "spec": {
            "replicas": 1,
            "selector": {"matchLabels": {"name": ENDPOINT_OPERATOR_NAME}},
            "template": {
                "metadata": {"labels": {"name": ENDPOINT_OPERATOR_NAME}},
                "spec": pod_spec,
            },
        },
    }


def build_work_manifests(
    target: MemberTarget,
    spec: AddonSpec,
    hub: HubInputs,
    settings: Settings,
) -> list[dict]:
    spoke_ns = settings.spoke_namespace
    sa_name = ENDPOINT_OPERATOR_NAME + "-sa"
    pull_secret_name = None
    if hub.pull_secret is not None:
        pull_secret_name = hub.pull_secret.get("metadata", {}).get("name")

    manifests: list[dict] = [
        {"apiVersion": "v1", "kind": "Namespace", "metadata": {"name": spoke_ns}},
        {"apiVersion": "v1", "kind": "ServiceAccount", "metadata": {"name": sa_name, "namespace": spoke_ns}},
        {
            "apiVersion": "rbac.authorization.k8s.io/v1",
            "kind": "ClusterRole",
            "metadata": {"name": ENDPOINT_OPERATOR_NAME},
            "rules": [
                {"apiGroups": ["*"], "resources": ["*"], "verbs": ["get", "list", "watch"]},
                {
                    "apiGroups": ["observability.open-cluster-management.io"],
                    "resources": ["observabilityaddons", "observabilityaddons/status"],
                    "verbs": ["*"],
                },
            ],
        },
        {
            "apiVersion": "rbac.authorization.k8s.io/v1",
            "kind": "ClusterRoleBinding",
            "metadata": {"name": ENDPOINT_OPERATOR_NAME},
            "roleRef": {
                "apiGroup": "rbac.authorization.k8s.io",
                "kind": "ClusterRole",
                "name": ENDPOINT_OPERATOR_NAME,
            },
            "subjects": [{"kind": "ServiceAccount", "name": sa_name, "namespace": spoke_ns}],
        },
        _endpoint_operator(settings, pull_secret_name),
        {
            "apiVersion": "observability.open-cluster-management.io/v1beta1",
            "kind": "ObservabilityAddon",
            "metadata": {"name": ADDON_NAME, "namespace": spoke_ns},
            "spec": spec.to_dict(),
        },
        {
            "apiVersion": "v1",
            "kind": "Secret",
            "metadata": {"name": HUB_INFO_SECRET_NAME, "namespace": spoke_ns},
            "type": "Opaque",
            "data": encode_data({"hub-info.yaml": _hub_info(target, hub.hub_endpoint).encode("utf-8")}),
        },
        {
            "apiVersion": "v1",
            "kind": "Secret",
            "metadata": {"name": MANAGED_CLUSTER_CERTS_NAME, "namespace": spoke_ns},
            "type": "Opaque",
            "data": encode_data({"ca.crt": hub.hub_ca}),
        },
        {
            "apiVersion": "v1",
            "kind": "ConfigMap",
            "metadata": {"name": ALLOWLIST_CONFIGMAP_NAME, "namespace": spoke_ns},
            "data": {ALLOWLIST_KEY: hub.allowlist or merge_allowlist(None)},
        },
    ]

    if hub.pull_secret is not None:
        manifests.append(
            {
                "apiVersion": "v1",
                "kind": "Secret",
                "metadata": {"name": pull_secret_name, "namespace": spoke_ns},
                "type": hub.pull_secret.get("type", "kubernetes.io/dockerconfigjson"),
                "data": copy.deepcopy(hub.pull_secret.get("data") or {}),
            }
        )
    return manifests


def build_work(target: MemberTarget, spec: AddonSpec, hub: HubInputs, settings: Settings) -> dict:
    return new_object(
        "ManifestWork",
        work_name(target.namespace),
        target.namespace,
        labels=OWNER_LABELS,
        spec={"workload": {"manifests": build_work_manifests(target, spec, hub, settings)}},
    )


def build_bundle(target: MemberTarget, spec: AddonSpec, hub: HubInputs, settings: Settings) -> DesiredBundle:
    return DesiredBundle(
        target=target,
        role_bindings=build_role_bindings(target),
        addon=build_addon(target.namespace, spec),
        work=build_work(target, spec, hub, settings),
        activation=build_activation(target.namespace, settings),
    )
