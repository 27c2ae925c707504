"""Names, labels and environment-driven settings."""

from __future__ import annotations

import os
from dataclasses import dataclass


OWNER_LABEL_KEY = "owner"
OWNER_LABEL_VALUE = "multicluster-observability-operator"
OWNER_LABELS = {OWNER_LABEL_KEY: OWNER_LABEL_VALUE}

PAUSED_ANNOTATION = "mco-pause"

WORK_NAME_SUFFIX = "-observability"
ADDON_NAME = "observability-addon"
ACTIVATION_NAME = "observability-controller"
REGISTRATION_NAME = "observability-controller"

CLUSTER_ROLE_NAME = "endpoint-observability-role"
RESOURCE_ROLE_NAME = "endpoint-observability-res-role"
ROLE_BINDING_NAME = "endpoint-observability-rolebinding"
RESOURCE_ROLE_BINDING_NAME = "endpoint-observability-res-rolebinding"

HUB_INFO_SECRET_NAME = "hub-info-secret"
MANAGED_CLUSTER_CERTS_NAME = "observability-managed-cluster-certs"
ALLOWLIST_CONFIGMAP_NAME = "observability-metrics-allowlist"
ALLOWLIST_CUSTOM_CONFIGMAP_NAME = "observability-metrics-custom-allowlist"
ALLOWLIST_KEY = "metrics_list.yaml"
ENDPOINT_OPERATOR_NAME = "endpoint-observability-operator"

SERVER_CA_CERTS = "observability-server-ca-certs"
SERVER_CA_CN = "observability-server-ca-certificate"
CLIENT_CA_CERTS = "observability-client-ca-certs"
CLIENT_CA_CN = "observability-client-ca-certificate"
SERVER_CERTS = "observability-server-certs"
SERVER_CERT_CN = "observability-server-certificate"
PROXY_CERTS = "observability-proxy-certs"
PROXY_CERT_CN = "rbac-query-proxy"
GRAFANA_CERTS = "observability-grafana-certs"
GRAFANA_CERT_CN = "grafana"

API_ROUTE_NAME = "observatorium-api"

DEFAULT_NAMESPACE = "open-cluster-management-observability"
DEFAULT_SPOKE_NAMESPACE = "open-cluster-management-addon-observability"
DEFAULT_ENDPOINT_IMAGE = "quay.io/open-cluster-management/endpoint-monitoring-operator:latest"


def _env_str(name: str, default: str) -> str:
    raw = os.environ.get(name)
    if raw is None:
        return default
    value = raw.strip()
    return value or default


@dataclass(frozen=True)
class Settings:
    namespace: str = DEFAULT_NAMESPACE
    mco_name: str = "observability"
    placement_name: str = "observability"
    spoke_namespace: str = DEFAULT_SPOKE_NAMESPACE
    endpoint_image: str = DEFAULT_ENDPOINT_IMAGE
    log_level: str = "info"
    log_format: str = "console"
    kubectl: str = "kubectl"

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            namespace=_env_str("OBSFLEET_NAMESPACE", DEFAULT_NAMESPACE),
            mco_name=_env_str("OBSFLEET_MCO_NAME", "observability"),
            placement_name=_env_str("OBSFLEET_PLACEMENT_NAME", "observability"),
            spoke_namespace=_env_str("OBSFLEET_SPOKE_NAMESPACE", DEFAULT_SPOKE_NAMESPACE),
            endpoint_image=_env_str("OBSFLEET_ENDPOINT_IMAGE", DEFAULT_ENDPOINT_IMAGE),
            log_level=_env_str("OBSFLEET_LOG_LEVEL", "info"),
            log_format=_env_str("OBSFLEET_LOG_FORMAT", "console"),
            kubectl=_env_str("KUBECTL", "kubectl"),
        )

    @property
    def api_service_host(self) -> str:
        return f"{API_ROUTE_NAME}.{self.namespace}.svc.cluster.local"


def work_name(namespace: str) -> str:
    return namespace + WORK_NAME_SUFFIX


def is_paused(annotations: object) -> bool:
    if not isinstance(annotations, dict):
        return False
    value = annotations.get(PAUSED_ANNOTATION)
    return isinstance(value, str) and value.strip().lower() == "true"
