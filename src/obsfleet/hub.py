"""Read the hub-side objects that every member bundle embeds."""

from __future__ import annotations

import structlog

from obsfleet.bundle import HubInputs, merge_allowlist
from obsfleet.config import (
    ALLOWLIST_CONFIGMAP_NAME,
    ALLOWLIST_CUSTOM_CONFIGMAP_NAME,
    ALLOWLIST_KEY,
    API_ROUTE_NAME,
    SERVER_CA_CERTS,
    Settings,
)
from obsfleet.errors import AuthorityMissingError
from obsfleet.store.base import ObjectStore, decode_data
from obsfleet.store.errors import NotFoundError

logger = structlog.get_logger("obsfleet.hub")

RECEIVE_PATH = "/api/metrics/v1/default/api/v1/receive"


def lookup_api_host(store: ObjectStore, settings: Settings) -> str | None:
    """Externally reachable host of the metrics API route, if one is published."""
    try:
        route = store.get("Route", API_ROUTE_NAME, settings.namespace)
    except NotFoundError:
        return None
    spec = route.get("spec")
    host = spec.get("host") if isinstance(spec, dict) else None
    if isinstance(host, str) and host.strip():
        return host.strip()
    return None


def _configmap_value(store: ObjectStore, name: str, namespace: str, key: str) -> str | None:
    try:
        cm = store.get("ConfigMap", name, namespace)
    except NotFoundError:
        return None
    data = cm.get("data")
    value = data.get(key) if isinstance(data, dict) else None
    return value if isinstance(value, str) else None


def load_pull_secret(store: ObjectStore, settings: Settings, mco: dict | None) -> dict | None:
    spec = (mco or {}).get("spec")
    name = spec.get("imagePullSecret") if isinstance(spec, dict) else None
    if not isinstance(name, str) or not name.strip():
        return None
    try:
        return store.get("Secret", name.strip(), settings.namespace)
    except NotFoundError:
        logger.info("image_pull_secret_missing", name=name, namespace=settings.namespace)
        return None


def load_hub_ca(store: ObjectStore, settings: Settings) -> bytes:
    try:
        secret = store.get("Secret", SERVER_CA_CERTS, settings.namespace)
    except NotFoundError:
        raise AuthorityMissingError(SERVER_CA_CERTS) from None
    ca = decode_data(secret).get("ca.crt")
    if not ca:
        raise AuthorityMissingError(SERVER_CA_CERTS)
    return ca


def load_hub_inputs(store: ObjectStore, settings: Settings, mco: dict | None) -> HubInputs:
    host = lookup_api_host(store, settings) or settings.api_service_host
    allowlist = merge_allowlist(
        _configmap_value(store, ALLOWLIST_CONFIGMAP_NAME, settings.namespace, ALLOWLIST_KEY),
        _configmap_value(store, ALLOWLIST_CUSTOM_CONFIGMAP_NAME, settings.namespace, ALLOWLIST_KEY),
    )
    return HubInputs(
        hub_ca=load_hub_ca(store, settings),
        hub_endpoint=f"https://{host}{RECEIVE_PATH}",
        pull_secret=load_pull_secret(store, settings, mco),
        allowlist=allowlist,
    )
