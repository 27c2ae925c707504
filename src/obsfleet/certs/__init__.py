"""Bootstrap and rotation of the observability PKI."""

from __future__ import annotations

from dataclasses import dataclass

import structlog

from obsfleet.certs.authority import ensure_authority, rotate_authority
from obsfleet.certs.leaf import ensure_leaf, rotate_leaf
from obsfleet.config import (
    CLIENT_CA_CERTS,
    CLIENT_CA_CN,
    GRAFANA_CERT_CN,
    GRAFANA_CERTS,
    PROXY_CERT_CN,
    PROXY_CERTS,
    SERVER_CA_CERTS,
    SERVER_CA_CN,
    SERVER_CERT_CN,
    SERVER_CERTS,
    Settings,
)
from obsfleet.hub import lookup_api_host
from obsfleet.store.base import ObjectStore
from obsfleet.store.errors import StoreError

logger = structlog.get_logger("obsfleet.certs")


@dataclass(frozen=True)
class LeafSpec:
    name: str
    cn: str
    is_server: bool


AUTHORITIES = (
    (SERVER_CA_CERTS, SERVER_CA_CN),
    (CLIENT_CA_CERTS, CLIENT_CA_CN),
)

LEAVES = (
    LeafSpec(SERVER_CERTS, SERVER_CERT_CN, is_server=True),
    LeafSpec(PROXY_CERTS, PROXY_CERT_CN, is_server=False),
    LeafSpec(GRAFANA_CERTS, GRAFANA_CERT_CN, is_server=False),
)


def _server_hosts(store: ObjectStore, settings: Settings, api_host: str | None) -> list[str]:
    hosts = [settings.api_service_host]
    if api_host is None:
        try:
            api_host = lookup_api_host(store, settings)
        except StoreError as exc:
            logger.warning("api_route_lookup_failed", error=str(exc))
            api_host = None
    if api_host:
        hosts.append(api_host)
    return hosts


def create_observability_certs(
    store: ObjectStore,
    settings: Settings,
    owner: dict | None = None,
    api_host: str | None = None,
) -> list[str]:
    """Create whatever authorities and leaves are missing. Returns the names created."""
    created: list[str] = []
    for name, cn in AUTHORITIES:
        if ensure_authority(store, name, cn, namespace=settings.namespace, owner=owner):
            created.append(name)
    for leaf in LEAVES:
        dns_names = _server_hosts(store, settings, api_host) if leaf.is_server else None
        if ensure_leaf(
            store,
            leaf.name,
            leaf.is_server,
            leaf.cn,
            dns_names=dns_names,
            namespace=settings.namespace,
            owner=owner,
        ):
            created.append(leaf.name)
    return created


def rotate_observability_certs(
    store: ObjectStore,
    settings: Settings,
    api_host: str | None = None,
) -> list[str]:
    """Re-sign both authorities, then every leaf against the new authorities."""
    rotated: list[str] = []
    for name, cn in AUTHORITIES:
        if rotate_authority(store, name, cn, namespace=settings.namespace):
            rotated.append(name)
    for leaf in LEAVES:
        dns_names = _server_hosts(store, settings, api_host) if leaf.is_server else None
        if rotate_leaf(store, leaf.name, leaf.is_server, leaf.cn, dns_names=dns_names, namespace=settings.namespace):
            rotated.append(leaf.name)
    return rotated


__all__ = [
    "AUTHORITIES",
    "LEAVES",
    "LeafSpec",
    "create_observability_certs",
    "rotate_observability_certs",
]
