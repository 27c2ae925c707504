"""Placement decisions -> the member targets of one convergence pass."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class PlacementDecision:
    cluster_name: str
    cluster_namespace: str


@dataclass(frozen=True)
class MemberTarget:
    name: str
    namespace: str


def decisions_from_placement(placement: dict | None) -> list[PlacementDecision]:
    """Read ``status.decisions`` of a PlacementRule object."""
    if not isinstance(placement, dict):
        return []
    status = placement.get("status")
    if not isinstance(status, dict):
        return []
    decisions: list[PlacementDecision] = []
    for item in status.get("decisions") or []:
        if not isinstance(item, dict):
            continue
        name = item.get("clusterName")
        namespace = item.get("clusterNamespace")
        decisions.append(
            PlacementDecision(
                cluster_name=name.strip() if isinstance(name, str) else "",
                cluster_namespace=namespace.strip() if isinstance(namespace, str) else "",
            )
        )
    return decisions


def resolve_targets(decisions: list[PlacementDecision]) -> list[MemberTarget]:
    targets: dict[str, MemberTarget] = {}
    for decision in decisions:
        namespace = decision.cluster_namespace.strip()
        if not namespace or namespace in targets:
            continue
        name = decision.cluster_name.strip() or namespace
        targets[namespace] = MemberTarget(name=name, namespace=namespace)
    return [targets[ns] for ns in sorted(targets)]
