"""Fold per-member addon conditions into the activation record's status."""

from __future__ import annotations

from dataclasses import dataclass

import structlog

from obsfleet.config import ACTIVATION_NAME
from obsfleet.store.base import ObjectStore, namespace_of
from obsfleet.store.errors import NotFoundError, StoreError

logger = structlog.get_logger("obsfleet.status")


STATUS_MAP = {
    "Available": "Available",
    "Progressing": "Progressing",
    "Deployed": "Progressing",
    "Disabled": "Degraded",
    "Degraded": "Degraded",
    "NotSupported": "Degraded",
}


def _text(value: object) -> str:
    return value if isinstance(value, str) else ""


@dataclass(frozen=True)
class Condition:
    type: str
    status: str
    reason: str = ""
    message: str = ""
    last_transition_time: str = ""

    @classmethod
    def from_dict(cls, raw: dict) -> "Condition":
        return cls(
            type=_text(raw.get("type")),
            status=_text(raw.get("status")),
            reason=_text(raw.get("reason")),
            message=_text(raw.get("message")),
            last_transition_time=_text(raw.get("lastTransitionTime")),
        )

    def to_dict(self) -> dict:
        return {
            "type": self.type,
            "status": self.status,
            "reason": self.reason,
            "message": self.message,
            "lastTransitionTime": self.last_transition_time,
        }

    def key(self) -> tuple[str, str, str, str, str]:
        return (self.type, self.status, self.reason, self.message, self.last_transition_time)


def _conditions_of(obj: dict) -> list[dict]:
    status = obj.get("status")
    if not isinstance(status, dict):
        return []
    return [item for item in status.get("conditions") or [] if isinstance(item, dict)]


def project_conditions(raw_conditions: list[dict]) -> list[Condition]:
    """Translate addon condition types onto Available/Progressing/Degraded, in order."""
    projected = []
    for raw in raw_conditions:
        condition = Condition.from_dict(raw)
        mapped = STATUS_MAP.get(condition.type)
        if mapped is None:
            logger.debug("condition_type_unmapped", type=condition.type)
            continue
        projected.append(
            Condition(
                type=mapped,
                status=condition.status,
                reason=condition.reason,
                message=condition.message,
                last_transition_time=condition.last_transition_time,
            )
        )
    return projected


def conditions_equal(left: list[Condition], right: list[Condition]) -> bool:
    if len(left) != len(right):
        return False
    return all(a.key() == b.key() for a, b in zip(left, right))


def update_addon_status(store: ObjectStore, addons: list[dict]) -> list[str]:
    """
    Write projected conditions to each member's activation record.

    A missing activation record is skipped (the member may be mid-removal);
    any other store error aborts the whole aggregation. Returns the namespaces
    whose status was written.
    """
    updated: list[str] = []
    for addon in addons:
        raw_conditions = _conditions_of(addon)
        if not raw_conditions:
            continue
        namespace = namespace_of(addon)
        conditions = project_conditions(raw_conditions)
        try:
            activation = store.get("ManagedClusterAddOn", ACTIVATION_NAME, namespace)
        except NotFoundError:
            logger.info("activation_record_missing", namespace=namespace)
            continue
        except StoreError:
            logger.exception("activation_record_get_failed", namespace=namespace)
            raise
        current = [Condition.from_dict(raw) for raw in _conditions_of(activation)]
        if conditions_equal(conditions, current):
            continue
        status = activation.get("status") if isinstance(activation.get("status"), dict) else {}
        activation["status"] = {**status, "conditions": [c.to_dict() for c in conditions]}
        try:
            store.update_status(activation)
        except NotFoundError:
            logger.info("activation_record_missing", namespace=namespace)
            continue
        except StoreError:
            logger.exception("activation_status_update_failed", namespace=namespace)
            raise
        logger.info("activation_status_updated", namespace=namespace)
        updated.append(namespace)
    return updated
