"""One reconcile pass of the fleet: inputs -> certificates, shared resources, bundles, status."""

from __future__ import annotations

from dataclasses import dataclass, field

import structlog

from obsfleet.bundle import AddonSpec
from obsfleet.certs import create_observability_certs
from obsfleet.config import OWNER_LABELS, Settings, is_paused
from obsfleet.errors import AuthorityMissingError, ConvergenceError, InvalidInputError
from obsfleet.hub import load_hub_inputs
from obsfleet.placement import decisions_from_placement, resolve_targets
from obsfleet.shared import SharedResources
from obsfleet.status import update_addon_status
from obsfleet.store.base import ObjectStore, meta
from obsfleet.store.errors import NotFoundError, StoreError
from obsfleet.watch import WorkQueue
from obsfleet.work import ConvergenceEngine, PassReport

logger = structlog.get_logger("obsfleet.controller")

OUTCOME_SKIPPED = "skipped"
OUTCOME_PAUSED = "paused"
OUTCOME_CONVERGED = "converged"
OUTCOME_DELETED = "deleted"

# Failures that abort a pass and put its key back on the queue.
PASS_ERRORS = (StoreError, ConvergenceError, AuthorityMissingError, InvalidInputError)


@dataclass
class PassResult:
    outcome: str
    delete_all: bool = False
    targets: list[str] = field(default_factory=list)
    report: PassReport = field(default_factory=PassReport)
    certs_created: list[str] = field(default_factory=list)
    status_updated: list[str] = field(default_factory=list)
    shared_deleted: bool = False

    def to_dict(self) -> dict:
        return {
            "schema": "reconcile_pass.v0",
            "outcome": self.outcome,
            "delete_all": self.delete_all,
            "targets": list(self.targets),
            "convergence": self.report.to_dict(),
            "certs_created": list(self.certs_created),
            "status_updated": list(self.status_updated),
            "shared_deleted": self.shared_deleted,
        }


class Reconciler:
    def __init__(self, store: ObjectStore, settings: Settings) -> None:
        self.store = store
        self.settings = settings
        self.engine = ConvergenceEngine(store, settings)
        self.shared = SharedResources(store)
        self.last_error: Exception | None = None

    def _get_optional(self, kind: str, name: str, namespace: str | None = None) -> dict | None:
        try:
            return self.store.get(kind, name, namespace)
        except NotFoundError:
            return None

    def reconcile(self) -> PassResult:
        """
        Run one full pass.

        A missing MultiClusterObservability or PlacementRule switches the pass
        to delete-all: every addon record and bundle is removed, and the shared
        resources go once no bundle remains. Store errors other than not-found
        propagate; ConvergenceError is raised after cleanup when some member
        failed.
        """
        settings = self.settings
        if not settings.mco_name:
            logger.info("reconcile_skipped", reason="no_mco_name")
            return PassResult(outcome=OUTCOME_SKIPPED)

        mco = self._get_optional("MultiClusterObservability", settings.mco_name)
        placement = None
        if mco is not None:
            placement = self._get_optional("PlacementRule", settings.placement_name, settings.namespace)
        delete_all = mco is None or placement is None

        if mco is not None and is_paused(meta(mco).get("annotations")):
            logger.info("reconcile_paused", mco=settings.mco_name)
            return PassResult(outcome=OUTCOME_PAUSED)

        ctx = self.shared.load_context()
        result = PassResult(outcome=OUTCOME_DELETED if delete_all else OUTCOME_CONVERGED, delete_all=delete_all)

        if delete_all:
            logger.info("reconcile_delete_all", mco_found=mco is not None, placement_found=placement is not None)
            result.report = self.engine.converge([], AddonSpec(), None)
        else:
            result.certs_created = create_observability_certs(self.store, settings, owner=mco)
            self.shared.ensure_created(ctx)
            hub = load_hub_inputs(self.store, settings, mco)
            targets = resolve_targets(decisions_from_placement(placement))
            result.targets = [t.namespace for t in targets]
            logger.info("reconcile_converging", targets=len(targets))
            result.report = self.engine.converge(targets, AddonSpec.from_mco(mco), hub)

        addons = self.store.list("ObservabilityAddon", labels=OWNER_LABELS)
        result.status_updated = update_addon_status(self.store, addons)

        if delete_all and not self.store.list("ManifestWork", labels=OWNER_LABELS):
            self.shared.ensure_deleted(ctx)
            result.shared_deleted = True

        logger.info(
            "reconcile_done",
            outcome=result.outcome,
            writes=result.report.writes,
            status_updated=len(result.status_updated),
        )
        return result

    def process_next(self, queue: WorkQueue) -> PassResult | None:
        """
        Pop one key and reconcile.

        A failed pass puts the key back and leaves the error in ``last_error``.
        """
        key = queue.pop()
        if key is None:
            return None
        self.last_error = None
        try:
            return self.reconcile()
        except PASS_ERRORS as exc:
            logger.error("reconcile_failed", key=key, error=str(exc))
            self.last_error = exc
            queue.add(key)
            return None
