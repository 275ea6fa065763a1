"""Plan engine: desired spec + recorded state + live state → ordered plan.

Algorithm:

1. Build the desired resource graph and reject add-on cycles with
   :class:`PlanConflict` before touching the provider.
2. Load the last-applied spec and records from the state store.
3. Describe every recorded resource (drift check).  Drift raises
   :class:`DriftDetected` unless ``force=True``; with ``force`` missing
   resources are re-created and diverged ones updated.
4. Classify each resource as create / update / delete / noop.
5. Wire dependency edges: node groups and teams after the cluster,
   add-ons after the cluster and their prerequisites; deletes run in
   reverse (dependents before what they depend on).
6. Emit a topologically sorted :class:`ChangePlan`, ties broken by
   ascending resource id.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from eks_orchestrator.config.models import CLUSTER_RESOURCE_ID, ClusterSpec
from eks_orchestrator.errors import DriftDetected
from eks_orchestrator.plan.graph import DependencyGraph
from eks_orchestrator.plan.models import (
    ChangeAction,
    ChangePlan,
    ChangeStep,
    derive_token,
    step_id_for,
)
from eks_orchestrator.provider.base import ProviderAdapter
from eks_orchestrator.state.drift import DriftItem, DriftReport, DriftStatus, run_drift_check
from eks_orchestrator.state.models import ResourceRecord
from eks_orchestrator.state.store import StateStore

logger = logging.getLogger(__name__)

TEARDOWN_HASH = "teardown"


@dataclass
class DesiredResource:
    """One resource the cluster spec asks for."""

    resource_id: str
    attributes: Dict[str, Any]
    requires: Tuple[str, ...]
    target: Any


def desired_resources(spec: ClusterSpec) -> Dict[str, DesiredResource]:
    """Flatten *spec* into resources keyed by resource id."""
    out: Dict[str, DesiredResource] = {
        CLUSTER_RESOURCE_ID: DesiredResource(
            resource_id=CLUSTER_RESOURCE_ID,
            attributes=spec.attributes(),
            requires=(),
            target=spec,
        ),
    }
    for ng in spec.node_groups:
        out[ng.resource_id] = DesiredResource(
            ng.resource_id, ng.attributes(), (CLUSTER_RESOURCE_ID,), ng,
        )
    for addon in spec.add_ons:
        prereqs = tuple(f"addon/{d}" for d in addon.depends_on)
        out[addon.resource_id] = DesiredResource(
            addon.resource_id, addon.attributes(), (CLUSTER_RESOURCE_ID,) + prereqs, addon,
        )
    for team in spec.teams:
        out[team.resource_id] = DesiredResource(
            team.resource_id, team.attributes(), (CLUSTER_RESOURCE_ID,), team,
        )
    return out


def resource_graph(resources: Dict[str, DesiredResource]) -> DependencyGraph:
    graph = DependencyGraph()
    for rid, res in resources.items():
        graph.add_node(rid)
        for dep in res.requires:
            graph.add_edge(rid, dep)
    return graph


@dataclass
class _Classified:
    steps: Dict[str, ChangeStep] = field(default_factory=dict)
    overridden: List[DriftItem] = field(default_factory=list)


class PlanEngine:
    """Diffs desired state against recorded and live state."""

    def __init__(self, provider: ProviderAdapter, store: StateStore) -> None:
        self.provider = provider
        self.store = store

    # -- public API -------------------------------------------------------

    def plan(self, spec: ClusterSpec, *, force: bool = False) -> ChangePlan:
        """Plan convergence of the live cluster to *spec*.

        Raises:
            PlanConflict: the add-on dependency graph has a cycle.
            DriftDetected: live state diverged and *force* is False.
            ProviderError: the drift check itself could not describe a resource.
        """
        desired = desired_resources(spec)
        resource_graph(desired).check_acyclic("add-on dependencies")

        last_spec, records = self.store.load()
        if last_spec is not None and last_spec.spec_hash() == spec.spec_hash():
            logger.debug("Spec unchanged since last apply (%s)", spec.spec_hash()[:12])

        drift = self._check_drift(spec.name, records, force=force)
        spec_hash = spec.spec_hash()
        result = _Classified()
        items = drift.by_resource()

        for rid in sorted(desired):
            res = desired[rid]
            record = records.get(rid)
            item = items.get(rid)
            action, reason = self._classify(res, record, item)
            if item is not None and item.drifted and action != ChangeAction.NOOP:
                result.overridden.append(item)
            result.steps[rid] = self._step(
                rid, action, spec_hash, record,
                desired=res.attributes, requires=res.requires, target=res.target, reason=reason,
            )

        for rid in sorted(set(records) - set(desired)):
            record = records[rid]
            item = items.get(rid)
            gone = item is not None and item.status == DriftStatus.MISSING
            if gone:
                result.overridden.append(item)
            result.steps[rid] = self._step(
                rid, ChangeAction.DELETE, spec_hash, record,
                requires=tuple(record.depends_on),
                reason="already gone" if gone else "removed from spec",
                forget=gone,
            )

        plan = self._order(spec.name, spec_hash, result.steps)
        plan.spec = spec
        plan.overridden_drift = result.overridden
        logger.info("Planned %s: %s", spec.name, plan.counts())
        return plan

    def plan_teardown(self, cluster_name: str, *, force: bool = False) -> ChangePlan:
        """Plan deletion of every recorded resource of *cluster_name*."""
        last_spec, records = self.store.load()
        drift = self._check_drift(cluster_name, records, force=force)
        spec_hash = last_spec.spec_hash() if last_spec else TEARDOWN_HASH

        steps: Dict[str, ChangeStep] = {}
        overridden: List[DriftItem] = []
        items = drift.by_resource()
        for rid in sorted(records):
            record = records[rid]
            item = items.get(rid)
            gone = item is not None and item.status == DriftStatus.MISSING
            if gone:
                overridden.append(item)
            steps[rid] = self._step(
                rid, ChangeAction.DELETE, spec_hash, record,
                requires=tuple(record.depends_on),
                reason="already gone" if gone else "teardown",
                forget=gone,
            )

        plan = self._order(cluster_name, spec_hash, steps)
        plan.spec = last_spec
        plan.teardown = True
        plan.overridden_drift = overridden
        logger.info("Planned teardown of %s: %d step(s)", cluster_name, len(plan.steps))
        return plan

    # -- internals --------------------------------------------------------

    def _check_drift(
        self, cluster_name: str, records: Dict[str, ResourceRecord], *, force: bool,
    ) -> DriftReport:
        report = run_drift_check(self.provider, records, cluster_name=cluster_name)
        for item in report.errors:
            if item.exc is not None:
                raise item.exc
        if report.has_drift and not force:
            raise DriftDetected(report.drifted)
        if report.has_drift:
            logger.warning(
                "Overriding drift on %s", ", ".join(i.resource_id for i in report.drifted),
            )
        return report

    @staticmethod
    def _classify(
        res: DesiredResource,
        record: Optional[ResourceRecord],
        item: Optional[DriftItem],
    ) -> Tuple[ChangeAction, str]:
        if record is None:
            return ChangeAction.CREATE, ""
        if item is not None and item.status == DriftStatus.MISSING:
            return ChangeAction.CREATE, "recreate: missing live"
        if record.attributes != res.attributes:
            return ChangeAction.UPDATE, ""
        if item is not None and item.drifted:
            return ChangeAction.UPDATE, "reconcile drift"
        return ChangeAction.NOOP, ""

    @staticmethod
    def _step(
        rid: str,
        action: ChangeAction,
        spec_hash: str,
        record: Optional[ResourceRecord],
        *,
        desired: Optional[Dict[str, Any]] = None,
        requires: Tuple[str, ...] = (),
        target: Any = None,
        reason: str = "",
        forget: bool = False,
    ) -> ChangeStep:
        previous_token = record.token if record else ""
        return ChangeStep(
            resource_id=rid,
            action=action,
            requires=requires,
            desired=dict(desired or {}),
            previous=dict(record.attributes) if record else {},
            target=target,
            token=derive_token(spec_hash, step_id_for(action, rid), previous_token),
            reason=reason,
            forget=forget,
        )

    @staticmethod
    def _order(cluster_name: str, spec_hash: str, steps: Dict[str, ChangeStep]) -> ChangePlan:
        graph = DependencyGraph()
        for rid, step in steps.items():
            graph.add_node(rid)
            if step.action == ChangeAction.DELETE:
                # A deleted resource must be gone before anything it needed is deleted.
                for dep in step.requires:
                    dep_step = steps.get(dep)
                    if dep_step is not None and dep_step.action == ChangeAction.DELETE:
                        graph.add_edge(dep, rid)
            else:
                for dep in step.requires:
                    if dep in steps:
                        graph.add_edge(rid, dep)

        order = graph.topological_order()
        ordered: List[ChangeStep] = []
        for rid in order:
            step = steps[rid]
            step.depends_on = tuple(steps[d].step_id for d in graph.dependencies(rid))
            ordered.append(step)
        return ChangePlan(cluster_name=cluster_name, spec_hash=spec_hash, steps=ordered)
