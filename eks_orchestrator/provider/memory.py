"""In-memory provider backend.

A faithful stand-in for a cloud control plane, used by the test-suite and
by ``--backend memory`` dry runs.  Besides the adapter contract it offers
hooks that real backends cannot:

- :meth:`InMemoryProvider.fail` / :meth:`InMemoryProvider.fail_on_call`
  inject transient or permanent failures, optionally *after* the effect
  has been applied (a lost response).
- ``duplicate_delivery=True`` delivers every mutating call twice, the way
  an at-least-once transport would.
- :meth:`InMemoryProvider.tamper` / :meth:`InMemoryProvider.forget`
  simulate out-of-band changes for drift tests.

Only mutating calls are counted in :attr:`InMemoryProvider.calls`; reads
go to :attr:`InMemoryProvider.describes`.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Type

from eks_orchestrator.config.models import (
    CLUSTER_RESOURCE_ID,
    AddOnSpec,
    ClusterSpec,
    NodeGroupSpec,
    TeamSpec,
)
from eks_orchestrator.errors import ProviderError, ProviderPermanent, ProviderTransient
from eks_orchestrator.provider.base import (
    ProviderAdapter,
    ProviderRequest,
    make_record,
    select_version,
)
from eks_orchestrator.state.models import ResourceRecord

logger = logging.getLogger(__name__)

#: Versions offered when a test does not configure any.
DEFAULT_ADDON_VERSIONS: Dict[str, List[str]] = {
    "coredns": ["v1.9.3-eksbuild.2", "v1.9.3-eksbuild.3"],
    "kube-proxy": ["v1.25.6-eksbuild.1", "v1.25.11-eksbuild.2"],
    "vpc-cni": ["v1.12.6-eksbuild.2", "v1.13.4-eksbuild.1"],
}

STATUS_ACTIVE = "ACTIVE"
STATUS_DELETED = "DELETED"


@dataclass
class _Fault:
    """One scheduled failure."""

    error: Type[ProviderError]
    resource_id: Optional[str] = None
    call_number: Optional[int] = None
    remaining: int = 1
    after_effect: bool = False


@dataclass
class ProviderCall:
    """One delivered mutating call."""

    number: int
    method: str
    resource_id: str
    token: str
    started_at: float
    finished_at: float = 0.0


class InMemoryProvider(ProviderAdapter):
    """Dictionary-backed control plane with fault injection."""

    name = "memory"

    def __init__(
        self,
        *,
        addon_versions: Optional[Dict[str, List[str]]] = None,
        duplicate_delivery: bool = False,
        latency: float = 0.0,
    ) -> None:
        self.addon_versions = dict(addon_versions or DEFAULT_ADDON_VERSIONS)
        self.duplicate_delivery = duplicate_delivery
        self.latency = latency
        self.resources: Dict[str, ResourceRecord] = {}
        self.calls: List[ProviderCall] = []
        self.describes: List[str] = []
        self.effects: Dict[str, int] = {}
        self.max_in_flight = 0
        self._cluster_name: Optional[str] = None
        self._tokens: Dict[str, ResourceRecord] = {}
        self._faults: List[_Fault] = []
        self._in_flight = 0
        self._lock = threading.RLock()

    # -- fault injection --------------------------------------------------

    def fail(
        self,
        resource_id: str,
        error: Type[ProviderError] = ProviderTransient,
        *,
        times: int = 1,
        after_effect: bool = False,
    ) -> None:
        """Fail the next *times* mutating calls that target *resource_id*."""
        self._faults.append(
            _Fault(error=error, resource_id=resource_id, remaining=times, after_effect=after_effect),
        )

    def fail_on_call(
        self,
        number: int,
        error: Type[ProviderError] = ProviderTransient,
        *,
        after_effect: bool = False,
    ) -> None:
        """Fail the *number*-th mutating call (1-based) of this provider."""
        self._faults.append(_Fault(error=error, call_number=number, after_effect=after_effect))

    def tamper(self, resource_id: str, **observed: Any) -> None:
        """Change observed attributes of a live resource out of band."""
        with self._lock:
            live = self.resources[resource_id]
            self.resources[resource_id] = live.model_copy(
                update={"observed": {**live.observed, **observed}},
            )

    def set_status(self, resource_id: str, status: str) -> None:
        with self._lock:
            live = self.resources[resource_id]
            self.resources[resource_id] = live.model_copy(update={"status": status})

    def forget(self, resource_id: str) -> None:
        """Delete a live resource out of band."""
        with self._lock:
            self.resources.pop(resource_id, None)

    def seed(self, cluster_name: str, records: Dict[str, ResourceRecord]) -> None:
        """Make recorded resources live, as left by an earlier process.

        Only the observed state is restored; calls, tokens and faults
        start empty.
        """
        with self._lock:
            for rid, record in records.items():
                self.resources[rid] = record.model_copy(deep=True)
            if CLUSTER_RESOURCE_ID in records:
                self._cluster_name = cluster_name
        logger.debug("Seeded %d resource(s) for %s", len(records), cluster_name)

    def calls_for(self, resource_id: str) -> List[ProviderCall]:
        return [c for c in self.calls if c.resource_id == resource_id]

    # -- reads ------------------------------------------------------------

    def _describe(self, cluster_name: str, resource_id: str) -> Optional[ResourceRecord]:
        with self._lock:
            self.describes.append(resource_id)
            if self._cluster_name != cluster_name:
                return None
            live = self.resources.get(resource_id)
            return live.model_copy(deep=True) if live else None

    def describe_cluster(self, cluster_name: str) -> Optional[ResourceRecord]:
        return self._describe(cluster_name, CLUSTER_RESOURCE_ID)

    def describe_node_group(self, cluster_name: str, node_group_id: str) -> Optional[ResourceRecord]:
        return self._describe(cluster_name, f"nodegroup/{node_group_id}")

    def describe_add_on(self, cluster_name: str, name: str) -> Optional[ResourceRecord]:
        return self._describe(cluster_name, f"addon/{name}")

    def describe_team(self, cluster_name: str, team_name: str) -> Optional[ResourceRecord]:
        return self._describe(cluster_name, f"team/{team_name}")

    # -- call plumbing ----------------------------------------------------

    def _take_fault(self, number: int, resource_id: str) -> Optional[_Fault]:
        for fault in self._faults:
            if fault.remaining <= 0:
                continue
            if fault.call_number is not None and fault.call_number != number:
                continue
            if fault.resource_id is not None and fault.resource_id != resource_id:
                continue
            fault.remaining -= 1
            return fault
        return None

    def _mutate(
        self,
        method: str,
        resource_id: str,
        request: ProviderRequest,
        effect: Callable[[], ResourceRecord],
    ) -> ResourceRecord:
        with self._lock:
            number = len(self.calls) + 1
            call = ProviderCall(
                number=number,
                method=method,
                resource_id=resource_id,
                token=request.token,
                started_at=time.monotonic(),
            )
            self.calls.append(call)
            fault = self._take_fault(number, resource_id)
            self._in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self._in_flight)

        try:
            if self.latency:
                request.cancel.wait(self.latency)

            if fault is not None and not fault.after_effect:
                raise fault.error(
                    f"injected {fault.error.__name__} on call {number} ({method})",
                    resource_id=resource_id,
                )

            result = self._apply_once(request.token, effect)
            if self.duplicate_delivery:
                result = self._apply_once(request.token, effect)

            if fault is not None:
                raise fault.error(
                    f"injected {fault.error.__name__} after effect on call {number} ({method})",
                    resource_id=resource_id,
                )
            return result.model_copy(deep=True)
        finally:
            with self._lock:
                self._in_flight -= 1
                call.finished_at = time.monotonic()

    def _apply_once(self, token: str, effect: Callable[[], ResourceRecord]) -> ResourceRecord:
        with self._lock:
            cached = self._tokens.get(token)
            if cached is not None:
                logger.debug("Token %s already applied; returning cached result", token)
                return cached
            result = effect()
            self._tokens[token] = result
            self.effects[token] = self.effects.get(token, 0) + 1
            return result

    def _store(self, resource_id: str, observed: Dict[str, Any], *, provider_id: str) -> ResourceRecord:
        record = make_record(
            resource_id, provider_id=provider_id, status=STATUS_ACTIVE, observed=observed,
        )
        self.resources[resource_id] = record
        return record

    def _require_cluster(self, cluster_name: str, resource_id: str) -> None:
        if self._cluster_name != cluster_name or CLUSTER_RESOURCE_ID not in self.resources:
            raise ProviderPermanent(
                f"cluster '{cluster_name}' does not exist", resource_id=resource_id,
            )

    def _require(self, resource_id: str) -> ResourceRecord:
        live = self.resources.get(resource_id)
        if live is None:
            raise ProviderPermanent("resource not found", resource_id=resource_id)
        return live

    def _delete(self, resource_id: str) -> ResourceRecord:
        live = self._require(resource_id)
        del self.resources[resource_id]
        return live.model_copy(update={"status": STATUS_DELETED})

    # -- cluster ----------------------------------------------------------

    def create_cluster(self, spec: ClusterSpec, request: ProviderRequest) -> ResourceRecord:
        def effect() -> ResourceRecord:
            if CLUSTER_RESOURCE_ID in self.resources:
                raise ProviderPermanent(
                    f"cluster '{spec.name}' already exists", resource_id=CLUSTER_RESOURCE_ID,
                )
            self._cluster_name = spec.name
            return self._store(
                CLUSTER_RESOURCE_ID,
                spec.attributes(),
                provider_id=f"arn:aws:eks:{spec.region}:{spec.account_id}:cluster/{spec.name}",
            )

        return self._mutate("create_cluster", CLUSTER_RESOURCE_ID, request, effect)

    def update_cluster(self, spec: ClusterSpec, request: ProviderRequest) -> ResourceRecord:
        def effect() -> ResourceRecord:
            self._require_cluster(spec.name, CLUSTER_RESOURCE_ID)
            live = self.resources[CLUSTER_RESOURCE_ID]
            return self._store(CLUSTER_RESOURCE_ID, spec.attributes(), provider_id=live.provider_id)

        return self._mutate("update_cluster", CLUSTER_RESOURCE_ID, request, effect)

    def delete_cluster(self, cluster_name: str, request: ProviderRequest) -> ResourceRecord:
        def effect() -> ResourceRecord:
            self._require_cluster(cluster_name, CLUSTER_RESOURCE_ID)
            children = sorted(r for r in self.resources if r.startswith("nodegroup/"))
            if children:
                raise ProviderPermanent(
                    "cluster still has node groups: " + ", ".join(children),
                    resource_id=CLUSTER_RESOURCE_ID,
                    code="ResourceInUseException",
                )
            record = self._delete(CLUSTER_RESOURCE_ID)
            self.resources.clear()
            self._cluster_name = None
            return record

        return self._mutate("delete_cluster", CLUSTER_RESOURCE_ID, request, effect)

    # -- node groups ------------------------------------------------------

    def create_node_group(
        self, cluster_name: str, node_group: NodeGroupSpec, request: ProviderRequest,
    ) -> ResourceRecord:
        rid = node_group.resource_id

        def effect() -> ResourceRecord:
            self._require_cluster(cluster_name, rid)
            if rid in self.resources:
                raise ProviderPermanent("node group already exists", resource_id=rid)
            return self._store(rid, node_group.attributes(), provider_id=f"{cluster_name}/{node_group.id}")

        return self._mutate("create_node_group", rid, request, effect)

    def update_node_group(
        self, cluster_name: str, node_group: NodeGroupSpec, request: ProviderRequest,
    ) -> ResourceRecord:
        rid = node_group.resource_id

        def effect() -> ResourceRecord:
            self._require_cluster(cluster_name, rid)
            live = self._require(rid)
            return self._store(rid, node_group.attributes(), provider_id=live.provider_id)

        return self._mutate("update_node_group", rid, request, effect)

    def delete_node_group(
        self, cluster_name: str, node_group_id: str, request: ProviderRequest,
    ) -> ResourceRecord:
        rid = f"nodegroup/{node_group_id}"
        return self._mutate("delete_node_group", rid, request, lambda: self._delete(rid))

    # -- add-ons ----------------------------------------------------------

    def install_add_on(
        self, cluster_name: str, add_on: AddOnSpec, request: ProviderRequest,
    ) -> ResourceRecord:
        rid = add_on.resource_id

        def effect() -> ResourceRecord:
            self._require_cluster(cluster_name, rid)
            offered = self.addon_versions.get(add_on.name, ["v1.0.0"])
            version = select_version(add_on.version, offered)
            if version is None:
                raise ProviderPermanent(
                    f"no version of {add_on.name} matches '{add_on.version}'", resource_id=rid,
                )
            observed = {"version": version, "source": add_on.source.value}
            return self._store(rid, observed, provider_id=f"{cluster_name}/{add_on.name}")

        return self._mutate("install_add_on", rid, request, effect)

    def uninstall_add_on(
        self, cluster_name: str, name: str, request: ProviderRequest,
    ) -> ResourceRecord:
        rid = f"addon/{name}"
        return self._mutate("uninstall_add_on", rid, request, lambda: self._delete(rid))

    # -- teams ------------------------------------------------------------

    def bind_team_access(
        self, cluster_name: str, team: TeamSpec, request: ProviderRequest,
    ) -> ResourceRecord:
        rid = team.resource_id

        def effect() -> ResourceRecord:
            self._require_cluster(cluster_name, rid)
            return self._store(rid, team.attributes(), provider_id=f"{cluster_name}/{team.name}")

        return self._mutate("bind_team_access", rid, request, effect)

    def unbind_team_access(
        self, cluster_name: str, team_name: str, request: ProviderRequest,
    ) -> ResourceRecord:
        rid = f"team/{team_name}"
        return self._mutate("unbind_team_access", rid, request, lambda: self._delete(rid))

