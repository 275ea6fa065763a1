"""Provider adapter contract.

Every backend (the in-memory fake used by tests, the EKS backend used in
real runs) implements :class:`ProviderAdapter`.  Mutating calls receive a
:class:`ProviderRequest` whose ``token`` is derived from the change step
id; a backend must produce at most one logical effect per token even if
the call is delivered more than once.

Calls return a :class:`ResourceRecord` on success and raise
:class:`ProviderTransient` (retryable) or :class:`ProviderPermanent`
otherwise.
"""

from __future__ import annotations

import fnmatch
import re
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from eks_orchestrator.config.models import (
    AddOnSpec,
    ClusterSpec,
    NodeGroupSpec,
    TeamSpec,
)
from eks_orchestrator.state.models import ResourceKind, ResourceRecord, kind_of


# ---------------------------------------------------------------------------
# Cancellation
# ---------------------------------------------------------------------------


class CancelToken:
    """Run-level cancellation flag shared by the executor and adapters."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, seconds: float) -> bool:
        """Sleep up to *seconds*; return True early if cancelled."""
        return self._event.wait(seconds)


@dataclass
class ProviderRequest:
    """Per-call envelope: idempotency token plus run cancellation."""

    token: str
    cancel: CancelToken = field(default_factory=CancelToken)


# ---------------------------------------------------------------------------
# Adapter contract
# ---------------------------------------------------------------------------


class ProviderAdapter(ABC):
    """Capability set the orchestrator drives."""

    name: str = "abstract"

    # -- reads ------------------------------------------------------------

    @abstractmethod
    def describe_cluster(self, cluster_name: str) -> Optional[ResourceRecord]:
        """Return the live cluster record, or None if it does not exist."""

    @abstractmethod
    def describe_node_group(self, cluster_name: str, node_group_id: str) -> Optional[ResourceRecord]:
        ...

    @abstractmethod
    def describe_add_on(self, cluster_name: str, name: str) -> Optional[ResourceRecord]:
        ...

    @abstractmethod
    def describe_team(self, cluster_name: str, team_name: str) -> Optional[ResourceRecord]:
        ...

    def describe_resource(
        self, cluster_name: str, record: ResourceRecord,
    ) -> Optional[ResourceRecord]:
        """Describe whatever *record* points at (used by drift detection)."""
        if record.kind == ResourceKind.CLUSTER:
            return self.describe_cluster(cluster_name)
        if record.kind == ResourceKind.NODEGROUP:
            return self.describe_node_group(cluster_name, record.name)
        if record.kind == ResourceKind.ADDON:
            return self.describe_add_on(cluster_name, record.name)
        return self.describe_team(cluster_name, record.name)

    # -- cluster ----------------------------------------------------------

    @abstractmethod
    def create_cluster(self, spec: ClusterSpec, request: ProviderRequest) -> ResourceRecord:
        ...

    @abstractmethod
    def update_cluster(self, spec: ClusterSpec, request: ProviderRequest) -> ResourceRecord:
        ...

    @abstractmethod
    def delete_cluster(self, cluster_name: str, request: ProviderRequest) -> ResourceRecord:
        ...

    # -- node groups ------------------------------------------------------

    @abstractmethod
    def create_node_group(
        self, cluster_name: str, node_group: NodeGroupSpec, request: ProviderRequest,
    ) -> ResourceRecord:
        ...

    @abstractmethod
    def update_node_group(
        self, cluster_name: str, node_group: NodeGroupSpec, request: ProviderRequest,
    ) -> ResourceRecord:
        ...

    @abstractmethod
    def delete_node_group(
        self, cluster_name: str, node_group_id: str, request: ProviderRequest,
    ) -> ResourceRecord:
        ...

    # -- add-ons ----------------------------------------------------------

    @abstractmethod
    def install_add_on(
        self, cluster_name: str, add_on: AddOnSpec, request: ProviderRequest,
    ) -> ResourceRecord:
        """Install or upgrade *add_on* to a version matching its constraint."""

    @abstractmethod
    def uninstall_add_on(
        self, cluster_name: str, name: str, request: ProviderRequest,
    ) -> ResourceRecord:
        ...

    # -- teams ------------------------------------------------------------

    @abstractmethod
    def bind_team_access(
        self, cluster_name: str, team: TeamSpec, request: ProviderRequest,
    ) -> ResourceRecord:
        """Create or replace the team's principal bindings."""

    @abstractmethod
    def unbind_team_access(
        self, cluster_name: str, team_name: str, request: ProviderRequest,
    ) -> ResourceRecord:
        ...


def make_record(
    resource_id: str, *, provider_id: str, status: str, observed: Dict[str, Any],
) -> ResourceRecord:
    """Build a live record; the executor fills in the desired-side fields."""
    return ResourceRecord(
        resource_id=resource_id,
        kind=kind_of(resource_id),
        provider_id=provider_id,
        status=status,
        observed=observed,
    )


# ---------------------------------------------------------------------------
# Add-on version selection
# ---------------------------------------------------------------------------


def _version_key(version: str) -> List[Any]:
    """Natural sort key: ``v1.10.2-eksbuild.1`` sorts after ``v1.9.0``."""
    return [int(part) if part.isdigit() else part for part in re.split(r"(\d+)", version)]


def select_version(constraint: str, available: List[str]) -> Optional[str]:
    """Pick the highest version in *available* satisfying *constraint*.

    *constraint* is ``latest`` (or empty), an exact version, or a glob
    such as ``v1.10.*``.  Returns None when nothing matches.
    """
    if not available:
        return None
    ordered = sorted(available, key=_version_key)
    if not constraint or constraint == "latest":
        return ordered[-1]
    matching = [v for v in ordered if fnmatch.fnmatchcase(v, constraint)]
    return matching[-1] if matching else None
