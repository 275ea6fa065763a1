"""Pydantic models for the desired cluster state.

Defines the data structures for:
- The cluster itself (account, region, network placement, version)
- Managed node groups and their sizing policy
- Add-ons and their declared prerequisites
- Teams and their RBAC bindings

Every model is frozen: once a plan has been computed from a
:class:`ClusterSpec` it cannot change underneath it.  Cross-field
validation raises :class:`~eks_orchestrator.errors.InvalidSpec` directly;
field-level type errors surface as pydantic ``ValidationError`` and are
converted by :meth:`ClusterSpec.parse`.
"""

from __future__ import annotations

import hashlib
import json
import re
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from eks_orchestrator.errors import InvalidSpec

#: Resource id of the cluster itself; every other resource hangs off it.
CLUSTER_RESOURCE_ID = "cluster"

_ACCOUNT_RE = re.compile(r"^\d{12}$")
_NAME_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_-]*$")


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class NetworkMode(str, Enum):
    """Where the cluster's VPC comes from."""

    EXISTING_VPC_ID = "existing-vpc-id"
    CREATE_NEW = "create-new"


class SubnetPlacement(str, Enum):
    PRIVATE = "private"
    PUBLIC = "public"


class EndpointAccess(str, Enum):
    """Kubernetes API endpoint exposure."""

    PRIVATE = "private"
    PUBLIC = "public"
    PUBLIC_AND_PRIVATE = "public-and-private"


class AccessLevel(str, Enum):
    ADMIN = "admin"
    EDIT = "edit"
    VIEW = "view"


class AddOnSource(str, Enum):
    """How an add-on is delivered to the cluster."""

    MANAGED = "managed"
    HELM = "helm"


# ---------------------------------------------------------------------------
# Network
# ---------------------------------------------------------------------------


class NetworkSpec(BaseModel):
    """Network placement: reuse a VPC by id, or have one created."""

    model_config = ConfigDict(frozen=True)

    mode: NetworkMode = NetworkMode.CREATE_NEW
    vpc_id: Optional[str] = None

    @model_validator(mode="after")
    def _check_vpc_id(self) -> "NetworkSpec":
        if self.mode == NetworkMode.EXISTING_VPC_ID and not self.vpc_id:
            raise InvalidSpec(
                "network.vpc_id is required when mode is 'existing-vpc-id'",
                field="network.vpc_id",
            )
        if self.mode == NetworkMode.CREATE_NEW and self.vpc_id:
            raise InvalidSpec(
                "network.vpc_id must be empty when mode is 'create-new'",
                field="network.vpc_id",
            )
        return self


# ---------------------------------------------------------------------------
# Node groups
# ---------------------------------------------------------------------------


class NodeGroupSpec(BaseModel):
    """A managed node group with a uniform sizing policy.

    Attributes:
        id: Unique within the cluster, used as the node group name.
        instance_type: EC2 instance type, e.g. ``t3.medium``.
        min_size / max_size / desired_size: Must satisfy
            ``min_size <= desired_size <= max_size``.
        subnet_placement: ``private`` or ``public`` subnets.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    instance_type: str = "t3.medium"
    min_size: int = 1
    max_size: int = 1
    desired_size: int = 1
    subnet_placement: SubnetPlacement = SubnetPlacement.PRIVATE

    @model_validator(mode="after")
    def _check_sizes(self) -> "NodeGroupSpec":
        if not _NAME_RE.match(self.id):
            raise InvalidSpec(f"Invalid node group id '{self.id}'", field="node_groups.id")
        if self.min_size < 0:
            raise InvalidSpec(
                f"Node group '{self.id}': min_size must be >= 0 (got {self.min_size})",
                field="node_groups.min_size",
            )
        if self.max_size < 1:
            raise InvalidSpec(
                f"Node group '{self.id}': max_size must be >= 1 (got {self.max_size})",
                field="node_groups.max_size",
            )
        if not (self.min_size <= self.desired_size <= self.max_size):
            raise InvalidSpec(
                f"Node group '{self.id}': expected min <= desired <= max, got "
                f"min={self.min_size} desired={self.desired_size} max={self.max_size}",
                field="node_groups.desired_size",
            )
        return self

    @property
    def resource_id(self) -> str:
        return f"nodegroup/{self.id}"

    def attributes(self) -> Dict[str, Any]:
        return {
            "instance_type": self.instance_type,
            "min_size": self.min_size,
            "max_size": self.max_size,
            "desired_size": self.desired_size,
            "subnet_placement": self.subnet_placement.value,
        }


# ---------------------------------------------------------------------------
# Add-ons
# ---------------------------------------------------------------------------


class AddOnSpec(BaseModel):
    """An optional component installed into the cluster.

    *version* is ``latest``, an exact version string, or a glob such as
    ``v1.10.*``.  *depends_on* names other add-ons in the same spec that
    must be installed first.  Helm add-ons additionally carry their chart
    coordinates.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    version: str = "latest"
    depends_on: List[str] = Field(default_factory=list)
    source: AddOnSource = AddOnSource.MANAGED
    chart: str = ""
    repository: str = ""
    namespace: str = "kube-system"
    values: Dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _check_addon(self) -> "AddOnSpec":
        if not _NAME_RE.match(self.name):
            raise InvalidSpec(f"Invalid add-on name '{self.name}'", field="add_ons.name")
        if len(set(self.depends_on)) != len(self.depends_on):
            raise InvalidSpec(
                f"Add-on '{self.name}' lists a prerequisite more than once",
                field="add_ons.depends_on",
            )
        if self.source == AddOnSource.HELM and not (self.chart and self.repository):
            raise InvalidSpec(
                f"Helm add-on '{self.name}' needs both chart and repository",
                field="add_ons.chart",
            )
        return self

    @property
    def resource_id(self) -> str:
        return f"addon/{self.name}"

    def attributes(self) -> Dict[str, Any]:
        attrs: Dict[str, Any] = {
            "version": self.version,
            "source": self.source.value,
        }
        if self.source == AddOnSource.HELM:
            attrs.update(
                chart=self.chart,
                repository=self.repository,
                namespace=self.namespace,
                values=self.values,
            )
        return attrs


# ---------------------------------------------------------------------------
# Teams
# ---------------------------------------------------------------------------


class TeamMember(BaseModel):
    """One (principal, access level) binding."""

    model_config = ConfigDict(frozen=True)

    principal: str
    access_level: AccessLevel = AccessLevel.VIEW


class TeamSpec(BaseModel):
    """A team and its RBAC bindings.

    A team without *namespace* is a platform team: its bindings are
    cluster-scoped.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    namespace: Optional[str] = None
    members: List[TeamMember] = Field(default_factory=list)

    @model_validator(mode="after")
    def _check_team(self) -> "TeamSpec":
        if not _NAME_RE.match(self.name):
            raise InvalidSpec(f"Invalid team name '{self.name}'", field="teams.name")
        principals = [m.principal for m in self.members]
        if len(set(principals)) != len(principals):
            raise InvalidSpec(
                f"Team '{self.name}' binds the same principal more than once",
                field="teams.members",
            )
        return self

    @property
    def resource_id(self) -> str:
        return f"team/{self.name}"

    def attributes(self) -> Dict[str, Any]:
        return {
            "namespace": self.namespace,
            "members": sorted(
                ([m.principal, m.access_level.value] for m in self.members),
            ),
        }


# ---------------------------------------------------------------------------
# ClusterSpec
# ---------------------------------------------------------------------------


class ClusterSpec(BaseModel):
    """Desired state of one cluster.

    Structure::

        name: CdkProjectsStack-eks-cluster
        account_id: "123456789012"
        region: us-east-1
        network: {mode: existing-vpc-id, vpc_id: vpc-0abc}
        node_groups: [...]
        add_ons: [...]
        teams: [...]
    """

    model_config = ConfigDict(frozen=True)

    name: str
    account_id: str
    region: str
    network: NetworkSpec = Field(default_factory=NetworkSpec)
    kubernetes_version: str = "1.25"
    endpoint_access: EndpointAccess = EndpointAccess.PRIVATE
    tags: Dict[str, str] = Field(default_factory=lambda: {"Name": "Maas"})
    node_groups: List[NodeGroupSpec] = Field(default_factory=list)
    add_ons: List[AddOnSpec] = Field(default_factory=list)
    teams: List[TeamSpec] = Field(default_factory=list)

    @model_validator(mode="after")
    def _check_cluster(self) -> "ClusterSpec":
        if not _NAME_RE.match(self.name):
            raise InvalidSpec(f"Invalid cluster name '{self.name}'", field="name")
        if not _ACCOUNT_RE.match(self.account_id):
            raise InvalidSpec(
                f"account_id must be 12 digits (got '{self.account_id}')",
                field="account_id",
            )
        if not self.region:
            raise InvalidSpec("region must not be empty", field="region")

        _reject_duplicates([ng.id for ng in self.node_groups], "node group id", "node_groups")
        _reject_duplicates([t.name for t in self.teams], "team name", "teams")
        _reject_duplicates([a.name for a in self.add_ons], "add-on name", "add_ons")

        known = {a.name for a in self.add_ons}
        for addon in self.add_ons:
            missing = [d for d in addon.depends_on if d not in known]
            if missing:
                raise InvalidSpec(
                    f"Add-on '{addon.name}' depends on undeclared add-on(s): "
                    + ", ".join(missing),
                    field="add_ons.depends_on",
                )
        return self

    # -- parsing ----------------------------------------------------------

    @classmethod
    def parse(cls, data: Dict[str, Any]) -> "ClusterSpec":
        """Validate *data*, converting pydantic errors to :class:`InvalidSpec`."""
        try:
            return cls.model_validate(data)
        except ValidationError as exc:
            first = exc.errors()[0] if exc.errors() else {}
            loc = ".".join(str(p) for p in first.get("loc", ()))
            raise InvalidSpec(f"Invalid cluster spec: {exc}", field=loc) from exc

    # -- lookups ----------------------------------------------------------

    @property
    def resource_id(self) -> str:
        return CLUSTER_RESOURCE_ID

    def add_on(self, name: str) -> Optional[AddOnSpec]:
        return next((a for a in self.add_ons if a.name == name), None)

    def attributes(self) -> Dict[str, Any]:
        """Cluster-level attributes (children excluded)."""
        return {
            "name": self.name,
            "account_id": self.account_id,
            "region": self.region,
            "network_mode": self.network.mode.value,
            "vpc_id": self.network.vpc_id,
            "kubernetes_version": self.kubernetes_version,
            "endpoint_access": self.endpoint_access.value,
            "tags": dict(sorted(self.tags.items())),
        }

    # -- hashing ----------------------------------------------------------

    def canonical(self) -> Dict[str, Any]:
        """Order-normalized dump: add-ons and teams are sets, node groups are not."""
        data = self.model_dump(mode="json")
        data["add_ons"] = sorted(data["add_ons"], key=lambda a: a["name"])
        data["teams"] = sorted(data["teams"], key=lambda t: t["name"])
        for team in data["teams"]:
            team["members"] = sorted(team["members"], key=lambda m: m["principal"])
        return data

    def spec_hash(self) -> str:
        """Deterministic sha256 of the canonical content."""
        payload = json.dumps(self.canonical(), sort_keys=True, separators=(",", ":"))
        return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def _reject_duplicates(values: List[str], label: str, field: str) -> None:
    seen = set()
    for value in values:
        if value in seen:
            raise InvalidSpec(f"Duplicate {label} '{value}'", field=field)
        seen.add(value)
