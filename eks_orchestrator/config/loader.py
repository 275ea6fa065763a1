"""Cluster spec file loading and write-back.

A spec file has one required and two optional top-level sections::

    cluster:            # -> ClusterSpec
      name: CdkProjectsStack-eks-cluster
      account_id: "123456789012"
      region: us-east-1
      network: {mode: existing-vpc-id, vpc_id: vpc-00e9c2080fc3a870f}
      node_groups: [...]
      add_ons: [...]
      teams: [...]
    provider:           # -> ProviderSettings
      backend: eks
      cluster_role_arn: arn:aws:iam::123456789012:role/eks-cluster
      node_role_arn: arn:aws:iam::123456789012:role/eks-node
    orchestrator:       # -> OrchestratorSettings
      max_workers: 4
      max_attempts: 5

This module provides:

- :func:`load_spec_file`: parse the whole file into a :class:`SpecFile`
- :func:`load_cluster_spec`: shortcut returning only the :class:`ClusterSpec`
- :func:`default_blueprint_spec`: the stock blueprint (one node group,
  seven add-ons, no teams)
- :func:`write_spec_file`: serialize back to YAML
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError

from eks_orchestrator.config.models import (
    AddOnSource,
    AddOnSpec,
    ClusterSpec,
    NetworkMode,
    NetworkSpec,
    NodeGroupSpec,
)
from eks_orchestrator.errors import InvalidSpec

#: Stack id the original CDK app deployed under.
DEFAULT_STACK_ID = "CdkProjectsStack"

DEFAULT_SPEC_PATH = "cluster.yaml"


# ---------------------------------------------------------------------------
# Settings models
# ---------------------------------------------------------------------------


class ProviderSettings(BaseModel):
    """Backend selection and backend-only parameters."""

    backend: str = "eks"
    profile: Optional[str] = None
    cluster_role_arn: str = ""
    node_role_arn: str = ""
    kubeconfig_path: str = ""
    helm_binary: str = "helm"


class OrchestratorSettings(BaseModel):
    """Executor tuning."""

    max_workers: int = Field(default=4, ge=1)
    max_attempts: int = Field(default=5, ge=1)
    base_delay: float = Field(default=2.0, ge=0)
    max_delay: float = Field(default=60.0, ge=0)
    state_dir: Optional[str] = None


class SpecFile(BaseModel):
    """Root model for a spec file."""

    cluster: ClusterSpec
    provider: ProviderSettings = Field(default_factory=ProviderSettings)
    orchestrator: OrchestratorSettings = Field(default_factory=OrchestratorSettings)


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------


def load_spec_file(path: str | Path) -> SpecFile:
    """Load and validate a spec YAML file.

    ``account_id`` and ``region`` fall back to ``CDK_DEFAULT_ACCOUNT`` /
    ``CDK_DEFAULT_REGION`` when the file leaves them out.

    Raises:
        InvalidSpec: file missing, malformed YAML, not a mapping, or failing
            validation.
    """
    path = Path(path)
    if not path.is_file():
        raise InvalidSpec(f"Spec file not found: {path}")
    try:
        with open(path, encoding="utf-8") as fh:
            raw = yaml.safe_load(fh) or {}
    except yaml.YAMLError as exc:
        raise InvalidSpec(f"{path}: not valid YAML: {exc}") from exc
    if not isinstance(raw, dict) or not isinstance(raw.get("cluster"), dict):
        raise InvalidSpec(f"{path}: expected a mapping with a 'cluster' section")

    cluster_raw: Dict[str, Any] = dict(raw["cluster"])
    if not cluster_raw.get("account_id"):
        cluster_raw["account_id"] = os.environ.get("CDK_DEFAULT_ACCOUNT", "")
    if not cluster_raw.get("region"):
        cluster_raw["region"] = os.environ.get("CDK_DEFAULT_REGION", "")
    # YAML turns unquoted account ids into ints.
    cluster_raw["account_id"] = str(cluster_raw["account_id"])

    cluster = ClusterSpec.parse(cluster_raw)
    try:
        return SpecFile(
            cluster=cluster,
            provider=ProviderSettings.model_validate(raw.get("provider") or {}),
            orchestrator=OrchestratorSettings.model_validate(raw.get("orchestrator") or {}),
        )
    except ValidationError as exc:
        raise InvalidSpec(f"{path}: {exc}") from exc


def load_cluster_spec(path: str | Path) -> ClusterSpec:
    """Return only the :class:`ClusterSpec` from *path*."""
    return load_spec_file(path).cluster


# ---------------------------------------------------------------------------
# Defaults
# ---------------------------------------------------------------------------


def default_blueprint_spec(
    account_id: str,
    region: str,
    *,
    vpc_id: Optional[str] = None,
    stack_id: str = DEFAULT_STACK_ID,
) -> ClusterSpec:
    """Return the stock blueprint.

    Private API endpoint, Kubernetes 1.25, one ``mng1`` node group
    (t3.medium, 1/5/2, private subnets), the three core add-ons plus
    metrics-server, cluster-autoscaler, the load-balancer controller
    (after the VPC CNI) and container insights.  A new VPC is requested
    unless *vpc_id* is given.
    """
    network = (
        NetworkSpec(mode=NetworkMode.EXISTING_VPC_ID, vpc_id=vpc_id)
        if vpc_id
        else NetworkSpec(mode=NetworkMode.CREATE_NEW)
    )
    return ClusterSpec(
        name=f"{stack_id}-eks-cluster",
        account_id=account_id,
        region=region,
        network=network,
        node_groups=[
            NodeGroupSpec(
                id="mng1",
                instance_type="t3.medium",
                min_size=1,
                max_size=5,
                desired_size=2,
            ),
        ],
        add_ons=[
            AddOnSpec(name="coredns"),
            AddOnSpec(name="kube-proxy"),
            AddOnSpec(name="vpc-cni"),
            AddOnSpec(name="metrics-server"),
            AddOnSpec(
                name="cluster-autoscaler",
                source=AddOnSource.HELM,
                chart="cluster-autoscaler",
                repository="https://kubernetes.github.io/autoscaler",
                values={"autoDiscovery": {"clusterName": f"{stack_id}-eks-cluster"}},
            ),
            AddOnSpec(
                name="aws-load-balancer-controller",
                depends_on=["vpc-cni"],
                source=AddOnSource.HELM,
                chart="aws-load-balancer-controller",
                repository="https://aws.github.io/eks-charts",
                values={"clusterName": f"{stack_id}-eks-cluster"},
            ),
            AddOnSpec(name="amazon-cloudwatch-observability"),
        ],
    )


# ---------------------------------------------------------------------------
# Write-back
# ---------------------------------------------------------------------------


def write_spec_file(
    spec: ClusterSpec,
    path: str | Path,
    *,
    provider: Optional[ProviderSettings] = None,
    orchestrator: Optional[OrchestratorSettings] = None,
) -> Path:
    """Serialize *spec* (and optional settings) to YAML at *path*."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    data: Dict[str, Any] = {"cluster": spec.model_dump(mode="json")}
    data["provider"] = (provider or ProviderSettings()).model_dump(mode="json")
    data["orchestrator"] = (orchestrator or OrchestratorSettings()).model_dump(
        mode="json", exclude_none=True,
    )

    with open(path, "w", encoding="utf-8") as fh:
        yaml.dump(data, fh, default_flow_style=False, sort_keys=False)
    return path
