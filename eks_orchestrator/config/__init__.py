"""Cluster spec models, loading, and defaults."""

from eks_orchestrator.config.loader import (
    DEFAULT_SPEC_PATH,
    DEFAULT_STACK_ID,
    OrchestratorSettings,
    ProviderSettings,
    SpecFile,
    default_blueprint_spec,
    load_cluster_spec,
    load_spec_file,
    write_spec_file,
)
from eks_orchestrator.config.models import (
    CLUSTER_RESOURCE_ID,
    AccessLevel,
    AddOnSource,
    AddOnSpec,
    ClusterSpec,
    EndpointAccess,
    NetworkMode,
    NetworkSpec,
    NodeGroupSpec,
    SubnetPlacement,
    TeamMember,
    TeamSpec,
)

__all__ = [
    "AccessLevel",
    "AddOnSource",
    "AddOnSpec",
    "CLUSTER_RESOURCE_ID",
    "ClusterSpec",
    "DEFAULT_SPEC_PATH",
    "DEFAULT_STACK_ID",
    "EndpointAccess",
    "NetworkMode",
    "NetworkSpec",
    "NodeGroupSpec",
    "OrchestratorSettings",
    "ProviderSettings",
    "SpecFile",
    "SubnetPlacement",
    "TeamMember",
    "TeamSpec",
    "default_blueprint_spec",
    "load_cluster_spec",
    "load_spec_file",
    "write_spec_file",
]
