"""AWS service interactions (STS, EC2 VPC discovery, CloudFormation)."""

from eks_orchestrator.aws.cloudformation import (
    DEFAULT_TEMPLATE_URL,
    NetworkStackOutputs,
    delete_network_stack,
    derive_stack_name,
    ensure_network_stack,
)
from eks_orchestrator.aws.context import (
    AWSContext,
    resolve_profile,
    resolve_region,
    write_env_file,
)
from eks_orchestrator.aws.vpc import (
    EksReadiness,
    SubnetInfo,
    VpcDetails,
    VpcInfo,
    check_vpc_for_eks,
    describe_vpc,
    list_vpc_subnets,
    list_vpcs,
    subnets_for_placement,
)

__all__ = [
    "AWSContext",
    "DEFAULT_TEMPLATE_URL",
    "EksReadiness",
    "NetworkStackOutputs",
    "SubnetInfo",
    "VpcDetails",
    "VpcInfo",
    "check_vpc_for_eks",
    "delete_network_stack",
    "derive_stack_name",
    "describe_vpc",
    "ensure_network_stack",
    "list_vpc_subnets",
    "list_vpcs",
    "resolve_profile",
    "resolve_region",
    "subnets_for_placement",
    "write_env_file",
]
