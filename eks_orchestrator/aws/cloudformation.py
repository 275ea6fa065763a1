"""Network stack ensure for ``network.mode: create-new``.

The orchestrator does not design VPCs.  When a spec asks for a new one it
deploys AWS's published EKS sample VPC template (two public and two
private subnets over two AZs, NAT, IGW) as a CloudFormation stack and
hands the outputs to cluster creation.

Stack name derivation::

    STACK_NAME = <cluster name> + "-vpc"
    # e.g. CdkProjectsStack-eks-cluster → CdkProjectsStack-eks-cluster-vpc
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from botocore.exceptions import ClientError, WaiterError

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

DEFAULT_TEMPLATE_URL = (
    "https://s3.us-west-2.amazonaws.com/amazon-eks/cloudformation/"
    "2020-10-29/amazon-eks-vpc-private-subnets.yaml"
)

VPC_CIDR = "192.168.0.0/16"

#: Stack statuses that mean "done, no action needed".
COMPLETE_STATUSES = frozenset({
    "CREATE_COMPLETE",
    "UPDATE_COMPLETE",
    "UPDATE_ROLLBACK_COMPLETE",
})

#: Stack statuses that are actively in progress.
IN_PROGRESS_STATUSES = frozenset({
    "CREATE_IN_PROGRESS",
    "UPDATE_IN_PROGRESS",
    "UPDATE_COMPLETE_CLEANUP_IN_PROGRESS",
})


# ---------------------------------------------------------------------------
# Stack outputs dataclass
# ---------------------------------------------------------------------------


@dataclass
class NetworkStackOutputs:
    """Outputs of the sample VPC template."""

    stack_name: str = ""
    vpc_id: str = ""
    subnet_ids: List[str] = field(default_factory=list)
    security_group_ids: List[str] = field(default_factory=list)


def derive_stack_name(cluster_name: str) -> str:
    """``<cluster>-vpc``."""
    if not cluster_name:
        raise ValueError("cluster_name must not be empty")
    return f"{cluster_name}-vpc"


# ---------------------------------------------------------------------------
# describe / status helpers
# ---------------------------------------------------------------------------


def describe_stack_status(cfn_client: Any, stack_name: str) -> Optional[str]:
    """Return the StackStatus string, or None if the stack doesn't exist."""
    try:
        resp = cfn_client.describe_stacks(StackName=stack_name)
    except ClientError as exc:
        if "does not exist" in str(exc):
            return None
        raise
    stacks = resp.get("Stacks", [])
    if stacks:
        return stacks[0].get("StackStatus")
    return None


def _split(value: str) -> List[str]:
    return [part.strip() for part in value.split(",") if part.strip()]


def get_stack_outputs(cfn_client: Any, stack_name: str) -> NetworkStackOutputs:
    """Extract outputs from the network stack.

    Output keys (from the sample template)::

        VpcId          → vpc_id
        SubnetIds      → subnet_ids (comma-separated)
        SecurityGroups → security_group_ids (comma-separated)
    """
    resp = cfn_client.describe_stacks(StackName=stack_name)
    stacks = resp.get("Stacks", [])
    if not stacks:
        return NetworkStackOutputs(stack_name=stack_name)
    outputs: Dict[str, str] = {
        o["OutputKey"]: o["OutputValue"] for o in stacks[0].get("Outputs", [])
    }
    return NetworkStackOutputs(
        stack_name=stack_name,
        vpc_id=outputs.get("VpcId", ""),
        subnet_ids=_split(outputs.get("SubnetIds", "")),
        security_group_ids=_split(outputs.get("SecurityGroups", "")),
    )


# ---------------------------------------------------------------------------
# Core ensure logic
# ---------------------------------------------------------------------------


def ensure_network_stack(
    aws_ctx: Any,
    cluster_name: str,
    *,
    tags: Optional[Dict[str, str]] = None,
    template_url: str = DEFAULT_TEMPLATE_URL,
) -> NetworkStackOutputs:
    """Ensure the VPC stack for *cluster_name* exists and return its outputs.

    1. Already complete → return outputs.
    2. In progress → wait, then return outputs.
    3. Otherwise create it from *template_url* and wait.

    Raises:
        RuntimeError: If stack creation fails.
    """
    stack_name = derive_stack_name(cluster_name)
    cfn = aws_ctx.client("cloudformation")

    status = describe_stack_status(cfn, stack_name)
    if status in COMPLETE_STATUSES:
        logger.info("Stack %s already in %s; skipping creation.", stack_name, status)
        return get_stack_outputs(cfn, stack_name)

    if status in IN_PROGRESS_STATUSES:
        logger.info("Stack %s is %s; waiting for completion.", stack_name, status)
        cfn.get_waiter("stack_create_complete").wait(StackName=stack_name)
        return get_stack_outputs(cfn, stack_name)

    logger.info("Creating CFN stack %s ...", stack_name)
    cfn.create_stack(
        StackName=stack_name,
        TemplateURL=template_url,
        Parameters=[{"ParameterKey": "VpcBlock", "ParameterValue": VPC_CIDR}],
        Tags=[{"Key": k, "Value": v} for k, v in sorted((tags or {}).items())],
    )

    logger.info("Waiting for stack %s to complete ...", stack_name)
    try:
        cfn.get_waiter("stack_create_complete").wait(StackName=stack_name)
    except WaiterError as exc:
        final_status = describe_stack_status(cfn, stack_name)
        raise RuntimeError(
            f"CFN stack {stack_name} creation failed (status={final_status}): {exc}"
        ) from exc

    final_status = describe_stack_status(cfn, stack_name)
    if final_status != "CREATE_COMPLETE":
        raise RuntimeError(
            f"CFN stack {stack_name} ended in unexpected status: {final_status}"
        )

    logger.info("Stack %s creation succeeded.", stack_name)
    return get_stack_outputs(cfn, stack_name)


def delete_network_stack(aws_ctx: Any, cluster_name: str) -> bool:
    """Delete the VPC stack of *cluster_name*; return False if there was none."""
    stack_name = derive_stack_name(cluster_name)
    cfn = aws_ctx.client("cloudformation")
    if describe_stack_status(cfn, stack_name) is None:
        return False
    logger.info("Deleting CFN stack %s ...", stack_name)
    cfn.delete_stack(StackName=stack_name)
    try:
        cfn.get_waiter("stack_delete_complete").wait(StackName=stack_name)
    except WaiterError as exc:
        raise RuntimeError(f"CFN stack {stack_name} deletion failed: {exc}") from exc
    return True
