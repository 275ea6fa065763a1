"""VPC discovery and EKS readiness checks.

Backs ``eks-orchestrator vpc list`` / ``vpc check`` and the subnet lookup
the EKS backend does before creating a cluster or node group:

1. **Listing**: every VPC in the region with its Name tag, CIDR and state.
2. **Details**: subnets (AZ, CIDR, public-IP mapping), internet gateways
   and NAT gateways attached to one VPC.
3. **EKS check**: at least two subnets, spread over at least two AZs;
   the absence of public subnets is a warning (egress then needs NAT).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List

from eks_orchestrator.config.models import SubnetPlacement

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

MIN_SUBNETS = 2
MIN_AZS = 2


# ---------------------------------------------------------------------------
# Dataclasses
# ---------------------------------------------------------------------------


@dataclass
class VpcInfo:
    vpc_id: str = ""
    name: str = ""
    cidr_block: str = ""
    state: str = ""


@dataclass
class SubnetInfo:
    """A discovered subnet."""

    subnet_id: str = ""
    name: str = ""
    availability_zone: str = ""
    cidr_block: str = ""
    map_public_ip_on_launch: bool = False
    vpc_id: str = ""

    @property
    def placement(self) -> SubnetPlacement:
        return SubnetPlacement.PUBLIC if self.map_public_ip_on_launch else SubnetPlacement.PRIVATE


@dataclass
class VpcDetails:
    vpc: VpcInfo
    subnets: List[SubnetInfo] = field(default_factory=list)
    internet_gateways: List[str] = field(default_factory=list)
    nat_gateways: List[Dict[str, str]] = field(default_factory=list)


@dataclass
class EksReadiness:
    """Outcome of :func:`check_vpc_for_eks`."""

    vpc_id: str
    subnet_count: int = 0
    availability_zones: List[str] = field(default_factory=list)
    public_subnets: List[str] = field(default_factory=list)
    problems: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.problems

    def to_dict(self) -> Dict[str, Any]:
        return {
            "availability_zones": self.availability_zones,
            "ok": self.ok,
            "problems": self.problems,
            "public_subnets": self.public_subnets,
            "subnet_count": self.subnet_count,
            "vpc_id": self.vpc_id,
            "warnings": self.warnings,
        }


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _name_tag(tags: List[Dict[str, str]]) -> str:
    for tag in tags or []:
        if tag.get("Key") == "Name":
            return tag.get("Value", "")
    return ""


# ---------------------------------------------------------------------------
# Discovery
# ---------------------------------------------------------------------------


def list_vpcs(ec2_client: Any) -> List[VpcInfo]:
    """Return every VPC visible in the client's region, sorted by id."""
    paginator = ec2_client.get_paginator("describe_vpcs")
    vpcs: List[VpcInfo] = []
    for page in paginator.paginate():
        for v in page.get("Vpcs", []):
            vpcs.append(
                VpcInfo(
                    vpc_id=v["VpcId"],
                    name=_name_tag(v.get("Tags", [])),
                    cidr_block=v.get("CidrBlock", ""),
                    state=v.get("State", ""),
                )
            )
    return sorted(vpcs, key=lambda v: v.vpc_id)


def list_vpc_subnets(ec2_client: Any, vpc_id: str) -> List[SubnetInfo]:
    """Return the subnets of *vpc_id*, sorted by (AZ, subnet id)."""
    paginator = ec2_client.get_paginator("describe_subnets")
    subnets: List[SubnetInfo] = []
    for page in paginator.paginate(Filters=[{"Name": "vpc-id", "Values": [vpc_id]}]):
        for s in page.get("Subnets", []):
            subnets.append(
                SubnetInfo(
                    subnet_id=s["SubnetId"],
                    name=_name_tag(s.get("Tags", [])),
                    availability_zone=s.get("AvailabilityZone", ""),
                    cidr_block=s.get("CidrBlock", ""),
                    map_public_ip_on_launch=bool(s.get("MapPublicIpOnLaunch", False)),
                    vpc_id=s.get("VpcId", vpc_id),
                )
            )
    return sorted(subnets, key=lambda s: (s.availability_zone, s.subnet_id))


def subnets_for_placement(
    subnets: List[SubnetInfo], placement: SubnetPlacement,
) -> List[str]:
    """Subnet ids matching *placement*; falls back to all subnets if none match."""
    matching = [s.subnet_id for s in subnets if s.placement == placement]
    if not matching:
        logger.warning("No %s subnets found; using all %d subnets", placement.value, len(subnets))
        return [s.subnet_id for s in subnets]
    return matching


def describe_vpc(ec2_client: Any, vpc_id: str) -> VpcDetails:
    """Collect subnets, internet gateways and NAT gateways of *vpc_id*.

    Raises:
        LookupError: the VPC does not exist.
    """
    resp = ec2_client.describe_vpcs(VpcIds=[vpc_id])
    found = resp.get("Vpcs", [])
    if not found:
        raise LookupError(f"VPC not found: {vpc_id}")
    v = found[0]
    details = VpcDetails(
        vpc=VpcInfo(
            vpc_id=v["VpcId"],
            name=_name_tag(v.get("Tags", [])),
            cidr_block=v.get("CidrBlock", ""),
            state=v.get("State", ""),
        ),
        subnets=list_vpc_subnets(ec2_client, vpc_id),
    )

    igws = ec2_client.describe_internet_gateways(
        Filters=[{"Name": "attachment.vpc-id", "Values": [vpc_id]}],
    )
    details.internet_gateways = sorted(
        g["InternetGatewayId"] for g in igws.get("InternetGateways", [])
    )

    nats = ec2_client.describe_nat_gateways(
        Filters=[{"Name": "vpc-id", "Values": [vpc_id]}],
    )
    details.nat_gateways = [
        {
            "nat_gateway_id": n["NatGatewayId"],
            "subnet_id": n.get("SubnetId", ""),
            "state": n.get("State", ""),
        }
        for n in nats.get("NatGateways", [])
    ]
    return details


# ---------------------------------------------------------------------------
# EKS readiness
# ---------------------------------------------------------------------------


def evaluate_subnets(vpc_id: str, subnets: List[SubnetInfo]) -> EksReadiness:
    """Apply the EKS placement rules to an already-listed subnet set."""
    azs = sorted({s.availability_zone for s in subnets if s.availability_zone})
    readiness = EksReadiness(
        vpc_id=vpc_id,
        subnet_count=len(subnets),
        availability_zones=azs,
        public_subnets=[s.subnet_id for s in subnets if s.map_public_ip_on_launch],
    )
    if len(subnets) < MIN_SUBNETS:
        readiness.problems.append(
            f"EKS requires at least {MIN_SUBNETS} subnets (found {len(subnets)})"
        )
    if len(azs) < MIN_AZS:
        readiness.problems.append(
            f"EKS requires subnets in at least {MIN_AZS} availability zones (found {len(azs)})"
        )
    if not readiness.public_subnets:
        readiness.warnings.append(
            "No public subnets found (a NAT gateway is needed for internet access)"
        )
    return readiness


def check_vpc_for_eks(ec2_client: Any, vpc_id: str) -> EksReadiness:
    """Check whether *vpc_id* can host an EKS control plane."""
    readiness = evaluate_subnets(vpc_id, list_vpc_subnets(ec2_client, vpc_id))
    for problem in readiness.problems:
        logger.warning("VPC %s: %s", vpc_id, problem)
    return readiness
