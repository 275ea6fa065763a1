"""Account and VPC helper workflows (``env``, ``vpc list|details|check``).

None of these touch the state store; they only read from AWS (and
``env`` writes a dotenv file).
"""

from __future__ import annotations

import json
import logging
from dataclasses import asdict
from pathlib import Path
from typing import Any, Optional

from botocore.exceptions import BotoCoreError, ClientError

from eks_orchestrator import ui
from eks_orchestrator.aws.context import AWSContext, write_env_file
from eks_orchestrator.aws.vpc import check_vpc_for_eks, describe_vpc, list_vpcs
from eks_orchestrator.workflow.apply import EXIT_AWS_FAILURE, EXIT_INVALID, EXIT_SUCCESS

logger = logging.getLogger(__name__)

DEFAULT_ENV_PATH = ".env"


def _ec2(region: Optional[str], profile: Optional[str]) -> Any:
    return AWSContext.build(region=region, profile=profile).client("ec2")


def run_env(
    path: str | Path = DEFAULT_ENV_PATH,
    *,
    region: Optional[str] = None,
    profile: Optional[str] = None,
    aws_ctx: Optional[AWSContext] = None,
) -> int:
    """Resolve account and region from STS and write them to *path*."""
    try:
        ctx = aws_ctx or AWSContext.build(region=region, profile=profile)
    except RuntimeError as exc:
        logger.error("AWS context failed: %s", exc)
        ui.fail(str(exc))
        return EXIT_AWS_FAILURE

    dest = write_env_file(path, ctx.account_id, ctx.region)
    ui.ok(f"Wrote {dest}")
    ui.detail("CDK_DEFAULT_ACCOUNT", ctx.account_id)
    ui.detail("CDK_DEFAULT_REGION", ctx.region)
    if ctx.profile:
        ui.detail("AWS_PROFILE", ctx.profile)
    return EXIT_SUCCESS


def run_vpc_list(
    *,
    region: Optional[str] = None,
    profile: Optional[str] = None,
    as_json: bool = False,
    ec2_client: Any = None,
) -> int:
    try:
        ec2 = ec2_client or _ec2(region, profile)
        vpcs = list_vpcs(ec2)
    except (RuntimeError, BotoCoreError, ClientError) as exc:
        logger.error("Listing VPCs failed: %s", exc)
        ui.fail(f"Listing VPCs failed: {exc}")
        return EXIT_AWS_FAILURE

    if as_json:
        ui.emit_json(json.dumps([asdict(v) for v in vpcs], indent=2, sort_keys=True))
    elif not vpcs:
        ui.info("No VPCs found")
    else:
        ui.render_vpcs(vpcs)
    return EXIT_SUCCESS


def run_vpc_details(
    vpc_id: str,
    *,
    region: Optional[str] = None,
    profile: Optional[str] = None,
    as_json: bool = False,
    ec2_client: Any = None,
) -> int:
    try:
        ec2 = ec2_client or _ec2(region, profile)
        details = describe_vpc(ec2, vpc_id)
    except LookupError as exc:
        ui.fail(str(exc))
        return EXIT_INVALID
    except (RuntimeError, BotoCoreError, ClientError) as exc:
        logger.error("Describing %s failed: %s", vpc_id, exc)
        ui.fail(f"Describing {vpc_id} failed: {exc}")
        return EXIT_AWS_FAILURE

    if as_json:
        ui.emit_json(json.dumps(asdict(details), indent=2, sort_keys=True))
    else:
        ui.render_vpc_details(details)
    return EXIT_SUCCESS


def run_vpc_check(
    vpc_id: str,
    *,
    region: Optional[str] = None,
    profile: Optional[str] = None,
    as_json: bool = False,
    ec2_client: Any = None,
) -> int:
    """Exit 0 when *vpc_id* can host EKS, 1 when it cannot."""
    try:
        ec2 = ec2_client or _ec2(region, profile)
        readiness = check_vpc_for_eks(ec2, vpc_id)
    except (RuntimeError, BotoCoreError, ClientError) as exc:
        logger.error("Checking %s failed: %s", vpc_id, exc)
        ui.fail(f"Checking {vpc_id} failed: {exc}")
        return EXIT_AWS_FAILURE

    if as_json:
        ui.emit_json(json.dumps(readiness.to_dict(), indent=2, sort_keys=True))
    else:
        ui.render_readiness(readiness)
    return EXIT_SUCCESS if readiness.ok else EXIT_INVALID
