"""AWS context: session, identity, and region resolution.

Wraps boto3 session creation and STS ``get-caller-identity`` into a single
:class:`AWSContext` that the EKS backend and the VPC helpers depend on.

Region resolution precedence:
1. Explicit ``--region`` CLI flag / spec value
2. ``CDK_DEFAULT_REGION`` (what the CDK app read)
3. ``AWS_DEFAULT_REGION`` / ``AWS_REGION`` env vars
4. The profile's configured region (``aws configure get region``)
5. Hardcoded fallback (``us-east-1``)

Profile resolution precedence:
1. Explicit ``--profile`` CLI flag / ``provider.profile`` setting
2. ``AWS_PROFILE`` env var
3. None: boto3's default credential chain
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

logger = logging.getLogger(__name__)

_DEFAULT_REGION = "us-east-1"


# ---------------------------------------------------------------------------
# Resolution helpers
# ---------------------------------------------------------------------------

def resolve_region(region: Optional[str] = None, *, configured: Optional[str] = None) -> str:
    """Return the AWS region string.

    Precedence: *region* → ``CDK_DEFAULT_REGION`` → ``AWS_DEFAULT_REGION``
    → ``AWS_REGION`` → *configured* (profile region) → fallback.
    """
    return (
        region
        or os.environ.get("CDK_DEFAULT_REGION")
        or os.environ.get("AWS_DEFAULT_REGION")
        or os.environ.get("AWS_REGION")
        or configured
        or _DEFAULT_REGION
    )


def resolve_profile(profile: Optional[str] = None) -> Optional[str]:
    """Return the AWS profile name, or None to use the default chain."""
    return profile or os.environ.get("AWS_PROFILE") or None


# ---------------------------------------------------------------------------
# AWSContext
# ---------------------------------------------------------------------------

@dataclass
class AWSContext:
    """Immutable bag of AWS identity + session factory.

    Attributes:
        profile: Resolved AWS profile name (None = default chain).
        region: AWS region (e.g. ``us-east-1``).
        account_id: 12-digit AWS account ID.
        caller_arn: Full ARN from ``sts:GetCallerIdentity``.
        iam_username: IAM user or role-session name extracted from *caller_arn*.
    """

    profile: Optional[str]
    region: str
    account_id: str = ""
    caller_arn: str = ""
    iam_username: str = ""
    _session: Any = field(default=None, repr=False, compare=False)

    # -- factory ----------------------------------------------------------

    @classmethod
    def build(
        cls,
        region: Optional[str] = None,
        profile: Optional[str] = None,
    ) -> "AWSContext":
        """Construct an :class:`AWSContext` by calling STS.

        Raises :class:`RuntimeError` on credential / network failures.
        """
        resolved_profile = resolve_profile(profile)
        default_session = boto3.Session(profile_name=resolved_profile)
        resolved_region = resolve_region(region, configured=default_session.region_name)

        session = boto3.Session(profile_name=resolved_profile, region_name=resolved_region)

        try:
            sts = session.client("sts")
            identity = sts.get_caller_identity()
        except (BotoCoreError, ClientError) as exc:
            raise RuntimeError(
                f"AWS credentials invalid or inaccessible in region {resolved_region}: {exc}"
            ) from exc

        caller_arn = identity["Arn"]
        logger.debug("Caller identity %s in %s", caller_arn, resolved_region)
        return cls(
            profile=resolved_profile,
            region=resolved_region,
            account_id=identity["Account"],
            caller_arn=caller_arn,
            iam_username=_extract_username(caller_arn),
            _session=session,
        )

    # -- session accessor -------------------------------------------------

    @property
    def session(self) -> boto3.Session:
        """Return the cached :class:`boto3.Session`."""
        if self._session is None:
            self._session = boto3.Session(
                profile_name=self.profile, region_name=self.region
            )
        return self._session

    def client(self, service: str, **kwargs: Any) -> Any:
        """Create a boto3 client for *service*."""
        return self.session.client(service, **kwargs)


# ---------------------------------------------------------------------------
# .env file
# ---------------------------------------------------------------------------

def write_env_file(path: str | Path, account_id: str, region: str) -> Path:
    """Write a dotenv file exporting the account and region.

    Both the CDK names and the plain AWS names are written so either
    convention can ``source`` it.
    """
    path = Path(path)
    lines = [
        "# AWS Configuration",
        f"CDK_DEFAULT_ACCOUNT={account_id}",
        f"CDK_DEFAULT_REGION={region}",
        "",
        "# Alternative names (also supported)",
        f"AWS_ACCOUNT_ID={account_id}",
        f"AWS_DEFAULT_REGION={region}",
        "",
    ]
    path.write_text("\n".join(lines), encoding="utf-8")
    return path


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

def _extract_username(arn: str) -> str:
    """Extract the IAM user or role-session name from an ARN.

    Examples::

        arn:aws:iam::123456789012:user/alice        → alice
        arn:aws:sts::123456789012:assumed-role/r/s   → s
        arn:aws:iam::123456789012:root               → root
    """
    parts = arn.split("/")
    if len(parts) >= 2:
        return parts[-1]
    return arn.rsplit(":", maxsplit=1)[-1]
