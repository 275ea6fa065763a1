"""EKS provider backend.

Drives Amazon EKS through boto3 (plus EC2 for subnet lookup, CloudFormation
for ``create-new`` networks, and the Helm CLI for chart add-ons).

Idempotency: every EKS create/update call carries the step token as
``clientRequestToken``; EKS returns the original response for a repeated
token instead of acting twice.  Calls that take no token (deletes, access
policy association) are naturally idempotent or guarded by a describe.

Error mapping (:func:`classify_client_error`):

- throttling, 5xx, ``ResourceInUseException`` (another operation in
  flight) → :class:`ProviderTransient`
- everything else → :class:`ProviderPermanent`

Resource mapping:

==============  ==========================================================
cluster         EKS cluster (API endpoint access, version, tags)
nodegroup/<id>  EKS managed node group
addon/<name>    EKS managed add-on, or a Helm release for ``source: helm``
team/<name>     EKS access entries tagged with the team name
==============  ==========================================================
"""

from __future__ import annotations

import logging
import time
from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple

from botocore.exceptions import BotoCoreError, ClientError

from eks_orchestrator.aws import cloudformation, vpc
from eks_orchestrator.aws.context import AWSContext
from eks_orchestrator.config.loader import ProviderSettings
from eks_orchestrator.config.models import (
    CLUSTER_RESOURCE_ID,
    AccessLevel,
    AddOnSource,
    AddOnSpec,
    ClusterSpec,
    EndpointAccess,
    NetworkMode,
    NodeGroupSpec,
    SubnetPlacement,
    TeamSpec,
)
from eks_orchestrator.errors import ProviderError, ProviderPermanent, ProviderTransient
from eks_orchestrator.provider import kubeconfig
from eks_orchestrator.provider.base import (
    ProviderAdapter,
    ProviderRequest,
    make_record,
    select_version,
)
from eks_orchestrator.provider.helm import HelmError, HelmResult, HelmRunner, chart_version_of
from eks_orchestrator.state.models import ResourceKind, ResourceRecord

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

TRANSIENT_ERROR_CODES = frozenset({
    "Throttling",
    "ThrottlingException",
    "TooManyRequestsException",
    "RequestLimitExceeded",
    "ServiceUnavailableException",
    "ServerException",
    "InternalFailure",
    "ResourceInUseException",
})

NOT_FOUND_CODE = "ResourceNotFoundException"

#: Tag marking access entries owned by a team.
TEAM_TAG = "eks-orchestrator/team"
#: Tag recording the CloudFormation stack that provided a cluster's VPC.
NETWORK_STACK_TAG = "eks-orchestrator/network-stack"

_POLICY_PREFIX = "arn:aws:eks::aws:cluster-access-policy/"

#: (access level, namespaced?) → EKS access policy.
ACCESS_POLICIES: Dict[Tuple[AccessLevel, bool], str] = {
    (AccessLevel.ADMIN, False): _POLICY_PREFIX + "AmazonEKSClusterAdminPolicy",
    (AccessLevel.ADMIN, True): _POLICY_PREFIX + "AmazonEKSAdminPolicy",
    (AccessLevel.EDIT, False): _POLICY_PREFIX + "AmazonEKSEditPolicy",
    (AccessLevel.EDIT, True): _POLICY_PREFIX + "AmazonEKSEditPolicy",
    (AccessLevel.VIEW, False): _POLICY_PREFIX + "AmazonEKSViewPolicy",
    (AccessLevel.VIEW, True): _POLICY_PREFIX + "AmazonEKSViewPolicy",
}
_LEVEL_BY_POLICY = {arn: level for (level, _), arn in ACCESS_POLICIES.items()}

ACTIVE = "ACTIVE"
DELETED = "DELETED"
FAILED_STATUSES = frozenset({"CREATE_FAILED", "DELETE_FAILED", "FAILED", "DEGRADED"})

DEFAULT_POLL_INTERVAL = 15.0
DEFAULT_MAX_WAIT = 3600.0


# ---------------------------------------------------------------------------
# Error classification
# ---------------------------------------------------------------------------


def error_code(exc: ClientError) -> str:
    return exc.response.get("Error", {}).get("Code", "")


def classify_client_error(exc: Exception, resource_id: str) -> ProviderError:
    """Map a botocore exception onto the provider error taxonomy."""
    if isinstance(exc, ClientError):
        code = error_code(exc)
        status = exc.response.get("ResponseMetadata", {}).get("HTTPStatusCode", 0)
        message = exc.response.get("Error", {}).get("Message", str(exc))
        if code in TRANSIENT_ERROR_CODES or status >= 500:
            return ProviderTransient(message, resource_id=resource_id, cause=exc, code=code)
        return ProviderPermanent(message, resource_id=resource_id, cause=exc, code=code)
    # Connection resets, endpoint timeouts and the like.
    return ProviderTransient(str(exc), resource_id=resource_id, cause=exc)


@contextmanager
def _translated(resource_id: str) -> Iterator[None]:
    try:
        yield
    except (ClientError, BotoCoreError) as exc:
        raise classify_client_error(exc, resource_id) from exc


def _endpoint_flags(access: EndpointAccess) -> Dict[str, bool]:
    return {
        "endpointPublicAccess": access != EndpointAccess.PRIVATE,
        "endpointPrivateAccess": access != EndpointAccess.PUBLIC,
    }


def _endpoint_access_of(vpc_config: Dict[str, Any]) -> str:
    public = vpc_config.get("endpointPublicAccess", False)
    private = vpc_config.get("endpointPrivateAccess", False)
    if public and private:
        return EndpointAccess.PUBLIC_AND_PRIVATE.value
    return EndpointAccess.PUBLIC.value if public else EndpointAccess.PRIVATE.value


def _sub_token(token: str, suffix: str) -> str:
    """Per-request token derived from the step token (EKS caps tokens at 64 chars)."""
    return f"{token}-{suffix}"[:64]


# ---------------------------------------------------------------------------
# Provider
# ---------------------------------------------------------------------------


class EksProvider(ProviderAdapter):
    """:class:`ProviderAdapter` backed by Amazon EKS."""

    name = "eks"

    def __init__(
        self,
        aws_ctx: AWSContext,
        settings: Optional[ProviderSettings] = None,
        *,
        helm: Optional[HelmRunner] = None,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        max_wait: float = DEFAULT_MAX_WAIT,
        _sleep_fn: Optional[Callable[[float], None]] = None,
    ) -> None:
        self.aws_ctx = aws_ctx
        self.settings = settings or ProviderSettings()
        self.eks = aws_ctx.client("eks")
        self.ec2 = aws_ctx.client("ec2")
        self.poll_interval = poll_interval
        self.max_wait = max_wait
        self._sleep = _sleep_fn or time.sleep
        self._helm = helm

    # -- raw lookups ------------------------------------------------------

    def _raw_cluster(self, cluster_name: str) -> Optional[Dict[str, Any]]:
        with _translated(CLUSTER_RESOURCE_ID):
            try:
                return self.eks.describe_cluster(name=cluster_name)["cluster"]
            except ClientError as exc:
                if error_code(exc) == NOT_FOUND_CODE:
                    return None
                raise

    def _raw_nodegroup(self, cluster_name: str, ng_id: str) -> Optional[Dict[str, Any]]:
        with _translated(f"nodegroup/{ng_id}"):
            try:
                return self.eks.describe_nodegroup(
                    clusterName=cluster_name, nodegroupName=ng_id,
                )["nodegroup"]
            except ClientError as exc:
                if error_code(exc) == NOT_FOUND_CODE:
                    return None
                raise

    def _raw_addon(self, cluster_name: str, name: str) -> Optional[Dict[str, Any]]:
        with _translated(f"addon/{name}"):
            try:
                return self.eks.describe_addon(clusterName=cluster_name, addonName=name)["addon"]
            except ClientError as exc:
                if error_code(exc) == NOT_FOUND_CODE:
                    return None
                raise

    def _team_entries(self, cluster_name: str, team_name: str) -> Dict[str, Dict[str, Any]]:
        """principal ARN → access entry, for entries tagged with *team_name*."""
        rid = f"team/{team_name}"
        entries: Dict[str, Dict[str, Any]] = {}
        with _translated(rid):
            paginator = self.eks.get_paginator("list_access_entries")
            for page in paginator.paginate(clusterName=cluster_name):
                for arn in page.get("accessEntries", []):
                    entry = self.eks.describe_access_entry(
                        clusterName=cluster_name, principalArn=arn,
                    )["accessEntry"]
                    if entry.get("tags", {}).get(TEAM_TAG) == team_name:
                        entries[arn] = entry
        return entries

    def _associated_policies(self, cluster_name: str, principal: str, rid: str) -> List[Dict[str, Any]]:
        with _translated(rid):
            resp = self.eks.list_associated_access_policies(
                clusterName=cluster_name, principalArn=principal,
            )
        return resp.get("associatedAccessPolicies", [])

    # -- observed attribute extraction ------------------------------------

    def _cluster_record(self, raw: Dict[str, Any]) -> ResourceRecord:
        vpc_config = raw.get("resourcesVpcConfig", {})
        tags = {k: v for k, v in raw.get("tags", {}).items() if not k.startswith("eks-orchestrator/")}
        return make_record(
            CLUSTER_RESOURCE_ID,
            provider_id=raw.get("arn", ""),
            status=raw.get("status", ""),
            observed={
                "name": raw.get("name", ""),
                "kubernetes_version": raw.get("version", ""),
                "endpoint_access": _endpoint_access_of(vpc_config),
                "vpc_id": vpc_config.get("vpcId", ""),
                "tags": dict(sorted(tags.items())),
            },
        )

    @staticmethod
    def _nodegroup_record(raw: Dict[str, Any]) -> ResourceRecord:
        scaling = raw.get("scalingConfig", {})
        # desiredSize is owned by the cluster autoscaler once running.
        return make_record(
            f"nodegroup/{raw.get('nodegroupName', '')}",
            provider_id=raw.get("nodegroupArn", ""),
            status=raw.get("status", ""),
            observed={
                "instance_type": (raw.get("instanceTypes") or [""])[0],
                "min_size": scaling.get("minSize"),
                "max_size": scaling.get("maxSize"),
            },
        )

    @staticmethod
    def _addon_record(raw: Dict[str, Any]) -> ResourceRecord:
        return make_record(
            f"addon/{raw.get('addonName', '')}",
            provider_id=raw.get("addonArn", ""),
            status=raw.get("status", ""),
            observed={"version": raw.get("addonVersion", ""), "source": AddOnSource.MANAGED.value},
        )

    @staticmethod
    def _helm_record(name: str, namespace: str, version: str, status: str) -> ResourceRecord:
        return make_record(
            f"addon/{name}",
            provider_id=f"helm:{namespace}/{name}",
            status=ACTIVE if status.lower() == "deployed" else status.upper(),
            observed={"version": version, "source": AddOnSource.HELM.value},
        )

    def _team_record(
        self, cluster_name: str, team_name: str, entries: Dict[str, Dict[str, Any]],
    ) -> ResourceRecord:
        rid = f"team/{team_name}"
        members: List[List[str]] = []
        namespace: Optional[str] = None
        for principal in sorted(entries):
            for assoc in self._associated_policies(cluster_name, principal, rid):
                level = _LEVEL_BY_POLICY.get(assoc.get("policyArn", ""))
                if level is None:
                    continue
                members.append([principal, level.value])
                scope = assoc.get("accessScope", {})
                if scope.get("type") == "namespace" and scope.get("namespaces"):
                    namespace = scope["namespaces"][0]
        return make_record(
            rid,
            provider_id=f"{cluster_name}/team/{team_name}",
            status=ACTIVE,
            observed={"namespace": namespace, "members": sorted(members)},
        )

    # -- reads ------------------------------------------------------------

    def describe_cluster(self, cluster_name: str) -> Optional[ResourceRecord]:
        raw = self._raw_cluster(cluster_name)
        return self._cluster_record(raw) if raw else None

    def describe_node_group(self, cluster_name: str, node_group_id: str) -> Optional[ResourceRecord]:
        raw = self._raw_nodegroup(cluster_name, node_group_id)
        return self._nodegroup_record(raw) if raw else None

    def describe_add_on(self, cluster_name: str, name: str) -> Optional[ResourceRecord]:
        raw = self._raw_addon(cluster_name, name)
        if raw:
            return self._addon_record(raw)
        release = self._helm_call(f"addon/{name}", lambda h: h.find_release(name), cluster_name)
        if release is None:
            return None
        return self._helm_record(
            name,
            release.get("namespace", ""),
            chart_version_of(release.get("chart", "")),
            release.get("status", ""),
        )

    def describe_resource(
        self, cluster_name: str, record: ResourceRecord,
    ) -> Optional[ResourceRecord]:
        if record.kind == ResourceKind.ADDON and record.observed.get("source") == AddOnSource.MANAGED.value:
            raw = self._raw_addon(cluster_name, record.name)
            return self._addon_record(raw) if raw else None
        return super().describe_resource(cluster_name, record)

    def describe_team(self, cluster_name: str, team_name: str) -> Optional[ResourceRecord]:
        entries = self._team_entries(cluster_name, team_name)
        if not entries:
            return None
        return self._team_record(cluster_name, team_name, entries)

    # -- waiting ----------------------------------------------------------

    def _wait_until(
        self,
        what: str,
        resource_id: str,
        describe: Callable[[], Optional[Dict[str, Any]]],
    ) -> Dict[str, Any]:
        """Poll *describe* until ACTIVE and return the final description.

        In-flight operations are always waited out, even after a
        cancellation, so the recorded state matches the live one.
        """
        start = time.monotonic()
        while True:
            raw = describe()
            if raw is None:
                raise ProviderTransient(f"{what} disappeared while waiting", resource_id=resource_id)
            status = raw.get("status", "")
            if status == ACTIVE:
                return raw
            self._check_progress(what, resource_id, status, start)

    def _wait_gone(
        self,
        what: str,
        resource_id: str,
        describe: Callable[[], Optional[Dict[str, Any]]],
    ) -> None:
        """Poll *describe* until the resource no longer exists."""
        start = time.monotonic()
        while True:
            raw = describe()
            if raw is None:
                return
            self._check_progress(what, resource_id, raw.get("status", ""), start)

    def _check_progress(self, what: str, resource_id: str, status: str, start: float) -> None:
        if status in FAILED_STATUSES:
            raise ProviderPermanent(f"{what} entered {status}", resource_id=resource_id)
        elapsed = time.monotonic() - start
        if elapsed > self.max_wait:
            raise ProviderTransient(
                f"timed out after {elapsed:.0f}s waiting for {what} (status {status})",
                resource_id=resource_id,
            )
        logger.info("%s is %s (%.0fs elapsed)", what, status, elapsed)
        self._sleep(self.poll_interval)

    # -- cluster ----------------------------------------------------------

    def _network(self, spec: ClusterSpec) -> Tuple[str, List[str], List[str], Dict[str, str]]:
        """Return (vpc_id, subnet_ids, security_group_ids, extra tags)."""
        if spec.network.mode == NetworkMode.CREATE_NEW:
            with _translated(CLUSTER_RESOURCE_ID):
                try:
                    out = cloudformation.ensure_network_stack(
                        self.aws_ctx, spec.name, tags=spec.tags,
                    )
                except RuntimeError as exc:
                    raise ProviderPermanent(str(exc), resource_id=CLUSTER_RESOURCE_ID, cause=exc) from exc
            return out.vpc_id, out.subnet_ids, out.security_group_ids, {NETWORK_STACK_TAG: out.stack_name}

        vpc_id = spec.network.vpc_id or ""
        with _translated(CLUSTER_RESOURCE_ID):
            subnets = vpc.list_vpc_subnets(self.ec2, vpc_id)
        readiness = vpc.evaluate_subnets(vpc_id, subnets)
        if not readiness.ok:
            raise ProviderPermanent("; ".join(readiness.problems), resource_id=CLUSTER_RESOURCE_ID)
        return vpc_id, [s.subnet_id for s in subnets], [], {}

    def create_cluster(self, spec: ClusterSpec, request: ProviderRequest) -> ResourceRecord:
        rid = CLUSTER_RESOURCE_ID
        if not self.settings.cluster_role_arn:
            raise ProviderPermanent("provider.cluster_role_arn is not set", resource_id=rid)

        existing = self._raw_cluster(spec.name)
        if existing is None:
            vpc_id, subnet_ids, sg_ids, extra_tags = self._network(spec)
            logger.info("Creating EKS cluster %s in %s (%d subnets)", spec.name, vpc_id, len(subnet_ids))
            with _translated(rid):
                try:
                    self.eks.create_cluster(
                        name=spec.name,
                        version=spec.kubernetes_version,
                        roleArn=self.settings.cluster_role_arn,
                        resourcesVpcConfig={
                            "subnetIds": subnet_ids,
                            "securityGroupIds": sg_ids,
                            **_endpoint_flags(spec.endpoint_access),
                        },
                        accessConfig={"authenticationMode": "API_AND_CONFIG_MAP"},
                        tags={**spec.tags, **extra_tags},
                        clientRequestToken=request.token,
                    )
                except ClientError as exc:
                    # A lost response on a previous attempt: adopt the cluster below.
                    if error_code(exc) != "ResourceInUseException":
                        raise
                    logger.info("Cluster %s already being created", spec.name)
        elif existing.get("status") not in ("CREATING", ACTIVE):
            raise ProviderPermanent(
                f"cluster {spec.name} already exists in status {existing.get('status')}",
                resource_id=rid,
            )

        raw = self._wait_until(f"cluster {spec.name}", rid, lambda: self._raw_cluster(spec.name))
        self._write_kubeconfig(raw)
        return self._cluster_record(raw)

    def update_cluster(self, spec: ClusterSpec, request: ProviderRequest) -> ResourceRecord:
        rid = CLUSTER_RESOURCE_ID
        raw = self._raw_cluster(spec.name)
        if raw is None:
            raise ProviderPermanent(f"cluster {spec.name} does not exist", resource_id=rid)
        current = self._cluster_record(raw).observed

        if spec.network.vpc_id and current["vpc_id"] and spec.network.vpc_id != current["vpc_id"]:
            raise ProviderPermanent(
                f"cannot move cluster {spec.name} from {current['vpc_id']} to "
                f"{spec.network.vpc_id}; destroy and re-create it",
                resource_id=rid,
            )

        with _translated(rid):
            if current["kubernetes_version"] != spec.kubernetes_version:
                logger.info(
                    "Upgrading %s from %s to %s",
                    spec.name, current["kubernetes_version"], spec.kubernetes_version,
                )
                self.eks.update_cluster_version(
                    name=spec.name,
                    version=spec.kubernetes_version,
                    clientRequestToken=_sub_token(request.token, "version"),
                )
                self._wait_until(f"cluster {spec.name}", rid, lambda: self._raw_cluster(spec.name))

            if current["endpoint_access"] != spec.endpoint_access.value:
                self.eks.update_cluster_config(
                    name=spec.name,
                    resourcesVpcConfig=_endpoint_flags(spec.endpoint_access),
                    clientRequestToken=_sub_token(request.token, "endpoint"),
                )
                self._wait_until(f"cluster {spec.name}", rid, lambda: self._raw_cluster(spec.name))

            if current["tags"] != dict(sorted(spec.tags.items())):
                stale = sorted(set(current["tags"]) - set(spec.tags))
                if stale:
                    self.eks.untag_resource(resourceArn=raw["arn"], tagKeys=stale)
                if spec.tags:
                    self.eks.tag_resource(resourceArn=raw["arn"], tags=dict(spec.tags))

        final = self._raw_cluster(spec.name)
        if final is None:
            raise ProviderPermanent(f"cluster {spec.name} disappeared during update", resource_id=rid)
        return self._cluster_record(final)

    def delete_cluster(self, cluster_name: str, request: ProviderRequest) -> ResourceRecord:
        rid = CLUSTER_RESOURCE_ID
        raw = self._raw_cluster(cluster_name)
        if raw is None:
            logger.info("Cluster %s already deleted", cluster_name)
            return make_record(rid, provider_id="", status=DELETED, observed={})

        record = self._cluster_record(raw)
        stack = raw.get("tags", {}).get(NETWORK_STACK_TAG)
        if raw.get("status") != "DELETING":
            with _translated(rid):
                self.eks.delete_cluster(name=cluster_name)
        self._wait_gone(
            f"cluster {cluster_name}", rid, lambda: self._raw_cluster(cluster_name),
        )

        if stack:
            with _translated(rid):
                try:
                    cloudformation.delete_network_stack(self.aws_ctx, cluster_name)
                except RuntimeError as exc:
                    raise ProviderTransient(str(exc), resource_id=rid, cause=exc) from exc
        return record.model_copy(update={"status": DELETED})

    def _write_kubeconfig(self, raw: Dict[str, Any]) -> None:
        entry = kubeconfig.build_entry(
            cluster_arn=raw["arn"],
            cluster_name=raw["name"],
            endpoint=raw.get("endpoint", ""),
            certificate_authority=raw.get("certificateAuthority", {}).get("data", ""),
            region=self.aws_ctx.region,
            profile=self.aws_ctx.profile,
        )
        try:
            kubeconfig.update_kubeconfig(entry, self.settings.kubeconfig_path or None)
        except OSError as exc:
            logger.warning("Could not update kubeconfig for %s: %s", raw["name"], exc)

    # -- node groups ------------------------------------------------------

    def _node_group_subnets(self, cluster_name: str, placement: SubnetPlacement, rid: str) -> List[str]:
        raw = self._raw_cluster(cluster_name)
        if raw is None:
            raise ProviderPermanent(f"cluster {cluster_name} does not exist", resource_id=rid)
        vpc_config = raw.get("resourcesVpcConfig", {})
        cluster_subnets = set(vpc_config.get("subnetIds", []))
        with _translated(rid):
            subnets = vpc.list_vpc_subnets(self.ec2, vpc_config.get("vpcId", ""))
        usable = [s for s in subnets if s.subnet_id in cluster_subnets]
        return vpc.subnets_for_placement(usable, placement)

    def create_node_group(
        self, cluster_name: str, node_group: NodeGroupSpec, request: ProviderRequest,
    ) -> ResourceRecord:
        rid = node_group.resource_id
        if not self.settings.node_role_arn:
            raise ProviderPermanent("provider.node_role_arn is not set", resource_id=rid)

        if self._raw_nodegroup(cluster_name, node_group.id) is None:
            subnets = self._node_group_subnets(cluster_name, node_group.subnet_placement, rid)
            with _translated(rid):
                try:
                    self.eks.create_nodegroup(
                        clusterName=cluster_name,
                        nodegroupName=node_group.id,
                        scalingConfig={
                            "minSize": node_group.min_size,
                            "maxSize": node_group.max_size,
                            "desiredSize": node_group.desired_size,
                        },
                        subnets=subnets,
                        instanceTypes=[node_group.instance_type],
                        nodeRole=self.settings.node_role_arn,
                        clientRequestToken=request.token,
                    )
                except ClientError as exc:
                    if error_code(exc) != "ResourceInUseException":
                        raise
                    logger.info("Node group %s already being created", node_group.id)

        raw = self._wait_until(
            f"node group {node_group.id}", rid,
            lambda: self._raw_nodegroup(cluster_name, node_group.id),
        )
        return self._nodegroup_record(raw)

    def update_node_group(
        self, cluster_name: str, node_group: NodeGroupSpec, request: ProviderRequest,
    ) -> ResourceRecord:
        rid = node_group.resource_id
        raw = self._raw_nodegroup(cluster_name, node_group.id)
        if raw is None:
            raise ProviderPermanent(f"node group {node_group.id} does not exist", resource_id=rid)
        current = (raw.get("instanceTypes") or [""])[0]
        if current != node_group.instance_type:
            raise ProviderPermanent(
                f"instance type of node group {node_group.id} cannot change in place "
                f"({current} -> {node_group.instance_type}); rename the node group",
                resource_id=rid,
            )

        with _translated(rid):
            self.eks.update_nodegroup_config(
                clusterName=cluster_name,
                nodegroupName=node_group.id,
                scalingConfig={
                    "minSize": node_group.min_size,
                    "maxSize": node_group.max_size,
                    "desiredSize": node_group.desired_size,
                },
                clientRequestToken=request.token,
            )
        final = self._wait_until(
            f"node group {node_group.id}", rid,
            lambda: self._raw_nodegroup(cluster_name, node_group.id),
        )
        return self._nodegroup_record(final)

    def delete_node_group(
        self, cluster_name: str, node_group_id: str, request: ProviderRequest,
    ) -> ResourceRecord:
        rid = f"nodegroup/{node_group_id}"
        raw = self._raw_nodegroup(cluster_name, node_group_id)
        if raw is None:
            return make_record(rid, provider_id="", status=DELETED, observed={})
        if raw.get("status") != "DELETING":
            with _translated(rid):
                self.eks.delete_nodegroup(clusterName=cluster_name, nodegroupName=node_group_id)
        self._wait_gone(
            f"node group {node_group_id}", rid,
            lambda: self._raw_nodegroup(cluster_name, node_group_id),
        )
        return self._nodegroup_record(raw).model_copy(update={"status": DELETED})

    # -- add-ons ----------------------------------------------------------

    def _helm_runner(self, cluster_name: str) -> HelmRunner:
        if self._helm is None:
            raw = self._raw_cluster(cluster_name)
            self._helm = HelmRunner(
                binary=self.settings.helm_binary,
                kubeconfig=self.settings.kubeconfig_path or None,
                kube_context=raw["arn"] if raw else None,
                profile=self.aws_ctx.profile,
            )
        return self._helm

    def _helm_call(self, rid: str, fn: Callable[[HelmRunner], Any], cluster_name: str) -> Any:
        try:
            return fn(self._helm_runner(cluster_name))
        except HelmError as exc:
            raise self._helm_error(exc.result, rid) from exc

    @staticmethod
    def _helm_error(result: HelmResult, rid: str) -> ProviderError:
        message = result.stderr or result.stdout or f"helm exited {result.returncode}"
        if result.transient:
            return ProviderTransient(message, resource_id=rid)
        return ProviderPermanent(message, resource_id=rid)

    def _resolve_addon_version(self, cluster_name: str, add_on: AddOnSpec) -> str:
        rid = add_on.resource_id
        raw = self._raw_cluster(cluster_name)
        if raw is None:
            raise ProviderPermanent(f"cluster {cluster_name} does not exist", resource_id=rid)
        with _translated(rid):
            resp = self.eks.describe_addon_versions(
                addonName=add_on.name, kubernetesVersion=raw.get("version", ""),
            )
        offered = [
            v["addonVersion"]
            for addon in resp.get("addons", [])
            for v in addon.get("addonVersions", [])
        ]
        version = select_version(add_on.version, offered)
        if version is None:
            raise ProviderPermanent(
                f"no version of {add_on.name} matches '{add_on.version}' "
                f"(offered: {', '.join(offered) or 'none'})",
                resource_id=rid,
            )
        return version

    def install_add_on(
        self, cluster_name: str, add_on: AddOnSpec, request: ProviderRequest,
    ) -> ResourceRecord:
        rid = add_on.resource_id
        if add_on.source == AddOnSource.HELM:
            runner = self._helm_runner(cluster_name)
            result = runner.upgrade_install(
                add_on.name,
                add_on.chart,
                repository=add_on.repository,
                namespace=add_on.namespace,
                version=add_on.version,
                values=add_on.values,
            )
            if not result.success:
                raise self._helm_error(result, rid)
            return self._helm_record(add_on.name, add_on.namespace, result.chart_version, result.status)

        version = self._resolve_addon_version(cluster_name, add_on)
        existing = self._raw_addon(cluster_name, add_on.name)
        with _translated(rid):
            if existing is None:
                logger.info("Creating add-on %s %s", add_on.name, version)
                self.eks.create_addon(
                    clusterName=cluster_name,
                    addonName=add_on.name,
                    addonVersion=version,
                    resolveConflicts="OVERWRITE",
                    clientRequestToken=request.token,
                )
            elif existing.get("addonVersion") != version:
                logger.info(
                    "Updating add-on %s %s -> %s", add_on.name, existing.get("addonVersion"), version,
                )
                self.eks.update_addon(
                    clusterName=cluster_name,
                    addonName=add_on.name,
                    addonVersion=version,
                    resolveConflicts="OVERWRITE",
                    clientRequestToken=request.token,
                )
        raw = self._wait_until(
            f"add-on {add_on.name}", rid, lambda: self._raw_addon(cluster_name, add_on.name),
        )
        return self._addon_record(raw)

    def uninstall_add_on(
        self, cluster_name: str, name: str, request: ProviderRequest,
    ) -> ResourceRecord:
        rid = f"addon/{name}"
        raw = self._raw_addon(cluster_name, name)
        if raw is not None:
            if raw.get("status") != "DELETING":
                with _translated(rid):
                    self.eks.delete_addon(clusterName=cluster_name, addonName=name)
            self._wait_gone(
                f"add-on {name}", rid, lambda: self._raw_addon(cluster_name, name),
            )
            return self._addon_record(raw).model_copy(update={"status": DELETED})

        release = self._helm_call(rid, lambda h: h.find_release(name), cluster_name)
        if release is None:
            return make_record(rid, provider_id="", status=DELETED, observed={})
        namespace = release.get("namespace", "")
        result = self._helm_runner(cluster_name).uninstall(name, namespace=namespace)
        if not result.success:
            raise self._helm_error(result, rid)
        return self._helm_record(
            name, namespace, chart_version_of(release.get("chart", "")), DELETED,
        )

    # -- teams ------------------------------------------------------------

    def bind_team_access(
        self, cluster_name: str, team: TeamSpec, request: ProviderRequest,
    ) -> ResourceRecord:
        rid = team.resource_id
        if not team.members:
            # Teams live only as tagged access entries; an empty team would read as missing.
            raise ProviderPermanent(f"team {team.name} has no members", resource_id=rid)
        namespaced = team.namespace is not None
        scope: Dict[str, Any] = (
            {"type": "namespace", "namespaces": [team.namespace]} if namespaced else {"type": "cluster"}
        )
        current = self._team_entries(cluster_name, team.name)
        desired = {m.principal: ACCESS_POLICIES[(m.access_level, namespaced)] for m in team.members}

        with _translated(rid):
            for i, principal in enumerate(sorted(desired)):
                if principal not in current:
                    try:
                        self.eks.create_access_entry(
                            clusterName=cluster_name,
                            principalArn=principal,
                            tags={TEAM_TAG: team.name},
                            clientRequestToken=_sub_token(request.token, str(i)),
                        )
                    except ClientError as exc:
                        if error_code(exc) != "ResourceInUseException":
                            raise
                        self.eks.tag_resource(
                            resourceArn=self._access_entry_arn(cluster_name, principal),
                            tags={TEAM_TAG: team.name},
                        )
                for assoc in self._associated_policies(cluster_name, principal, rid):
                    if assoc.get("policyArn") != desired[principal]:
                        self.eks.disassociate_access_policy(
                            clusterName=cluster_name,
                            principalArn=principal,
                            policyArn=assoc["policyArn"],
                        )
                self.eks.associate_access_policy(
                    clusterName=cluster_name,
                    principalArn=principal,
                    policyArn=desired[principal],
                    accessScope=scope,
                )

            for principal in sorted(set(current) - set(desired)):
                logger.info("Removing %s from team %s", principal, team.name)
                self.eks.delete_access_entry(clusterName=cluster_name, principalArn=principal)

        return self._team_record(cluster_name, team.name, self._team_entries(cluster_name, team.name))

    def _access_entry_arn(self, cluster_name: str, principal: str) -> str:
        entry = self.eks.describe_access_entry(clusterName=cluster_name, principalArn=principal)
        return entry["accessEntry"]["accessEntryArn"]

    def unbind_team_access(
        self, cluster_name: str, team_name: str, request: ProviderRequest,
    ) -> ResourceRecord:
        rid = f"team/{team_name}"
        entries = self._team_entries(cluster_name, team_name)
        with _translated(rid):
            for principal in sorted(entries):
                try:
                    self.eks.delete_access_entry(clusterName=cluster_name, principalArn=principal)
                except ClientError as exc:
                    if error_code(exc) != NOT_FOUND_CODE:
                        raise
        return make_record(
            rid, provider_id=f"{cluster_name}/team/{team_name}", status=DELETED, observed={},
        )
