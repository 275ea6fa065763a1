"""Tests for eks_orchestrator.config.models: cluster spec validation and hashing."""

from __future__ import annotations

import pytest

from eks_orchestrator.config.models import (
    AccessLevel,
    AddOnSource,
    AddOnSpec,
    ClusterSpec,
    NetworkMode,
    NetworkSpec,
    NodeGroupSpec,
    TeamSpec,
)
from eks_orchestrator.errors import InvalidSpec

from conftest import spec_dict


# ── NetworkSpec ──────────────────────────────────────────────────────


class TestNetworkSpec:
    def test_existing_requires_vpc_id(self):
        with pytest.raises(InvalidSpec, match="vpc_id is required"):
            NetworkSpec(mode=NetworkMode.EXISTING_VPC_ID)

    def test_create_new_rejects_vpc_id(self):
        with pytest.raises(InvalidSpec, match="must be empty"):
            NetworkSpec(mode=NetworkMode.CREATE_NEW, vpc_id="vpc-1")

    def test_default_is_create_new(self):
        assert NetworkSpec().mode == NetworkMode.CREATE_NEW


# ── NodeGroupSpec ────────────────────────────────────────────────────


class TestNodeGroupSpec:
    def test_valid_sizes(self):
        ng = NodeGroupSpec(id="mng1", min_size=1, max_size=5, desired_size=2)
        assert ng.resource_id == "nodegroup/mng1"
        assert ng.attributes()["desired_size"] == 2

    def test_desired_above_max(self):
        with pytest.raises(InvalidSpec, match="min <= desired <= max"):
            NodeGroupSpec(id="mng1", min_size=1, max_size=2, desired_size=3)

    def test_desired_below_min(self):
        with pytest.raises(InvalidSpec):
            NodeGroupSpec(id="mng1", min_size=2, max_size=4, desired_size=1)

    def test_max_zero_rejected(self):
        with pytest.raises(InvalidSpec, match="max_size must be >= 1"):
            NodeGroupSpec(id="mng1", min_size=0, max_size=0, desired_size=0)

    def test_negative_min_rejected(self):
        with pytest.raises(InvalidSpec, match="min_size must be >= 0"):
            NodeGroupSpec(id="mng1", min_size=-1, max_size=1, desired_size=0)

    def test_scale_to_zero_allowed(self):
        ng = NodeGroupSpec(id="spot", min_size=0, max_size=3, desired_size=0)
        assert ng.desired_size == 0

    def test_frozen(self):
        ng = NodeGroupSpec(id="mng1")
        with pytest.raises(Exception):
            ng.max_size = 10


# ── AddOnSpec / TeamSpec ─────────────────────────────────────────────


class TestAddOnSpec:
    def test_helm_needs_chart_and_repository(self):
        with pytest.raises(InvalidSpec, match="chart and repository"):
            AddOnSpec(name="cluster-autoscaler", source=AddOnSource.HELM, chart="x")

    def test_duplicate_prerequisite(self):
        with pytest.raises(InvalidSpec, match="more than once"):
            AddOnSpec(name="a", depends_on=["b", "b"])

    def test_managed_attributes_omit_chart(self):
        attrs = AddOnSpec(name="coredns", version="v1.9.*").attributes()
        assert attrs == {"version": "v1.9.*", "source": "managed"}


class TestTeamSpec:
    def test_duplicate_principal(self):
        with pytest.raises(InvalidSpec, match="same principal"):
            TeamSpec.model_validate({
                "name": "devs",
                "members": [
                    {"principal": "arn:aws:iam::123456789012:role/dev"},
                    {"principal": "arn:aws:iam::123456789012:role/dev", "access_level": "edit"},
                ],
            })

    def test_attributes_sorted_members(self):
        team = TeamSpec.model_validate({
            "name": "devs",
            "namespace": "apps",
            "members": [
                {"principal": "b", "access_level": "edit"},
                {"principal": "a", "access_level": "view"},
            ],
        })
        assert team.attributes() == {"namespace": "apps", "members": [["a", "view"], ["b", "edit"]]}
        assert team.members[0].access_level == AccessLevel.EDIT


# ── ClusterSpec ──────────────────────────────────────────────────────


class TestClusterSpec:
    def test_defaults(self, make_spec):
        spec = make_spec()
        assert spec.kubernetes_version == "1.25"
        assert spec.tags == {"Name": "Maas"}
        assert spec.endpoint_access.value == "private"

    def test_bad_account(self):
        with pytest.raises(InvalidSpec, match="12 digits"):
            ClusterSpec.parse(spec_dict(account_id="1234"))

    def test_empty_region(self):
        with pytest.raises(InvalidSpec, match="region"):
            ClusterSpec.parse(spec_dict(region=""))

    def test_duplicate_node_group(self):
        ng = {"id": "mng1"}
        with pytest.raises(InvalidSpec, match="Duplicate node group id"):
            ClusterSpec.parse(spec_dict(node_groups=[ng, ng]))

    def test_duplicate_add_on(self):
        with pytest.raises(InvalidSpec, match="Duplicate add-on"):
            ClusterSpec.parse(spec_dict(add_ons=[{"name": "coredns"}, {"name": "coredns"}]))

    def test_undeclared_prerequisite(self):
        with pytest.raises(InvalidSpec, match="undeclared"):
            ClusterSpec.parse(spec_dict(add_ons=[{"name": "alb", "depends_on": ["vpc-cni"]}]))

    def test_type_error_converted(self):
        with pytest.raises(InvalidSpec) as exc_info:
            ClusterSpec.parse(spec_dict(node_groups=[{"id": "mng1", "max_size": "lots"}]))
        assert "node_groups" in exc_info.value.field

    def test_cycle_is_not_a_validation_error(self):
        # Cycles are a planning conflict, not a schema problem.
        spec = ClusterSpec.parse(spec_dict(add_ons=[
            {"name": "a", "depends_on": ["b"]},
            {"name": "b", "depends_on": ["a"]},
        ]))
        assert spec.add_on("a").depends_on == ["b"]


# ── spec_hash ────────────────────────────────────────────────────────


class TestSpecHash:
    def test_stable_across_instances(self, make_spec):
        assert make_spec().spec_hash() == make_spec().spec_hash()

    def test_add_on_order_irrelevant(self):
        a = ClusterSpec.parse(spec_dict(add_ons=[{"name": "coredns"}, {"name": "kube-proxy"}]))
        b = ClusterSpec.parse(spec_dict(add_ons=[{"name": "kube-proxy"}, {"name": "coredns"}]))
        assert a.spec_hash() == b.spec_hash()

    def test_node_group_order_matters(self):
        ngs = [{"id": "a"}, {"id": "b"}]
        a = ClusterSpec.parse(spec_dict(node_groups=ngs))
        b = ClusterSpec.parse(spec_dict(node_groups=list(reversed(ngs))))
        assert a.spec_hash() != b.spec_hash()

    def test_content_change_changes_hash(self, make_spec):
        a = make_spec()
        b = make_spec(node_groups=[{"id": "mng1", "min_size": 1, "max_size": 5, "desired_size": 3}])
        assert a.spec_hash() != b.spec_hash()

    def test_hex_digest(self, make_spec):
        h = make_spec().spec_hash()
        assert len(h) == 64
        int(h, 16)
