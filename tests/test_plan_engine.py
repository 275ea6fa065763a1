"""Tests for eks_orchestrator.plan.engine: classification, drift, ordering."""

from __future__ import annotations

import pytest

from eks_orchestrator.errors import DriftDetected, PlanConflict
from eks_orchestrator.executor.runner import Executor
from eks_orchestrator.plan.engine import PlanEngine, desired_resources
from eks_orchestrator.plan.models import ChangeAction, derive_token, step_id_for


def _apply(provider, store, spec):
    plan = PlanEngine(provider, store).plan(spec)
    report = Executor(provider, store, sleep_fn=lambda _s: None).execute(plan)
    assert report.ok, report.to_dict()
    return plan


# ── desired_resources ────────────────────────────────────────────────


class TestDesiredResources:
    def test_edges(self, make_spec):
        spec = make_spec(
            add_ons=[{"name": "vpc-cni"}, {"name": "alb", "depends_on": ["vpc-cni"]}],
            teams=[{"name": "devs", "members": [{"principal": "arn:aws:iam::1:role/d"}]}],
        )
        res = desired_resources(spec)
        assert sorted(res) == ["addon/alb", "addon/vpc-cni", "cluster", "nodegroup/mng1", "team/devs"]
        assert res["addon/alb"].requires == ("cluster", "addon/vpc-cni")
        assert res["nodegroup/mng1"].requires == ("cluster",)
        assert res["cluster"].requires == ()


# ── fresh cluster ────────────────────────────────────────────────────


class TestFreshPlan:
    def test_single_node_group_creates_cluster_then_node_group(self, provider, store, make_spec):
        plan = PlanEngine(provider, store).plan(make_spec())
        assert [(s.action, s.resource_id) for s in plan.steps] == [
            (ChangeAction.CREATE, "cluster"),
            (ChangeAction.CREATE, "nodegroup/mng1"),
        ]
        assert plan.steps[1].depends_on == ("create:cluster",)
        assert not any(s.kind.value == "team" for s in plan.steps)

    def test_planning_does_not_mutate(self, provider, store, make_spec):
        PlanEngine(provider, store).plan(make_spec())
        assert provider.calls == []
        assert store.load() == (None, {})

    def test_tokens(self, provider, store, make_spec):
        spec = make_spec()
        plan = PlanEngine(provider, store).plan(spec)
        step = plan.steps[0]
        assert step.token == derive_token(spec.spec_hash(), "create:cluster", "")
        assert len(step.token) == 32

    def test_replanning_is_deterministic(self, provider, store, make_spec):
        spec = make_spec(add_ons=[{"name": "b"}, {"name": "a"}, {"name": "c", "depends_on": ["a"]}])
        first = PlanEngine(provider, store).plan(spec)
        second = PlanEngine(provider, store).plan(spec)
        assert [s.step_id for s in first.steps] == [s.step_id for s in second.steps]
        assert [s.token for s in first.steps] == [s.token for s in second.steps]

    def test_add_on_prerequisite_order(self, provider, store, make_spec):
        spec = make_spec(
            node_groups=[],
            add_ons=[{"name": "alb", "depends_on": ["vpc-cni"]}, {"name": "vpc-cni"}],
        )
        ids = [s.resource_id for s in PlanEngine(provider, store).plan(spec).steps]
        assert ids == ["cluster", "addon/vpc-cni", "addon/alb"]

    def test_render(self, provider, store, make_spec):
        text = PlanEngine(provider, store).plan(make_spec()).render()
        assert "+ create  cluster" in text
        assert "Plan: 2 to create, 0 to update, 0 to delete, 0 unchanged." in text


# ── cycles ───────────────────────────────────────────────────────────


class TestCycles:
    def test_cycle_rejected_before_any_provider_call(self, provider, store, make_spec):
        spec = make_spec(add_ons=[
            {"name": "a", "depends_on": ["b"]},
            {"name": "b", "depends_on": ["a"]},
        ])
        with pytest.raises(PlanConflict) as exc_info:
            PlanEngine(provider, store).plan(spec)
        assert exc_info.value.cycle == ["addon/a", "addon/b", "addon/a"]
        assert provider.describes == []
        assert provider.calls == []

    def test_self_dependency(self, provider, store, make_spec):
        spec = make_spec(add_ons=[{"name": "a", "depends_on": ["a"]}])
        with pytest.raises(PlanConflict):
            PlanEngine(provider, store).plan(spec)


# ── re-plans after apply ─────────────────────────────────────────────


class TestReplan:
    def test_rerun_is_all_noops(self, provider, store, make_spec):
        spec = make_spec(
            add_ons=[{"name": "coredns"}],
            teams=[{"name": "devs", "namespace": "apps", "members": [{"principal": "arn:aws:iam::1:role/d"}]}],
        )
        _apply(provider, store, spec)
        plan = PlanEngine(provider, store).plan(spec)
        assert plan.is_noop
        assert {s.action for s in plan.steps} == {ChangeAction.NOOP}

    def test_resize_is_single_update(self, provider, store, make_spec):
        _apply(provider, store, make_spec())
        bigger = make_spec(node_groups=[
            {"id": "mng1", "instance_type": "t3.medium", "min_size": 1, "max_size": 5, "desired_size": 4},
        ])
        plan = PlanEngine(provider, store).plan(bigger)
        assert [(s.action, s.resource_id) for s in plan.changes] == [
            (ChangeAction.UPDATE, "nodegroup/mng1"),
        ]
        assert plan.changes[0].changed_attributes() == {"desired_size": (2, 4)}

    def test_update_token_differs_from_create_token(self, provider, store, make_spec):
        first = _apply(provider, store, make_spec())
        bigger = make_spec(node_groups=[
            {"id": "mng1", "instance_type": "t3.medium", "min_size": 1, "max_size": 5, "desired_size": 3},
        ])
        update = PlanEngine(provider, store).plan(bigger).changes[0]
        assert update.token != first.steps[1].token

    def test_removed_resources_deleted_dependents_first(self, provider, store, make_spec):
        spec = make_spec(add_ons=[{"name": "vpc-cni"}, {"name": "alb", "depends_on": ["vpc-cni"]}])
        _apply(provider, store, spec)
        plan = PlanEngine(provider, store).plan(make_spec())
        deletes = [s.resource_id for s in plan.changes]
        assert deletes == ["addon/alb", "addon/vpc-cni"]
        assert all(s.action == ChangeAction.DELETE for s in plan.changes)
        assert plan.step("delete:addon/vpc-cni").depends_on == ("delete:addon/alb",)


# ── drift ────────────────────────────────────────────────────────────


class TestDrift:
    def test_drift_refused_without_force(self, provider, store, make_spec):
        spec = make_spec()
        _apply(provider, store, spec)
        provider.tamper("nodegroup/mng1", desired_size=7)
        with pytest.raises(DriftDetected) as exc_info:
            PlanEngine(provider, store).plan(spec)
        assert [i.resource_id for i in exc_info.value.items] == ["nodegroup/mng1"]

    def test_force_reconciles_drift(self, provider, store, make_spec):
        spec = make_spec()
        _apply(provider, store, spec)
        provider.tamper("nodegroup/mng1", desired_size=7)
        plan = PlanEngine(provider, store).plan(spec, force=True)
        step = plan.by_resource()["nodegroup/mng1"]
        assert step.action == ChangeAction.UPDATE
        assert step.reason == "reconcile drift"
        assert [i.resource_id for i in plan.overridden_drift] == ["nodegroup/mng1"]

    def test_force_recreates_missing(self, provider, store, make_spec):
        spec = make_spec()
        _apply(provider, store, spec)
        provider.forget("nodegroup/mng1")
        plan = PlanEngine(provider, store).plan(spec, force=True)
        step = plan.by_resource()["nodegroup/mng1"]
        assert step.action == ChangeAction.CREATE
        assert step.reason == "recreate: missing live"

    def test_missing_and_removed_is_forgotten(self, provider, store, make_spec):
        spec = make_spec(add_ons=[{"name": "coredns"}])
        _apply(provider, store, spec)
        provider.forget("addon/coredns")
        plan = PlanEngine(provider, store).plan(make_spec(), force=True)
        step = plan.by_resource()["addon/coredns"]
        assert step.action == ChangeAction.DELETE
        assert step.forget


# ── teardown ─────────────────────────────────────────────────────────


class TestTeardown:
    def test_reverse_order(self, provider, store, make_spec):
        spec = make_spec(add_ons=[{"name": "coredns"}])
        _apply(provider, store, spec)
        plan = PlanEngine(provider, store).plan_teardown(spec.name)
        assert plan.teardown
        ids = [s.resource_id for s in plan.steps]
        assert ids[-1] == "cluster"
        assert set(ids) == {"cluster", "nodegroup/mng1", "addon/coredns"}
        assert set(plan.step(step_id_for(ChangeAction.DELETE, "cluster")).depends_on) == {
            "delete:addon/coredns", "delete:nodegroup/mng1",
        }

    def test_nothing_recorded(self, provider, store, make_spec):
        plan = PlanEngine(provider, store).plan_teardown(make_spec().name)
        assert plan.steps == []
        assert plan.is_noop
