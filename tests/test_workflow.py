"""Tests for the plan/apply/destroy/drift workflows and their exit codes.

The workflows run end to end against the in-memory backend; the spec file
is real YAML on disk, the state store is a real FileStateStore under
tmp_path.
"""

from __future__ import annotations

import json
from unittest.mock import MagicMock

import pytest
import yaml

from conftest import CLUSTER, spec_dict
from eks_orchestrator.errors import (
    Cancelled,
    DriftDetected,
    InvalidSpec,
    PartialFailure,
    PlanConflict,
    ProviderPermanent,
    ProviderTransient,
)
from eks_orchestrator.executor.report import RunReport
from eks_orchestrator.provider.memory import InMemoryProvider
from eks_orchestrator.state.store import FileStateStore
from eks_orchestrator.workflow import (
    EXIT_AWS_FAILURE,
    EXIT_CANCELLED,
    EXIT_DRIFT,
    EXIT_INVALID,
    EXIT_PARTIAL_FAILURE,
    EXIT_SUCCESS,
    exit_code_for,
    open_workspace,
    run_apply,
    run_destroy,
    run_drift_check_workflow,
    run_env,
    run_plan,
    run_show_state,
    run_vpc_check,
    run_vpc_details,
)


def _no_sleep(_seconds):
    return None


def _write_spec(tmp_path, **kwargs):
    path = tmp_path / "cluster.yaml"
    path.write_text(yaml.safe_dump({
        "cluster": spec_dict(**kwargs),
        "provider": {"backend": "memory"},
        "orchestrator": {"base_delay": 0, "state_dir": str(tmp_path / "state-root")},
    }))
    return path


class _CancellingProvider(InMemoryProvider):
    def create_cluster(self, spec, request):
        record = super().create_cluster(spec, request)
        request.cancel.cancel()
        return record


@pytest.fixture
def spec_path(tmp_path):
    return _write_spec(tmp_path, add_ons=[{"name": "coredns"}])


@pytest.fixture
def ws(spec_path):
    return open_workspace(spec_path)


# ── Exit code constants ─────────────────────────────────────────────────


class TestExitCodes:
    def test_values(self):
        assert (EXIT_SUCCESS, EXIT_INVALID, EXIT_AWS_FAILURE) == (0, 1, 2)
        assert (EXIT_DRIFT, EXIT_PARTIAL_FAILURE, EXIT_CANCELLED) == (3, 4, 5)

    def test_mapping(self):
        report = RunReport(cluster_name="c", spec_hash="h")
        assert exit_code_for(Cancelled(report)) == EXIT_CANCELLED
        assert exit_code_for(PartialFailure(report)) == EXIT_PARTIAL_FAILURE
        assert exit_code_for(DriftDetected([])) == EXIT_DRIFT
        assert exit_code_for(InvalidSpec("bad")) == EXIT_INVALID
        assert exit_code_for(PlanConflict("cycle", cycle=["a", "b", "a"])) == EXIT_INVALID
        assert exit_code_for(ProviderTransient("x")) == EXIT_AWS_FAILURE
        assert exit_code_for(RuntimeError("no credentials")) == EXIT_AWS_FAILURE


# ── open_workspace ───────────────────────────────────────────────────────


class TestOpenWorkspace:
    def test_memory_backend_and_state_dir(self, ws, tmp_path):
        assert isinstance(ws.provider, InMemoryProvider)
        assert isinstance(ws.store, FileStateStore)
        assert ws.store.path == tmp_path / "state-root" / CLUSTER
        assert ws.cluster.name == CLUSTER

    def test_backend_override(self, tmp_path):
        path = tmp_path / "eks.yaml"
        path.write_text(yaml.safe_dump({"cluster": spec_dict(), "provider": {"backend": "eks"}}))
        ws = open_workspace(path, backend="memory")
        assert ws.spec_file.provider.backend == "memory"
        assert isinstance(ws.provider, InMemoryProvider)

    def test_memory_backend_picks_up_earlier_runs(self, spec_path):
        first = open_workspace(spec_path)
        assert run_apply(spec_path, workspace=first, sleep_fn=_no_sleep) == EXIT_SUCCESS

        # A later invocation builds a new fake from the same state directory.
        second = open_workspace(spec_path)
        assert second.provider is not first.provider
        assert sorted(second.provider.resources) == ["addon/coredns", "cluster", "nodegroup/mng1"]
        assert run_apply(spec_path, workspace=second, sleep_fn=_no_sleep) == EXIT_SUCCESS
        assert second.provider.calls == []
        assert run_drift_check_workflow(spec_path, workspace=second) == EXIT_SUCCESS

    def test_executor_uses_orchestrator_settings(self, ws):
        executor = ws.executor()
        assert executor.max_workers == 4
        assert executor.retry.base_delay == 0


# ── plan ─────────────────────────────────────────────────────────────────


class TestRunPlan:
    def test_fresh_plan(self, ws, spec_path):
        assert run_plan(spec_path, workspace=ws) == EXIT_SUCCESS
        assert ws.provider.calls == []

    def test_json_output(self, ws, spec_path, capsys):
        assert run_plan(spec_path, workspace=ws, as_json=True) == EXIT_SUCCESS
        data = json.loads(capsys.readouterr().out)
        assert data["counts"]["create"] == 3
        assert [s["resource_id"] for s in data["steps"]] == ["cluster", "addon/coredns", "nodegroup/mng1"]

    def test_missing_file(self, tmp_path):
        assert run_plan(tmp_path / "nope.yaml") == EXIT_INVALID

    def test_invalid_spec(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text(yaml.safe_dump({"cluster": spec_dict(node_groups=[
            {"id": "mng1", "min_size": 3, "max_size": 1, "desired_size": 2},
        ])}))
        assert run_plan(path) == EXIT_INVALID

    def test_malformed_yaml(self, tmp_path):
        path = tmp_path / "broken.yaml"
        path.write_text("cluster: {name: [unclosed\n")
        assert run_plan(path) == EXIT_INVALID
        assert run_apply(path) == EXIT_INVALID
        assert run_destroy(path) == EXIT_INVALID
        assert run_drift_check_workflow(path) == EXIT_INVALID

    def test_cycle(self, tmp_path):
        path = _write_spec(tmp_path, add_ons=[
            {"name": "a", "depends_on": ["b"]},
            {"name": "b", "depends_on": ["a"]},
        ])
        assert run_plan(path) == EXIT_INVALID


# ── apply ────────────────────────────────────────────────────────────────


class TestRunApply:
    def test_apply_then_noop(self, ws, spec_path):
        assert run_apply(spec_path, workspace=ws, sleep_fn=_no_sleep) == EXIT_SUCCESS
        calls = len(ws.provider.calls)
        assert calls == 3
        assert run_apply(spec_path, workspace=ws, sleep_fn=_no_sleep) == EXIT_SUCCESS
        assert len(ws.provider.calls) == calls

    def test_run_report_written(self, ws, spec_path):
        run_apply(spec_path, workspace=ws, sleep_fn=_no_sleep)
        reports = list((ws.store.path / "reports").glob("run_*.json"))
        assert len(reports) == 1
        assert json.loads(reports[0].read_text())["outcome"] == "SUCCEEDED"

    def test_declined_confirmation(self, ws, spec_path):
        confirm = MagicMock(return_value=False)
        assert run_apply(spec_path, workspace=ws, confirm=confirm) == EXIT_SUCCESS
        confirm.assert_called_once()
        assert ws.provider.calls == []

    def test_partial_failure(self, ws, spec_path):
        ws.provider.fail("addon/coredns", ProviderPermanent)
        assert run_apply(spec_path, workspace=ws, sleep_fn=_no_sleep) == EXIT_PARTIAL_FAILURE
        # Resume converges.
        assert run_apply(spec_path, workspace=ws, sleep_fn=_no_sleep) == EXIT_SUCCESS
        assert "addon/coredns" in ws.store.load()[1]

    def test_drift_refused_then_forced(self, ws, spec_path):
        run_apply(spec_path, workspace=ws, sleep_fn=_no_sleep)
        ws.provider.tamper("nodegroup/mng1", max_size=9)
        assert run_apply(spec_path, workspace=ws, sleep_fn=_no_sleep) == EXIT_DRIFT
        assert run_apply(spec_path, workspace=ws, force=True, sleep_fn=_no_sleep) == EXIT_SUCCESS
        assert ws.provider.describe_node_group(CLUSTER, "mng1").observed["max_size"] == 5

    def test_cancelled(self, spec_path):
        ws = open_workspace(spec_path, provider=_CancellingProvider())
        assert run_apply(spec_path, workspace=ws, sleep_fn=_no_sleep) == EXIT_CANCELLED
        assert list(ws.store.load()[1]) == ["cluster"]

    def test_json_report(self, ws, spec_path, capsys):
        assert run_apply(spec_path, workspace=ws, as_json=True, sleep_fn=_no_sleep) == EXIT_SUCCESS
        data = json.loads(capsys.readouterr().out)
        assert data["outcome"] == "SUCCEEDED"


# ── destroy ──────────────────────────────────────────────────────────────


class TestRunDestroy:
    def test_nothing_recorded(self, ws, spec_path):
        assert run_destroy(spec_path, workspace=ws) == EXIT_SUCCESS
        assert ws.provider.calls == []

    def test_destroy_after_apply(self, ws, spec_path):
        run_apply(spec_path, workspace=ws, sleep_fn=_no_sleep)
        assert run_destroy(spec_path, workspace=ws, sleep_fn=_no_sleep) == EXIT_SUCCESS
        assert ws.provider.resources == {}
        assert ws.store.load() == (None, {})

    def test_declined(self, ws, spec_path):
        run_apply(spec_path, workspace=ws, sleep_fn=_no_sleep)
        assert run_destroy(spec_path, workspace=ws, confirm=lambda _p: False) == EXIT_SUCCESS
        assert "cluster" in ws.provider.resources


# ── drift / state ────────────────────────────────────────────────────────


class TestRunDriftCheck:
    def test_clean(self, ws, spec_path):
        run_apply(spec_path, workspace=ws, sleep_fn=_no_sleep)
        assert run_drift_check_workflow(spec_path, workspace=ws) == EXIT_SUCCESS

    def test_missing_resource(self, ws, spec_path):
        run_apply(spec_path, workspace=ws, sleep_fn=_no_sleep)
        ws.provider.forget("addon/coredns")
        assert run_drift_check_workflow(spec_path, workspace=ws) == EXIT_DRIFT

    def test_describe_failure(self, ws, spec_path):
        run_apply(spec_path, workspace=ws, sleep_fn=_no_sleep)
        ws.provider.describe_add_on = MagicMock(side_effect=ProviderTransient("throttled"))
        assert run_drift_check_workflow(spec_path, workspace=ws) == EXIT_AWS_FAILURE

    def test_drift_json(self, ws, spec_path, capsys):
        run_apply(spec_path, workspace=ws, sleep_fn=_no_sleep)
        capsys.readouterr()
        ws.provider.tamper("cluster", kubernetes_version="1.24")
        assert run_drift_check_workflow(spec_path, workspace=ws, as_json=True) == EXIT_DRIFT
        data = json.loads(capsys.readouterr().out)
        assert data["has_drift"] is True


class TestRunShowState:
    def test_json(self, ws, spec_path, capsys):
        run_apply(spec_path, workspace=ws, sleep_fn=_no_sleep)
        capsys.readouterr()
        assert run_show_state(spec_path, as_json=True, store=ws.store) == EXIT_SUCCESS
        data = json.loads(capsys.readouterr().out)
        assert data["cluster_name"] == CLUSTER
        assert [r["resource_id"] for r in data["records"]] == ["addon/coredns", "cluster", "nodegroup/mng1"]
        assert data["spec_hash"] == ws.cluster.spec_hash()

    def test_reads_store_from_spec_settings(self, spec_path):
        assert run_show_state(spec_path) == EXIT_SUCCESS

    def test_invalid_spec(self, tmp_path):
        assert run_show_state(tmp_path / "missing.yaml") == EXIT_INVALID


# ── env / vpc ────────────────────────────────────────────────────────────


class TestNetworkWorkflows:
    def test_env(self, tmp_path):
        ctx = MagicMock(account_id="123456789012", region="us-west-2", profile=None)
        assert run_env(tmp_path / ".env", aws_ctx=ctx) == EXIT_SUCCESS
        assert "CDK_DEFAULT_REGION=us-west-2" in (tmp_path / ".env").read_text()

    def test_vpc_details_missing(self):
        ec2 = MagicMock()
        ec2.describe_vpcs.return_value = {"Vpcs": []}
        assert run_vpc_details("vpc-x", ec2_client=ec2) == EXIT_INVALID

    def test_vpc_check_not_ready(self):
        ec2 = MagicMock()
        ec2.get_paginator.return_value.paginate.return_value = [{"Subnets": []}]
        assert run_vpc_check("vpc-1", ec2_client=ec2) == EXIT_INVALID
