"""Tests for eks_orchestrator.provider.helm: subprocess mocked."""

from __future__ import annotations

import json
from unittest.mock import MagicMock, patch

import pytest
import yaml

from eks_orchestrator.provider.helm import (
    HelmError,
    HelmResult,
    HelmRunner,
    chart_version_of,
    helm_version_constraint,
)


# ── helpers ──────────────────────────────────────────────────────────────


def _completed(stdout: str = "", stderr: str = "", rc: int = 0):
    """Return a mock subprocess.CompletedProcess."""
    cp = MagicMock()
    cp.returncode = rc
    cp.stdout = stdout
    cp.stderr = stderr
    return cp


def _release_json(version="9.29.3", status="deployed") -> str:
    return json.dumps({
        "name": "cluster-autoscaler",
        "chart": {"metadata": {"version": version}},
        "info": {"status": status},
    })


# ── HelmResult ───────────────────────────────────────────────────────────


class TestHelmResult:
    def test_defaults(self):
        r = HelmResult(command="helm foo", returncode=1)
        assert r.success is False
        assert r.json_body == {}
        assert r.chart_version == ""

    def test_transient_markers(self):
        r = HelmResult(command="helm", returncode=1, stderr="Error: I/O Timeout talking to server")
        assert r.transient
        assert not HelmResult(command="helm", returncode=1, stderr="chart not found").transient

    def test_not_found(self):
        r = HelmResult(command="helm", returncode=1, stderr="Error: uninstall: Release: not found")
        assert r.not_found


# ── version helpers ──────────────────────────────────────────────────────


class TestVersionHelpers:
    def test_latest_is_unpinned(self):
        assert helm_version_constraint("latest") is None
        assert helm_version_constraint(None) is None

    def test_glob_to_semver_range(self):
        assert helm_version_constraint("v1.10.*") == "1.10.x"

    def test_exact_passthrough(self):
        assert helm_version_constraint("9.29.3") == "9.29.3"

    def test_chart_version_of(self):
        assert chart_version_of("cluster-autoscaler-9.29.0") == "9.29.0"
        assert chart_version_of("aws-load-balancer-controller-1.6.2") == "1.6.2"
        assert chart_version_of("nover") == ""


# ── upgrade_install ──────────────────────────────────────────────────────


class TestUpgradeInstall:
    @patch("eks_orchestrator.provider.helm.subprocess.run")
    def test_success(self, mock_run):
        mock_run.return_value = _completed(stdout=_release_json())
        runner = HelmRunner(kubeconfig="/tmp/kc", kube_context="arn:ctx", profile="dev")

        result = runner.upgrade_install(
            "cluster-autoscaler", "cluster-autoscaler",
            repository="https://kubernetes.github.io/autoscaler",
            namespace="kube-system",
            version="9.29.*",
        )

        assert result.success
        assert result.chart_version == "9.29.3"
        assert result.status == "deployed"
        cmd = mock_run.call_args.args[0]
        assert cmd[:4] == ["helm", "upgrade", "--install", "cluster-autoscaler"]
        assert cmd[cmd.index("--version") + 1] == "9.29.x"
        assert cmd[cmd.index("--kube-context") + 1] == "arn:ctx"
        assert "--wait" in cmd
        assert mock_run.call_args.kwargs["env"]["AWS_PROFILE"] == "dev"

    @patch("eks_orchestrator.provider.helm.subprocess.run")
    def test_values_file_written_and_removed(self, mock_run):
        seen = {}

        def _run(cmd, **kwargs):
            path = cmd[cmd.index("--values") + 1]
            with open(path, encoding="utf-8") as fh:
                seen["values"] = yaml.safe_load(fh)
            seen["path"] = path
            return _completed(stdout=_release_json())

        mock_run.side_effect = _run
        HelmRunner().upgrade_install(
            "x", "x", repository="https://r", namespace="ns", values={"replicas": 2},
        )
        assert seen["values"] == {"replicas": 2}
        with pytest.raises(FileNotFoundError):
            open(seen["path"], encoding="utf-8")

    @patch("eks_orchestrator.provider.helm.subprocess.run")
    def test_failure(self, mock_run):
        mock_run.return_value = _completed(stderr="Error: chart not found", rc=1)
        result = HelmRunner().upgrade_install("x", "x", repository="https://r", namespace="ns")
        assert not result.success
        assert result.stderr == "Error: chart not found"

    @patch("eks_orchestrator.provider.helm.subprocess.run", side_effect=FileNotFoundError)
    def test_binary_missing(self, _mock_run):
        result = HelmRunner(binary="helm3").upgrade_install(
            "x", "x", repository="https://r", namespace="ns",
        )
        assert result.returncode == 127
        assert "helm3 CLI not found" in result.stderr


# ── find_release / uninstall ─────────────────────────────────────────────


class TestFindRelease:
    @patch("eks_orchestrator.provider.helm.subprocess.run")
    def test_found(self, mock_run):
        mock_run.return_value = _completed(stdout=json.dumps([
            {"name": "cluster-autoscaler-extra", "namespace": "a"},
            {"name": "cluster-autoscaler", "namespace": "kube-system", "chart": "cluster-autoscaler-9.29.0"},
        ]))
        release = HelmRunner().find_release("cluster-autoscaler")
        assert release["namespace"] == "kube-system"

    @patch("eks_orchestrator.provider.helm.subprocess.run")
    def test_absent(self, mock_run):
        mock_run.return_value = _completed(stdout="[]")
        assert HelmRunner().find_release("x") is None

    @patch("eks_orchestrator.provider.helm.subprocess.run")
    def test_list_failure_raises(self, mock_run):
        mock_run.return_value = _completed(stderr="Kubernetes cluster unreachable", rc=1)
        with pytest.raises(HelmError) as exc_info:
            HelmRunner().find_release("x")
        assert exc_info.value.result.returncode == 1


class TestUninstall:
    @patch("eks_orchestrator.provider.helm.subprocess.run")
    def test_missing_release_is_success(self, mock_run):
        mock_run.return_value = _completed(stderr="Error: uninstall: Release not loaded: x: release: not found", rc=1)
        assert HelmRunner().uninstall("x", namespace="ns").success

    @patch("eks_orchestrator.provider.helm.subprocess.run")
    def test_uninstall(self, mock_run):
        mock_run.return_value = _completed(stdout="release \"x\" uninstalled")
        result = HelmRunner().uninstall("x", namespace="ns")
        assert result.success
        assert mock_run.call_args.args[0][:5] == ["helm", "uninstall", "x", "--namespace", "ns"]
