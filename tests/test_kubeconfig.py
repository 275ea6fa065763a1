"""Tests for eks_orchestrator.provider.kubeconfig."""

from __future__ import annotations

import stat

import yaml

from eks_orchestrator.provider.kubeconfig import (
    build_entry,
    default_kubeconfig_path,
    merge_entry,
    update_kubeconfig,
)

ARN = "arn:aws:eks:us-east-1:123456789012:cluster/test-cluster"


def _entry(arn=ARN, name="test-cluster", profile=None):
    return build_entry(
        cluster_arn=arn,
        cluster_name=name,
        endpoint="https://example.eks.amazonaws.com",
        certificate_authority="Q0VSVA==",
        region="us-east-1",
        profile=profile,
    )


class TestBuildEntry:
    def test_exec_plugin(self):
        entry = _entry()
        exec_cfg = entry["user"]["user"]["exec"]
        assert exec_cfg["command"] == "aws"
        assert exec_cfg["args"][-4:] == ["--cluster-name", "test-cluster", "--output", "json"]
        assert "env" not in exec_cfg
        assert entry["context"]["context"] == {"cluster": ARN, "user": ARN}

    def test_profile_env(self):
        exec_cfg = _entry(profile="dev")["user"]["user"]["exec"]
        assert exec_cfg["env"] == [{"name": "AWS_PROFILE", "value": "dev"}]


class TestMergeEntry:
    def test_empty_config(self):
        merged = merge_entry({}, _entry())
        assert merged["apiVersion"] == "v1"
        assert merged["current-context"] == ARN
        assert [c["name"] for c in merged["clusters"]] == [ARN]

    def test_other_clusters_kept_and_entry_replaced(self):
        other = _entry(arn="arn:other", name="other")
        config = merge_entry(merge_entry({}, other), _entry())
        config = merge_entry(config, _entry())
        assert [c["name"] for c in config["clusters"]] == ["arn:other", ARN]
        assert len(config["users"]) == 2
        assert config["current-context"] == ARN


class TestUpdateKubeconfig:
    def test_writes_file(self, tmp_path):
        path = update_kubeconfig(_entry(), tmp_path / "kube" / "config")
        data = yaml.safe_load(path.read_text())
        assert data["current-context"] == ARN
        assert stat.S_IMODE(path.stat().st_mode) == 0o600

    def test_preserves_existing(self, tmp_path):
        path = tmp_path / "config"
        path.write_text(yaml.safe_dump({"clusters": [{"name": "keep", "cluster": {}}]}))
        update_kubeconfig(_entry(), path)
        data = yaml.safe_load(path.read_text())
        assert [c["name"] for c in data["clusters"]] == ["keep", ARN]

    def test_default_path_from_env(self, tmp_path, monkeypatch):
        monkeypatch.setenv("KUBECONFIG", str(tmp_path / "a") + ":" + str(tmp_path / "b"))
        assert default_kubeconfig_path() == tmp_path / "a"
