"""Shared fixtures: spec builders, in-memory provider, isolated state store."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

import pytest

from eks_orchestrator.config.models import ClusterSpec
from eks_orchestrator.provider.memory import InMemoryProvider
from eks_orchestrator.state.store import FileStateStore

ACCOUNT = "123456789012"
REGION = "us-east-1"
CLUSTER = "test-cluster"


def spec_dict(
    *,
    node_groups: Optional[List[Dict[str, Any]]] = None,
    add_ons: Optional[List[Dict[str, Any]]] = None,
    teams: Optional[List[Dict[str, Any]]] = None,
    **overrides: Any,
) -> Dict[str, Any]:
    data: Dict[str, Any] = {
        "name": CLUSTER,
        "account_id": ACCOUNT,
        "region": REGION,
        "network": {"mode": "existing-vpc-id", "vpc_id": "vpc-0abc"},
        "node_groups": node_groups if node_groups is not None else [
            {"id": "mng1", "instance_type": "t3.medium", "min_size": 1, "max_size": 5, "desired_size": 2},
        ],
        "add_ons": add_ons or [],
        "teams": teams or [],
    }
    data.update(overrides)
    return data


@pytest.fixture(autouse=True)
def _isolated_state(tmp_path, monkeypatch):
    """Keep every test away from the real ~/.config."""
    monkeypatch.setenv("EKSO_STATE_DIR", str(tmp_path / "state"))
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "xdg"))


@pytest.fixture
def make_spec():
    def _make(**kwargs: Any) -> ClusterSpec:
        return ClusterSpec.parse(spec_dict(**kwargs))

    return _make


@pytest.fixture
def provider():
    return InMemoryProvider()


@pytest.fixture
def store(tmp_path):
    return FileStateStore(CLUSTER, root=tmp_path / "records-root")
