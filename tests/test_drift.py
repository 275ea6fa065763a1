"""Tests for drift detection against recorded resources."""

from __future__ import annotations

from unittest.mock import MagicMock

from eks_orchestrator.errors import ProviderTransient
from eks_orchestrator.state.drift import (
    DriftItem,
    DriftReport,
    DriftStatus,
    check_record_drift,
    diff_observed,
    run_drift_check,
)
from eks_orchestrator.state.models import ResourceRecord, kind_of


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _record(rid="nodegroup/mng1", status="ACTIVE", **observed) -> ResourceRecord:
    return ResourceRecord(
        resource_id=rid,
        kind=kind_of(rid),
        provider_id=f"id-{rid}",
        status=status,
        observed=observed,
    )


def _provider(live):
    p = MagicMock()
    p.describe_resource.return_value = live
    return p


# ---------------------------------------------------------------------------
# DriftItem / DriftReport dataclass basics
# ---------------------------------------------------------------------------


class TestDriftDataclasses:
    def test_item_defaults(self):
        item = DriftItem(resource_id="cluster", status=DriftStatus.OK)
        assert item.expected == {}
        assert item.actual == {}
        assert item.error == ""
        assert not item.drifted

    def test_missing_counts_as_drift(self):
        assert DriftItem(resource_id="x", status=DriftStatus.MISSING).drifted

    def test_report_flags(self):
        r = DriftReport(cluster_name="c", items=[
            DriftItem(resource_id="a", status=DriftStatus.OK),
            DriftItem(resource_id="b", status=DriftStatus.ERROR, error="boom"),
        ])
        assert not r.has_drift
        assert r.has_errors
        assert [i.resource_id for i in r.errors] == ["b"]

    def test_to_dict_sorted(self):
        r = DriftReport(cluster_name="c", items=[
            DriftItem(resource_id="team/z", status=DriftStatus.OK),
            DriftItem(resource_id="addon/a", status=DriftStatus.DRIFTED,
                      expected={"version": "1"}, actual={"version": "2"}),
        ])
        d = r.to_dict()
        assert d["has_drift"] is True
        assert [i["resource_id"] for i in d["items"]] == ["addon/a", "team/z"]
        assert d["items"][0]["status"] == "DRIFTED"


# ---------------------------------------------------------------------------
# diff_observed
# ---------------------------------------------------------------------------


class TestDiffObserved:
    def test_only_shared_keys_compared(self):
        assert diff_observed({"a": 1, "b": 2}, {"a": 1, "c": 3}) == {}

    def test_changed_key(self):
        assert diff_observed({"a": 1}, {"a": 2}) == {"a": (1, 2)}


# ---------------------------------------------------------------------------
# check_record_drift
# ---------------------------------------------------------------------------


class TestCheckRecordDrift:
    def test_ok(self):
        rec = _record(desired_size=2)
        item = check_record_drift(_provider(_record(desired_size=2)), "c", rec)
        assert item.status == DriftStatus.OK
        assert item.live is not None

    def test_missing(self):
        item = check_record_drift(_provider(None), "c", _record())
        assert item.status == DriftStatus.MISSING
        assert item.actual == {"status": "<not found>"}

    def test_unhealthy_status(self):
        item = check_record_drift(_provider(_record(status="DEGRADED")), "c", _record())
        assert item.status == DriftStatus.DRIFTED
        assert item.actual == {"status": "DEGRADED"}

    def test_attribute_drift(self):
        live = _record(desired_size=4, instance_type="t3.medium")
        rec = _record(desired_size=2, instance_type="t3.medium")
        item = check_record_drift(_provider(live), "c", rec)
        assert item.status == DriftStatus.DRIFTED
        assert item.expected == {"desired_size": 2}
        assert item.actual == {"desired_size": 4}

    def test_provider_error(self):
        p = MagicMock()
        p.describe_resource.side_effect = ProviderTransient("throttled", resource_id="cluster")
        item = check_record_drift(p, "c", _record("cluster"))
        assert item.status == DriftStatus.ERROR
        assert "throttled" in item.error
        assert isinstance(item.exc, ProviderTransient)


# ---------------------------------------------------------------------------
# run_drift_check
# ---------------------------------------------------------------------------


class TestRunDriftCheck:
    def test_all_records_checked_in_order(self):
        p = MagicMock()
        p.describe_resource.side_effect = lambda name, rec: rec
        records = {rid: _record(rid) for rid in ["team/t", "cluster", "addon/a"]}
        report = run_drift_check(p, records, cluster_name="c")
        assert [i.resource_id for i in report.items] == ["addon/a", "cluster", "team/t"]
        assert not report.has_drift

    def test_against_memory_provider(self, provider, make_spec):
        from eks_orchestrator.provider.base import ProviderRequest

        spec = make_spec()
        live = provider.create_cluster(spec, ProviderRequest(token="t1"))
        provider.tamper("cluster", kubernetes_version="1.26")
        report = run_drift_check(provider, {"cluster": live}, cluster_name=spec.name)
        assert report.has_drift
        assert report.items[0].actual == {"kubernetes_version": "1.26"}

    def test_empty(self):
        report = run_drift_check(MagicMock(), {}, cluster_name="")
        assert report.cluster_name == "unknown"
        assert report.items == []
