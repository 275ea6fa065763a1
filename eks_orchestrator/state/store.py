"""Persistent storage for resource records and the last-applied spec.

Writes JSON under ``~/.config/eks-orchestrator/<cluster>/``
(``EKSO_STATE_DIR`` or ``XDG_CONFIG_HOME`` override the root).

Layout::

    <root>/<cluster>/spec.json                    last-applied ClusterSpec
    <root>/<cluster>/records/<kind>__<name>.json  one ResourceRecord each
    <root>/<cluster>/reports/run_<id>.json        one RunReport per apply/destroy

Every file is written to a temporary sibling and moved into place with
``os.replace`` so a crash leaves either the old or the new record, never
a torn one.  All JSON is serialised with **sorted keys**.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Optional, Tuple

from eks_orchestrator.config.models import ClusterSpec
from eks_orchestrator.state.models import ResourceRecord

logger = logging.getLogger(__name__)

_APP_DIR = "eks-orchestrator"
_SPEC_FILE = "spec.json"
_RECORDS_DIR = "records"
_REPORTS_DIR = "reports"


# ---------------------------------------------------------------------------
# Directory resolution
# ---------------------------------------------------------------------------


def config_dir() -> Path:
    """Return the state root directory.

    Uses ``EKSO_STATE_DIR`` if set, else ``XDG_CONFIG_HOME/eks-orchestrator``,
    else ``~/.config/eks-orchestrator``.  Creates the directory if needed.
    """
    override = os.environ.get("EKSO_STATE_DIR", "")
    if override:
        path = Path(override)
    else:
        base = os.environ.get("XDG_CONFIG_HOME", "")
        if not base:
            base = str(Path.home() / ".config")
        path = Path(base) / _APP_DIR
    path.mkdir(parents=True, exist_ok=True)
    return path


def _safe_name(name: str) -> str:
    """Sanitise a cluster name or resource id for use in a filename."""
    if not name:
        return "unknown"
    name = name.replace("/", "__")
    return "".join(c if (c.isalnum() or c in "-_.") else "_" for c in name)


def _atomic_write(dest: Path, payload: str) -> None:
    dest.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(dir=dest.parent, prefix=f".{dest.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            fh.write(payload)
            fh.flush()
            os.fsync(fh.fileno())
        os.replace(tmp, dest)
    except BaseException:
        if os.path.exists(tmp):
            os.unlink(tmp)
        raise


# ---------------------------------------------------------------------------
# Store contract
# ---------------------------------------------------------------------------


class StateStore(ABC):
    """Durable home of :class:`ResourceRecord` objects for one cluster."""

    @abstractmethod
    def load(self) -> Tuple[Optional[ClusterSpec], Dict[str, ResourceRecord]]:
        """Return the last-applied spec (or None) and records keyed by resource id."""

    @abstractmethod
    def save(self, record: ResourceRecord) -> None:
        """Durably write one record, replacing any previous version."""

    @abstractmethod
    def remove(self, resource_id: str) -> None:
        """Forget a record (no-op if absent)."""

    @abstractmethod
    def snapshot_spec(self, spec: ClusterSpec) -> None:
        """Record *spec* as the last fully applied spec."""

    @abstractmethod
    def clear_spec(self) -> None:
        """Forget the last-applied spec (after teardown)."""


# ---------------------------------------------------------------------------
# File-backed implementation
# ---------------------------------------------------------------------------


class FileStateStore(StateStore):
    """JSON-file store, one file per record."""

    def __init__(self, cluster_name: str, *, root: Optional[Path] = None) -> None:
        self.cluster_name = cluster_name
        base = Path(root) if root is not None else config_dir()
        self.path = base / _safe_name(cluster_name)
        self._lock = threading.Lock()

    @property
    def records_dir(self) -> Path:
        return self.path / _RECORDS_DIR

    def record_path(self, resource_id: str) -> Path:
        return self.records_dir / f"{_safe_name(resource_id)}.json"

    # -- reads ------------------------------------------------------------

    def load(self) -> Tuple[Optional[ClusterSpec], Dict[str, ResourceRecord]]:
        with self._lock:
            spec: Optional[ClusterSpec] = None
            spec_path = self.path / _SPEC_FILE
            if spec_path.is_file():
                data = json.loads(spec_path.read_text(encoding="utf-8"))
                spec = ClusterSpec.model_validate(data["spec"])

            records: Dict[str, ResourceRecord] = {}
            if self.records_dir.is_dir():
                for path in sorted(self.records_dir.glob("*.json")):
                    rec = ResourceRecord.model_validate_json(
                        path.read_text(encoding="utf-8"),
                    )
                    records[rec.resource_id] = rec
        logger.debug(
            "Loaded state for %s: spec=%s records=%d",
            self.cluster_name, "yes" if spec else "no", len(records),
        )
        return spec, records

    # -- writes -----------------------------------------------------------

    def save(self, record: ResourceRecord) -> None:
        with self._lock:
            _atomic_write(self.record_path(record.resource_id), record.to_sorted_json() + "\n")
        logger.debug("Saved record %s (%s)", record.resource_id, record.status)

    def remove(self, resource_id: str) -> None:
        with self._lock:
            path = self.record_path(resource_id)
            if path.exists():
                path.unlink()
        logger.debug("Removed record %s", resource_id)

    def snapshot_spec(self, spec: ClusterSpec) -> None:
        payload = json.dumps(
            {"spec": spec.model_dump(mode="json"), "spec_hash": spec.spec_hash()},
            indent=2,
            sort_keys=True,
        )
        with self._lock:
            _atomic_write(self.path / _SPEC_FILE, payload + "\n")
        logger.info("Spec snapshot written to %s", self.path / _SPEC_FILE)

    def clear_spec(self) -> None:
        with self._lock:
            spec_path = self.path / _SPEC_FILE
            if spec_path.exists():
                spec_path.unlink()
        logger.debug("Cleared spec snapshot for %s", self.cluster_name)

    # -- run reports ------------------------------------------------------

    def write_report(self, run_id: str, payload: str) -> Path:
        """Persist a serialised run report and return the written path.

        Path pattern: ``<root>/<cluster>/reports/run_<run_id>.json``
        """
        dest = self.path / _REPORTS_DIR / f"run_{_safe_name(run_id)}.json"
        with self._lock:
            _atomic_write(dest, payload.rstrip("\n") + "\n")
        logger.info("Run report written to %s", dest)
        return dest
