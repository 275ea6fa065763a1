"""Persisted resource records.

One :class:`ResourceRecord` per managed resource, serialized as::

    {
      "attributes": {"desired_size": 2, "instance_type": "t3.medium", ...},
      "depends_on": ["cluster"],
      "kind": "nodegroup",
      "observed": {"desired_size": 2, "status": "ACTIVE", ...},
      "provider_id": "arn:aws:eks:us-east-1:123456789012:nodegroup/...",
      "resource_id": "nodegroup/mng1",
      "spec_hash": "9f2c...",
      "status": "ACTIVE",
      "token": "3b1d...",
      "updated_at": "2026-10-17T18:45:00+00:00"
    }

``attributes`` is what the orchestrator asked for; ``observed`` is what
the provider reported back.  Updates are detected on the former, drift on
the latter.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List

from pydantic import BaseModel, Field


class ResourceKind(str, Enum):
    """Kinds of resource the orchestrator manages."""

    CLUSTER = "cluster"
    NODEGROUP = "nodegroup"
    ADDON = "addon"
    TEAM = "team"


def kind_of(resource_id: str) -> ResourceKind:
    """Return the kind encoded in a resource id (``nodegroup/mng1`` → NODEGROUP)."""
    return ResourceKind(resource_id.split("/", 1)[0])


def _utcnow() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


class ResourceRecord(BaseModel):
    """Maps a logical resource to its provider id and last-observed status."""

    resource_id: str
    kind: ResourceKind
    provider_id: str = ""
    status: str = ""
    attributes: Dict[str, Any] = Field(default_factory=dict)
    observed: Dict[str, Any] = Field(default_factory=dict)
    depends_on: List[str] = Field(default_factory=list)
    spec_hash: str = ""
    token: str = ""
    updated_at: str = Field(default_factory=_utcnow)

    @property
    def name(self) -> str:
        """Resource name without the kind prefix (the cluster's is ``cluster``)."""
        return self.resource_id.split("/", 1)[-1]

    def to_sorted_json(self, indent: int = 2) -> str:
        """Serialise with sorted keys for deterministic output."""
        return json.dumps(
            self.model_dump(mode="json"),
            indent=indent,
            sort_keys=True,
        )
