"""Kubeconfig write-back, the equivalent of ``aws eks update-kubeconfig``.

The entry authenticates through the ``aws eks get-token`` exec plugin, so
no long-lived credentials land on disk.  Existing entries for other
clusters are preserved; the entry for this cluster is replaced and made
the current context.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

logger = logging.getLogger(__name__)

EXEC_API_VERSION = "client.authentication.k8s.io/v1beta1"


def default_kubeconfig_path() -> Path:
    """First entry of ``KUBECONFIG``, else ``~/.kube/config``."""
    env = os.environ.get("KUBECONFIG", "")
    if env:
        return Path(env.split(os.pathsep)[0])
    return Path.home() / ".kube" / "config"


def build_entry(
    *,
    cluster_arn: str,
    cluster_name: str,
    endpoint: str,
    certificate_authority: str,
    region: str,
    profile: Optional[str] = None,
) -> Dict[str, Any]:
    """Return the cluster/user/context triple for one EKS cluster."""
    env: List[Dict[str, str]] = []
    if profile:
        env.append({"name": "AWS_PROFILE", "value": profile})
    exec_cfg: Dict[str, Any] = {
        "apiVersion": EXEC_API_VERSION,
        "command": "aws",
        "args": [
            "--region", region,
            "eks", "get-token",
            "--cluster-name", cluster_name,
            "--output", "json",
        ],
    }
    if env:
        exec_cfg["env"] = env
    user: Dict[str, Any] = {"exec": exec_cfg}
    return {
        "cluster": {
            "name": cluster_arn,
            "cluster": {
                "server": endpoint,
                "certificate-authority-data": certificate_authority,
            },
        },
        "user": {"name": cluster_arn, "user": user},
        "context": {
            "name": cluster_arn,
            "context": {"cluster": cluster_arn, "user": cluster_arn},
        },
    }


def _upsert(items: List[Dict[str, Any]], item: Dict[str, Any]) -> List[Dict[str, Any]]:
    kept = [i for i in items if i.get("name") != item["name"]]
    kept.append(item)
    return kept


def merge_entry(config: Dict[str, Any], entry: Dict[str, Any]) -> Dict[str, Any]:
    """Merge *entry* into a parsed kubeconfig and make it current."""
    merged = dict(config)
    merged.setdefault("apiVersion", "v1")
    merged.setdefault("kind", "Config")
    merged.setdefault("preferences", {})
    merged["clusters"] = _upsert(list(merged.get("clusters") or []), entry["cluster"])
    merged["users"] = _upsert(list(merged.get("users") or []), entry["user"])
    merged["contexts"] = _upsert(list(merged.get("contexts") or []), entry["context"])
    merged["current-context"] = entry["context"]["name"]
    return merged


def update_kubeconfig(entry: Dict[str, Any], path: Optional[str | Path] = None) -> Path:
    """Write *entry* into the kubeconfig at *path* (created if missing)."""
    path = Path(path) if path else default_kubeconfig_path()
    config: Dict[str, Any] = {}
    if path.is_file():
        with open(path, encoding="utf-8") as fh:
            config = yaml.safe_load(fh) or {}

    merged = merge_entry(config, entry)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as fh:
        yaml.safe_dump(merged, fh, default_flow_style=False, sort_keys=False)
    os.chmod(path, 0o600)
    logger.info("Updated context %s in %s", entry["context"]["name"], path)
    return path
