"""Helm CLI wrapper for chart-based add-ons.

Wraps ``helm`` as a subprocess so the orchestrator never reimplements
chart rendering.  ``helm upgrade --install`` is idempotent by release
name, which is what makes helm add-on steps safe to retry.
"""

from __future__ import annotations

import json
import logging
import os
import re
import subprocess
import tempfile
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import yaml

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

#: Fragments of helm stderr that indicate a retryable condition.
TRANSIENT_MARKERS = (
    "another operation (install/upgrade/rollback) is in progress",
    "timed out waiting for the condition",
    "connection refused",
    "i/o timeout",
    "tls handshake timeout",
    "the server is currently unable to handle the request",
)

RELEASE_NOT_FOUND = "release: not found"

DEFAULT_TIMEOUT = "10m"

_CHART_VERSION_RE = re.compile(r"-(v?\d+(?:\.\d+)*(?:[-+][0-9A-Za-z.]+)?)$")

# ---------------------------------------------------------------------------
# Result dataclass
# ---------------------------------------------------------------------------


@dataclass
class HelmResult:
    """Parsed outcome of a ``helm`` CLI invocation."""

    command: str
    returncode: int
    stdout: str = ""
    stderr: str = ""
    json_body: Dict[str, Any] = field(default_factory=dict)

    @property
    def success(self) -> bool:
        return self.returncode == 0

    @property
    def transient(self) -> bool:
        text = self.stderr.lower()
        return any(marker in text for marker in TRANSIENT_MARKERS)

    @property
    def not_found(self) -> bool:
        return RELEASE_NOT_FOUND in self.stderr.lower()

    @property
    def chart_version(self) -> str:
        return str(self.json_body.get("chart", {}).get("metadata", {}).get("version", ""))

    @property
    def status(self) -> str:
        return str(self.json_body.get("info", {}).get("status", ""))


# ---------------------------------------------------------------------------
# Runner
# ---------------------------------------------------------------------------


class HelmError(RuntimeError):
    """A helm invocation failed; carries the :class:`HelmResult`."""

    def __init__(self, result: HelmResult) -> None:
        super().__init__(
            f"{result.command} failed (rc={result.returncode}): {result.stderr or result.stdout}"
        )
        self.result = result


class HelmRunner:
    """Runs helm against one kubeconfig."""

    def __init__(
        self,
        *,
        binary: str = "helm",
        kubeconfig: Optional[str] = None,
        kube_context: Optional[str] = None,
        profile: Optional[str] = None,
    ) -> None:
        self.binary = binary
        self.kubeconfig = kubeconfig
        self.kube_context = kube_context
        self.profile = profile

    def _run(self, args: List[str]) -> HelmResult:
        cmd = [self.binary, *args]
        if self.kubeconfig:
            cmd += ["--kubeconfig", self.kubeconfig]
        if self.kube_context:
            cmd += ["--kube-context", self.kube_context]
        env = {**os.environ}
        # The kubeconfig exec plugin calls ``aws eks get-token``.
        if self.profile:
            env["AWS_PROFILE"] = self.profile

        logger.info("Running: %s", " ".join(cmd))

        try:
            proc = subprocess.run(cmd, capture_output=True, text=True, env=env)
        except FileNotFoundError:
            return HelmResult(
                command=" ".join(cmd),
                returncode=127,
                stderr=f"{self.binary} CLI not found on PATH",
            )

        result = HelmResult(
            command=" ".join(cmd),
            returncode=proc.returncode,
            stdout=proc.stdout.strip(),
            stderr=proc.stderr.strip(),
        )
        try:
            parsed = json.loads(result.stdout) if result.stdout else {}
        except json.JSONDecodeError:
            parsed = {}
        # ``helm list`` prints a JSON array.
        result.json_body = parsed if isinstance(parsed, dict) else {"items": parsed}
        return result

    # -- public API -------------------------------------------------------

    def upgrade_install(
        self,
        release: str,
        chart: str,
        *,
        repository: str,
        namespace: str,
        version: Optional[str] = None,
        values: Optional[Dict[str, Any]] = None,
        timeout: str = DEFAULT_TIMEOUT,
    ) -> HelmResult:
        """``helm upgrade --install`` *release* and wait for it to be ready."""
        args = [
            "upgrade", "--install", release, chart,
            "--repo", repository,
            "--namespace", namespace,
            "--create-namespace",
            "--wait",
            "--timeout", timeout,
            "--output", "json",
        ]
        chart_version = helm_version_constraint(version)
        if chart_version:
            args += ["--version", chart_version]

        values_path = None
        if values:
            with tempfile.NamedTemporaryFile(
                "w", suffix=".yaml", prefix=f"{release}-values-", delete=False,
            ) as fh:
                yaml.safe_dump(values, fh, default_flow_style=False, sort_keys=True)
                values_path = fh.name
            args += ["--values", values_path]

        try:
            result = self._run(args)
        finally:
            if values_path:
                os.unlink(values_path)

        if result.success:
            logger.info("Helm release %s at chart %s", release, result.chart_version or "?")
        else:
            logger.error(
                "helm upgrade failed for %s (rc=%d): %s",
                release, result.returncode, result.stderr or "(no stderr)",
            )
        return result

    def find_release(self, release: str) -> Optional[Dict[str, Any]]:
        """Look *release* up across all namespaces; None if it is not installed."""
        result = self._run([
            "list", "--all-namespaces", "--filter", f"^{release}$", "--output", "json",
        ])
        if not result.success:
            raise HelmError(result)
        for item in result.json_body.get("items", []):
            if item.get("name") == release:
                return item
        return None

    def uninstall(self, release: str, *, namespace: str) -> HelmResult:
        """``helm uninstall``; a missing release counts as success."""
        result = self._run(["uninstall", release, "--namespace", namespace, "--wait"])
        if result.not_found:
            logger.info("Helm release %s already absent", release)
            return HelmResult(command=result.command, returncode=0, stderr=result.stderr)
        return result


def helm_version_constraint(version: Optional[str]) -> Optional[str]:
    """Translate an add-on version constraint into ``helm --version`` syntax.

    ``latest`` means no pin; globs become semver wildcards
    (``v1.10.*`` → ``1.10.x``).
    """
    if not version or version == "latest":
        return None
    if "*" in version:
        return version.lstrip("v").replace("*", "x")
    return version


def chart_version_of(chart: str) -> str:
    """``cluster-autoscaler-9.29.0`` → ``9.29.0`` (as printed by ``helm list``)."""
    match = _CHART_VERSION_RE.search(chart or "")
    return match.group(1) if match else ""
