"""
Contracts for the external services the pipeline drives.

The pipeline components only depend on these protocols; the Docker and
HTTP implementations live next to this module.
"""
from typing import Dict, Optional, Protocol

from ..models.deployment import (
    BuildArtifact,
    DeploymentSpec,
    HealthCheckResult,
    VulnerabilityReport,
)


class BuildBackend(Protocol):
    def build(
        self,
        context_path: str,
        reference: str,
        dockerfile: str,
        build_args: Dict[str, str],
        labels: Dict[str, str],
    ) -> Optional[str]:
        """Build the image and return its local image ID. Raises BuildError."""
        ...


class RegistryBackend(Protocol):
    def push(self, artifact: BuildArtifact) -> Optional[str]:
        """Push and return the manifest digest. Raises PushError or TransientRegistryError."""
        ...

    def scan(self, artifact: BuildArtifact) -> VulnerabilityReport:
        """Scan the pushed image. Raises ScanError or TransientRegistryError."""
        ...

    def delete(self, artifact: BuildArtifact) -> bool:
        """Delete the image. Returns False when it was already absent."""
        ...


class ClusterBackend(Protocol):
    def apply(self, spec: DeploymentSpec, artifact: BuildArtifact, revision_id: str) -> str:
        """Converge the namespace onto spec/artifact and return the endpoint URL. Raises DeployError."""
        ...


class HealthChecker(Protocol):
    def check(self, url: str, timeout: float) -> HealthCheckResult:
        """Poll url until healthy or timeout; never raises on timeout."""
        ...


class StatusBackend(Protocol):
    def set_status(
        self,
        sha: str,
        state: str,
        description: str,
        target_url: Optional[str] = None,
    ) -> None:
        """Post a commit status (pending, success, failure, error). Raises StatusReportError."""
        ...
