"""
Custom exception hierarchy for the MCP deploy orchestrator.

Each exception carries a context dict for structured logging.
"""


class DeployOrchestratorError(Exception):
    """Base exception for all deploy orchestrator errors."""

    def __init__(self, message: str, context: dict = None):
        self.context = context or {}
        super().__init__(message)


class BuildError(DeployOrchestratorError):
    """Raised when the container image build fails. Never retried."""
    pass


class RegistryError(DeployOrchestratorError):
    """Base exception for container registry operations."""
    pass


class TransientRegistryError(RegistryError):
    """Raised by registry backends on network-level failures worth retrying."""
    pass


class PushError(RegistryError):
    """Raised when pushing an image fails after all retries."""
    pass


class ScanError(RegistryError):
    """Raised when the vulnerability scan cannot be completed."""
    pass


class CleanupError(RegistryError):
    """Raised when deleting an image fails. Logged, never fails a run."""
    pass


class SecurityError(DeployOrchestratorError):
    """Raised when a scan finds vulnerabilities at or above the threshold."""
    pass


class DeployError(DeployOrchestratorError):
    """Raised when applying a deployment to the cluster fails."""
    pass


class HealthCheckTimeout(DeployError):
    """Raised when the health-check endpoint does not become healthy in time."""
    pass


class AcceptanceTestError(DeployError):
    """Raised when post-deploy acceptance checks fail."""
    pass


class ConcurrentDeploymentError(DeployError):
    """Raised when a namespace already has a pending revision."""
    pass


class RollbackError(DeployOrchestratorError):
    """Raised when rollback is impossible or the restored revision fails."""
    pass


class InvalidTransitionError(DeployOrchestratorError):
    """Raised on an illegal pipeline state transition."""
    pass


class StatusReportError(DeployOrchestratorError):
    """Raised when the change-request status API rejects an update."""
    pass


class ConfigurationError(DeployOrchestratorError):
    """Raised when configuration or persisted state is invalid."""
    pass


class ValidationError(DeployOrchestratorError):
    """Raised when input validation fails."""
    pass
