"""
Wires the pipeline components to the Docker and HTTP backends.
"""
from typing import Optional

import docker

from ..backends.docker_backend import DockerBuildBackend, DockerClusterBackend
from ..backends.health import HttpHealthChecker
from ..backends.registry_backend import DockerRegistryBackend
from ..backends.status_backend import GitHubStatusBackend, LoggingStatusBackend
from ..config.settings import PipelineConfig
from ..utils.docker_utils import get_docker_client
from ..utils.logging import get_logger
from ..utils.state_manager import RevisionStore
from .acceptance import AcceptanceTestRunner
from .builder import ImageBuilder
from .controller import DeploymentController
from .orchestrator import PipelineOrchestrator
from .registry import RegistryClient
from .rollback import RollbackManager
from .status import StatusReporter

logger = get_logger(__name__)


def create_status_backend(config: PipelineConfig):
    """GitHub commit statuses when a token and repository are configured."""
    if config.github_token is not None and config.github_repository:
        return GitHubStatusBackend(
            repository=config.github_repository,
            token=config.github_token.get_secret_value(),
            context=config.status_context,
            api_url=config.github_api_url,
        )
    logger.info("status_backend_logging_only", reason="github token or repository not configured")
    return LoggingStatusBackend(config.status_context)


def create_health_checker(config: PipelineConfig) -> HttpHealthChecker:
    return HttpHealthChecker(
        interval=config.health_check_interval,
        backoff=config.health_check_backoff,
        max_interval=config.health_check_max_interval,
    )


def create_orchestrator(
    config: PipelineConfig,
    client: Optional[docker.DockerClient] = None
) -> PipelineOrchestrator:
    """
    Build a PipelineOrchestrator backed by the local Docker daemon.

    Raises:
        ConfigurationError: If the Docker daemon is unreachable
    """
    client = client or get_docker_client()
    store = RevisionStore(config.revision_dir)

    controller = DeploymentController(
        cluster=DockerClusterBackend(client, config),
        health_checker=create_health_checker(config),
        store=store,
    )

    return PipelineOrchestrator(
        builder=ImageBuilder(DockerBuildBackend(client), config),
        registry=RegistryClient(DockerRegistryBackend(client, config), config),
        controller=controller,
        rollback_manager=RollbackManager(controller, store),
        reporter=StatusReporter(create_status_backend(config)),
        acceptance=AcceptanceTestRunner(config.acceptance_paths),
        config=config,
    )


# Singleton instance: the namespace locks only serialize runs that share it
_orchestrator: PipelineOrchestrator | None = None


def get_orchestrator(config: PipelineConfig) -> PipelineOrchestrator:
    """Get or create the process-wide orchestrator."""
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = create_orchestrator(config)
    return _orchestrator
