"""
Deployment controller: applies a spec to a namespace and decides whether
the resulting revision is healthy.
"""
import threading
from contextlib import contextmanager
from typing import Dict, Iterator, Optional

from ..backends.protocols import ClusterBackend, HealthChecker
from ..exceptions import DeployError, HealthCheckTimeout
from ..models.deployment import (
    BuildArtifact,
    DeploymentRevision,
    DeploymentSpec,
    RevisionStatus,
)
from ..utils.logging import get_logger
from ..utils.state_manager import RevisionStore

logger = get_logger(__name__)


class DeploymentController:
    """
    Applies deployments one namespace at a time.

    Every revision goes from pending to healthy/failed while its namespace
    lock is held, so a namespace never has two pending revisions. The
    controller never rolls back on its own.
    """

    def __init__(
        self,
        cluster: ClusterBackend,
        health_checker: HealthChecker,
        store: RevisionStore
    ):
        self.cluster = cluster
        self.health_checker = health_checker
        self.store = store
        self._locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    @contextmanager
    def namespace_lock(self, namespace: str) -> Iterator[None]:
        with self._locks_guard:
            lock = self._locks.setdefault(namespace, threading.Lock())
        if not lock.acquire(blocking=False):
            logger.info("namespace_busy_waiting", namespace=namespace)
            lock.acquire()
        try:
            yield
        finally:
            lock.release()

    def apply(
        self,
        spec: DeploymentSpec,
        artifact: BuildArtifact,
        rollback_of: Optional[str] = None
    ) -> DeploymentRevision:
        """
        Apply spec + artifact and wait for the health check.

        Returns:
            The completed revision, healthy or failed. Cluster errors and
            health-check timeouts are recorded on the revision, not raised.
        """
        with self.namespace_lock(spec.namespace):
            revision = self.store.begin(spec, artifact, rollback_of=rollback_of)
            logger.info(
                "deployment_apply_started",
                revision_id=revision.revision_id,
                namespace=spec.namespace,
                image=artifact.reference,
                replicas=spec.replicas
            )

            try:
                endpoint = self.cluster.apply(spec, artifact, revision.revision_id)
            except DeployError as e:
                logger.error(
                    "deployment_apply_failed",
                    revision_id=revision.revision_id,
                    error=str(e),
                    context=e.context
                )
                return self.store.complete(revision, RevisionStatus.FAILED, error=str(e))
            except BaseException:
                # Unexpected errors propagate, but never leave the namespace pending
                self.store.complete(revision, RevisionStatus.FAILED, error="apply aborted")
                raise

            health_url = endpoint.rstrip("/") + spec.health_check_path
            result = self.health_checker.check(health_url, spec.health_check_timeout)

            if not result.healthy:
                timeout = HealthCheckTimeout(
                    f"{health_url} not healthy within {spec.health_check_timeout}s: {result.error}",
                    context={"url": health_url, "attempts": result.attempts}
                )
                return self.store.complete(
                    revision,
                    RevisionStatus.FAILED,
                    endpoint=endpoint,
                    healthcheck=result,
                    error=str(timeout)
                )

            return self.store.complete(
                revision,
                RevisionStatus.HEALTHY,
                endpoint=endpoint,
                healthcheck=result
            )

    def reject(self, revision: DeploymentRevision, reason: str) -> DeploymentRevision:
        """
        Mark a healthy revision failed after later validation rejected it,
        so it is never picked as a rollback target.
        """
        with self.namespace_lock(revision.namespace):
            return self.store.complete(
                revision,
                RevisionStatus.FAILED,
                endpoint=revision.endpoint,
                healthcheck=revision.healthcheck,
                error=reason
            )
