"""
Rollback manager: restores the last healthy revision of a namespace.
"""
from typing import Optional

from ..exceptions import RollbackError
from ..models.deployment import DeploymentRevision, RevisionStatus
from ..utils.logging import get_logger
from ..utils.state_manager import RevisionStore
from .controller import DeploymentController

logger = get_logger(__name__)


class RollbackManager:
    """
    Reapplies the latest healthy revision through the controller.

    Rollback is attempted once. With no healthy revision to return to it
    fails closed: nothing is applied and RollbackError is raised.
    """

    def __init__(self, controller: DeploymentController, store: RevisionStore):
        self.controller = controller
        self.store = store

    def rollback(
        self,
        namespace: str,
        failed_revision_id: Optional[str] = None
    ) -> DeploymentRevision:
        """
        Roll a namespace back to its latest healthy revision.

        Args:
            namespace: Namespace to restore
            failed_revision_id: Revision being rolled back from, recorded on the new revision

        Returns:
            The new healthy revision

        Raises:
            RollbackError: If there is no healthy revision or it fails to come back
        """
        logger.info("rollback_started", namespace=namespace, failed_revision_id=failed_revision_id)

        target = self.store.latest_healthy(namespace, exclude=failed_revision_id)
        if target is None:
            logger.error("rollback_target_missing", namespace=namespace)
            raise RollbackError(
                f"No healthy revision to roll back to in namespace {namespace}",
                context={"namespace": namespace, "failed_revision_id": failed_revision_id}
            )

        logger.info(
            "rollback_target_found",
            namespace=namespace,
            target_revision_id=target.revision_id,
            image=target.artifact.reference
        )

        restored = self.controller.apply(target.spec, target.artifact, rollback_of=failed_revision_id)
        if restored.status != RevisionStatus.HEALTHY:
            logger.error(
                "rollback_failed",
                namespace=namespace,
                revision_id=restored.revision_id,
                error=restored.error
            )
            raise RollbackError(
                f"Restored revision {restored.revision_id} did not become healthy: {restored.error}",
                context={
                    "namespace": namespace,
                    "target_revision_id": target.revision_id,
                    "revision_id": restored.revision_id,
                }
            )

        logger.info(
            "rollback_completed",
            namespace=namespace,
            revision_id=restored.revision_id,
            restored_from=target.revision_id
        )
        return restored
