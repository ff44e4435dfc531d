# Este archivo implementa las herramientas MCP para el ciclo de vida de los namespaces:
# rollback manual a la última revisión sana e historial de revisiones.

"""
MCP tools for deployment lifecycle management.

Implements rollback and list_revisions tools.
"""
import asyncio  # Ejecutar el rollback bloqueante fuera del event loop
from typing import Any, Dict, Optional

from mcp.server.fastmcp import FastMCP  # Framework FastMCP para registro de herramientas

from ..config.settings import get_settings  # Singleton de configuración
from ..exceptions import DeployOrchestratorError, ValidationError  # Excepciones personalizadas
from ..models.deployment import DeploymentRevision, validate_namespace_name  # Modelos de deployment
from ..pipeline.factory import get_orchestrator  # Orquestador compartido
from ..utils.logging import get_logger  # Logger estructurado
from ..utils.state_manager import RevisionStore  # Historial de revisiones
from ..utils.validation import validate_revision_id  # Validación de IDs de revisión

logger = get_logger(__name__)
settings = get_settings()


def _check_namespace(namespace: str) -> str:
    try:
        return validate_namespace_name(namespace)
    except ValueError as e:
        raise ValidationError(str(e), context={"namespace": namespace})


def _revision_summary(revision: DeploymentRevision) -> Dict[str, Any]:
    return {
        "revision_id": revision.revision_id,
        "namespace": revision.namespace,
        "status": revision.status.value,
        "image": revision.artifact.reference,
        "created_at": revision.created_at.isoformat(),
        "completed_at": revision.completed_at.isoformat() if revision.completed_at else None,
        "endpoint": revision.endpoint,
        "rollback_of": revision.rollback_of,
        "error": revision.error,
    }


def collect_revisions(
    store: RevisionStore,
    namespace: Optional[str] = None,
    revision_id: Optional[str] = None,
    limit: int = 20
) -> Dict[str, Any]:
    """
    Revision summaries for one namespace or all of them, newest first.

    Raises:
        ValidationError: On a malformed namespace or revision ID, or an
            unknown revision ID
    """
    namespaces = [_check_namespace(namespace)] if namespace else store.namespaces()

    if revision_id:
        validate_revision_id(revision_id)
        for name in namespaces:
            revision = store.get(name, revision_id)
            if revision:
                return {"namespaces": [name], "revisions": [_revision_summary(revision)]}
        raise ValidationError(
            f"Revision {revision_id} not found",
            context={"revision_id": revision_id, "namespaces": namespaces}
        )

    revisions = []
    for name in namespaces:
        revisions.extend(list(reversed(store.history(name)))[:limit])

    return {
        "namespaces": namespaces,
        "revisions": [_revision_summary(r) for r in revisions],
    }


def register_lifecycle_tools(mcp: FastMCP) -> None:
    """
    Register lifecycle management MCP tools.

    Args:
        mcp: FastMCP server instance
    """

    @mcp.tool()
    async def rollback(namespace: str) -> dict:
        """
        Roll a namespace back to its latest healthy revision.

        Reapplies the spec and image of the most recent revision marked
        healthy and creates a NEW revision for it, keeping the history as an
        audit trail. Fails without touching the namespace when no healthy
        revision exists.

        Args:
            namespace: Namespace to roll back (e.g. production)

        Returns:
            Dictionary containing:
                - revision_id: New revision created by the rollback
                - restored_image: Image reference now serving
                - url: Application URL
                - status: Revision status (healthy)
                - message: Human-readable message
        """
        try:
            logger.info("rollback_requested", namespace=namespace)

            validated = _check_namespace(namespace)

            orchestrator = get_orchestrator(settings.pipeline_config())
            revision = await asyncio.to_thread(
                orchestrator.rollback_manager.rollback, validated
            )

            return {
                "revision_id": revision.revision_id,
                "restored_image": revision.artifact.reference,
                "url": revision.endpoint,
                "status": revision.status.value,
                "message": f"Namespace {validated} rolled back to {revision.artifact.reference}",
            }

        except DeployOrchestratorError as e:
            logger.error(
                "rollback_failed",
                namespace=namespace,
                error=str(e),
                context=getattr(e, 'context', {})
            )
            raise


    @mcp.tool()
    async def list_revisions(
        namespace: Optional[str] = None,
        revision_id: Optional[str] = None,
        limit: int = 20
    ) -> dict:
        """
        List revision history, newest first.

        Without a namespace every namespace the store knows is included.
        With a revision_id only that revision is returned.

        Args:
            namespace: Namespace to inspect (default: all namespaces)
            revision_id: Single revision to fetch, e.g. rev-production-3
            limit: Maximum number of revisions per namespace (default: 20)

        Returns:
            Dictionary containing:
                - namespaces: Namespaces inspected
                - revisions: List of {revision_id, namespace, status, image,
                  created_at, completed_at, endpoint, rollback_of, error}
        """
        store = get_orchestrator(settings.pipeline_config()).controller.store
        return collect_revisions(store, namespace, revision_id, limit)
