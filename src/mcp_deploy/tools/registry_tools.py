# Este archivo implementa las herramientas MCP del registry:
# escaneo de vulnerabilidades y borrado idempotente de imágenes.

"""
MCP tools for registry operations.

Implements scan_image and delete_image tools.
"""
import asyncio  # Ejecutar llamadas bloqueantes fuera del event loop

from mcp.server.fastmcp import FastMCP  # Framework FastMCP para registro de herramientas

from ..config.settings import get_settings  # Singleton de configuración
from ..exceptions import RegistryError, SecurityError, ValidationError  # Excepciones personalizadas
from ..models.deployment import BuildArtifact  # Modelo del artefacto
from ..pipeline.factory import get_orchestrator  # Orquestador compartido
from ..utils.logging import get_logger  # Logger estructurado
from ..utils.validation import validate_image_reference  # Validación de referencias

logger = get_logger(__name__)
settings = get_settings()


def artifact_from_reference(reference: str) -> BuildArtifact:
    """BuildArtifact for an existing repository:tag reference."""
    repository, tag = validate_image_reference(reference)
    return BuildArtifact(
        app_name=repository.rsplit("/", 1)[-1],
        repository=repository,
        tag=tag,
    )


def register_registry_tools(mcp: FastMCP) -> None:
    """
    Register registry MCP tools.

    Args:
        mcp: FastMCP server instance
    """

    @mcp.tool()
    async def scan_image(image_reference: str) -> dict:
        """
        Scan a pushed image for vulnerabilities.

        Runs the configured scanner against the image and compares the
        findings with the configured severity threshold.

        Args:
            image_reference: Image in repository:tag form

        Returns:
            Dictionary containing:
                - image: Image scanned
                - counts: Findings per severity
                - threshold: Configured blocking severity
                - blocked: True if deployment would be blocked
                - blocking: Vulnerability IDs at or above the threshold
        """
        try:
            artifact = artifact_from_reference(image_reference)
            registry = get_orchestrator(settings.pipeline_config()).registry
            report = await asyncio.to_thread(registry.scan, artifact)

            threshold = settings.scan_severity_threshold
            blocking = report.blocking_findings(threshold)
            return {
                "image": report.image_reference,
                "counts": report.counts,
                "threshold": threshold,
                "blocked": bool(blocking),
                "blocking": [f.vulnerability_id for f in blocking],
            }

        except (RegistryError, SecurityError, ValidationError) as e:
            logger.error(
                "scan_image_failed",
                image=image_reference,
                error=str(e),
                context=getattr(e, 'context', {})
            )
            raise


    @mcp.tool()
    async def delete_image(image_reference: str) -> dict:
        """
        Delete an image from the registry. Safe to call repeatedly.

        Args:
            image_reference: Image in repository:tag form

        Returns:
            Dictionary containing:
                - image: Image reference
                - deleted: True if removed, False if it was already absent
        """
        try:
            artifact = artifact_from_reference(image_reference)
            registry = get_orchestrator(settings.pipeline_config()).registry
            deleted = await asyncio.to_thread(registry.delete, artifact)
            return {"image": artifact.reference, "deleted": deleted}

        except (RegistryError, ValidationError) as e:
            logger.error(
                "delete_image_failed",
                image=image_reference,
                error=str(e),
                context=getattr(e, 'context', {})
            )
            raise
