# Este archivo implementa las herramientas MCP del pipeline completo:
# ejecutar un run (build, push, scan, deploy, tests, rollback) y resolver nombres.

"""
MCP tools for pipeline runs.

Implements run_pipeline and resolve_target tools.
"""
import asyncio  # Ejecutar el pipeline bloqueante fuera del event loop
from pathlib import Path  # Manejo moderno de rutas de archivos
from typing import Optional, Dict  # Type hints para valores opcionales y diccionarios

from mcp.server.fastmcp import FastMCP  # Framework FastMCP para registro de herramientas
from pydantic import ValidationError as PydanticValidationError

from ..config.settings import get_settings  # Singleton de configuración
from ..exceptions import DeployOrchestratorError, ValidationError  # Excepciones personalizadas
from ..models.pipeline import TriggerInputs, TriggerType  # Modelos del pipeline
from ..pipeline.factory import get_orchestrator  # Orquestador compartido
from ..pipeline.naming import resolve_target as resolve_target_names  # Reglas de nombres
from ..pipeline.status import render_summary, run_outputs  # Salidas del run
from ..utils.git_utils import inspect_checkout  # Metadata del checkout local
from ..utils.logging import get_logger  # Logger estructurado
from ..utils.validation import validate_commit_sha, validate_git_ref, validate_repository_slug

logger = get_logger(__name__)
settings = get_settings()


def build_trigger(
    trigger_type: str,
    source_path: str,
    ref: Optional[str] = None,
    sha: Optional[str] = None,
    repository: Optional[str] = None,
    **inputs
) -> TriggerInputs:
    """
    Assemble TriggerInputs, reading missing ref/sha/repository from the checkout.

    Raises:
        ValidationError: If inputs are invalid or cannot be determined
    """
    if not (ref and sha and repository):
        metadata = inspect_checkout(Path(source_path))
        ref = ref or metadata.ref
        sha = sha or metadata.full_sha
        repository = repository or metadata.repository

    if not repository:
        raise ValidationError(
            "repository could not be determined from the checkout; pass it explicitly",
            context={"source_path": source_path}
        )

    try:
        return TriggerInputs(
            trigger_type=TriggerType(trigger_type),
            ref=validate_git_ref(ref),
            sha=validate_commit_sha(sha),
            repository=validate_repository_slug(repository),
            source_path=source_path,
            **inputs
        )
    except (PydanticValidationError, ValueError) as e:
        raise ValidationError(
            f"Invalid trigger inputs: {e}",
            context={"trigger_type": trigger_type}
        )


def register_pipeline_tools(mcp: FastMCP) -> None:
    """
    Register pipeline MCP tools.

    Args:
        mcp: FastMCP server instance
    """

    @mcp.tool()
    async def run_pipeline(
        trigger_type: str,
        source_path: str,
        ref: Optional[str] = None,
        sha: Optional[str] = None,
        repository: Optional[str] = None,
        pr_number: Optional[int] = None,
        environment: Optional[str] = None,
        image_tag: Optional[str] = None,
        app_name: Optional[str] = None,
        namespace: Optional[str] = None,
        run_acceptance_tests: Optional[bool] = None,
        auto_rollback: Optional[bool] = None,
        replicas: Optional[int] = None,
        container_port: Optional[int] = None,
        health_check_path: str = "/",
        ingress: bool = False,
        tls: bool = False,
        dockerfile: str = "Dockerfile",
        build_args: Optional[Dict[str, str]] = None,
        env_vars: Optional[Dict[str, str]] = None
    ) -> dict:
        """
        Run the full deploy pipeline for one trigger.

        Builds the image, pushes and scans it, deploys it to the namespace
        derived from the ref (main -> production, develop -> staging,
        otherwise development), optionally runs acceptance tests and rolls
        back to the last healthy revision on failure. Pull request images
        are always deleted from the registry at the end of the run.

        Args:
            trigger_type: push, pull_request or manual
            source_path: Build context directory (a git checkout)
            ref: Git ref (read from the checkout if omitted)
            sha: Commit SHA (read from the checkout if omitted)
            repository: owner/name of the source repository (read from origin if omitted)
            pr_number: Pull request number (required for pull_request)
            environment: Environment display name (defaults to the namespace)
            image_tag: Explicit image tag (default: short SHA or pr-<n>-<sha>)
            app_name: Explicit image name (default: repository name)
            namespace: Explicit namespace, overrides ref-based derivation
            run_acceptance_tests: Run acceptance checks after deploy (default from settings)
            auto_rollback: Roll back on failure (default from settings)
            replicas: Replica count (default from settings)
            container_port: Port the app listens on (default from settings)
            health_check_path: Path polled for HTTP 200 after deploy
            ingress: Expose through an ingress host
            tls: Serve the ingress host over TLS
            dockerfile: Dockerfile path relative to source_path
            build_args: Docker build arguments
            env_vars: Environment variables for the replicas

        Returns:
            Dictionary containing:
                - run_id, outcome (success, rolled_back, failed)
                - image, digest, environment, namespace
                - deployment_status, revision_id, url, healthcheck
                - error, steps, summary
        """
        try:
            trigger = build_trigger(
                trigger_type,
                source_path,
                ref=ref,
                sha=sha,
                repository=repository,
                pr_number=pr_number,
                environment=environment,
                image_tag=image_tag,
                app_name=app_name,
                namespace=namespace,
                run_acceptance_tests=run_acceptance_tests,
                auto_rollback=auto_rollback,
                replicas=replicas,
                container_port=container_port,
                health_check_path=health_check_path,
                ingress=ingress,
                tls=tls,
                dockerfile=dockerfile,
                build_args=build_args or {},
                env_vars=env_vars or {},
            )

            orchestrator = get_orchestrator(settings.pipeline_config())
            run = await asyncio.to_thread(orchestrator.run, trigger)

            result = run_outputs(run)
            result["summary"] = render_summary(run)
            return result

        except DeployOrchestratorError as e:
            logger.error(
                "run_pipeline_failed",
                trigger_type=trigger_type,
                source_path=source_path,
                error=str(e),
                context=getattr(e, 'context', {})
            )
            raise


    @mcp.tool()
    async def resolve_target(
        trigger_type: str,
        ref: str,
        sha: str,
        repository: str,
        pr_number: Optional[int] = None,
        image_tag: Optional[str] = None,
        app_name: Optional[str] = None,
        namespace: Optional[str] = None,
        environment: Optional[str] = None
    ) -> dict:
        """
        Show which image and namespace a trigger would produce, without building.

        Args:
            trigger_type: push, pull_request or manual
            ref: Git ref, e.g. refs/heads/main
            sha: Commit SHA
            repository: owner/name of the source repository
            pr_number: Pull request number (required for pull_request)
            image_tag: Explicit image tag override
            app_name: Explicit image name override
            namespace: Explicit namespace override
            environment: Explicit environment name

        Returns:
            Dictionary containing app_name, tag, image, namespace and environment
        """
        try:
            trigger = build_trigger(
                trigger_type,
                ".",
                ref=ref,
                sha=sha,
                repository=repository,
                pr_number=pr_number,
                image_tag=image_tag,
                app_name=app_name,
                namespace=namespace,
                environment=environment,
            )
            target = resolve_target_names(trigger)
            return {
                "app_name": target.app_name,
                "tag": target.tag,
                "image": f"{settings.registry.rstrip('/')}/{target.app_name}:{target.tag}",
                "namespace": target.namespace,
                "environment": target.environment,
            }

        except ValidationError as e:
            logger.error(
                "resolve_target_failed",
                ref=ref,
                error=str(e),
                context=e.context
            )
            raise
