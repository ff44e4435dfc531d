"""
Image builder: turns a source checkout into a tagged BuildArtifact.
"""
import time
from pathlib import Path
from typing import Dict, Optional

from ..backends.protocols import BuildBackend
from ..config.settings import PipelineConfig
from ..exceptions import BuildError
from ..models.deployment import BuildArtifact
from ..utils.logging import get_logger

logger = get_logger(__name__)


class ImageBuilder:
    """Builds images named {registry}/{app_name}:{tag}. Never retries."""

    def __init__(self, backend: BuildBackend, config: PipelineConfig):
        self.backend = backend
        self.config = config

    def artifact_for(
        self,
        app_name: str,
        tag: str,
        build_args: Optional[Dict[str, str]] = None,
        labels: Optional[Dict[str, str]] = None
    ) -> BuildArtifact:
        """The artifact a build with these names will produce."""
        return BuildArtifact(
            app_name=app_name,
            repository=f"{self.config.registry.rstrip('/')}/{app_name}",
            tag=tag,
            build_args=build_args or {},
            labels=labels or {},
        )

    def build(
        self,
        source_path: str,
        app_name: str,
        tag: str,
        sha: str,
        repository: Optional[str] = None,
        dockerfile: str = "Dockerfile",
        build_args: Optional[Dict[str, str]] = None,
        labels: Optional[Dict[str, str]] = None
    ) -> BuildArtifact:
        """
        Build the image for a source checkout.

        Args:
            source_path: Build context directory
            app_name: Image name
            tag: Image tag
            sha: Commit SHA recorded in the OCI revision label
            repository: Source repository recorded in the OCI source label
            dockerfile: Dockerfile path relative to source_path
            build_args: Docker build arguments
            labels: Extra image labels

        Returns:
            BuildArtifact with the local image ID set

        Raises:
            BuildError: If the context is missing or the build fails
        """
        context = Path(source_path)
        if not (context / dockerfile).is_file():
            raise BuildError(
                f"Dockerfile not found: {context / dockerfile}",
                context={"source_path": source_path, "dockerfile": dockerfile}
            )

        all_labels = {"org.opencontainers.image.revision": sha}
        if repository:
            all_labels["org.opencontainers.image.source"] = repository
        all_labels.update(labels or {})

        artifact = self.artifact_for(app_name, tag, build_args, all_labels)

        logger.info("image_build_started", image=artifact.reference, source_path=source_path)
        started = time.monotonic()
        image_id = self.backend.build(
            context_path=str(context),
            reference=artifact.reference,
            dockerfile=dockerfile,
            build_args=artifact.build_args,
            labels=artifact.labels,
        )
        logger.info(
            "image_build_completed",
            image=artifact.reference,
            image_id=image_id,
            build_time=round(time.monotonic() - started, 2)
        )

        return artifact.model_copy(update={"image_id": image_id})
