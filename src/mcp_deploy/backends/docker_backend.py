# Este archivo implementa el build de imágenes y el "cluster" sobre un Docker host:
# cada namespace es un conjunto de contenedores etiquetados, uno por réplica.

"""
Docker implementations of the build and cluster backends.
"""
from typing import Dict, List, Optional

import docker  # Docker SDK para Python
from docker.errors import APIError, ImageNotFound  # Excepciones del Docker SDK

from ..config.settings import PipelineConfig  # Configuración inmutable del pipeline
from ..exceptions import DeployError  # Excepción de despliegue
from ..models.deployment import BuildArtifact, DeploymentSpec  # Modelos de deployment
from ..utils.docker_utils import (  # Funciones de Docker SDK
    APP_LABEL,
    NAMESPACE_LABEL,
    REVISION_LABEL,
    build_docker_image,
    find_available_ports,
    list_managed_containers,
    run_replica,
    stop_and_remove_container,
)
from ..utils.logging import get_logger  # Logger estructurado

logger = get_logger(__name__)


def registry_auth(config: PipelineConfig) -> Optional[Dict[str, str]]:
    """Docker auth_config for the registry, or None for anonymous access."""
    if config.registry_api_key is None:
        return None
    return {
        "username": config.registry_user,
        "password": config.registry_api_key.get_secret_value(),
    }


class DockerBuildBackend:
    """Builds images with the local Docker daemon."""

    def __init__(self, client: docker.DockerClient):
        self.client = client

    def build(
        self,
        context_path: str,
        reference: str,
        dockerfile: str,
        build_args: Dict[str, str],
        labels: Dict[str, str],
    ) -> Optional[str]:
        image, _ = build_docker_image(
            client=self.client,
            path=context_path,
            tag=reference,
            dockerfile=dockerfile,
            buildargs=build_args,
            labels=labels,
        )
        return image.id


class DockerClusterBackend:
    """
    Runs a namespace as labelled replica containers on one Docker host.

    A new revision starts its replicas first and only then removes the
    replicas of earlier revisions, so a failed start leaves the previous
    revision serving. Ingress is expressed as Traefik router labels.
    """

    def __init__(self, client: docker.DockerClient, config: PipelineConfig):
        self.client = client
        self.config = config

    def _ensure_image(self, artifact: BuildArtifact) -> None:
        try:
            self.client.images.get(artifact.reference)
        except ImageNotFound:
            logger.info("pulling_image", image=artifact.reference)
            try:
                self.client.images.pull(
                    artifact.repository,
                    tag=artifact.tag,
                    auth_config=registry_auth(self.config)
                )
            except APIError as e:
                raise DeployError(
                    f"Failed to pull {artifact.reference}: {e}",
                    context={"image": artifact.reference}
                )

    def _ingress_host(self, spec: DeploymentSpec) -> Optional[str]:
        if spec.ingress and self.config.ingress_domain:
            return f"{spec.app_name}-{spec.namespace}.{self.config.ingress_domain}"
        return None

    def _labels(self, spec: DeploymentSpec, revision_id: str) -> Dict[str, str]:
        labels = {
            APP_LABEL: spec.app_name,
            NAMESPACE_LABEL: spec.namespace,
            REVISION_LABEL: revision_id,
        }
        host = self._ingress_host(spec)
        if host:
            router = f"{spec.app_name}-{spec.namespace}"
            labels.update({
                "traefik.enable": "true",
                f"traefik.http.routers.{router}.rule": f"Host(`{host}`)",
                f"traefik.http.services.{router}.loadbalancer.server.port": str(spec.container_port),
            })
            if spec.tls:
                labels[f"traefik.http.routers.{router}.tls"] = "true"
        return labels

    def apply(self, spec: DeploymentSpec, artifact: BuildArtifact, revision_id: str) -> str:
        self._ensure_image(artifact)

        selector = {APP_LABEL: spec.app_name, NAMESPACE_LABEL: spec.namespace}
        previous = [
            c for c in list_managed_containers(self.client, selector)
            if c.labels.get(REVISION_LABEL) != revision_id
        ]

        ports = find_available_ports(
            spec.replicas,
            self.config.port_range_start,
            self.config.port_range_end
        )
        labels = self._labels(spec, revision_id)
        resources = spec.resources

        started: List = []
        try:
            for index, host_port in enumerate(ports):
                started.append(run_replica(
                    client=self.client,
                    image=artifact.reference,
                    container_name=f"{spec.app_name}-{revision_id}-{index}",
                    host_port=host_port,
                    container_port=spec.container_port,
                    labels=labels,
                    env_vars=spec.env_vars,
                    mem_limit=resources.memory_limit,
                    mem_reservation=resources.memory_request,
                    nano_cpus=int(resources.cpu_limit * 1e9) if resources.cpu_limit else None,
                    cpu_shares=int(resources.cpu_request * 1024) if resources.cpu_request else None,
                ))
        except DeployError:
            for container in started:
                stop_and_remove_container(container)
            raise

        for container in previous:
            stop_and_remove_container(container)

        host = self._ingress_host(spec)
        if host:
            scheme = "https" if spec.tls else "http"
            endpoint = f"{scheme}://{host}"
        else:
            endpoint = f"http://127.0.0.1:{ports[0]}"

        logger.info(
            "namespace_converged",
            namespace=spec.namespace,
            revision_id=revision_id,
            replicas=len(started),
            replaced=len(previous),
            endpoint=endpoint
        )
        return endpoint
