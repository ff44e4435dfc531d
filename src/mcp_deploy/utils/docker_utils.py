"""
Docker SDK utilities for image building, pushing and replica management.

Handles Docker client initialization, port allocation, image builds with
log capture, registry pushes and labelled replica containers.
"""
import socket  # Verificación de disponibilidad de puertos TCP
from typing import Tuple, List, Optional, Dict, Any  # Type hints

import docker  # Docker SDK para Python - interacción con Docker daemon
import requests  # Errores de transporte que lanza el Docker SDK
from docker.models.containers import Container  # Tipo de dato para contenedores Docker
from docker.models.images import Image  # Tipo de dato para imágenes Docker
from docker.errors import (  # Excepciones específicas del Docker SDK
    DockerException,
    BuildError,
    APIError,
    NotFound,
)

from ..exceptions import (  # Excepciones personalizadas del proyecto
    BuildError as CustomBuildError,
    CleanupError,
    ConfigurationError,
    DeployError,
    PushError,
    TransientRegistryError,
)
from .logging import get_logger  # Logger estructurado

logger = get_logger(__name__)

MANAGED_BY_LABEL = "mcp-deploy"
APP_LABEL = "deploy.app"
NAMESPACE_LABEL = "deploy.namespace"
REVISION_LABEL = "deploy.revision"


def get_docker_client() -> docker.DockerClient:
    """
    Initialize Docker client from environment.

    Reads DOCKER_HOST, DOCKER_TLS_VERIFY, etc. from environment.

    Raises:
        ConfigurationError: If Docker daemon is not accessible
    """
    try:
        client = docker.from_env()
        client.ping()
        logger.info("docker_client_initialized")
        return client
    except DockerException as e:
        raise ConfigurationError(
            f"Failed to connect to Docker daemon: {e}",
            context={"error": str(e)}
        )


def is_port_available(port: int, host: str = "127.0.0.1") -> bool:
    """
    Check if a port is available for binding.

    Args:
        port: Port number to check
        host: Host address (default: 127.0.0.1 for localhost only)

    Returns:
        True if port is available, False if occupied
    """
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.settimeout(1)
        try:
            sock.bind((host, port))
            return True
        except OSError:
            return False


def find_available_ports(count: int, start: int = 8000, end: int = 9000) -> List[int]:
    """
    Find `count` available ports in a range.

    Args:
        count: Number of ports needed
        start: Start of port range (inclusive)
        end: End of port range (inclusive)

    Returns:
        Available port numbers in ascending order

    Raises:
        DeployError: If not enough ports are available in range
    """
    ports = []
    for port in range(start, end + 1):
        if is_port_available(port):
            ports.append(port)
            if len(ports) == count:
                logger.debug("available_ports_found", ports=ports)
                return ports

    raise DeployError(
        f"Only {len(ports)} of {count} ports available in range {start}-{end}",
        context={"start": start, "end": end, "needed": count}
    )


def build_docker_image(
    client: docker.DockerClient,
    path: str,
    tag: str,
    dockerfile: str = "Dockerfile",
    buildargs: Optional[Dict[str, str]] = None,
    labels: Optional[Dict[str, str]] = None
) -> Tuple[Image, List[str]]:
    """
    Build Docker image with log capture.

    Args:
        client: Docker client instance
        path: Build context path
        tag: Image reference (repository:tag)
        dockerfile: Dockerfile name (default: Dockerfile)
        buildargs: Optional build arguments
        labels: Image labels

    Returns:
        Tuple of (Image object, build logs list)

    Raises:
        CustomBuildError: If build fails
    """
    build_logs = []

    try:
        logger.info(
            "docker_build_started",
            tag=tag,
            path=path,
            dockerfile=dockerfile
        )

        image, log_generator = client.images.build(
            path=path,
            tag=tag,
            dockerfile=dockerfile,
            buildargs=buildargs or {},
            rm=True,
            forcerm=True,
            labels={"managed-by": MANAGED_BY_LABEL, **(labels or {})},
            nocache=False
        )

        for entry in log_generator:
            if "stream" in entry:
                line = entry["stream"].strip()
                if line:
                    build_logs.append(line)
                    logger.debug("build_log", line=line)
            elif "error" in entry:
                build_logs.append(f"ERROR: {entry['error']}")
                logger.error("build_error", error=entry["error"])

        logger.info(
            "docker_build_completed",
            tag=tag,
            image_id=image.id
        )

        return image, build_logs

    except BuildError as e:
        error_logs = []
        for entry in getattr(e, 'build_log', None) or []:
            if "stream" in entry:
                error_logs.append(entry["stream"].strip())

        all_logs = build_logs + error_logs

        logger.error(
            "docker_build_failed",
            tag=tag,
            error=str(e),
            logs_count=len(all_logs)
        )

        raise CustomBuildError(
            f"Docker build failed: {getattr(e, 'msg', str(e))}",
            context={"tag": tag, "logs": all_logs}
        )

    except (APIError, TypeError) as e:
        # TypeError: docker raises it for a missing build context
        raise CustomBuildError(
            f"Docker API error during build: {e}",
            context={"tag": tag, "logs": build_logs}
        )


def push_image(
    client: docker.DockerClient,
    repository: str,
    tag: str,
    auth_config: Optional[Dict[str, str]] = None
) -> Optional[str]:
    """
    Push an image to its registry and return the manifest digest.

    Raises:
        PushError: If the registry rejects the push (auth, denied)
        TransientRegistryError: On connection failures or server errors
    """
    digest = None
    try:
        stream = client.images.push(
            repository,
            tag=tag,
            auth_config=auth_config,
            stream=True,
            decode=True
        )
        for entry in stream:
            if "error" in entry:
                message = entry["error"]
                if any(word in message.lower() for word in ("denied", "unauthorized", "forbidden")):
                    raise PushError(
                        f"Registry rejected push: {message}",
                        context={"repository": repository, "tag": tag}
                    )
                raise TransientRegistryError(
                    f"Push interrupted: {message}",
                    context={"repository": repository, "tag": tag}
                )
            aux = entry.get("aux") or {}
            if "Digest" in aux:
                digest = aux["Digest"]

    except APIError as e:
        if e.is_server_error():
            raise TransientRegistryError(
                f"Docker API error during push: {e}",
                context={"repository": repository, "tag": tag}
            )
        raise PushError(
            f"Docker API rejected push: {e}",
            context={"repository": repository, "tag": tag}
        )
    except requests.exceptions.RequestException as e:
        raise TransientRegistryError(
            f"Connection error during push: {e}",
            context={"repository": repository, "tag": tag}
        )

    logger.info("docker_push_completed", repository=repository, tag=tag, digest=digest)
    return digest


def remove_local_image(client: docker.DockerClient, reference: str) -> bool:
    """
    Remove an image from the local daemon.

    Returns:
        True if removed, False if it was already absent

    Raises:
        CleanupError: If the daemon refuses the removal
        TransientRegistryError: On connection errors to the daemon
    """
    try:
        client.images.remove(reference, force=True)
        logger.info("local_image_removed", image=reference)
        return True
    except NotFound:
        return False
    except APIError as e:
        raise CleanupError(
            f"Docker refused to remove {reference}: {e}",
            context={"image": reference, "error": str(e)}
        )
    except requests.exceptions.RequestException as e:
        raise TransientRegistryError(
            f"Connection error removing {reference}: {e}",
            context={"image": reference}
        )


def run_replica(
    client: docker.DockerClient,
    image: str,
    container_name: str,
    host_port: int,
    container_port: int,
    labels: Dict[str, str],
    env_vars: Optional[Dict[str, str]] = None,
    mem_limit: str = "512m",
    mem_reservation: Optional[str] = None,
    nano_cpus: Optional[int] = None,
    cpu_shares: Optional[int] = None
) -> Container:
    """
    Start one replica container, bound to localhost with no-new-privileges.

    Raises:
        DeployError: If the port is taken or the container fails to start
    """
    if not is_port_available(host_port):
        raise DeployError(
            f"Port {host_port} is already in use",
            context={"port": host_port}
        )

    # Strip RUN_AS_USER: the container user comes from the image
    safe_env = dict(env_vars or {})
    safe_env.pop("RUN_AS_USER", None)

    options: Dict[str, Any] = {
        "mem_limit": mem_limit,
        "security_opt": ["no-new-privileges:true"],
    }
    if mem_reservation:
        options["mem_reservation"] = mem_reservation
    if nano_cpus:
        options["nano_cpus"] = nano_cpus
    if cpu_shares:
        options["cpu_shares"] = cpu_shares

    try:
        logger.info(
            "starting_replica",
            image=image,
            container=container_name,
            host_port=host_port,
            container_port=container_port
        )

        container = client.containers.run(
            image=image,
            name=container_name,
            detach=True,
            ports={f"{container_port}/tcp": ("127.0.0.1", host_port)},  # Localhost only!
            environment=safe_env,
            labels={"managed-by": MANAGED_BY_LABEL, **labels},
            restart_policy={"Name": "unless-stopped"},
            **options
        )

        logger.info(
            "replica_started",
            container_id=container.id,
            container_name=container_name
        )
        return container

    except APIError as e:
        raise DeployError(
            f"Failed to start replica: {e}",
            context={"image": image, "container": container_name, "error": str(e)}
        )


def list_managed_containers(
    client: docker.DockerClient,
    labels: Dict[str, str]
) -> List[Container]:
    """List all (running or stopped) containers carrying the given labels."""
    filters = {"label": [f"{key}={value}" for key, value in labels.items()]}
    try:
        return client.containers.list(all=True, filters=filters)
    except APIError as e:
        raise DeployError(
            f"Failed to list containers: {e}",
            context={"labels": labels, "error": str(e)}
        )


def stop_and_remove_container(container: Container) -> None:
    """
    Stop and remove a container.

    Raises:
        DeployError: If the daemon refuses the operation
    """
    try:
        logger.info("stopping_container", container=container.name)
        container.stop(timeout=10)
        container.remove()
        logger.info("container_removed", container=container.name)
    except NotFound:
        logger.warning("container_not_found", container=container.name)
    except APIError as e:
        raise DeployError(
            f"Failed to stop container: {e}",
            context={"container": container.name, "error": str(e)}
        )
