"""
Registry backend: Docker SDK pushes, Registry HTTP API v2 deletes and
Trivy vulnerability scans run as a throwaway container.
"""
import json
from typing import Optional, Tuple

import docker
import httpx
import requests
from docker.errors import APIError, ContainerError, ImageNotFound

from ..config.settings import PipelineConfig
from ..exceptions import CleanupError, ScanError, TransientRegistryError
from ..models.deployment import BuildArtifact, VulnerabilityFinding, VulnerabilityReport
from ..utils.docker_utils import push_image, remove_local_image
from ..utils.logging import get_logger
from .docker_backend import registry_auth

logger = get_logger(__name__)

MANIFEST_MEDIA_TYPES = ", ".join([
    "application/vnd.oci.image.index.v1+json",
    "application/vnd.oci.image.manifest.v1+json",
    "application/vnd.docker.distribution.manifest.list.v2+json",
    "application/vnd.docker.distribution.manifest.v2+json",
])


def split_repository(repository: str) -> Tuple[str, str]:
    """Split registry.example.com/ns/app into (registry host, ns/app)."""
    host, _, name = repository.partition("/")
    if not name:
        raise CleanupError(
            f"Repository {repository} has no registry host",
            context={"repository": repository}
        )
    return host, name


def parse_trivy_report(image_reference: str, raw: str) -> VulnerabilityReport:
    """
    Parse `trivy image --format json` output.

    Raises:
        ScanError: If the output is not a Trivy JSON report
    """
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ScanError(
            f"Scanner returned invalid JSON: {e}",
            context={"image": image_reference}
        )

    findings = []
    for result in data.get("Results") or []:
        for vuln in result.get("Vulnerabilities") or []:
            findings.append(VulnerabilityFinding(
                vulnerability_id=vuln.get("VulnerabilityID", "unknown"),
                package=vuln.get("PkgName", "unknown"),
                severity=vuln.get("Severity", "UNKNOWN"),
                installed_version=vuln.get("InstalledVersion"),
                fixed_version=vuln.get("FixedVersion"),
            ))
    return VulnerabilityReport.from_findings(image_reference, findings)


class DockerRegistryBackend:
    """Talks to an OCI registry through the Docker daemon and the v2 HTTP API."""

    def __init__(
        self,
        client: docker.DockerClient,
        config: PipelineConfig,
        http_client: Optional[httpx.Client] = None
    ):
        self.client = client
        self.config = config
        auth = None
        if config.registry_api_key is not None:
            auth = (config.registry_user, config.registry_api_key.get_secret_value())
        self.http = http_client or httpx.Client(auth=auth, timeout=30.0)

    def push(self, artifact: BuildArtifact) -> Optional[str]:
        return push_image(
            self.client,
            artifact.repository,
            artifact.tag,
            auth_config=registry_auth(self.config)
        )

    def scan(self, artifact: BuildArtifact) -> VulnerabilityReport:
        environment = {}
        auth = registry_auth(self.config)
        if auth:
            environment = {"TRIVY_USERNAME": auth["username"], "TRIVY_PASSWORD": auth["password"]}

        logger.info("scan_started", image=artifact.reference, scanner=self.config.scanner_image)
        try:
            output = self.client.containers.run(
                self.config.scanner_image,
                command=["image", "--quiet", "--format", "json", artifact.pinned_reference],
                environment=environment,
                remove=True,
                stdout=True,
                stderr=False,
            )
        except ContainerError as e:
            raise ScanError(
                f"Scanner exited with status {e.exit_status}",
                context={"image": artifact.reference}
            )
        except ImageNotFound:
            raise ScanError(
                f"Scanner image {self.config.scanner_image} not available",
                context={"scanner": self.config.scanner_image}
            )
        except (APIError, requests.exceptions.RequestException) as e:
            raise TransientRegistryError(
                f"Scanner could not run: {e}",
                context={"image": artifact.reference}
            )

        return parse_trivy_report(artifact.reference, output.decode("utf-8"))

    def _manifest_url(self, artifact: BuildArtifact, reference: str) -> str:
        host, name = split_repository(artifact.repository)
        scheme = "http" if self.config.registry_insecure else "https"
        return f"{scheme}://{host}/v2/{name}/manifests/{reference}"

    def _request(self, method: str, url: str) -> httpx.Response:
        try:
            response = self.http.request(method, url, headers={"Accept": MANIFEST_MEDIA_TYPES})
        except httpx.TransportError as e:
            raise TransientRegistryError(
                f"Registry unreachable: {e}",
                context={"url": url}
            )
        if response.status_code >= 500:
            raise TransientRegistryError(
                f"Registry error {response.status_code}",
                context={"url": url, "status": response.status_code}
            )
        return response

    def delete(self, artifact: BuildArtifact) -> bool:
        remove_local_image(self.client, artifact.reference)

        digest = artifact.digest
        if digest is None:
            response = self._request("HEAD", self._manifest_url(artifact, artifact.tag))
            if response.status_code == 404:
                logger.info("registry_image_absent", image=artifact.reference)
                return False
            if response.status_code != 200:
                raise CleanupError(
                    f"Registry refused manifest lookup ({response.status_code})",
                    context={"image": artifact.reference, "status": response.status_code}
                )
            digest = response.headers.get("Docker-Content-Digest")

        response = self._request("DELETE", self._manifest_url(artifact, digest))
        if response.status_code == 404:
            logger.info("registry_image_absent", image=artifact.reference)
            return False
        if response.status_code not in (200, 202):
            raise CleanupError(
                f"Registry refused delete ({response.status_code})",
                context={"image": artifact.reference, "status": response.status_code}
            )

        logger.info("registry_image_deleted", image=artifact.reference, digest=digest)
        return True
