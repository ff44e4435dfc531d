"""
Pydantic models for build artifacts, deployment specs and revisions.

Defines the schema for revision records stored as JSON.
"""
import re  # Validación de cantidades de memoria y nombres
from datetime import datetime  # Manejo de fechas y timestamps
from enum import Enum  # Crear enumeraciones con valores fijos
from typing import Optional, List, Dict  # Type hints para tipos opcionales y colecciones

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from ..config.settings import SEVERITY_LEVELS

NAMESPACE_PATTERN = re.compile(r"^[a-z0-9]([-a-z0-9]*[a-z0-9])?$")
MEMORY_PATTERN = re.compile(r"^\d+(\.\d+)?[bkmg]?$")
ENV_NAME_PATTERN = re.compile(r"^[A-Z_][A-Z0-9_]*$")


def validate_namespace_name(v: str) -> str:
    """Namespaces are DNS labels: lowercase alphanumerics and '-', max 63 chars."""
    if len(v) > 63 or not NAMESPACE_PATTERN.match(v):
        raise ValueError(f"Invalid namespace: {v}")
    return v


class BuildArtifact(BaseModel):
    """Container image produced by the builder. Immutable once created."""

    model_config = ConfigDict(frozen=True)

    app_name: str = Field(..., description="Application name used as image name")
    repository: str = Field(..., description="Registry repository (registry/app)")
    tag: str = Field(..., description="Image tag")
    digest: Optional[str] = Field(None, description="Registry digest (sha256:...) once pushed")
    image_id: Optional[str] = Field(None, description="Local image ID")
    build_args: Dict[str, str] = Field(default_factory=dict)
    labels: Dict[str, str] = Field(default_factory=dict)

    @property
    def reference(self) -> str:
        """Full image reference in repository:tag form."""
        return f"{self.repository}:{self.tag}"

    @property
    def pinned_reference(self) -> str:
        """Digest-pinned reference when the digest is known."""
        if self.digest:
            return f"{self.repository}@{self.digest}"
        return self.reference


class VulnerabilityFinding(BaseModel):
    """Single vulnerability reported by the scanner."""
    vulnerability_id: str
    package: str
    severity: str
    installed_version: Optional[str] = None
    fixed_version: Optional[str] = None


class VulnerabilityReport(BaseModel):
    """Result of scanning a pushed image."""
    image_reference: str
    counts: Dict[str, int] = Field(default_factory=dict)
    findings: List[VulnerabilityFinding] = Field(default_factory=list)

    @classmethod
    def from_findings(cls, image_reference: str, findings: List[VulnerabilityFinding]) -> "VulnerabilityReport":
        counts = {level: 0 for level in SEVERITY_LEVELS}
        for finding in findings:
            severity = finding.severity.upper()
            counts[severity if severity in counts else "UNKNOWN"] += 1
        return cls(image_reference=image_reference, counts=counts, findings=findings)

    def blocking_findings(self, threshold: str) -> List[VulnerabilityFinding]:
        """Findings whose severity is at or above the threshold."""
        floor = SEVERITY_LEVELS.index(threshold.upper())
        return [
            f for f in self.findings
            if f.severity.upper() in SEVERITY_LEVELS
            and SEVERITY_LEVELS.index(f.severity.upper()) >= floor
        ]

    def exceeds(self, threshold: str) -> bool:
        return bool(self.blocking_findings(threshold))


class ResourceRequirements(BaseModel):
    """Resource limits and requests for each replica."""
    memory_limit: str = "512m"
    memory_request: Optional[str] = None
    cpu_limit: Optional[float] = None
    cpu_request: Optional[float] = None

    @field_validator("memory_limit", "memory_request")
    @classmethod
    def validate_memory(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        v = v.lower()
        if not MEMORY_PATTERN.match(v):
            raise ValueError(f"Invalid memory quantity: {v}")
        return v

    @field_validator("cpu_limit", "cpu_request")
    @classmethod
    def validate_cpu(cls, v: Optional[float]) -> Optional[float]:
        if v is not None and v <= 0:
            raise ValueError("CPU quantity must be greater than zero")
        return v


class DeploymentSpec(BaseModel):
    """Declarative deployment request for one namespace."""

    model_config = ConfigDict(frozen=True)

    app_name: str = Field(..., description="Application name")
    environment: str = Field(..., description="Environment display name")
    namespace: str = Field(..., description="Target namespace")
    replicas: int = Field(1, description="Number of replicas")
    resources: ResourceRequirements = Field(default_factory=ResourceRequirements)
    container_port: int = Field(8080, description="Port the application listens on")
    health_check_path: str = Field("/", description="HTTP path polled after apply")
    health_check_timeout: float = Field(300.0, description="Seconds to wait for healthy")
    ingress: bool = Field(False, description="Expose through an ingress host")
    tls: bool = Field(False, description="Serve the ingress host over TLS")
    env_vars: Dict[str, str] = Field(default_factory=dict)

    @field_validator("namespace")
    @classmethod
    def validate_namespace(cls, v: str) -> str:
        return validate_namespace_name(v)

    @field_validator("replicas")
    @classmethod
    def validate_replicas(cls, v: int) -> int:
        if v < 1:
            raise ValueError("replicas must be at least 1")
        return v

    @field_validator("container_port")
    @classmethod
    def validate_port(cls, v: int) -> int:
        if not 1 <= v <= 65535:
            raise ValueError("container_port must be between 1 and 65535")
        return v

    @field_validator("health_check_path")
    @classmethod
    def validate_path(cls, v: str) -> str:
        if not v.startswith("/"):
            raise ValueError("health_check_path must start with '/'")
        return v

    @field_validator("health_check_timeout")
    @classmethod
    def validate_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("health_check_timeout must be greater than zero")
        return v

    @field_validator("env_vars")
    @classmethod
    def validate_env_names(cls, v: Dict[str, str]) -> Dict[str, str]:
        for key in v:
            if not ENV_NAME_PATTERN.match(key):
                raise ValueError(f"Invalid environment variable name: {key}")
        return v

    @model_validator(mode="after")
    def validate_tls_requires_ingress(self) -> "DeploymentSpec":
        if self.tls and not self.ingress:
            raise ValueError("tls requires ingress to be enabled")
        return self


class RevisionStatus(str, Enum):
    """Lifecycle of a deployment revision."""
    PENDING = "pending"
    HEALTHY = "healthy"
    FAILED = "failed"


class HealthCheckResult(BaseModel):
    """Health check validation result."""
    healthy: bool = Field(..., description="True if the expected status was seen in time")
    url: str = Field(..., description="URL that was checked")
    response_code: Optional[int] = Field(None, description="Last HTTP response code")
    attempts: int = Field(..., description="Number of attempts made")
    elapsed_seconds: float = Field(..., description="Time spent polling")
    error: Optional[str] = Field(None, description="Last error if unhealthy")


class DeploymentRevision(BaseModel):
    """One applied deployment state for a namespace."""

    # Identity
    revision_id: str = Field(..., description="Unique revision identifier")
    namespace: str = Field(..., description="Namespace the revision belongs to")
    sequence: int = Field(..., description="Monotonic position in the namespace history")

    # What was applied
    spec: DeploymentSpec
    artifact: BuildArtifact

    # Status
    status: RevisionStatus = Field(RevisionStatus.PENDING)
    endpoint: Optional[str] = Field(None, description="Application URL")
    healthcheck: Optional[HealthCheckResult] = None
    error: Optional[str] = None

    # Timestamps
    created_at: datetime
    completed_at: Optional[datetime] = None

    # Rollback tracking
    rollback_of: Optional[str] = Field(None, description="Failed revision this one replaced")

    @property
    def is_pending(self) -> bool:
        return self.status == RevisionStatus.PENDING
