"""
Configuration management using Pydantic Settings.

Loads configuration from environment variables with DEPLOY_ prefix and
freezes it into a PipelineConfig handed to each pipeline component.
"""
from pathlib import Path
from typing import List

from pydantic import BaseModel, ConfigDict, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

SEVERITY_LEVELS = ["UNKNOWN", "LOW", "MEDIUM", "HIGH", "CRITICAL"]


class PipelineConfig(BaseModel):
    """Immutable configuration shared by the pipeline components."""

    model_config = ConfigDict(frozen=True)

    # Registry
    registry: str
    registry_user: str
    registry_api_key: SecretStr | None
    registry_insecure: bool
    registry_max_retries: int
    registry_backoff_min: float
    registry_backoff_max: float

    # Scanning
    scan_severity_threshold: str
    scanner_image: str

    # Deployment defaults
    default_replicas: int
    default_container_port: int
    default_memory_limit: str
    default_cpu_limit: float | None
    ingress_domain: str | None
    port_range_start: int
    port_range_end: int

    # Health checks
    health_check_timeout: float
    health_check_interval: float
    health_check_backoff: float
    health_check_max_interval: float

    # Run behaviour
    auto_rollback: bool
    run_acceptance_tests: bool
    acceptance_paths: List[str]
    deploy_pull_requests: bool

    # State
    revision_dir: Path

    # Change-request status
    status_context: str
    github_api_url: str
    github_repository: str | None
    github_token: SecretStr | None


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="DEPLOY_",
        case_sensitive=False,
        extra="ignore"
    )

    # Server Configuration
    server_name: str = "mcp-deploy-server"
    transport: str = "stdio"

    # Directories
    revision_dir: Path = Path("./revisions")
    log_dir: Path = Path("./logs")

    # Logging
    log_level: str = "INFO"
    log_json: bool = True

    # Registry
    registry: str = "localhost:5000"
    registry_user: str = "iamapikey"
    registry_api_key: SecretStr | None = None
    registry_insecure: bool = False
    registry_max_retries: int = 3
    registry_backoff_min: float = 1.0
    registry_backoff_max: float = 30.0

    # Vulnerability scanning
    scan_severity_threshold: str = "CRITICAL"
    scanner_image: str = "aquasec/trivy:latest"

    # Deployment defaults
    default_replicas: int = 1
    default_container_port: int = 8080
    default_memory_limit: str = "512m"
    default_cpu_limit: float | None = None
    ingress_domain: str | None = None

    # Host port range for replicas
    port_range_start: int = 8000
    port_range_end: int = 9000

    # Health checks
    health_check_timeout: float = 300.0
    health_check_interval: float = 5.0
    health_check_backoff: float = 1.5
    health_check_max_interval: float = 30.0

    # Run behaviour
    auto_rollback: bool = True
    run_acceptance_tests: bool = False
    acceptance_paths: List[str] = ["/"]
    deploy_pull_requests: bool = False

    # Change-request status reporting
    status_context: str = "deploy/orchestrator"
    github_api_url: str = "https://api.github.com"
    github_repository: str | None = None
    github_token: SecretStr | None = None

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level is valid."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        v_upper = v.upper()
        if v_upper not in valid_levels:
            raise ValueError(f"Invalid log level. Must be one of {valid_levels}")
        return v_upper

    @field_validator("port_range_start", "port_range_end")
    @classmethod
    def validate_port(cls, v: int) -> int:
        """Validate port is in valid range."""
        if not 1024 <= v <= 65535:
            raise ValueError("Port must be between 1024 and 65535")
        return v

    @field_validator("scan_severity_threshold")
    @classmethod
    def validate_severity(cls, v: str) -> str:
        """Validate severity threshold is a known scanner severity."""
        v_upper = v.upper()
        if v_upper not in SEVERITY_LEVELS:
            raise ValueError(f"Invalid severity. Must be one of {SEVERITY_LEVELS}")
        return v_upper

    @field_validator(
        "health_check_timeout",
        "health_check_interval",
        "health_check_max_interval",
        "registry_backoff_min",
        "registry_backoff_max",
    )
    @classmethod
    def validate_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("Value must be greater than zero")
        return v

    @field_validator("health_check_backoff")
    @classmethod
    def validate_backoff(cls, v: float) -> float:
        if v < 1.0:
            raise ValueError("Backoff multiplier must be at least 1.0")
        return v

    @field_validator("registry_max_retries")
    @classmethod
    def validate_retries(cls, v: int) -> int:
        if v < 0:
            raise ValueError("registry_max_retries cannot be negative")
        return v

    @field_validator("default_replicas")
    @classmethod
    def validate_replicas(cls, v: int) -> int:
        if v < 1:
            raise ValueError("default_replicas must be at least 1")
        return v

    def ensure_directories(self) -> None:
        """Create required directories if they don't exist."""
        for directory in [self.revision_dir, self.log_dir]:
            directory.mkdir(parents=True, exist_ok=True)

    def pipeline_config(self) -> PipelineConfig:
        """Freeze the pipeline-relevant settings into a PipelineConfig."""
        fields = PipelineConfig.model_fields.keys()
        return PipelineConfig(**{name: getattr(self, name) for name in fields})


# Singleton instance
_settings: Settings | None = None


def get_settings() -> Settings:
    """Get or create settings singleton instance."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
