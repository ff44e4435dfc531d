"""
Shared pytest fixtures for the MCP Deploy Orchestrator test suite.

Unit tests drive the pipeline through in-memory backends; integration
tests talk to a real Docker daemon and skip when it is unavailable.
"""
import threading
from pathlib import Path
from types import SimpleNamespace

import pytest
import docker
from docker.errors import DockerException

from mcp_deploy.config.settings import Settings
from mcp_deploy.exceptions import BuildError, DeployError, TransientRegistryError
from mcp_deploy.models.deployment import (
    HealthCheckResult,
    VulnerabilityFinding,
    VulnerabilityReport,
)
from mcp_deploy.models.pipeline import TriggerInputs, TriggerType
from mcp_deploy.pipeline.acceptance import AcceptanceTestRunner
from mcp_deploy.pipeline.builder import ImageBuilder
from mcp_deploy.pipeline.controller import DeploymentController
from mcp_deploy.pipeline.orchestrator import PipelineOrchestrator
from mcp_deploy.pipeline.registry import RegistryClient
from mcp_deploy.pipeline.rollback import RollbackManager
from mcp_deploy.pipeline.status import StatusReporter
from mcp_deploy.utils.state_manager import RevisionStore

# ── Constants ──────────────────────────────────────────────────────────────
FIXTURE_APP_PATH = Path(__file__).parent / "fixtures" / "simple-app"
TEST_SHA = "0123456789abcdef0123456789abcdef01234567"
TEST_REPOSITORY = "acme/shop-api"


# ── In-memory backends ─────────────────────────────────────────────────────

class FakeBuildBackend:
    """Records builds; set `error` to make the next build fail."""

    def __init__(self):
        self.builds = []
        self.error = None

    def build(self, context_path, reference, dockerfile, build_args, labels):
        self.builds.append({
            "context_path": context_path,
            "reference": reference,
            "dockerfile": dockerfile,
            "build_args": build_args,
            "labels": labels,
        })
        if self.error is not None:
            raise self.error
        return f"sha256:image-{len(self.builds)}"


class FakeRegistryBackend:
    """
    Registry holding pushed references in a set.

    `push_failures` / `scan_failures` transient errors are raised before the
    call succeeds; `findings` is what every scan returns.
    """

    def __init__(self):
        self.images = set()
        self.push_calls = 0
        self.scan_calls = 0
        self.delete_calls = []
        self.push_failures = 0
        self.scan_failures = 0
        self.delete_failures = 0
        self.findings = []

    def push(self, artifact):
        self.push_calls += 1
        if self.push_failures:
            self.push_failures -= 1
            raise TransientRegistryError("registry unavailable")
        self.images.add(artifact.reference)
        return f"sha256:digest-{artifact.tag}"

    def scan(self, artifact):
        self.scan_calls += 1
        if self.scan_failures:
            self.scan_failures -= 1
            raise TransientRegistryError("scanner unavailable")
        return VulnerabilityReport.from_findings(artifact.reference, list(self.findings))

    def delete(self, artifact):
        self.delete_calls.append(artifact.reference)
        if self.delete_failures:
            self.delete_failures -= 1
            raise TransientRegistryError("registry unavailable")
        if artifact.reference in self.images:
            self.images.remove(artifact.reference)
            return True
        return False


class FakeClusterBackend:
    """
    Cluster whose endpoint is http://<tag>.<namespace>.test.

    Tags listed in `failing_tags` raise DeployError on apply.
    """

    def __init__(self):
        self.applied = []
        self.failing_tags = set()
        self.serving = {}
        self.delay = None

    def apply(self, spec, artifact, revision_id):
        self.applied.append((spec.namespace, artifact.reference, revision_id))
        if self.delay is not None:
            self.delay.wait(timeout=5)
        if artifact.tag in self.failing_tags:
            raise DeployError(f"replicas of {artifact.reference} crashed")
        self.serving[spec.namespace] = artifact.reference
        return f"http://{artifact.tag}.{spec.namespace}.test"


class FakeHealthChecker:
    """Healthy unless the URL contains one of `unhealthy` substrings."""

    def __init__(self):
        self.checked = []
        self.unhealthy = set()

    def check(self, url, timeout):
        self.checked.append(url)
        if any(marker in url for marker in self.unhealthy):
            return HealthCheckResult(
                healthy=False,
                url=url,
                response_code=503,
                attempts=3,
                elapsed_seconds=timeout,
                error="Unexpected status code: 503"
            )
        return HealthCheckResult(healthy=True, url=url, response_code=200, attempts=1, elapsed_seconds=0.01)


class RecordingStatusBackend:
    """Keeps every commit status posted, in order."""

    def __init__(self):
        self.statuses = []
        self.error = None
        self._lock = threading.Lock()

    def set_status(self, sha, state, description, target_url=None):
        with self._lock:
            self.statuses.append({
                "sha": sha,
                "state": state,
                "description": description,
                "target_url": target_url,
            })
        if self.error is not None:
            raise self.error


class FakeAcceptanceRunner(AcceptanceTestRunner):
    """AcceptanceTestRunner whose checks pass unless `error` is set."""

    def __init__(self):
        super().__init__(paths=["/"])
        self.endpoints = []
        self.error = None

    def run(self, endpoint):
        self.endpoints.append(endpoint)
        if self.error is not None:
            raise self.error
        return {endpoint + "/": 200}


def critical_finding(vulnerability_id="CVE-2024-0001"):
    return VulnerabilityFinding(vulnerability_id=vulnerability_id, package="openssl", severity="CRITICAL")


# ── Configuration ───────────────────────────────────────────────────────────

@pytest.fixture
def tmp_revision_dir(tmp_path):
    """Temporary directory for revision history JSON files."""
    d = tmp_path / "revisions"
    d.mkdir()
    return d


@pytest.fixture
def settings(tmp_path, tmp_revision_dir):
    return Settings(
        _env_file=None,
        revision_dir=tmp_revision_dir,
        log_dir=tmp_path / "logs",
        registry="registry.test/acme",
        registry_max_retries=2,
        registry_backoff_min=0.01,
        registry_backoff_max=0.02,
        health_check_timeout=5,
        health_check_interval=0.01,
    )


@pytest.fixture
def pipeline_config(settings):
    return settings.pipeline_config()


@pytest.fixture
def source_dir(tmp_path):
    """Build context with a Dockerfile."""
    d = tmp_path / "src"
    d.mkdir()
    (d / "Dockerfile").write_text("FROM scratch\n")
    return d


@pytest.fixture
def make_trigger(source_dir):
    """Factory for TriggerInputs pointing at the temporary build context."""
    def _make(trigger_type=TriggerType.PUSH, ref="refs/heads/main", sha=TEST_SHA, **inputs):
        if trigger_type == TriggerType.PULL_REQUEST:
            inputs.setdefault("pr_number", 42)
            if ref == "refs/heads/main":
                ref = "refs/pull/42/merge"
        return TriggerInputs(
            trigger_type=trigger_type,
            ref=ref,
            sha=sha,
            repository=TEST_REPOSITORY,
            source_path=str(source_dir),
            **inputs
        )
    return _make


# ── Pipeline wiring ─────────────────────────────────────────────────────────

@pytest.fixture
def make_pipeline(pipeline_config):
    """
    Factory building a PipelineOrchestrator over the fake backends.

    Keyword arguments override PipelineConfig fields. Returns a namespace
    with the orchestrator, its components and every fake.
    """
    def _make(**overrides):
        config = pipeline_config.model_copy(update=overrides)
        fakes = SimpleNamespace(
            build=FakeBuildBackend(),
            registry=FakeRegistryBackend(),
            cluster=FakeClusterBackend(),
            health=FakeHealthChecker(),
            status=RecordingStatusBackend(),
            acceptance=FakeAcceptanceRunner(),
        )
        store = RevisionStore(config.revision_dir)
        controller = DeploymentController(fakes.cluster, fakes.health, store)
        registry = RegistryClient(fakes.registry, config, sleep=lambda seconds: None)
        orchestrator = PipelineOrchestrator(
            builder=ImageBuilder(fakes.build, config),
            registry=registry,
            controller=controller,
            rollback_manager=RollbackManager(controller, store),
            reporter=StatusReporter(fakes.status),
            acceptance=fakes.acceptance,
            config=config,
        )
        return SimpleNamespace(
            orchestrator=orchestrator,
            config=config,
            store=store,
            controller=controller,
            registry_client=registry,
            fakes=fakes,
        )
    return _make


@pytest.fixture
def build_error():
    return BuildError("Docker build failed: step 3/5 returned 1")


# ── Docker availability ─────────────────────────────────────────────────────

@pytest.fixture(scope="session")
def docker_available():
    """Returns True if Docker daemon is accessible."""
    try:
        client = docker.from_env()
        client.ping()
        client.close()
        return True
    except DockerException:
        return False


@pytest.fixture(scope="session")
def docker_client(docker_available):
    """Docker client; skips the test if Docker is unavailable."""
    if not docker_available:
        pytest.skip("Docker daemon not accessible, skipping Docker tests")
    client = docker.from_env()
    yield client
    client.close()


@pytest.fixture(scope="session")
def fixture_app_path():
    """Absolute path to the minimal test application (with Dockerfile)."""
    return FIXTURE_APP_PATH


@pytest.fixture
def cleanup_test_containers(docker_client):
    """
    Teardown fixture: removes every container started by the deploy
    backend (identified by the managed-by label).
    """
    yield
    for container in docker_client.containers.list(
        all=True, filters={"label": "managed-by=mcp-deploy"}
    ):
        try:
            container.remove(force=True)
        except DockerException:
            pass
