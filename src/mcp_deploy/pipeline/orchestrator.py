"""
Pipeline orchestrator.

Drives one PipelineRun through build, push, scan, deploy, optional
acceptance tests and rollback, reporting status at start and end.
"""
import time
from contextlib import ExitStack
from typing import Callable, TypeVar

from pydantic import ValidationError as PydanticValidationError

from ..config.settings import PipelineConfig
from ..exceptions import (
    AcceptanceTestError,
    CleanupError,
    DeployError,
    DeployOrchestratorError,
    RollbackError,
    ValidationError,
)
from ..models.deployment import BuildArtifact, DeploymentSpec, ResourceRequirements, RevisionStatus
from ..models.pipeline import PipelineRun, PipelineState, StepStatus, TriggerInputs
from ..utils.logging import get_logger
from .acceptance import AcceptanceTestRunner
from .builder import ImageBuilder
from .controller import DeploymentController
from .naming import DeploymentTarget, resolve_target
from .registry import RegistryClient
from .rollback import RollbackManager
from .status import StatusReporter

logger = get_logger(__name__)

T = TypeVar("T")


def build_deployment_spec(
    trigger: TriggerInputs,
    target: DeploymentTarget,
    config: PipelineConfig
) -> DeploymentSpec:
    """
    Combine trigger overrides with configured defaults.

    Raises:
        ValidationError: If the resulting spec is invalid
    """
    try:
        return DeploymentSpec(
            app_name=target.app_name,
            environment=target.environment,
            namespace=target.namespace,
            replicas=config.default_replicas if trigger.replicas is None else trigger.replicas,
            resources=ResourceRequirements(
                memory_limit=config.default_memory_limit,
                cpu_limit=config.default_cpu_limit,
            ),
            container_port=(
                config.default_container_port if trigger.container_port is None else trigger.container_port
            ),
            health_check_path=trigger.health_check_path,
            health_check_timeout=config.health_check_timeout,
            ingress=trigger.ingress,
            tls=trigger.tls,
            env_vars=trigger.env_vars,
        )
    except PydanticValidationError as e:
        raise ValidationError(
            f"Invalid deployment spec: {e.errors()[0]['msg']}",
            context={"namespace": target.namespace, "errors": e.errors(include_url=False)}
        )


class PipelineOrchestrator:
    """Runs the deploy pipeline for one trigger at a time per call."""

    def __init__(
        self,
        builder: ImageBuilder,
        registry: RegistryClient,
        controller: DeploymentController,
        rollback_manager: RollbackManager,
        reporter: StatusReporter,
        acceptance: AcceptanceTestRunner,
        config: PipelineConfig
    ):
        self.builder = builder
        self.registry = registry
        self.controller = controller
        self.rollback_manager = rollback_manager
        self.reporter = reporter
        self.acceptance = acceptance
        self.config = config

    def run(self, trigger: TriggerInputs) -> PipelineRun:
        """
        Execute a full pipeline run.

        The pending status is posted before any work and the terminal status
        exactly once at the end, on every exit path. Pull request images are
        deleted on every exit path once their name is known.

        Returns:
            The terminal PipelineRun
        """
        run = PipelineRun(trigger=trigger)
        log = logger.bind(run_id=run.run_id, trigger=trigger.trigger_type.value, sha=trigger.sha[:7])
        log.info("pipeline_started", ref=trigger.ref, repository=trigger.repository)
        self.reporter.report(run)

        try:
            target = resolve_target(trigger)
            run.environment = target.environment
            run.namespace = target.namespace

            with ExitStack() as guaranteed:
                if trigger.is_pull_request:
                    planned = self.builder.artifact_for(target.app_name, target.tag)
                    guaranteed.callback(self._cleanup, run, planned)
                spec = build_deployment_spec(trigger, target, self.config)
                self._execute(run, trigger, target, spec)

        except DeployOrchestratorError as e:
            log.error(
                "pipeline_failed",
                state=run.state.value,
                error_type=type(e).__name__,
                error=str(e),
                context=e.context
            )
            if not run.is_terminal:
                run.fail(e)

        finally:
            if not run.is_terminal:
                # Unexpected exception on its way out
                run.error = run.error or "pipeline aborted by unexpected error"
                run.transition(PipelineState.FAILED)
            self.reporter.report(run)

        log.info("pipeline_finished", outcome=run.state.value, url=run.url)
        return run

    def _step(self, run: PipelineRun, name: str, func: Callable[[], T]) -> T:
        started = time.monotonic()
        try:
            result = func()
        except DeployOrchestratorError as e:
            run.record_step(name, StepStatus.FAILED, time.monotonic() - started, error=str(e))
            raise
        run.record_step(name, StepStatus.SUCCESS, time.monotonic() - started)
        return result

    def _execute(
        self,
        run: PipelineRun,
        trigger: TriggerInputs,
        target: DeploymentTarget,
        spec: DeploymentSpec
    ) -> None:
        run.transition(PipelineState.BUILDING)
        run.artifact = self._step(run, "build", lambda: self.builder.build(
            source_path=trigger.source_path,
            app_name=target.app_name,
            tag=target.tag,
            sha=trigger.sha,
            repository=trigger.repository,
            dockerfile=trigger.dockerfile,
            build_args=trigger.build_args,
        ))

        run.transition(PipelineState.PUSHING)
        run.artifact = self._step(run, "push", lambda: self.registry.push(run.artifact))

        run.transition(PipelineState.SCANNING)
        self._step(run, "scan", lambda: self.registry.scan_and_enforce(run.artifact))

        if trigger.is_pull_request and not self.config.deploy_pull_requests:
            run.transition(PipelineState.SUCCESS)
            return

        run.transition(PipelineState.DEPLOYING)
        started = time.monotonic()
        run.revision = self.controller.apply(spec, run.artifact)
        if run.revision.status != RevisionStatus.HEALTHY:
            run.record_step("deploy", StepStatus.FAILED, time.monotonic() - started, error=run.revision.error)
            self._recover(run, trigger, DeployError(
                run.revision.error or "deployment failed",
                context={"revision_id": run.revision.revision_id}
            ))
            return
        run.record_step("deploy", StepStatus.SUCCESS, time.monotonic() - started)

        run_tests = self.config.run_acceptance_tests if trigger.run_acceptance_tests is None else trigger.run_acceptance_tests
        if run_tests:
            run.transition(PipelineState.TESTING)
            try:
                self._step(run, "acceptance", lambda: self.acceptance.run(run.revision.endpoint))
            except AcceptanceTestError as e:
                run.revision = self.controller.reject(run.revision, str(e))
                self._recover(run, trigger, e)
                return

        run.transition(PipelineState.SUCCESS)

    def _recover(self, run: PipelineRun, trigger: TriggerInputs, error: DeployError) -> None:
        """Route a deploy/test failure to rollback when enabled, else fail the run."""
        auto_rollback = self.config.auto_rollback if trigger.auto_rollback is None else trigger.auto_rollback
        if not auto_rollback:
            logger.info("rollback_disabled", run_id=run.run_id, namespace=run.namespace)
            run.fail(error)
            return

        run.error = str(error)
        run.transition(PipelineState.ROLLING_BACK)
        started = time.monotonic()
        try:
            run.rollback_revision = self.rollback_manager.rollback(
                run.namespace,
                failed_revision_id=run.revision.revision_id
            )
        except RollbackError as e:
            run.record_step("rollback", StepStatus.FAILED, time.monotonic() - started, error=str(e))
            run.fail(RollbackError(f"{error}; rollback failed: {e}", context=e.context))
            return

        run.record_step("rollback", StepStatus.SUCCESS, time.monotonic() - started)
        run.transition(PipelineState.ROLLED_BACK)

    def _cleanup(self, run: PipelineRun, planned: BuildArtifact) -> None:
        """Delete the pull request image. Failures are logged only."""
        artifact = run.artifact or planned
        started = time.monotonic()
        try:
            self.registry.delete(artifact)
        except CleanupError as e:
            logger.error(
                "pr_image_cleanup_failed",
                run_id=run.run_id,
                image=artifact.reference,
                error=str(e),
                context=e.context
            )
            run.record_step("cleanup", StepStatus.FAILED, time.monotonic() - started, error=str(e))
            return
        run.record_step("cleanup", StepStatus.SUCCESS, time.monotonic() - started)
