"""
Unit tests for pipeline/orchestrator.py

Full pipeline runs over the in-memory backends from conftest.py: state
paths, rollback routing, pull request image cleanup and status reporting.
"""
from unittest.mock import MagicMock, patch

import pytest
from docker.errors import APIError

from mcp_deploy.exceptions import AcceptanceTestError, StatusReportError, ValidationError
from mcp_deploy.models.deployment import RevisionStatus
from mcp_deploy.models.pipeline import PipelineState, TriggerType
from mcp_deploy.pipeline.naming import resolve_target
from mcp_deploy.pipeline.orchestrator import build_deployment_spec
from mcp_deploy.utils.docker_utils import remove_local_image

from conftest import critical_finding

SHA_GOOD = "aaaaaaa000000000000000000000000000000000"
SHA_BAD = "bbbbbbb000000000000000000000000000000000"


def states(run):
    return [state.value for state in run.history]


def deploy_healthy_baseline(pipeline, make_trigger):
    run = pipeline.orchestrator.run(make_trigger(sha=SHA_GOOD))
    assert run.state == PipelineState.SUCCESS
    return run


# ── Success paths ───────────────────────────────────────────────────────────

class TestSuccessfulRuns:
    def test_push_to_main_deploys_to_production(self, make_pipeline, make_trigger):
        pipeline = make_pipeline()

        run = pipeline.orchestrator.run(make_trigger())

        assert states(run) == ["pending", "building", "pushing", "scanning", "deploying", "success"]
        assert run.namespace == "production"
        assert run.environment == "production"
        assert run.artifact.reference == "registry.test/acme/shop-api:0123456"
        assert run.artifact.digest == "sha256:digest-0123456"
        assert run.revision.status == RevisionStatus.HEALTHY
        assert run.url == "http://0123456.production.test"
        assert run.error is None
        assert [step.name for step in run.steps] == ["build", "push", "scan", "deploy"]

    def test_build_labels_carry_commit(self, make_pipeline, make_trigger):
        pipeline = make_pipeline()
        pipeline.orchestrator.run(make_trigger())

        labels = pipeline.fakes.build.builds[0]["labels"]
        assert labels["org.opencontainers.image.revision"].startswith("0123456")
        assert labels["org.opencontainers.image.source"] == "acme/shop-api"

    def test_develop_deploys_to_staging(self, make_pipeline, make_trigger):
        pipeline = make_pipeline()
        run = pipeline.orchestrator.run(make_trigger(ref="refs/heads/develop"))
        assert run.namespace == "staging"

    def test_manual_inputs_override_names(self, make_pipeline, make_trigger):
        pipeline = make_pipeline()

        run = pipeline.orchestrator.run(make_trigger(
            trigger_type=TriggerType.MANUAL,
            namespace="qa",
            environment="QA",
            image_tag="v1.2.3",
            app_name="storefront",
        ))

        assert run.state == PipelineState.SUCCESS
        assert run.namespace == "qa"
        assert run.environment == "QA"
        assert run.artifact.reference == "registry.test/acme/storefront:v1.2.3"

    def test_acceptance_tests_run_when_enabled(self, make_pipeline, make_trigger):
        pipeline = make_pipeline(run_acceptance_tests=True)

        run = pipeline.orchestrator.run(make_trigger())

        assert "testing" in states(run)
        assert run.state == PipelineState.SUCCESS
        assert pipeline.fakes.acceptance.endpoints == ["http://0123456.production.test"]

    def test_trigger_can_enable_acceptance_tests(self, make_pipeline, make_trigger):
        pipeline = make_pipeline(run_acceptance_tests=False)
        run = pipeline.orchestrator.run(make_trigger(run_acceptance_tests=True))
        assert "testing" in states(run)


# ── Failure paths ───────────────────────────────────────────────────────────

class TestFailedRuns:
    def test_build_failure_stops_pipeline(self, make_pipeline, make_trigger, build_error):
        pipeline = make_pipeline()
        pipeline.fakes.build.error = build_error

        run = pipeline.orchestrator.run(make_trigger())

        assert states(run) == ["pending", "building", "failed"]
        assert "step 3/5" in run.error
        assert pipeline.fakes.registry.push_calls == 0
        assert pipeline.fakes.cluster.applied == []

    def test_missing_dockerfile_fails_build(self, make_pipeline, make_trigger, source_dir):
        (source_dir / "Dockerfile").unlink()
        pipeline = make_pipeline()

        run = pipeline.orchestrator.run(make_trigger())

        assert run.state == PipelineState.FAILED
        assert "Dockerfile not found" in run.error

    def test_push_failure_after_retries(self, make_pipeline, make_trigger):
        pipeline = make_pipeline()
        pipeline.fakes.registry.push_failures = 10

        run = pipeline.orchestrator.run(make_trigger())

        assert states(run) == ["pending", "building", "pushing", "failed"]
        assert pipeline.fakes.registry.push_calls == 3

    def test_security_error_blocks_deploy(self, make_pipeline, make_trigger):
        pipeline = make_pipeline()
        pipeline.fakes.registry.findings = [critical_finding()]

        run = pipeline.orchestrator.run(make_trigger())

        assert states(run) == ["pending", "building", "pushing", "scanning", "failed"]
        assert "CRITICAL" in run.error
        assert pipeline.fakes.cluster.applied == []

    def test_invalid_spec_fails_before_build(self, make_pipeline, make_trigger):
        pipeline = make_pipeline()

        run = pipeline.orchestrator.run(make_trigger(tls=True))

        assert states(run) == ["pending", "failed"]
        assert "tls requires ingress" in run.error
        assert pipeline.fakes.build.builds == []

    def test_unexpected_exception_still_reports_failure(self, make_pipeline, make_trigger):
        pipeline = make_pipeline()
        pipeline.fakes.build.error = RuntimeError("disk full")

        with pytest.raises(RuntimeError):
            pipeline.orchestrator.run(make_trigger())

        assert [s["state"] for s in pipeline.fakes.status.statuses] == ["pending", "failure"]


# ── Rollback routing ────────────────────────────────────────────────────────

class TestRollbackRouting:
    def test_failed_deploy_rolls_back_to_last_healthy(self, make_pipeline, make_trigger):
        pipeline = make_pipeline()
        deploy_healthy_baseline(pipeline, make_trigger)
        pipeline.fakes.health.unhealthy.add("bbbbbbb.")

        run = pipeline.orchestrator.run(make_trigger(sha=SHA_BAD))

        assert states(run)[-3:] == ["deploying", "rolling_back", "rolled_back"]
        assert run.revision.status == RevisionStatus.FAILED
        assert run.rollback_revision.status == RevisionStatus.HEALTHY
        assert run.rollback_revision.artifact.tag == "aaaaaaa"
        assert run.rollback_revision.rollback_of == run.revision.revision_id
        assert run.url == "http://aaaaaaa.production.test"
        assert "not healthy within" in run.error
        assert pipeline.fakes.cluster.serving["production"].endswith(":aaaaaaa")

    def test_first_deploy_failure_has_nothing_to_roll_back_to(self, make_pipeline, make_trigger):
        pipeline = make_pipeline()
        pipeline.fakes.cluster.failing_tags.add("bbbbbbb")

        run = pipeline.orchestrator.run(make_trigger(sha=SHA_BAD))

        assert states(run)[-3:] == ["deploying", "rolling_back", "failed"]
        assert "rollback failed" in run.error
        assert run.rollback_revision is None
        assert len(pipeline.fakes.cluster.applied) == 1

    def test_auto_rollback_disabled_fails_run(self, make_pipeline, make_trigger):
        pipeline = make_pipeline(auto_rollback=False)
        deploy_healthy_baseline(pipeline, make_trigger)
        pipeline.fakes.health.unhealthy.add("bbbbbbb.")

        run = pipeline.orchestrator.run(make_trigger(sha=SHA_BAD))

        assert states(run)[-2:] == ["deploying", "failed"]
        assert len(pipeline.fakes.cluster.applied) == 2

    def test_trigger_can_disable_auto_rollback(self, make_pipeline, make_trigger):
        pipeline = make_pipeline(auto_rollback=True)
        deploy_healthy_baseline(pipeline, make_trigger)
        pipeline.fakes.cluster.failing_tags.add("bbbbbbb")

        run = pipeline.orchestrator.run(make_trigger(sha=SHA_BAD, auto_rollback=False))

        assert run.state == PipelineState.FAILED

    def test_acceptance_failure_rolls_back_and_demotes_revision(self, make_pipeline, make_trigger):
        pipeline = make_pipeline(run_acceptance_tests=True)
        deploy_healthy_baseline(pipeline, make_trigger)
        pipeline.fakes.acceptance.error = AcceptanceTestError("GET / returned 500")

        run = pipeline.orchestrator.run(make_trigger(sha=SHA_BAD))

        assert states(run)[-4:] == ["deploying", "testing", "rolling_back", "rolled_back"]
        assert run.revision.status == RevisionStatus.FAILED
        assert pipeline.store.latest_healthy("production").artifact.tag == "aaaaaaa"

    def test_rollback_never_targets_rejected_revision(self, make_pipeline, make_trigger):
        pipeline = make_pipeline(run_acceptance_tests=True)
        pipeline.fakes.acceptance.error = AcceptanceTestError("GET / returned 500")

        run = pipeline.orchestrator.run(make_trigger(sha=SHA_BAD))

        assert run.state == PipelineState.FAILED
        assert pipeline.store.latest_healthy("production") is None

    def test_namespaces_roll_back_independently(self, make_pipeline, make_trigger):
        pipeline = make_pipeline()
        deploy_healthy_baseline(pipeline, make_trigger)
        pipeline.fakes.cluster.failing_tags.add("bbbbbbb")

        run = pipeline.orchestrator.run(make_trigger(sha=SHA_BAD, ref="refs/heads/develop"))

        # staging has no healthy revision of its own
        assert run.state == PipelineState.FAILED
        assert pipeline.fakes.cluster.serving["production"].endswith(":aaaaaaa")


# ── Pull request images ─────────────────────────────────────────────────────

class TestPullRequestCleanup:
    def pr_trigger(self, make_trigger, **kwargs):
        return make_trigger(trigger_type=TriggerType.PULL_REQUEST, pr_number=42, **kwargs)

    def test_pr_image_deleted_after_success(self, make_pipeline, make_trigger):
        pipeline = make_pipeline()

        run = pipeline.orchestrator.run(self.pr_trigger(make_trigger))

        assert run.state == PipelineState.SUCCESS
        assert run.revision is None
        assert pipeline.fakes.cluster.applied == []
        assert pipeline.fakes.registry.delete_calls == [run.artifact.reference]
        assert run.artifact.tag.startswith("pr-42-")
        assert pipeline.fakes.registry.images == set()
        assert run.steps[-1].name == "cleanup"

    def test_pr_image_deleted_once_after_security_failure(self, make_pipeline, make_trigger):
        pipeline = make_pipeline()
        pipeline.fakes.registry.findings = [critical_finding()]

        run = pipeline.orchestrator.run(self.pr_trigger(make_trigger))

        assert run.state == PipelineState.FAILED
        assert len(pipeline.fakes.registry.delete_calls) == 1

    def test_pr_cleanup_runs_even_when_build_fails(self, make_pipeline, make_trigger, build_error):
        pipeline = make_pipeline()
        pipeline.fakes.build.error = build_error

        run = pipeline.orchestrator.run(self.pr_trigger(make_trigger))

        assert run.state == PipelineState.FAILED
        assert pipeline.fakes.registry.delete_calls == [f"registry.test/acme/shop-api:pr-42-{run.trigger.sha}"]

    def test_pr_cleanup_runs_when_deployment_spec_is_invalid(self, make_pipeline, make_trigger):
        pipeline = make_pipeline()

        run = pipeline.orchestrator.run(self.pr_trigger(make_trigger, tls=True))

        assert run.state == PipelineState.FAILED
        assert "tls requires ingress" in run.error
        assert pipeline.fakes.build.builds == []
        assert pipeline.fakes.registry.delete_calls == [f"registry.test/acme/shop-api:pr-42-{run.trigger.sha}"]

    def test_pr_cleanup_runs_on_unexpected_exception(self, make_pipeline, make_trigger):
        pipeline = make_pipeline()
        pipeline.fakes.build.error = RuntimeError("disk full")

        with pytest.raises(RuntimeError):
            pipeline.orchestrator.run(self.pr_trigger(make_trigger))

        assert len(pipeline.fakes.registry.delete_calls) == 1

    def test_cleanup_failure_does_not_change_outcome(self, make_pipeline, make_trigger):
        pipeline = make_pipeline()
        pipeline.fakes.registry.delete_failures = 10

        run = pipeline.orchestrator.run(self.pr_trigger(make_trigger))

        assert run.state == PipelineState.SUCCESS
        assert run.steps[-1].name == "cleanup"
        assert run.steps[-1].status.value == "failed"

    def test_local_image_in_use_does_not_change_outcome(self, make_pipeline, make_trigger):
        pipeline = make_pipeline()
        client = MagicMock()
        client.images.remove.side_effect = APIError("conflict: image is being used")
        pipeline.registry_client.backend.delete = lambda artifact: remove_local_image(client, artifact.reference)

        run = pipeline.orchestrator.run(self.pr_trigger(make_trigger))

        assert run.state == PipelineState.SUCCESS
        assert run.error is None
        assert run.steps[-1].name == "cleanup"
        assert run.steps[-1].status.value == "failed"
        assert pipeline.fakes.status.statuses[-1]["state"] == "success"

    def test_pr_deploys_when_enabled(self, make_pipeline, make_trigger):
        pipeline = make_pipeline(deploy_pull_requests=True)

        run = pipeline.orchestrator.run(self.pr_trigger(make_trigger))

        assert run.namespace == "development"
        assert run.revision.status == RevisionStatus.HEALTHY
        assert len(pipeline.fakes.registry.delete_calls) == 1

    def test_push_images_are_never_deleted(self, make_pipeline, make_trigger):
        pipeline = make_pipeline()
        pipeline.orchestrator.run(make_trigger())
        assert pipeline.fakes.registry.delete_calls == []


# ── Status reporting ────────────────────────────────────────────────────────

class TestStatusReporting:
    def test_pending_then_success(self, make_pipeline, make_trigger):
        pipeline = make_pipeline()

        run = pipeline.orchestrator.run(make_trigger())

        statuses = pipeline.fakes.status.statuses
        assert [s["state"] for s in statuses] == ["pending", "success"]
        assert all(s["sha"] == run.trigger.sha for s in statuses)
        assert statuses[-1]["target_url"] == run.url

    def test_exactly_one_terminal_status_on_failure(self, make_pipeline, make_trigger):
        pipeline = make_pipeline()
        pipeline.fakes.registry.findings = [critical_finding()]

        pipeline.orchestrator.run(make_trigger())

        assert [s["state"] for s in pipeline.fakes.status.statuses] == ["pending", "failure"]

    def test_rolled_back_run_reports_failure(self, make_pipeline, make_trigger):
        pipeline = make_pipeline()
        deploy_healthy_baseline(pipeline, make_trigger)
        pipeline.fakes.status.statuses.clear()
        pipeline.fakes.health.unhealthy.add("bbbbbbb.")

        pipeline.orchestrator.run(make_trigger(sha=SHA_BAD))

        final = pipeline.fakes.status.statuses[-1]
        assert final["state"] == "failure"
        assert "rolled back to aaaaaaa" in final["description"]

    def test_status_api_failure_does_not_change_outcome(self, make_pipeline, make_trigger):
        pipeline = make_pipeline()
        pipeline.fakes.status.error = StatusReportError("502 from status API")

        run = pipeline.orchestrator.run(make_trigger())

        assert run.state == PipelineState.SUCCESS
        assert len(pipeline.fakes.status.statuses) == 2

    def test_pending_is_posted_before_build(self, make_pipeline, make_trigger):
        pipeline = make_pipeline()
        observed = []
        original_build = pipeline.fakes.build.build

        def build(**kwargs):
            observed.append(len(pipeline.fakes.status.statuses))
            return original_build(**kwargs)

        with patch.object(pipeline.fakes.build, "build", side_effect=build):
            pipeline.orchestrator.run(make_trigger())

        assert observed == [1]


# ── build_deployment_spec ───────────────────────────────────────────────────

class TestBuildDeploymentSpec:
    def test_defaults_come_from_config(self, make_trigger, pipeline_config):
        trigger = make_trigger()
        spec = build_deployment_spec(trigger, resolve_target(trigger), pipeline_config)

        assert spec.replicas == pipeline_config.default_replicas
        assert spec.container_port == pipeline_config.default_container_port
        assert spec.health_check_timeout == pipeline_config.health_check_timeout
        assert spec.resources.memory_limit == pipeline_config.default_memory_limit

    def test_trigger_overrides_defaults(self, make_trigger, pipeline_config):
        trigger = make_trigger(replicas=3, container_port=9000, env_vars={"MODE": "blue"})
        spec = build_deployment_spec(trigger, resolve_target(trigger), pipeline_config)

        assert spec.replicas == 3
        assert spec.container_port == 9000
        assert spec.env_vars == {"MODE": "blue"}

    def test_invalid_values_raise_validation_error(self, make_trigger, pipeline_config):
        trigger = make_trigger(env_vars={"bad name": "x"})
        with pytest.raises(ValidationError):
            build_deployment_spec(trigger, resolve_target(trigger), pipeline_config)


    @pytest.mark.parametrize("override", [{"replicas": 0}, {"container_port": 0}])
    def test_explicit_zero_is_rejected_not_defaulted(self, make_trigger, pipeline_config, override):
        trigger = make_trigger(**override)
        with pytest.raises(ValidationError):
            build_deployment_spec(trigger, resolve_target(trigger), pipeline_config)
