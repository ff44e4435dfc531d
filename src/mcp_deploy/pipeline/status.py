"""
Status reporter: commit status on the originating change and a run summary.
"""
import threading
from typing import Any, Dict, Optional

from ..backends.protocols import StatusBackend
from ..exceptions import StatusReportError
from ..models.pipeline import PipelineRun, PipelineState
from ..utils.logging import get_logger

logger = get_logger(__name__)

COMMIT_STATES = {
    PipelineState.SUCCESS: "success",
    PipelineState.ROLLED_BACK: "failure",
    PipelineState.FAILED: "failure",
}


def run_outputs(run: PipelineRun) -> Dict[str, Any]:
    """Outputs surfaced to the caller of a run."""
    healthcheck = run.healthcheck
    revision = run.active_revision
    return {
        "run_id": run.run_id,
        "outcome": run.state.value,
        "image": run.artifact.reference if run.artifact else None,
        "digest": run.artifact.digest if run.artifact else None,
        "environment": run.environment,
        "namespace": run.namespace,
        "deployment_status": revision.status.value if revision else None,
        "revision_id": revision.revision_id if revision else None,
        "url": run.url,
        "healthcheck": healthcheck.model_dump() if healthcheck else None,
        "error": run.error,
        "steps": [step.model_dump(mode="json") for step in run.steps],
    }


def render_summary(run: PipelineRun) -> str:
    """Human-readable summary of a finished run."""
    image = run.artifact.reference if run.artifact else "not built"
    if run.artifact and run.artifact.digest:
        image = f"{image} ({run.artifact.digest})"

    healthcheck = run.healthcheck
    if healthcheck is None:
        health = "not checked"
    elif healthcheck.healthy:
        health = f"healthy after {healthcheck.attempts} attempt(s) in {healthcheck.elapsed_seconds}s"
    else:
        health = f"unhealthy: {healthcheck.error}"

    lines = [
        f"Pipeline {run.run_id}: {run.state.value}",
        f"  Image:       {image}",
        f"  Environment: {run.environment or '-'} (namespace {run.namespace or '-'})",
        f"  URL:         {run.url or '-'}",
        f"  Health:      {health}",
    ]
    if run.rollback_revision:
        lines.append(f"  Rolled back: {run.rollback_revision.revision_id} now serving")
    if run.error:
        lines.append(f"  Error:       {run.error}")
    return "\n".join(lines)


def _describe(run: PipelineRun) -> str:
    if run.state == PipelineState.SUCCESS:
        if run.revision:
            return f"Deployed to {run.namespace}"
        return "Image built and scanned"
    if run.state == PipelineState.ROLLED_BACK:
        return f"Deploy failed; rolled back to {run.rollback_revision.artifact.tag}"
    if run.state == PipelineState.FAILED:
        return f"Pipeline failed: {run.error or 'unknown error'}"
    return f"Pipeline running ({run.state.value})"


class StatusReporter:
    """
    Posts one pending status at run start and exactly one terminal status.

    Status API failures are logged and never change the run outcome.
    Which statuses were posted is recorded on the run, so the reporter
    keeps no per-run state.
    """

    def __init__(self, backend: StatusBackend):
        self.backend = backend
        self._guard = threading.Lock()

    def _claim(self, run: PipelineRun) -> bool:
        phase = "terminal" if run.is_terminal else "pending"
        with self._guard:
            if phase in run.reported:
                return False
            run.reported.add(phase)
            return True

    def report(self, run: PipelineRun) -> Optional[str]:
        """
        Report the run's current state.

        Returns:
            The rendered summary for terminal runs, None otherwise
        """
        if not self._claim(run):
            logger.warning("status_already_reported", run_id=run.run_id, state=run.state.value)
            return None

        state = COMMIT_STATES.get(run.state, "pending")
        try:
            self.backend.set_status(
                sha=run.trigger.sha,
                state=state,
                description=_describe(run),
                target_url=run.url,
            )
        except StatusReportError as e:
            logger.error(
                "status_report_failed",
                run_id=run.run_id,
                state=state,
                error=str(e),
                context=e.context
            )

        if not run.is_terminal:
            return None

        summary = render_summary(run)
        logger.info("pipeline_summary", run_id=run.run_id, outcome=run.state.value, summary=summary)
        return summary
