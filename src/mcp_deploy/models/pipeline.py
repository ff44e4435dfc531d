"""
Pydantic models for pipeline runs and their state machine.
"""
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, List, Dict, Set

from pydantic import BaseModel, Field, model_validator

from ..exceptions import InvalidTransitionError
from .deployment import BuildArtifact, DeploymentRevision, HealthCheckResult


class TriggerType(str, Enum):
    """CI event that started the run."""
    PUSH = "push"
    PULL_REQUEST = "pull_request"
    MANUAL = "manual"


class PipelineState(str, Enum):
    """Valid pipeline run states (finite state machine)."""
    PENDING = "pending"
    BUILDING = "building"
    PUSHING = "pushing"
    SCANNING = "scanning"
    DEPLOYING = "deploying"
    TESTING = "testing"
    ROLLING_BACK = "rolling_back"
    SUCCESS = "success"
    ROLLED_BACK = "rolled_back"
    FAILED = "failed"


TERMINAL_STATES = frozenset({
    PipelineState.SUCCESS,
    PipelineState.ROLLED_BACK,
    PipelineState.FAILED,
})

# Any non-terminal state may additionally move to FAILED.
ALLOWED_TRANSITIONS: Dict[PipelineState, frozenset] = {
    PipelineState.PENDING: frozenset({PipelineState.BUILDING}),
    PipelineState.BUILDING: frozenset({PipelineState.PUSHING}),
    PipelineState.PUSHING: frozenset({PipelineState.SCANNING}),
    PipelineState.SCANNING: frozenset({PipelineState.DEPLOYING, PipelineState.SUCCESS}),
    PipelineState.DEPLOYING: frozenset({
        PipelineState.TESTING,
        PipelineState.SUCCESS,
        PipelineState.ROLLING_BACK,
    }),
    PipelineState.TESTING: frozenset({PipelineState.SUCCESS, PipelineState.ROLLING_BACK}),
    PipelineState.ROLLING_BACK: frozenset({PipelineState.ROLLED_BACK}),
}


class StepStatus(str, Enum):
    """Valid step execution status values."""
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"


class PipelineStep(BaseModel):
    """Individual step in the pipeline run."""
    name: str = Field(..., description="Step name (build, push, scan, deploy, test, rollback, cleanup)")
    status: StepStatus
    duration_seconds: float
    error: Optional[str] = None


class TriggerInputs(BaseModel):
    """Event data and optional manual inputs for one pipeline run."""

    trigger_type: TriggerType
    ref: str = Field(..., description="Git ref, e.g. refs/heads/main")
    sha: str = Field(..., description="Commit SHA")
    repository: str = Field(..., description="owner/name of the source repository")
    source_path: str = Field(".", description="Build context directory")
    dockerfile: str = "Dockerfile"
    pr_number: Optional[int] = None

    # Manual inputs
    environment: Optional[str] = None
    image_tag: Optional[str] = None
    app_name: Optional[str] = None
    namespace: Optional[str] = None
    run_acceptance_tests: Optional[bool] = None
    auto_rollback: Optional[bool] = None

    # Deployment overrides
    replicas: Optional[int] = None
    container_port: Optional[int] = None
    health_check_path: str = "/"
    ingress: bool = False
    tls: bool = False
    build_args: Dict[str, str] = Field(default_factory=dict)
    env_vars: Dict[str, str] = Field(default_factory=dict)

    @model_validator(mode="after")
    def validate_pull_request_number(self) -> "TriggerInputs":
        if self.trigger_type == TriggerType.PULL_REQUEST and self.pr_number is None:
            raise ValueError("pull_request triggers require pr_number")
        return self

    @property
    def is_pull_request(self) -> bool:
        return self.trigger_type == TriggerType.PULL_REQUEST


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PipelineRun(BaseModel):
    """State of one pipeline invocation."""

    run_id: str = Field(default_factory=lambda: f"run-{uuid.uuid4().hex[:12]}")
    trigger: TriggerInputs
    environment: Optional[str] = None
    namespace: Optional[str] = None
    state: PipelineState = PipelineState.PENDING
    history: List[PipelineState] = Field(default_factory=lambda: [PipelineState.PENDING])

    artifact: Optional[BuildArtifact] = None
    revision: Optional[DeploymentRevision] = None
    rollback_revision: Optional[DeploymentRevision] = None
    steps: List[PipelineStep] = Field(default_factory=list)
    error: Optional[str] = None

    # Commit statuses already posted for this run (pending, terminal)
    reported: Set[str] = Field(default_factory=set)

    started_at: datetime = Field(default_factory=_utcnow)
    completed_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    def transition(self, new_state: PipelineState) -> None:
        """Move to a new state, enforcing the allowed transitions."""
        allowed = ALLOWED_TRANSITIONS.get(self.state, frozenset())
        if not self.is_terminal and new_state == PipelineState.FAILED:
            allowed = allowed | {PipelineState.FAILED}
        if new_state not in allowed:
            raise InvalidTransitionError(
                f"Cannot move run from {self.state.value} to {new_state.value}",
                context={"run_id": self.run_id, "from": self.state.value, "to": new_state.value}
            )
        self.state = new_state
        self.history.append(new_state)
        if new_state in TERMINAL_STATES:
            self.completed_at = _utcnow()

    def fail(self, error: Exception) -> None:
        self.error = str(error)
        self.transition(PipelineState.FAILED)

    def record_step(
        self,
        name: str,
        status: StepStatus,
        duration_seconds: float,
        error: Optional[str] = None
    ) -> None:
        self.steps.append(PipelineStep(
            name=name,
            status=status,
            duration_seconds=round(duration_seconds, 2),
            error=error
        ))

    @property
    def active_revision(self) -> Optional[DeploymentRevision]:
        """Revision currently serving the namespace after this run."""
        return self.rollback_revision or self.revision

    @property
    def url(self) -> Optional[str]:
        revision = self.active_revision
        return revision.endpoint if revision else None

    @property
    def healthcheck(self) -> Optional[HealthCheckResult]:
        revision = self.active_revision
        return revision.healthcheck if revision else None
