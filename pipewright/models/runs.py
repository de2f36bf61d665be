"""Task run state models and the per-run result summary."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class TaskState(str, Enum):
    """Lifecycle state of a single task run."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"


# Valid state transitions, enforced structurally by TaskStateMachine.
# SUCCEEDED, FAILED and SKIPPED are terminal.  No retry edge: a failed
# run is re-run as a whole, with a fresh run id.
VALID_TRANSITIONS: dict[TaskState, set[TaskState]] = {
    TaskState.PENDING: {TaskState.RUNNING, TaskState.SKIPPED},
    TaskState.RUNNING: {TaskState.SUCCEEDED, TaskState.FAILED},
    TaskState.SUCCEEDED: set(),
    TaskState.FAILED: set(),
    TaskState.SKIPPED: set(),
}

TERMINAL_STATES: frozenset[TaskState] = frozenset(
    {TaskState.SUCCEEDED, TaskState.FAILED, TaskState.SKIPPED}
)


class RunState(str, Enum):
    """Terminal (or current) state of a whole pipeline run."""

    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class TaskOutcome(BaseModel):
    """What an executor reports after running a task's steps."""

    model_config = ConfigDict(frozen=True)

    exit_code: int = 0
    results: dict[str, str] = {}
    log: str = ""

    @property
    def succeeded(self) -> bool:
        return self.exit_code == 0


class TaskRun(BaseModel):
    """One instantiation of a task definition within a pipeline run.

    Identity is ``(run_id, task_name)``.
    """

    model_config = ConfigDict(frozen=True)

    run_id: str
    task_name: str
    state: TaskState = TaskState.PENDING
    params: dict[str, str | list[str]] = {}
    results: dict[str, str] = {}
    exit_code: int | None = None
    message: str = ""
    log: str = ""
    started_at: datetime | None = None
    finished_at: datetime | None = None

    @property
    def duration_seconds(self) -> float | None:
        if self.started_at is None or self.finished_at is None:
            return None
        return (self.finished_at - self.started_at).total_seconds()


class PipelineRunResult(BaseModel):
    """Aggregate outcome of a pipeline run.

    ``failed_task`` names the first task that failed; ``exit_code`` is the
    process exit status a CLI should return (0 on full success).
    """

    model_config = ConfigDict(frozen=True)

    run_id: str
    pipeline_name: str
    state: RunState
    task_runs: dict[str, TaskRun] = {}
    failed_task: str | None = None
    error: str | None = None
    started_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
    finished_at: datetime | None = None

    @property
    def succeeded(self) -> bool:
        return self.state == RunState.SUCCEEDED

    @property
    def exit_code(self) -> int:
        return 0 if self.succeeded else 1

    @property
    def results(self) -> dict[str, dict[str, str]]:
        """Published results keyed by task name."""
        return {
            name: dict(tr.results)
            for name, tr in self.task_runs.items()
            if tr.state == TaskState.SUCCEEDED and tr.results
        }

    def states(self) -> dict[str, TaskState]:
        return {name: tr.state for name, tr in self.task_runs.items()}
