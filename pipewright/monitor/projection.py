"""RunProjection — read-only view of a run, derived from the Run Ledger.

The projection never keeps state of its own: every ``snapshot()`` replays
the ledger entries of the run.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from pipewright.core.run_ledger import LedgerIntegrityError, RunLedger
from pipewright.models.ledger import LedgerEntry
from pipewright.models.runs import RunState, TaskState

PIPELINE_SUBJECT_PREFIX = "pipeline:"


class TaskStatus(BaseModel):
    """Point-in-time status of one task (or promotion) in a run."""

    model_config = ConfigDict(frozen=True)

    name: str
    state: TaskState = TaskState.PENDING
    started_at: datetime | None = None
    finished_at: datetime | None = None
    exit_code: int | None = None
    message: str = ""

    @property
    def duration_seconds(self) -> float | None:
        if self.started_at is None or self.finished_at is None:
            return None
        return (self.finished_at - self.started_at).total_seconds()


class RunSnapshot(BaseModel):
    """Frozen view of a run, recomputed on every call."""

    model_config = ConfigDict(frozen=True)

    run_id: str
    pipeline_name: str | None = None
    run_state: RunState | None = None
    tasks: list[TaskStatus] = []
    chain_valid: bool = True
    last_updated: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def total_tasks(self) -> int:
        return len(self.tasks)

    @property
    def succeeded_count(self) -> int:
        return sum(1 for t in self.tasks if t.state == TaskState.SUCCEEDED)

    @property
    def failed_tasks(self) -> list[TaskStatus]:
        return [t for t in self.tasks if t.state == TaskState.FAILED]

    @property
    def running_tasks(self) -> list[TaskStatus]:
        return [t for t in self.tasks if t.state == TaskState.RUNNING]

    @property
    def skipped_tasks(self) -> list[TaskStatus]:
        return [t for t in self.tasks if t.state == TaskState.SKIPPED]


class RunProjection:
    """Pure read-only projection over the RunLedger."""

    def __init__(self, ledger: RunLedger) -> None:
        self._ledger = ledger

    def latest_run_id(self) -> str | None:
        run_ids = self._ledger.get_all_run_ids()
        return run_ids[0] if run_ids else None

    def snapshot(self, run_id: str) -> RunSnapshot:
        entries = self._ledger.get_run_entries(run_id)

        pipeline_name: str | None = None
        run_state: RunState | None = None
        tasks: dict[str, dict[str, Any]] = {}

        for entry in entries:
            _, _, to_state = entry.state_transition.partition("->")
            if entry.subject.startswith(PIPELINE_SUBJECT_PREFIX):
                pipeline_name = entry.subject[len(PIPELINE_SUBJECT_PREFIX):]
                try:
                    run_state = RunState(to_state)
                except ValueError:
                    pass
                continue
            self._apply(tasks.setdefault(entry.subject, {"name": entry.subject}), entry, to_state)

        return RunSnapshot(
            run_id=run_id,
            pipeline_name=pipeline_name,
            run_state=run_state,
            tasks=[TaskStatus(**info) for info in tasks.values()],
            chain_valid=self._check_chain_valid(run_id),
            last_updated=entries[-1].timestamp_utc if entries else datetime.now(timezone.utc),
        )

    @staticmethod
    def _apply(info: dict[str, Any], entry: LedgerEntry, to_state: str) -> None:
        try:
            state = TaskState(to_state)
        except ValueError:
            return
        info["state"] = state
        if state == TaskState.RUNNING:
            info["started_at"] = entry.timestamp_utc
        else:
            info["finished_at"] = entry.timestamp_utc
        if entry.exit_code is not None:
            info["exit_code"] = entry.exit_code
        if entry.message:
            info["message"] = entry.message

    def _check_chain_valid(self, run_id: str) -> bool:
        try:
            return self._ledger.verify_chain(run_id)
        except LedgerIntegrityError:
            return False
