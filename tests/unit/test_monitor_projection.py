"""Unit tests for RunProjection: snapshots replayed from the ledger."""

from __future__ import annotations

from pipewright.core.run_ledger import RunLedger
from pipewright.models.ledger import LedgerEntry
from pipewright.models.runs import RunState, TaskOutcome, TaskState
from pipewright.monitor.projection import RunProjection


class TestProjectionFromRuns:
    def test_successful_run(self, orchestrator, callable_executor, make_task, make_pipeline, ledger):
        callable_executor.register("a", lambda p, c: None)
        callable_executor.register("b", lambda p, c: None)
        result = orchestrator.run_pipeline(
            make_pipeline(make_task("a"), make_task("b", run_after=["a"]))
        )

        snapshot = RunProjection(ledger).snapshot(result.run_id)

        assert snapshot.pipeline_name == "test-pipeline"
        assert snapshot.run_state == RunState.SUCCEEDED
        assert [t.name for t in snapshot.tasks] == ["a", "b"]
        assert snapshot.succeeded_count == 2
        assert snapshot.chain_valid
        assert all(t.duration_seconds is not None for t in snapshot.tasks)

    def test_failed_run(self, orchestrator, callable_executor, make_task, make_pipeline, ledger):
        callable_executor.register("a", lambda p, c: TaskOutcome(exit_code=5))
        result = orchestrator.run_pipeline(
            make_pipeline(make_task("a"), make_task("b", run_after=["a"]))
        )

        snapshot = RunProjection(ledger).snapshot(result.run_id)

        assert snapshot.run_state == RunState.FAILED
        assert [t.name for t in snapshot.failed_tasks] == ["a"]
        assert snapshot.failed_tasks[0].exit_code == 5
        assert [t.name for t in snapshot.skipped_tasks] == ["b"]
        assert snapshot.tasks[1].started_at is None


class TestProjectionDirect:
    def test_running_task(self, ledger: RunLedger):
        ledger.append(LedgerEntry(run_id="r", subject="pipeline:p", state_transition="pending->running"))
        ledger.append(LedgerEntry(run_id="r", subject="a", state_transition="pending->running"))
        snapshot = RunProjection(ledger).snapshot("r")
        assert snapshot.run_state == RunState.RUNNING
        assert [t.name for t in snapshot.running_tasks] == ["a"]
        assert snapshot.tasks[0].duration_seconds is None

    def test_unknown_run_is_empty(self, ledger: RunLedger):
        snapshot = RunProjection(ledger).snapshot("nope")
        assert snapshot.tasks == []
        assert snapshot.run_state is None
        assert snapshot.chain_valid

    def test_promotion_entries_project_as_tasks(self, ledger: RunLedger):
        ledger.append(LedgerEntry(
            run_id="pr-1", subject="promote:web", state_transition="requested->succeeded",
            exit_code=0,
        ))
        (task,) = RunProjection(ledger).snapshot("pr-1").tasks
        assert task.name == "promote:web"
        assert task.state == TaskState.SUCCEEDED

    def test_latest_run_id(self, ledger: RunLedger):
        projection = RunProjection(ledger)
        assert projection.latest_run_id() is None
        ledger.append(LedgerEntry(run_id="r1", subject="a", state_transition="pending->running"))
        ledger.append(LedgerEntry(run_id="r2", subject="a", state_transition="pending->running"))
        assert projection.latest_run_id() == "r2"
