"""Unit tests for the Orchestrator: run lifecycle and ledger records."""

from __future__ import annotations

from pathlib import Path

import pytest

from pipewright.core.orchestrator import Orchestrator, pipeline_subject
from pipewright.errors import CyclicDependencyError, MissingParamError
from pipewright.models.config import PipelineConfig
from pipewright.models.runs import RunState, TaskOutcome
from pipewright.models.tasks import ParamSpec, param


# ---------------------------------------------------------------------------
# Test: Construction
# ---------------------------------------------------------------------------


class TestOrchestratorConstruction:
    def test_ledger_opened_from_config(self, tmp_path: Path):
        config = PipelineConfig(
            ledger_db_path=tmp_path / "db" / "ledger.db", workspace_dir=tmp_path / "ws"
        )
        orch = Orchestrator(config)
        assert orch.ledger.path == tmp_path / "db" / "ledger.db"
        assert orch.ledger.path.exists()

    def test_defaults_to_shell_executor(self, pipeline_config):
        from pipewright.core.executors import ShellExecutor

        assert isinstance(Orchestrator(pipeline_config).executor, ShellExecutor)


# ---------------------------------------------------------------------------
# Test: Rejection before execution
# ---------------------------------------------------------------------------


class TestRejection:
    def test_cycle_rejected_without_ledger_entries(
        self, orchestrator, callable_executor, make_task, make_pipeline, ledger
    ):
        called = []
        callable_executor.register("a", lambda p, c: called.append("a"))
        definition = make_pipeline(
            make_task("a", run_after=["b"]), make_task("b", run_after=["a"])
        )
        with pytest.raises(CyclicDependencyError):
            orchestrator.run_pipeline(definition)
        assert called == []
        assert ledger.get_all_run_ids() == []

    def test_missing_pipeline_param(self, orchestrator, make_task, make_pipeline):
        definition = make_pipeline(
            make_task("a", params=["env"], param_values={"env": param("env")}),
            params=[ParamSpec(name="env")],
        )
        with pytest.raises(MissingParamError):
            orchestrator.run_pipeline(definition)


# ---------------------------------------------------------------------------
# Test: Run lifecycle
# ---------------------------------------------------------------------------


class TestRunLifecycle:
    def test_explicit_run_id_and_workspace(
        self, orchestrator, callable_executor, make_task, make_pipeline, pipeline_config
    ):
        seen = {}
        callable_executor.register("a", lambda p, c: seen.update(workspace=c.workspace))
        result = orchestrator.run_pipeline(
            make_pipeline(make_task("a")), run_id="pw-explicit"
        )
        assert result.run_id == "pw-explicit"
        assert seen["workspace"] == pipeline_config.workspace_dir / "pw-explicit"
        assert seen["workspace"].is_dir()

    def test_generated_run_ids_are_unique(
        self, orchestrator, callable_executor, make_task, make_pipeline
    ):
        callable_executor.register("a", lambda p, c: None)
        definition = make_pipeline(make_task("a"))
        first = orchestrator.run_pipeline(definition).run_id
        second = orchestrator.run_pipeline(definition).run_id
        assert first != second
        assert first.startswith("pw-")

    def test_pipeline_entries_bracket_task_entries(
        self, orchestrator, callable_executor, make_task, make_pipeline
    ):
        callable_executor.register("a", lambda p, c: None)
        result = orchestrator.run_pipeline(make_pipeline(make_task("a")))
        entries = orchestrator.get_run_entries(result.run_id)
        subject = pipeline_subject("test-pipeline")
        assert entries[0].subject == subject
        assert entries[0].state_transition == "pending->running"
        assert entries[-1].subject == subject
        assert entries[-1].state_transition == "running->succeeded"
        assert [e.state_transition for e in entries if e.subject == "a"] == [
            "pending->running",
            "running->succeeded",
        ]
        assert orchestrator.verify_chain(result.run_id) is True

    def test_failed_run_records_failure(
        self, orchestrator, callable_executor, make_task, make_pipeline
    ):
        callable_executor.register(
            "build", lambda p, c: TaskOutcome(exit_code=3, log="line1\nline2")
        )
        result = orchestrator.run_pipeline(make_pipeline(make_task("build")))

        assert result.state == RunState.FAILED
        assert result.exit_code == 1
        assert result.error.startswith("Task 'build' failed with exit code 3")
        assert result.error.endswith("line1\nline2")
        last = orchestrator.get_run_entries(result.run_id)[-1]
        assert last.state_transition == "running->failed"
        assert last.exit_code == 1

    def test_error_keeps_only_log_tail(
        self, orchestrator, callable_executor, make_task, make_pipeline
    ):
        log = "\n".join(f"line {i}" for i in range(100))
        callable_executor.register("t", lambda p, c: TaskOutcome(exit_code=1, log=log))
        result = orchestrator.run_pipeline(make_pipeline(make_task("t")))
        assert "line 99" in result.error
        assert "line 10\n" not in result.error

    def test_empty_pipeline_succeeds(self, orchestrator, make_pipeline):
        result = orchestrator.run_pipeline(make_pipeline())
        assert result.succeeded
        assert result.task_runs == {}
