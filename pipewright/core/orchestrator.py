"""Pipeline orchestrator — wires one run together.

The Orchestrator builds the TaskGraph (rejecting invalid definitions before
anything executes), resolves pipeline params, and hands a fresh
TaskStateMachine, ResultStore and ParameterResolver to the Scheduler.
Every run records into the shared RunLedger.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Mapping

from pipewright.core.executors import ExecutionContext, ShellExecutor, TaskExecutor
from pipewright.core.hasher import compute_input_hash
from pipewright.core.param_resolver import ParameterResolver, resolve_pipeline_params
from pipewright.core.result_store import ResultStore
from pipewright.core.run_ledger import RunLedger
from pipewright.core.scheduler import Scheduler, TaskListener
from pipewright.core.task_graph import TaskGraph
from pipewright.core.task_machine import TaskStateMachine
from pipewright.errors import TaskExecutionError
from pipewright.models.config import PipelineConfig, RunConfig, new_run_id
from pipewright.models.ledger import LedgerEntry
from pipewright.models.runs import PipelineRunResult, RunState, TaskRun, TaskState
from pipewright.models.tasks import PipelineDefinition

logger = logging.getLogger(__name__)

LOG_TAIL_LINES = 20


def pipeline_subject(name: str) -> str:
    """Ledger subject for run-level entries."""
    return f"pipeline:{name}"


def _log_tail(log: str, lines: int = LOG_TAIL_LINES) -> str:
    return "\n".join(log.splitlines()[-lines:])


class Orchestrator:
    """Runs pipeline definitions.

    Parameters
    ----------
    config:
        Engine configuration.  Uses defaults if not provided.
    executor:
        Task execution backend.  Defaults to ``ShellExecutor``.
    ledger:
        Run ledger to record into.  Opened from ``config.ledger_db_path``
        if not provided.
    listeners:
        Callables notified of every ``TaskRun`` change (CLI progress).
    """

    def __init__(
        self,
        config: PipelineConfig | None = None,
        executor: TaskExecutor | None = None,
        *,
        ledger: RunLedger | None = None,
        listeners: list[TaskListener] | None = None,
    ) -> None:
        self.config = config or PipelineConfig()
        self.executor = executor or ShellExecutor()
        self.ledger = ledger or RunLedger(self.config.ledger_db_path)
        self._listeners = list(listeners or [])

    # ------------------------------------------------------------------
    # Run lifecycle
    # ------------------------------------------------------------------

    def run_pipeline(
        self,
        definition: PipelineDefinition,
        params: Mapping[str, str | list[str]] | None = None,
        *,
        run_id: str | None = None,
    ) -> PipelineRunResult:
        """Execute ``definition`` to completion.

        Raises a ``DefinitionError`` subclass, before any task starts, if the
        definition or the supplied params are invalid.  Task failures do not
        raise: they are reported in the returned ``PipelineRunResult``.
        """
        graph = TaskGraph.from_pipeline(definition)
        pipeline_params = resolve_pipeline_params(definition, params)

        run_config = RunConfig(
            run_id=run_id or new_run_id(),
            pipeline_name=definition.name,
            params=pipeline_params,
            pipeline_config=self.config,
        )
        run_id = run_config.run_id
        workspace = self.config.workspace_dir / run_id
        workspace.mkdir(parents=True, exist_ok=True)

        subject = pipeline_subject(definition.name)
        self.ledger.append(
            LedgerEntry(
                run_id=run_id,
                subject=subject,
                state_transition=f"{TaskState.PENDING.value}->{RunState.RUNNING.value}",
                input_hash=compute_input_hash(subject, pipeline_params),
                message=f"{len(graph)} task(s)",
            )
        )
        logger.info(
            "[%s] starting pipeline %s (%d tasks)", run_id, definition.name, len(graph)
        )

        machine = TaskStateMachine(self.ledger, graph, run_id)
        store = ResultStore(run_id)
        scheduler = Scheduler(
            graph,
            machine,
            store,
            ParameterResolver(store, pipeline_params),
            self.executor,
            ExecutionContext(run_id=run_id, pipeline_name=definition.name, workspace=workspace),
            max_workers=self.config.max_workers,
            fail_fast=self.config.fail_fast,
            listeners=self._listeners,
        )
        task_runs = scheduler.run()

        failed = scheduler.failed_task
        state = RunState.FAILED if failed is not None else RunState.SUCCEEDED
        error = self._describe_failure(task_runs[failed]) if failed is not None else None

        self.ledger.append(
            LedgerEntry(
                run_id=run_id,
                subject=subject,
                state_transition=f"{RunState.RUNNING.value}->{state.value}",
                exit_code=0 if failed is None else 1,
                message=error.splitlines()[0] if error else "",
            )
        )
        if failed is None:
            logger.info("[%s] pipeline %s succeeded", run_id, definition.name)
        else:
            logger.error("[%s] pipeline %s failed at task %s", run_id, definition.name, failed)

        return PipelineRunResult(
            run_id=run_id,
            pipeline_name=definition.name,
            state=state,
            task_runs=task_runs,
            failed_task=failed,
            error=error,
            started_at=run_config.created_at,
            finished_at=datetime.now(timezone.utc),
        )

    @staticmethod
    def _describe_failure(task_run: TaskRun) -> str:
        if task_run.exit_code is None:
            summary = f"Task '{task_run.task_name}' failed: {task_run.message}"
        else:
            summary = str(
                TaskExecutionError(task_run.task_name, task_run.exit_code, task_run.message)
            )
        tail = _log_tail(task_run.log)
        return f"{summary}\n{tail}" if tail else summary

    # ------------------------------------------------------------------
    # Query methods
    # ------------------------------------------------------------------

    def get_run_entries(self, run_id: str) -> list[LedgerEntry]:
        return self.ledger.get_run_entries(run_id)

    def verify_chain(self, run_id: str) -> bool:
        """Verify the hash chain integrity of one run's ledger entries."""
        return self.ledger.verify_chain(run_id)
