"""Concurrent task-graph scheduler.

The scheduler is the only coordinator of a run.  It loops:

1. dispatch every PENDING task whose predecessors all SUCCEEDED onto a
   thread pool, resolving its parameters against the results published so
   far;
2. wait for the first running task to finish;
3. on success, mark it SUCCEEDED and publish its results as one batch;
   on failure, mark it FAILED, which skips its not-yet-started descendants.

Already-running tasks are never cancelled.  With ``fail_fast`` (the
default) nothing new is dispatched after the first failure and whatever is
still PENDING is skipped; otherwise independent branches keep going.
Dispatch and completion handling both happen on the scheduler thread, so
a dependent can only be dispatched after its producer's results are
visible.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from datetime import datetime, timezone
from typing import Mapping

from pipewright.core.executors import ExecutionContext, TaskExecutor
from pipewright.core.hasher import compute_input_hash, compute_output_hash
from pipewright.core.param_resolver import ParameterResolver
from pipewright.core.result_store import ResultStore
from pipewright.core.task_graph import TaskGraph
from pipewright.core.task_machine import TaskStateMachine
from pipewright.errors import PipewrightError
from pipewright.models.runs import TaskOutcome, TaskRun, TaskState

logger = logging.getLogger(__name__)

TaskListener = Callable[[TaskRun], None]


def _now() -> datetime:
    return datetime.now(timezone.utc)


class Scheduler:
    """Runs one pipeline run's task graph to completion.

    Parameters
    ----------
    graph:
        The validated task graph.
    machine:
        State machine for this run (records into the ledger).
    store:
        This run's result store.
    resolver:
        Parameter resolver bound to ``store`` and the run's pipeline params.
    executor:
        Backend that executes a task's steps.
    context:
        Run-scoped execution context handed to the executor.
    max_workers:
        Upper bound on concurrently running tasks.
    fail_fast:
        Stop dispatching new work after the first failure.
    listeners:
        Callables notified with the updated ``TaskRun`` on every state change.
    """

    def __init__(
        self,
        graph: TaskGraph,
        machine: TaskStateMachine,
        store: ResultStore,
        resolver: ParameterResolver,
        executor: TaskExecutor,
        context: ExecutionContext,
        *,
        max_workers: int = 8,
        fail_fast: bool = True,
        listeners: list[TaskListener] | None = None,
    ) -> None:
        self._graph = graph
        self._machine = machine
        self._store = store
        self._resolver = resolver
        self._executor = executor
        self._context = context
        self._max_workers = max(1, max_workers)
        self._fail_fast = fail_fast
        self._listeners = list(listeners or [])

        self.task_runs: dict[str, TaskRun] = {
            name: TaskRun(run_id=context.run_id, task_name=name)
            for name in graph.task_names
        }
        self.failed_task: str | None = None

    # ------------------------------------------------------------------
    # Main loop
    # ------------------------------------------------------------------

    def run(self) -> dict[str, TaskRun]:
        """Execute the graph; returns the final ``TaskRun`` of every task."""
        run_id = self._context.run_id
        running: dict[Future[TaskOutcome], str] = {}
        dispatching = True

        with ThreadPoolExecutor(
            max_workers=self._max_workers, thread_name_prefix=f"pw-{run_id}"
        ) as pool:
            while True:
                if dispatching:
                    for name in self._machine.ready_tasks():
                        if len(running) >= self._max_workers:
                            break
                        future = self._dispatch(pool, name)
                        if future is not None:
                            running[future] = name
                        elif self._fail_fast:
                            dispatching = False
                            break

                if not running:
                    break

                done, _ = wait(running, return_when=FIRST_COMPLETED)
                for future in done:
                    name = running.pop(future)
                    if not self._complete(name, future) and self._fail_fast:
                        dispatching = False

        if self.failed_task is not None:
            reason = f"run failed (task '{self.failed_task}')"
        else:
            reason = "never became ready"
        for name in self._machine.skip_pending(reason):
            self._update(name, state=TaskState.SKIPPED, message=reason)

        self._sync_skips()
        return dict(self.task_runs)

    # ------------------------------------------------------------------
    # Dispatch / completion
    # ------------------------------------------------------------------

    def _dispatch(self, pool: ThreadPoolExecutor, name: str) -> Future[TaskOutcome] | None:
        """Resolve params and submit ``name``.  Returns None on a dispatch error."""
        task = self._graph.get_task(name)
        try:
            params = self._resolver.resolve(task)
        except PipewrightError as exc:
            logger.error("[%s] %s: dispatch failed: %s", self._context.run_id, name, exc)
            self._machine.transition(name, TaskState.RUNNING)
            self._update(name, state=TaskState.RUNNING, started_at=_now())
            self._fail(name, exit_code=None, message=f"dispatch error: {exc}", log="")
            return None

        self._machine.transition(
            name, TaskState.RUNNING, input_hash=compute_input_hash(name, params)
        )
        self._update(name, state=TaskState.RUNNING, params=params, started_at=_now())
        logger.info("[%s] %s: started", self._context.run_id, name)
        return pool.submit(self._execute, task.name, params)

    def _execute(self, name: str, params: Mapping[str, str | list[str]]) -> TaskOutcome:
        """Worker-thread body."""
        task = self._graph.get_task(name)
        try:
            return self._executor.execute(task, params, self._context)
        except Exception as exc:
            logger.exception("[%s] %s: executor raised", self._context.run_id, name)
            return TaskOutcome(exit_code=1, log=f"{type(exc).__name__}: {exc}")

    def _complete(self, name: str, future: Future[TaskOutcome]) -> bool:
        """Record a finished task.  Returns True on success."""
        outcome = future.result()
        task = self._graph.get_task(name)

        if not outcome.succeeded:
            self._fail(
                name,
                exit_code=outcome.exit_code,
                message="step exited non-zero",
                log=outcome.log,
            )
            return False

        declared = set(task.results)
        produced = set(outcome.results)
        if produced != declared:
            self._fail(
                name,
                exit_code=1,
                message=(
                    f"published results {sorted(produced)} do not match "
                    f"declared results {sorted(declared)}"
                ),
                log=outcome.log,
            )
            return False

        self._machine.transition(
            name,
            TaskState.SUCCEEDED,
            output_hash=compute_output_hash(name, outcome.results),
            exit_code=outcome.exit_code,
        )
        self._store.publish(
            name,
            outcome.results,
            state=self._machine.state(name),
            declared=task.results,
        )
        self._update(
            name,
            state=TaskState.SUCCEEDED,
            results=dict(outcome.results),
            exit_code=outcome.exit_code,
            log=outcome.log,
            finished_at=_now(),
        )
        logger.info("[%s] %s: succeeded", self._context.run_id, name)
        return True

    def _fail(self, name: str, *, exit_code: int | None, message: str, log: str) -> None:
        self._machine.transition(
            name, TaskState.FAILED, exit_code=exit_code, message=message
        )
        self._update(
            name,
            state=TaskState.FAILED,
            exit_code=exit_code,
            message=message,
            log=log,
            finished_at=_now(),
        )
        if self.failed_task is None:
            self.failed_task = name
        logger.error("[%s] %s: failed (%s)", self._context.run_id, name, message)
        self._sync_skips()

    # ------------------------------------------------------------------
    # TaskRun bookkeeping
    # ------------------------------------------------------------------

    def _sync_skips(self) -> None:
        """Mirror SKIPPED states set by the machine's cascade into task runs."""
        for name, state in self._machine.snapshot().items():
            if state == TaskState.SKIPPED and self.task_runs[name].state != TaskState.SKIPPED:
                upstream = self._skipped_because(name)
                self._update(
                    name,
                    state=TaskState.SKIPPED,
                    message=f"upstream task '{upstream}' failed" if upstream else "skipped",
                )

    def _skipped_because(self, name: str) -> str | None:
        for other, run in self.task_runs.items():
            if run.state == TaskState.FAILED and name in self._graph.descendants(other):
                return other
        return None

    def _update(self, name: str, **changes: object) -> None:
        updated = self.task_runs[name].model_copy(update=changes)
        self.task_runs[name] = updated
        for listener in self._listeners:
            listener(updated)
