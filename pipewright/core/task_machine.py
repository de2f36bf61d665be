"""Task run state machine.

Enforces:
- Valid state transitions only (VALID_TRANSITIONS table)
- Predecessors SUCCEEDED before a task enters RUNNING
- Descendants of a FAILED task cascade to SKIPPED
- Every transition recorded in the Run Ledger
"""

from __future__ import annotations

import logging
import threading

from pipewright.core.run_ledger import RunLedger
from pipewright.core.task_graph import TaskGraph
from pipewright.errors import InvalidTransitionError
from pipewright.models.ledger import LedgerEntry
from pipewright.models.runs import VALID_TRANSITIONS, TaskState

logger = logging.getLogger(__name__)


class TaskStateMachine:
    """Per-run task states with predecessor checking and skip cascade.

    Parameters
    ----------
    ledger:
        The Run Ledger to record transitions into.
    graph:
        The task graph for predecessor/descendant lookups.
    run_id:
        The run whose task states this machine owns.
    """

    def __init__(self, ledger: RunLedger, graph: TaskGraph, run_id: str) -> None:
        self._ledger = ledger
        self._graph = graph
        self.run_id = run_id
        self._lock = threading.RLock()
        self._states: dict[str, TaskState] = {
            name: TaskState.PENDING for name in graph.task_names
        }

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def state(self, task_name: str) -> TaskState:
        with self._lock:
            return self._states[task_name]

    def snapshot(self) -> dict[str, TaskState]:
        with self._lock:
            return dict(self._states)

    def is_ready(self, task_name: str) -> bool:
        """PENDING with every predecessor SUCCEEDED."""
        with self._lock:
            if self._states[task_name] != TaskState.PENDING:
                return False
            return all(
                self._states[p] == TaskState.SUCCEEDED
                for p in self._graph.predecessors(task_name)
            )

    def ready_tasks(self) -> list[str]:
        with self._lock:
            return [name for name in self._graph.task_names if self.is_ready(name)]

    def blocking_reasons(self, task_name: str) -> list[str]:
        with self._lock:
            return [
                f"{p} is {self._states[p].value}"
                for p in sorted(self._graph.predecessors(task_name))
                if self._states[p] != TaskState.SUCCEEDED
            ]

    # ------------------------------------------------------------------
    # Transition logic
    # ------------------------------------------------------------------

    def transition(
        self,
        task_name: str,
        target: TaskState,
        *,
        input_hash: str = "",
        output_hash: str = "",
        exit_code: int | None = None,
        message: str = "",
    ) -> LedgerEntry:
        """Move ``task_name`` to ``target`` and record it in the ledger.

        A transition to FAILED also skips every not-yet-started descendant.
        """
        with self._lock:
            current = self._states[task_name]
            allowed = VALID_TRANSITIONS.get(current, set())
            if target not in allowed:
                raise InvalidTransitionError(
                    f"Cannot transition {task_name} from {current.value} to {target.value}. "
                    f"Allowed: {sorted(s.value for s in allowed)}"
                )
            if target == TaskState.RUNNING:
                reasons = self.blocking_reasons(task_name)
                if reasons:
                    raise InvalidTransitionError(
                        f"Cannot start {task_name}: predecessors not satisfied. "
                        f"Blocked by: {'; '.join(reasons)}"
                    )

            sealed = self._ledger.append(
                LedgerEntry(
                    run_id=self.run_id,
                    subject=task_name,
                    state_transition=f"{current.value}->{target.value}",
                    input_hash=input_hash,
                    output_hash=output_hash,
                    exit_code=exit_code,
                    message=message,
                )
            )
            self._states[task_name] = target

            if target == TaskState.FAILED:
                self.cascade_skip(task_name)
        return sealed

    def cascade_skip(self, failed_task: str) -> list[str]:
        """Skip every PENDING descendant of ``failed_task``.

        Returns the newly skipped task names.
        """
        skipped: list[str] = []
        with self._lock:
            for name in self._graph.descendants(failed_task):
                if self._states[name] == TaskState.PENDING:
                    self._skip(name, f"upstream task '{failed_task}' failed")
                    skipped.append(name)
        if skipped:
            logger.info(
                "[%s] %s failed; skipped descendants: %s",
                self.run_id,
                failed_task,
                ", ".join(skipped),
            )
        return skipped

    def skip_pending(self, reason: str) -> list[str]:
        """Skip every task still PENDING (used when a run stops dispatching)."""
        skipped: list[str] = []
        with self._lock:
            for name in self._graph.task_names:
                if self._states[name] == TaskState.PENDING:
                    self._skip(name, reason)
                    skipped.append(name)
        return skipped

    def _skip(self, task_name: str, reason: str) -> None:
        self._ledger.append(
            LedgerEntry(
                run_id=self.run_id,
                subject=task_name,
                state_transition=f"{TaskState.PENDING.value}->{TaskState.SKIPPED.value}",
                message=reason,
            )
        )
        self._states[task_name] = TaskState.SKIPPED
