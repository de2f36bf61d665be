"""Per-run, write-once result store.

Maps ``(task name, result name) -> value``.  A task publishes all of its
declared results together, once, and only after it has SUCCEEDED.  Readers
never observe a partial publication: the whole batch becomes visible in a
single dictionary swap under the lock.
"""

from __future__ import annotations

import logging
import threading
from types import MappingProxyType
from typing import Mapping

from pipewright.errors import (
    ResultAlreadyPublishedError,
    ResultPublishError,
    UnresolvedReferenceError,
)
from pipewright.models.runs import TaskState
from pipewright.models.tasks import ResultRef

logger = logging.getLogger(__name__)


class ResultStore:
    """Append-only mapping of task results for one pipeline run."""

    def __init__(self, run_id: str) -> None:
        self.run_id = run_id
        self._lock = threading.Lock()
        self._published: dict[str, Mapping[str, str]] = {}

    def publish(
        self,
        task_name: str,
        results: Mapping[str, str],
        *,
        state: TaskState,
        declared: list[str] | None = None,
    ) -> None:
        """Atomically publish every result of ``task_name``.

        Parameters
        ----------
        state:
            The task's state at the time of the write.  Must be SUCCEEDED.
        declared:
            The task's declared result names.  When given, ``results`` must
            contain exactly those names.
        """
        if state != TaskState.SUCCEEDED:
            raise ResultPublishError(
                f"Task '{task_name}' cannot publish results in state {state.value}"
            )
        if declared is not None:
            missing = sorted(set(declared) - set(results))
            extra = sorted(set(results) - set(declared))
            if missing or extra:
                raise ResultPublishError(
                    f"Task '{task_name}' published results {sorted(results)} "
                    f"but declares {sorted(declared)} "
                    f"(missing={missing}, undeclared={extra})"
                )
        frozen = MappingProxyType({k: str(v) for k, v in results.items()})
        with self._lock:
            if task_name in self._published:
                raise ResultAlreadyPublishedError(
                    f"Results of task '{task_name}' were already published in run {self.run_id}"
                )
            self._published = {**self._published, task_name: frozen}
        logger.debug(
            "[%s] published %d result(s) for %s", self.run_id, len(frozen), task_name
        )

    def get(self, task_name: str, result_name: str) -> str:
        """Read one result by exact key."""
        published = self._published
        try:
            return published[task_name][result_name]
        except KeyError:
            raise UnresolvedReferenceError(task_name, result_name) from None

    def resolve(self, result_ref: ResultRef) -> str:
        return self.get(result_ref.task, result_ref.result)

    def has(self, task_name: str, result_name: str | None = None) -> bool:
        published = self._published
        if task_name not in published:
            return False
        return result_name is None or result_name in published[task_name]

    def results_of(self, task_name: str) -> dict[str, str]:
        return dict(self._published.get(task_name, {}))

    def snapshot(self) -> dict[str, dict[str, str]]:
        """A plain-dict copy of everything published so far."""
        return {task: dict(values) for task, values in self._published.items()}

    def __len__(self) -> int:
        return len(self._published)
